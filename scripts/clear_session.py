from __future__ import annotations

import argparse

from careconnect.core.config import ConfigLoader, ConfigPaths
from careconnect.core.session import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY

from app import build_store


def main() -> None:
    ap = argparse.ArgumentParser(description="Remove persisted CareConnect session tokens.")
    ap.add_argument("--config-root", default=".")
    args = ap.parse_args()

    paths = ConfigPaths(args.config_root)
    cfg = ConfigLoader(paths).load()
    store = build_store(cfg, paths)
    present = [k for k in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY) if store.get(k) is not None]
    for k in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY):
        store.remove(k)
    print(f"Cleared {len(present)} token(s) from {paths.resolve(cfg.storage.path)}.")


if __name__ == "__main__":
    main()
