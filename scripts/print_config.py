from __future__ import annotations

import argparse
import json

from careconnect.core.config import ConfigLoader, ConfigPaths
from careconnect.core.events import redact


def main() -> None:
    ap = argparse.ArgumentParser(description="Print the effective CareConnect configuration (file + environment).")
    ap.add_argument("--config-root", default=".")
    args = ap.parse_args()

    cfg = ConfigLoader(ConfigPaths(args.config_root)).load()
    print(json.dumps(redact(cfg.model_dump(mode="json")), indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
