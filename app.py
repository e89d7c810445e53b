from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import uvicorn

from careconnect.core.access import AccessGuard, default_routes
from careconnect.core.api import PARTITION_PATHS, ApiClient
from careconnect.core.config import AppConfig, BackendMode, ConfigLoader, ConfigPaths
from careconnect.core.error_reporter import ErrorReporter
from careconnect.core.errors import ConfigError
from careconnect.core.events import EventBus, EventLogger, Notifier
from careconnect.core.identity import DemoIdentityClient, IdentityClient, RestIdentityClient
from careconnect.core.logger import setup_logging
from careconnect.core.session import SessionManager
from careconnect.core.storage import DurableStore, EncryptedFileStore, JsonFileStore
from careconnect.core.sync import LiveQuerySynchronizer, MemoryPartitionStore, PartitionSource, RestPartitionSource
from careconnect.web.api import create_app


def demo_records() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "clients": [
            {"id": "c1", "first_name": "Margaret", "last_name": "Hill", "address": "12 Elm Road", "care_level": "high"},
            {"id": "c2", "first_name": "Arthur", "last_name": "Banks", "address": "4 Mill Lane", "care_level": "medium"},
        ],
        "carers": [
            {"id": "carer", "username": "carer", "first_name": "Sam", "last_name": "Carter", "role": "carer"},
        ],
        "schedules": [
            {"id": "s1", "client": "c1", "carer": "carer", "date": "2024-01-15", "start_time": "09:00", "end_time": "10:00", "status": "scheduled"},
            {"id": "s2", "client": "c2", "carer": "carer", "date": "2024-01-15", "start_time": "11:00", "end_time": "12:00", "status": "scheduled"},
        ],
        "leave": [
            {"id": "l1", "carer": "carer", "start_date": "2024-02-01", "end_date": "2024-02-03", "status": "pending", "reason": "Family visit"},
        ],
        "messages": [],
        "visit-notes": [],
        "timelogs": [],
    }


@dataclass
class Services:
    config: AppConfig
    session: SessionManager
    guard: AccessGuard
    synchronizer: LiveQuerySynchronizer
    notifier: Notifier
    bus: EventBus
    source: PartitionSource


def build_store(cfg: AppConfig, paths: ConfigPaths) -> DurableStore:
    path = paths.resolve(cfg.storage.path)
    if cfg.storage.encrypted:
        return EncryptedFileStore(path, key_path=paths.resolve(cfg.storage.key_path))
    return JsonFileStore(path)


def build_services(cfg: AppConfig, paths: ConfigPaths, *, store: Optional[DurableStore] = None) -> Services:
    bus = EventBus(cfg=cfg.events)
    notifier = Notifier(bus=bus)
    event_logger = EventLogger(os.path.join(paths.resolve(cfg.logging.log_dir), "events.jsonl"))
    store = store if store is not None else build_store(cfg, paths)

    identity_client: IdentityClient
    if cfg.backend.mode == BackendMode.memory:
        identity_client = DemoIdentityClient()
    else:
        identity_client = RestIdentityClient(cfg.api.base_url, timeout_seconds=cfg.api.timeout_seconds)

    # Session events are written by the manager itself; the bus feeds the rest.
    for pattern in ("guard.*", "sync.*"):
        bus.subscribe(pattern, event_logger.record)

    session = SessionManager(identity_client=identity_client, store=store, notifier=notifier, bus=bus, event_logger=event_logger)

    source: PartitionSource
    if cfg.backend.mode == BackendMode.memory:
        memory = MemoryPartitionStore(known_partitions=PARTITION_PATHS.keys())
        for partition, records in demo_records().items():
            memory.seed(partition, records)
        source = memory
    else:
        api = ApiClient(cfg.api.base_url, session=session, timeout_seconds=cfg.api.timeout_seconds)
        source = RestPartitionSource(api, poll_interval_seconds=cfg.api.poll_interval_seconds)

    guard = AccessGuard(
        session=session,
        routes=default_routes(cfg.guard.login_path),
        login_path=cfg.guard.login_path,
        preserve_deep_link=cfg.guard.preserve_deep_link,
        bus=bus,
    )
    synchronizer = LiveQuerySynchronizer(source, bus=bus)
    return Services(config=cfg, session=session, guard=guard, synchronizer=synchronizer, notifier=notifier, bus=bus, source=source)


def main() -> None:
    ap = argparse.ArgumentParser(description="CareConnect portal service")
    ap.add_argument("--config-root", default=".", help="Directory holding config/app.json.")
    ap.add_argument("--host", default=None, help="Bind host (overrides config).")
    ap.add_argument("--port", type=int, default=None, help="Bind port (overrides config).")
    ap.add_argument("--backend", choices=[m.value for m in BackendMode], default=None, help="Data backend (overrides config).")
    args = ap.parse_args()

    paths = ConfigPaths(args.config_root)
    try:
        cfg = ConfigLoader(paths).load()
    except ConfigError as e:
        raise SystemExit(f"Invalid configuration: {e.user_message}") from e
    if args.backend:
        cfg = cfg.model_copy(update={"backend": cfg.backend.model_copy(update={"mode": BackendMode(args.backend)})})

    logger = setup_logging(paths.resolve(cfg.logging.log_dir), cfg.logging.level)
    logger.info("Starting CareConnect portal (backend=%s).", cfg.backend.mode.value)

    services = build_services(cfg, paths)
    services.session.start_initialize()

    app = create_app(
        session=services.session,
        guard=services.guard,
        synchronizer=services.synchronizer,
        notifier=services.notifier,
        allowed_origins=cfg.web.allowed_origins,
        error_reporter=ErrorReporter(path=os.path.join(paths.resolve(cfg.logging.log_dir), "errors.jsonl")),
    )

    host = args.host or cfg.web.bind_host
    port = int(args.port or cfg.web.port)
    try:
        uvicorn.run(app, host=host, port=port, log_level=logging.getLevelName(logger.level).lower())
    finally:
        services.synchronizer.close()
        close = getattr(services.source, "close", None)
        if callable(close):
            close()
        services.bus.shutdown()
        logger.info("CareConnect portal stopped.")


if __name__ == "__main__":
    main()
