from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import sys

from . import db
from .docker_ops import ClientInitError, DockerRuntime
from .log import setup_logging
from .policy import ConfigError, PolicyStore
from .recreator import Recreator
from .reload import ReloadWatcher
from .scheduler import Scheduler
from .settings import settings

log = logging.getLogger("hikup.cli")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hikup", description="Recreate local containers on their newest images")

    mode = p.add_mutually_exclusive_group()
    mode.add_argument("-a", dest="recreate_all", action="store_true", help="Recreate all containers, ignoring any policy")
    mode.add_argument("-c", dest="config", metavar="PATH", help="Policy file (.json, .yaml, .yml); reloaded on SIGHUP")

    p.add_argument("--once", action="store_true", help="Run a single update cycle and exit")
    p.add_argument("--dry-run", action="store_true", help="Log which containers would be updated without touching them")
    p.add_argument("--events", type=int, metavar="N", help="Print the last N journal events as JSON and exit")
    p.add_argument("--updates", type=int, metavar="N", help="Print the last N update records as JSON and exit")
    p.add_argument("--container", metavar="NAME", help="Limit --updates to one container")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(settings)
    db.init_db()

    if args.events is not None:
        _print(db.latest_events(max(1, args.events)))
        return 0

    if args.updates is not None:
        rows = db.latest_updates(args.container, max(1, args.updates))
        _print([dataclasses.asdict(r) for r in rows])
        return 0

    store = PolicyStore()
    if args.config:
        try:
            store.load(args.config)
        except ConfigError as e:
            # Not fatal: run with the empty policy until a reload succeeds.
            log.error("Error loading initial config: %s", e)
            db.log_event("ERROR", f"Initial config not loaded, using empty policy: {e}")

    try:
        runtime = DockerRuntime.from_env(settings)
    except ClientInitError as e:
        log.critical("Error creating Docker client: %s", e)
        db.log_event("CRITICAL", str(e))
        return 1

    recreator = Recreator(
        runtime,
        stop_timeout_s=settings.stop_timeout_s,
        shadow=settings.shadow_recreate,
        verify_delay_s=settings.verify_delay_s,
    )
    scheduler = Scheduler(
        runtime,
        store,
        recreator,
        force_all=args.recreate_all,
        dry_run=args.dry_run,
        poll_interval_s=settings.poll_interval_s,
        list_retry_s=settings.list_retry_s,
    )

    if args.once:
        report = scheduler.run_cycle()
        return 0 if report is not None and report.failed == 0 else 1

    watcher = ReloadWatcher(store, args.config)
    watcher.install()
    watcher.start()

    def _shutdown(signum, frame) -> None:
        scheduler.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    scheduler.run_forever()
    watcher.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
