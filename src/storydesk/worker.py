from __future__ import annotations

import argparse
import logging
import os
import time
from typing import Any, Callable

from .bus import ReconciliationBus, build_bus
from .collaborators import load_story_generator
from .config import Config, ConfigError, load_config, load_runtime_config
from .intake import IntakeService
from .queue import GenerationQueue
from .services.sources_service import refresh_source_health
from .storage import init_db, list_sources
from .utils import configure_logging, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("storydesk.worker")


def run_cycle(
    conn: Any,
    config: Config,
    bus: ReconciliationBus | None,
    generator: Callable[..., Any] | None,
    worker_id: str,
    logger: logging.Logger,
) -> dict[str, int]:
    queue = GenerationQueue(conn, config, bus)
    stuck = queue.reset_stuck()
    retried = queue.retry_failed()
    decisions = IntakeService(conn, config, bus).classify_pending()
    if generator is None:
        log_event(logger, logging.WARNING, "generator_unavailable", worker_id=worker_id)
        processed = {"claimed": 0, "completed": 0, "failed": 0}
    else:
        processed = queue.process(generator, worker_id)
    # Sources that stop producing events still age into idle or reconnecting.
    sources_checked = 0
    for source in list_sources(conn, active_only=True):
        refresh_source_health(conn, config, source.id)
        sources_checked += 1
    totals = {
        "requeued_stuck": len(stuck),
        "retried": len(retried),
        "accepted": decisions.get("accept", 0),
        "held": decisions.get("hold", 0),
        "discarded": decisions.get("discard", 0),
        **processed,
        "sources_checked": sources_checked,
    }
    log_event(logger, logging.INFO, "worker_cycle", worker_id=worker_id, **totals)
    return totals


def run_once(worker_id: str, config_path: str | None = None) -> int:
    logger = _setup_logging()
    try:
        base = load_config(config_path)
        conn = init_db(base.paths.state_db)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    try:
        config = load_runtime_config(conn, base)
        generator = load_story_generator(config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        conn.close()
        return 1

    bus = build_bus(conn, config)
    try:
        run_cycle(conn, config, bus, generator, worker_id, logger)
        bus.flush()
    finally:
        bus.close()
        conn.close()
    return 0


def run_loop(worker_id: str, sleep_seconds: int, config_path: str | None = None) -> int:
    while True:
        status = run_once(worker_id, config_path)
        if status:
            return status
        time.sleep(sleep_seconds)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storydesk-worker")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--sleep", type=int, default=10, help="Sleep seconds between cycles")
    parser.add_argument("--worker-id", default=os.environ.get("HOSTNAME", "worker"))
    parser.add_argument("--config", default=None, help="Path to config.yml")
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    if args.once:
        return run_once(args.worker_id, args.config)
    return run_loop(args.worker_id, args.sleep, args.config)


if __name__ == "__main__":
    raise SystemExit(main())
