from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Callable

from .assets import AssetTracker
from .bus import ReconciliationBus, build_bus
from .collaborators import load_story_generator
from .config import (
    ConfigError,
    config_to_dict,
    get_runtime_overrides,
    load_config,
    load_runtime_config,
    set_runtime_overrides,
)
from .errors import ActionResult, InputError
from .intake import IntakeService
from .models import BulkDiscardFilter, JobStatus, StoryStatus
from .queue import GenerationQueue
from .services.sources_service import (
    list_source_health,
    parse_scrape_run,
    record_scrape_run,
    register_source,
    set_source_active,
    trigger_manual_scrape,
)
from .stories import StoryController
from .storage import (
    get_pipeline_counts,
    init_db,
    list_health_alerts,
    list_jobs,
    list_stories,
)
from .utils import configure_logging, log_event

Action = Callable[[Any, Any, ReconciliationBus], ActionResult]


def _setup_logging() -> logging.Logger:
    return configure_logging("storydesk")


def _open(args: argparse.Namespace, logger: logging.Logger):
    try:
        base = load_config(args.config)
        conn = init_db(base.paths.state_db)
        config = load_runtime_config(conn, base)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None
    return conn, config


def _load_json(path: str) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except OSError as exc:
        raise InputError(f"cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise InputError(f"{path} is not valid JSON: {exc}") from exc


def _run_action(
    args: argparse.Namespace, logger: logging.Logger, event: str, action: Action
) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    bus = build_bus(conn, config)
    try:
        result = action(conn, config, bus)
        bus.flush()
    except InputError as exc:
        log_event(logger, logging.ERROR, "invalid_input", command=event, error=str(exc))
        return 1
    finally:
        bus.close()
        conn.close()
    level = logging.INFO if result.ok else logging.ERROR
    log_event(
        logger,
        level,
        event,
        ok=result.ok,
        code=result.code,
        message=result.message,
        changed=result.changed,
        **result.details,
    )
    return 0 if result.ok else 1


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    conn.close()
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def _cmd_sources_add(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, _config = opened
    try:
        source = register_source(
            conn, {"id": args.id, "name": args.name, "url": args.url, "is_active": not args.inactive}
        )
    except InputError as exc:
        log_event(logger, logging.ERROR, "source_add_error", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "source_added", source_id=source.id, name=source.name)
    return 0


def _cmd_sources_health(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    rows = list_source_health(conn, config)
    conn.close()
    if not rows:
        log_event(logger, logging.WARNING, "no_sources", hint="Add one with `storydesk sources add`")
        return 1
    for row in rows:
        log_event(
            logger,
            logging.INFO,
            "source",
            source_id=row["id"],
            name=row["name"],
            active=row["is_active"],
            tier=row["tier"],
            label=row["label"],
            success_rate=row["success_rate"],
            articles_scraped=row["articles_scraped"],
            days_since_last_scrape=row["days_since_last_scrape"],
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(rows))
    return 0


def _cmd_sources_active(args: argparse.Namespace, logger: logging.Logger) -> int:
    active = args.state == "on"
    return _run_action(
        args,
        logger,
        "source_active",
        lambda conn, config, bus: set_source_active(conn, args.source_id, active, bus),
    )


def _cmd_sources_scrape(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "source_scrape",
        lambda conn, config, bus: trigger_manual_scrape(conn, args.source_id, bus=bus),
    )


def _cmd_sources_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    def action(conn, config, bus):
        run = parse_scrape_run(_load_json(args.file))
        return record_scrape_run(conn, config, args.source_id, run, bus)

    return _run_action(args, logger, "source_run", action)


def _cmd_sources_alerts(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, _config = opened
    alerts = list_health_alerts(conn, source_id=args.source_id, limit=args.limit)
    conn.close()
    for alert in alerts:
        log_event(logger, logging.INFO, "health_alert", **alert)
    return 0


def _cmd_articles_ingest(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    bus = build_bus(conn, config)
    try:
        payload = _load_json(args.file)
        candidates = payload if isinstance(payload, list) else [payload]
        articles = IntakeService(conn, config, bus).ingest_candidates(candidates)
        bus.flush()
    except InputError as exc:
        log_event(logger, logging.ERROR, "invalid_input", command="articles_ingest", error=str(exc))
        return 1
    finally:
        bus.close()
        conn.close()
    for article in articles:
        log_event(logger, logging.INFO, "article_ingested", article_id=article.id, title=article.title)
    return 0


def _cmd_articles_restore(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "article_restore",
        lambda conn, config, bus: IntakeService(conn, config, bus).restore_article(args.article_id),
    )


def _cmd_articles_discard(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "article_discard",
        lambda conn, config, bus: IntakeService(conn, config, bus).discard_article(args.article_id),
    )


def _cmd_articles_bulk_discard(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    bulk_filter = BulkDiscardFilter(
        keywords=list(args.keyword or []),
        domains=list(args.domain or []),
        max_quality_score=args.max_quality,
        max_relevance_score=args.max_relevance,
        source_id=args.source_id,
    )
    bus = build_bus(conn, config)
    service = IntakeService(conn, config, bus)
    try:
        if args.apply:
            count = service.apply_bulk_discard(bulk_filter)
            bus.flush()
        else:
            count = service.preview_bulk_discard(bulk_filter)
    except InputError as exc:
        log_event(logger, logging.ERROR, "invalid_input", command="bulk_discard", error=str(exc))
        return 1
    finally:
        bus.close()
        conn.close()
    event = "bulk_discard_applied" if args.apply else "bulk_discard_preview"
    log_event(logger, logging.INFO, event, count=count)
    return 0


def _cmd_intake_classify(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    bus = build_bus(conn, config)
    try:
        totals = IntakeService(conn, config, bus).classify_pending()
        bus.flush()
    finally:
        bus.close()
        conn.close()
    log_event(logger, logging.INFO, "intake_done", **totals)
    return 0


def _cmd_queue_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, _config = opened
    status = JobStatus(args.status) if args.status else None
    jobs = list_jobs(conn, status=status, limit=args.limit)
    conn.close()
    for job in jobs:
        log_event(
            logger,
            logging.INFO,
            "job",
            job_id=job.id,
            article_id=job.article_id,
            status=job.status.value,
            attempts=job.attempts,
            worker_id=job.worker_id,
            started_at=job.started_at,
            error=job.error,
        )
    return 0


def _cmd_queue_process(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    try:
        generator = load_story_generator(config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        conn.close()
        return 1
    if generator is None:
        log_event(logger, logging.ERROR, "generator_unavailable")
        conn.close()
        return 1
    bus = build_bus(conn, config)
    try:
        totals = GenerationQueue(conn, config, bus).process(generator, args.worker_id, args.limit)
        bus.flush()
    finally:
        bus.close()
        conn.close()
    log_event(logger, logging.INFO, "queue_processed", **totals)
    return 0


def _cmd_queue_reset(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "job_reset",
        lambda conn, config, bus: GenerationQueue(conn, config, bus).reset(args.job_id),
    )


def _cmd_queue_reset_stuck(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    try:
        requeued = GenerationQueue(conn, config).reset_stuck()
    finally:
        conn.close()
    log_event(logger, logging.INFO, "stuck_jobs_reset", count=len(requeued))
    return 0


def _cmd_stories_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, _config = opened
    status = StoryStatus(args.status) if args.status else None
    stories = list_stories(conn, status=status, limit=args.limit)
    conn.close()
    for story in stories:
        log_event(
            logger,
            logging.INFO,
            "story",
            story_id=story.id,
            article_id=story.article_id,
            status=story.status.value,
            slides=len(story.slides),
            title=story.title,
        )
    return 0


_STORY_ACTIONS = {
    "approve": "approve",
    "publish": "publish",
    "approve-publish": "approve_and_publish",
    "reject": "reject",
    "return": "return_to_review",
    "delete": "delete",
}


def _cmd_stories_action(args: argparse.Namespace, logger: logging.Logger) -> int:
    method = _STORY_ACTIONS[args.story_command]
    return _run_action(
        args,
        logger,
        f"story_{method}",
        lambda conn, config, bus: getattr(StoryController(conn, config, bus), method)(args.story_id),
    )


def _cmd_stories_edit_slide(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "slide_edit",
        lambda conn, config, bus: StoryController(conn, config, bus).edit_slide(
            args.story_id, args.slide_number, args.content
        ),
    )


def _cmd_exports_start(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "export_start",
        lambda conn, config, bus: AssetTracker(conn, config, bus).start(args.story_id),
    )


def _cmd_exports_retry(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "export_retry",
        lambda conn, config, bus: AssetTracker(conn, config, bus).retry(args.export_id),
    )


def _cmd_exports_report(args: argparse.Namespace, logger: logging.Logger) -> int:
    return _run_action(
        args,
        logger,
        "export_report",
        lambda conn, config, bus: AssetTracker(conn, config, bus).apply_report(
            args.export_id, _load_json(args.file)
        ),
    )


def _cmd_pipeline_counts(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, _config = opened
    counts = get_pipeline_counts(conn)
    conn.close()
    for entity, by_status in counts.items():
        log_event(logger, logging.INFO, "pipeline_counts", entity=entity, **by_status)
    return 0


def _cmd_config_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, config = opened
    conn.close()
    logger.info(json.dumps(config_to_dict(config), indent=2, sort_keys=True))
    return 0


def _cmd_config_set(args: argparse.Namespace, logger: logging.Logger) -> int:
    opened = _open(args, logger)
    if opened is None:
        return 1
    conn, _config = opened
    try:
        overrides = _load_json(args.file)
        with conn.transaction():
            set_runtime_overrides(conn, overrides)
        stored = get_runtime_overrides(conn)
    except (InputError, ConfigError) as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "config_runtime_saved", keys=",".join(sorted(stored)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storydesk", description="StoryDesk CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to SD_CONFIG_PATH or /config/config.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    sources_parser = subparsers.add_parser("sources", help="Manage sources")
    sources_subparsers = sources_parser.add_subparsers(dest="sources_command", required=True)

    sources_add = sources_subparsers.add_parser("add", help="Add or update a source")
    sources_add.add_argument("--id", default=None, help="Source id (generated when omitted)")
    sources_add.add_argument("--name", required=True)
    sources_add.add_argument("--url", default=None)
    sources_add.add_argument("--inactive", action="store_true")
    sources_add.set_defaults(func=_cmd_sources_add)

    sources_health = sources_subparsers.add_parser("health", help="List sources with health tiers")
    sources_health.set_defaults(func=_cmd_sources_health)

    sources_active = sources_subparsers.add_parser("active", help="Activate or deactivate a source")
    sources_active.add_argument("source_id")
    sources_active.add_argument("state", choices=["on", "off"])
    sources_active.set_defaults(func=_cmd_sources_active)

    sources_scrape = sources_subparsers.add_parser("scrape", help="Request a manual scrape")
    sources_scrape.add_argument("source_id")
    sources_scrape.set_defaults(func=_cmd_sources_scrape)

    sources_run = sources_subparsers.add_parser("run", help="Record a scrape run result")
    sources_run.add_argument("source_id")
    sources_run.add_argument("--file", required=True, help="JSON file with the run result")
    sources_run.set_defaults(func=_cmd_sources_run)

    sources_alerts = sources_subparsers.add_parser("alerts", help="List health alerts")
    sources_alerts.add_argument("--source-id", default=None)
    sources_alerts.add_argument("--limit", type=int, default=50)
    sources_alerts.set_defaults(func=_cmd_sources_alerts)

    articles_parser = subparsers.add_parser("articles", help="Article intake")
    articles_subparsers = articles_parser.add_subparsers(dest="articles_command", required=True)

    articles_ingest = articles_subparsers.add_parser("ingest", help="Ingest article candidates")
    articles_ingest.add_argument("--file", required=True, help="JSON file (object or list)")
    articles_ingest.set_defaults(func=_cmd_articles_ingest)

    articles_restore = articles_subparsers.add_parser("restore", help="Restore a discarded article")
    articles_restore.add_argument("article_id")
    articles_restore.set_defaults(func=_cmd_articles_restore)

    articles_discard = articles_subparsers.add_parser("discard", help="Discard an article")
    articles_discard.add_argument("article_id")
    articles_discard.set_defaults(func=_cmd_articles_discard)

    bulk = articles_subparsers.add_parser(
        "bulk-discard", help="Preview (default) or apply a bulk discard"
    )
    bulk.add_argument("--keyword", action="append")
    bulk.add_argument("--domain", action="append")
    bulk.add_argument("--max-quality", type=float, default=None)
    bulk.add_argument("--max-relevance", type=float, default=None)
    bulk.add_argument("--source-id", default=None)
    bulk.add_argument("--apply", action="store_true")
    bulk.set_defaults(func=_cmd_articles_bulk_discard)

    intake_parser = subparsers.add_parser("intake", help="Run intake classification")
    intake_subparsers = intake_parser.add_subparsers(dest="intake_command", required=True)
    intake_classify = intake_subparsers.add_parser("classify", help="Classify new articles")
    intake_classify.set_defaults(func=_cmd_intake_classify)

    queue_parser = subparsers.add_parser("queue", help="Generation queue")
    queue_subparsers = queue_parser.add_subparsers(dest="queue_command", required=True)

    queue_list = queue_subparsers.add_parser("list", help="List queue jobs")
    queue_list.add_argument("--status", choices=[s.value for s in JobStatus], default=None)
    queue_list.add_argument("--limit", type=int, default=50)
    queue_list.set_defaults(func=_cmd_queue_list)

    queue_process = queue_subparsers.add_parser("process", help="Process pending jobs now")
    queue_process.add_argument("--limit", type=int, default=None)
    queue_process.add_argument("--worker-id", default=os.environ.get("HOSTNAME", "cli"))
    queue_process.set_defaults(func=_cmd_queue_process)

    queue_reset = queue_subparsers.add_parser("reset", help="Reset a failed job")
    queue_reset.add_argument("job_id")
    queue_reset.set_defaults(func=_cmd_queue_reset)

    queue_stuck = queue_subparsers.add_parser("reset-stuck", help="Requeue stuck jobs")
    queue_stuck.set_defaults(func=_cmd_queue_reset_stuck)

    stories_parser = subparsers.add_parser("stories", help="Story review")
    stories_subparsers = stories_parser.add_subparsers(dest="story_command", required=True)

    stories_list = stories_subparsers.add_parser("list", help="List stories")
    stories_list.add_argument("--status", choices=[s.value for s in StoryStatus], default=None)
    stories_list.add_argument("--limit", type=int, default=100)
    stories_list.set_defaults(func=_cmd_stories_list)

    for name in _STORY_ACTIONS:
        story_action = stories_subparsers.add_parser(name, help=f"{name.capitalize()} a story")
        story_action.add_argument("story_id")
        story_action.set_defaults(func=_cmd_stories_action)

    edit_slide = stories_subparsers.add_parser("edit-slide", help="Replace a slide's content")
    edit_slide.add_argument("story_id")
    edit_slide.add_argument("slide_number", type=int)
    edit_slide.add_argument("content")
    edit_slide.set_defaults(func=_cmd_stories_edit_slide)

    exports_parser = subparsers.add_parser("exports", help="Asset exports")
    exports_subparsers = exports_parser.add_subparsers(dest="exports_command", required=True)

    exports_start = exports_subparsers.add_parser("start", help="Start asset generation")
    exports_start.add_argument("story_id")
    exports_start.set_defaults(func=_cmd_exports_start)

    exports_retry = exports_subparsers.add_parser("retry", help="Retry a failed export")
    exports_retry.add_argument("export_id")
    exports_retry.set_defaults(func=_cmd_exports_retry)

    exports_report = exports_subparsers.add_parser("report", help="Apply a generator report")
    exports_report.add_argument("export_id")
    exports_report.add_argument("--file", required=True)
    exports_report.set_defaults(func=_cmd_exports_report)

    pipeline_parser = subparsers.add_parser("pipeline", help="Pipeline overview")
    pipeline_subparsers = pipeline_parser.add_subparsers(dest="pipeline_command", required=True)
    pipeline_counts = pipeline_subparsers.add_parser("counts", help="Status counts per entity")
    pipeline_counts.set_defaults(func=_cmd_pipeline_counts)

    config_parser = subparsers.add_parser("config", help="Runtime configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    config_show = config_subparsers.add_parser("show", help="Show the effective config")
    config_show.set_defaults(func=_cmd_config_show)
    config_set = config_subparsers.add_parser("set", help="Replace runtime overrides")
    config_set.add_argument("--file", required=True)
    config_set.set_defaults(func=_cmd_config_set)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
