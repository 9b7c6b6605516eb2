from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..bus import ReconciliationBus, notify
from ..config import Config
from ..errors import ActionResult, InputError, failure, no_change, success
from ..health import classify_source, health_to_dict
from ..models import HealthTier, ScrapeRunResult, Source, SourceHealth
from ..storage import (
    close_scrape_requests,
    get_open_scrape_request_id,
    get_source,
    insert_scrape_request,
    insert_source_run,
    is_source_gathering,
    list_recent_run_error_counts,
    list_sources,
    mark_scrape_running,
    record_health_alert,
    set_source_active as _set_source_active,
    set_source_health_tier,
    update_source_metrics,
    upsert_source,
)
from ..utils import log_event, utc_now_iso

logger = logging.getLogger("storydesk.sources")


def register_source(conn: Any, payload: dict[str, Any], bus: ReconciliationBus | None = None) -> Source:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise InputError("name is required")
    with conn.transaction():
        source = upsert_source(
            conn,
            {
                "id": payload.get("id"),
                "name": name,
                "url": payload.get("url"),
                "is_active": bool(payload.get("is_active", True)),
            },
        )
    notify(bus, "source", source.id, "registered")
    return source


def set_source_active(
    conn: Any, source_id: str, active: bool, bus: ReconciliationBus | None = None
) -> ActionResult:
    source = get_source(conn, source_id)
    if source is None:
        return failure("source_not_found", source_id=source_id)
    if source.is_active == active:
        return no_change(source_id=source_id, is_active=active)
    with conn.transaction():
        _set_source_active(conn, source_id, active)
    log_event(logger, logging.INFO, "source_active_changed", source_id=source_id, active=active)
    notify(bus, "source", source_id, "activated" if active else "deactivated")
    return success(source_id=source_id, is_active=active)


def parse_scrape_run(payload: dict[str, Any]) -> ScrapeRunResult:
    if not isinstance(payload, dict):
        raise InputError("scrape run must be an object")
    counts: dict[str, int] = {}
    for key in ("articlesFound", "articlesStored", "duplicatesDetected", "articlesDiscarded"):
        value = payload.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InputError(f"{key} must be a non-negative integer")
        counts[key] = value
    errors = payload.get("errors", [])
    if not isinstance(errors, list) or not all(isinstance(item, str) for item in errors):
        raise InputError("errors must be a list of strings")
    return ScrapeRunResult(
        articles_found=counts["articlesFound"],
        articles_stored=counts["articlesStored"],
        duplicates_detected=counts["duplicatesDetected"],
        articles_discarded=counts["articlesDiscarded"],
        errors=list(errors),
    )


def start_scrape(conn: Any, source_id: str, bus: ReconciliationBus | None = None) -> ActionResult:
    """Called by the scraper when it picks up a requested run."""
    if get_source(conn, source_id) is None:
        return failure("source_not_found", source_id=source_id)
    with conn.transaction():
        if not mark_scrape_running(conn, source_id):
            insert_scrape_request(conn, source_id, "scraper")
            mark_scrape_running(conn, source_id)
    notify(bus, "source", source_id, "gathering")
    return success(source_id=source_id)


def record_scrape_run(
    conn: Any,
    config: Config,
    source_id: str,
    run: ScrapeRunResult,
    bus: ReconciliationBus | None = None,
) -> ActionResult:
    source = get_source(conn, source_id)
    if source is None:
        return failure("source_not_found", source_id=source_id)
    now = utc_now_iso()
    with conn.transaction():
        insert_source_run(
            conn,
            source_id,
            articles_found=run.articles_found,
            articles_stored=run.articles_stored,
            duplicates_detected=run.duplicates_detected,
            articles_discarded=run.articles_discarded,
            errors=run.errors,
            created_at=now,
        )
        error_counts = list_recent_run_error_counts(
            conn, source_id, config.health.success_window_runs
        )
        ok_runs = sum(1 for count in error_counts if count == 0)
        success_rate = round(100.0 * ok_runs / len(error_counts), 2) if error_counts else 0.0
        articles_scraped = int(source.articles_scraped or 0) + run.articles_stored
        last_error = run.errors[-1] if run.errors else None
        update_source_metrics(conn, source_id, success_rate, articles_scraped, now, last_error)
        close_scrape_requests(conn, source_id)
    log_event(
        logger,
        logging.INFO,
        "scrape_run_recorded",
        source_id=source_id,
        stored=run.articles_stored,
        errors=len(run.errors),
        success_rate=success_rate,
    )
    notify(bus, "source", source_id, "scraped")
    return success(
        source_id=source_id,
        success_rate=success_rate,
        articles_scraped=articles_scraped,
    )


def trigger_manual_scrape(
    conn: Any, source_id: str, reason: str = "manual", bus: ReconciliationBus | None = None
) -> ActionResult:
    source = get_source(conn, source_id)
    if source is None:
        return failure("source_not_found", source_id=source_id)
    with conn.transaction():
        existing = get_open_scrape_request_id(conn, source_id)
        if existing:
            return failure("already_in_progress", source_id=source_id, request_id=existing)
        request_id = insert_scrape_request(conn, source_id, reason)
    log_event(logger, logging.INFO, "scrape_requested", source_id=source_id, reason=reason)
    notify(bus, "source", source_id, "scrape_requested")
    return success(source_id=source_id, request_id=request_id)


def refresh_source_health(
    conn: Any, config: Config, source_id: str, now: datetime | None = None
) -> SourceHealth | None:
    """Score a source, raise alerts on tier changes, and request a re-scrape
    when the source cannot be reached."""
    source = get_source(conn, source_id)
    if source is None:
        return None
    gathering = is_source_gathering(conn, source_id)
    health = classify_source(source, gathering, now=now, cutoffs=config.health.cutoffs)
    if gathering:
        return health
    tier = health.tier.value
    if tier == source.health_tier:
        return health
    with conn.transaction():
        set_source_health_tier(conn, source_id, tier)
        if tier in config.health.alert_tiers:
            record_health_alert(conn, source_id, tier, health.rationale)
            log_event(
                logger,
                logging.WARNING,
                "source_health_alert",
                source_id=source_id,
                tier=tier,
                previous=source.health_tier,
            )
        if (
            health.tier == HealthTier.RECONNECTING
            and config.health.auto_rescrape
            and get_open_scrape_request_id(conn, source_id) is None
        ):
            insert_scrape_request(conn, source_id, f"auto:{tier}")
            log_event(logger, logging.INFO, "scrape_requested", source_id=source_id, reason=tier)
    return health


def list_source_health(
    conn: Any, config: Config, now: datetime | None = None
) -> list[dict[str, object]]:
    rows = []
    for source in list_sources(conn):
        health = classify_source(
            source,
            is_source_gathering(conn, source.id),
            now=now,
            cutoffs=config.health.cutoffs,
        )
        row = {
            "id": source.id,
            "name": source.name,
            "url": source.url,
            "is_active": source.is_active,
            "success_rate": source.success_rate,
            "articles_scraped": source.articles_scraped,
            "last_scraped_at": source.last_scraped_at,
            "last_error": source.last_error,
        }
        row.update(health_to_dict(health))
        rows.append(row)
    return rows
