from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from storydesk.errors import InputError
from storydesk.models import HealthTier, ScrapeRunResult
from storydesk.services.sources_service import (
    list_source_health,
    parse_scrape_run,
    record_scrape_run,
    refresh_source_health,
    register_source,
    set_source_active,
    start_scrape,
    trigger_manual_scrape,
)
from storydesk.storage import get_source, list_health_alerts, list_scrape_requests


def _run(stored=4, errors=None):
    return ScrapeRunResult(
        articles_found=stored + 2,
        articles_stored=stored,
        duplicates_detected=1,
        articles_discarded=1,
        errors=list(errors or []),
    )


def test_parse_scrape_run_validates():
    run = parse_scrape_run(
        {"articlesFound": 5, "articlesStored": 3, "duplicatesDetected": 1, "errors": ["timeout"]}
    )
    assert run.articles_stored == 3
    assert run.articles_discarded == 0
    assert run.errors == ["timeout"]
    with pytest.raises(InputError):
        parse_scrape_run({"articlesFound": -1})
    with pytest.raises(InputError):
        parse_scrape_run({"errors": "timeout"})


def test_record_run_updates_metrics(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})

    record_scrape_run(conn, config, "src-1", _run(stored=4))
    record_scrape_run(conn, config, "src-1", _run(stored=2, errors=["HTTP 503"]))

    source = get_source(conn, "src-1")
    assert source.articles_scraped == 6
    assert source.success_rate == 50.0
    assert source.last_error == "HTTP 503"
    assert source.last_scraped_at is not None


def test_manual_scrape_blocks_duplicates(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})

    first = trigger_manual_scrape(conn, "src-1")
    second = trigger_manual_scrape(conn, "src-1")

    assert first.ok
    assert second.code == "already_in_progress"
    assert len(list_scrape_requests(conn)) == 1


def test_gathering_source_reports_gathering(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})
    start_scrape(conn, "src-1")

    rows = list_source_health(conn, config)

    assert rows[0]["tier"] == "gathering"
    assert rows[0]["label"] == "Gathering"

    record_scrape_run(conn, config, "src-1", _run())
    assert list_source_health(conn, config)[0]["tier"] != "gathering"


def test_reconnecting_raises_alert_and_requests_rescrape(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})
    now = datetime.now(tz=timezone.utc) + timedelta(days=40)
    record_scrape_run(conn, config, "src-1", _run())

    health = refresh_source_health(conn, config, "src-1", now=now)

    assert health.tier == HealthTier.RECONNECTING
    alerts = list_health_alerts(conn, source_id="src-1")
    assert [alert["alert_type"] for alert in alerts] == ["reconnecting"]
    requests = list_scrape_requests(conn)
    assert requests[0]["reason"] == "auto:reconnecting"

    refresh_source_health(conn, config, "src-1", now=now)
    assert len(list_health_alerts(conn, source_id="src-1")) == 1


def test_auto_rescrape_can_be_disabled(conn, config):
    config = replace(config, health=replace(config.health, auto_rescrape=False))
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})

    refresh_source_health(conn, config, "src-1")

    assert list_scrape_requests(conn) == []


def test_deactivate_source(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})

    assert set_source_active(conn, "src-1", False).changed
    assert not set_source_active(conn, "src-1", False).changed
    assert refresh_source_health(conn, config, "src-1").tier == HealthTier.INACTIVE
    assert set_source_active(conn, "missing", True).code == "source_not_found"
