import threading
import time
from dataclasses import replace

import pytest

from storydesk.bus import (
    PipelineCountsObserver,
    ReconciliationBus,
    SourceHealthObserver,
    build_bus,
    notify,
)
from storydesk.intake import IntakeService
from storydesk.services.sources_service import register_source
from storydesk.storage import (
    get_source,
    list_health_alerts,
    set_source_health_tier,
    upsert_source,
)
from storydesk.utils import utc_now_iso_offset


def test_events_coalesce_per_entity():
    bus = ReconciliationBus()
    seen = []
    bus.subscribe(seen.append)

    bus.publish("story", "story_1", "approve", source_id="src-1")
    bus.publish("story", "story_1", "publish")
    bus.publish("article", "art_1", "discarded")

    assert bus.pending_count == 2
    assert bus.flush() == 2
    story_event = next(event for event in seen if event.entity == "story")
    assert story_event.action == "publish"
    assert story_event.source_id == "src-1"
    assert bus.pending_count == 0


def test_entity_filter_and_unsubscribe():
    bus = ReconciliationBus()
    stories = []
    unsubscribe = bus.subscribe(stories.append, entities=["story"])
    bus.publish("article", "art_1", "ingested")
    bus.publish("story", "story_1", "created")
    bus.flush()
    assert [event.entity for event in stories] == ["story"]

    unsubscribe()
    bus.publish("story", "story_2", "created")
    bus.flush()
    assert len(stories) == 1


def test_subscriber_errors_are_isolated():
    bus = ReconciliationBus()
    seen = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.publish("queue_job", "job_1", "failed")

    assert bus.flush() == 1
    assert len(seen) == 1


def test_unknown_entity_rejected_and_notify_tolerates_it():
    bus = ReconciliationBus()
    with pytest.raises(ValueError):
        bus.publish("widget", "w1", "changed")
    notify(bus, "widget", "w1", "changed")
    notify(None, "story", "story_1", "created")
    assert bus.pending_count == 0


def test_debounced_bus_flushes_on_timer():
    bus = ReconciliationBus(debounce_seconds=0.05)
    delivered = threading.Event()
    bus.subscribe(lambda event: delivered.set())
    bus.publish("source", "src-1", "scraped")
    assert delivered.wait(timeout=2)
    bus.close()


def test_observers_refresh_health_and_counts(conn, config):
    bus = ReconciliationBus()
    health = SourceHealthObserver(conn, config)
    counts = PipelineCountsObserver(conn)
    bus.subscribe(health)
    bus.subscribe(counts)
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"}, bus=bus)
    IntakeService(conn, config, bus).ingest_candidates(
        [
            {
                "source_id": "src-1",
                "title": "Harbour reopens",
                "content_quality_score": 90,
                "regional_relevance_score": 90,
            }
        ]
    )

    bus.flush()

    assert "src-1" in health.refreshed
    assert get_source(conn, "src-1").health_tier == "reconnecting"
    assert counts.counts["articles"]["new"] == 1
    assert counts.refreshes >= 2


def test_debounced_delivery_does_not_join_open_transaction(conn, config):
    config = replace(
        config, reconciliation=replace(config.reconciliation, debounce_seconds=0.05)
    )
    upsert_source(
        conn,
        {
            "id": "src-1",
            "name": "Coastal Herald",
            "success_rate": 90,
            "articles_scraped": 20,
            "last_scraped_at": utc_now_iso_offset(seconds=-45 * 86400),
        },
    )
    set_source_health_tier(conn, "src-1", "productive")
    bus = build_bus(conn, config)
    delivered = threading.Event()
    bus.subscribe(lambda event: delivered.set())

    bus.publish("source", "src-1", "scraped")
    with pytest.raises(RuntimeError):
        with conn.transaction():
            conn.execute("UPDATE sources SET name = ? WHERE id = ?", ("Renamed", "src-1"))
            time.sleep(0.3)
            raise RuntimeError("unrelated writer failed")

    assert delivered.wait(timeout=10)
    bus.close()
    source = get_source(conn, "src-1")
    assert source.name == "Coastal Herald"
    assert source.health_tier == "reconnecting"
    assert len(list_health_alerts(conn, "src-1")) == 1
