from datetime import datetime, timedelta, timezone

from storydesk.health import classify_source, health_to_dict
from storydesk.models import HealthTier

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


def _source(success_rate, articles, days_ago, is_active=True, last_error=None):
    last = None if days_ago is None else (NOW - timedelta(days=days_ago)).isoformat()
    return {
        "is_active": is_active,
        "success_rate": success_rate,
        "articles_scraped": articles,
        "last_scraped_at": last,
        "last_error": last_error,
    }


def test_productive_source():
    health = classify_source(_source(85, 10, 1), now=NOW)
    assert health.tier == HealthTier.PRODUCTIVE
    assert health.label == "Productive"
    assert health.days_since_last_scrape == 1


def test_filtered_source():
    health = classify_source(_source(72, 1, 2), now=NOW)
    assert health.tier == HealthTier.FILTERED
    assert health.label == "Active but Filtered"


def test_reconnecting_after_long_silence():
    health = classify_source(_source(10, 0, 45), now=NOW)
    assert health.tier == HealthTier.RECONNECTING
    assert health.rationale == "Unable to connect or gather articles"


def test_active_technical_and_idle():
    assert classify_source(_source(60, 4, 3), now=NOW).tier == HealthTier.ACTIVE
    assert classify_source(_source(30, 4, 3), now=NOW).tier == HealthTier.TECHNICAL_ISSUES
    assert classify_source(_source(90, 20, 12), now=NOW).tier == HealthTier.IDLE


def test_inactive_wins_over_good_metrics():
    health = classify_source(_source(100, 500, 0, is_active=False), now=NOW)
    assert health.tier == HealthTier.INACTIVE


def test_gathering_has_top_priority():
    health = classify_source(_source(100, 500, 0, is_active=False), True, now=NOW)
    assert health.tier == HealthTier.GATHERING
    assert health.rationale == "Currently gathering articles from this source"


def test_never_scraped_source_is_reconnecting():
    health = classify_source(_source(0, 0, None), now=NOW)
    assert health.tier == HealthTier.RECONNECTING
    assert health_to_dict(health)["days_since_last_scrape"] is None


def test_recent_source_with_middling_rate_falls_back_to_gathering():
    health = classify_source(_source(60, 1, 1), now=NOW)
    assert health.tier == HealthTier.GATHERING
    assert health.rationale == "Starting to gather articles from this source"


def test_missing_fields_count_as_zero():
    health = classify_source({"last_scraped_at": (NOW - timedelta(days=2)).isoformat()}, now=NOW)
    assert health.tier == HealthTier.TECHNICAL_ISSUES


def test_classification_is_deterministic():
    source = _source(72, 1, 2)
    results = {classify_source(source, now=NOW) for _ in range(5)}
    assert len(results) == 1
