from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from .config import HealthCutoffs
from .models import HealthTier, SourceHealth
from .utils import days_between, utc_now

DEFAULT_HEALTH_CUTOFFS = HealthCutoffs()

# (label, rationale) per tier. Operators pick a remediation from the rationale.
TIER_TEXT: dict[str, tuple[str, str]] = {
    "gathering_now": ("Gathering", "Currently gathering articles from this source"),
    HealthTier.INACTIVE.value: ("Inactive", "Source has been manually deactivated"),
    HealthTier.PRODUCTIVE.value: (
        "Productive",
        "Consistently finding and storing relevant articles",
    ),
    HealthTier.FILTERED.value: (
        "Active but Filtered",
        "Source is responding but articles are being filtered for relevance",
    ),
    HealthTier.ACTIVE.value: ("Active", "Regularly finding relevant articles"),
    HealthTier.TECHNICAL_ISSUES.value: (
        "Technical Issues",
        "Having difficulty connecting to or parsing this source",
    ),
    HealthTier.IDLE.value: ("Idle", "No recent activity - may need attention"),
    HealthTier.RECONNECTING.value: (
        "Trying to reconnect",
        "Unable to connect or gather articles",
    ),
    "gathering_new": ("Gathering", "Starting to gather articles from this source"),
}


def classify_source(
    source: Any,
    is_currently_gathering: bool = False,
    now: datetime | None = None,
    cutoffs: HealthCutoffs = DEFAULT_HEALTH_CUTOFFS,
) -> SourceHealth:
    """Map a source's operational metrics to a health tier.

    Rules are checked in priority order and the first match wins. ``source``
    may be a ``Source`` or a plain mapping; missing numbers count as zero and
    a missing ``last_scraped_at`` means the source was never scraped.
    """
    now = now or utc_now()
    days = days_between(_field(source, "last_scraped_at"), now)

    if is_currently_gathering:
        return _result("gathering_now", HealthTier.GATHERING, days)
    if not _field(source, "is_active", True):
        return _result(HealthTier.INACTIVE.value, HealthTier.INACTIVE, days)

    success_rate = _number(_field(source, "success_rate"))
    articles = _number(_field(source, "articles_scraped"))
    last_error = _field(source, "last_error")
    recent = days <= cutoffs.recent_activity_days

    if (
        success_rate >= cutoffs.productive_min_success_rate
        and recent
        and articles >= cutoffs.productive_min_articles
    ):
        tier = HealthTier.PRODUCTIVE
    elif (
        success_rate >= cutoffs.filtered_min_success_rate
        and recent
        and articles < cutoffs.filtered_max_articles
    ):
        tier = HealthTier.FILTERED
    elif (
        success_rate >= cutoffs.active_min_success_rate
        and recent
        and articles >= cutoffs.active_min_articles
    ):
        tier = HealthTier.ACTIVE
    elif success_rate < cutoffs.technical_issues_below_success_rate and recent:
        tier = HealthTier.TECHNICAL_ISSUES
    elif not recent and days < cutoffs.idle_max_days:
        tier = HealthTier.IDLE
    elif days >= cutoffs.idle_max_days or (
        last_error and success_rate < cutoffs.reconnecting_error_success_rate
    ):
        tier = HealthTier.RECONNECTING
    else:
        return _result("gathering_new", HealthTier.GATHERING, days)
    return _result(tier.value, tier, days)


def _result(text_key: str, tier: HealthTier, days: float) -> SourceHealth:
    label, rationale = TIER_TEXT[text_key]
    return SourceHealth(tier=tier, label=label, rationale=rationale, days_since_last_scrape=days)


def _field(source: Any, name: str, default: Any = None) -> Any:
    if isinstance(source, dict):
        value = source.get(name, default)
    else:
        value = getattr(source, name, default)
    return default if value is None else value


def _number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number


def health_to_dict(health: SourceHealth) -> dict[str, object]:
    days = health.days_since_last_scrape
    return {
        "tier": health.tier.value,
        "label": health.label,
        "rationale": health.rationale,
        "days_since_last_scrape": None if math.isinf(days) else int(days),
    }
