from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .bus import ReconciliationBus, notify
from .config import Config, IntakeConfig
from .errors import ActionResult, InputError, failure, no_change, success
from .models import (
    Article,
    ArticleStatus,
    BulkDiscardFilter,
    IntakeDecision,
    IntakeResult,
    RejectionReason,
)
from .storage import (
    get_article,
    get_open_job_for_article,
    get_source,
    insert_article,
    insert_job,
    list_articles,
    list_dedup_candidates,
    update_article_status,
)
from .utils import domain_of, log_event, utc_now_iso_offset

logger = logging.getLogger("storydesk.intake")

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = {"the", "a", "an", "and", "or", "of", "in", "on", "for", "to", "with", "at", "by"}


def classify_article(
    article: Any,
    thresholds: IntakeConfig,
    duplicate_of: str | None = None,
) -> IntakeResult:
    quality = _score(article, "content_quality_score")
    relevance = _score(article, "regional_relevance_score")
    if quality < thresholds.quality_threshold:
        return IntakeResult(
            IntakeDecision.DISCARD, RejectionReason.INSUFFICIENT_CONTENT_QUALITY.value
        )
    if relevance < thresholds.relevance_threshold:
        return IntakeResult(
            IntakeDecision.DISCARD, RejectionReason.INSUFFICIENT_REGIONAL_RELEVANCE.value
        )
    if duplicate_of:
        return IntakeResult(
            IntakeDecision.DISCARD, RejectionReason.DUPLICATE.value, duplicate_of=duplicate_of
        )
    margin = thresholds.review_margin
    if margin > 0 and (
        quality < thresholds.quality_threshold + margin
        or relevance < thresholds.relevance_threshold + margin
    ):
        return IntakeResult(IntakeDecision.HOLD, "borderline_scores")
    return IntakeResult(IntakeDecision.ACCEPT)


def _score(article: Any, name: str) -> float:
    value = article.get(name) if isinstance(article, dict) else getattr(article, name, None)
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def normalize_title(title: str | None) -> str:
    return " ".join(_title_tokens(title))


def _title_tokens(title: str | None) -> list[str]:
    return [token for token in _TOKEN_RE.findall((title or "").lower()) if token not in _STOPWORDS]


def title_similarity(left: str | None, right: str | None) -> float:
    left_tokens = set(_title_tokens(left))
    right_tokens = set(_title_tokens(right))
    if not left_tokens or not right_tokens:
        return 0.0
    return len(left_tokens & right_tokens) / len(left_tokens | right_tokens)


def find_near_duplicate(conn: Any, article: Article, config: IntakeConfig) -> str | None:
    since = utc_now_iso_offset(seconds=-config.duplicate_window_days * 86400)
    title_key = normalize_title(article.title)
    domain = domain_of(article.url)
    url = (article.url or "").strip().rstrip("/")
    for candidate in list_dedup_candidates(conn, since, article.id):
        if candidate.created_at > article.created_at:
            continue
        if url and url == (candidate.url or "").strip().rstrip("/"):
            return candidate.id
        if title_key and title_key == normalize_title(candidate.title):
            return candidate.id
        if (
            domain
            and domain == domain_of(candidate.url)
            and title_similarity(article.title, candidate.title) >= config.title_similarity
        ):
            return candidate.id
    return None


def matches_bulk_filter(article: Article, bulk_filter: BulkDiscardFilter) -> bool:
    """Shared predicate for bulk discard preview and apply."""
    if article.processing_status != ArticleStatus.NEW:
        return False
    if bulk_filter.source_id and article.source_id != bulk_filter.source_id:
        return False
    keywords = [k.strip().lower() for k in bulk_filter.keywords if k.strip()]
    domains = [d.strip().lower() for d in bulk_filter.domains if d.strip()]
    if keywords or domains:
        text = f"{article.title} {article.body or ''}".lower()
        keyword_hit = any(keyword in text for keyword in keywords)
        host = domain_of(article.url)
        domain_hit = bool(host) and any(domain in host for domain in domains)
        if not (keyword_hit or domain_hit):
            return False
    if bulk_filter.max_quality_score is not None:
        if _score(article, "content_quality_score") > bulk_filter.max_quality_score:
            return False
    if bulk_filter.max_relevance_score is not None:
        if _score(article, "regional_relevance_score") > bulk_filter.max_relevance_score:
            return False
    return True


def parse_candidate(payload: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise InputError("article candidate must be an object")
    title = payload.get("title")
    if not isinstance(title, str) or not title.strip():
        raise InputError("title is required")
    source_id = payload.get("source_id")
    if not isinstance(source_id, str) or not source_id.strip():
        raise InputError("source_id is required")
    body = payload.get("body")
    if body is not None and not isinstance(body, str):
        raise InputError("body must be a string")
    url = payload.get("url")
    if url is not None and not isinstance(url, str):
        raise InputError("url must be a string")
    scores: dict[str, float | None] = {}
    for key in ("regional_relevance_score", "content_quality_score"):
        value = payload.get(key)
        if value is None:
            scores[key] = None
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InputError(f"{key} must be a number")
        if not 0 <= value <= 100:
            raise InputError(f"{key} must be between 0 and 100")
        scores[key] = float(value)
    scraped_at = payload.get("scraped_at")
    if scraped_at is not None and not isinstance(scraped_at, str):
        raise InputError("scraped_at must be an ISO timestamp string")
    return {
        "title": title.strip(),
        "body": body,
        "url": url,
        "source_id": source_id.strip(),
        "scraped_at": scraped_at,
        **scores,
    }


class IntakeService:
    def __init__(self, conn: Any, config: Config, bus: ReconciliationBus | None = None) -> None:
        self.conn = conn
        self.config = config
        self.bus = bus

    def ingest_candidates(self, candidates: Iterable[dict[str, Any]]) -> list[Article]:
        parsed = [parse_candidate(candidate) for candidate in candidates]
        for item in parsed:
            if get_source(self.conn, item["source_id"]) is None:
                raise InputError(f"unknown source_id: {item['source_id']}")
        with self.conn.transaction():
            articles = [insert_article(self.conn, item) for item in parsed]
        for article in articles:
            notify(self.bus, "article", article.id, "ingested", source_id=article.source_id)
        log_event(logger, logging.INFO, "articles_ingested", count=len(articles))
        return articles

    def classify(self, article_id: str) -> ActionResult:
        article = get_article(self.conn, article_id)
        if article is None:
            return failure("article_not_found", article_id=article_id)
        if article.processing_status != ArticleStatus.NEW:
            return failure("illegal_transition", article_id=article_id, status=article.processing_status.value)
        return self._apply_decision(article)

    def classify_pending(self) -> dict[str, int]:
        totals = {decision.value: 0 for decision in IntakeDecision}
        for article in list_articles(self.conn, statuses=[ArticleStatus.NEW]):
            result = self._apply_decision(article)
            decision = result.details.get("decision")
            if result.ok and decision in totals:
                totals[decision] += 1
        log_event(logger, logging.INFO, "intake_classified", **totals)
        return totals

    def _apply_decision(self, article: Article) -> ActionResult:
        duplicate_of = None
        quality = _score(article, "content_quality_score")
        relevance = _score(article, "regional_relevance_score")
        if (
            quality >= self.config.intake.quality_threshold
            and relevance >= self.config.intake.relevance_threshold
        ):
            duplicate_of = find_near_duplicate(self.conn, article, self.config.intake)
        result = classify_article(article, self.config.intake, duplicate_of=duplicate_of)
        details: dict[str, Any] = {
            "article_id": article.id,
            "decision": result.decision.value,
            "reason": result.reason,
        }
        if result.duplicate_of:
            details["duplicate_of"] = result.duplicate_of
        if result.decision == IntakeDecision.HOLD:
            return success(code=result.reason or "ok", changed=False, **details)
        with self.conn.transaction():
            if result.decision == IntakeDecision.DISCARD:
                changed = update_article_status(
                    self.conn,
                    article.id,
                    ArticleStatus.DISCARDED,
                    RejectionReason(result.reason),
                    expected=[ArticleStatus.NEW],
                )
            else:
                changed = update_article_status(
                    self.conn,
                    article.id,
                    ArticleStatus.PROCESSING,
                    expected=[ArticleStatus.NEW],
                )
                if changed and get_open_job_for_article(self.conn, article.id) is None:
                    details["job_id"] = insert_job(self.conn, article.id).id
        if not changed:
            return failure("illegal_transition", **details)
        notify(self.bus, "article", article.id, result.decision.value, source_id=article.source_id)
        if "job_id" in details:
            notify(self.bus, "queue_job", details["job_id"], "enqueued", source_id=article.source_id)
        return success(code=result.reason or "ok", **details)

    def restore_article(self, article_id: str) -> ActionResult:
        article = get_article(self.conn, article_id)
        if article is None:
            return failure("article_not_found", article_id=article_id)
        if article.processing_status not in (ArticleStatus.DISCARDED, ArticleStatus.NEW):
            return failure(
                "not_restorable", article_id=article_id, status=article.processing_status.value
            )
        with self.conn.transaction():
            update_article_status(
                self.conn,
                article_id,
                ArticleStatus.NEW,
                None,
                expected=[ArticleStatus.DISCARDED, ArticleStatus.NEW],
            )
        log_event(logger, logging.INFO, "article_restored", article_id=article_id)
        notify(self.bus, "article", article_id, "restored", source_id=article.source_id)
        restored = get_article(self.conn, article_id)
        if restored is None:
            return failure("article_not_found", article_id=article_id)
        result = self._apply_decision(restored)
        details = dict(result.details)
        details["restored"] = True
        if not result.ok:
            return failure(result.code, **details)
        return success(code=result.code, **details)

    def discard_article(self, article_id: str) -> ActionResult:
        article = get_article(self.conn, article_id)
        if article is None:
            return failure("article_not_found", article_id=article_id)
        if article.processing_status == ArticleStatus.DISCARDED:
            return no_change(article_id=article_id)
        if article.processing_status != ArticleStatus.NEW:
            return failure(
                "illegal_transition", article_id=article_id, status=article.processing_status.value
            )
        with self.conn.transaction():
            changed = update_article_status(
                self.conn,
                article_id,
                ArticleStatus.DISCARDED,
                RejectionReason.OPERATOR_DISCARD,
                expected=[ArticleStatus.NEW],
            )
        if not changed:
            return failure("illegal_transition", article_id=article_id)
        notify(self.bus, "article", article_id, "discarded", source_id=article.source_id)
        return success(article_id=article_id)

    def _bulk_candidates(self, bulk_filter: BulkDiscardFilter) -> list[Article]:
        if bulk_filter.is_empty():
            raise InputError("provide keywords, domains or a score ceiling")
        candidates = list_articles(
            self.conn, statuses=[ArticleStatus.NEW], source_id=bulk_filter.source_id
        )
        return [article for article in candidates if matches_bulk_filter(article, bulk_filter)]

    def preview_bulk_discard(self, bulk_filter: BulkDiscardFilter) -> int:
        return len(self._bulk_candidates(bulk_filter))

    def apply_bulk_discard(self, bulk_filter: BulkDiscardFilter) -> int:
        discarded: list[Article] = []
        with self.conn.transaction():
            for article in self._bulk_candidates(bulk_filter):
                if update_article_status(
                    self.conn,
                    article.id,
                    ArticleStatus.DISCARDED,
                    RejectionReason.OPERATOR_DISCARD,
                    expected=[ArticleStatus.NEW],
                ):
                    discarded.append(article)
        for article in discarded:
            notify(self.bus, "article", article.id, "discarded", source_id=article.source_id)
        log_event(logger, logging.INFO, "bulk_discard_applied", count=len(discarded))
        return len(discarded)
