from dataclasses import replace

from storydesk.intake import IntakeService, classify_article, title_similarity
from storydesk.models import ArticleStatus, IntakeDecision, JobStatus
from storydesk.services.sources_service import register_source
from storydesk.storage import get_article, get_open_job_for_article


def _seed(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald", "url": "https://herald.example"})
    return IntakeService(conn, config)


def _candidate(title, quality=80, relevance=80, url=None):
    return {
        "source_id": "src-1",
        "title": title,
        "body": f"{title} body text",
        "url": url,
        "content_quality_score": quality,
        "regional_relevance_score": relevance,
    }


def test_classify_rules_in_order(config):
    thresholds = config.intake
    low_both = {"content_quality_score": 10, "regional_relevance_score": 10}
    result = classify_article(low_both, thresholds)
    assert result.decision == IntakeDecision.DISCARD
    assert result.reason == "insufficient_content_quality"

    low_relevance = {"content_quality_score": 90, "regional_relevance_score": 10}
    assert classify_article(low_relevance, thresholds).reason == "insufficient_regional_relevance"

    good = {"content_quality_score": 90, "regional_relevance_score": 90}
    assert classify_article(good, thresholds).decision == IntakeDecision.ACCEPT
    duplicate = classify_article(good, thresholds, duplicate_of="art_1")
    assert duplicate.reason == "duplicate"
    assert duplicate.duplicate_of == "art_1"


def test_missing_scores_are_discarded(config):
    result = classify_article({}, config.intake)
    assert result.decision == IntakeDecision.DISCARD


def test_borderline_scores_are_held(config):
    thresholds = replace(config.intake, review_margin=10.0)
    held = classify_article({"content_quality_score": 55, "regional_relevance_score": 90}, thresholds)
    assert held.decision == IntakeDecision.HOLD
    accepted = classify_article(
        {"content_quality_score": 70, "regional_relevance_score": 90}, thresholds
    )
    assert accepted.decision == IntakeDecision.ACCEPT


def test_accept_enqueues_generation_job(conn, config):
    service = _seed(conn, config)
    (article,) = service.ingest_candidates([_candidate("Harbour reopens after storm")])

    result = service.classify(article.id)

    assert result.ok
    assert result.details["decision"] == "accept"
    assert get_article(conn, article.id).processing_status == ArticleStatus.PROCESSING
    job = get_open_job_for_article(conn, article.id)
    assert job is not None
    assert job.status == JobStatus.PENDING
    assert job.id == result.details["job_id"]


def test_discard_records_reason(conn, config):
    service = _seed(conn, config)
    (article,) = service.ingest_candidates([_candidate("Celebrity gossip", quality=20)])

    service.classify(article.id)

    stored = get_article(conn, article.id)
    assert stored.processing_status == ArticleStatus.DISCARDED
    assert stored.rejection_reason.value == "insufficient_content_quality"
    assert get_open_job_for_article(conn, article.id) is None


def test_near_duplicate_is_discarded(conn, config):
    service = _seed(conn, config)
    service.ingest_candidates(
        [
            _candidate("Council approves new harbour budget", url="https://herald.example/a"),
            _candidate("Council approves the new harbour budget", url="https://herald.example/b"),
        ]
    )

    totals = service.classify_pending()

    assert totals == {"accept": 1, "hold": 0, "discard": 1}


def test_restore_reclassifies(conn, config):
    service = _seed(conn, config)
    (article,) = service.ingest_candidates([_candidate("Ferry timetable changes")])
    assert service.discard_article(article.id).ok
    assert get_article(conn, article.id).rejection_reason.value == "operator_discard"

    result = service.restore_article(article.id)

    assert result.ok
    assert result.details["restored"] is True
    assert result.details["decision"] == "accept"
    assert get_article(conn, article.id).processing_status == ArticleStatus.PROCESSING


def test_restore_rejects_processing_article(conn, config):
    service = _seed(conn, config)
    (article,) = service.ingest_candidates([_candidate("Bridge works start")])
    service.classify(article.id)

    result = service.restore_article(article.id)

    assert not result.ok
    assert result.code == "not_restorable"


def test_discard_twice_is_no_change(conn, config):
    service = _seed(conn, config)
    (article,) = service.ingest_candidates([_candidate("Library hours")])
    assert service.discard_article(article.id).changed
    second = service.discard_article(article.id)
    assert second.ok
    assert not second.changed


def test_title_similarity_ignores_stopwords():
    assert title_similarity("The harbour budget", "harbour budget") == 1.0
    assert title_similarity("", "harbour") == 0.0


def test_restore_reports_article_removed_mid_restore(conn, config, monkeypatch):
    service = _seed(conn, config)
    (article,) = service.ingest_candidates([_candidate("Pier closed")])
    service.discard_article(article.id)
    reads = []

    def vanishing(connection, article_id):
        reads.append(article_id)
        return get_article(connection, article_id) if len(reads) == 1 else None

    monkeypatch.setattr("storydesk.intake.get_article", vanishing)

    result = service.restore_article(article.id)

    assert not result.ok
    assert result.code == "article_not_found"
