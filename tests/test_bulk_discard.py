import pytest

from storydesk.errors import InputError
from storydesk.intake import IntakeService
from storydesk.models import ArticleStatus, BulkDiscardFilter
from storydesk.services.sources_service import register_source
from storydesk.storage import list_articles


def _seed_articles(conn, config):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})
    register_source(conn, {"id": "src-2", "name": "Valley Post"})
    service = IntakeService(conn, config)
    service.ingest_candidates(
        [
            {
                "source_id": "src-1",
                "title": "Sponsored: best casino bonuses",
                "url": "https://ads.example/1",
                "content_quality_score": 30,
                "regional_relevance_score": 40,
            },
            {
                "source_id": "src-1",
                "title": "Harbour budget approved",
                "url": "https://herald.example/budget",
                "content_quality_score": 85,
                "regional_relevance_score": 90,
            },
            {
                "source_id": "src-2",
                "title": "Weekly roundup",
                "url": "https://www.spam.example/roundup",
                "content_quality_score": 20,
                "regional_relevance_score": 10,
            },
            {
                "source_id": "src-2",
                "title": "Casino opens downtown",
                "url": "https://valley.example/casino",
                "content_quality_score": 75,
                "regional_relevance_score": 80,
            },
        ]
    )
    return service


def test_preview_matches_apply(conn, config):
    service = _seed_articles(conn, config)
    bulk_filter = BulkDiscardFilter(keywords=["casino"], domains=["spam.example"])

    preview = service.preview_bulk_discard(bulk_filter)
    applied = service.apply_bulk_discard(bulk_filter)

    assert preview == 3
    assert applied == preview
    discarded = list_articles(conn, statuses=[ArticleStatus.DISCARDED])
    assert {article.title for article in discarded} == {
        "Sponsored: best casino bonuses",
        "Weekly roundup",
        "Casino opens downtown",
    }
    assert all(article.rejection_reason.value == "operator_discard" for article in discarded)


def test_score_ceiling_narrows_matches(conn, config):
    service = _seed_articles(conn, config)
    bulk_filter = BulkDiscardFilter(keywords=["casino"], max_quality_score=50)

    assert service.preview_bulk_discard(bulk_filter) == 1
    assert service.apply_bulk_discard(bulk_filter) == 1


def test_source_scope(conn, config):
    service = _seed_articles(conn, config)
    bulk_filter = BulkDiscardFilter(max_relevance_score=50, source_id="src-2")

    assert service.preview_bulk_discard(bulk_filter) == 1


def test_only_new_articles_are_candidates(conn, config):
    service = _seed_articles(conn, config)
    service.classify_pending()

    assert service.preview_bulk_discard(BulkDiscardFilter(keywords=["casino"])) == 0


def test_empty_filter_is_rejected(conn, config):
    service = _seed_articles(conn, config)
    with pytest.raises(InputError):
        service.preview_bulk_discard(BulkDiscardFilter())
