from storydesk.assets import AssetTracker
from storydesk.bus import ReconciliationBus
from storydesk.intake import IntakeService
from storydesk.models import ArticleStatus, StoryStatus
from storydesk.queue import GenerationQueue
from storydesk.services.sources_service import register_source
from storydesk.stories import StoryController
from storydesk.storage import (
    get_article,
    get_export_for_story,
    get_open_job_for_article,
    get_story,
    list_jobs,
    list_slides,
)


def _draft_story(conn, config, slides=3):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})
    intake = IntakeService(conn, config)
    (article,) = intake.ingest_candidates(
        [
            {
                "source_id": "src-1",
                "title": "Harbour reopens after storm",
                "content_quality_score": 90,
                "regional_relevance_score": 90,
            }
        ]
    )
    intake.classify(article.id)
    queue = GenerationQueue(conn, config)
    job = queue.claim_next("worker-1")
    result = queue.complete(
        job.id,
        [{"slide_number": n, "content": f"Slide {n} content"} for n in range(1, slides + 1)],
    )
    return article, result.details["story_id"]


def test_approve_then_publish(conn, config):
    _, story_id = _draft_story(conn, config)
    controller = StoryController(conn, config)

    assert controller.approve(story_id).changed
    assert get_story(conn, story_id).status == StoryStatus.READY
    published = controller.publish(story_id)
    assert published.changed
    story = get_story(conn, story_id)
    assert story.status == StoryStatus.PUBLISHED
    assert story.published_at is not None


def test_double_submission_is_no_change(conn, config):
    _, story_id = _draft_story(conn, config)
    controller = StoryController(conn, config)
    controller.approve(story_id)

    again = controller.approve(story_id)

    assert again.ok
    assert not again.changed
    assert again.code == "no_change"


def test_publish_from_draft_is_illegal(conn, config):
    _, story_id = _draft_story(conn, config)
    result = StoryController(conn, config).publish(story_id)
    assert not result.ok
    assert result.code == "illegal_transition"


def test_approve_requires_slides(conn, config):
    _, story_id = _draft_story(conn, config)
    conn.execute("DELETE FROM slides WHERE story_id = ?", (story_id,))

    result = StoryController(conn, config).approve(story_id)

    assert result.code == "story_has_no_slides"


def test_approve_and_publish_in_one_step(conn, config):
    _, story_id = _draft_story(conn, config)
    result = StoryController(conn, config).approve_and_publish(story_id)
    assert result.ok
    assert get_story(conn, story_id).status == StoryStatus.PUBLISHED


def test_return_to_review(conn, config):
    _, story_id = _draft_story(conn, config)
    controller = StoryController(conn, config)
    controller.approve_and_publish(story_id)

    assert controller.return_to_review(story_id).changed
    assert get_story(conn, story_id).status == StoryStatus.DRAFT
    assert not controller.return_to_review(story_id).changed


def test_edit_slide_updates_word_count(conn, config):
    _, story_id = _draft_story(conn, config)
    controller = StoryController(conn, config)

    result = controller.edit_slide(story_id, 2, "one two three")

    assert result.ok
    assert result.details["word_count"] == 3
    slide = list_slides(conn, story_id)[1]
    assert slide.content == "one two three"
    assert slide.word_count == 3

    again = controller.edit_slide(story_id, 2, "one two three")
    assert again.ok
    assert not again.changed
    assert list_slides(conn, story_id)[1].word_count == 3


def test_edit_missing_slide(conn, config):
    _, story_id = _draft_story(conn, config)
    result = StoryController(conn, config).edit_slide(story_id, 9, "text")
    assert result.code == "slide_not_found"


def test_cascade_delete_published_story(conn, config):
    article, story_id = _draft_story(conn, config, slides=5)
    controller = StoryController(conn, config)
    controller.approve_and_publish(story_id)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    tracker.mark_complete(export_id, ["/exports/1.png"])

    result = controller.delete(story_id)

    assert result.ok
    assert result.details["slides"] == 5
    assert result.details["asset_export"] == 1
    assert get_story(conn, story_id) is None
    assert list_slides(conn, story_id) == []
    assert get_export_for_story(conn, story_id) is None
    assert list_jobs(conn) == []
    assert get_article(conn, article.id).processing_status == ArticleStatus.NEW

    restored = IntakeService(conn, config).restore_article(article.id)
    assert restored.ok
    assert get_open_job_for_article(conn, article.id) is not None


def test_delete_missing_story_is_no_change(conn, config):
    _, story_id = _draft_story(conn, config)
    controller = StoryController(conn, config)
    controller.delete(story_id)

    again = controller.delete(story_id)

    assert again.ok
    assert not again.changed


def test_reject_only_from_draft(conn, config):
    article, story_id = _draft_story(conn, config)
    controller = StoryController(conn, config)
    controller.approve(story_id)

    assert controller.reject(story_id).code == "illegal_transition"
    controller.return_to_review(story_id)
    assert controller.reject(story_id).ok
    assert get_article(conn, article.id).processing_status == ArticleStatus.NEW


def test_cascade_delete_failure_leaves_everything_in_place(conn, config, monkeypatch):
    article, story_id = _draft_story(conn, config, slides=5)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    tracker.mark_complete(export_id, ["/exports/1.png"])
    monkeypatch.setattr("storydesk.stories.delete_story_row", lambda connection, sid: 0)

    result = StoryController(conn, config).delete(story_id)

    assert not result.ok
    assert result.code == "cascade_delete_failed"
    assert result.details["removed"] == []
    assert set(result.details["not_removed"]) == {
        "slides",
        "asset_export",
        "queue_jobs",
        "article_reset",
        "story",
    }
    assert get_story(conn, story_id) is not None
    assert len(list_slides(conn, story_id)) == 5
    assert get_export_for_story(conn, story_id).id == export_id
    assert len(list_jobs(conn)) == 1
    assert get_article(conn, article.id).processing_status == ArticleStatus.PROCESSED


def test_cascade_delete_announces_export_by_its_own_id(conn, config):
    _, story_id = _draft_story(conn, config)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    bus = ReconciliationBus()
    seen = []
    bus.subscribe(seen.append, entities=["asset_export"])

    assert StoryController(conn, config, bus).delete(story_id).ok
    bus.flush()

    assert [(event.entity_id, event.action) for event in seen] == [(export_id, "deleted")]
