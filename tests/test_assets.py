import pytest

from storydesk.assets import AssetTracker
from storydesk.errors import InputError
from storydesk.models import ExportStatus
from storydesk.services.sources_service import register_source
from storydesk.storage import get_export, insert_article, insert_story


def _story(conn):
    register_source(conn, {"id": "src-1", "name": "Coastal Herald"})
    article = insert_article(conn, {"source_id": "src-1", "title": "Harbour reopens"})
    return insert_story(conn, article.id, article.title)


def test_second_start_rejected_while_generating(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)

    first = tracker.start(story_id)
    second = tracker.start(story_id)

    assert first.ok
    assert not second.ok
    assert second.code == "already_in_progress"
    assert second.details["export_id"] == first.details["export_id"]


def test_start_accepted_after_completion(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    tracker.mark_complete(export_id, ["/exports/a.png", "/exports/b.png"])
    assert get_export(conn, export_id).file_paths == ["/exports/a.png", "/exports/b.png"]

    again = tracker.start(story_id)

    assert again.ok
    assert again.details["export_id"] == export_id
    assert get_export(conn, export_id).status == ExportStatus.GENERATING


def test_start_accepted_after_failure(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    tracker.mark_failed(export_id, "renderer crashed")
    assert get_export(conn, export_id).error_message == "renderer crashed"

    assert tracker.start(story_id).ok


def test_retry_reuses_row(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    tracker.mark_failed(export_id, "renderer crashed")

    result = tracker.retry(export_id)

    assert result.ok
    export = get_export(conn, export_id)
    assert export.status == ExportStatus.GENERATING
    assert export.error_message is None
    assert export.attempts == 2


def test_retry_only_from_failed(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    assert tracker.retry(export_id).code == "already_in_progress"
    tracker.mark_complete(export_id, [])
    assert tracker.retry(export_id).code == "illegal_transition"


def test_apply_report(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]

    result = tracker.apply_report(export_id, {"status": "completed", "file_paths": ["/x.png"]})

    assert result.ok
    assert get_export(conn, export_id).status == ExportStatus.COMPLETED


def test_apply_report_rejects_bad_payload(conn, config):
    story_id = _story(conn)
    tracker = AssetTracker(conn, config)
    export_id = tracker.start(story_id).details["export_id"]
    with pytest.raises(InputError):
        tracker.apply_report(export_id, {"status": "done"})


def test_start_for_missing_story(conn, config):
    assert AssetTracker(conn, config).start("story_missing").code == "story_not_found"
