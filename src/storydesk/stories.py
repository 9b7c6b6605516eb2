from __future__ import annotations

import logging
from typing import Any

from .bus import ReconciliationBus, notify
from .config import Config
from .errors import ActionResult, InputError, failure, no_change, success
from .models import ArticleStatus, Story, StoryStatus
from .storage import (
    delete_export_for_story,
    delete_jobs_for_article,
    delete_slides,
    delete_story_row,
    get_article,
    get_export_for_story,
    get_story,
    update_article_status,
    update_slide_content,
    update_story_status,
)
from .utils import log_event, word_count

logger = logging.getLogger("storydesk.stories")

# target status -> statuses it may be entered from
TRANSITIONS: dict[str, tuple[StoryStatus, set[StoryStatus]]] = {
    "approve": (StoryStatus.READY, {StoryStatus.DRAFT}),
    "publish": (StoryStatus.PUBLISHED, {StoryStatus.READY}),
    "return_to_review": (StoryStatus.DRAFT, {StoryStatus.READY, StoryStatus.PUBLISHED}),
}


class StoryController:
    def __init__(self, conn: Any, config: Config, bus: ReconciliationBus | None = None) -> None:
        self.conn = conn
        self.config = config
        self.bus = bus

    def get(self, story_id: str) -> Story | None:
        return get_story(self.conn, story_id)

    def approve(self, story_id: str) -> ActionResult:
        return self._transition(story_id, "approve")

    def publish(self, story_id: str) -> ActionResult:
        return self._transition(story_id, "publish")

    def return_to_review(self, story_id: str) -> ActionResult:
        return self._transition(story_id, "return_to_review")

    def approve_and_publish(self, story_id: str) -> ActionResult:
        story = get_story(self.conn, story_id)
        if story is None:
            return failure("story_not_found", story_id=story_id)
        if story.status == StoryStatus.PUBLISHED:
            return no_change(story_id=story_id, status=story.status.value)
        if story.status not in (StoryStatus.DRAFT, StoryStatus.READY):
            return failure("illegal_transition", story_id=story_id, status=story.status.value)
        if not story.slides:
            return failure("story_has_no_slides", story_id=story_id)
        with self.conn.transaction():
            if story.status == StoryStatus.DRAFT:
                update_story_status(self.conn, story_id, StoryStatus.READY, [StoryStatus.DRAFT])
            changed = update_story_status(
                self.conn, story_id, StoryStatus.PUBLISHED, [StoryStatus.READY]
            )
        if not changed:
            return self._conflict(story_id)
        self._announce(story, "published")
        return success(story_id=story_id, status=StoryStatus.PUBLISHED.value)

    def _transition(self, story_id: str, action: str) -> ActionResult:
        target, allowed = TRANSITIONS[action]
        story = get_story(self.conn, story_id)
        if story is None:
            return failure("story_not_found", story_id=story_id)
        if story.status == target:
            return no_change(story_id=story_id, status=target.value)
        if story.status not in allowed:
            return failure(
                "illegal_transition", story_id=story_id, status=story.status.value, action=action
            )
        if target in (StoryStatus.READY, StoryStatus.PUBLISHED) and not story.slides:
            return failure("story_has_no_slides", story_id=story_id)
        with self.conn.transaction():
            changed = update_story_status(self.conn, story_id, target, allowed)
        if not changed:
            return self._conflict(story_id)
        log_event(
            logger,
            logging.INFO,
            "story_transition",
            story_id=story_id,
            action=action,
            status_from=story.status.value,
            status_to=target.value,
        )
        self._announce(story, action)
        return success(story_id=story_id, status=target.value)

    def _conflict(self, story_id: str) -> ActionResult:
        # Someone else moved the story between our read and the conditional update.
        current = get_story(self.conn, story_id)
        if current is None:
            return failure("story_not_found", story_id=story_id)
        return failure("illegal_transition", story_id=story_id, status=current.status.value)

    def reject(self, story_id: str) -> ActionResult:
        story = get_story(self.conn, story_id)
        if story is None:
            return no_change(story_id=story_id, deleted=True)
        if story.status != StoryStatus.DRAFT:
            return failure("illegal_transition", story_id=story_id, status=story.status.value)
        return self._cascade_delete(story, "rejected")

    def delete(self, story_id: str) -> ActionResult:
        story = get_story(self.conn, story_id)
        if story is None:
            return no_change(story_id=story_id, deleted=True)
        return self._cascade_delete(story, "deleted")

    def _cascade_delete(self, story: Story, action: str) -> ActionResult:
        removed = {"slides": 0, "asset_export": 0, "queue_jobs": 0, "article_reset": False}
        export = get_export_for_story(self.conn, story.id)
        try:
            with self.conn.transaction():
                removed["slides"] = delete_slides(self.conn, story.id)
                removed["asset_export"] = delete_export_for_story(self.conn, story.id)
                removed["queue_jobs"] = delete_jobs_for_article(self.conn, story.article_id)
                removed["article_reset"] = update_article_status(
                    self.conn, story.article_id, ArticleStatus.NEW, None
                )
                if delete_story_row(self.conn, story.id) != 1:
                    raise RuntimeError("story row vanished during delete")
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.ERROR,
                "story_delete_failed",
                story_id=story.id,
                error=str(exc),
            )
            return failure(
                "cascade_delete_failed",
                story_id=story.id,
                error=str(exc),
                removed=[],
                not_removed=["slides", "asset_export", "queue_jobs", "article_reset", "story"],
            )
        log_event(logger, logging.INFO, "story_deleted", story_id=story.id, action=action, **removed)
        article = get_article(self.conn, story.article_id)
        source_id = article.source_id if article else None
        notify(self.bus, "story", story.id, action, source_id=source_id)
        notify(self.bus, "article", story.article_id, "reset", source_id=source_id)
        if removed["asset_export"] and export is not None:
            notify(self.bus, "asset_export", export.id, "deleted", source_id=source_id)
        return success(story_id=story.id, deleted=True, **removed)

    def edit_slide(self, story_id: str, slide_number: int, content: str) -> ActionResult:
        if not isinstance(content, str):
            raise InputError("content must be a string")
        story = get_story(self.conn, story_id)
        if story is None:
            return failure("story_not_found", story_id=story_id)
        current = next((s for s in story.slides if s.slide_number == slide_number), None)
        if current is None:
            return failure("slide_not_found", story_id=story_id, slide_number=slide_number)
        if current.content == content and current.word_count == word_count(content):
            return no_change(
                story_id=story_id, slide_number=slide_number, word_count=current.word_count
            )
        with self.conn.transaction():
            update_slide_content(self.conn, story_id, slide_number, content)
        notify(self.bus, "story", story_id, "slide_edited")
        return success(
            story_id=story_id, slide_number=slide_number, word_count=word_count(content)
        )

    def _announce(self, story: Story, action: str) -> None:
        article = get_article(self.conn, story.article_id)
        notify(self.bus, "story", story.id, action, source_id=article.source_id if article else None)
