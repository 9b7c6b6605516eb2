from __future__ import annotations

import logging
from typing import Any, Callable

from .bus import ReconciliationBus, notify
from .config import Config
from .errors import ActionResult, InputError, failure, no_change, success
from .models import Article, ArticleStatus, JobStatus, QueueJob
from .storage import (
    claim_next_job,
    finish_job,
    get_article,
    get_job,
    get_open_job_for_article,
    get_story_for_article,
    insert_job,
    insert_slides,
    insert_story,
    list_jobs,
    requeue_stuck_jobs,
    reset_job,
    update_article_status,
)
from .utils import log_event

logger = logging.getLogger("storydesk.queue")

StoryGenerator = Callable[[Article], list[dict[str, Any]]]


def validate_slides(slides: Any) -> list[dict[str, Any]]:
    if not isinstance(slides, list) or not slides:
        raise InputError("generator returned no slides")
    normalized: list[dict[str, Any]] = []
    for index, slide in enumerate(sorted(slides, key=_slide_sort_key), start=1):
        if not isinstance(slide, dict):
            raise InputError("each slide must be an object")
        number = slide.get("slide_number")
        if isinstance(number, bool) or not isinstance(number, int) or number != index:
            raise InputError("slide numbers must be contiguous from 1")
        content = slide.get("content")
        if not isinstance(content, str):
            raise InputError(f"slide {index} content must be a string")
        visual_prompt = slide.get("visual_prompt")
        if visual_prompt is not None and not isinstance(visual_prompt, str):
            raise InputError(f"slide {index} visual_prompt must be a string")
        normalized.append(
            {"slide_number": number, "content": content, "visual_prompt": visual_prompt}
        )
    return normalized


def _slide_sort_key(slide: Any) -> int:
    if isinstance(slide, dict) and isinstance(slide.get("slide_number"), int):
        return slide["slide_number"]
    return 0


class GenerationQueue:
    def __init__(self, conn: Any, config: Config, bus: ReconciliationBus | None = None) -> None:
        self.conn = conn
        self.config = config
        self.bus = bus

    def enqueue(self, article_id: str) -> ActionResult:
        article = get_article(self.conn, article_id)
        if article is None:
            return failure("article_not_found", article_id=article_id)
        if article.processing_status == ArticleStatus.DISCARDED:
            return failure("illegal_transition", article_id=article_id, status="discarded")
        with self.conn.transaction():
            existing = get_open_job_for_article(self.conn, article_id)
            if existing is not None:
                return no_change(job_id=existing.id)
            if get_story_for_article(self.conn, article_id) is not None:
                return failure("illegal_transition", article_id=article_id, reason="story_exists")
            changed = update_article_status(
                self.conn,
                article_id,
                ArticleStatus.PROCESSING,
                expected=[ArticleStatus.NEW, ArticleStatus.PROCESSING],
            )
            if not changed:
                current = get_article(self.conn, article_id)
                status = current.processing_status.value if current else None
                return failure("illegal_transition", article_id=article_id, status=status)
            job = insert_job(self.conn, article_id)
        notify(self.bus, "queue_job", job.id, "enqueued", source_id=article.source_id)
        return success(job_id=job.id)

    def claim_next(self, worker_id: str) -> QueueJob | None:
        job = claim_next_job(self.conn, worker_id)
        if job is not None:
            log_event(logger, logging.INFO, "job_claimed", job_id=job.id, worker_id=worker_id)
            notify(self.bus, "queue_job", job.id, "claimed")
        return job

    def complete(self, job_id: str, slides: list[dict[str, Any]]) -> ActionResult:
        """Create the draft story for the job's article and mark the job done.

        Both writes share one transaction; a job never completes without its
        story.
        """
        job = get_job(self.conn, job_id)
        if job is None:
            return failure("job_not_found", job_id=job_id)
        if job.status != JobStatus.PROCESSING:
            return failure("illegal_transition", job_id=job_id, status=job.status.value)
        article = get_article(self.conn, job.article_id)
        if article is None:
            return failure("article_not_found", article_id=job.article_id)
        try:
            normalized = validate_slides(slides)
        except InputError as exc:
            return self.fail(job_id, f"invalid_slides: {exc}")
        story_id = None
        try:
            with self.conn.transaction():
                if get_story_for_article(self.conn, article.id) is None:
                    story_id = insert_story(self.conn, article.id, article.title)
                    insert_slides(self.conn, story_id, normalized)
                    update_article_status(self.conn, article.id, ArticleStatus.PROCESSED)
                    if not finish_job(self.conn, job_id, JobStatus.COMPLETED):
                        raise _JobLost(job_id)
        except _JobLost:
            return failure("illegal_transition", job_id=job_id)
        if story_id is None:
            return self.fail(job_id, "story_exists")
        log_event(
            logger,
            logging.INFO,
            "job_completed",
            job_id=job_id,
            story_id=story_id,
            slides=len(normalized),
        )
        notify(self.bus, "queue_job", job_id, "completed", source_id=article.source_id)
        notify(self.bus, "story", story_id, "created", source_id=article.source_id)
        notify(self.bus, "article", article.id, "processed", source_id=article.source_id)
        return success(job_id=job_id, story_id=story_id)

    def fail(self, job_id: str, error: str) -> ActionResult:
        with self.conn.transaction():
            changed = finish_job(self.conn, job_id, JobStatus.FAILED, error=error)
        if not changed:
            job = get_job(self.conn, job_id)
            if job is None:
                return failure("job_not_found", job_id=job_id)
            return failure("illegal_transition", job_id=job_id, status=job.status.value)
        log_event(logger, logging.WARNING, "job_failed", job_id=job_id, error=error)
        notify(self.bus, "queue_job", job_id, "failed")
        return success(code="generator_failed", job_id=job_id, error=error)

    def reset(self, job_id: str) -> ActionResult:
        job = get_job(self.conn, job_id)
        if job is None:
            return failure("job_not_found", job_id=job_id)
        if job.status == JobStatus.PENDING:
            return no_change(job_id=job_id)
        with self.conn.transaction():
            changed = reset_job(self.conn, job_id)
        if not changed:
            return failure("illegal_transition", job_id=job_id, status=job.status.value)
        log_event(logger, logging.INFO, "job_reset", job_id=job_id, attempts=job.attempts + 1)
        notify(self.bus, "queue_job", job_id, "reset")
        return success(job_id=job_id, attempts=job.attempts + 1)

    def retry_failed(self) -> list[str]:
        retried = []
        for job in list_jobs(self.conn, status=JobStatus.FAILED, limit=1000):
            if job.attempts + 1 >= self.config.queue.max_attempts:
                continue
            if self.reset(job.id).changed:
                retried.append(job.id)
        return retried

    def reset_stuck(self) -> list[str]:
        with self.conn.transaction():
            requeued = requeue_stuck_jobs(self.conn, self.config.queue.stuck_after_minutes)
        for job_id in requeued:
            log_event(logger, logging.WARNING, "job_stuck_requeued", job_id=job_id)
            notify(self.bus, "queue_job", job_id, "requeued")
        return requeued

    def process(
        self,
        generator: StoryGenerator | None,
        worker_id: str,
        limit: int | None = None,
    ) -> dict[str, int]:
        totals = {"claimed": 0, "completed": 0, "failed": 0}
        if generator is None:
            return totals
        limit = self.config.queue.batch_size if limit is None else limit
        while totals["claimed"] < limit:
            job = self.claim_next(worker_id)
            if job is None:
                break
            totals["claimed"] += 1
            result = self._run_job(job, generator)
            totals["completed" if "story_id" in result.details else "failed"] += 1
        return totals

    def _run_job(self, job: QueueJob, generator: StoryGenerator) -> ActionResult:
        article = get_article(self.conn, job.article_id)
        if article is None:
            return self.fail(job.id, "article_not_found")
        try:
            slides = generator(article)
        except Exception as exc:  # noqa: BLE001
            return self.fail(job.id, f"generator_error: {exc}")
        return self.complete(job.id, slides)


class _JobLost(RuntimeError):
    pass
