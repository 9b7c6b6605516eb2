from __future__ import annotations

import dataclasses
import logging
import os
from datetime import datetime, timezone
from typing import Any, Iterator, NamedTuple

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .assets import AssetTracker
from .bus import ReconciliationBus, build_bus
from .collaborators import load_story_generator
from .config import (
    Config,
    ConfigError,
    config_to_dict,
    get_runtime_overrides,
    load_config,
    load_runtime_config,
    set_runtime_overrides,
)
from .errors import ActionResult, InputError
from .intake import IntakeService
from .models import ArticleStatus, BulkDiscardFilter, JobStatus, StoryStatus
from .queue import GenerationQueue
from .services.sources_service import (
    list_source_health,
    parse_scrape_run,
    record_scrape_run,
    register_source,
    set_source_active,
    start_scrape,
    trigger_manual_scrape,
)
from .stories import StoryController
from .storage import (
    get_pipeline_counts,
    get_source,
    init_db,
    list_articles,
    list_health_alerts,
    list_jobs,
    list_scrape_requests,
    list_stories,
)
from .utils import configure_logging, log_event

app = FastAPI(title="StoryDesk Admin API")
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

NOT_FOUND_CODES = {
    "article_not_found",
    "story_not_found",
    "job_not_found",
    "export_not_found",
    "source_not_found",
    "slide_not_found",
}
BAD_REQUEST_CODES = {"invalid_input", "invalid_slides"}


class Session(NamedTuple):
    conn: Any
    config: Config
    bus: ReconciliationBus


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("SD_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _get_conn():
    try:
        base = load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return init_db(base.paths.state_db), base


def _session() -> Iterator[Session]:
    conn, base = _get_conn()
    try:
        config = load_runtime_config(conn, base)
    except ConfigError as exc:
        conn.close()
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    bus = build_bus(conn, config)
    try:
        yield Session(conn, config, bus)
        bus.flush()
    finally:
        bus.close()
        conn.close()


def _respond(result: ActionResult) -> dict[str, object]:
    if result.ok:
        return result.to_dict()
    if result.code in NOT_FOUND_CODES:
        status_code = 404
    elif result.code in BAD_REQUEST_CODES:
        status_code = 400
    else:
        status_code = 409
    raise HTTPException(status_code=status_code, detail=result.to_dict())


def _as_dict(item: Any) -> dict[str, object]:
    return dataclasses.asdict(item)


class SourceRequest(BaseModel):
    id: str | None = None
    name: str
    url: str | None = None
    is_active: bool = True


class SourceActiveRequest(BaseModel):
    is_active: bool


class IngestRequest(BaseModel):
    articles: list[dict[str, Any]]


class BulkDiscardRequest(BaseModel):
    keywords: list[str] = Field(default_factory=list)
    domains: list[str] = Field(default_factory=list)
    max_quality_score: float | None = None
    max_relevance_score: float | None = None
    source_id: str | None = None

    def to_filter(self) -> BulkDiscardFilter:
        return BulkDiscardFilter(
            keywords=list(self.keywords),
            domains=list(self.domains),
            max_quality_score=self.max_quality_score,
            max_relevance_score=self.max_relevance_score,
            source_id=self.source_id,
        )


class QueueProcessRequest(BaseModel):
    limit: int | None = None
    worker_id: str = "admin"


class SlideEditRequest(BaseModel):
    content: str


class RuntimeConfigRequest(BaseModel):
    config: dict


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "StoryDesk Admin API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_get(session: Session = Depends(_session)) -> dict[str, object]:
    try:
        overrides = get_runtime_overrides(session.conn)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"config": overrides, "effective": config_to_dict(session.config)}


@app.put("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_set(
    payload: RuntimeConfigRequest, session: Session = Depends(_session)
) -> dict[str, object]:
    try:
        with session.conn.transaction():
            set_runtime_overrides(session.conn, payload.config)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok"}


# Sources


@app.get("/sources")
def sources_list(session: Session = Depends(_session)) -> list[dict[str, object]]:
    return list_source_health(session.conn, session.config)


@app.post("/sources", dependencies=[Depends(_require_admin_token)])
def sources_create(payload: SourceRequest, session: Session = Depends(_session)) -> dict[str, object]:
    try:
        source = register_source(session.conn, payload.model_dump(), session.bus)
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _as_dict(source)


@app.get("/sources/scrape-requests")
def sources_scrape_requests(
    status: str | None = "requested", session: Session = Depends(_session)
) -> list[dict[str, object]]:
    return list_scrape_requests(session.conn, status=status)


@app.get("/sources/{source_id}")
def sources_read(source_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    source = get_source(session.conn, source_id)
    if not source:
        raise HTTPException(status_code=404, detail="source_not_found")
    return _as_dict(source)


@app.post("/sources/{source_id}/active", dependencies=[Depends(_require_admin_token)])
def sources_set_active(
    source_id: str, payload: SourceActiveRequest, session: Session = Depends(_session)
) -> dict[str, object]:
    return _respond(set_source_active(session.conn, source_id, payload.is_active, session.bus))


@app.post("/sources/{source_id}/scrape", dependencies=[Depends(_require_admin_token)])
def sources_scrape(source_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _respond(trigger_manual_scrape(session.conn, source_id, bus=session.bus))


@app.post("/sources/{source_id}/scrape/start", dependencies=[Depends(_require_admin_token)])
def sources_scrape_start(source_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _respond(start_scrape(session.conn, source_id, session.bus))


@app.post("/sources/{source_id}/runs", dependencies=[Depends(_require_admin_token)])
def sources_record_run(
    source_id: str, payload: dict[str, Any], session: Session = Depends(_session)
) -> dict[str, object]:
    try:
        run = parse_scrape_run(payload)
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _respond(record_scrape_run(session.conn, session.config, source_id, run, session.bus))


@app.get("/sources/{source_id}/alerts")
def sources_alerts(
    source_id: str, limit: int = 50, session: Session = Depends(_session)
) -> list[dict[str, object]]:
    return list_health_alerts(session.conn, source_id=source_id, limit=limit)


# Articles


@app.get("/articles")
def articles_list(
    status: ArticleStatus | None = None,
    source_id: str | None = None,
    limit: int = 100,
    session: Session = Depends(_session),
) -> list[dict[str, object]]:
    statuses = [status] if status else None
    articles = list_articles(session.conn, statuses=statuses, source_id=source_id, limit=limit)
    return [_as_dict(article) for article in articles]


@app.post("/articles/ingest", dependencies=[Depends(_require_admin_token)])
def articles_ingest(payload: IngestRequest, session: Session = Depends(_session)) -> dict[str, object]:
    try:
        articles = IntakeService(session.conn, session.config, session.bus).ingest_candidates(
            payload.articles
        )
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"count": len(articles), "article_ids": [article.id for article in articles]}


@app.post("/articles/{article_id}/restore", dependencies=[Depends(_require_admin_token)])
def articles_restore(article_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    service = IntakeService(session.conn, session.config, session.bus)
    return _respond(service.restore_article(article_id))


@app.post("/articles/{article_id}/discard", dependencies=[Depends(_require_admin_token)])
def articles_discard(article_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    service = IntakeService(session.conn, session.config, session.bus)
    return _respond(service.discard_article(article_id))


@app.post("/articles/bulk-discard/preview", dependencies=[Depends(_require_admin_token)])
def articles_bulk_preview(
    payload: BulkDiscardRequest, session: Session = Depends(_session)
) -> dict[str, object]:
    service = IntakeService(session.conn, session.config, session.bus)
    try:
        return {"count": service.preview_bulk_discard(payload.to_filter())}
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/articles/bulk-discard/apply", dependencies=[Depends(_require_admin_token)])
def articles_bulk_apply(
    payload: BulkDiscardRequest, session: Session = Depends(_session)
) -> dict[str, object]:
    service = IntakeService(session.conn, session.config, session.bus)
    try:
        count = service.apply_bulk_discard(payload.to_filter())
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_event(logging.getLogger("storydesk.admin"), logging.INFO, "bulk_discard", count=count)
    return {"count": count}


@app.post("/intake/classify", dependencies=[Depends(_require_admin_token)])
def intake_classify(session: Session = Depends(_session)) -> dict[str, int]:
    return IntakeService(session.conn, session.config, session.bus).classify_pending()


# Queue


@app.get("/queue")
def queue_list(
    status: JobStatus | None = None, limit: int = 50, session: Session = Depends(_session)
) -> list[dict[str, object]]:
    return [_as_dict(job) for job in list_jobs(session.conn, status=status, limit=limit)]


@app.post("/queue/process", dependencies=[Depends(_require_admin_token)])
def queue_process(
    payload: QueueProcessRequest, session: Session = Depends(_session)
) -> dict[str, int]:
    try:
        generator = load_story_generator(session.config)
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if generator is None:
        raise HTTPException(status_code=409, detail="generator_unavailable")
    queue = GenerationQueue(session.conn, session.config, session.bus)
    return queue.process(generator, payload.worker_id, payload.limit)


@app.post("/queue/jobs/{job_id}/reset", dependencies=[Depends(_require_admin_token)])
def queue_reset(job_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _respond(GenerationQueue(session.conn, session.config, session.bus).reset(job_id))


@app.post("/queue/reset-stuck", dependencies=[Depends(_require_admin_token)])
def queue_reset_stuck(session: Session = Depends(_session)) -> dict[str, object]:
    requeued = GenerationQueue(session.conn, session.config, session.bus).reset_stuck()
    return {"count": len(requeued), "job_ids": requeued}


# Stories


@app.get("/stories")
def stories_list(
    status: StoryStatus | None = None, limit: int = 100, session: Session = Depends(_session)
) -> list[dict[str, object]]:
    return [_as_dict(story) for story in list_stories(session.conn, status=status, limit=limit)]


@app.get("/stories/{story_id}")
def stories_read(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    story = StoryController(session.conn, session.config, session.bus).get(story_id)
    if story is None:
        raise HTTPException(status_code=404, detail="story_not_found")
    return _as_dict(story)


def _story_action(session: Session, story_id: str, action: str) -> dict[str, object]:
    controller = StoryController(session.conn, session.config, session.bus)
    return _respond(getattr(controller, action)(story_id))


@app.post("/stories/{story_id}/approve", dependencies=[Depends(_require_admin_token)])
def stories_approve(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _story_action(session, story_id, "approve")


@app.post("/stories/{story_id}/publish", dependencies=[Depends(_require_admin_token)])
def stories_publish(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _story_action(session, story_id, "publish")


@app.post("/stories/{story_id}/approve-and-publish", dependencies=[Depends(_require_admin_token)])
def stories_approve_publish(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _story_action(session, story_id, "approve_and_publish")


@app.post("/stories/{story_id}/reject", dependencies=[Depends(_require_admin_token)])
def stories_reject(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _story_action(session, story_id, "reject")


@app.post("/stories/{story_id}/return-to-review", dependencies=[Depends(_require_admin_token)])
def stories_return(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _story_action(session, story_id, "return_to_review")


@app.delete("/stories/{story_id}", dependencies=[Depends(_require_admin_token)])
def stories_delete(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _story_action(session, story_id, "delete")


@app.put(
    "/stories/{story_id}/slides/{slide_number}", dependencies=[Depends(_require_admin_token)]
)
def stories_edit_slide(
    story_id: str,
    slide_number: int,
    payload: SlideEditRequest,
    session: Session = Depends(_session),
) -> dict[str, object]:
    controller = StoryController(session.conn, session.config, session.bus)
    return _respond(controller.edit_slide(story_id, slide_number, payload.content))


# Asset exports


@app.get("/stories/{story_id}/export")
def exports_for_story(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    export = AssetTracker(session.conn, session.config, session.bus).get_for_story(story_id)
    if export is None:
        return {"story_id": story_id, "status": "none"}
    return _as_dict(export)


@app.post("/stories/{story_id}/export", dependencies=[Depends(_require_admin_token)])
def exports_start(story_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _respond(AssetTracker(session.conn, session.config, session.bus).start(story_id))


@app.post("/exports/{export_id}/retry", dependencies=[Depends(_require_admin_token)])
def exports_retry(export_id: str, session: Session = Depends(_session)) -> dict[str, object]:
    return _respond(AssetTracker(session.conn, session.config, session.bus).retry(export_id))


@app.post("/exports/{export_id}/report", dependencies=[Depends(_require_admin_token)])
def exports_report(
    export_id: str, payload: dict[str, Any], session: Session = Depends(_session)
) -> dict[str, object]:
    tracker = AssetTracker(session.conn, session.config, session.bus)
    try:
        return _respond(tracker.apply_report(export_id, payload))
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/pipeline/counts")
def pipeline_counts(session: Session = Depends(_session)) -> dict[str, dict[str, int]]:
    return get_pipeline_counts(session.conn)


def _setup_logging() -> None:
    configure_logging("storydesk.admin")


_setup_logging()


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("storydesk")
    except PackageNotFoundError:
        return "unknown"
