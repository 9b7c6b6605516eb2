from __future__ import annotations

import json
from typing import Any, Iterable

from .db import connect_db
from .models import (
    Article,
    ArticleStatus,
    AssetExport,
    ExportStatus,
    JobStatus,
    QueueJob,
    RejectionReason,
    Slide,
    Source,
    Story,
    StoryStatus,
)
from .utils import json_dumps, new_id, utc_now_iso, utc_now_iso_offset, word_count


def init_db(path: str | None = None):
    return connect_db(path)


# Sources


def upsert_source(conn: Any, source_dict: dict[str, object]) -> Source:
    source_id = str(source_dict.get("id") or "").strip() or new_id("src")
    name = str(source_dict.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    now = utc_now_iso()
    existing = get_source(conn, source_id)
    created_at = existing.created_at if existing else now
    is_active = source_dict.get("is_active", existing.is_active if existing else True)
    conn.execute(
        """
        INSERT INTO sources
            (id, name, url, is_active, success_rate, articles_scraped, last_scraped_at,
             last_error, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name,
            url=excluded.url,
            is_active=excluded.is_active,
            updated_at=excluded.updated_at
        """,
        (
            source_id,
            name,
            source_dict.get("url"),
            1 if is_active else 0,
            source_dict.get("success_rate"),
            source_dict.get("articles_scraped"),
            source_dict.get("last_scraped_at"),
            source_dict.get("last_error"),
            created_at,
            now,
        ),
    )
    source = get_source(conn, source_id)
    if source is None:
        raise RuntimeError(f"source {source_id} missing after upsert")
    return source


_SOURCE_COLUMNS = """
    id, name, url, is_active, success_rate, articles_scraped, last_scraped_at,
    last_error, health_tier, created_at, updated_at
"""


def get_source(conn: Any, source_id: str) -> Source | None:
    cursor = conn.execute(f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,))
    row = cursor.fetchone()
    return _row_to_source(row) if row else None


def list_sources(conn: Any, active_only: bool = False) -> list[Source]:
    sql = f"SELECT {_SOURCE_COLUMNS} FROM sources"
    if active_only:
        sql += " WHERE is_active = 1"
    sql += " ORDER BY name, id"
    return [_row_to_source(row) for row in conn.execute(sql).fetchall()]


def set_source_active(conn: Any, source_id: str, active: bool) -> bool:
    cursor = conn.execute(
        "UPDATE sources SET is_active = ?, updated_at = ? WHERE id = ?",
        (1 if active else 0, utc_now_iso(), source_id),
    )
    return cursor.rowcount == 1


def update_source_metrics(
    conn: Any,
    source_id: str,
    success_rate: float,
    articles_scraped: int,
    last_scraped_at: str,
    last_error: str | None,
) -> None:
    conn.execute(
        """
        UPDATE sources
        SET success_rate = ?, articles_scraped = ?, last_scraped_at = ?, last_error = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (success_rate, articles_scraped, last_scraped_at, last_error, utc_now_iso(), source_id),
    )


def set_source_health_tier(conn: Any, source_id: str, tier: str) -> None:
    conn.execute(
        "UPDATE sources SET health_tier = ? WHERE id = ?",
        (tier, source_id),
    )


def insert_source_run(
    conn: Any,
    source_id: str,
    articles_found: int,
    articles_stored: int,
    duplicates_detected: int,
    articles_discarded: int,
    errors: list[str],
    created_at: str | None = None,
) -> str:
    run_id = new_id("run")
    conn.execute(
        """
        INSERT INTO source_runs
            (id, source_id, articles_found, articles_stored, duplicates_detected,
             articles_discarded, error_count, errors_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            run_id,
            source_id,
            articles_found,
            articles_stored,
            duplicates_detected,
            articles_discarded,
            len(errors),
            json_dumps(errors) if errors else None,
            created_at or utc_now_iso(),
        ),
    )
    return run_id


def list_recent_run_error_counts(conn: Any, source_id: str, limit: int) -> list[int]:
    cursor = conn.execute(
        """
        SELECT error_count
        FROM source_runs
        WHERE source_id = ?
        ORDER BY created_at DESC
        LIMIT ?
        """,
        (source_id, limit),
    )
    return [int(row[0]) for row in cursor.fetchall()]


def record_health_alert(conn: Any, source_id: str, alert_type: str, message: str) -> str:
    alert_id = new_id("alert")
    conn.execute(
        """
        INSERT INTO health_alerts (id, source_id, alert_type, message, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (alert_id, source_id, alert_type, message, utc_now_iso()),
    )
    return alert_id


def list_health_alerts(conn: Any, source_id: str | None = None, limit: int = 50) -> list[dict[str, object]]:
    params: list[object] = []
    where = ""
    if source_id:
        where = "WHERE source_id = ?"
        params.append(source_id)
    params.append(limit)
    cursor = conn.execute(
        f"""
        SELECT id, source_id, alert_type, message, created_at
        FROM health_alerts
        {where}
        ORDER BY created_at DESC
        LIMIT ?
        """,
        tuple(params),
    )
    cols = ["id", "source_id", "alert_type", "message", "created_at"]
    return [dict(zip(cols, row)) for row in cursor.fetchall()]


def insert_scrape_request(conn: Any, source_id: str, reason: str) -> str:
    request_id = new_id("scrape")
    conn.execute(
        """
        INSERT INTO scrape_requests (id, source_id, reason, status, requested_at)
        VALUES (?, ?, ?, 'requested', ?)
        """,
        (request_id, source_id, reason, utc_now_iso()),
    )
    return request_id


def get_open_scrape_request_id(conn: Any, source_id: str) -> str | None:
    cursor = conn.execute(
        """
        SELECT id FROM scrape_requests
        WHERE source_id = ? AND status IN ('requested', 'running')
        ORDER BY requested_at ASC
        LIMIT 1
        """,
        (source_id,),
    )
    row = cursor.fetchone()
    return row[0] if row else None


def mark_scrape_running(conn: Any, source_id: str) -> bool:
    cursor = conn.execute(
        "UPDATE scrape_requests SET status = 'running' WHERE source_id = ? AND status = 'requested'",
        (source_id,),
    )
    return cursor.rowcount > 0


def is_source_gathering(conn: Any, source_id: str) -> bool:
    cursor = conn.execute(
        "SELECT 1 FROM scrape_requests WHERE source_id = ? AND status = 'running' LIMIT 1",
        (source_id,),
    )
    return cursor.fetchone() is not None


def close_scrape_requests(conn: Any, source_id: str) -> int:
    cursor = conn.execute(
        """
        UPDATE scrape_requests SET status = 'done'
        WHERE source_id = ? AND status IN ('requested', 'running')
        """,
        (source_id,),
    )
    return cursor.rowcount


def list_scrape_requests(conn: Any, status: str | None = "requested") -> list[dict[str, object]]:
    params: tuple = ()
    where = ""
    if status:
        where = "WHERE status = ?"
        params = (status,)
    cursor = conn.execute(
        f"""
        SELECT id, source_id, reason, status, requested_at
        FROM scrape_requests
        {where}
        ORDER BY requested_at ASC
        """,
        params,
    )
    cols = ["id", "source_id", "reason", "status", "requested_at"]
    return [dict(zip(cols, row)) for row in cursor.fetchall()]


# Articles

_ARTICLE_COLUMNS = """
    id, source_id, title, body, url, processing_status, regional_relevance_score,
    content_quality_score, rejection_reason, scraped_at, created_at, updated_at
"""


def insert_article(conn: Any, payload: dict[str, object]) -> Article:
    article_id = str(payload.get("id") or "") or new_id("art")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO articles
            (id, source_id, title, body, url, processing_status, regional_relevance_score,
             content_quality_score, rejection_reason, scraped_at, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?, ?)
        """,
        (
            article_id,
            payload["source_id"],
            payload["title"],
            payload.get("body"),
            payload.get("url"),
            ArticleStatus.NEW.value,
            payload.get("regional_relevance_score"),
            payload.get("content_quality_score"),
            payload.get("scraped_at"),
            str(payload.get("created_at") or now),
            now,
        ),
    )
    article = get_article(conn, article_id)
    if article is None:
        raise RuntimeError(f"article {article_id} missing after insert")
    return article


def get_article(conn: Any, article_id: str) -> Article | None:
    cursor = conn.execute(
        f"SELECT {_ARTICLE_COLUMNS} FROM articles WHERE id = ?", (article_id,)
    )
    row = cursor.fetchone()
    return _row_to_article(row) if row else None


def list_articles(
    conn: Any,
    statuses: Iterable[ArticleStatus] | None = None,
    source_id: str | None = None,
    limit: int | None = None,
) -> list[Article]:
    clauses: list[str] = []
    params: list[object] = []
    if statuses:
        values = [status.value for status in statuses]
        clauses.append(f"processing_status IN ({','.join(['?'] * len(values))})")
        params.extend(values)
    if source_id:
        clauses.append("source_id = ?")
        params.append(source_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    sql = f"SELECT {_ARTICLE_COLUMNS} FROM articles {where} ORDER BY created_at ASC, id ASC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_article(row) for row in conn.execute(sql, tuple(params)).fetchall()]


def list_dedup_candidates(conn: Any, since_iso: str, exclude_id: str) -> list[Article]:
    cursor = conn.execute(
        f"""
        SELECT {_ARTICLE_COLUMNS}
        FROM articles
        WHERE processing_status != ? AND created_at >= ? AND id != ?
        ORDER BY created_at ASC
        """,
        (ArticleStatus.DISCARDED.value, since_iso, exclude_id),
    )
    return [_row_to_article(row) for row in cursor.fetchall()]


def update_article_status(
    conn: Any,
    article_id: str,
    status: ArticleStatus,
    rejection_reason: RejectionReason | None = None,
    expected: Iterable[ArticleStatus] | None = None,
) -> bool:
    params: list[object] = [
        status.value,
        rejection_reason.value if rejection_reason else None,
        utc_now_iso(),
        article_id,
    ]
    guard = ""
    if expected is not None:
        values = [item.value for item in expected]
        guard = f" AND processing_status IN ({','.join(['?'] * len(values))})"
        params.extend(values)
    cursor = conn.execute(
        f"""
        UPDATE articles
        SET processing_status = ?, rejection_reason = ?, updated_at = ?
        WHERE id = ?{guard}
        """,
        tuple(params),
    )
    return cursor.rowcount == 1


def count_articles_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute(
        "SELECT processing_status, COUNT(*) FROM articles GROUP BY processing_status"
    )
    counts = {status.value: 0 for status in ArticleStatus}
    for status, count in cursor.fetchall():
        counts[status] = int(count)
    return counts


# Queue jobs

_JOB_COLUMNS = """
    id, article_id, status, attempts, error, worker_id, created_at, started_at,
    finished_at, updated_at
"""


def insert_job(conn: Any, article_id: str) -> QueueJob:
    job_id = new_id("job")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO queue_jobs
            (id, article_id, status, attempts, error, worker_id, created_at, started_at,
             finished_at, updated_at)
        VALUES (?, ?, ?, 0, NULL, NULL, ?, NULL, NULL, ?)
        """,
        (job_id, article_id, JobStatus.PENDING.value, now, now),
    )
    job = get_job(conn, job_id)
    if job is None:
        raise RuntimeError(f"job {job_id} missing after insert")
    return job


def get_job(conn: Any, job_id: str) -> QueueJob | None:
    cursor = conn.execute(f"SELECT {_JOB_COLUMNS} FROM queue_jobs WHERE id = ?", (job_id,))
    row = cursor.fetchone()
    return _row_to_job(row) if row else None


def get_open_job_for_article(conn: Any, article_id: str) -> QueueJob | None:
    cursor = conn.execute(
        f"""
        SELECT {_JOB_COLUMNS}
        FROM queue_jobs
        WHERE article_id = ? AND status IN (?, ?)
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (article_id, JobStatus.PENDING.value, JobStatus.PROCESSING.value),
    )
    row = cursor.fetchone()
    return _row_to_job(row) if row else None


def list_jobs(conn: Any, status: JobStatus | None = None, limit: int = 50) -> list[QueueJob]:
    params: list[object] = []
    where = ""
    if status:
        where = "WHERE status = ?"
        params.append(status.value)
    params.append(limit)
    cursor = conn.execute(
        f"SELECT {_JOB_COLUMNS} FROM queue_jobs {where} ORDER BY created_at ASC LIMIT ?",
        tuple(params),
    )
    return [_row_to_job(row) for row in cursor.fetchall()]


def claim_next_job(conn: Any, worker_id: str) -> QueueJob | None:
    for _ in range(20):
        with conn.transaction():
            cursor = conn.execute(
                """
                SELECT id FROM queue_jobs
                WHERE status = ?
                ORDER BY created_at ASC, id ASC
                LIMIT 1
                """,
                (JobStatus.PENDING.value,),
            )
            row = cursor.fetchone()
            if not row:
                return None
            now = utc_now_iso()
            cursor = conn.execute(
                """
                UPDATE queue_jobs
                SET status = ?, worker_id = ?, started_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (JobStatus.PROCESSING.value, worker_id, now, now, row[0], JobStatus.PENDING.value),
            )
            if cursor.rowcount == 1:
                return get_job(conn, row[0])
    return None


def finish_job(conn: Any, job_id: str, status: JobStatus, error: str | None = None) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE queue_jobs
        SET status = ?, error = ?, finished_at = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (status.value, error, now, now, job_id, JobStatus.PROCESSING.value),
    )
    return cursor.rowcount == 1


def reset_job(conn: Any, job_id: str) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE queue_jobs
        SET status = ?, attempts = attempts + 1, worker_id = NULL, started_at = NULL,
            finished_at = NULL, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (JobStatus.PENDING.value, now, job_id, JobStatus.FAILED.value),
    )
    return cursor.rowcount == 1


def requeue_stuck_jobs(conn: Any, stuck_after_minutes: int) -> list[str]:
    cutoff = utc_now_iso_offset(seconds=-stuck_after_minutes * 60)
    cursor = conn.execute(
        "SELECT id FROM queue_jobs WHERE status = ? AND started_at IS NOT NULL AND started_at < ?",
        (JobStatus.PROCESSING.value, cutoff),
    )
    job_ids = [row[0] for row in cursor.fetchall()]
    requeued = []
    for job_id in job_ids:
        cursor = conn.execute(
            """
            UPDATE queue_jobs
            SET status = ?, worker_id = NULL, started_at = NULL, error = 'stuck_requeued',
                updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (JobStatus.PENDING.value, utc_now_iso(), job_id, JobStatus.PROCESSING.value),
        )
        if cursor.rowcount == 1:
            requeued.append(job_id)
    return requeued


def delete_jobs_for_article(conn: Any, article_id: str) -> int:
    cursor = conn.execute("DELETE FROM queue_jobs WHERE article_id = ?", (article_id,))
    return cursor.rowcount


def count_jobs_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute("SELECT status, COUNT(*) FROM queue_jobs GROUP BY status")
    counts = {status.value: 0 for status in JobStatus}
    for status, count in cursor.fetchall():
        counts[status] = int(count)
    return counts


# Stories and slides

_STORY_COLUMNS = "id, article_id, title, status, published_at, created_at, updated_at"


def insert_story(conn: Any, article_id: str, title: str) -> str:
    story_id = new_id("story")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO stories (id, article_id, title, status, published_at, created_at, updated_at)
        VALUES (?, ?, ?, ?, NULL, ?, ?)
        """,
        (story_id, article_id, title, StoryStatus.DRAFT.value, now, now),
    )
    return story_id


def insert_slides(conn: Any, story_id: str, slides: list[dict[str, object]]) -> int:
    now = utc_now_iso()
    for slide in slides:
        content = str(slide.get("content") or "")
        conn.execute(
            """
            INSERT INTO slides
                (id, story_id, slide_number, content, word_count, visual_prompt,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                new_id("slide"),
                story_id,
                int(slide["slide_number"]),
                content,
                word_count(content),
                slide.get("visual_prompt"),
                now,
                now,
            ),
        )
    return len(slides)


def get_story(conn: Any, story_id: str) -> Story | None:
    cursor = conn.execute(f"SELECT {_STORY_COLUMNS} FROM stories WHERE id = ?", (story_id,))
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_story(row, list_slides(conn, story_id))


def get_story_for_article(conn: Any, article_id: str) -> Story | None:
    cursor = conn.execute(
        f"SELECT {_STORY_COLUMNS} FROM stories WHERE article_id = ?", (article_id,)
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_story(row, list_slides(conn, row[0]))


def list_stories(conn: Any, status: StoryStatus | None = None, limit: int = 100) -> list[Story]:
    params: list[object] = []
    where = ""
    if status:
        where = "WHERE status = ?"
        params.append(status.value)
    params.append(limit)
    cursor = conn.execute(
        f"SELECT {_STORY_COLUMNS} FROM stories {where} ORDER BY created_at DESC LIMIT ?",
        tuple(params),
    )
    return [_row_to_story(row, list_slides(conn, row[0])) for row in cursor.fetchall()]


def update_story_status(
    conn: Any,
    story_id: str,
    status: StoryStatus,
    expected: Iterable[StoryStatus],
) -> bool:
    values = [item.value for item in expected]
    now = utc_now_iso()
    published_at_sql = "published_at = ?," if status == StoryStatus.PUBLISHED else ""
    params: list[object] = [status.value]
    if status == StoryStatus.PUBLISHED:
        params.append(now)
    params.extend([now, story_id])
    params.extend(values)
    cursor = conn.execute(
        f"""
        UPDATE stories
        SET status = ?, {published_at_sql} updated_at = ?
        WHERE id = ? AND status IN ({','.join(['?'] * len(values))})
        """,
        tuple(params),
    )
    return cursor.rowcount == 1


def delete_story_row(conn: Any, story_id: str) -> int:
    cursor = conn.execute("DELETE FROM stories WHERE id = ?", (story_id,))
    return cursor.rowcount


def list_slides(conn: Any, story_id: str) -> list[Slide]:
    cursor = conn.execute(
        """
        SELECT id, story_id, slide_number, content, word_count, visual_prompt
        FROM slides
        WHERE story_id = ?
        ORDER BY slide_number ASC
        """,
        (story_id,),
    )
    return [
        Slide(
            id=row[0],
            story_id=row[1],
            slide_number=int(row[2]),
            content=row[3],
            word_count=int(row[4]),
            visual_prompt=row[5],
        )
        for row in cursor.fetchall()
    ]


def update_slide_content(conn: Any, story_id: str, slide_number: int, content: str) -> bool:
    cursor = conn.execute(
        """
        UPDATE slides
        SET content = ?, word_count = ?, updated_at = ?
        WHERE story_id = ? AND slide_number = ?
        """,
        (content, word_count(content), utc_now_iso(), story_id, slide_number),
    )
    return cursor.rowcount == 1


def delete_slides(conn: Any, story_id: str) -> int:
    cursor = conn.execute("DELETE FROM slides WHERE story_id = ?", (story_id,))
    return cursor.rowcount


def count_stories_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute("SELECT status, COUNT(*) FROM stories GROUP BY status")
    counts = {status.value: 0 for status in StoryStatus}
    for status, count in cursor.fetchall():
        counts[status] = int(count)
    return counts


# Asset exports

_EXPORT_COLUMNS = """
    id, story_id, status, error_message, file_paths_json, attempts, started_at,
    finished_at, created_at, updated_at
"""


def get_export(conn: Any, export_id: str) -> AssetExport | None:
    cursor = conn.execute(
        f"SELECT {_EXPORT_COLUMNS} FROM asset_exports WHERE id = ?", (export_id,)
    )
    row = cursor.fetchone()
    return _row_to_export(row) if row else None


def get_export_for_story(conn: Any, story_id: str) -> AssetExport | None:
    cursor = conn.execute(
        f"SELECT {_EXPORT_COLUMNS} FROM asset_exports WHERE story_id = ?", (story_id,)
    )
    row = cursor.fetchone()
    return _row_to_export(row) if row else None


def insert_generating_export(conn: Any, story_id: str) -> bool:
    now = utc_now_iso()
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO asset_exports
            (id, story_id, status, error_message, file_paths_json, attempts, started_at,
             finished_at, created_at, updated_at)
        VALUES (?, ?, ?, NULL, NULL, 1, ?, NULL, ?, ?)
        """,
        (new_id("export"), story_id, ExportStatus.GENERATING.value, now, now, now),
    )
    return cursor.rowcount == 1


def transition_export(
    conn: Any,
    export_id: str,
    status: ExportStatus,
    expected: Iterable[ExportStatus],
    error_message: str | None = None,
    file_paths: list[str] | None = None,
) -> bool:
    values = [item.value for item in expected]
    now = utc_now_iso()
    if status == ExportStatus.GENERATING:
        assignments = (
            "status = ?, error_message = NULL, attempts = attempts + 1, started_at = ?,"
            " finished_at = NULL, updated_at = ?"
        )
        params: list[object] = [status.value, now, now]
    elif status == ExportStatus.COMPLETED:
        assignments = (
            "status = ?, error_message = NULL, file_paths_json = ?, finished_at = ?, updated_at = ?"
        )
        params = [status.value, json_dumps(file_paths or []), now, now]
    else:
        assignments = "status = ?, error_message = ?, finished_at = ?, updated_at = ?"
        params = [status.value, error_message, now, now]
    params.append(export_id)
    params.extend(values)
    cursor = conn.execute(
        f"""
        UPDATE asset_exports
        SET {assignments}
        WHERE id = ? AND status IN ({','.join(['?'] * len(values))})
        """,
        tuple(params),
    )
    return cursor.rowcount == 1


def delete_export_for_story(conn: Any, story_id: str) -> int:
    cursor = conn.execute("DELETE FROM asset_exports WHERE story_id = ?", (story_id,))
    return cursor.rowcount


def count_exports_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute("SELECT status, COUNT(*) FROM asset_exports GROUP BY status")
    counts = {status.value: 0 for status in ExportStatus}
    for status, count in cursor.fetchall():
        counts[status] = int(count)
    return counts


# Settings


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )


def get_pipeline_counts(conn: Any) -> dict[str, dict[str, int]]:
    return {
        "articles": count_articles_by_status(conn),
        "queue": count_jobs_by_status(conn),
        "stories": count_stories_by_status(conn),
        "exports": count_exports_by_status(conn),
    }


def _row_to_source(row: tuple) -> Source:
    (
        source_id,
        name,
        url,
        is_active,
        success_rate,
        articles_scraped,
        last_scraped_at,
        last_error,
        health_tier,
        created_at,
        updated_at,
    ) = row
    return Source(
        id=source_id,
        name=name,
        url=url,
        is_active=bool(is_active),
        success_rate=float(success_rate) if success_rate is not None else None,
        articles_scraped=int(articles_scraped) if articles_scraped is not None else None,
        last_scraped_at=last_scraped_at,
        last_error=last_error,
        health_tier=health_tier,
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_article(row: tuple) -> Article:
    (
        article_id,
        source_id,
        title,
        body,
        url,
        processing_status,
        relevance,
        quality,
        rejection_reason,
        scraped_at,
        created_at,
        updated_at,
    ) = row
    return Article(
        id=article_id,
        source_id=source_id,
        title=title,
        body=body,
        url=url,
        processing_status=ArticleStatus(processing_status),
        regional_relevance_score=float(relevance) if relevance is not None else None,
        content_quality_score=float(quality) if quality is not None else None,
        rejection_reason=RejectionReason(rejection_reason) if rejection_reason else None,
        scraped_at=scraped_at,
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_job(row: tuple) -> QueueJob:
    (
        job_id,
        article_id,
        status,
        attempts,
        error,
        worker_id,
        created_at,
        started_at,
        finished_at,
        updated_at,
    ) = row
    return QueueJob(
        id=job_id,
        article_id=article_id,
        status=JobStatus(status),
        attempts=int(attempts),
        error=error,
        worker_id=worker_id,
        created_at=created_at,
        started_at=started_at,
        finished_at=finished_at,
        updated_at=updated_at,
    )


def _row_to_story(row: tuple, slides: list[Slide]) -> Story:
    story_id, article_id, title, status, published_at, created_at, updated_at = row
    return Story(
        id=story_id,
        article_id=article_id,
        title=title,
        status=StoryStatus(status),
        created_at=created_at,
        updated_at=updated_at,
        published_at=published_at,
        slides=slides,
    )


def _row_to_export(row: tuple) -> AssetExport:
    (
        export_id,
        story_id,
        status,
        error_message,
        file_paths_json,
        attempts,
        started_at,
        finished_at,
        created_at,
        updated_at,
    ) = row
    try:
        file_paths = json.loads(file_paths_json) if file_paths_json else []
    except json.JSONDecodeError:
        file_paths = []
    return AssetExport(
        id=export_id,
        story_id=story_id,
        status=ExportStatus(status),
        error_message=error_message,
        file_paths=list(file_paths),
        attempts=int(attempts),
        started_at=started_at,
        finished_at=finished_at,
        created_at=created_at,
        updated_at=updated_at,
    )
