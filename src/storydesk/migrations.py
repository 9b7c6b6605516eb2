from __future__ import annotations

import logging
from typing import Any, Callable

from .utils import utc_now_iso

Migration = Callable[[Any], None]


def apply_migrations(conn: Any) -> None:
    logger = logging.getLogger("storydesk.migrations")
    with conn.transaction():
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)


def _migration_initial_schema(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            url TEXT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            success_rate REAL NULL,
            articles_scraped INTEGER NULL,
            last_scraped_at TEXT NULL,
            last_error TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS articles (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES sources(id),
            title TEXT NOT NULL,
            body TEXT NULL,
            url TEXT NULL,
            processing_status TEXT NOT NULL DEFAULT 'new',
            regional_relevance_score REAL NULL,
            content_quality_score REAL NULL,
            rejection_reason TEXT NULL,
            scraped_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_articles_status ON articles(processing_status)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_articles_source ON articles(source_id)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS queue_jobs (
            id TEXT PRIMARY KEY,
            article_id TEXT NOT NULL REFERENCES articles(id),
            status TEXT NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            error TEXT NULL,
            worker_id TEXT NULL,
            created_at TEXT NOT NULL,
            started_at TEXT NULL,
            finished_at TEXT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_queue_jobs_status ON queue_jobs(status, created_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS stories (
            id TEXT PRIMARY KEY,
            article_id TEXT NOT NULL UNIQUE REFERENCES articles(id),
            title TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft',
            published_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS slides (
            id TEXT PRIMARY KEY,
            story_id TEXT NOT NULL REFERENCES stories(id),
            slide_number INTEGER NOT NULL,
            content TEXT NOT NULL,
            word_count INTEGER NOT NULL DEFAULT 0,
            visual_prompt TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(story_id, slide_number)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS asset_exports (
            id TEXT PRIMARY KEY,
            story_id TEXT NOT NULL UNIQUE REFERENCES stories(id),
            status TEXT NOT NULL DEFAULT 'none',
            error_message TEXT NULL,
            file_paths_json TEXT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            started_at TEXT NULL,
            finished_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )


def _migration_source_health(conn: Any) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS source_runs (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES sources(id),
            articles_found INTEGER NOT NULL DEFAULT 0,
            articles_stored INTEGER NOT NULL DEFAULT 0,
            duplicates_detected INTEGER NOT NULL DEFAULT 0,
            articles_discarded INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            errors_json TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_source_runs_source ON source_runs(source_id, created_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS health_alerts (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES sources(id),
            alert_type TEXT NOT NULL,
            message TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS scrape_requests (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES sources(id),
            reason TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'requested',
            requested_at TEXT NOT NULL
        )
        """
    )
    _add_column_if_missing(conn, "sources", "health_tier", "TEXT NULL")


def _table_columns(conn: Any, table: str) -> set[str]:
    if conn.backend == "postgres":
        cursor = conn.execute(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = 'public' AND table_name = ?
            """,
            (table,),
        )
        return {row[0] for row in cursor.fetchall()}
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


def _add_column_if_missing(conn: Any, table: str, column: str, ddl: str) -> None:
    if column in _table_columns(conn, table):
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_source_health", _migration_source_health),
    ]
