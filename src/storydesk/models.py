from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ArticleStatus(str, Enum):
    NEW = "new"
    PROCESSING = "processing"
    PROCESSED = "processed"
    DISCARDED = "discarded"


class RejectionReason(str, Enum):
    INSUFFICIENT_CONTENT_QUALITY = "insufficient_content_quality"
    INSUFFICIENT_REGIONAL_RELEVANCE = "insufficient_regional_relevance"
    DUPLICATE = "duplicate"
    OPERATOR_DISCARD = "operator_discard"


class IntakeDecision(str, Enum):
    ACCEPT = "accept"
    HOLD = "hold"
    DISCARD = "discard"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StoryStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"
    PUBLISHED = "published"
    REJECTED = "rejected"


class ExportStatus(str, Enum):
    NONE = "none"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class HealthTier(str, Enum):
    GATHERING = "gathering"
    INACTIVE = "inactive"
    PRODUCTIVE = "productive"
    FILTERED = "filtered"
    ACTIVE = "active"
    TECHNICAL_ISSUES = "technical_issues"
    IDLE = "idle"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class Source:
    id: str
    name: str
    url: str | None
    is_active: bool
    success_rate: float | None
    articles_scraped: int | None
    last_scraped_at: str | None
    last_error: str | None
    health_tier: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Article:
    id: str
    source_id: str
    title: str
    body: str | None
    url: str | None
    processing_status: ArticleStatus
    regional_relevance_score: float | None
    content_quality_score: float | None
    rejection_reason: RejectionReason | None
    scraped_at: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class QueueJob:
    id: str
    article_id: str
    status: JobStatus
    attempts: int
    error: str | None
    worker_id: str | None
    created_at: str
    started_at: str | None
    finished_at: str | None
    updated_at: str


@dataclass(frozen=True)
class Slide:
    id: str
    story_id: str
    slide_number: int
    content: str
    word_count: int
    visual_prompt: str | None = None


@dataclass(frozen=True)
class Story:
    id: str
    article_id: str
    title: str
    status: StoryStatus
    created_at: str
    updated_at: str
    published_at: str | None = None
    slides: list[Slide] = field(default_factory=list)


@dataclass(frozen=True)
class AssetExport:
    id: str
    story_id: str
    status: ExportStatus
    error_message: str | None
    file_paths: list[str]
    attempts: int
    started_at: str | None
    finished_at: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class SourceHealth:
    tier: HealthTier
    label: str
    rationale: str
    days_since_last_scrape: float


@dataclass(frozen=True)
class IntakeResult:
    decision: IntakeDecision
    reason: str | None = None
    duplicate_of: str | None = None


@dataclass(frozen=True)
class BulkDiscardFilter:
    keywords: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    max_quality_score: float | None = None
    max_relevance_score: float | None = None
    source_id: str | None = None

    def is_empty(self) -> bool:
        return (
            not [k for k in self.keywords if k.strip()]
            and not [d for d in self.domains if d.strip()]
            and self.max_quality_score is None
            and self.max_relevance_score is None
        )


@dataclass(frozen=True)
class ScrapeRunResult:
    articles_found: int
    articles_stored: int
    duplicates_detected: int
    articles_discarded: int
    errors: list[str]


@dataclass(frozen=True)
class ChangeEvent:
    entity: str
    entity_id: str
    action: str
    source_id: str | None = None
