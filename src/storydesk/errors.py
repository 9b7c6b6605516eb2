from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class InputError(ValueError):
    pass


REASON_MESSAGES: dict[str, str] = {
    "ok": "Done",
    "no_change": "Nothing to change",
    "invalid_input": "The submitted data is malformed",
    "article_not_found": "Article not found",
    "story_not_found": "Story not found",
    "job_not_found": "Queue job not found",
    "export_not_found": "Export not found",
    "source_not_found": "Source not found",
    "illegal_transition": "This action is not allowed in the current status",
    "story_has_no_slides": "A story needs at least one slide before it can be approved",
    "slide_not_found": "Slide not found",
    "already_in_progress": "This is already in progress",
    "not_restorable": "Only discarded or new articles can be restored",
    "retry_limit_reached": "Retry limit reached for this job",
    "generator_unavailable": "No story generator is configured",
    "generator_failed": "Story generation failed",
    "invalid_slides": "Generated slides are empty or not numbered 1..n",
    "cascade_delete_failed": "Delete failed; nothing was removed",
    "insufficient_content_quality": "Content quality is below the configured threshold",
    "insufficient_regional_relevance": "Regional relevance is below the configured threshold",
    "duplicate": "A near-duplicate article already exists",
    "operator_discard": "Discarded by an operator",
    "borderline_scores": "Scores are close to the threshold; held for review",
}


def reason_message(code: str | None) -> str:
    if not code:
        return REASON_MESSAGES["ok"]
    return REASON_MESSAGES.get(code, code.replace("_", " "))


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    code: str
    message: str
    changed: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "code": self.code,
            "message": self.message,
            "changed": self.changed,
            "details": dict(self.details),
        }


def success(code: str = "ok", changed: bool = True, **details: Any) -> ActionResult:
    return ActionResult(
        ok=True, code=code, message=reason_message(code), changed=changed, details=details
    )


def no_change(**details: Any) -> ActionResult:
    return ActionResult(
        ok=True, code="no_change", message=reason_message("no_change"), changed=False, details=details
    )


def failure(code: str, **details: Any) -> ActionResult:
    return ActionResult(
        ok=False, code=code, message=reason_message(code), changed=False, details=details
    )
