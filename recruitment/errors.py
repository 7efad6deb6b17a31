"""Error taxonomy shared by every recruitment service.

Each rejected operation carries a stable ``reason`` string so callers can
branch on which invariant failed (e.g. ``slot_full`` vs ``already_booked``).
"""

from __future__ import annotations

from dataclasses import dataclass


class RecruitmentError(Exception):
    """Base class for all core errors."""

    status_code: int = 400
    code: str = "RECRUITMENT_ERROR"

    def __init__(self, reason: str, message: str, details: dict | None = None):
        self.reason = reason
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "reason": self.reason,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(RecruitmentError):
    """Malformed or missing input; fixable by the caller."""

    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(RecruitmentError):
    """Referenced record does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier):
        super().__init__(
            "not_found",
            f"{resource} not found",
            {"resource": resource, "id": str(identifier)},
        )


class StateConflictError(RecruitmentError):
    """A stage, phase or capacity invariant would be violated."""

    status_code = 409
    code = "STATE_CONFLICT"


class DependencyError(RecruitmentError):
    """Destructive operation blocked by dependent records.

    ``summary`` maps record type to the number of rows a cascading delete
    would remove. Repeating the call with confirmation performs it.
    """

    status_code = 409
    code = "CONFIRMATION_REQUIRED"

    def __init__(self, message: str, summary: dict[str, int]):
        super().__init__("confirmation_required", message, {"summary": summary})
        self.summary = summary


@dataclass
class SideEffectWarning:
    """A notification or calendar call that failed after the core commit."""

    kind: str
    recipient: str
    error: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "recipient": self.recipient, "error": self.error}


class SideEffectError(RecruitmentError):
    """An external collaborator failed before any core state changed."""

    status_code = 502
    code = "SIDE_EFFECT_FAILED"
