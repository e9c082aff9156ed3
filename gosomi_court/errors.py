"""
Court error types.

Every rejection raised by the state machine carries the HTTP status it maps
to, so `api.py` can translate them with a single exception handler.
Guard checks raise before anything is written.
"""

from typing import Any, Dict, Optional


class CourtError(Exception):
    """Base class for client-visible rejections."""

    status_code = 400

    def __init__(self, message: str, *, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        body.update(self.extra)
        return body


class ValidationFailed(CourtError):
    """Missing or malformed input."""

    status_code = 400


class NotFound(CourtError):
    status_code = 404


class CaseNotFound(NotFound):
    def __init__(self, case_id: int):
        super().__init__("case not found", caseId=case_id)


class Forbidden(CourtError):
    status_code = 403


class CaseStateError(CourtError):
    """Action not legal in the case's current status."""

    status_code = 409


class AlreadySubmitted(CourtError):
    """Duplicate defense or duplicate jury vote."""

    status_code = 409


class PenaltyLocked(CourtError):
    """A different penalty category was already chosen."""

    status_code = 409


class SummonsExpired(CourtError):
    status_code = 410


class VerdictGenerationError(CourtError):
    """Judge call failed, returned non-JSON, or broke the verdict schema."""

    status_code = 500
