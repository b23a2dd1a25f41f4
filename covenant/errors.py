"""
Covenant — Domain error taxonomy.

Every failure the matching engine reports to a caller is one of these.
Domain errors are recoverable and are raised before (or instead of) any
committed write.  ``StoreUnavailable`` is the odd one out: it wraps a
database driver failure on the read or write path and tells the caller the
request is safe to retry.
"""

from __future__ import annotations


class CovenantError(Exception):
    """Base class for every error the engine reports to a caller."""

    code: str = "error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload: dict = {"error": self.code, "detail": self.message}
        if self.retryable:
            payload["retryable"] = True
        return payload


class DomainError(CovenantError):
    """A recoverable rule violation; no state was changed."""

    code = "domain_error"


class NotFound(DomainError):
    """Referenced profile, interest, conversation or match is absent."""

    code = "not_found"
    status_code = 404


class DuplicateInterest(DomainError):
    code = "duplicate_interest"
    status_code = 409


class InvalidTarget(DomainError):
    """Self-targeting, not a sought gender, blocked, or otherwise ineligible."""

    code = "invalid_target"
    status_code = 422


class AlreadyResolved(DomainError):
    code = "already_resolved"
    status_code = 409


class InvalidParticipant(DomainError):
    code = "invalid_participant"
    status_code = 403


class ValidationError(DomainError):
    code = "validation_error"
    status_code = 422


class InvalidTransition(DomainError):
    """A match row is in a state the requested transition cannot leave."""

    code = "invalid_transition"
    status_code = 409


class StoreUnavailable(CovenantError):
    """The backing store could not be reached; safe to retry."""

    code = "store_unavailable"
    status_code = 503
    retryable = True
