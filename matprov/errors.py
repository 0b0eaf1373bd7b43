"""
Typed failure taxonomy for domain mutations.

Every rejected mutation raises one of the four taxonomy classes below. The
taxonomy (``kind``) tells callers what went wrong in general terms; the
``reason`` code names the exact rule that fired (e.g. ``NotOwner``).
"""

from __future__ import annotations

from typing import Any


AUTHORIZATION = "Authorization"
STATE_CONFLICT = "StateConflict"
VALIDATION = "Validation"
NOT_FOUND = "NotFound"


class MatprovError(Exception):
    """Base class for all matprov errors."""


class DomainError(MatprovError):
    """A mutation or lookup rejected by a domain rule."""

    kind: str = ""

    def __init__(self, reason: str, message: str = "", **details: Any):
        self.reason = reason
        self.message = message or reason
        self.details = details
        super().__init__(f"{self.kind}/{reason}: {self.message}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: dict[str, Any] = {
            "kind": self.kind,
            "reason": self.reason,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result


class AuthorizationError(DomainError):
    """Wrong caller, role, ownership or approval."""

    kind = AUTHORIZATION


class StateConflictError(DomainError):
    """Duplicate registration, already listed/inactive, invalid or terminal transition."""

    kind = STATE_CONFLICT


class ValidationError(DomainError):
    """Bad price, bad expiration, malformed reference."""

    kind = VALIDATION


class NotFoundError(DomainError):
    """Unknown id, listing or holder."""

    kind = NOT_FOUND


class SubmissionTimeout(MatprovError):
    """The ledger did not order a submission in time.

    Raised only before anything was appended, so the mutation never happened.
    """
