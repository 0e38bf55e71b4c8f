"""Structured errors reported by the dispatch engine.

Each error carries a stable machine-readable ``code`` and a small context
dict so callers (CLI, HTTP glue, tests) can classify failures without
string-matching. None of them is fatal to the process; every operation can be
re-invoked with fresh state.
"""

from __future__ import annotations

from typing import Any, Mapping


class DispatchError(Exception):
    """Base class for dispatch-layer errors."""

    code = "dispatch_error"

    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context) if context else {}

    def __str__(self) -> str:
        tail = f" context={self.context}" if self.context else ""
        return f"[{self.code}] {self.message}{tail}"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            out["context"] = dict(self.context)
        return out


class NotFoundError(DispatchError):
    """Assignment, task, order or account is missing."""

    code = "not_found"


class ForbiddenError(DispatchError):
    """Caller is not authorized for the target entity."""

    code = "forbidden"


class StaleActionError(DispatchError):
    """Transition attempted on an entity no longer in the expected status."""

    code = "stale_action"


class AssignmentExpiredError(DispatchError):
    """Transition attempted past the confirmation deadline."""

    code = "expired"


class NoDesignerAvailableError(DispatchError):
    """Scheduling found no eligible candidate; retried by the periodic sweep."""

    code = "no_designer_available"


class InsufficientCreditError(DispatchError):
    """Ledger reservation failed; nothing was debited."""

    code = "insufficient_credit"
