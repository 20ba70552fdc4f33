"""
Error taxonomy shared by every handler.

- NotFoundError: a referenced master trade or user document is missing.
- TransientStoreError: Firestore kept failing transiently until the retry
  budget (or the invocation deadline) ran out.
- InvalidInputError: malformed RPC input (numeric fields, enum values).
- ConcurrencyConflictError: transaction contention outlasted the retry budget.
"""

from __future__ import annotations


class JournalError(RuntimeError):
    """Base error for trade journal handlers."""


class NotFoundError(JournalError):
    """Raised when a referenced document does not exist."""


class TransientStoreError(JournalError):
    """Raised when transient Firestore failures exhaust the retry budget."""


class InvalidInputError(JournalError):
    """Raised when caller-provided input fails validation."""

    def __init__(self, message: str, *, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.details = list(details or [])


class ConcurrencyConflictError(JournalError):
    """Raised when a transaction keeps aborting on contention."""


def rpc_error_code(err: BaseException) -> str:
    """
    Callable error code (FunctionsErrorCode member name) for an exception.
    """
    if isinstance(err, InvalidInputError):
        return "INVALID_ARGUMENT"
    if isinstance(err, NotFoundError):
        return "NOT_FOUND"
    if isinstance(err, ConcurrencyConflictError):
        return "ABORTED"
    if isinstance(err, TransientStoreError):
        return "UNAVAILABLE"
    return "INTERNAL"
