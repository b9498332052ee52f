"""taskflow_data.errors — Exception taxonomy for the access layer.

A lookup that finds nothing is not an error: stores return ``None`` or an
empty list. Everything here propagates to the caller, which owns the retry
decision.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class StoreError(Exception):
    """Base class for every failure raised by taskflow_data."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class TransientStoreError(StoreError):
    """Throttling, service-side 5xx or a network failure."""


class ConditionFailed(StoreError):
    """A conditional single-item write found its condition false."""


class TransactionCancelled(StoreError):
    """DynamoDB cancelled a transaction; nothing in it was applied."""

    def __init__(self, message: str, *, reasons: Sequence[str] = (), code: Optional[str] = None) -> None:
        super().__init__(message, code=code or "TransactionCanceledException")
        self.reasons: List[str] = list(reasons)


class TransientTransactionCancelled(TransientStoreError, TransactionCancelled):
    """A transaction cancelled only by throttling or a conflicting transaction.

    Safe for the caller to retry as a whole.
    """


class TransactionTooLarge(StoreError):
    """A multi-item write exceeds the store's per-transaction item bound."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Transaction has {count} items; the limit is {limit}")
        self.count = count
        self.limit = limit


class UniquenessConflict(StoreError):
    """The pre-write check found another user holding the same value.

    Advisory only: two concurrent registrations can both pass the check.
    """

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"A user with {field} '{value}' already exists")
        self.field = field
        self.value = value


class ValidationError(StoreError):
    """Malformed caller input (blank ids, missing required fields)."""
