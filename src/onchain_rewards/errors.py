"""Error taxonomy shared by the ledger components."""

from __future__ import annotations


class RewardsError(Exception):
    """Base exception for rewards ledger errors."""


class ValidationError(RewardsError):
    """Raised for malformed input (non-positive amount, unknown type, missing address).

    Never retried.
    """


class NotFoundError(RewardsError):
    """Raised when a referenced profile or achievement does not exist."""


class ConflictError(RewardsError):
    """Raised when an idempotency marker is already present.

    Callers treat this as a benign no-op.
    """


class TransientStoreError(RewardsError):
    """Raised when the store is unavailable or a write hit a retryable failure."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConfigurationError(RewardsError):
    """Raised at startup for invalid static configuration (tier table, achievements)."""
