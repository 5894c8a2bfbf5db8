"""Exception hierarchy for the market simulation pipeline.

All project exceptions derive from :class:`MarketSimError` so callers can catch
them uniformly. Failures are recovered at the smallest unit that owns them
(row, batch, symbol) and only surface to the caller of a run as counts.
"""

from __future__ import annotations


class MarketSimError(Exception):
    """Base class for all marketsim errors."""


class ConfigError(MarketSimError):
    """Raised when configuration values or request templates are invalid."""


class GenerationError(MarketSimError):
    """Raised for an invalid series request (for example a negative horizon)."""


class BarValidationError(MarketSimError):
    """Raised when a bar violates the structural invariants of the store.

    Named BarValidationError to avoid conflict with pydantic's ValidationError.
    """


class StoreError(MarketSimError):
    """Raised when reading from or writing to the time-series store fails."""


class TransientStoreError(StoreError):
    """Connection or transaction failure that may succeed on retry."""


class StoreMigrationError(StoreError):
    """Raised when a table lifecycle transition cannot be completed."""


class ProviderError(MarketSimError):
    """Base class for external price source failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderRateLimited(ProviderError):
    """HTTP 429 from the provider. Retried after a fixed delay."""


class ProviderServerError(ProviderError):
    """HTTP 5xx or network failure. Retried after a fixed delay."""


class ProviderClientError(ProviderError):
    """Any other HTTP 4xx. Aborts the current symbol without retrying."""


class ProviderRetriesExhausted(ProviderError):
    """Retryable failures persisted past the maximum attempt count."""


__all__ = [
    "MarketSimError",
    "ConfigError",
    "GenerationError",
    "BarValidationError",
    "StoreError",
    "TransientStoreError",
    "StoreMigrationError",
    "ProviderError",
    "ProviderRateLimited",
    "ProviderServerError",
    "ProviderClientError",
    "ProviderRetriesExhausted",
]
