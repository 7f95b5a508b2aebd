"""Error taxonomy shared across the parlay pipeline."""

from __future__ import annotations


class ParlayGenError(Exception):
    """Base error for parlay generation."""


class InvalidOddsError(ParlayGenError, ValueError):
    """Raised when an odds value cannot be converted."""


class InvalidInputError(ParlayGenError, ValueError):
    """Raised when an arithmetic helper receives unusable input."""


class ProviderFetchError(ParlayGenError, RuntimeError):
    """Raised when an external provider call fails."""


class InsufficientDataError(ParlayGenError):
    """No events could be acquired from cache, live fetch or fallbacks."""

    def __init__(self, message: str, *, retry_hint: str = "") -> None:
        super().__init__(message)
        self.retry_hint = retry_hint


class ValidationExhausted(ParlayGenError):
    """Generation used every attempt without a clean validation pass."""
