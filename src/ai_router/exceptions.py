"""
ai-router: Exception hierarchy.

Provider-local failures (initialization, generation, rate limiting) carry
the id of the provider that raised them so the router can record and log
them; only ``NoProvidersAvailable`` and an exhausted fallback hop ever
reach the caller.
"""

from __future__ import annotations

from typing import Any


class RouterError(Exception):
    """Base exception for all ai-router errors."""

    def __init__(self, message: str, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id

    def __str__(self) -> str:
        if self.provider_id:
            return f"[{self.provider_id}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a serializable dictionary."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "provider_id": self.provider_id,
        }


class InitializationError(RouterError):
    """A provider could not be initialized (missing key, model file, server)."""


class GenerationError(RouterError):
    """A provider failed to produce a response."""


class RateLimitExceeded(GenerationError):
    """Request rejected because the provider's minimum interval has not elapsed.

    Attributes:
        retry_after: Seconds until the provider accepts another request.
    """

    def __init__(
        self, message: str, provider_id: str | None = None, retry_after: float = 0.0
    ) -> None:
        super().__init__(message, provider_id)
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class NoProvidersAvailable(RouterError):
    """No ready provider exists, or every candidate was filtered out."""
