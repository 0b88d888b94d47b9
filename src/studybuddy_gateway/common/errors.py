"""Exception types shared by the gateway layers.

Every ``GatewayError`` carries the HTTP status and the message that is safe to
show to a caller. ``str(exc)`` holds the internal detail and is only logged.
"""
from __future__ import annotations

QUESTION_REQUIRED = "Question required"
NO_TOKEN = "No token provided"
UNAUTHORIZED = "Unauthorized"
GENERATION_FAILED = "Failed to generate response"
PROVIDERS_EXHAUSTED = "All AI providers failed to generate a response"


class ConfigError(Exception):
    """Raised at startup when configuration is missing or invalid."""


class GatewayError(Exception):
    """Base class for failures mapped to an HTTP response."""

    status_code = 500
    public_message = GENERATION_FAILED


class BadRequest(GatewayError):
    """Raised when the request body does not carry a usable question."""

    status_code = 400
    public_message = QUESTION_REQUIRED


class Unauthenticated(GatewayError):
    """Raised when the bearer token is missing or rejected by the verifier."""

    status_code = 401

    def __init__(self, public_message: str = UNAUTHORIZED, detail: str | None = None) -> None:
        super().__init__(detail or public_message)
        self.public_message = public_message


class ProviderError(GatewayError):
    """Raised when a single generation call fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AllProvidersExhausted(GatewayError):
    """Raised when every credential in the pool failed for one request."""

    public_message = PROVIDERS_EXHAUSTED

    def __init__(self, failures: list[tuple[int, str]]) -> None:
        summary = "; ".join(f"key #{slot}: {msg}" for slot, msg in failures)
        super().__init__(f"{len(failures)} credential(s) failed: {summary}")
        self.failures = failures


__all__ = [
    "ConfigError",
    "GatewayError",
    "BadRequest",
    "Unauthenticated",
    "ProviderError",
    "AllProvidersExhausted",
]
