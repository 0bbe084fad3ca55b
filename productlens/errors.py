from __future__ import annotations

from typing import Optional


class ExtractionError(RuntimeError):
    """Base class for every failure a pipeline stage can recover from."""


class FetchError(ExtractionError):
    """Network, timeout or unrecoverable HTTP failure."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class ParseError(ExtractionError):
    pass


class ValidationError(ExtractionError):
    pass


class BlockedError(ExtractionError):
    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"Blocked by anti-bot protection after {attempts} attempt(s): {url}")
        self.url = url
        self.attempts = attempts


class ExhaustionError(ExtractionError):
    pass


class ModelUnavailableError(ExtractionError):
    """The provider does not serve the requested model identifier."""

    def __init__(self, provider: str, model: str) -> None:
        super().__init__(f"Model {model} is not available from {provider}")
        self.provider = provider
        self.model = model


class RateLimitExceeded(ExtractionError):
    pass
