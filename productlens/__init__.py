from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .cache import ResponseCache
from .extractor import ExtractionPipeline, stub_record
from .fetcher import SessionStore
from .ratelimit import LLMRateLimiter
from .utils import Availability, ProductRecord, ReviewSnippet, Settings, load_settings

__all__ = [
    "Availability",
    "ExtractionPipeline",
    "ProductRecord",
    "ReviewSnippet",
    "extract",
]

logger = logging.getLogger(__name__)


@dataclass
class _SharedState:
    settings: Settings
    session_store: SessionStore
    rate_limiter: LLMRateLimiter
    cache: ResponseCache


_shared: Optional[_SharedState] = None


def _shared_state() -> _SharedState:
    """Settings, cookie store, LLM budget and response cache reused by every ``extract`` call."""
    global _shared
    if _shared is None:
        settings = load_settings()
        _shared = _SharedState(
            settings=settings,
            session_store=SessionStore(),
            rate_limiter=LLMRateLimiter(requests_per_window=settings.ai_requests_per_minute),
            cache=ResponseCache(ttl=settings.cache_ttl),
        )
    return _shared


def reset_shared_state() -> None:
    global _shared
    _shared = None


async def extract(url: str, *, is_retry: bool = False) -> ProductRecord:
    """Extract one product with a pipeline built from environment settings. Never raises."""
    try:
        shared = _shared_state()
    except (RuntimeError, OSError) as exc:
        logger.error("Cannot extract %s: %s", url, exc)
        return stub_record(url)

    try:
        pipeline = ExtractionPipeline.from_settings(
            shared.settings,
            cache=shared.cache,
            rate_limiter=shared.rate_limiter,
            session_store=shared.session_store,
        )
        async with pipeline:
            return await pipeline.extract(url, is_retry=is_retry)
    except Exception:
        logger.exception("Unexpected failure setting up extraction for %s", url)
        return stub_record(url, shared.settings.default_currency)
