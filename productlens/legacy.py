from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from bs4 import BeautifulSoup

from .errors import BlockedError
from .fetcher import HttpFetcher
from .parsers import looks_like_bot_check, visible_text
from .platforms import PlatformRegistry
from .utils import ProductRecord

logger = logging.getLogger(__name__)

MIN_VISIBLE_TEXT = 1000
EXCERPT_LENGTH = 2000


def is_blocked(soup: BeautifulSoup, html: Optional[str] = None) -> bool:
    """True when the page looks like an anti-automation interstitial rather than a product page."""
    if looks_like_bot_check(soup, html):
        return True
    return len(visible_text(soup)) < MIN_VISIBLE_TEXT


def backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
    return base_delay * (2 ** attempt)


@dataclass
class LegacyResult:
    record: ProductRecord
    page_excerpt: str
    platform: str


class LegacyPlatformExtractor:
    """Platform cascades behind rotating headers, shared cookies and a bounded retry loop."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        registry: PlatformRegistry,
        base_delay: float = 1.0,
        max_attempts: int = 3,
        default_currency: str = "INR",
        fetch_timeout: float = 20.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._registry = registry
        self._base_delay = base_delay
        self._max_attempts = max_attempts
        self._default_currency = default_currency
        self._fetch_timeout = fetch_timeout
        self._sleep = sleep

    async def extract(self, url: str, attempt: int = 0) -> LegacyResult:
        cascade = self._registry.resolve(url)
        logger.info("Legacy extraction for %s using %s cascade", url, cascade.name)

        for current in range(attempt, self._max_attempts):
            if current > 0:
                delay = backoff_delay(current, self._base_delay)
                logger.info("Retrying %s in %.1fs (attempt %d/%d)", url, delay, current + 1, self._max_attempts)
                await self._sleep(delay)

            result = await self._fetcher.fetch(url, cascade.extra_headers, timeout=self._fetch_timeout)
            soup = BeautifulSoup(result.html, "html.parser")
            if is_blocked(soup, result.html):
                logger.warning(
                    "Bot detection on %s (attempt %d/%d, HTTP %s)", url, current + 1, self._max_attempts, result.status
                )
                continue

            record = cascade.extract(soup, url, self._default_currency)
            logger.info(
                "%s cascade: title=%s, price=%s %s", cascade.name, record.title, record.currency, record.price
            )
            return LegacyResult(
                record=record,
                page_excerpt=visible_text(soup)[:EXCERPT_LENGTH],
                platform=cascade.name,
            )

        raise BlockedError(url, self._max_attempts - attempt)
