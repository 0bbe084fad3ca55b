from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from .errors import FetchError
from .fetcher import HttpFetcher
from .llm import LLMClient
from .markup import absolute_image_url, query_first
from .parsers import (
    clean_text,
    detect_currency,
    extract_product_id,
    parse_price,
    parse_rating,
    parse_review_count,
)
from .utils import Availability, ProductRecord

logger = logging.getLogger(__name__)

MAX_HTML_BYTES = 50_000

_PRODUCT_IMG_RE = re.compile(r"\.(?:jpe?g|png|webp)", re.IGNORECASE)


def image_from_html(html: str, page_url: str) -> Optional[str]:
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    image = absolute_image_url(
        query_first(soup, ['meta[property="og:image"]', 'meta[name="twitter:image"]']), page_url
    )
    if image:
        return image
    for img in soup.find_all("img", src=True):
        src = img["src"]
        if "product" in src.lower() and _PRODUCT_IMG_RE.search(src):
            absolute = absolute_image_url(src, page_url)
            if absolute:
                return absolute
    return None


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = clean_text(value)
    if not text or text.lower() in {"null", "none", "unknown", "n/a"}:
        return None
    return text


def record_from_payload(
    payload: Dict[str, Any],
    url: str,
    html: str = "",
    default_currency: str = "INR",
) -> Optional[ProductRecord]:
    """Turn a model reply into a record, or None when it fails the title/price gate."""
    title = payload.get("title")
    if not isinstance(title, str) or title.strip().lower() == "null" or len(title.strip()) < 3:
        logger.warning("Model extraction rejected: invalid title %r", title)
        return None

    price = parse_price(payload.get("price"))
    if price is None:
        logger.warning("Model extraction rejected: invalid price %r", payload.get("price"))
        return None

    raw_currency = payload.get("currency")
    currency = detect_currency(
        structured=raw_currency if isinstance(raw_currency, str) else None,
        price_text=payload.get("price") if isinstance(payload.get("price"), str) else None,
        url=url,
        default=default_currency,
    )
    original_price = parse_price(payload.get("originalPrice"))
    if original_price is not None and original_price <= price:
        original_price = None

    image = image_from_html(html, url)
    logger.info(
        "Model extracted: %s - %s %s (confidence: %s)",
        title.strip(),
        currency,
        price,
        payload.get("confidence"),
    )
    return ProductRecord(
        title=clean_text(title),
        price=price,
        original_price=original_price,
        currency=currency,
        rating=parse_rating(payload.get("rating")),
        review_count=parse_review_count(payload.get("reviewCount")),
        availability=Availability.from_text(payload.get("availability")),
        images=[image] if image else [],
        description=_optional_text(payload.get("description")),
        brand=_optional_text(payload.get("brand")),
        category=_optional_text(payload.get("category")),
        product_id=extract_product_id(url),
        source="model",
    )


class ModelAssistedExtractor:
    """Ask the language model to read the first chunk of a page's HTML."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        llm: LLMClient,
        timeout: float = 10.0,
        default_currency: str = "INR",
    ) -> None:
        self._fetcher = fetcher
        self._llm = llm
        self._timeout = timeout
        self._default_currency = default_currency

    async def extract(self, url: str) -> Optional[ProductRecord]:
        if not self._llm.enabled:
            logger.debug("LLM is not enabled, skipping model extraction")
            return None

        html = ""
        try:
            result = await self._fetcher.fetch(
                url,
                timeout=self._timeout,
                use_session=False,
                paced=False,
                max_bytes=MAX_HTML_BYTES,
            )
            html = result.html[:MAX_HTML_BYTES]
            logger.debug("Fetched %d characters of HTML for model extraction", len(html))
        except FetchError as exc:
            logger.warning("Failed to fetch HTML for model extraction, using URL alone: %s", exc)

        payload = await self._llm.extract_product_fields(url, html)
        if payload is None:
            return None
        return record_from_payload(payload, url, html, self._default_currency)
