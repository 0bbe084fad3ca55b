from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .errors import BlockedError, ParseError
from .fetcher import HttpFetcher
from .parsers import (
    clean_text,
    detect_currency,
    extract_product_id,
    looks_like_bot_check,
    parse_price,
    parse_rating,
    parse_review_count,
    title_from_url,
    visible_text,
)
from .utils import Availability, ProductRecord

logger = logging.getLogger(__name__)

MIN_HTML_LENGTH = 500
MAX_DESCRIPTION = 500

BODY_PRICE_RE = re.compile(r"(?:₹|Rs\.?|INR|\$|£|€)\s*\d[\d,]*(?:\.\d{1,2})?")

_SECONDARY_SECTION_MARKERS = [
    "customers also bought",
    "customers also viewed",
    "related items",
    "recommended for you",
    "people also bought",
    "similar products",
    "sponsored products",
    "frequently bought together",
]

TITLE_SELECTORS = [
    "h1.product-title",
    'h1[class*="product"]',
    'h1[class*="title"]',
    ".product-name",
    '[data-testid="product-title"]',
    "h1.pdp-title",
    "h1.product-single__title",
    'meta[property="og:title"]',
    'meta[name="twitter:title"]',
    "title",
    "h1",
]

META_PRICE_SELECTORS = [
    'meta[property="product:price:amount"]',
    'meta[property="og:price:amount"]',
    '[itemprop="price"]',
]

PRICE_SELECTORS = [
    ".a-price-whole",
    ".a-price.a-text-price.a-size-medium.a-color-price",
    '[data-a-color="price"]',
    ".price-current",
    ".product-price",
    '[data-testid="product-price"]',
    ".pdp-price",
    ".price",
    '[class*="price"][class*="current"]',
    '[class*="sale-price"]',
    'span[class*="Price"]',
    ".selling-price",
    ".finalPrice",
    '[class*="priceText"]',
    '[class*="productPrice"]',
]

ORIGINAL_PRICE_SELECTORS = [
    ".price-original",
    ".original-price",
    '[data-testid="original-price"]',
    ".price-old",
    ".regular-price",
    '[class*="price"][class*="original"]',
    '[class*="mrp"]',
    "del .price",
    "s .price",
]

BRAND_SELECTORS = [
    'meta[property="product:brand"]',
    '[itemprop="brand"]',
    ".product-brand",
    '[data-testid="brand"]',
    ".brand-name",
    '[class*="brand"]',
]

RATING_SELECTORS = [
    '[itemprop="ratingValue"]',
    "span.a-icon-star-small",
    '[aria-label*="stars"]',
    '[aria-label*="out of"]',
    "[data-rating]",
    '[data-testid="rating"]',
    ".rating-value",
    '[class*="rating"][class*="value"]',
    ".stars-rating",
]

REVIEW_COUNT_SELECTORS = [
    '[itemprop="reviewCount"]',
    '[itemprop="ratingCount"]',
    '[data-testid="review-count"]',
    ".review-count",
    '[class*="review"][class*="count"]',
    'a[href*="review"]',
]

IMAGE_SELECTORS = [
    'meta[property="og:image"]',
    '[itemprop="image"]',
    ".product-image img",
    '[data-testid="product-image"]',
    ".gallery-image img",
]

DESCRIPTION_SELECTORS = [
    'meta[property="og:description"]',
    '[itemprop="description"]',
    ".product-description",
    '[data-testid="description"]',
    ".description",
]

AVAILABILITY_SELECTORS = [
    'link[itemprop="availability"]',
    '[itemprop="availability"]',
    ".availability",
    '[data-testid="availability"]',
    ".stock-status",
]

SPEC_ROW_SELECTORS = "table.specifications tr, .specs-table tr, [class*='spec'] tr"


def query_first(
    soup: BeautifulSoup,
    selectors: Iterable[str],
    validate: Optional[Callable[[str], bool]] = None,
    attrs: Sequence[str] = ("content",),
) -> Optional[str]:
    """Return the first non-empty value matched by ``selectors``.

    Meta-like elements yield their ``content`` (or another attribute from
    ``attrs``); everything else yields its text. ``validate`` filters
    candidates so a cascade can skip over e.g. price labels with no digits.
    """
    for selector in selectors:
        for element in soup.select(selector, limit=10):
            candidates = [element.get(attr) for attr in attrs if element.has_attr(attr)]
            candidates.append(element.get_text(" ", strip=True))
            for candidate in candidates:
                if not isinstance(candidate, str):
                    continue
                value = clean_text(candidate)
                if value and (validate is None or validate(value)):
                    return value
    return None


def _iter_json_ld(soup: BeautifulSoup) -> Iterable[Dict[str, Any]]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block")
            continue
        stack: List[Any] = [data]
        while stack:
            item = stack.pop(0)
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                if isinstance(item.get("@graph"), list):
                    stack.extend(item["@graph"])
                yield item


def _is_product(item: Dict[str, Any]) -> bool:
    item_type = item.get("@type")
    if isinstance(item_type, list):
        return "Product" in item_type
    return item_type == "Product"


def find_product_node(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    for item in _iter_json_ld(soup):
        if _is_product(item):
            return item
    return None


def _first_offer(node: Dict[str, Any]) -> Dict[str, Any]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if isinstance(offers, dict) and isinstance(offers.get("offers"), list) and offers["offers"]:
        nested = offers["offers"][0]
        if isinstance(nested, dict):
            merged = dict(offers)
            merged.update(nested)
            return merged
    return offers if isinstance(offers, dict) else {}


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name")
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str):
        return clean_text(value) or None
    return None


def absolute_image_url(src: Optional[str], page_url: str) -> Optional[str]:
    if not src:
        return None
    src = src.strip()
    if src.startswith("//"):
        src = "https:" + src
    elif src.startswith("/"):
        src = urljoin(page_url, src)
    return src if src.startswith("http") else None


def _json_ld_images(node: Dict[str, Any]) -> List[str]:
    image = node.get("image")
    if isinstance(image, (str, dict)):
        image = [image]
    images: List[str] = []
    for entry in image or []:
        if isinstance(entry, dict):
            entry = entry.get("url") or entry.get("contentUrl")
        if isinstance(entry, str):
            images.append(entry)
    return images


def extract_images(
    soup: BeautifulSoup,
    page_url: str,
    seed: Optional[List[str]] = None,
    selectors: Sequence[str] = IMAGE_SELECTORS,
) -> List[str]:
    images: List[str] = []
    for candidate in seed or []:
        absolute = absolute_image_url(candidate, page_url)
        if absolute and absolute not in images:
            images.append(absolute)
    for selector in selectors:
        for element in soup.select(selector):
            src = (
                element.get("content")
                or element.get("data-old-hires")
                or element.get("src")
                or element.get("data-src")
            )
            absolute = absolute_image_url(src if isinstance(src, str) else None, page_url)
            if absolute and absolute not in images:
                images.append(absolute)
            if len(images) >= 5:
                return images
    return images


def spec_table_rows(soup: BeautifulSoup, rows_selector: str = SPEC_ROW_SELECTORS) -> Dict[str, str]:
    specs: Dict[str, str] = {}
    for row in soup.select(rows_selector):
        cells = row.find_all(["td", "th"])
        if len(cells) < 2:
            continue
        key = clean_text(cells[0].get_text(" "))
        value = clean_text(cells[-1].get_text(" "))
        if key and value and key != value and key not in specs:
            specs[key] = value
    return specs


def trim_secondary_sections(content: str) -> str:
    lowered = content.lower()
    cutoff_index = None
    for marker in _SECONDARY_SECTION_MARKERS:
        idx = lowered.find(marker)
        if idx != -1 and idx > 200:  # ignore matches too early in the document
            cutoff_index = idx if cutoff_index is None else min(cutoff_index, idx)
    if cutoff_index is None:
        return content
    return content[:cutoff_index]


def _valid_price(value: str) -> bool:
    return parse_price(value) is not None


def extract_from_html(html: str, url: str, default_currency: str = "INR") -> ProductRecord:
    return extract_from_soup(BeautifulSoup(html, "html.parser"), url, default_currency)


def extract_from_soup(soup: BeautifulSoup, url: str, default_currency: str = "INR") -> ProductRecord:
    node = find_product_node(soup) or {}
    offer = _first_offer(node)
    page_text = visible_text(soup)

    title = _name_of(node.get("name"))
    if not title or len(title) <= 3:
        title = query_first(soup, TITLE_SELECTORS, validate=lambda value: len(value) > 3)
    if not title:
        title = title_from_url(url)
        if title:
            logger.warning("Using URL-based title for %s: %s", url, title)

    price_text: Optional[str] = None
    price = parse_price(offer.get("price") or offer.get("lowPrice") or offer.get("salePrice"))
    if price is not None:
        price_text = str(offer.get("price") or offer.get("lowPrice") or offer.get("salePrice"))
    else:
        for selectors in (META_PRICE_SELECTORS, PRICE_SELECTORS):
            price_text = query_first(soup, selectors, validate=_valid_price)
            if price_text:
                price = parse_price(price_text)
                break
    if price is None:
        match = BODY_PRICE_RE.search(trim_secondary_sections(page_text))
        if match:
            price_text = match.group()
            price = parse_price(price_text)
            logger.debug("Price from text scan: %s", price_text)

    structured_currency = offer.get("priceCurrency") or query_first(
        soup, ['meta[property="product:price:currency"]', 'meta[property="og:price:currency"]', '[itemprop="priceCurrency"]']
    )
    currency = detect_currency(
        structured=structured_currency if isinstance(structured_currency, str) else None,
        price_text=price_text,
        page_text=page_text,
        url=url,
        default=default_currency,
    )

    original_price = parse_price(offer.get("highPrice"))
    if original_price is None:
        original_text = query_first(soup, ORIGINAL_PRICE_SELECTORS, validate=_valid_price)
        original_price = parse_price(original_text)
    if original_price is not None and (price is None or original_price <= price):
        original_price = None

    brand = _name_of(node.get("brand")) or query_first(
        soup, BRAND_SELECTORS, validate=lambda value: 1 < len(value) < 50
    )

    aggregate = node.get("aggregateRating") if isinstance(node.get("aggregateRating"), dict) else {}
    rating = parse_rating(aggregate.get("ratingValue"))
    if rating is None:
        rating = parse_rating(
            query_first(
                soup,
                RATING_SELECTORS,
                validate=lambda value: parse_rating(value) is not None,
                attrs=("content", "aria-label", "data-rating"),
            )
        )
    review_count = parse_review_count(aggregate.get("reviewCount") or aggregate.get("ratingCount"))
    if review_count is None:
        review_count = parse_review_count(
            query_first(soup, REVIEW_COUNT_SELECTORS, validate=lambda value: parse_review_count(value) is not None)
        )

    description = node.get("description") if isinstance(node.get("description"), str) else None
    description = clean_text(description) or query_first(
        soup, DESCRIPTION_SELECTORS, validate=lambda value: len(value) > 20
    )
    if description:
        description = description[:MAX_DESCRIPTION]

    availability = Availability.from_text(offer.get("availability"))
    if availability is Availability.UNKNOWN:
        availability = Availability.from_text(query_first(soup, AVAILABILITY_SELECTORS, attrs=("href", "content")))

    specifications = spec_table_rows(soup)
    for prop in node.get("additionalProperty") or []:
        if isinstance(prop, dict) and prop.get("name") and prop.get("value") is not None:
            specifications.setdefault(str(prop["name"]), str(prop["value"]))

    return ProductRecord(
        title=title or "",
        price=price or 0.0,
        original_price=original_price,
        currency=currency,
        rating=rating,
        review_count=review_count,
        availability=availability,
        images=extract_images(soup, url, seed=_json_ld_images(node)),
        description=description or None,
        brand=brand,
        specifications=specifications,
        product_id=extract_product_id(url),
        source="markup",
    )


class MarkupExtractor:
    """Fetch a page once and read structured markup, meta tags and class heuristics."""

    def __init__(self, fetcher: HttpFetcher, timeout: float = 15.0, default_currency: str = "INR") -> None:
        self._fetcher = fetcher
        self._timeout = timeout
        self._default_currency = default_currency

    async def extract(self, url: str) -> ProductRecord:
        result = await self._fetcher.fetch(url, timeout=self._timeout, use_session=False, paced=False)
        if len(result.html) < MIN_HTML_LENGTH:
            raise ParseError(f"HTML too short ({len(result.html)} chars) for {url}; likely blocked or empty")
        logger.debug("Fetched %d characters of HTML from %s", len(result.html), url)

        soup = BeautifulSoup(result.html, "html.parser")
        if looks_like_bot_check(soup, result.html):
            raise BlockedError(url, 1)
        record = extract_from_soup(soup, url, self._default_currency)
        logger.info(
            "Markup extraction: title=%s, price=%s %s, images=%d, specs=%d",
            record.title,
            record.currency,
            record.price,
            len(record.images),
            len(record.specifications),
        )
        return record
