from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, ProcessingInstruction

from .utils import ProductRecord

MAX_PRICE = Decimal("10000000")
MAX_REVIEW_COUNT = 10_000_000

_NUMBER_RE = re.compile(r"\d[\d,]*(?:\.\d+)?")
_RATING_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:out of|stars?|/\s*5|,)", re.IGNORECASE)
_REVIEW_COUNT_RE = re.compile(r"\(?(\d[\d,]*)\)?\s*(?:reviews?|ratings?|customers?)", re.IGNORECASE)
_TRACKING_PARAMS = {"gclid", "fbclid"}

# Checked in order; regional dollars must win over the bare "$".
_CURRENCY_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"₹|\bRs\.?\s?\d|\bINR\b"), "INR"),
    (re.compile(r"£|\bGBP\b"), "GBP"),
    (re.compile(r"€|\bEUR\b"), "EUR"),
    (re.compile(r"¥|\bJPY\b"), "JPY"),
    (re.compile(r"(?<![A-Za-z])C\$|\bCAD\b"), "CAD"),
    (re.compile(r"(?<![A-Za-z])A\$|\bAUD\b"), "AUD"),
    (re.compile(r"\$|\bUSD\b"), "USD"),
]

_TLD_CURRENCIES = [
    (".co.uk", "GBP"),
    (".com.au", "AUD"),
    (".in", "INR"),
    (".uk", "GBP"),
    (".de", "EUR"),
    (".fr", "EUR"),
    (".it", "EUR"),
    (".es", "EUR"),
    (".eu", "EUR"),
    (".jp", "JPY"),
    (".ca", "CAD"),
]

_PRODUCT_ID_PATTERNS = [
    re.compile(r"/dp/([A-Z0-9]{10})", re.IGNORECASE),
    re.compile(r"/p/([^?]+)", re.IGNORECASE),
    re.compile(r"/([0-9]+)"),
    re.compile(r"product/([^/?]+)", re.IGNORECASE),
]

_CATEGORY_RULES = [
    (("laptop", "computer", "macbook", "tablet"), "Electronics"),
    (("phone", "mobile"), "Electronics"),
    ((r"\btv\b", "television", "monitor"), "Electronics"),
    (("shirt", "trouser", "dress"), "Clothing"),
    (("shoe", "sneaker", "boot"), "Footwear"),
    (("watch", "jewelry", "jewellery"), "Accessories"),
    (("book",), "Books"),
    (("toy", "game"), "Toys & Games"),
    (("kitchen", "appliance"), "Home & Kitchen"),
    (("beauty", "cosmetic"), "Beauty"),
]

PLACEHOLDER_TITLES = {
    "product",
    "amazon product",
    "flipkart product",
    "myntra product",
    "ajio product",
    "product analysis failed",
}

_INVISIBLE_PARENTS = {"script", "style", "noscript", "template", "head", "title"}

BOT_CHECK_PHRASES = (
    "captcha",
    "unusual traffic",
    "access denied",
    "verify you are human",
    "are you a robot",
    "not a robot",
    "bot detection",
    "automated access",
    "robot check",
    "request blocked",
    "too many requests",
)

# Raw-HTML fingerprints of Amazon, Cloudflare, DataDome, PerimeterX and Incapsula challenge pages.
CHALLENGE_MARKERS = (
    "/errors/validatecaptcha",
    "captcha-delivery.com",
    "/cdn-cgi/challenge-platform",
    "cf_chl_opt",
    "px-captcha",
    "_incapsula_resource",
)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            number = Decimal(str(value))
        except InvalidOperation:
            return None
        return number if number.is_finite() else None
    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    try:
        return Decimal(match.group().replace(",", ""))
    except InvalidOperation:
        return None


def parse_price(value: Any) -> Optional[float]:
    """First numeric run of ``value`` as a price, or None when absent or implausible."""
    number = _to_decimal(value)
    if number is None or number <= 0 or number > MAX_PRICE:
        return None
    return float(number.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_rating(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        rating = float(value)
    else:
        text = str(value)
        match = _RATING_RE.search(text) or _NUMBER_RE.search(text)
        if not match:
            return None
        try:
            rating = float(match.group(1) if match.re is _RATING_RE else match.group().replace(",", ""))
        except ValueError:
            return None
    if rating != rating or rating < 0 or rating > 5:
        return None
    return round(rating, 2)


def parse_review_count(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        count = int(value)
    else:
        text = str(value)
        match = _REVIEW_COUNT_RE.search(text)
        raw = match.group(1) if match else None
        if raw is None:
            direct = re.search(r"\d[\d,]*", text)
            raw = direct.group() if direct else None
        if raw is None:
            return None
        count = int(raw.replace(",", ""))
    if count <= 0 or count >= MAX_REVIEW_COUNT:
        return None
    return count


def clean_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def visible_text(soup: BeautifulSoup) -> str:
    """Human-visible page text: skips scripts, styles, comments and the document head."""
    parts: List[str] = []
    for node in soup.find_all(string=True):
        if isinstance(node, (Comment, Declaration, Doctype, ProcessingInstruction)):
            continue
        if node.parent is not None and node.parent.name in _INVISIBLE_PARENTS:
            continue
        parts.append(node)
    return clean_text(" ".join(parts))


def looks_like_bot_check(soup: BeautifulSoup, html: Optional[str] = None) -> bool:
    """True when the page carries a blocker phrase in its text or title, or a challenge marker in its HTML."""
    text = visible_text(soup).lower()
    title = soup.title.get_text(" ", strip=True).lower() if soup.title else ""
    if any(phrase in text or phrase in title for phrase in BOT_CHECK_PHRASES):
        return True
    raw = (html if html is not None else str(soup)).lower()
    return any(marker in raw for marker in CHALLENGE_MARKERS)


def host_of(url: str) -> str:
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def symbol_currency(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for pattern, code in _CURRENCY_PATTERNS:
        if pattern.search(text):
            return code
    return None


def currency_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    host = host_of(url)
    for suffix, code in _TLD_CURRENCIES:
        if host.endswith(suffix):
            return code
    return None


def detect_currency(
    structured: Optional[str] = None,
    price_text: Optional[str] = None,
    page_text: Optional[str] = None,
    url: Optional[str] = None,
    default: str = "INR",
) -> str:
    """Resolve a currency code.

    Precedence: an explicit structured value (``priceCurrency``, ``og`` meta),
    then symbols or codes in the price text, then in the page text, then the
    URL's country domain, then ``default``.
    """
    if structured:
        candidate = structured.strip()
        if re.fullmatch(r"[A-Za-z]{3}", candidate):
            return candidate.upper()
        from_symbol = symbol_currency(candidate)
        if from_symbol:
            return from_symbol
    return (
        symbol_currency(price_text)
        or symbol_currency(page_text)
        or currency_from_url(url)
        or default
    )


def title_from_url(url: str) -> Optional[str]:
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    segments = [segment for segment in path.split("/") if len(segment) > 3]
    if not segments:
        return None
    segment = re.sub(r"\.(html?|php|aspx?)$", "", segments[-1], flags=re.IGNORECASE)
    title = re.sub(r"[-_]+", " ", segment)
    title = re.sub(r"\b\w", lambda m: m.group().upper(), title).strip()
    return title if len(title) > 5 else None


def extract_product_id(url: str) -> str:
    for pattern in _PRODUCT_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return url.split("/")[-1].split("?")[0] or "unknown"


def detect_category(url: str, title: Optional[str]) -> str:
    text = f"{url} {title or ''}".lower()
    for keywords, category in _CATEGORY_RULES:
        if any(re.search(keyword, text) for keyword in keywords):
            return category
    return "General"


def normalize_url(url: str) -> str:
    """Canonical form used as cache key: lowercase host, no credentials, fragment or tracking params."""
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        host = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return raw
    if not parts.scheme or not host:
        return raw
    netloc = f"{host}:{port}" if port else host
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_PARAMS
    ]
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), netloc, path, urlencode(query), ""))


def is_placeholder_title(title: Optional[str]) -> bool:
    if not title or not title.strip():
        return True
    return title.strip().lower() in PLACEHOLDER_TITLES


def is_acceptable(record: Optional[ProductRecord]) -> bool:
    """A record is usable as-is when it has a real title and a positive price."""
    if record is None:
        return False
    return len(record.title.strip()) > 3 and record.price > 0
