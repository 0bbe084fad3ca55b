from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from bs4 import BeautifulSoup

from .markup import (
    BODY_PRICE_RE,
    SPEC_ROW_SELECTORS,
    extract_images,
    query_first,
    spec_table_rows,
    trim_secondary_sections,
)
from .parsers import (
    clean_text,
    detect_currency,
    extract_product_id,
    host_of,
    parse_price,
    parse_rating,
    parse_review_count,
    visible_text,
)
from .utils import Availability, ProductRecord, ReviewSnippet

logger = logging.getLogger(__name__)

MAX_REVIEWS = 5
MAX_DESCRIPTION = 1000

_BRAND_PREFIX_RE = re.compile(r"^(?:brand:\s*|visit the\s+)", re.IGNORECASE)
_BRAND_SUFFIX_RE = re.compile(r"\s+store$", re.IGNORECASE)


def _valid_price(value: str) -> bool:
    return parse_price(value) is not None


def _clean_brand(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    brand = _BRAND_SUFFIX_RE.sub("", _BRAND_PREFIX_RE.sub("", value)).strip()
    if not brand or brand.lower() == "unknown" or len(brand) >= 50:
        return None
    return brand


class PlatformCascade:
    """Ordered field locators for one storefront.

    Subclasses only override the selector tables; ``extract`` walks each
    table in order and keeps the first value that parses.
    """

    name = "generic"
    domains: Sequence[str] = ()
    placeholder_title = "Product"
    default_currency: Optional[str] = None
    default_category: Optional[str] = None
    extra_headers: Mapping[str, str] = {}

    title_selectors: Sequence[str] = (
        "h1",
        ".product-title",
        ".title",
        '[data-testid*="title"]',
        ".product-name",
        ".item-title",
        ".product-heading",
        '[class*="title"]',
        '[class*="name"]',
    )
    price_selectors: Sequence[str] = (
        ".price",
        ".cost",
        ".amount",
        ".price-current",
        ".current-price",
        ".sale-price",
        ".product-price",
        ".item-price",
        '[data-testid*="price"]',
        '[class*="price"]',
        '[id*="price"]',
        ".money",
        ".cost-value",
    )
    original_price_selectors: Sequence[str] = (
        ".original-price",
        ".price-old",
        ".regular-price",
        '[class*="mrp"]',
        "del",
        "s",
    )
    rating_selectors: Sequence[str] = ('[itemprop="ratingValue"]', ".rating", '[class*="rating"]')
    review_count_selectors: Sequence[str] = ('[itemprop="reviewCount"]', ".review-count", '[class*="review"][class*="count"]')
    availability_selectors: Sequence[str] = (".availability", '[itemprop="availability"]', ".stock-status")
    image_selectors: Sequence[str] = ('meta[property="og:image"]', '[itemprop="image"]', ".product-image img")
    brand_selectors: Sequence[str] = (".brand", ".manufacturer", '[data-testid*="brand"]', ".product-brand")
    description_selectors: Sequence[str] = (
        'meta[property="og:description"]',
        '[itemprop="description"]',
        ".product-description",
    )
    feature_selectors: Sequence[str] = ()
    category_selectors: Sequence[str] = ()
    seller_selectors: Sequence[str] = ()

    review_block_selector: Optional[str] = '[itemprop="review"]'
    review_rating_selector = '[itemprop="ratingValue"]'
    review_text_selector = '[itemprop="reviewBody"]'
    review_date_selector: Optional[str] = '[itemprop="datePublished"]'
    review_verified_selector: Optional[str] = None

    spec_row_selector = SPEC_ROW_SELECTORS
    spec_bullet_selector: Optional[str] = None

    def match_length(self, host: str) -> int:
        """Length of the longest domain token found in ``host``; 0 when none match."""
        matches = [len(token) for token in self.domains if token in host]
        return max(matches) if matches else 0

    def extract(self, soup: BeautifulSoup, url: str, default_currency: str = "INR") -> ProductRecord:
        page_text = visible_text(soup)

        title = query_first(soup, self.title_selectors, validate=lambda value: len(value) > 3)

        price_text = query_first(soup, self.price_selectors, validate=_valid_price)
        if not price_text:
            match = BODY_PRICE_RE.search(trim_secondary_sections(page_text))
            price_text = match.group() if match else None
            if price_text:
                logger.debug("%s: price from text scan %s", self.name, price_text)
        price = parse_price(price_text)

        original_price = parse_price(query_first(soup, self.original_price_selectors, validate=_valid_price))
        if original_price is not None and (price is None or original_price <= price):
            original_price = None

        rating = parse_rating(
            query_first(
                soup,
                self.rating_selectors,
                validate=lambda value: parse_rating(value) is not None,
                attrs=("content", "aria-label"),
            )
        )
        review_count = parse_review_count(
            query_first(soup, self.review_count_selectors, validate=lambda value: parse_review_count(value) is not None)
        )

        features = self._features(soup)
        description = query_first(soup, self.description_selectors, validate=lambda value: len(value) > 20)
        if not description and features:
            description = ". ".join(features)

        category = query_first(soup, self.category_selectors, validate=lambda value: len(value) < 80)

        return ProductRecord(
            title=title or self.placeholder_title,
            price=price or 0.0,
            original_price=original_price,
            currency=detect_currency(
                price_text=price_text,
                page_text=page_text,
                url=url,
                default=self.default_currency or default_currency,
            ),
            rating=rating,
            review_count=review_count,
            availability=Availability.from_text(
                query_first(soup, self.availability_selectors, attrs=("href", "content"))
            ),
            images=extract_images(soup, url, selectors=self.image_selectors),
            description=description[:MAX_DESCRIPTION] if description else None,
            brand=_clean_brand(query_first(soup, self.brand_selectors)),
            category=category or self.default_category,
            specifications=self.extract_specifications(soup),
            product_id=extract_product_id(url),
            features=features,
            reviews=self.extract_reviews(soup),
            seller=query_first(soup, self.seller_selectors, validate=lambda value: len(value) < 100),
            source="legacy",
        )

    def _features(self, soup: BeautifulSoup) -> List[str]:
        features: List[str] = []
        for selector in self.feature_selectors:
            for element in soup.select(selector):
                text = clean_text(element.get_text(" "))
                if len(text) > 10 and text not in features:
                    features.append(text)
            if features:
                break
        return features

    def extract_reviews(self, soup: BeautifulSoup) -> List[ReviewSnippet]:
        if not self.review_block_selector:
            return []
        reviews: List[ReviewSnippet] = []
        for block in soup.select(self.review_block_selector):
            text_node = block.select_one(self.review_text_selector)
            text = clean_text(text_node.get_text(" ")) if text_node else ""
            if not text:
                continue
            rating_node = block.select_one(self.review_rating_selector)
            rating = None
            if rating_node is not None:
                rating = parse_rating(rating_node.get("content") or rating_node.get_text(" "))
            date = None
            if self.review_date_selector:
                date_node = block.select_one(self.review_date_selector)
                if date_node is not None:
                    date = clean_text(date_node.get("content") or date_node.get_text(" ")) or None
            verified = bool(self.review_verified_selector and block.select_one(self.review_verified_selector))
            reviews.append(ReviewSnippet(text=text, rating=rating, date=date, verified=verified))
            if len(reviews) >= MAX_REVIEWS:
                break
        return reviews

    def extract_specifications(self, soup: BeautifulSoup) -> Dict[str, str]:
        specs = spec_table_rows(soup, self.spec_row_selector)
        if self.spec_bullet_selector:
            for element in soup.select(self.spec_bullet_selector):
                parts = clean_text(element.get_text(" ")).split(":")
                if len(parts) == 2 and parts[0].strip() and parts[1].strip():
                    specs.setdefault(parts[0].strip(), parts[1].strip())
        return specs


class GenericCascade(PlatformCascade):
    name = "generic"


class AmazonCascade(PlatformCascade):
    name = "amazon"
    domains = ("amazon",)
    placeholder_title = "Amazon Product"
    extra_headers = {
        "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": '"Windows"',
    }

    title_selectors = ("#productTitle", ".product-title", "h1")
    price_selectors = (
        "#corePrice_feature_div .a-price .a-offscreen",
        ".a-price .a-offscreen",
        ".a-price-whole",
        ".a-price-range .a-price .a-offscreen",
        ".a-price-current .a-offscreen",
        ".a-color-price",
        '[data-automation-id="price"]',
        ".price",
    )
    original_price_selectors = (
        ".a-price.a-text-price .a-offscreen",
        ".a-text-strike",
        "#listPriceValue",
    )
    rating_selectors = ('[data-hook="average-star-rating"]', "#acrPopover", ".a-icon-alt")
    review_count_selectors = ('[data-hook="total-review-count"]', "#acrCustomerReviewText")
    availability_selectors = ("#availability span", ".availability", "#deliveryBlockMessage")
    image_selectors = ("#landingImage", 'img[data-a-image-name="landingImage"]', ".a-dynamic-image", "#main-image img")
    brand_selectors = ("#bylineInfo", '[data-feature-name="bylineInfo"]')
    description_selectors = ("#productDescription",)
    feature_selectors = ("#feature-bullets ul li", ".feature-bullets ul li")
    category_selectors = ("#wayfinding-breadcrumbs_feature_div li:last-child a", "#nav-subnav a.nav-b")
    seller_selectors = ("#sellerProfileTriggerId", "#merchant-info a")

    review_block_selector = '[data-hook="review"]'
    review_rating_selector = '[data-hook="review-star-rating"]'
    review_text_selector = '[data-hook="review-body"] span'
    review_date_selector = '[data-hook="review-date"]'
    review_verified_selector = '[data-hook="avp-badge"]'

    spec_row_selector = "#productDetails_techSpec_section_1 tr, #productDetails_detailBullets_sections1 tr"
    spec_bullet_selector = "#feature-bullets ul li"


class FlipkartCascade(PlatformCascade):
    name = "flipkart"
    domains = ("flipkart",)
    placeholder_title = "Flipkart Product"
    default_currency = "INR"
    extra_headers = {
        "X-User-Agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36 FKUA/website/42/website/Desktop"
        ),
    }

    title_selectors = (".B_NuCI", "._35KyD6", ".VU-ZEz", "h1", "._1h65Xx")
    price_selectors = ("._30jeq3._16Jk6d", "._30jeq3", ".Nx9bqj", "._25b18c", "._3qGVVD", "._1_WHN1")
    original_price_selectors = ("._3I9_wc._2p6lqe", "._3I9_wc", ".yRaY8j", "._3auQ3N", "._14MKbH")
    rating_selectors = ("._3LWZlK", ".XQDdHH", "._3n5AXx", '[id*="rating"]')
    review_count_selectors = ("._2_R_DZ", ".Wphh3N", "._13vcmD")
    availability_selectors = ("._16FRp0", "._1fGeJ5")
    image_selectors = ("._396cs4", ".DByuf4", "._2r_T1I", "._2amPTt img", "._312R1Y img", 'meta[property="og:image"]')
    brand_selectors = ("._1nrv9j", "._2b4mcD", "._3j-qDV")
    description_selectors = ("._3WHvuP", "._1AN87F")
    feature_selectors = ("._1AN87F", "._21Ahn- li", "._7eSDEz")
    category_selectors = ("._1HmYoV", "._2whKao:last-child")
    seller_selectors = ("#sellerName span", "._5gtYXR")

    review_block_selector = "._16PBlm"
    review_rating_selector = "._3LWZlK"
    review_text_selector = ".t-ZTKy"
    review_date_selector = None

    spec_row_selector = "._1mXcCf tr, ._14cfVK tr, ._3k-BhJ tr"


class MyntraCascade(PlatformCascade):
    name = "myntra"
    domains = ("myntra",)
    placeholder_title = "Myntra Product"
    default_currency = "INR"
    default_category = "Fashion"

    title_selectors = (".pdp-product-name", ".pdp-title", "h1")
    price_selectors = (".pdp-price strong", ".pdp-price", ".price")
    original_price_selectors = (".pdp-mrp s", ".pdp-mrp")
    rating_selectors = (".index-overallRating div:first-child", ".index-overallRating")
    review_count_selectors = (".index-ratingsCount",)
    brand_selectors = (".pdp-title", "h1.pdp-title")
    image_selectors = (".image-grid-image", 'meta[property="og:image"]')
    description_selectors = (".pdp-product-description-content",)
    spec_row_selector = ".index-tableContainer .index-row"


class AjioCascade(PlatformCascade):
    name = "ajio"
    domains = ("ajio",)
    placeholder_title = "Ajio Product"
    default_currency = "INR"
    default_category = "Fashion"

    title_selectors = (".prod-name", "h1")
    price_selectors = (".prod-sp", ".price")
    original_price_selectors = (".prod-cp",)
    brand_selectors = (".brand-name", ".prod-brand")
    image_selectors = (".rilrtl-lazy-img", ".zoom-wrap img", 'meta[property="og:image"]')
    feature_selectors = (".prod-list .detail-list",)


SelectorSpec = Union[str, Sequence[str]]


def _as_selectors(spec: Optional[SelectorSpec]) -> Sequence[str]:
    if not spec:
        return ()
    if isinstance(spec, str):
        return (spec,)
    return tuple(selector for selector in spec if isinstance(selector, str))


class ProfileCascade(PlatformCascade):
    """Cascade built from a ``site-profiles.json`` entry (field name to selector or selector list)."""

    _FIELDS = {
        "title": "title_selectors",
        "price": "price_selectors",
        "original_price": "original_price_selectors",
        "rating": "rating_selectors",
        "review_count": "review_count_selectors",
        "availability": "availability_selectors",
        "image": "image_selectors",
        "brand": "brand_selectors",
        "description": "description_selectors",
        "features": "feature_selectors",
        "category": "category_selectors",
        "seller": "seller_selectors",
    }

    def __init__(self, domain: str, profile: Mapping[str, Any]) -> None:
        self.name = str(profile.get("name") or domain)
        self.domains = (domain.lower(),)
        currency = profile.get("currency")
        if isinstance(currency, str) and currency:
            self.default_currency = currency.upper()
        headers = profile.get("headers")
        if isinstance(headers, dict):
            self.extra_headers = {str(key): str(value) for key, value in headers.items()}
        for field_name, attribute in self._FIELDS.items():
            selectors = _as_selectors(profile.get(field_name))
            if selectors:
                # profile selectors first, generic ones as a safety net
                setattr(self, attribute, tuple(selectors) + tuple(getattr(PlatformCascade, attribute)))
        specs = profile.get("specifications")
        if isinstance(specs, str) and specs:
            self.spec_row_selector = specs


class PlatformRegistry:
    def __init__(self, default: Optional[PlatformCascade] = None) -> None:
        self._cascades: List[PlatformCascade] = []
        self._default = default or GenericCascade()

    def register(self, cascade: PlatformCascade) -> None:
        self._cascades.append(cascade)
        logger.debug("Registered platform cascade %s for %s", cascade.name, ", ".join(cascade.domains))

    def register_profiles(self, profiles: Mapping[str, Any]) -> int:
        count = 0
        for domain, profile in profiles.items():
            if not isinstance(profile, dict):
                logger.warning("Ignoring site profile for %s: expected an object", domain)
                continue
            self.register(ProfileCascade(domain, profile))
            count += 1
        return count

    def resolve(self, url: str) -> PlatformCascade:
        host = host_of(url)
        best: Optional[PlatformCascade] = None
        best_length = 0
        for cascade in self._cascades:
            length = cascade.match_length(host)
            if length > best_length:
                best, best_length = cascade, length
        return best or self._default

    @property
    def cascades(self) -> List[PlatformCascade]:
        return list(self._cascades)


def default_registry(site_profiles: Optional[Mapping[str, Any]] = None) -> PlatformRegistry:
    registry = PlatformRegistry(GenericCascade())
    for cascade in (AmazonCascade(), FlipkartCascade(), MyntraCascade(), AjioCascade()):
        registry.register(cascade)
    if site_profiles:
        loaded = registry.register_profiles(site_profiles)
        logger.info("Loaded %d site profile(s)", loaded)
    return registry
