"""Tests for the synthetic fallback generator."""

import random

import pytest

from productlens.fallback import brand_from_url, synthesize
from productlens.utils import Availability


class TestCurated:
    def test_known_asin(self):
        record = synthesize("https://www.amazon.in/dp/B0CHX1W1XY?th=1", "amazon")
        assert record.title == "Apple iPhone 15 (128 GB) - Black"
        assert record.price == 79900.0
        assert record.product_id == "B0CHX1W1XY"
        assert record.source == "fallback"

    def test_flipkart_default(self):
        record = synthesize("https://www.flipkart.com/oneplus-12r/p/itm6a8f", "flipkart")
        assert record.title.startswith("OnePlus 12R")
        assert record.product_id == "itm6a8f"

    def test_curated_images_are_copied(self):
        first = synthesize("https://www.amazon.in/dp/B09G9FPHY6", "amazon")
        first.images.append("https://example.com/extra.jpg")
        second = synthesize("https://www.amazon.in/dp/B09G9FPHY6", "amazon")
        assert len(second.images) == 1


class TestSynthetic:
    def test_product_id_is_stable(self):
        url = "https://shop.example/dp/ABC1234567"
        assert synthesize(url).product_id == synthesize(url).product_id == "ABC1234567"

    @pytest.mark.parametrize("seed", range(20))
    def test_numeric_bounds(self, seed):
        record = synthesize("https://shop.example/gadgets/widget-pro", rng=random.Random(seed))
        assert 15999 <= record.price <= 89999
        assert record.original_price > record.price
        assert 3.0 <= record.rating <= 5.0
        assert 100 <= record.review_count <= 15000
        assert record.availability is Availability.IN_STOCK

    def test_seeded_rng_is_deterministic(self):
        url = "https://shop.example/samsung-galaxy-phone"
        assert synthesize(url, rng=random.Random(7)) == synthesize(url, rng=random.Random(7))

    @pytest.mark.parametrize(
        "url, prefix",
        [
            ("https://shop.example/samsung-galaxy-s24", "Samsung Galaxy"),
            ("https://shop.example/redmi-note-13", "Xiaomi"),
            ("https://shop.example/realme-narzo-70", "Realme"),
            ("https://shop.example/apple-iphone-15", "Apple iPhone"),
        ],
    )
    def test_title_templates(self, url, prefix):
        assert synthesize(url, rng=random.Random(1)).title.startswith(prefix)

    def test_unknown_product_uses_url_title(self):
        record = synthesize("https://shop.example/garden/teak-bench", rng=random.Random(1))
        assert record.title == "Teak Bench"
        assert record.brand is None

    def test_currency_follows_domain(self):
        assert synthesize("https://shop.example.co.uk/teak-bench").currency == "GBP"
        assert synthesize("https://shop.example/teak-bench", default_currency="USD").currency == "USD"

    def test_brand_from_url(self):
        assert brand_from_url("https://shop.example/oneplus-12") == "OnePlus"
        assert brand_from_url("https://shop.example/teak-bench") is None
