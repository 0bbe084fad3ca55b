"""Tests for platform cascades and the registry."""

from bs4 import BeautifulSoup

from productlens.platforms import (
    AmazonCascade,
    FlipkartCascade,
    GenericCascade,
    PlatformRegistry,
    ProfileCascade,
    default_registry,
)
from productlens.utils import Availability

FLIPKART_PAGE = """<html><body>
<span class="B_NuCI">OnePlus 12R 5G (Cool Blue, 128 GB)</span>
<div class="_30jeq3 _16Jk6d">₹39,999</div>
<div class="_3I9_wc _2p6lqe">₹45,999</div>
<div class="_3LWZlK">4.2</div>
<span class="_2_R_DZ">3,421 Ratings &amp; 310 Reviews</span>
<table class="_1mXcCf"><tr><td>RAM</td><td>8 GB</td></tr></table>
<div class="_16PBlm"><div class="_3LWZlK">5</div><div class="t-ZTKy">Smooth display and quick charging.</div></div>
</body></html>"""


def _soup(html):
    return BeautifulSoup(html, "html.parser")


class TestRegistry:
    def test_resolves_known_platforms(self):
        registry = default_registry()
        assert registry.resolve("https://www.amazon.in/dp/B0CHX1W1XY").name == "amazon"
        assert registry.resolve("https://www.flipkart.com/x/p/itm1").name == "flipkart"
        assert registry.resolve("https://www.myntra.com/shirts/1").name == "myntra"
        assert registry.resolve("https://shop.example/item").name == "generic"

    def test_longest_domain_token_wins(self):
        registry = default_registry({"amazon.co.uk": {"name": "amazon-uk", "title": "#ukTitle"}})
        assert registry.resolve("https://www.amazon.co.uk/dp/B000000000").name == "amazon-uk"
        assert registry.resolve("https://www.amazon.in/dp/B000000000").name == "amazon"

    def test_invalid_profile_is_skipped(self):
        registry = PlatformRegistry()
        assert registry.register_profiles({"bad.example": ["not", "a", "dict"]}) == 0
        assert registry.cascades == []

    def test_empty_registry_uses_default(self):
        assert isinstance(PlatformRegistry().resolve("https://anything.example"), GenericCascade)


class TestAmazonCascade:
    def test_full_extraction(self, amazon_html):
        record = AmazonCascade().extract(_soup(amazon_html), "https://www.amazon.in/dp/B0CHX1W1XY")
        assert record.title == "Apple iPhone 15 (128 GB) - Black"
        assert record.price == 79900.0
        assert record.original_price == 89900.0
        assert record.currency == "INR"
        assert record.rating == 4.4
        assert record.review_count == 8547
        assert record.availability is Availability.IN_STOCK
        assert record.brand == "Apple"
        assert record.category == "Smartphones"
        assert record.seller == "Appario Retail"
        assert record.images == ["https://m.media-amazon.com/images/I/iphone15.jpg"]
        assert record.product_id == "B0CHX1W1XY"
        assert record.source == "legacy"

    def test_features_and_specifications(self, amazon_html):
        record = AmazonCascade().extract(_soup(amazon_html), "https://www.amazon.in/dp/B0CHX1W1XY")
        assert record.features == [
            "Display: 6.1-inch Super Retina XDR",
            "Camera: 48MP main camera system with 2x zoom",
        ]
        assert record.description.startswith("Display: 6.1-inch")
        assert record.specifications["Display"] == "6.1-inch Super Retina XDR"

    def test_reviews(self, amazon_html):
        reviews = AmazonCascade().extract_reviews(_soup(amazon_html))
        assert len(reviews) == 1
        assert reviews[0].text == "Great phone, the battery lasts all day."
        assert reviews[0].rating == 5.0
        assert reviews[0].verified is True
        assert "1 May 2024" in reviews[0].date

    def test_placeholder_when_title_missing(self):
        record = AmazonCascade().extract(_soup("<html><body></body></html>"), "https://www.amazon.in/dp/B0CHX1W1XY")
        assert record.title == "Amazon Product"
        assert record.price == 0.0


class TestFlipkartCascade:
    def test_extraction(self):
        record = FlipkartCascade().extract(_soup(FLIPKART_PAGE), "https://www.flipkart.com/oneplus/p/itm6a8f")
        assert record.title == "OnePlus 12R 5G (Cool Blue, 128 GB)"
        assert record.price == 39999.0
        assert record.original_price == 45999.0
        assert record.currency == "INR"
        assert record.rating == 4.2
        assert record.review_count == 3421
        assert record.specifications == {"RAM": "8 GB"}
        assert record.reviews[0].text == "Smooth display and quick charging."

    def test_flipkart_sends_app_header(self):
        assert "X-User-Agent" in FlipkartCascade.extra_headers


class TestGenericAndProfiles:
    def test_generic_text_scan(self):
        html = "<html><body><h1>Walnut Serving Board</h1><p>Price: £24.50 incl. VAT</p></body></html>"
        record = GenericCascade().extract(_soup(html), "https://shop.example/board")
        assert record.title == "Walnut Serving Board"
        assert record.price == 24.5
        assert record.currency == "GBP"

    def test_profile_selectors_come_first(self):
        cascade = ProfileCascade(
            "nykaa.com",
            {"name": "nykaa", "currency": "inr", "title": ["h1.css-title"], "price": ".css-price"},
        )
        assert cascade.name == "nykaa"
        assert cascade.title_selectors[0] == "h1.css-title"
        assert cascade.default_currency == "INR"
        html = """<html><body><h1>Ignore me</h1><h1 class="css-title">Matte Lipstick Ruby</h1>
        <span class="css-price">499</span></body></html>"""
        record = cascade.extract(_soup(html), "https://www.nykaa.com/lipstick/p/123")
        assert record.title == "Matte Lipstick Ruby"
        assert record.price == 499.0
        assert record.currency == "INR"
