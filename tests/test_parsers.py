"""Tests for the field parsers and URL heuristics."""

import pytest
from bs4 import BeautifulSoup

from productlens.parsers import (
    clean_text,
    currency_from_url,
    detect_category,
    detect_currency,
    extract_product_id,
    host_of,
    is_acceptable,
    is_placeholder_title,
    looks_like_bot_check,
    normalize_url,
    parse_price,
    parse_rating,
    parse_review_count,
    title_from_url,
    visible_text,
)
from productlens.utils import ProductRecord


class TestParsePrice:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("₹1,234.56", 1234.56),
            ("Rs. 999", 999.0),
            ("$ 19.99", 19.99),
            ("1499", 1499.0),
            (2499, 2499.0),
            (12.345, 12.35),
        ],
    )
    def test_parses_first_numeric_run(self, raw, expected):
        assert parse_price(raw) == expected

    @pytest.mark.parametrize("raw", ["no digits here", "", None, "99999999", 0, -5, True])
    def test_rejects_missing_or_implausible(self, raw):
        assert parse_price(raw) is None

    def test_upper_bound_is_inclusive(self):
        assert parse_price("10,000,000") == 10_000_000.0
        assert parse_price("10,000,001") is None


class TestParseRating:
    def test_out_of_five_text(self):
        assert parse_rating("4.5 out of 5 stars") == 4.5

    def test_bare_number(self):
        assert parse_rating("4.3") == 4.3
        assert parse_rating(4) == 4.0

    def test_out_of_range_is_dropped(self):
        assert parse_rating("7") is None
        assert parse_rating(-1) is None

    def test_missing(self):
        assert parse_rating(None) is None
        assert parse_rating("no rating yet") is None


class TestParseReviewCount:
    def test_labelled_counts(self):
        assert parse_review_count("1,234 ratings") == 1234
        assert parse_review_count("(141) reviews") == 141

    def test_bare_number(self):
        assert parse_review_count("212") == 212
        assert parse_review_count(57) == 57

    def test_rejects_zero_and_huge(self):
        assert parse_review_count("0 reviews") is None
        assert parse_review_count("12000000") is None


class TestCurrency:
    def test_structured_value_wins(self):
        assert detect_currency(structured="eur", price_text="$5", url="https://shop.example.in/x") == "EUR"

    def test_price_text_before_page_text(self):
        assert detect_currency(price_text="$5.00", page_text="Also ₹400") == "USD"

    def test_page_text_before_domain(self):
        assert detect_currency(page_text="Only ₹999 today", url="https://www.amazon.com/item") == "INR"

    def test_domain_before_default(self):
        assert detect_currency(url="https://www.amazon.co.uk/dp/B000000000") == "GBP"

    def test_default(self):
        assert detect_currency() == "INR"
        assert detect_currency(default="USD") == "USD"

    def test_regional_dollars(self):
        assert detect_currency(price_text="C$ 20") == "CAD"
        assert detect_currency(price_text="A$20") == "AUD"

    def test_currency_from_url(self):
        assert currency_from_url("https://www.amazon.in/x") == "INR"
        assert currency_from_url("https://shop.example.de/x") == "EUR"
        assert currency_from_url("https://shop.example.com/x") is None


class TestUrlHeuristics:
    def test_host_of_strips_www(self):
        assert host_of("https://WWW.Amazon.IN/dp/B0CHX1W1XY") == "amazon.in"

    def test_title_from_url(self):
        assert title_from_url("https://shop.example/products/acme-steel-kettle") == "Acme Steel Kettle"
        assert title_from_url("https://shop.example/ab") is None

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://shop.example/dp/ABC1234567", "ABC1234567"),
            ("https://www.flipkart.com/oneplus-12r/p/itm6a8f?pid=MOB123", "itm6a8f"),
            ("https://shop.example/item/98765/details", "98765"),
            ("https://shop.example/product/blue-widget", "blue-widget"),
            ("https://shop.example/shop/", "unknown"),
        ],
    )
    def test_extract_product_id(self, url, expected):
        assert extract_product_id(url) == expected

    def test_extract_product_id_is_stable(self):
        url = "https://shop.example/dp/ABC1234567?ref=home"
        assert extract_product_id(url) == extract_product_id(url)

    @pytest.mark.parametrize(
        "url, title, expected",
        [
            ("https://shop.example/laptops/x1", None, "Electronics"),
            ("https://shop.example/item", "MacBook Air M2", "Electronics"),
            ("https://shop.example/item", "Samsung 43 inch Smart TV", "Electronics"),
            ("https://shop.example/item", "Running Shoes", "Footwear"),
            ("https://shop.example/item", "Mystery Crate", "General"),
        ],
    )
    def test_detect_category(self, url, title, expected):
        assert detect_category(url, title) == expected

    def test_normalize_url_drops_noise(self):
        url = "https://user:pw@WWW.Shop.Example/Item/?utm_source=x&id=5&gclid=abc#reviews"
        assert normalize_url(url) == "https://www.shop.example/Item?id=5"

    def test_normalize_url_keeps_non_urls(self):
        assert normalize_url("  not a url ") == "not a url"


class TestTextHelpers:
    def test_clean_text_collapses_whitespace(self):
        assert clean_text("  Acme \n\t Kettle  ") == "Acme Kettle"
        assert clean_text(None) == ""

    def test_visible_text_skips_scripts_and_head(self):
        soup = BeautifulSoup(
            "<html><head><title>Hidden</title><script>var captcha = 1;</script></head>"
            "<body><!-- comment --><p>Shown</p><style>p {}</style></body></html>",
            "html.parser",
        )
        assert visible_text(soup) == "Shown"


class TestBotCheck:
    def test_phrase_in_title(self):
        soup = BeautifulSoup("<html><head><title>Robot Check</title></head><body><p>Continue</p></body></html>", "html.parser")
        assert looks_like_bot_check(soup)

    def test_challenge_marker_in_attributes(self):
        html = '<html><body><form action="/errors/validateCaptcha"><button>Continue</button></form></body></html>'
        assert looks_like_bot_check(BeautifulSoup(html, "html.parser"), html)

    def test_bare_captcha_script_is_not_a_marker(self):
        html = "<html><body><script>window.recaptchaReady = true;</script><p>Acme Steel Kettle</p></body></html>"
        assert not looks_like_bot_check(BeautifulSoup(html, "html.parser"), html)


class TestAcceptance:
    def test_placeholder_titles(self):
        assert is_placeholder_title("Amazon Product")
        assert is_placeholder_title("  ")
        assert is_placeholder_title(None)
        assert not is_placeholder_title("Acme Kettle")

    def test_is_acceptable(self):
        assert is_acceptable(ProductRecord(title="Kettle", price=10))
        assert not is_acceptable(ProductRecord(title="Abc", price=10))
        assert not is_acceptable(ProductRecord(title="Kettle", price=0))
        assert not is_acceptable(None)
