"""Shared fixtures: canned product pages and an in-memory fetcher."""

import json

import pytest

from productlens.fetcher import FetchResult

FILLER = " ".join(
    ["This kettle ships with a one year warranty, free delivery and easy returns within ten days."] * 20
)


def json_ld_page() -> str:
    node = {
        "@context": "https://schema.org",
        "@graph": [
            {"@type": "BreadcrumbList", "itemListElement": []},
            {
                "@type": "Product",
                "name": "Acme Steel Kettle 1.5L",
                "brand": {"@type": "Brand", "name": "Acme"},
                "description": "A brushed steel electric kettle with auto shut-off.",
                "image": ["https://cdn.shop.example/kettle-front.jpg", {"url": "https://cdn.shop.example/kettle-side.jpg"}],
                "aggregateRating": {"ratingValue": "4.3", "reviewCount": "212"},
                "offers": {
                    "@type": "Offer",
                    "price": "1499",
                    "priceCurrency": "INR",
                    "availability": "https://schema.org/InStock",
                },
                "additionalProperty": [{"name": "Wattage", "value": "1500 W"}],
            },
        ],
    }
    return f"""<html><head><title>Acme Kettle | Shop</title>
<script type="application/ld+json">{json.dumps(node)}</script>
<meta property="og:image" content="https://cdn.shop.example/kettle-og.jpg">
</head><body>
<h1>Acme Steel Kettle 1.5L</h1>
<p>{FILLER}</p>
<table class="specifications">
<tr><th>Capacity</th><td>1.5 L</td></tr>
<tr><th>Material</th><td>Steel</td></tr>
<tr><th>Capacity</th><td>2 L</td></tr>
</table>
</body></html>"""


def amazon_page() -> str:
    return f"""<html><head><title>Amazon.in: Apple iPhone 15</title></head><body>
<div id="wayfinding-breadcrumbs_feature_div"><ul>
<li><a href="/electronics">Electronics</a></li>
<li><a href="/smartphones">Smartphones</a></li>
</ul></div>
<span id="productTitle"> Apple iPhone 15 (128 GB) - Black </span>
<a id="bylineInfo" href="/stores/apple">Visit the Apple Store</a>
<div id="corePrice_feature_div"><span class="a-price"><span class="a-offscreen">₹79,900.00</span></span></div>
<span class="a-text-strike">₹89,900</span>
<i data-hook="average-star-rating"><span class="a-icon-alt">4.4 out of 5 stars</span></i>
<span id="acrCustomerReviewText">8,547 ratings</span>
<div id="availability"><span>In stock</span></div>
<img id="landingImage" data-old-hires="https://m.media-amazon.com/images/I/iphone15.jpg" src="data:image/gif;base64,R0lGOD">
<a id="sellerProfileTriggerId">Appario Retail</a>
<div id="feature-bullets"><ul>
<li>Display: 6.1-inch Super Retina XDR</li>
<li>Camera: 48MP main camera system with 2x zoom</li>
</ul></div>
<div data-hook="review">
<i data-hook="review-star-rating"><span>5.0 out of 5 stars</span></i>
<span data-hook="review-date">Reviewed in India on 1 May 2024</span>
<span data-hook="avp-badge">Verified Purchase</span>
<span data-hook="review-body"><span>Great phone, the battery lasts all day.</span></span>
</div>
<p>{FILLER}</p>
</body></html>"""


def blocked_page() -> str:
    return """<html><head><title>Robot Check</title></head><body>
<p>Please verify you are human before continuing.</p>
</body></html>"""


def captcha_page() -> str:
    """A full-size Amazon-style bot check, long enough to pass the markup length gate."""
    return """<!doctype html><html><head><title>Robot Check</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<link rel="stylesheet" href="https://images-na.ssl-images-amazon.com/images/G/01/AUIClients/AmazonUI.css">
</head><body><div class="a-container">
<h4>Enter the characters you see below</h4>
<p class="a-last">Sorry, we just need to make sure you're not a robot. For best results,
please make sure your browser is accepting cookies.</p>
<form method="get" action="/errors/validateCaptcha" name="">
<input type=hidden name="amzn" value="c5Lh0Kx9Jp2Q8gq1mN4rT7vY3wZ6bA0d">
<img src="https://images-na.ssl-images-amazon.com/captcha/usvmgloq/Captcha_kwrrnqwkph.jpg">
<input autocomplete="off" spellcheck="false" placeholder="Type characters" id="captchacharacters" name="field-keywords">
<button type="submit" class="a-button-text">Continue shopping</button>
</form></div></body></html>"""


class FakeFetcher:
    """Serves canned HTML in order (repeating the last page) and records every call."""

    def __init__(self, *pages, error=None, status=200):
        self.pages = list(pages)
        self.error = error
        self.status = status
        self.calls = []

    async def fetch(self, url, headers=None, **kwargs):
        self.calls.append({"url": url, "headers": dict(headers or {}), **kwargs})
        if self.error is not None:
            raise self.error
        html = self.pages[min(len(self.calls), len(self.pages)) - 1] if self.pages else ""
        return FetchResult(url=url, status=self.status, html=html)


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def product_html():
    return json_ld_page()


@pytest.fixture
def amazon_html():
    return amazon_page()


@pytest.fixture
def blocked_html():
    return blocked_page()


@pytest.fixture
def captcha_html():
    return captcha_page()


@pytest.fixture
def filler_text():
    return FILLER
