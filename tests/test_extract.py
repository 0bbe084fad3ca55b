"""Tests for the module-level extract() coroutine."""

import pytest

import productlens
from productlens.extractor import STUB_TITLE
from productlens.utils import ProductRecord

URL = "https://shop.example/dp/ABC1234567"


class RecordingPipeline:
    """Stands in for ExtractionPipeline and records what every build was handed."""

    builds = []

    def __init__(self, settings, kwargs):
        self.settings = settings
        self.kwargs = kwargs

    @classmethod
    def from_settings(cls, settings, **kwargs):
        pipeline = cls(settings, kwargs)
        cls.builds.append(pipeline)
        return pipeline

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def extract(self, url, *, is_retry=False):
        return ProductRecord(title="Acme Steel Kettle", price=1499.0, product_id="ABC1234567")


@pytest.fixture
def recording_pipeline(monkeypatch):
    RecordingPipeline.builds = []
    monkeypatch.setattr(productlens, "ExtractionPipeline", RecordingPipeline)
    for key in ("AI_REQUESTS_PER_MINUTE", "PRODUCTLENS_MAX_ATTEMPTS", "PRODUCTLENS_CACHE_TTL", "DEBUG_EXTRACT"):
        monkeypatch.delenv(key, raising=False)
    productlens.reset_shared_state()
    yield RecordingPipeline
    productlens.reset_shared_state()


class TestExtract:
    async def test_calls_share_rate_limiter_cookies_and_cache(self, recording_pipeline):
        await productlens.extract(URL)
        await productlens.extract("https://shop.example/p/blue-ceramic-vase")
        first, second = recording_pipeline.builds
        for name in ("cache", "rate_limiter", "session_store"):
            assert first.kwargs[name] is not None
            assert first.kwargs[name] is second.kwargs[name]
        assert first.settings is second.settings

    async def test_invalid_configuration_returns_stub(self, recording_pipeline, monkeypatch):
        monkeypatch.setenv("PRODUCTLENS_MAX_ATTEMPTS", "three")
        record = await productlens.extract(URL)
        assert record.title == STUB_TITLE
        assert record.price == 0.0
        assert record.product_id == "ABC1234567"
        assert recording_pipeline.builds == []

    async def test_configuration_is_retried_after_a_failure(self, recording_pipeline, monkeypatch):
        monkeypatch.setenv("PRODUCTLENS_MAX_ATTEMPTS", "three")
        await productlens.extract(URL)
        monkeypatch.setenv("PRODUCTLENS_MAX_ATTEMPTS", "2")
        record = await productlens.extract(URL)
        assert record.title == "Acme Steel Kettle"
        assert recording_pipeline.builds[0].settings.max_attempts == 2

    async def test_setup_failure_returns_stub(self, recording_pipeline, monkeypatch):
        def broken(settings, **kwargs):
            raise ValueError("bad site profile")

        monkeypatch.setattr(recording_pipeline, "from_settings", broken)
        record = await productlens.extract(URL)
        assert record.title == STUB_TITLE
        assert record.product_id == "ABC1234567"
