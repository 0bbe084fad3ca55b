from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
import random
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Sequence

from .assisted import ModelAssistedExtractor
from .cache import ResponseCache
from .errors import ExhaustionError, ExtractionError, ValidationError
from .fallback import curated_record, synthesize
from .fetcher import HttpFetcher, SessionStore
from .legacy import LegacyPlatformExtractor
from .llm import LLMClient
from .markup import MarkupExtractor
from .parsers import (
    clean_text,
    detect_category,
    extract_product_id,
    is_acceptable,
    is_placeholder_title,
    normalize_url,
    title_from_url,
)
from .platforms import PlatformRegistry, default_registry
from .ratelimit import LLMRateLimiter
from .utils import (
    Availability,
    ExtractionAttempt,
    ProductRecord,
    Settings,
    Strategy,
    dump_debug_payload,
    load_site_profiles,
)

logger = logging.getLogger(__name__)

STUB_TITLE = "Product Analysis Failed"
ENHANCEABLE_FIELDS = ("category", "brand", "description", "features")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def stub_record(url: str, currency: str = "INR") -> ProductRecord:
    return ProductRecord(
        title=STUB_TITLE,
        price=0.0,
        currency=currency,
        availability=Availability.UNKNOWN,
        product_id=extract_product_id(url),
    )


def merge_records(primary: Optional[ProductRecord], secondary: Optional[ProductRecord]) -> Optional[ProductRecord]:
    """Fill the gaps in ``primary`` from ``secondary``.

    Placeholder titles, zero prices and unknown availability count as gaps.
    """
    if primary is None:
        return secondary
    if secondary is None:
        return primary
    merged = replace(primary)
    for item in fields(ProductRecord):
        name = item.name
        current = getattr(merged, name)
        candidate = getattr(secondary, name)
        if name == "title":
            if is_placeholder_title(current) and not is_placeholder_title(candidate):
                merged.title = candidate
                logger.debug("Replaced placeholder title '%s' with '%s'", current, candidate)
        elif name == "price":
            if current <= 0 < candidate:
                merged.price = candidate
        elif name == "availability":
            if current is Availability.UNKNOWN:
                merged.availability = candidate
        elif name == "source":
            continue
        elif _is_empty(current) and not _is_empty(candidate):
            setattr(merged, name, candidate)
    return merged


def apply_enhancement(record: ProductRecord, enhanced: Dict[str, Any]) -> ProductRecord:
    """Merge model-suggested catalog fields; title and price are never touched."""
    updates: Dict[str, Any] = {}
    for name in ("category", "brand", "description"):
        value = enhanced.get(name)
        if isinstance(value, str) and clean_text(value) and clean_text(value).lower() not in {"null", "unknown"}:
            updates[name] = clean_text(value)
    features = enhanced.get("features")
    if isinstance(features, list):
        cleaned = [clean_text(str(item)) for item in features if item]
        cleaned = [item for item in cleaned if item]
        if cleaned:
            updates["features"] = cleaned
    if not updates:
        return record
    logger.info("Enhanced %s with %s", record.product_id or record.title, ", ".join(sorted(updates)))
    return replace(record, **updates)


@dataclass
class StageContext:
    url: str
    is_retry: bool = False
    attempts: List[ExtractionAttempt] = field(default_factory=list)
    partial: Optional[ProductRecord] = None
    page_excerpt: str = ""
    platform: Optional[str] = None

    def remember(self, record: Optional[ProductRecord]) -> None:
        self.partial = merge_records(self.partial, record)


class Stage:
    strategy: Strategy
    enhance = False

    def __init__(self, timeout: float = 45.0) -> None:
        self.timeout = timeout

    async def attempt(self, url: str, ctx: StageContext) -> Optional[ProductRecord]:
        raise NotImplementedError


class MarkupStage(Stage):
    strategy = Strategy.MARKUP

    def __init__(self, extractor: MarkupExtractor, timeout: float = 45.0) -> None:
        super().__init__(timeout)
        self._extractor = extractor

    async def attempt(self, url: str, ctx: StageContext) -> Optional[ProductRecord]:
        record = await self._extractor.extract(url)
        ctx.remember(record)
        if not is_acceptable(record):
            raise ValidationError(f"incomplete data (title={record.title!r}, price={record.price})")
        if not record.category:
            record.category = detect_category(url, record.title)
        return record


class ModelStage(Stage):
    strategy = Strategy.MODEL

    def __init__(self, extractor: ModelAssistedExtractor, llm: LLMClient, timeout: float = 45.0) -> None:
        super().__init__(timeout)
        self._extractor = extractor
        self._llm = llm

    async def attempt(self, url: str, ctx: StageContext) -> Optional[ProductRecord]:
        if not self._llm.enabled:
            raise ExtractionError("skipped: no language-model credential configured")
        if ctx.is_retry:
            raise ExtractionError("skipped: retry of a previous failed run")
        record = await self._extractor.extract(url)
        ctx.remember(record)
        if not is_acceptable(record):
            raise ValidationError("model reply failed the title/price gate")
        return record


class LegacyStage(Stage):
    strategy = Strategy.LEGACY
    enhance = True

    def __init__(self, extractor: LegacyPlatformExtractor, timeout: float = 45.0) -> None:
        super().__init__(timeout)
        self._extractor = extractor

    async def attempt(self, url: str, ctx: StageContext) -> Optional[ProductRecord]:
        result = await self._extractor.extract(url)
        ctx.page_excerpt = result.page_excerpt
        ctx.platform = result.platform
        record = result.record
        ctx.remember(record)
        if is_placeholder_title(record.title) or record.price <= 0:
            raise ValidationError(f"low-confidence data (title={record.title!r}, price={record.price})")
        return record


class FallbackStage(Stage):
    strategy = Strategy.FALLBACK
    enhance = True

    def __init__(
        self,
        registry: PlatformRegistry,
        enabled: bool = True,
        default_currency: str = "INR",
        rng: Optional[random.Random] = None,
        timeout: float = 5.0,
    ) -> None:
        super().__init__(timeout)
        self._registry = registry
        self._enabled = enabled
        self._default_currency = default_currency
        self._rng = rng

    async def attempt(self, url: str, ctx: StageContext) -> Optional[ProductRecord]:
        if not self._enabled:
            partial = ctx.partial
            if partial is not None and not is_placeholder_title(partial.title):
                logger.info("Synthetic fallback disabled; returning partial record for %s", url)
                return partial
            raise ExhaustionError("every strategy failed and synthetic fallback is disabled")
        platform = ctx.platform or self._registry.resolve(url).name
        curated = curated_record(url, platform)
        if curated is not None:
            return curated
        synthetic = synthesize(url, platform, self._rng, self._default_currency)
        merged = merge_records(ctx.partial, synthetic)
        merged.source = Strategy.FALLBACK.value
        return merged


class ExtractionPipeline:
    """Run extraction strategies in order until one produces an acceptable record.

    ``extract`` never raises: every stage failure is logged and the chain
    moves on; when nothing works a stub record is returned.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        llm_client: Optional[LLMClient] = None,
        cache: Optional[ResponseCache] = None,
        default_currency: str = "INR",
        enhance_timeout: float = 20.0,
        debug: bool = False,
        debug_dir: str = "debug-artifacts",
    ) -> None:
        self._stages = list(stages)
        self._llm = llm_client
        self._cache = cache
        self._default_currency = default_currency
        self._enhance_timeout = enhance_timeout
        self._debug = debug
        self._debug_dir = debug_dir

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        fetcher: Optional[HttpFetcher] = None,
        llm_client: Optional[LLMClient] = None,
        registry: Optional[PlatformRegistry] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[LLMRateLimiter] = None,
        session_store: Optional[SessionStore] = None,
    ) -> "ExtractionPipeline":
        fetcher = fetcher or HttpFetcher(session_store or SessionStore())
        llm_client = llm_client or LLMClient.from_settings(settings, rate_limiter)
        registry = registry or default_registry(load_site_profiles(settings.site_profiles_path))
        currency = settings.default_currency
        stages: List[Stage] = [
            MarkupStage(MarkupExtractor(fetcher, default_currency=currency), timeout=settings.stage_timeout),
            ModelStage(
                ModelAssistedExtractor(fetcher, llm_client, default_currency=currency),
                llm_client,
                timeout=settings.stage_timeout,
            ),
            LegacyStage(
                LegacyPlatformExtractor(
                    fetcher,
                    registry,
                    base_delay=settings.retry_base_delay,
                    max_attempts=settings.max_attempts,
                    default_currency=currency,
                ),
                timeout=settings.stage_timeout,
            ),
            FallbackStage(registry, enabled=settings.synthetic_fallback, default_currency=currency),
        ]
        return cls(
            stages,
            llm_client=llm_client,
            cache=cache or ResponseCache(ttl=settings.cache_ttl),
            default_currency=currency,
            debug=settings.debug_extract,
            debug_dir=settings.debug_dir,
        )

    async def start(self) -> None:
        if self._llm:
            await self._llm.start()

    async def close(self) -> None:
        if self._llm:
            await self._llm.close()

    async def __aenter__(self) -> "ExtractionPipeline":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def extract(self, url: str, *, is_retry: bool = False) -> ProductRecord:
        try:
            normalized = normalize_url(url)
            if self._cache is None:
                return await self._run(normalized, is_retry)
            record = await self._cache.get_or_create(
                (normalized, is_retry), lambda: self._run(normalized, is_retry)
            )
            return copy.deepcopy(record)
        except Exception:
            logger.exception("Unexpected failure extracting %s", url)
            return self._stub(url)

    async def _run(self, url: str, is_retry: bool) -> ProductRecord:
        logger.info("Starting product extraction for URL: %s", url)
        ctx = StageContext(url=url, is_retry=is_retry)
        product: Optional[ProductRecord] = None
        winner: Optional[Stage] = None

        for stage in self._stages:
            record = await self._run_stage(stage, url, ctx)
            if record is not None:
                product, winner = record, stage
                break

        if product is None:
            logger.error("All extraction strategies failed for %s", url)
            product = self._stub(url)
        elif winner is not None and winner.enhance:
            product = await self._enhance(product, ctx)

        product = self._finalize(product, url, winner)
        logger.info(
            "Final product data: %s - %s %s (source=%s)", product.title, product.currency, product.price, product.source
        )

        if self._debug:
            payload = {
                "url": url,
                "is_retry": is_retry,
                "attempts": [
                    {
                        "strategy": attempt.strategy.value,
                        "succeeded": attempt.succeeded,
                        "error": attempt.error,
                        "record": attempt.record.as_dict() if attempt.record else None,
                    }
                    for attempt in ctx.attempts
                ],
                "final_product": product.as_dict(),
            }
            try:
                digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12]
                dump_debug_payload(self._debug_dir, f"extract-{digest}", payload)
            except Exception:  # pragma: no cover - best effort debug path
                logger.exception("Failed to write debug payload")

        return product

    async def _run_stage(self, stage: Stage, url: str, ctx: StageContext) -> Optional[ProductRecord]:
        logger.info("Attempting %s extraction for %s", stage.strategy.value, url)
        record: Optional[ProductRecord] = None
        error: Optional[str] = None
        try:
            record = await asyncio.wait_for(stage.attempt(url, ctx), timeout=stage.timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {stage.timeout:.0f}s"
            logger.warning("%s stage %s", stage.strategy.value, error)
        except ExtractionError as exc:
            error = str(exc)
            logger.warning("%s stage failed: %s", stage.strategy.value, exc)
        except Exception as exc:
            error = f"{exc.__class__.__name__}: {exc}"
            logger.exception("Unexpected error in %s stage", stage.strategy.value)
        if record is None and error is None:
            error = "incomplete data"
        ctx.attempts.append(
            ExtractionAttempt(strategy=stage.strategy, succeeded=record is not None, record=record, error=error)
        )
        return record

    async def _enhance(self, product: ProductRecord, ctx: StageContext) -> ProductRecord:
        if self._llm is None or not self._llm.enabled:
            return product
        missing = [name for name in ENHANCEABLE_FIELDS if _is_empty(getattr(product, name))]
        if not missing:
            return product
        logger.info("Requesting enhancement for missing fields: %s", ", ".join(missing))
        try:
            enhanced = await asyncio.wait_for(
                self._llm.enhance_product(product, ctx.page_excerpt), timeout=self._enhance_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Enhancement timed out; keeping original data")
            return product
        except Exception:
            logger.exception("Enhancement failed; keeping original data")
            return product
        if not enhanced:
            return product
        return apply_enhancement(product, enhanced)

    def _finalize(self, product: ProductRecord, url: str, winner: Optional[Stage]) -> ProductRecord:
        updates: Dict[str, Any] = {}
        if not product.product_id:
            updates["product_id"] = extract_product_id(url)
        if not product.title:
            updates["title"] = title_from_url(url) or STUB_TITLE
        if not product.currency:
            updates["currency"] = self._default_currency
        if not product.source and winner is not None:
            updates["source"] = winner.strategy.value
        return replace(product, **updates) if updates else product

    def _stub(self, url: str) -> ProductRecord:
        return stub_record(url, self._default_currency)
