from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ModelUnavailableError, RateLimitExceeded
from .ratelimit import LLMRateLimiter
from .utils import DEFAULT_ANTHROPIC_MODELS, DEFAULT_OPENAI_MODELS, ProductRecord, Settings

logger = logging.getLogger(__name__)

MAX_EXCERPT = 2000

_PLACEHOLDER_KEYS = {
    "your_openai_api_key_here",
    "your_anthropic_api_key_here",
    "your_free_gemini_api_key_here",
    "your_api_key_here",
    "changeme",
}

_API_ERRORS = (openai.APIError, anthropic.APIError)

_FENCE_RE = re.compile(r"```(?:json)?\s*|```", re.IGNORECASE)

EXTRACTION_SYSTEM = "You are a precise web scraping assistant. Return only valid JSON with no markdown formatting."
ENHANCEMENT_SYSTEM = "You are an e-commerce catalog assistant. Return only valid JSON with no markdown formatting."


def is_valid_key(api_key: Optional[str]) -> bool:
    if not api_key:
        return False
    stripped = api_key.strip()
    return stripped.lower() not in _PLACEHOLDER_KEYS and len(stripped) > 20


def parse_json_payload(content: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a model reply into a dict, tolerating markdown fences and chatter around the object."""
    if not content:
        return None
    cleaned = _FENCE_RE.sub("", content).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            logger.warning("LLM reply did not contain a JSON object")
            logger.debug("Raw LLM response: %s", content)
            return None
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as exc:
            logger.warning("Failed to parse LLM response as JSON: %s", exc)
            logger.debug("Raw LLM response: %s", content)
            return None
    return data if isinstance(data, dict) else None


class LLMProvider:
    name = "base"

    def __init__(self, api_key: Optional[str], models: Sequence[str], timeout: float = 15.0) -> None:
        self._api_key = api_key
        self.models: List[str] = list(models)
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return is_valid_key(self._api_key) and bool(self.models)

    async def start(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def complete(self, model: str, system: str, prompt: str, max_tokens: int = 1000) -> str:
        raise NotImplementedError


class OpenAIProvider(LLMProvider):
    name = "openai"
    _transient = (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError)

    def __init__(self, api_key: Optional[str], models: Sequence[str] = DEFAULT_OPENAI_MODELS, timeout: float = 15.0) -> None:
        super().__init__(api_key, models, timeout)
        self._client: Optional[AsyncOpenAI] = None

    async def start(self) -> None:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    async def complete(self, model: str, system: str, prompt: str, max_tokens: int = 1000) -> str:
        if not self._client:
            raise RuntimeError("LLM client not initialized")
        client = self._client

        @retry(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(self._transient),
        )
        async def _attempt() -> str:
            try:
                response = await client.chat.completions.create(
                    model=model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    response_format={"type": "json_object"},
                    max_tokens=max_tokens,
                    temperature=0.1,
                )
                return response.choices[0].message.content or ""
            except self._transient as exc:
                logger.warning("OpenAI API error: %s", exc)
                raise

        try:
            return await _attempt()
        except openai.NotFoundError as exc:
            raise ModelUnavailableError(self.name, model) from exc
        except RetryError as exc:
            logger.error("Failed to call OpenAI after retries: %s", exc)
            return ""


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    _transient = (anthropic.APITimeoutError, anthropic.APIConnectionError, anthropic.RateLimitError)

    def __init__(self, api_key: Optional[str], models: Sequence[str] = DEFAULT_ANTHROPIC_MODELS, timeout: float = 15.0) -> None:
        super().__init__(api_key, models, timeout)
        self._client: Optional[AsyncAnthropic] = None

    async def start(self) -> None:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self._api_key, timeout=self._timeout, max_retries=0)

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    async def complete(self, model: str, system: str, prompt: str, max_tokens: int = 1000) -> str:
        if not self._client:
            raise RuntimeError("LLM client not initialized")
        client = self._client

        @retry(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(self._transient),
        )
        async def _attempt() -> str:
            try:
                response = await client.messages.create(
                    model=model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                )
                return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
            except self._transient as exc:
                logger.warning("Anthropic API error: %s", exc)
                raise

        try:
            return await _attempt()
        except anthropic.NotFoundError as exc:
            raise ModelUnavailableError(self.name, model) from exc
        except RetryError as exc:
            logger.error("Failed to call Anthropic after retries: %s", exc)
            return ""


class LLMClient:
    """JSON completions from the first configured provider, walking its model list when a model is unavailable."""

    def __init__(self, providers: Sequence[LLMProvider], rate_limiter: Optional[LLMRateLimiter] = None) -> None:
        self._provider: Optional[LLMProvider] = next((p for p in providers if p.configured), None)
        self._rate_limiter = rate_limiter or LLMRateLimiter()

    @classmethod
    def from_settings(cls, settings: Settings, rate_limiter: Optional[LLMRateLimiter] = None) -> "LLMClient":
        providers: List[LLMProvider] = [
            OpenAIProvider(settings.openai_api_key, settings.openai_models),
            AnthropicProvider(settings.anthropic_api_key, settings.anthropic_models),
        ]
        limiter = rate_limiter or LLMRateLimiter(requests_per_window=settings.ai_requests_per_minute)
        return cls(providers, limiter)

    @property
    def enabled(self) -> bool:
        return self._provider is not None

    @property
    def provider_name(self) -> Optional[str]:
        return self._provider.name if self._provider else None

    async def start(self) -> None:
        if not self._provider:
            logger.info("No valid LLM credential configured; model-assisted stages disabled")
            return
        await self._provider.start()
        logger.info("LLM enabled via %s (models: %s)", self._provider.name, ", ".join(self._provider.models))

    async def close(self) -> None:
        if self._provider:
            await self._provider.close()

    async def complete_json(self, system: str, prompt: str) -> Optional[Dict[str, Any]]:
        provider = self._provider
        if provider is None:
            logger.debug("LLM is not enabled, skipping")
            return None
        try:
            await self._rate_limiter.acquire()
        except RateLimitExceeded as exc:
            logger.info("Skipping LLM call: %s", exc)
            return None

        for model in provider.models:
            try:
                content = await provider.complete(model, system, prompt)
            except ModelUnavailableError as exc:
                logger.warning("%s; trying next model", exc)
                continue
            except _API_ERRORS as exc:
                logger.warning("%s call with %s failed: %s", provider.name, model, exc)
                return None
            if not content:
                logger.warning("LLM returned empty content")
                return None
            logger.debug("LLM reply from %s/%s: %s", provider.name, model, content[:200])
            return parse_json_payload(content)

        logger.error("None of the configured %s models are available", provider.name)
        return None

    async def extract_product_fields(self, url: str, html: str) -> Optional[Dict[str, Any]]:
        return await self.complete_json(EXTRACTION_SYSTEM, self._build_extraction_prompt(url, html))

    async def enhance_product(self, record: ProductRecord, page_excerpt: str) -> Optional[Dict[str, Any]]:
        return await self.complete_json(ENHANCEMENT_SYSTEM, self._build_enhancement_prompt(record, page_excerpt))

    def _build_extraction_prompt(self, url: str, html: str) -> str:
        return f"""You are a precise web scraper. Extract ONLY real product information from this URL and HTML content.

URL: {url}

HTML Content (partial):
{html or "No HTML available - analyze URL structure"}

CRITICAL INSTRUCTIONS:
1. Extract REAL product data ONLY - never make up information
2. If you cannot find specific data, return null for that field
3. Focus on: product title, current price, original price, brand, category, rating, review count
4. For prices: look for numbers near currency symbols such as ₹, Rs., $, £ or €
5. For title: look for h1 tags, product-title classes, or og:title meta tags
6. If unsure about a field, leave it null

Return ONLY valid JSON in this exact format (no markdown, no explanation):
{{
  "title": "exact product title from page",
  "price": number,
  "originalPrice": number or null,
  "currency": "ISO currency code",
  "brand": "brand name or null",
  "category": "category or null",
  "rating": number or null,
  "reviewCount": number or null,
  "availability": "in_stock" or "out_of_stock" or "unknown",
  "description": "brief description or null",
  "confidence": number from 0 to 100
}}"""

    def _build_enhancement_prompt(self, record: ProductRecord, page_excerpt: str) -> str:
        excerpt = (page_excerpt or "").strip()[:MAX_EXCERPT]
        current = {
            "title": record.title,
            "price": record.price,
            "currency": record.currency,
            "brand": record.brand,
            "category": record.category,
            "description": record.description,
            "features": record.features,
        }
        return f"""Analyze this e-commerce product data and page content to fill in missing information.

Product: {record.title}
Price: {record.price} {record.currency or ""}
Current Data: {json.dumps(current, ensure_ascii=False)}

Page Content Sample: {excerpt or "not available"}

Return JSON with:
- category: accurate product category
- brand: brand name if identifiable, otherwise null
- features: array of short key features
- description: concise product description

Return only valid JSON."""
