from __future__ import annotations

import json
import logging
import math
import os
import pathlib
import random
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

load_dotenv()

MAX_IMAGES = 5

DEFAULT_OPENAI_MODELS = ["gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"]
DEFAULT_ANTHROPIC_MODELS = [
    "claude-3-5-haiku-latest",
    "claude-3-5-sonnet-latest",
    "claude-3-haiku-20240307",
]


class Settings(BaseModel):
    openai_api_key: Optional[str] = None
    openai_models: List[str] = DEFAULT_OPENAI_MODELS
    anthropic_api_key: Optional[str] = None
    anthropic_models: List[str] = DEFAULT_ANTHROPIC_MODELS
    ai_requests_per_minute: int = 10
    retry_base_delay: float = 1.0
    max_attempts: int = 3
    cache_ttl: float = 30.0
    stage_timeout: float = 45.0
    default_currency: str = "INR"
    synthetic_fallback: bool = True
    site_profiles_path: str = "site-profiles.json"
    debug_extract: bool = False
    debug_dir: str = "debug-artifacts"

    model_config = {
        "extra": "ignore"
    }


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_list(value: Optional[str], default: List[str]) -> List[str]:
    if not value:
        return list(default)
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or list(default)


def load_settings() -> Settings:
    raw: Dict[str, Any] = {
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_models": _parse_list(os.getenv("OPENAI_MODELS"), DEFAULT_OPENAI_MODELS),
        "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY"),
        "anthropic_models": _parse_list(os.getenv("ANTHROPIC_MODELS"), DEFAULT_ANTHROPIC_MODELS),
        "ai_requests_per_minute": os.getenv("AI_REQUESTS_PER_MINUTE") or 10,
        "retry_base_delay": os.getenv("PRODUCTLENS_RETRY_BASE_DELAY") or 1.0,
        "max_attempts": os.getenv("PRODUCTLENS_MAX_ATTEMPTS") or 3,
        "cache_ttl": os.getenv("PRODUCTLENS_CACHE_TTL") or 30.0,
        "stage_timeout": os.getenv("PRODUCTLENS_STAGE_TIMEOUT") or 45.0,
        "default_currency": (os.getenv("PRODUCTLENS_DEFAULT_CURRENCY") or "INR").upper(),
        "synthetic_fallback": _parse_bool(os.getenv("PRODUCTLENS_SYNTHETIC_FALLBACK"), True),
        "site_profiles_path": os.getenv("PRODUCTLENS_SITE_PROFILES") or "site-profiles.json",
        "debug_extract": _parse_bool(os.getenv("DEBUG_EXTRACT"), False),
        "debug_dir": os.getenv("DEBUG_DIR") or "debug-artifacts",
    }

    try:
        settings = Settings(**raw)
    except ValidationError as exc:
        invalid = sorted({str(error["loc"][0]) for error in exc.errors()})
        raise RuntimeError(f"Invalid configuration for: {', '.join(invalid)}") from exc

    if settings.max_attempts < 1:
        raise RuntimeError("PRODUCTLENS_MAX_ATTEMPTS must be at least 1")

    debug_dir = pathlib.Path(settings.debug_dir)
    if settings.debug_extract:
        debug_dir.mkdir(parents=True, exist_ok=True)

    return settings


class Availability(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    UNKNOWN = "unknown"

    @classmethod
    def from_text(cls, value: Any) -> "Availability":
        if isinstance(value, Availability):
            return value
        if not value:
            return cls.UNKNOWN
        lowered = str(value).strip().lower().replace("_", " ").replace("-", " ")
        if any(token in lowered for token in ("out of stock", "outofstock", "unavailable", "sold out", "soldout")):
            return cls.OUT_OF_STOCK
        if any(token in lowered for token in ("in stock", "instock", "available", "left", "limited stock")):
            return cls.IN_STOCK
        return cls.UNKNOWN


class Strategy(str, Enum):
    MARKUP = "markup"
    MODEL = "model"
    LEGACY = "legacy"
    FALLBACK = "fallback"


@dataclass
class ReviewSnippet:
    text: str
    rating: Optional[float] = None
    date: Optional[str] = None
    verified: bool = False


@dataclass
class ProductRecord:
    title: str = ""
    price: float = 0.0
    original_price: Optional[float] = None
    currency: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    availability: Availability = Availability.UNKNOWN
    images: List[str] = field(default_factory=list)
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    specifications: Dict[str, str] = field(default_factory=dict)
    product_id: str = ""
    features: List[str] = field(default_factory=list)
    reviews: List[ReviewSnippet] = field(default_factory=list)
    seller: Optional[str] = None
    source: Optional[str] = None

    def __post_init__(self) -> None:
        self.title = (self.title or "").strip()
        try:
            price = float(self.price or 0)
        except (TypeError, ValueError):
            price = 0.0
        self.price = 0.0 if math.isnan(price) or price < 0 else price

        if self.rating is not None:
            try:
                self.rating = min(5.0, max(0.0, float(self.rating)))
            except (TypeError, ValueError):
                self.rating = None
        if self.review_count is not None and self.review_count < 0:
            self.review_count = None

        self.availability = Availability.from_text(self.availability)

        unique: List[str] = []
        for image in self.images:
            if image and image not in unique:
                unique.append(image)
        self.images = unique[:MAX_IMAGES]

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["availability"] = self.availability.value
        return payload


@dataclass
class ExtractionAttempt:
    strategy: Strategy
    succeeded: bool
    record: Optional[ProductRecord] = None
    error: Optional[str] = None


_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 13_5) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.6422.78 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:126.0) Gecko/20100101 Firefox/126.0",
]


def pick_user_agent() -> str:
    return random.choice(_USER_AGENTS)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def dump_debug_payload(debug_dir: str, prefix: str, payload: Dict[str, Any]) -> pathlib.Path:
    path = pathlib.Path(debug_dir) / f"{prefix}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    return path


def load_site_profiles(path: str = "site-profiles.json") -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        logging.info("%s not found; continuing without custom rules", path)
        return {}
    except json.JSONDecodeError as exc:
        logging.warning("Failed to parse site profiles: %s", exc)
        return {}
