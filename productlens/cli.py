from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, Sequence

from .extractor import ExtractionPipeline
from .utils import ProductRecord, Settings, configure_logging, load_settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="productlens",
        description="Extract structured product data from e-commerce product pages.",
    )
    parser.add_argument("urls", nargs="+", metavar="URL", help="product page URL(s)")
    parser.add_argument("--debug", action="store_true", help="verbose logging and per-URL debug payloads")
    parser.add_argument("--no-fallback", action="store_true", help="never synthesize data for unreadable pages")
    parser.add_argument("--retry", action="store_true", help="treat the run as a retry (skips the model stage)")
    return parser


async def run(urls: Sequence[str], settings: Settings, is_retry: bool = False) -> List[ProductRecord]:
    async with ExtractionPipeline.from_settings(settings) as pipeline:
        return list(await asyncio.gather(*(pipeline.extract(url, is_retry=is_retry) for url in urls)))


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except RuntimeError as exc:
        print(f"productlens: {exc}", file=sys.stderr)
        return 2

    overrides = {}
    if args.debug:
        overrides["debug_extract"] = True
    if args.no_fallback:
        overrides["synthetic_fallback"] = False
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.debug_extract)
    logger.debug("Extracting %d URL(s)", len(args.urls))

    records = asyncio.run(run(args.urls, settings, is_retry=args.retry))
    for record in records:
        print(json.dumps(record.as_dict(), ensure_ascii=False))
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
