"""CLI entry point for querying listing sources directly.

Usage:
    python -m valuation_engine.datasources.main --brand Fiat --model Panda \\
        --year 2019 --km 60000 --fuel petrol --gearbox manual
    python -m valuation_engine.datasources.main ... --source subito
    python -m valuation_engine.datasources.main --fuels --make-id 28 --model-id 1746
    python -m valuation_engine.datasources.main --variants --make-id 28 --model-id 1746
    python -m valuation_engine.datasources.main --detect-fuel "Golf 2.0 TDI"
"""

from __future__ import annotations

import argparse
import json
import logging

from ..common.config import Config, ValuationConfig
from ..common.logging import setup_logging
from ..common.models import (
    AggregationMode,
    FuelType,
    GearboxType,
    SearchParams,
    ValuationInput,
)
from .aggregator import Aggregator
from .autoscout24_source import FUEL_CODE_LABELS, AutoScout24Source
from .fuel_detector import detect_fuel

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Marketplace listing sources")
    parser.add_argument("--brand", type=str)
    parser.add_argument("--model", type=str)
    parser.add_argument("--year", type=int)
    parser.add_argument("--km", type=int)
    parser.add_argument("--fuel", type=str, choices=[f.value for f in FuelType])
    parser.add_argument("--gearbox", type=str, choices=[g.value for g in GearboxType])
    parser.add_argument("--make-id", type=int)
    parser.add_argument("--model-id", type=int)
    parser.add_argument(
        "--source",
        type=str,
        default="all",
        choices=["autoscout24", "subito", "all"],
        help="Single source, or 'all' for a thorough aggregation (default: all)",
    )
    parser.add_argument(
        "--fuels",
        action="store_true",
        help="List fuel types on sale for --make-id/--model-id",
    )
    parser.add_argument(
        "--variants",
        action="store_true",
        help="List model lines (versions) for --make-id/--model-id",
    )
    parser.add_argument(
        "--detect-fuel",
        type=str,
        metavar="VARIANT",
        help="Guess the fuel type from a variant name",
    )
    parser.add_argument("--output", type=str, help="Output JSON file path")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging()
    config = Config()

    if args.detect_fuel:
        detection = detect_fuel(args.detect_fuel)
        logger.info(
            "%s -> %s (%s, keyword %s)",
            args.detect_fuel,
            detection.fuel.value if detection.fuel else "unknown",
            detection.confidence,
            detection.matched_keyword,
        )
        return

    if args.fuels:
        if not (args.make_id and args.model_id):
            parser.error("--fuels requires --make-id and --model-id")
        with AutoScout24Source(config) as source:
            codes = source.fetch_available_fuels(args.make_id, args.model_id)
        for code in codes:
            value, label = FUEL_CODE_LABELS.get(code, (code.lower(), code))
            logger.info("  %s  %-16s %s", code, value, label)
    if args.variants:
        if not (args.make_id and args.model_id):
            parser.error("--variants requires --make-id and --model-id")
        with AutoScout24Source(config) as source:
            lines = source.fetch_model_lines(args.make_id, args.model_id)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                json.dump([line.to_dict() for line in lines], f, ensure_ascii=False, indent=2)
        for line in lines:
            logger.info("  %-8s %-24s %s", line.id or "-", line.name, line.slug)
        return

        return

    missing = [
        name for name in ("brand", "model", "year", "km", "fuel", "gearbox")
        if getattr(args, name) is None
    ]
    if missing:
        parser.error("missing required arguments: " + ", ".join(f"--{m}" for m in missing))

    input = ValuationInput(
        brand=args.brand,
        model=args.model,
        year=args.year,
        km=args.km,
        fuel=args.fuel,
        gearbox=args.gearbox,
        make_id=args.make_id,
        model_id=args.model_id,
    )
    vc = ValuationConfig.load()
    params = SearchParams.for_input(input, vc.year_window, vc.km_window_percent, config.max_pages)

    with Aggregator.with_default_sources(config) as aggregator:
        if args.source == "all":
            result = aggregator.aggregate(input, params, AggregationMode.THOROUGH)
            listings = result.listings
            output_data: dict = result.to_dict()
        else:
            source = aggregator.get_source(args.source)
            if source is None:
                parser.error(f"source {args.source} is disabled")
            listings = source.fetch_listings(input, params)
            output_data = {"total_listings": len(listings), "sources": {args.source: len(listings)}}

    for listing in listings:
        logger.info(
            "  [%s] %s EUR, %s km, %s (%s)",
            listing.source,
            f"{listing.price:,}",
            f"{listing.mileage:,}",
            listing.first_registration or "unknown",
            listing.seller_type.value,
        )

    output_data["listings"] = [listing.to_dict() for listing in listings]
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(output_data, f, ensure_ascii=False, indent=2)
        logger.info("Output written to %s", args.output)


if __name__ == "__main__":
    main()
