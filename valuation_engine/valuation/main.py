"""CLI entry point for a single used-car valuation.

Usage:
    python -m valuation_engine.valuation.main --brand Fiat --model Panda \\
        --year 2019 --km 60000 --fuel petrol --gearbox manual
    python -m valuation_engine.valuation.main --brand Volkswagen --model Golf \\
        --year 2018 --km 90000 --fuel diesel --gearbox automatic \\
        --condition excellent --make-id 74 --model-id 2084 --thorough --output golf.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid

from pydantic import ValidationError

from ..cache.valuation_cache import ValuationCache
from ..common.config import Config
from ..common.logging import setup_logging
from ..common.models import (
    AggregationMode,
    FuelType,
    GearboxType,
    PowerRange,
    ValuationInput,
    VehicleCondition,
)
from ..database.connection import init_db
from ..database.repository import ValuationRepository
from ..datasources.aggregator import Aggregator
from ..work_queue.queue import WorkQueue
from .errors import ValuationError
from .service import ValuationService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Used-car market valuation")
    parser.add_argument("--brand", type=str, required=True, help="Make (e.g., 'Fiat')")
    parser.add_argument("--model", type=str, required=True, help="Model (e.g., 'Panda')")
    parser.add_argument("--year", type=int, required=True, help="Registration year")
    parser.add_argument("--km", type=int, required=True, help="Odometer reading")
    parser.add_argument(
        "--fuel",
        type=str,
        required=True,
        choices=[f.value for f in FuelType],
    )
    parser.add_argument(
        "--gearbox",
        type=str,
        required=True,
        choices=[g.value for g in GearboxType],
    )
    parser.add_argument(
        "--condition",
        type=str,
        default=VehicleCondition.NORMAL.value,
        choices=[c.value for c in VehicleCondition],
        help="Vehicle condition (default: normal)",
    )
    parser.add_argument(
        "--power",
        type=str,
        default=None,
        choices=[p.value for p in PowerRange if p.value],
        help="Power range bucket",
    )
    parser.add_argument("--make-id", type=int, help="AutoScout24 numeric make id")
    parser.add_argument("--model-id", type=int, help="AutoScout24 numeric model id")
    parser.add_argument(
        "--thorough",
        action="store_true",
        help="Query secondary sources inline instead of deferring them",
    )
    parser.add_argument(
        "--save-db",
        action="store_true",
        help="Persist the estimate to the SQLite database",
    )
    parser.add_argument("--output", type=str, help="Output JSON file path")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging()
    config = Config()
    init_db(config)

    try:
        input = ValuationInput(
            brand=args.brand,
            model=args.model,
            year=args.year,
            km=args.km,
            fuel=args.fuel,
            gearbox=args.gearbox,
            condition=args.condition,
            power_range=args.power,
            make_id=args.make_id,
            model_id=args.model_id,
        )
    except ValidationError as exc:
        logger.error("Invalid input: %s", exc)
        return 2

    mode = AggregationMode.THOROUGH if args.thorough else AggregationMode.FAST
    cache = ValuationCache.from_config(config)
    repository = ValuationRepository(config)
    estimate_id = uuid.uuid4().hex if args.save_db else None

    with Aggregator.with_default_sources(config, cache, WorkQueue(config)) as aggregator:
        service = ValuationService(aggregator, cache, repository, config)
        try:
            result = service.valuate(input, estimate_id=estimate_id, mode=mode)
        except ValuationError as exc:
            logger.error("%s (%s) %s", exc.message, exc.kind, exc.suggestion)
            output_data = exc.to_dict()
            exit_code = 1
        else:
            logger.info(
                "%s %s %d, %s km: market %s-%s-%s EUR, yours %s EUR, dealer offer %s EUR (%s)",
                input.brand, input.model, input.year, f"{input.km:,}",
                f"{result.p25:,}", f"{result.p50:,}", f"{result.p75:,}",
                f"{result.adjusted_median:,}", f"{result.dealer_buy_price:,}",
                result.confidence.value,
            )
            output_data = {"input": input.to_dict(), "result": result.to_dict()}
            if estimate_id:
                output_data["estimate_id"] = estimate_id
            exit_code = 0

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(output_data, f, ensure_ascii=False, indent=2)
        logger.info("Output written to %s", args.output)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
