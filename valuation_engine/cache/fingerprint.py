"""Deterministic query fingerprints used as cache and storage keys.

Fingerprints are pure functions of their inputs so the same query maps to
the same key in every process.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any

from ..common.models import SearchParams, ValuationInput


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return value.strip().lower()
    return value


def fingerprint(**fields: Any) -> str:
    """Hash normalised fields into a stable hex key.

    ``None`` values are dropped, strings are stripped and lower-cased and
    keys are sorted, so argument order and casing never change the key.
    """
    canonical = {
        key: _normalize(value)
        for key, value in fields.items()
        if value is not None
    }
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def query_fingerprint(
    input: ValuationInput,
    params: SearchParams,
    source: str | None = None,
) -> str:
    """Key for one vehicle query over one search window."""
    return fingerprint(
        source=source,
        brand=input.brand,
        model=input.model,
        make_id=input.make_id,
        model_id=input.model_id,
        year_min=params.year_min,
        year_max=params.year_max,
        km_min=params.km_min,
        km_max=params.km_max,
        fuel=input.fuel,
        gearbox=input.gearbox,
        power_range=input.power_range or None,
    )


def page_fingerprint(
    source: str,
    input: ValuationInput,
    params: SearchParams,
    page: int,
    gear_code: str | None = None,
) -> str:
    """Key for one (source, page) fetch."""
    return fingerprint(
        query=query_fingerprint(input, params, source),
        gear_code=gear_code,
        page=page,
    )


def result_fingerprint(input: ValuationInput) -> str:
    """Key for a fully computed valuation of ``input``."""
    return fingerprint(
        brand=input.brand,
        model=input.model,
        make_id=input.make_id,
        model_id=input.model_id,
        year=input.year,
        km=input.km,
        fuel=input.fuel,
        gearbox=input.gearbox,
        condition=input.condition,
        power_range=input.power_range or None,
    )
