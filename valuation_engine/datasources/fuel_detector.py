"""Guess the fuel type from a variant / version name ("Golf GTI", "Panda Hybrid")."""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..common.models import FuelType

# Ordered by specificity; first match wins
FUEL_KEYWORDS: list[tuple[re.Pattern, FuelType, str]] = [
    # Electric
    (re.compile(r"\b(electric|elettric[ao]|ev|bev)\b", re.I), FuelType.ELECTRIC, "high"),
    (re.compile(r"\be-(?:tron|2008|208|3008|c4|corsa|up|golf)\b", re.I), FuelType.ELECTRIC, "high"),
    (re.compile(r"\bid\.?\s*\d", re.I), FuelType.ELECTRIC, "high"),
    # Hybrid
    (re.compile(r"\b(hybrid|ibrid[ao]|hev|phev|plug-?in)\b", re.I), FuelType.HYBRID, "high"),
    (re.compile(r"\be-?tech\b", re.I), FuelType.HYBRID, "high"),
    (re.compile(r"\bmhev\b", re.I), FuelType.HYBRID, "high"),
    # Diesel engine codes
    (
        re.compile(r"\b(tdi|cdi|hdi|cdti|d4d|dci|blue?hdi|jtdm?|ddis|crdi|mjet|multijet)\b", re.I),
        FuelType.DIESEL,
        "high",
    ),
    (re.compile(r"\beco?diesel\b", re.I), FuelType.DIESEL, "high"),
    (re.compile(r"\b\d+\.\d+\s*d\b", re.I), FuelType.DIESEL, "medium"),
    # Petrol engine codes
    (
        re.compile(r"\b(tsi|tfsi|fsi|gti|vti|thp|puretech|firefly|multiair|vtec|skyactiv-g)\b", re.I),
        FuelType.PETROL,
        "high",
    ),
    (re.compile(r"\bturbo\s*benzina\b", re.I), FuelType.PETROL, "high"),
    (re.compile(r"\b(t-gdi|gdi)\b", re.I), FuelType.PETROL, "high"),
    # LPG
    (re.compile(r"\b(gpl|lpg|bi-?fuel|bifuel)\b", re.I), FuelType.LPG, "high"),
    # CNG
    (re.compile(r"\b(cng|metano|natural\s*gas|gnc|ecofuel)\b", re.I), FuelType.CNG, "high"),
    (re.compile(r"\btgi\b", re.I), FuelType.CNG, "high"),
    (re.compile(r"\bg-tec\b", re.I), FuelType.CNG, "high"),
]


@dataclass(frozen=True)
class FuelDetection:
    fuel: FuelType | None = None
    confidence: str = "low"
    matched_keyword: str | None = None


def detect_fuel(variant_name: str | None) -> FuelDetection:
    """Return the first keyword match in ``variant_name``, or an empty detection."""
    if not variant_name:
        return FuelDetection()

    name = variant_name.strip().lower()
    for pattern, fuel, confidence in FUEL_KEYWORDS:
        match = pattern.search(name)
        if match:
            return FuelDetection(fuel, confidence, match.group(0).upper())

    return FuelDetection()


def is_detected_fuel_valid(detection: FuelDetection, available: list[FuelType]) -> bool:
    """True when a fuel was detected and the model is actually sold with it."""
    return detection.fuel is not None and detection.fuel in available
