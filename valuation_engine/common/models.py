"""Shared data models for the valuation engine.

These models define the contracts between the source adapters, the
aggregator, the work queue and the statistics engine. All modules import
from here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, ValidationInfo, field_validator

MIN_YEAR = 1990
MAX_KM = 999_999

# Sanity band for a listing price (EUR); anything outside is discarded
MIN_PRICE = 500
MAX_PRICE = 500_000


def current_year() -> int:
    return date.today().year


def is_price_in_band(price: int | float) -> bool:
    return MIN_PRICE <= price <= MAX_PRICE


# === Enums ===

class FuelType(str, Enum):
    """Fuel type selected by the user."""
    PETROL = "petrol"
    DIESEL = "diesel"
    LPG = "lpg"
    CNG = "cng"
    HYBRID = "hybrid"
    ELECTRIC = "electric"


class GearboxType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class VehicleCondition(str, Enum):
    POOR = "poor"
    NORMAL = "normal"
    EXCELLENT = "excellent"


class PowerRange(str, Enum):
    """Engine power bands (hp)."""
    ANY = ""
    LOW = "low"
    MEDIUM_LOW = "medium-low"
    MEDIUM = "medium"
    MEDIUM_HIGH = "medium-high"
    HIGH = "high"

    @property
    def hp_bounds(self) -> tuple[int | None, int | None]:
        """(hp_from, hp_to); None means unbounded on that side."""
        return _POWER_BOUNDS[self]


_POWER_BOUNDS: dict[PowerRange, tuple[int | None, int | None]] = {
    PowerRange.ANY: (None, None),
    PowerRange.LOW: (None, 75),
    PowerRange.MEDIUM_LOW: (75, 120),
    PowerRange.MEDIUM: (120, 180),
    PowerRange.MEDIUM_HIGH: (180, 250),
    PowerRange.HIGH: (250, None),
}


class SellerType(str, Enum):
    DEALER = "dealer"
    PRIVATE = "private"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AggregationMode(str, Enum):
    """FAST never runs slow sources inline; THOROUGH does (workers only)."""
    FAST = "fast"
    THOROUGH = "thorough"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# === Input ===

class ValuationInput(BaseModel):
    """Vehicle description supplied by the caller. Immutable once built."""

    model_config = {"frozen": True}

    brand: str
    model: str
    make_id: int | None = Field(default=None, gt=0)
    model_id: int | None = Field(default=None, gt=0)
    year: int
    km: int = Field(ge=0, le=MAX_KM)
    fuel: FuelType
    gearbox: GearboxType
    condition: VehicleCondition = VehicleCondition.NORMAL
    power_range: PowerRange | None = None

    @field_validator("brand", "model")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        if info.field_name == "brand" and len(value) < 2:
            raise ValueError("brand must be at least 2 characters")
        return value

    @field_validator("year")
    @classmethod
    def _year_in_range(cls, value: int) -> int:
        upper = current_year() + 1
        if not MIN_YEAR <= value <= upper:
            raise ValueError(f"year must be between {MIN_YEAR} and {upper}")
        return value

    @property
    def has_ids(self) -> bool:
        return self.make_id is not None and self.model_id is not None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class SearchParams:
    """One concrete query window against a source."""

    year_min: int
    year_max: int
    km_min: int
    km_max: int
    max_pages: int = 5

    @classmethod
    def for_input(
        cls,
        input: ValuationInput,
        year_window: int,
        km_window_percent: float,
        max_pages: int = 5,
    ) -> SearchParams:
        km_delta = round(input.km * km_window_percent)
        return cls(
            year_min=input.year - year_window,
            year_max=input.year + year_window,
            km_min=max(0, input.km - km_delta),
            km_max=input.km + km_delta,
            max_pages=max_pages,
        )

    @classmethod
    def unrestricted(cls, max_pages: int = 5) -> SearchParams:
        """Widest possible probe window: any year, any mileage."""
        return cls(MIN_YEAR, current_year() + 1, 0, MAX_KM, max_pages)

    def contains(self, other: SearchParams) -> bool:
        """True if this window covers ``other`` entirely."""
        return (
            self.year_min <= other.year_min
            and self.year_max >= other.year_max
            and self.km_min <= other.km_min
            and self.km_max >= other.km_max
        )

    def to_dict(self) -> dict:
        return {
            "year_min": self.year_min,
            "year_max": self.year_max,
            "km_min": self.km_min,
            "km_max": self.km_max,
            "max_pages": self.max_pages,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SearchParams:
        return cls(
            year_min=int(data["year_min"]),
            year_max=int(data["year_max"]),
            km_min=int(data["km_min"]),
            km_max=int(data["km_max"]),
            max_pages=int(data.get("max_pages", 5)),
        )


# === Listings ===

@dataclass(frozen=True)
class Listing:
    """One classified ad, as normalised by a source adapter.

    Only adapters create listings; nothing mutates them afterwards.
    """

    guid: str  # Source-scoped unique id
    price: int  # EUR
    mileage: int
    source: str  # autoscout24 | subito
    first_registration: str = ""  # e.g. "03-2019"
    fuel_code: str = ""  # Source-native code, not normalised
    seller_type: SellerType = SellerType.DEALER
    year: int = 0
    km: int = 0

    @staticmethod
    def synthesize_guid(prefix: str, price: int, mileage: int | None) -> str:
        """Deterministic id for listings the source gives no stable id."""
        return f"{prefix}-{price}-{mileage or 0}"

    def to_dict(self) -> dict:
        return {
            "guid": self.guid,
            "price": self.price,
            "mileage": self.mileage,
            "source": self.source,
            "first_registration": self.first_registration,
            "fuel_code": self.fuel_code,
            "seller_type": self.seller_type.value,
            "year": self.year,
            "km": self.km,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Listing:
        return cls(
            guid=data["guid"],
            price=int(data["price"]),
            mileage=int(data.get("mileage", 0)),
            source=data["source"],
            first_registration=data.get("first_registration", ""),
            fuel_code=data.get("fuel_code", ""),
            seller_type=SellerType(data.get("seller_type", SellerType.DEALER.value)),
            year=int(data.get("year", 0)),
            km=int(data.get("km", 0)),
        )


@dataclass
class AggregatedResult:
    """Combined, deduplicated listings from one aggregation call."""

    listings: list[Listing] = field(default_factory=list)
    sources: dict[str, int] = field(default_factory=dict)  # counted before dedup
    enriched: bool = False  # True only if a secondary source actually ran
    fetch_time_ms: int = 0
    queued: list[str] = field(default_factory=list)  # QueuedRequest ids

    def to_dict(self) -> dict:
        return {
            "total_listings": len(self.listings),
            "sources": dict(self.sources),
            "enriched": self.enriched,
            "fetch_time_ms": self.fetch_time_ms,
            "queued": list(self.queued),
        }


@dataclass
class QueuedRequest:
    """A deferred fetch against a slow source."""

    input: ValuationInput
    params: SearchParams
    source: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    status: QueueStatus = QueueStatus.PENDING
    last_error: str | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (QueueStatus.COMPLETED, QueueStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "input": self.input.to_dict(),
            "params": self.params.to_dict(),
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "attempts": self.attempts,
            "status": self.status.value,
            "last_error": self.last_error,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# === Output ===

@dataclass
class ValuationResult:
    """Robust price statistics for one valuation."""

    p25: int
    p50: int
    p75: int
    samples_raw: int
    samples: int  # used after outlier trimming
    confidence: Confidence
    iqr_ratio: float
    adjusted_median: int  # p50 after the condition adjustment
    dealer_buy_price: int
    min_clean: int = 0
    max_clean: int = 0
    n_dealers: int = 0
    n_private: int = 0
    cached: bool = False
    extended_window: bool = False
    enriched: bool = False  # built from background-enriched stats

    @property
    def dealer_gap(self) -> int:
        return self.adjusted_median - self.dealer_buy_price

    def to_dict(self) -> dict:
        return {
            "p25": self.p25,
            "p50": self.p50,
            "p75": self.p75,
            "samples_raw": self.samples_raw,
            "samples": self.samples,
            "confidence": self.confidence.value,
            "iqr_ratio": self.iqr_ratio,
            "adjusted_median": self.adjusted_median,
            "dealer_buy_price": self.dealer_buy_price,
            "min_clean": self.min_clean,
            "max_clean": self.max_clean,
            "n_dealers": self.n_dealers,
            "n_private": self.n_private,
            "cached": self.cached,
            "extended_window": self.extended_window,
            "enriched": self.enriched,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ValuationResult:
        return cls(
            p25=int(data["p25"]),
            p50=int(data["p50"]),
            p75=int(data["p75"]),
            samples_raw=int(data["samples_raw"]),
            samples=int(data["samples"]),
            confidence=Confidence(data["confidence"]),
            iqr_ratio=float(data["iqr_ratio"]),
            adjusted_median=int(data["adjusted_median"]),
            dealer_buy_price=int(data["dealer_buy_price"]),
            min_clean=int(data.get("min_clean", 0)),
            max_clean=int(data.get("max_clean", 0)),
            n_dealers=int(data.get("n_dealers", 0)),
            n_private=int(data.get("n_private", 0)),
            cached=bool(data.get("cached", False)),
            extended_window=bool(data.get("extended_window", False)),
            enriched=bool(data.get("enriched", False)),
        )
