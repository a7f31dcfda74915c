"""Domain errors surfaced by the valuation service."""

from __future__ import annotations


class ValuationError(Exception):
    """Base class: a valuation that cannot be produced.

    Attributes:
        message: Human-readable reason.
        suggestion: What the caller could change to get a result.
        kind: Stable machine-readable error identifier.
    """

    kind = "valuation_error"

    def __init__(self, message: str, suggestion: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def to_dict(self) -> dict:
        return {
            "error": True,
            "kind": self.kind,
            "message": self.message,
            "suggestion": self.suggestion,
        }


class ModelNotFoundError(ValuationError):
    """No listing at all exists for the brand/model."""

    kind = "model_not_found"


class InsufficientInventoryError(ValuationError):
    """Listings exist for the model, but none inside the year/km windows."""

    kind = "insufficient_filtered_inventory"

    def __init__(self, message: str, suggestion: str = "", available: int = 0) -> None:
        super().__init__(message, suggestion)
        self.available = available

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["available"] = self.available
        return data


class InsufficientSampleError(ValuationError):
    """Too few listings survived outlier trimming."""

    kind = "insufficient_sample"
