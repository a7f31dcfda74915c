"""Valuation orchestration and its error taxonomy."""

from .errors import (
    InsufficientInventoryError,
    InsufficientSampleError,
    ModelNotFoundError,
    ValuationError,
)
from .service import ValuationService

__all__ = [
    "InsufficientInventoryError",
    "InsufficientSampleError",
    "ModelNotFoundError",
    "ValuationError",
    "ValuationService",
]
