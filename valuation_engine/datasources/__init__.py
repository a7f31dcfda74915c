"""Data sources - marketplace adapters and the aggregator."""

from .aggregator import Aggregator
from .autoscout24_source import FUEL_CODE_LABELS, AutoScout24Source, ModelLine
from .base_source import BaseSource
from .browser_session import BrowserSession
from .fuel_detector import FuelDetection, detect_fuel
from .subito_source import SubitoSource

__all__ = [
    "Aggregator",
    "AutoScout24Source",
    "BaseSource",
    "BrowserSession",
    "FUEL_CODE_LABELS",
    "FuelDetection",
    "ModelLine",
    "SubitoSource",
    "detect_fuel",
]
