"""Shared test fixtures for the valuation engine."""

import sys
from pathlib import Path

import pytest

# Ensure valuation_engine is importable
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from valuation_engine.common.config import Config, ValuationConfig
from valuation_engine.common.models import (
    FuelType,
    GearboxType,
    Listing,
    SellerType,
    ValuationInput,
)
from valuation_engine.database.connection import get_connection, init_db


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def temp_db(tmp_path):
    """Provide a Config pointing to a temporary SQLite database."""
    db_file = tmp_path / "test_valuation.db"
    config = Config(database_path=str(db_file))
    init_db(config)
    return config


@pytest.fixture
def db_conn(temp_db):
    """Provide an initialized SQLite connection from temp_db."""
    conn = get_connection(temp_db)
    yield conn
    conn.close()


@pytest.fixture
def valuation_config() -> ValuationConfig:
    """Default algorithm parameters, independent of config/settings.yaml."""
    return ValuationConfig()


@pytest.fixture
def panda_input() -> ValuationInput:
    return ValuationInput(
        brand="Fiat",
        model="Panda",
        year=2019,
        km=60000,
        fuel=FuelType.PETROL,
        gearbox=GearboxType.MANUAL,
    )


def _make_listings(
    prices: list[int],
    source: str = "autoscout24",
    seller_type: SellerType = SellerType.DEALER,
) -> list[Listing]:
    """Listings with unique guids for the given prices."""
    return [
        Listing(
            guid=f"{source}-{i}",
            price=price,
            mileage=50000 + i,
            source=source,
            seller_type=seller_type,
            year=2019,
            km=50000 + i,
        )
        for i, price in enumerate(prices)
    ]


@pytest.fixture
def make_listings():
    """Factory: make_listings(prices, source=..., seller_type=...) -> list[Listing]."""
    return _make_listings
