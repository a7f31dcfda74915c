"""Database layer: SQLite storage for estimates, stats, queue and cache."""

from .connection import get_connection, init_db
from .repository import ValuationRepository

__all__ = ["get_connection", "init_db", "ValuationRepository"]
