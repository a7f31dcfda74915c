"""
Used-car valuation engine

Modules:
- datasources: Listing acquisition from AutoScout24 and Subito.it, aggregation
- cache: Page and result caches with TTL
- work_queue: Deferred requests for slow (browser-based) sources
- stats: Robust price statistics
- valuation: Orchestration of a full valuation
- database: SQLite storage layer
- common: Shared utilities
"""

__version__ = "0.1.0"
