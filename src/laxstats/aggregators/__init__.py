"""
Statistics aggregation.

Builds per-player and per-team season and career totals from canonical
events, cross-checks them against source box scores, and ranks leaderboards.
"""

from .engine import AGGREGATE_SCHEMA_VERSION, AggregationEngine

__all__ = ["AGGREGATE_SCHEMA_VERSION", "AggregationEngine"]
