"""
Market data projections package.
"""

from dexgate.market_data.projections import (
    DEFAULT_DEPTH,
    MarketData,
    aggregate_depth,
    collateral_totals,
    compute_margin,
    locked_balance,
)

__all__ = [
    "DEFAULT_DEPTH",
    "MarketData",
    "aggregate_depth",
    "collateral_totals",
    "compute_margin",
    "locked_balance",
]
