"""
Infrastructure package.

This package contains infrastructure components including the ledger session,
inclusion tracking, call construction, signers, the trade-history client and
logging configuration.
"""

from dexgate.infra.calls import CallBuilder, CallSpec
from dexgate.infra.inclusion import Inclusion, InclusionWatcher
from dexgate.infra.ledger import AssetInfo, Ledger, LedgerSession, OrderView
from dexgate.infra.logging_cfg import build_logger, log_event
from dexgate.infra.query_cache import CachedQuery, QueryRegistry
from dexgate.infra.signer import Keyring
from dexgate.infra.trade_history import TradeHistoryClient

__all__ = [
    "CallBuilder",
    "CallSpec",
    "Inclusion",
    "InclusionWatcher",
    "AssetInfo",
    "Ledger",
    "LedgerSession",
    "OrderView",
    "build_logger",
    "log_event",
    "CachedQuery",
    "QueryRegistry",
    "Keyring",
    "TradeHistoryClient",
]
