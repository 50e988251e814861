"""
Component wiring and startup/shutdown sequencing.
"""

from __future__ import annotations

import logging
from typing import Optional

from dexgate.api.routes import GatewayAPI
from dexgate.config.config import Settings, load_seed_phrases
from dexgate.execution.nonce import AccountRegistry
from dexgate.execution.operation_tracker import OperationTracker
from dexgate.execution.order_coordinator import OrderCoordinator
from dexgate.infra.calls import CallBuilder
from dexgate.infra.ledger import Ledger, LedgerSession
from dexgate.infra.logging_cfg import INFO, WARNING, log_event
from dexgate.infra.signer import Keyring
from dexgate.infra.trade_history import TradeHistoryClient
from dexgate.market_data.projections import MarketData
from dexgate.monitoring.metrics_rich import RichMetrics

log = logging.getLogger("dexgate")


class Gateway:
    """Owns every long-lived component of one gateway process."""

    def __init__(
        self,
        cfg: Settings,
        ledger: Ledger,
        keyring: Keyring,
        trade_history: TradeHistoryClient,
        metrics: Optional[RichMetrics] = None,
    ) -> None:
        self.cfg = cfg
        self.ledger = ledger
        self.keyring = keyring
        self.trade_history = trade_history
        self.metrics = metrics
        self.registry = AccountRegistry(ledger, metrics)
        self.tracker = OperationTracker(cfg.purge_timeout, metrics)
        self.coordinator = OrderCoordinator(
            ledger, keyring, self.registry, self.tracker, CallBuilder(cfg.variant)
        )
        self.market_data = MarketData(ledger, trade_history)
        self.api = GatewayAPI(
            self.coordinator,
            self.market_data,
            self.tracker,
            self.registry,
            keyring,
            cfg.tokens,
            trade_history=trade_history,
            metrics=metrics,
            host=cfg.host,
            port=cfg.port,
        )

    @classmethod
    def from_settings(cls, cfg: Settings) -> "Gateway":
        variant = cfg.variant
        metrics = RichMetrics()
        keyring = Keyring.from_seeds(load_seed_phrases(cfg.seeds_path), variant.ss58_format)
        ledger = LedgerSession(
            cfg.chain_node,
            variant,
            cache_ttl_ms=cfg.query_cache_ttl_ms,
            cache_max_entries=cfg.query_cache_max_entries,
            block_poll_interval=cfg.block_poll_interval,
            metrics=metrics,
        )
        trade_history = TradeHistoryClient(cfg.api_endpoint, timeout=cfg.http_timeout)
        return cls(cfg, ledger, keyring, trade_history, metrics)

    async def initialize(self) -> None:
        """Sync nonces for every signer and resolve the backend chain id."""
        synced = await self.registry.initialize_all(self.keyring.addresses)
        ready = sum(1 for nonce in synced.values() if nonce is not None)
        log_event(log, "keyring_initialized", level=INFO, signers=len(synced), nonces=ready)
        try:
            genesis = await self.ledger.genesis_hash()
            await self.trade_history.resolve_chain_id(genesis)
        except Exception as exc:
            # trade routes stay unavailable; everything else works
            log_event(log, "chain_id_unresolved", level=WARNING, err=str(exc))

    async def start(self) -> None:
        await self.initialize()
        await self.api.start()
        log_event(log, "startup", level=INFO, variant=self.cfg.chain_variant, port=self.cfg.port)

    async def stop(self) -> None:
        log_event(log, "shutdown", level=INFO, stats=self.tracker.stats())
        await self.api.stop()
        await self.tracker.close()
        await self.trade_history.close()
        close = getattr(self.ledger, "close", None)
        if close is not None:
            await close()
