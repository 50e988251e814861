"""
Pytest configuration and fixtures.

FakeLedger stands in for the Substrate-backed LedgerSession: queries return
whatever the test put on it, and every submission blocks on a future the test
settles explicitly, so confirmation order is under test control.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from dexgate.config.variants import get_variant
from dexgate.execution.nonce import AccountRegistry
from dexgate.execution.operation_tracker import OperationTracker
from dexgate.execution.order_coordinator import OrderCoordinator
from dexgate.infra.calls import CallBuilder, CallSpec
from dexgate.infra.ledger import AssetInfo, OrderView
from dexgate.infra.signer import Keyring
from dexgate.monitoring.metrics_rich import RichMetrics

ADDRESS = "cZ" + "a" * 46
OTHER_ADDRESS = "cZ" + "b" * 46
TRADER_ADDRESS = "cZ" + "t" * 46


@dataclass
class FakePair:
    """Minimal stand-in for substrateinterface.Keypair."""
    ss58_address: str


@dataclass
class Submission:
    signer: Any
    call: CallSpec
    nonce: Optional[int]
    tip: int
    future: asyncio.Future


@dataclass
class FakeLedger:
    nonces: Dict[str, int] = field(default_factory=dict)
    submissions: List[Submission] = field(default_factory=list)
    # when set, submissions settle immediately with these events
    auto_events: Optional[List[Dict[str, Any]]] = None
    # when set, submissions fail immediately with this error
    fail_with: Optional[BaseException] = None
    orders_by_asset: Dict[int, List[OrderView]] = field(default_factory=dict)
    balances: Dict[str, Dict[int, Decimal]] = field(default_factory=dict)
    subaccounts: Dict[str, str] = field(default_factory=dict)
    prices: Dict[int, Decimal] = field(default_factory=dict)
    assets: List[AssetInfo] = field(default_factory=list)
    best: Dict[int, Dict[str, Optional[Decimal]]] = field(default_factory=dict)
    pool: List[Dict[str, Any]] = field(default_factory=list)
    genesis: str = "0xgenesis"
    nonce_reads: int = 0

    async def account_nonce(self, address: str) -> int:
        self.nonce_reads += 1
        if address not in self.nonces:
            raise ConnectionError(f"no account {address}")
        return self.nonces[address]

    async def submit(self, signer, call: CallSpec, nonce: Optional[int] = None, tip: int = 0):
        future = asyncio.get_running_loop().create_future()
        self.submissions.append(Submission(signer, call, nonce, tip, future))
        if self.fail_with is not None:
            raise self.fail_with
        if self.auto_events is not None:
            return self.auto_events
        return await future

    def settle(self, index: int, events: Any) -> None:
        self.submissions[index].future.set_result(events)

    def fail(self, index: int, exc: BaseException) -> None:
        self.submissions[index].future.set_exception(exc)

    async def orders(self, asset: int) -> List[OrderView]:
        return list(self.orders_by_asset.get(asset, []))

    async def all_orders(self) -> List[OrderView]:
        return [o for orders in self.orders_by_asset.values() for o in orders]

    async def best_price(self, asset: int) -> Dict[str, Optional[Decimal]]:
        return self.best.get(asset, {"ask": None, "bid": None})

    async def account_balances(self, address: str) -> Dict[int, Decimal]:
        return dict(self.balances.get(address, {}))

    async def subaccount(self, address: str) -> Optional[str]:
        return self.subaccounts.get(address)

    async def asset_metadata(self) -> List[AssetInfo]:
        return list(self.assets)

    async def rates(self) -> Dict[int, Decimal]:
        return dict(self.prices)

    async def genesis_hash(self) -> str:
        return self.genesis

    async def pending_extrinsics(self) -> List[Dict[str, Any]]:
        return list(self.pool)


async def drain(rounds: int = 5) -> None:
    """Let spawned tracking tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def order_created(order_id: str = "42") -> List[Dict[str, Any]]:
    return [
        {"section": "eqDex", "method": "OrderCreated", "orderId": order_id},
        {"section": "system", "method": "ExtrinsicSuccess"},
    ]


@pytest.fixture
def variant():
    return get_variant("equilibrium")


@pytest.fixture
def metrics():
    return RichMetrics()


@pytest.fixture
def ledger():
    return FakeLedger(nonces={ADDRESS: 10, OTHER_ADDRESS: 0})


@pytest.fixture
def keyring(variant):
    ring = Keyring(variant.ss58_format)
    ring.add_pair(FakePair(ADDRESS))
    return ring


@pytest.fixture
def registry(ledger, metrics):
    return AccountRegistry(ledger, metrics)


@pytest.fixture
def tracker(metrics):
    return OperationTracker(purge_timeout=0, metrics=metrics)


@pytest.fixture
def coordinator(ledger, keyring, registry, tracker, variant):
    return OrderCoordinator(ledger, keyring, registry, tracker, CallBuilder(variant))
