"""
Tests for LedgerSession against an in-memory stand-in for SubstrateInterface.

The fake chain appends every submitted extrinsic to a fresh block, so the
inclusion watcher finds it on its next poll.
"""

import asyncio
import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest
from substrateinterface.exceptions import SubstrateRequestException
from substrateinterface.utils.ss58 import ss58_encode

from dexgate.config.variants import get_variant
from dexgate.core.errors import SubmissionFailed
from dexgate.core.precision import currency_to_asset
from dexgate.infra.calls import CallBuilder
from dexgate.execution.nonce import AccountRegistry
from dexgate.execution.operation_tracker import OperationTracker
from dexgate.execution.order_coordinator import OrderCoordinator
from dexgate.infra.ledger import LedgerSession, parse_balances
from dexgate.infra.signer import Keyring
from dexgate.monitoring.metrics_rich import RichMetrics

from conftest import ADDRESS, TRADER_ADDRESS, FakePair

EQ = currency_to_asset("eq")
EQD = currency_to_asset("eqd")
BTC = currency_to_asset("btc")


class FakeSubstrate:
    def __init__(self, head=100):
        self.head = head
        self.blocks = {}
        self.composed = []
        self.signed = []
        self.query_maps = 0
        self.closed = False
        self.fail_signing = None
        self.fail_submit = None
        self.threads = set()
        self.storage = {
            ("System", "Account", (ADDRESS,)): {
                "data": {"V0": {"balance": [[EQ, {"Positive": 5 * 10**9}], [BTC, {"Negative": 10**9}]]}}
            },
            ("Subaccounts", "Subaccount", (ADDRESS, "Trader")): TRADER_ADDRESS,
            ("EqAssets", "Assets", ()): [{"id": EQ, "price_step": 10**16}, {"id": EQD}],
            ("Oracle", "PricePoints", (EQ,)): {"price": 2 * 10**9},
            ("EqDex", "BestPriceByAsset", (EQ,)): {"ask": {"Positive": 3 * 10**9}, "bid": None},
        }
        self.orders = [
            {
                "order_id": 5,
                "account_id": TRADER_ADDRESS,
                "side": "Buy",
                "price": {"Positive": 2 * 10**9},
                "amount": 3 * 10**18,
                "created_at": 1700000000,
            }
        ]
        self.pool = []

    def _seen(self):
        self.threads.add(threading.current_thread().name)

    def get_block_header(self, finalized_only=False):
        self._seen()
        return {"header": {"number": self.head}}

    def get_block(self, block_number):
        hashes = self.blocks.get(block_number, [])
        return {
            "header": {"hash": f"0xblock{block_number}"},
            "extrinsics": [SimpleNamespace(extrinsic_hash=h) for h in hashes],
        }

    def compose_call(self, call_module, call_function, call_params):
        composed = {"module": call_module, "function": call_function, "params": call_params}
        self.composed.append(composed)
        return composed

    def create_signed_extrinsic(self, **kwargs):
        if self.fail_signing is not None:
            raise self.fail_signing
        self.signed.append(kwargs)
        return kwargs

    def submit_extrinsic(self, extrinsic, wait_for_inclusion=False):
        assert wait_for_inclusion is False
        if self.fail_submit is not None:
            raise self.fail_submit
        ext_hash = f"0x{len(self.signed):04x}"
        self.head += 1
        self.blocks[self.head] = ["0xffff", ext_hash]
        return SimpleNamespace(extrinsic_hash=ext_hash)

    def get_account_nonce(self, address):
        self._seen()
        return 9

    def query_map(self, module, storage, params=None):
        self.query_maps += 1
        return [((EQ, 0), self.orders)]

    def query(self, module, storage, params=None):
        return SimpleNamespace(value=self.storage.get((module, storage, tuple(params or ()))))

    def get_block_hash(self, block_id):
        return "0xgenesis"

    def rpc_request(self, method, params):
        assert method == "author_pendingExtrinsics"
        return {"result": list(self.pool)}

    def decode_scale(self, type_string, data):
        return SimpleNamespace(value=data)

    def close(self):
        self.closed = True


class FakeReceipt:
    def __init__(self, events, success=True, error=None, **kwargs):
        self.triggered_events = events
        self.is_success = success
        self.error_message = error
        self.kwargs = kwargs


def _event(module, name, attributes=None):
    return {"event": {"module_id": module, "event_id": name, "attributes": attributes}}


SUCCESS_EVENTS = [
    _event("EqDex", "OrderCreated", {"order_id": 77}),
    _event("System", "ExtrinsicSuccess"),
]


def _session(chain, receipts=None, metrics=None, **options):
    receipts = receipts if receipts is not None else []

    def receipt_factory(**kwargs):
        receipt = FakeReceipt(SUCCESS_EVENTS, **kwargs)
        receipts.append(receipt)
        return receipt

    return LedgerSession(
        "ws://fake",
        get_variant("equilibrium"),
        client_factory=lambda: chain,
        block_poll_interval=0.001,
        cache_ttl_ms=60_000,
        metrics=metrics,
        receipt_factory=receipt_factory,
        **options,
    )


@pytest.mark.asyncio
async def test_client_connects_once_and_runs_on_worker_thread():
    chain = FakeSubstrate()
    connects = []

    def factory():
        connects.append(1)
        return chain

    session = LedgerSession("ws://fake", get_variant("equilibrium"), client_factory=factory)
    results = await asyncio.gather(*(session.account_nonce(ADDRESS) for _ in range(5)))
    assert results == [9] * 5
    assert len(connects) == 1
    assert all(name.startswith("ledger") for name in chain.threads)
    await session.close()
    assert chain.closed


@pytest.mark.asyncio
async def test_submit_waits_for_inclusion_and_decodes():
    chain = FakeSubstrate(head=100)
    receipts = []
    metrics = RichMetrics()
    session = _session(chain, receipts, metrics)
    call = CallBuilder(session.variant).create_limit_order(EQ, 2 * 10**9, "Buy", 10**18)

    events = await asyncio.wait_for(session.submit(FakePair(ADDRESS), call, nonce=4, tip=2), timeout=2)

    assert events[0] == {"section": "eqDex", "method": "OrderCreated", "orderId": "77"}
    signed = chain.signed[0]
    assert (signed["nonce"], signed["tip"]) == (4, 2)
    assert signed["call"]["module"] == "EqDex"
    assert receipts[0].kwargs["block_hash"] == "0xblock101"
    assert receipts[0].kwargs["extrinsic_idx"] == 1
    assert receipts[0].kwargs["substrate"] is chain
    assert metrics.registry.get_sample_value(
        "ledger_submissions_total", {"call": "EqDex.create_order"}
    ) == 1.0
    await session.close()


@pytest.mark.asyncio
async def test_submit_without_nonce_lets_node_choose():
    chain = FakeSubstrate()
    session = _session(chain)
    call = CallBuilder(session.variant).sudo_deposit(EQ, ADDRESS, 10**9)
    await asyncio.wait_for(session.submit(FakePair(ADDRESS), call), timeout=2)
    assert "nonce" not in chain.signed[0]
    assert "tip" not in chain.signed[0]
    # inner call is composed first and passed as the "call" argument
    inner, outer = chain.composed
    assert inner["function"] == "deposit"
    assert outer["module"] == "Sudo"
    assert outer["params"]["call"] is inner
    await session.close()


@pytest.mark.asyncio
async def test_rejected_extrinsic_raises_and_counts():
    chain = FakeSubstrate()
    metrics = RichMetrics()

    def failing_receipt(**kwargs):
        return FakeReceipt(
            [_event("System", "ExtrinsicFailed")],
            success=False,
            error={"module": "EqDex", "name": "OrderNotFound", "docs": ["no order"]},
        )

    session = LedgerSession(
        "ws://fake",
        get_variant("equilibrium"),
        client_factory=lambda: chain,
        block_poll_interval=0.001,
        metrics=metrics,
        receipt_factory=failing_receipt,
    )
    call = CallBuilder(session.variant).delete_order(EQ, 1, 10**9)
    with pytest.raises(SubmissionFailed) as exc_info:
        await asyncio.wait_for(session.submit(FakePair(ADDRESS), call, nonce=1), timeout=2)
    assert exc_info.value.method == "OrderNotFound"
    assert metrics.registry.get_sample_value(
        "ledger_submission_failures_total", {"call": "EqDex.delete_order"}
    ) == 1.0
    await session.close()


@pytest.mark.asyncio
async def test_signing_error_propagates_before_watching():
    chain = FakeSubstrate()
    chain.fail_signing = ValueError("bad nonce")
    session = _session(chain)
    call = CallBuilder(session.variant).remark("x")
    with pytest.raises(ValueError):
        await session.submit(FakePair(ADDRESS), call, nonce=1)
    assert session.watcher.watching == 0
    await session.close()



STALE_NONCE = {"code": 1010, "message": "Invalid Transaction", "data": "Transaction is outdated"}


@pytest.mark.asyncio
async def test_node_rejection_at_submit_is_submission_failed():
    chain = FakeSubstrate()
    chain.fail_submit = SubstrateRequestException(STALE_NONCE)
    metrics = RichMetrics()
    session = _session(chain, metrics=metrics)
    call = CallBuilder(session.variant).transfer_to_subaccount(EQ, 10**9)
    with pytest.raises(SubmissionFailed) as exc_info:
        await session.submit(FakePair(ADDRESS), call, nonce=3)
    err = exc_info.value
    assert err.message == "Invalid Transaction: Transaction is outdated (1010)"
    assert err.to_dict()["code"] == "submission_failed"
    assert isinstance(err.__cause__, SubstrateRequestException)
    assert session.watcher.watching == 0
    assert metrics.registry.get_sample_value(
        "ledger_submission_failures_total", {"call": call.name}
    ) == 1.0
    await session.close()


@pytest.mark.asyncio
async def test_stale_nonce_marks_tracked_order_failed():
    chain = FakeSubstrate()
    chain.fail_submit = SubstrateRequestException(STALE_NONCE)
    session = _session(chain)
    keyring = Keyring(session.variant.ss58_format)
    keyring.add_pair(FakePair(ADDRESS))
    registry = AccountRegistry(session)
    coordinator = OrderCoordinator(
        session, keyring, registry, OperationTracker(purge_timeout=0), CallBuilder(session.variant)
    )
    await registry.initialize(ADDRESS)

    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS).payload["operationId"]
    for _ in range(200):
        response = coordinator.get_operation(op_id)
        if not response["pending"]:
            break
        await asyncio.sleep(0.005)

    assert response["success"] is False
    assert response["payload"]["error"]["code"] == "submission_failed"
    assert "outdated" in response["payload"]["error"]["message"]
    await session.close()


@pytest.mark.asyncio
async def test_per_address_queries_stay_bounded():
    chain = FakeSubstrate()
    session = _session(chain, cache_max_entries=50)
    for i in range(500):
        address = f"cZ{i:046d}"
        await session.account_balances(address)
        await session.subaccount(address)
    assert len(session.queries) <= 50
    await session.close()


@pytest.mark.asyncio
async def test_orders_are_memoized_until_own_write():
    chain = FakeSubstrate()
    session = _session(chain)
    first = await session.orders(EQ)
    await session.orders(EQ)
    assert chain.query_maps == 1
    assert first[0].order_id == "5"
    assert first[0].price == Decimal(2)
    assert first[0].amount == Decimal(3)
    assert first[0].account == TRADER_ADDRESS

    await asyncio.wait_for(
        session.submit(FakePair(ADDRESS), CallBuilder(session.variant).remark("x"), nonce=0), timeout=2
    )
    await session.orders(EQ)
    assert chain.query_maps == 2
    await session.close()


@pytest.mark.asyncio
async def test_balance_and_account_queries():
    chain = FakeSubstrate()
    session = _session(chain)
    assert await session.account_balances(ADDRESS) == {EQ: Decimal(5), BTC: Decimal(-1)}
    assert await session.subaccount(ADDRESS) == TRADER_ADDRESS
    assert await session.subaccount(TRADER_ADDRESS) is None
    assert await session.best_price(EQ) == {"ask": Decimal(3), "bid": None}
    assert await session.genesis_hash() == "0xgenesis"
    await session.close()


@pytest.mark.asyncio
async def test_rates_price_stable_token_at_one():
    chain = FakeSubstrate()
    session = _session(chain)
    rates = await session.rates()
    assert rates == {EQ: Decimal(2), EQD: Decimal(1)}
    assets = await session.asset_metadata()
    assert [a.token for a in assets] == ["eq", "eqd"]
    assert assets[0].price_step == Decimal("0.01")
    await session.close()


@pytest.mark.asyncio
async def test_pending_extrinsics_are_decoded():
    chain = FakeSubstrate()
    public_key = "0x" + "11" * 32
    chain.pool = [
        {
            "address": public_key,
            "nonce": 3,
            "tip": 0,
            "call": {"call_module": "EqDex", "call_function": "create_order", "call_args": []},
        },
        "undecodable",
    ]
    session = _session(chain)
    pool = await session.pending_extrinsics()
    assert pool == [
        {
            "signer": ss58_encode(public_key, 68),
            "nonce": 3,
            "tip": 0,
            "section": "EqDex",
            "method": "create_order",
            "args": [],
        }
    ]
    await session.close()


def test_parse_balances_accepts_mapping_form():
    assert parse_balances({"balance": {EQ: {"Positive": 10**9}}}) == {EQ: Decimal(1)}
    assert parse_balances(None) == {}
