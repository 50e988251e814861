"""
Tests for OrderCoordinator - create / replace / cancel against a fake ledger.

The fake ledger parks every submission on a future so tests decide when (and
in which order) transactions are "included".
"""

import asyncio
from decimal import Decimal

import pytest

from dexgate.core.errors import (
    InvalidRequest,
    NonceNotFound,
    OrderIdMissing,
    OrderNotFound,
    ReconciliationFailed,
    SignerNotFound,
    SubmissionFailed,
)
from dexgate.core.precision import currency_to_asset
from dexgate.core.results import Pending, Succeeded
from dexgate.execution.operation_tracker import OperationStatus

from conftest import ADDRESS, OTHER_ADDRESS, drain, order_created

EQ = currency_to_asset("eq")


async def _confirmed_order(coordinator, ledger, order_id="42"):
    """Create a limit order and include it with an OrderCreated event."""
    await coordinator.registry.initialize(ADDRESS)
    pending = coordinator.create_limit_order("eq", "10", "25.5", "buy", ADDRESS)
    await drain()
    ledger.settle(0, order_created(order_id))
    await drain()
    return pending.payload["operationId"]


# =============================================================================
# Create
# =============================================================================

@pytest.mark.asyncio
async def test_create_limit_order_scales_and_allocates(coordinator, ledger, tracker):
    await coordinator.registry.initialize(ADDRESS)
    result = coordinator.create_limit_order("eq", "1.5", "25.5", "buy", ADDRESS, tip=3)

    assert isinstance(result, Pending)
    op_id = result.payload["operationId"]
    assert result.payload == {
        "message": "Limit order is creating",
        "nonce": 10,
        "tip": 3,
        "operationId": op_id,
    }
    assert coordinator.registry.peek(ADDRESS) == 11

    await drain()
    sub = ledger.submissions[0]
    assert sub.call.name == "EqDex.create_order"
    assert sub.call.params == {
        "asset": EQ,
        "order_type": {"Limit": {"price": 25_500_000_000, "expiration_time": 0}},
        "side": "Buy",
        "amount": 1_500_000_000_000_000_000,
    }
    assert (sub.nonce, sub.tip) == (10, 3)
    assert sub.signer.ss58_address == ADDRESS

    assert tracker.get(op_id).status is OperationStatus.PENDING
    ledger.settle(0, order_created("7"))
    await drain()
    record = tracker.get(op_id)
    assert record.status is OperationStatus.SUCCEEDED
    assert record.payload[0]["orderId"] == "7"


@pytest.mark.asyncio
async def test_create_with_pool_routes_to_market_maker(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    coordinator.create_limit_order("eq", "1", "2", "sell", ADDRESS, use_pool=True)
    await drain()
    assert ledger.submissions[0].call.module == "EqMarketMaker"
    assert ledger.submissions[0].call.params["side"] == "Sell"


@pytest.mark.asyncio
async def test_explicit_nonce_does_not_consume_allocation(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    result = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS, tip=5, nonce=4)
    assert result.payload["nonce"] == 4
    assert coordinator.registry.peek(ADDRESS) == 10
    await drain()
    assert ledger.submissions[0].nonce == 4


def test_unknown_signer_is_rejected_before_allocation(coordinator, ledger):
    with pytest.raises(SignerNotFound):
        coordinator.create_limit_order("eq", "1", "2", "buy", OTHER_ADDRESS)
    assert ledger.submissions == []


def test_uninitialized_nonce_is_rejected(coordinator, tracker):
    with pytest.raises(NonceNotFound):
        coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS)
    assert tracker.stats()["total_created"] == 0


@pytest.mark.asyncio
async def test_rejected_create_is_recorded_as_failed(coordinator, ledger, tracker):
    await coordinator.registry.initialize(ADDRESS)
    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS).payload["operationId"]
    await drain()
    ledger.fail(0, SubmissionFailed("eqDex.PriceStepError: bad step", "eqDex", "PriceStepError"))
    await drain()
    response = coordinator.get_operation(op_id)
    assert response["success"] is False
    assert response["pending"] is False
    assert response["payload"]["error"]["method"] == "PriceStepError"


# =============================================================================
# Replace after confirmation
# =============================================================================

@pytest.mark.asyncio
async def test_replace_confirmed_order_cancels_then_creates(coordinator, ledger, tracker):
    op_id = await _confirmed_order(coordinator, ledger, "42")

    task = asyncio.ensure_future(
        coordinator.update_limit_order(op_id, "eq", "3", "25.5", "26", "buy", ADDRESS)
    )
    await drain()
    assert len(ledger.submissions) == 2
    delete = ledger.submissions[1]
    assert delete.call.function == "delete_order"
    assert delete.call.params == {"asset": EQ, "order_id": 42, "price": 25_500_000_000}
    assert delete.nonce == 11

    ledger.settle(1, [{"section": "system", "method": "ExtrinsicSuccess"}])
    result = await task
    await drain()

    assert isinstance(result, Pending)
    assert result.payload["operationId"] != op_id
    assert result.payload["nonce"] == 12
    create = ledger.submissions[2]
    assert create.call.function == "create_order"
    assert create.call.params["order_type"]["Limit"]["price"] == 26_000_000_000
    assert create.call.params["amount"] == 3 * 10**18
    # the original record is untouched
    assert tracker.get(op_id).payload[0]["orderId"] == "42"


@pytest.mark.asyncio
async def test_zero_price_on_confirmed_order_only_cancels(coordinator, ledger):
    op_id = await _confirmed_order(coordinator, ledger)
    task = asyncio.ensure_future(
        coordinator.update_limit_order(op_id, "eq", "3", "25.5", "0", "buy", ADDRESS)
    )
    await drain()
    ledger.settle(1, [])
    result = await task
    assert result == Succeeded({"message": "Order cancelled on chain"})
    assert len(ledger.submissions) == 2


@pytest.mark.asyncio
async def test_confirmed_record_without_order_id(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS).payload["operationId"]
    await drain()
    ledger.settle(0, [{"section": "system", "method": "ExtrinsicSuccess"}])
    await drain()
    with pytest.raises(OrderIdMissing):
        await coordinator.update_limit_order(op_id, "eq", "1", "2", "3", "buy", ADDRESS)


@pytest.mark.asyncio
async def test_failed_cancel_step_reports_reconciliation_failure(coordinator, ledger):
    op_id = await _confirmed_order(coordinator, ledger)
    task = asyncio.ensure_future(
        coordinator.update_limit_order(op_id, "eq", "3", "25.5", "26", "buy", ADDRESS)
    )
    await drain()
    ledger.fail(1, SubmissionFailed("eqDex.OrderNotFound: gone"))
    with pytest.raises(ReconciliationFailed) as exc_info:
        await task
    assert exc_info.value.step == "cancel"
    assert exc_info.value.to_dict()["code"] == "reconciliation_failed"
    # no create was attempted
    assert len(ledger.submissions) == 2


# =============================================================================
# Replace while pending
# =============================================================================

@pytest.mark.asyncio
async def test_pending_cancel_submits_marker_with_same_nonce(coordinator, ledger, tracker):
    await coordinator.registry.initialize(ADDRESS)
    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS, tip=1).payload["operationId"]

    result = await coordinator.update_limit_order(
        op_id, "eq", "0", "2", "0", "buy", ADDRESS, tip=10, nonce=10
    )
    assert result == Pending({
        "message": "Limit order is cancelling in block",
        "operationId": op_id,
        "nonce": 10,
        "tip": 10,
    })
    await drain()
    marker = ledger.submissions[1]
    assert marker.call.name == "System.remark"
    assert marker.call.params == {"remark": f"cancel order {op_id}"}
    assert (marker.nonce, marker.tip) == (10, 10)
    assert coordinator.registry.peek(ADDRESS) == 11

    ledger.settle(1, [{"section": "system", "method": "ExtrinsicSuccess"}])
    await drain()
    assert tracker.get(op_id).payload == {"message": "Order cancelled in block"}

    # the displaced create settling later does not overwrite the record
    ledger.settle(0, order_created("9"))
    await drain()
    assert tracker.get(op_id).payload == {"message": "Order cancelled in block"}
    assert tracker.stats()["duplicate_resolutions_ignored"] == 1


@pytest.mark.asyncio
async def test_pending_replace_requires_nonce_and_tip(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS).payload["operationId"]
    with pytest.raises(InvalidRequest):
        await coordinator.update_limit_order(op_id, "eq", "1", "2", "3", "buy", ADDRESS, tip=1)
    with pytest.raises(InvalidRequest):
        await coordinator.update_limit_order(op_id, "eq", "1", "2", "3", "buy", ADDRESS, nonce=10)


@pytest.mark.asyncio
async def test_pending_replace_resubmits_over_nonce(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS).payload["operationId"]
    result = await coordinator.update_limit_order(
        op_id, "eq", "4", "2", "3", "buy", ADDRESS, tip=50, nonce=10
    )
    assert isinstance(result, Pending)
    assert result.payload["operationId"] != op_id
    assert (result.payload["nonce"], result.payload["tip"]) == (10, 50)
    assert coordinator.registry.peek(ADDRESS) == 11
    await drain()
    assert ledger.submissions[1].call.params["order_type"]["Limit"]["price"] == 3 * 10**9


@pytest.mark.asyncio
async def test_replace_unknown_or_failed_order(coordinator, ledger):
    with pytest.raises(OrderNotFound):
        await coordinator.update_limit_order("nope", "eq", "1", "2", "3", "buy", ADDRESS, tip=1, nonce=1)

    await coordinator.registry.initialize(ADDRESS)
    op_id = coordinator.create_limit_order("eq", "1", "2", "buy", ADDRESS).payload["operationId"]
    await drain()
    ledger.fail(0, SubmissionFailed("rejected"))
    await drain()
    with pytest.raises(OrderNotFound):
        await coordinator.update_limit_order(op_id, "eq", "1", "2", "3", "buy", ADDRESS, tip=1, nonce=1)


# =============================================================================
# Cancel
# =============================================================================

@pytest.mark.asyncio
async def test_cancel_limit_order_waits_for_inclusion(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    ledger.auto_events = [{"section": "system", "method": "ExtrinsicSuccess"}]
    result = await coordinator.cancel_limit_order("eq", "2.5", "17", ADDRESS)
    assert result == Succeeded([{"section": "system", "method": "ExtrinsicSuccess"}])
    assert ledger.submissions[0].call.params == {"asset": EQ, "order_id": 17, "price": 2_500_000_000}
    assert ledger.submissions[0].nonce == 10


@pytest.mark.asyncio
async def test_cancel_limit_orders_reserves_nonces_up_front(coordinator, ledger, tracker):
    await coordinator.registry.initialize(ADDRESS)
    orders = [
        {"token": "eq", "price": "1", "orderId": "1"},
        {"token": "eq", "price": "2", "orderId": "2"},
        {"token": "btc", "price": "3", "orderId": "3"},
    ]
    result = coordinator.cancel_limit_orders(orders, ADDRESS)
    # reserved synchronously, before any submission ran
    assert coordinator.registry.peek(ADDRESS) == 13
    parent = result.payload["operationId"]
    assert result.payload["orders"] == orders
    assert result.payload["events"] == []

    await drain()
    assert [s.nonce for s in ledger.submissions] == [10, 11, 12]
    assert ledger.submissions[2].call.params["asset"] == currency_to_asset("btc")

    ledger.settle(2, [])
    ledger.settle(0, [])
    await drain()
    assert tracker.get(parent).status is OperationStatus.PENDING
    ledger.fail(1, SubmissionFailed("gone"))
    await drain()
    record = tracker.get(parent)
    assert record.status is OperationStatus.SUCCEEDED
    assert len(record.payload["events"]) == 3
    assert record.payload["failed"] == 1


# =============================================================================
# Market orders and transfers
# =============================================================================

@pytest.mark.asyncio
async def test_market_order(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    result = coordinator.create_market_order("eq", "2", "sell", ADDRESS)
    assert result.payload["message"] == "Order is creating"
    assert result.payload["nonce"] == 10
    await drain()
    assert ledger.submissions[0].call.params == {
        "asset": EQ,
        "order_type": "Market",
        "side": "Sell",
        "amount": 2 * 10**18,
    }


@pytest.mark.asyncio
async def test_deposit_and_withdraw(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    ledger.auto_events = []
    await coordinator.deposit("eq", "1.5", ADDRESS)
    await coordinator.withdraw("eq", "0.5", ADDRESS)

    deposit, withdraw = ledger.submissions
    assert deposit.call.name == "Subaccounts.transfer_to_subaccount"
    assert deposit.call.params == {"subacc_type": "Trader", "asset": EQ, "value": 1_500_000_000}
    assert withdraw.call.name == "Subaccounts.transfer_from_subaccount"
    assert withdraw.call.params == {"subacc_type": "Trader", "asset": EQ, "amount": 500_000_000}
    assert [deposit.nonce, withdraw.nonce] == [10, 11]


@pytest.mark.asyncio
async def test_sudo_deposit_bypasses_registry(coordinator, ledger):
    ledger.auto_events = []
    result = await coordinator.sudo_deposit("eq", Decimal("3"), ADDRESS, OTHER_ADDRESS)
    assert result == Succeeded([])
    sub = ledger.submissions[0]
    assert sub.nonce is None
    assert sub.call.name == "Sudo.sudo"
    assert sub.call.inner.name == "EqBalances.deposit"
    assert sub.call.inner.params == {"asset": EQ, "to": OTHER_ADDRESS, "amount": 3_000_000_000}
    assert coordinator.registry.peek(ADDRESS) is None


@pytest.mark.asyncio
async def test_transfer_failure_propagates(coordinator, ledger):
    await coordinator.registry.initialize(ADDRESS)
    ledger.fail_with = SubmissionFailed("eqBalances.NotEnoughBalance: low")
    with pytest.raises(SubmissionFailed):
        await coordinator.deposit("eq", "1", ADDRESS)


# =============================================================================
# Pool
# =============================================================================

@pytest.mark.asyncio
async def test_pending_extrinsics_filters_by_signer_and_call(coordinator, ledger):
    ledger.pool = [
        {"signer": ADDRESS, "section": "EqDex", "method": "create_order", "nonce": 10},
        {"signer": ADDRESS, "section": "EqMarketMaker", "method": "create_order", "nonce": 11},
        {"signer": ADDRESS, "section": "EqDex", "method": "delete_order", "nonce": 12},
        {"signer": OTHER_ADDRESS, "section": "EqDex", "method": "create_order", "nonce": 0},
        {"signer": ADDRESS, "section": "System", "method": "remark", "nonce": 13},
    ]
    result = await coordinator.pending_extrinsics(ADDRESS)
    assert [e["nonce"] for e in result] == [10, 11]

    with pytest.raises(SignerNotFound):
        await coordinator.pending_extrinsics(OTHER_ADDRESS)
