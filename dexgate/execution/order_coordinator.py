"""
OrderCoordinator: create / replace / cancel of a logical order.

This module provides the single entry point for all signing operations:
- Limit and market order creation (tracked, returns Pending)
- Replace of a tracked order (cancel+create, or in-block marker/resubmit)
- Single and batch cancellation
- Transfers between the main account and the trading sub-account

Architecture:
    OrderCoordinator wraps the Keyring, AccountRegistry, OperationTracker and
    the Ledger. Nonces are allocated synchronously before anything is awaited,
    so concurrent requests for one address never share a nonce.

Replace reconciles against the tracked record of the original create:

    SUCCEEDED with orderId ──> cancel at original price ──> create at new price
    PENDING, new price 0   ──> System.remark marker (same nonce, caller tip)
    PENDING, new price > 0 ──> create with caller nonce + tip
    FAILED / unknown       ──> OrderNotFound

The in-block cancel is best effort: if the original create is included before
the marker, the order still rests on the book and the marker only resolves
the tracked record.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from dexgate.core.errors import (
    GatewayError,
    InvalidRequest,
    OrderIdMissing,
    OrderNotFound,
    ReconciliationFailed,
)
from dexgate.core.precision import (
    AMOUNT_PRECISION,
    PRICE_PRECISION,
    TRANSFER_PRECISION,
    capitalize,
    currency_to_asset,
    to_decimal,
    to_raw,
)
from dexgate.core.results import Outcome, Pending, Succeeded
from dexgate.execution.operation_tracker import OperationStatus
from dexgate.infra.logging_cfg import INFO, log_event
from dexgate.infra.tx_result import find_order_id

if TYPE_CHECKING:
    from dexgate.execution.nonce import AccountRegistry
    from dexgate.execution.operation_tracker import OperationTracker
    from dexgate.infra.calls import CallBuilder
    from dexgate.infra.ledger import Ledger
    from dexgate.infra.signer import Keyring

log = logging.getLogger("dexgate")


class OrderCoordinator:
    def __init__(
        self,
        ledger: "Ledger",
        keyring: "Keyring",
        registry: "AccountRegistry",
        tracker: "OperationTracker",
        calls: "CallBuilder",
    ) -> None:
        """
        Args:
            ledger: Submission and queries
            keyring: Signer lookup by address
            registry: Nonce allocation
            tracker: Operation records
            calls: Variant-aware call construction
        """
        self.ledger = ledger
        self.keyring = keyring
        self.registry = registry
        self.tracker = tracker
        self.calls = calls

    # ------------------------------------------------------------------
    # Limit orders
    # ------------------------------------------------------------------

    def create_limit_order(
        self,
        token: str,
        amount: Any,
        limit_price: Any,
        direction: str,
        address: str,
        tip: Optional[int] = None,
        nonce: Optional[int] = None,
        use_pool: bool = False,
    ) -> Pending:
        """
        Submit a limit order and return immediately with a pending record.

        An explicit `nonce` is used as-is and does not consume a registry
        allocation (resubmission over an in-flight nonce).
        """
        asset = currency_to_asset(token)
        call = self.calls.create_limit_order(
            asset,
            to_raw(limit_price, PRICE_PRECISION),
            capitalize(direction),
            to_raw(amount, AMOUNT_PRECISION),
            use_pool=use_pool,
        )
        pair = self.keyring.get_pair(address)
        current = nonce if nonce is not None else self.registry.allocate(address)
        tip = tip or 0

        operation_id = self.tracker.create(
            {"message": "Limit order is creating", "nonce": current, "tip": tip},
            kind="limit_order",
        )
        payload = self.tracker.get(operation_id).payload
        self.tracker.track(operation_id, self.ledger.submit(pair, call, current, tip))
        log_event(
            log,
            "limit_order_submitted",
            level=INFO,
            operationId=operation_id,
            token=token,
            side=call.params["side"],
            nonce=current,
            tip=tip,
            pool=use_pool,
        )
        return Pending(payload)

    async def update_limit_order(
        self,
        operation_id: str,
        token: str,
        amount_new: Any,
        limit_price: Any,
        limit_price_new: Any,
        direction: str,
        address: str,
        tip: Optional[int] = None,
        nonce: Optional[int] = None,
    ) -> Outcome:
        """Replace (or cancel, with a zero price/amount) a tracked limit order."""
        record = self.tracker.find(operation_id)
        if record is None or record.status is OperationStatus.FAILED:
            raise OrderNotFound(operation_id)
        cancel_only = to_decimal(limit_price_new) == 0 or to_decimal(amount_new) == 0

        if record.status is OperationStatus.SUCCEEDED:
            if not isinstance(record.payload, list) or not record.payload:
                raise OrderNotFound(operation_id)
            order_id = find_order_id(record.payload)
            if order_id is None:
                raise OrderIdMissing(operation_id)

            try:
                await self.cancel_limit_order(token, limit_price, order_id, address)
            except Exception as exc:
                raise ReconciliationFailed("cancel", exc) from exc
            log_event(log, "limit_order_replaced_cancel", level=INFO, operationId=operation_id, orderId=order_id)

            if cancel_only:
                return Succeeded({"message": "Order cancelled on chain"})
            try:
                return self.create_limit_order(token, amount_new, limit_price_new, direction, address)
            except GatewayError as exc:
                raise ReconciliationFailed("create", exc) from exc

        # still waiting for a block
        if nonce is None or tip is None:
            raise InvalidRequest("Address, tip and nonce required to change order in block")

        if cancel_only:
            pair = self.keyring.get_pair(address)
            marker = self.calls.remark(f"cancel order {operation_id}")
            self.tracker.track(
                operation_id,
                self.ledger.submit(pair, marker, nonce, tip),
                on_success=lambda _events: {"message": "Order cancelled in block"},
            )
            log_event(log, "limit_order_cancel_marker", level=INFO, operationId=operation_id, nonce=nonce, tip=tip)
            return Pending(
                {
                    "message": "Limit order is cancelling in block",
                    "operationId": operation_id,
                    "nonce": nonce,
                    "tip": tip,
                }
            )

        return self.create_limit_order(
            token, amount_new, limit_price_new, direction, address, tip=tip, nonce=nonce
        )

    async def cancel_limit_order(
        self,
        token: str,
        price: Any,
        order_id: Any,
        address: str,
        use_pool: bool = False,
    ) -> Succeeded:
        """Delete a resting order; price is part of the on-chain lookup key."""
        call = self.calls.delete_order(
            currency_to_asset(token), int(order_id), to_raw(price, PRICE_PRECISION), use_pool=use_pool
        )
        pair = self.keyring.get_pair(address)
        nonce = self.registry.allocate(address)
        events = await self.ledger.submit(pair, call, nonce)
        return Succeeded(events)

    def cancel_limit_orders(
        self,
        orders: List[Dict[str, Any]],
        address: str,
        use_pool: bool = False,
    ) -> Pending:
        """
        Submit one deletion per order under a single parent record.

        All nonces are reserved before the first submission, so later
        confirmations may arrive in any order.
        """
        calls = [
            self.calls.delete_order(
                currency_to_asset(o["token"]),
                int(o["orderId"]),
                to_raw(o["price"], PRICE_PRECISION),
                use_pool=use_pool,
            )
            for o in orders
        ]
        pair = self.keyring.get_pair(address)
        nonces = self.registry.reserve(address, len(calls))

        operation_id = self.tracker.create(
            {"message": "Orders are cancelling", "orders": orders, "events": []},
            kind="batch_cancel",
        )
        payload = self.tracker.get(operation_id).payload
        self.tracker.track_batch(
            operation_id,
            [self.ledger.submit(pair, call, n) for call, n in zip(calls, nonces)],
        )
        log_event(log, "limit_orders_cancel_submitted", level=INFO, operationId=operation_id, count=len(calls))
        return Pending(payload)

    # ------------------------------------------------------------------
    # Market orders
    # ------------------------------------------------------------------

    def create_market_order(self, token: str, amount: Any, direction: str, address: str) -> Pending:
        call = self.calls.create_market_order(
            currency_to_asset(token), capitalize(direction), to_raw(amount, AMOUNT_PRECISION)
        )
        pair = self.keyring.get_pair(address)
        nonce = self.registry.allocate(address)

        operation_id = self.tracker.create({"message": "Order is creating", "nonce": nonce}, kind="market_order")
        payload = self.tracker.get(operation_id).payload
        self.tracker.track(operation_id, self.ledger.submit(pair, call, nonce))
        log_event(log, "market_order_submitted", level=INFO, operationId=operation_id, token=token, nonce=nonce)
        return Pending(payload)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def deposit(self, token: str, amount: Any, address: str) -> Succeeded:
        """Move funds from the main account into the trading sub-account."""
        call = self.calls.transfer_to_subaccount(currency_to_asset(token), to_raw(amount, TRANSFER_PRECISION))
        pair = self.keyring.get_pair(address)
        nonce = self.registry.allocate(address)
        return Succeeded(await self.ledger.submit(pair, call, nonce))

    async def withdraw(self, token: str, amount: Any, address: str) -> Succeeded:
        """Move funds from the trading sub-account back to the main account."""
        call = self.calls.transfer_from_subaccount(currency_to_asset(token), to_raw(amount, TRANSFER_PRECISION))
        pair = self.keyring.get_pair(address)
        nonce = self.registry.allocate(address)
        return Succeeded(await self.ledger.submit(pair, call, nonce))

    async def sudo_deposit(self, token: str, amount: Any, address: str, to: str) -> Succeeded:
        # privileged; the node picks the nonce and the registry is bypassed
        call = self.calls.sudo_deposit(currency_to_asset(token), to, to_raw(amount, TRANSFER_PRECISION))
        pair = self.keyring.get_pair(address)
        log_event(log, "sudo_deposit_submitted", level=INFO, address=address, to=to, token=token)
        return Succeeded(await self.ledger.submit(pair, call, None))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def pending_extrinsics(self, address: str) -> List[Dict[str, Any]]:
        """create_order extrinsics signed by `address` still in the node's pool."""
        self.keyring.get_pair(address)
        order_pallets = {self.calls.variant.dex_pallet, self.calls.variant.pool_pallet}
        return [
            ext
            for ext in await self.ledger.pending_extrinsics()
            if ext.get("signer") == address
            and ext.get("method") == "create_order"
            and ext.get("section") in order_pallets
        ]

    def get_operation(self, operation_id: str) -> Dict[str, Any]:
        return self.tracker.get(operation_id).to_response()
