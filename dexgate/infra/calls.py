"""
Runtime call construction, parameterized by chain variant.

Calls are described as plain CallSpec values so the coordinator never touches
the substrate client; the ledger session composes them at submission time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dexgate.config.variants import ChainVariant


@dataclass(frozen=True)
class CallSpec:
    module: str
    function: str
    params: Dict[str, Any] = field(default_factory=dict)
    # Wrapped call (passed as the "call" argument, e.g. for sudo)
    inner: Optional["CallSpec"] = None

    @property
    def name(self) -> str:
        return f"{self.module}.{self.function}"


class CallBuilder:
    def __init__(self, variant: ChainVariant) -> None:
        self.variant = variant

    def _order_pallet(self, use_pool: bool) -> str:
        return self.variant.pool_pallet if use_pool else self.variant.dex_pallet

    def create_limit_order(
        self, asset: int, price: int, side: str, amount: int, use_pool: bool = False
    ) -> CallSpec:
        return CallSpec(
            module=self._order_pallet(use_pool),
            function="create_order",
            params={
                "asset": asset,
                "order_type": {"Limit": {"price": price, "expiration_time": 0}},
                "side": side,
                "amount": amount,
            },
        )

    def create_market_order(self, asset: int, side: str, amount: int) -> CallSpec:
        return CallSpec(
            module=self.variant.dex_pallet,
            function="create_order",
            params={"asset": asset, "order_type": "Market", "side": side, "amount": amount},
        )

    def delete_order(self, asset: int, order_id: int, price: int, use_pool: bool = False) -> CallSpec:
        return CallSpec(
            module=self._order_pallet(use_pool),
            function="delete_order",
            params={"asset": asset, "order_id": order_id, "price": price},
        )

    def transfer_to_subaccount(self, asset: int, amount: int) -> CallSpec:
        return CallSpec(
            module=self.variant.subaccounts_pallet,
            function="transfer_to_subaccount",
            params={"subacc_type": self.variant.subaccount_kind, "asset": asset, "value": amount},
        )

    def transfer_from_subaccount(self, asset: int, amount: int) -> CallSpec:
        return CallSpec(
            module=self.variant.subaccounts_pallet,
            function="transfer_from_subaccount",
            params={"subacc_type": self.variant.subaccount_kind, "asset": asset, "amount": amount},
        )

    def sudo_deposit(self, asset: int, to: str, amount: int) -> CallSpec:
        inner = CallSpec(
            module=self.variant.balances_pallet,
            function="deposit",
            params={"asset": asset, "to": to, "amount": amount},
        )
        return CallSpec(module="Sudo", function="sudo", inner=inner)

    def remark(self, text: str) -> CallSpec:
        return CallSpec(module="System", function="remark", params={"remark": text})
