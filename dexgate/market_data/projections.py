"""
Market data projections: read-only views derived from ledger snapshots.

Each projection pulls the snapshots it needs from the Ledger (which memoizes
them per key) and computes its value on the spot. Nothing here is stored.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

from dexgate.core.errors import InvalidRequest
from dexgate.core.precision import ZERO, currency_to_asset, decimal_str, is_pos_int

if TYPE_CHECKING:
    from dexgate.infra.ledger import Ledger, OrderView
    from dexgate.infra.trade_history import TradeHistoryClient

DEFAULT_DEPTH = 100

Level = Tuple[Decimal, Decimal]


def _levels(orders: Iterable["OrderView"], side: str) -> Dict[Decimal, Decimal]:
    levels: Dict[Decimal, Decimal] = {}
    for order in orders:
        if order.side == side:
            levels[order.price] = levels.get(order.price, ZERO) + order.amount
    return levels


def aggregate_depth(orders: Iterable["OrderView"], depth: Any = None) -> Dict[str, List[Level]]:
    """
    Sum resting amount per exact price.

    Bids sort by price descending, asks ascending; both are truncated to
    `depth` levels (default 100 unless depth is a positive integer).
    """
    orders = list(orders)
    limit = int(depth) if is_pos_int(depth) else DEFAULT_DEPTH
    bids = sorted(_levels(orders, "Buy").items(), key=lambda lvl: lvl[0], reverse=True)
    asks = sorted(_levels(orders, "Sell").items(), key=lambda lvl: lvl[0])
    return {"bids": bids[:limit], "asks": asks[:limit]}


def collateral_totals(
    balances: Iterable[Dict[int, Decimal]], rates: Dict[int, Decimal]
) -> Tuple[Decimal, Decimal]:
    """
    USD collateral and debt over one or more accounts' balances.

    Positive balances count as collateral, negative ones as debt (absolute
    value). Assets without a rate are worth zero.
    """
    collateral = ZERO
    debt = ZERO
    for account in balances:
        for asset, balance in account.items():
            usd = balance * rates.get(asset, ZERO)
            if balance > 0:
                collateral += usd
            elif balance < 0:
                debt += abs(usd)
    return collateral, debt


def compute_margin(collateral_usd: Decimal, debt_usd: Decimal) -> Optional[Decimal]:
    total = collateral_usd + debt_usd
    if total == 0:
        return None
    return (collateral_usd - debt_usd) / total


def locked_balance(orders: Iterable["OrderView"], account: Optional[str]) -> Decimal:
    """Capital committed to resting orders: sum of price * amount."""
    if account is None:
        return ZERO
    return sum((o.price * o.amount for o in orders if o.account == account), ZERO)


def _render_levels(levels: List[Level]) -> List[List[Optional[str]]]:
    return [[decimal_str(price), decimal_str(amount)] for price, amount in levels]


class MarketData:
    def __init__(
        self,
        ledger: "Ledger",
        trade_history: Optional["TradeHistoryClient"] = None,
    ) -> None:
        self.ledger = ledger
        self.trade_history = trade_history

    async def orders(self, token: str) -> List[Dict[str, Any]]:
        return [o.to_dict() for o in await self.ledger.orders(currency_to_asset(token))]

    async def orders_by_address(self, token: str, address: str) -> List[Dict[str, Any]]:
        """Orders rest on the trading sub-account, not the main address."""
        trader = await self.ledger.subaccount(address)
        if trader is None:
            return []
        orders = await self.ledger.orders(currency_to_asset(token))
        return [o.to_dict() for o in orders if o.account == trader]

    async def depth(self, token: str, depth: Any = None) -> Dict[str, List[List[Optional[str]]]]:
        book = aggregate_depth(await self.ledger.orders(currency_to_asset(token)), depth)
        return {"bids": _render_levels(book["bids"]), "asks": _render_levels(book["asks"])}

    async def best_price(self, token: str) -> Dict[str, Optional[str]]:
        prices = await self.ledger.best_price(currency_to_asset(token))
        return {"ask": decimal_str(prices.get("ask")), "bid": decimal_str(prices.get("bid"))}

    async def balances(self, token: str, address: str) -> Dict[str, str]:
        asset = currency_to_asset(token)
        master = await self.ledger.account_balances(address)
        trader = await self.ledger.subaccount(address)
        trading = await self.ledger.account_balances(trader) if trader else {}
        return {
            "masterBalance": decimal_str(master.get(asset, ZERO)),
            "tradingBalance": decimal_str(trading.get(asset, ZERO)),
        }

    async def _account_balances(self, address: str) -> Tuple[List[Dict[int, Decimal]], Optional[str]]:
        trader = await self.ledger.subaccount(address)
        accounts = [await self.ledger.account_balances(address)]
        if trader:
            accounts.append(await self.ledger.account_balances(trader))
        return accounts, trader

    async def margin(self, address: str) -> Optional[str]:
        """(collateral - debt) / (collateral + debt); None for an empty account."""
        accounts, _ = await self._account_balances(address)
        collateral, debt = collateral_totals(accounts, await self.ledger.rates())
        return decimal_str(compute_margin(collateral, debt))

    async def collateral(self, address: str) -> Dict[str, str]:
        accounts, trader = await self._account_balances(address)
        collateral, debt = collateral_totals(accounts, await self.ledger.rates())
        locked = locked_balance(await self.ledger.all_orders(), trader)
        return {
            "collateralUsd": decimal_str(collateral),
            "debtUsd": decimal_str(debt),
            "lockedUsd": decimal_str(locked),
            "availableUsd": decimal_str(collateral - debt - locked),
        }

    async def rates(self) -> List[Dict[str, Any]]:
        prices = await self.ledger.rates()
        return [
            {"token": info.token, "asset": info.asset, "price": decimal_str(prices.get(info.asset, ZERO))}
            for info in await self.ledger.asset_metadata()
        ]

    async def token_info(self, token: str) -> Dict[str, Any]:
        for info in await self.ledger.asset_metadata():
            if info.token.lower() == token.lower():
                return {
                    "token": info.token,
                    "asset": info.asset,
                    "lot": decimal_str(info.lot),
                    "priceStep": decimal_str(info.price_step),
                    "makerFee": decimal_str(info.maker_fee),
                    "takerFee": decimal_str(info.taker_fee),
                }
        raise InvalidRequest(f"Unknown token: {token}")

    async def trades(
        self, token: str, address: Optional[str] = None, page: int = 0, page_size: int = 100
    ) -> Any:
        if self.trade_history is None:
            raise InvalidRequest("Trade history is not configured")
        return await self.trade_history.trades(token, acc=address, page=page, page_size=page_size)
