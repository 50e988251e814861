"""
Request schemas for the HTTP layer.

Each request is a small dataclass built from the JSON body (or path/query
parameters) by `from_body`, which raises InvalidRequest on the first field
that does not validate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dexgate.core.errors import InvalidRequest
from dexgate.core.precision import to_decimal

ADDRESS_LENGTH_MIN = 47
ADDRESS_LENGTH_MAX = 49
DIRECTIONS = ("buy", "sell")


class Validator:
    """Field rules shared by every request schema."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self.tokens = frozenset(t.lower() for t in tokens)

    def token(self, value: Any) -> str:
        if not isinstance(value, str) or value.lower() not in self.tokens:
            raise InvalidRequest(f"token must be one of {sorted(self.tokens)}")
        return value.lower()

    def address(self, value: Any, name: str = "address") -> str:
        if not isinstance(value, str) or not (ADDRESS_LENGTH_MIN <= len(value) <= ADDRESS_LENGTH_MAX):
            raise InvalidRequest(
                f"{name} must be a string of {ADDRESS_LENGTH_MIN}-{ADDRESS_LENGTH_MAX} characters"
            )
        return value

    def number(self, value: Any, name: str, allow_zero: bool = False) -> Decimal:
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            raise InvalidRequest(f"{name} must be a number")
        try:
            number = to_decimal(value)
        except ValueError:
            raise InvalidRequest(f"{name} must be a number") from None
        if not number.is_finite():
            raise InvalidRequest(f"{name} must be a finite number")
        if number < 0 or (number == 0 and not allow_zero):
            raise InvalidRequest(f"{name} must be {'>= 0' if allow_zero else '> 0'}")
        return number

    def direction(self, value: Any) -> str:
        if not isinstance(value, str) or value.lower() not in DIRECTIONS:
            raise InvalidRequest("direction must be buy or sell")
        return value.lower()

    def optional_int(self, value: Any, name: str) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool):
            raise InvalidRequest(f"{name} must be an integer")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise InvalidRequest(f"{name} must be an integer") from None
        if number < 0 or (isinstance(value, float) and value != number):
            raise InvalidRequest(f"{name} must be a non-negative integer")
        return number

    def flag(self, value: Any) -> bool:
        return bool(value) if value is not None else False


def _require(body: Mapping[str, Any], *names: str) -> None:
    missing = [n for n in names if body.get(n) is None]
    if missing:
        raise InvalidRequest(f"missing required field(s): {', '.join(missing)}")


def _body(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise InvalidRequest("request body must be a JSON object")
    return body


@dataclass(frozen=True)
class LimitOrderCreate:
    token: str
    amount: Decimal
    limit_price: Decimal
    direction: str
    address: str
    use_pool: bool = False

    @classmethod
    def from_body(cls, body: Any, v: Validator) -> "LimitOrderCreate":
        body = _body(body)
        _require(body, "token", "address", "amount", "limitPrice", "direction")
        return cls(
            token=v.token(body["token"]),
            amount=v.number(body["amount"], "amount"),
            limit_price=v.number(body["limitPrice"], "limitPrice"),
            direction=v.direction(body["direction"]),
            address=v.address(body["address"]),
            use_pool=v.flag(body.get("isUsingPool")),
        )


@dataclass(frozen=True)
class LimitOrderUpdate:
    operation_id: str
    token: str
    amount_new: Decimal
    limit_price: Decimal
    limit_price_new: Decimal
    direction: str
    address: str
    tip: Optional[int] = None
    nonce: Optional[int] = None

    @classmethod
    def from_body(cls, body: Any, v: Validator) -> "LimitOrderUpdate":
        body = _body(body)
        # messageId is the older name of operationId
        operation_id = body.get("operationId", body.get("messageId"))
        if not isinstance(operation_id, str) or not operation_id:
            raise InvalidRequest("operationId must be a non-empty string")
        _require(body, "token", "address", "amountNew", "limitPrice", "limitPriceNew", "direction")
        return cls(
            operation_id=operation_id,
            token=v.token(body["token"]),
            amount_new=v.number(body["amountNew"], "amountNew", allow_zero=True),
            limit_price=v.number(body["limitPrice"], "limitPrice"),
            limit_price_new=v.number(body["limitPriceNew"], "limitPriceNew", allow_zero=True),
            direction=v.direction(body["direction"]),
            address=v.address(body["address"]),
            tip=v.optional_int(body.get("tip"), "tip"),
            nonce=v.optional_int(body.get("nonce"), "nonce"),
        )


@dataclass(frozen=True)
class LimitOrderCancel:
    token: str
    price: Decimal
    order_id: int
    address: str
    use_pool: bool = False

    @classmethod
    def from_body(cls, body: Any, v: Validator) -> "LimitOrderCancel":
        body = _body(body)
        _require(body, "token", "price", "orderId", "address")
        return cls(
            token=v.token(body["token"]),
            price=v.number(body["price"], "price"),
            order_id=v.optional_int(body["orderId"], "orderId"),
            address=v.address(body["address"]),
            use_pool=v.flag(body.get("isUsingPool")),
        )


@dataclass(frozen=True)
class LimitOrdersCancel:
    address: str
    orders: List[Dict[str, Any]] = field(default_factory=list)
    use_pool: bool = False

    @classmethod
    def from_body(cls, body: Any, v: Validator) -> "LimitOrdersCancel":
        body = _body(body)
        _require(body, "orders", "address")
        raw_orders = body["orders"]
        if not isinstance(raw_orders, list):
            raise InvalidRequest("orders must be a list")
        orders = []
        for raw in raw_orders:
            raw = _body(raw)
            _require(raw, "token", "price", "orderId")
            orders.append({
                "token": v.token(raw["token"]),
                "price": v.number(raw["price"], "price"),
                "orderId": v.optional_int(raw["orderId"], "orderId"),
            })
        return cls(address=v.address(body["address"]), orders=orders, use_pool=v.flag(body.get("isUsingPool")))


@dataclass(frozen=True)
class MarketOrderCreate:
    token: str
    amount: Decimal
    direction: str
    address: str

    @classmethod
    def from_body(cls, body: Any, v: Validator) -> "MarketOrderCreate":
        body = _body(body)
        _require(body, "token", "address", "amount", "direction")
        return cls(
            token=v.token(body["token"]),
            amount=v.number(body["amount"], "amount"),
            direction=v.direction(body["direction"]),
            address=v.address(body["address"]),
        )


@dataclass(frozen=True)
class Transfer:
    token: str
    amount: Decimal
    address: str
    to: Optional[str] = None

    @classmethod
    def from_body(cls, body: Any, v: Validator, require_to: bool = False) -> "Transfer":
        body = _body(body)
        _require(body, "token", "address", "amount")
        if require_to:
            _require(body, "to")
        return cls(
            token=v.token(body["token"]),
            amount=v.number(body["amount"], "amount"),
            address=v.address(body["address"]),
            to=v.address(body["to"], "to") if require_to else None,
        )


@dataclass(frozen=True)
class Paging:
    page: int = 0
    page_size: int = 100

    @classmethod
    def from_query(cls, query: Mapping[str, str], v: Validator) -> "Paging":
        page = v.optional_int(query.get("page"), "page")
        page_size = v.optional_int(query.get("pageSize"), "pageSize")
        return cls(
            page=0 if page is None else page,
            page_size=100 if page_size is None else page_size,
        )
