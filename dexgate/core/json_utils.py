"""
Fast JSON utilities for log lines and HTTP bodies.

Decimal values serialize as plain decimal strings so no monetary value ever
leaves the process as a float.

Usage:
    from dexgate.core.json_utils import dumps, loads

    log.info(dumps({"event": "operation_created", "operationId": op_id}))
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import orjson

from dexgate.core.precision import decimal_str


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return decimal_str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Encode to str."""
    return orjson.dumps(obj, default=_default).decode("utf-8")


def loads(s: str | bytes) -> Any:
    return orjson.loads(s)
