"""
Tagged result union returned by coordinator operations.

Every variant renders to the `{success, pending, payload}` wire shape that
HTTP clients poll against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Union

from dexgate.core.errors import GatewayError, error_payload


@dataclass(frozen=True)
class Pending:
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        return {"success": True, "pending": True, "payload": self.payload}


@dataclass(frozen=True)
class Succeeded:
    result: Any = None

    def to_response(self) -> Dict[str, Any]:
        return {"success": True, "pending": False, "payload": self.result}


@dataclass(frozen=True)
class Failed:
    error: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Failed":
        return cls(error=error_payload(exc))

    def to_response(self) -> Dict[str, Any]:
        return {"success": False, "pending": False, "payload": {"error": self.error}}


Outcome = Union[Pending, Succeeded, Failed]


def error_response(exc: GatewayError) -> Dict[str, Any]:
    return Failed.from_exception(exc).to_response()
