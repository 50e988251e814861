"""
Gateway error taxonomy.

Validation-style errors (missing signer, missing nonce, unknown operation) are
raised synchronously before anything reaches the ledger. Ledger rejections are
raised from the submission path and end up recorded on the operation record.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for every error the gateway reports to callers."""

    code = "gateway_error"
    http_status = 200

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidRequest(GatewayError):
    code = "invalid_request"
    http_status = 400


class SignerNotFound(GatewayError):
    code = "signer_not_found"

    def __init__(self, address: str) -> None:
        super().__init__("Address not found in keyring")
        self.address = address


class NonceNotFound(GatewayError):
    code = "nonce_not_found"

    def __init__(self, address: str) -> None:
        super().__init__("Nonce not found in keyring")
        self.address = address


class OrderNotFound(GatewayError):
    code = "order_not_found"

    def __init__(self, operation_id: str, message: str = "Order not found") -> None:
        super().__init__(message)
        self.operation_id = operation_id


class OrderIdMissing(GatewayError):
    code = "order_id_missing"

    def __init__(self, operation_id: str) -> None:
        super().__init__("Order id is missing")
        self.operation_id = operation_id


class SubmissionFailed(GatewayError):
    """The ledger rejected a transaction (decoded dispatch error)."""

    code = "submission_failed"

    def __init__(
        self,
        message: str,
        section: Optional[str] = None,
        method: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.section = section
        self.method = method
        self.step_index = step_index

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.section is not None:
            data["section"] = self.section
        if self.method is not None:
            data["method"] = self.method
        if self.step_index is not None:
            data["stepIndex"] = self.step_index
        return data


class ReconciliationFailed(GatewayError):
    """Cancel-then-recreate did not complete; chain state must be re-queried."""

    code = "reconciliation_failed"

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["step"] = self.step
        return data


class UpstreamUnavailable(GatewayError):
    code = "upstream_unavailable"
    http_status = 502


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Describe any exception in the shape stored on failed records."""
    if isinstance(exc, GatewayError):
        return exc.to_dict()
    return {"code": "internal_error", "message": str(exc) or type(exc).__name__}
