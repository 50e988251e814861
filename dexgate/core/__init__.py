"""
Core utilities package.

Error taxonomy, the Pending/Succeeded/Failed result union, fixed-point
precision helpers and JSON encoding.
"""

from dexgate.core.errors import (
    GatewayError,
    InvalidRequest,
    OrderIdMissing,
    OrderNotFound,
    NonceNotFound,
    ReconciliationFailed,
    SignerNotFound,
    SubmissionFailed,
    UpstreamUnavailable,
)
from dexgate.core.results import Failed, Outcome, Pending, Succeeded

__all__ = [
    "GatewayError",
    "InvalidRequest",
    "OrderIdMissing",
    "OrderNotFound",
    "NonceNotFound",
    "ReconciliationFailed",
    "SignerNotFound",
    "SubmissionFailed",
    "UpstreamUnavailable",
    "Failed",
    "Outcome",
    "Pending",
    "Succeeded",
]
