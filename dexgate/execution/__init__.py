"""
Execution layer components.

- AccountRegistry: per-address nonce allocation
- OperationTracker: pending/succeeded/failed operation records
- OrderCoordinator: create / replace / cancel and transfers
"""

from dexgate.execution.nonce import AccountRegistry
from dexgate.execution.operation_tracker import (
    OperationIdFactory,
    OperationRecord,
    OperationStatus,
    OperationTracker,
)
from dexgate.execution.order_coordinator import OrderCoordinator

__all__ = [
    "AccountRegistry",
    "OperationIdFactory",
    "OperationRecord",
    "OperationStatus",
    "OperationTracker",
    "OrderCoordinator",
]
