"""
Operation Tracker - lifecycle table for submitted ledger operations.

Every operation accepted for submission gets an opaque, generation-ordered id
and a record in PENDING state. When the asynchronous submission settles the
record transitions exactly once to SUCCEEDED (decoded on-chain result) or
FAILED (error descriptor) and is immutable afterwards. Resolved records are
purged after a configurable delay.

State Diagram:

    PENDING ──────┬──────> SUCCEEDED ──┐
                  │                    ├──> (purged after purge_timeout)
                  └──────> FAILED ─────┘

Callers observe PENDING immediately after creation and poll `get()` for the
outcome. Records are process-lifetime only.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TYPE_CHECKING

from dexgate.core.errors import OrderNotFound, error_payload
from dexgate.core.results import Failed, Succeeded
from dexgate.infra.logging_cfg import DEBUG, INFO, WARNING, log_event

if TYPE_CHECKING:
    from dexgate.monitoring.metrics_rich import RichMetrics

log = logging.getLogger("dexgate")


class OperationStatus(Enum):
    PENDING = "pending"        # Submitted, awaiting inclusion
    SUCCEEDED = "succeeded"    # Included, result decoded (terminal)
    FAILED = "failed"          # Rejected or errored (terminal)


TERMINAL_STATUSES = frozenset({OperationStatus.SUCCEEDED, OperationStatus.FAILED})


@dataclass
class OperationRecord:
    operation_id: str
    kind: str
    status: OperationStatus = OperationStatus.PENDING
    payload: Any = None
    error: Optional[Dict[str, Any]] = None
    created_ms: int = 0
    resolved_ms: Optional[int] = None

    def __post_init__(self):
        if self.created_ms == 0:
            self.created_ms = int(time.time() * 1000)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_response(self) -> Dict[str, Any]:
        if self.status is OperationStatus.FAILED:
            return {"success": False, "pending": False, "payload": {"error": self.error}}
        return {
            "success": self.status is OperationStatus.SUCCEEDED,
            "pending": self.status is OperationStatus.PENDING,
            "payload": self.payload,
        }


class OperationIdFactory:
    """Mints ids as millisecond timestamp + monotonic counter."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"{int(self._clock() * 1000)}{next(self._counter)}"


@dataclass
class _BatchState:
    expected: int
    settled: int = 0
    failures: int = 0


class OperationTracker:
    """
    In-memory table of operation records.

    Mutations are single dict operations on the event loop thread, so
    concurrent request handlers need no extra locking.
    """

    def __init__(
        self,
        purge_timeout: float = 0.0,
        metrics: Optional["RichMetrics"] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        """
        Args:
            purge_timeout: Seconds after resolution before a record is
                deleted. 0 keeps records for the process lifetime.
            metrics: Optional Prometheus metrics
            id_factory: Override for operation id minting (tests)
        """
        self._purge_timeout = max(0.0, float(purge_timeout))
        self._metrics = metrics
        self._new_id = id_factory or OperationIdFactory()
        self._records: Dict[str, OperationRecord] = {}
        self._batches: Dict[str, _BatchState] = {}
        self._purge_handles: Dict[str, asyncio.TimerHandle] = {}
        # strong refs so background settlement tasks are not collected
        self._tasks: Set[asyncio.Task] = set()
        self._stats = {
            "total_created": 0,
            "total_succeeded": 0,
            "total_failed": 0,
            "total_purged": 0,
            "duplicate_resolutions_ignored": 0,
        }

    @property
    def purge_timeout(self) -> float:
        return self._purge_timeout

    def create(self, payload: Any = None, kind: str = "operation") -> str:
        """Mint an id and insert a PENDING record. Returns the id."""
        operation_id = self._new_id()
        if isinstance(payload, dict):
            payload = {**payload, "operationId": operation_id}
        self._records[operation_id] = OperationRecord(
            operation_id=operation_id, kind=kind, payload=payload
        )
        self._stats["total_created"] += 1
        if self._metrics is not None:
            self._metrics.operations_created.labels(kind=kind).inc()
            self._metrics.operations_pending.inc()
        log_event(log, "operation_created", level=DEBUG, operationId=operation_id, kind=kind)
        return operation_id

    def find(self, operation_id: str) -> Optional[OperationRecord]:
        return self._records.get(operation_id)

    def get(self, operation_id: str) -> OperationRecord:
        record = self._records.get(operation_id)
        if record is None:
            raise OrderNotFound(operation_id, "Message not found")
        return record

    def resolve(self, operation_id: str, outcome: Succeeded | Failed) -> bool:
        """
        Transition PENDING -> SUCCEEDED|FAILED.

        Returns False (and changes nothing) if the record is unknown or already
        terminal; the first resolution wins.
        """
        record = self._records.get(operation_id)
        if record is None:
            log_event(log, "operation_resolve_unknown", level=WARNING, operationId=operation_id)
            return False
        if record.is_terminal:
            self._stats["duplicate_resolutions_ignored"] += 1
            log_event(
                log,
                "operation_already_resolved",
                level=WARNING,
                operationId=operation_id,
                status=record.status.value,
            )
            return False

        if isinstance(outcome, Succeeded):
            record.status = OperationStatus.SUCCEEDED
            record.payload = outcome.result
            self._stats["total_succeeded"] += 1
        else:
            record.status = OperationStatus.FAILED
            record.error = outcome.error
            self._stats["total_failed"] += 1
        record.resolved_ms = int(time.time() * 1000)

        if self._metrics is not None:
            self._metrics.operations_pending.dec()
            self._metrics.operations_resolved.labels(
                kind=record.kind, status=record.status.value
            ).inc()
        log_event(
            log,
            "operation_resolved",
            level=INFO,
            operationId=operation_id,
            kind=record.kind,
            status=record.status.value,
            latency_ms=record.resolved_ms - record.created_ms,
        )
        self._schedule_purge(operation_id)
        return True

    def append_event(self, operation_id: str, event: Dict[str, Any]) -> bool:
        """Append a child event to a pending record's payload["events"]."""
        record = self._records.get(operation_id)
        if record is None or record.is_terminal or not isinstance(record.payload, dict):
            return False
        record.payload = {
            **record.payload,
            "events": [*record.payload.get("events", []), event],
        }
        return True

    def track(
        self,
        operation_id: str,
        awaitable: Awaitable[Any],
        on_success: Optional[Callable[[Any], Any]] = None,
    ) -> asyncio.Task:
        """
        Await the submission in the background and resolve the record on its
        first settlement. `on_success` maps the raw result to the stored payload.
        """

        async def _settle() -> None:
            try:
                result = await awaitable
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.resolve(operation_id, Failed(error=error_payload(exc)))
            else:
                payload = on_success(result) if on_success is not None else result
                self.resolve(operation_id, Succeeded(payload))

        return self._spawn(_settle())

    def track_batch(self, parent_id: str, awaitables: List[Awaitable[Any]]) -> List[asyncio.Task]:
        """
        Track independent child submissions under one parent record.

        Each child appends one event to the parent as it settles, in whatever
        order settlements arrive. The parent resolves once every child settled.
        """
        self._batches[parent_id] = _BatchState(expected=len(awaitables))
        if not awaitables:
            self._finish_batch(parent_id)
            return []

        async def _child(index: int, aw: Awaitable[Any]) -> None:
            try:
                result = await aw
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                event = {"index": index, "success": False, "pending": False, "error": error_payload(exc)}
                failed = True
            else:
                event = {"index": index, "success": True, "pending": False, "payload": result}
                failed = False
            self.append_event(parent_id, event)
            state = self._batches.get(parent_id)
            if state is None:
                return
            state.settled += 1
            state.failures += int(failed)
            if state.settled >= state.expected:
                self._finish_batch(parent_id)

        return [self._spawn(_child(i, aw)) for i, aw in enumerate(awaitables)]

    def _finish_batch(self, parent_id: str) -> None:
        state = self._batches.pop(parent_id, None)
        record = self._records.get(parent_id)
        if record is None:
            return
        payload = dict(record.payload) if isinstance(record.payload, dict) else {}
        if state is not None:
            payload["failed"] = state.failures
        self.resolve(parent_id, Succeeded(payload))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_purge(self, operation_id: str) -> None:
        if self._purge_timeout <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._purge_handles[operation_id] = loop.call_later(
            self._purge_timeout, self.purge, operation_id
        )

    def purge(self, operation_id: str) -> bool:
        """Delete a record. Returns False if it was already gone."""
        handle = self._purge_handles.pop(operation_id, None)
        if handle is not None:
            handle.cancel()
        record = self._records.pop(operation_id, None)
        if record is None:
            return False
        self._stats["total_purged"] += 1
        log_event(log, "operation_purged", level=DEBUG, operationId=operation_id)
        return True

    def get_records_by_status(self, status: OperationStatus) -> List[OperationRecord]:
        return [rec for rec in self._records.values() if rec.status == status]

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "tracked": len(self._records),
            "pending": len(self.get_records_by_status(OperationStatus.PENDING)),
            "in_flight_tasks": len(self._tasks),
        }

    async def close(self) -> None:
        """Cancel purge timers and outstanding settlement tasks."""
        for handle in self._purge_handles.values():
            handle.cancel()
        self._purge_handles.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
