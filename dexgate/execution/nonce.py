"""
Account-level nonce registry.

Holds the next unused sequence number for every local signing address. Each
address is read from the ledger exactly once at startup; afterwards this
process is the only owner of the counter and the ledger is never asked again,
since concurrent external submissions would desynchronize it.

Allocation is a plain synchronous read-increment with no await in between, so
the event loop cannot interleave two allocations for the same address and no
lock is needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from dexgate.core.errors import NonceNotFound
from dexgate.infra.logging_cfg import DEBUG, ERROR, INFO, log_event

if TYPE_CHECKING:
    from dexgate.infra.ledger import Ledger
    from dexgate.monitoring.metrics_rich import RichMetrics

log = logging.getLogger("dexgate")


class AccountRegistry:
    def __init__(self, ledger: "Ledger", metrics: Optional["RichMetrics"] = None) -> None:
        self._ledger = ledger
        self._metrics = metrics
        # map address -> next unused nonce
        self._nonces: Dict[str, int] = {}

    async def initialize(self, address: str) -> int:
        """Sync the address's sequence number from the ledger (once)."""
        if address in self._nonces:
            return self._nonces[address]
        nonce = await self._ledger.account_nonce(address)
        # another initialize() may have finished (and allocations happened)
        # while we were awaiting the ledger; the local counter wins
        current = self._nonces.setdefault(address, int(nonce))
        log_event(log, "nonce_initialized", level=INFO, address=address, nonce=current)
        return current

    async def initialize_all(self, addresses: Iterable[str]) -> Dict[str, Optional[int]]:
        """Initialize every address; failures leave that address uninitialized."""
        addresses = list(addresses)
        results = await asyncio.gather(
            *(self.initialize(a) for a in addresses), return_exceptions=True
        )
        synced: Dict[str, Optional[int]] = {}
        for address, result in zip(addresses, results):
            if isinstance(result, BaseException):
                log_event(log, "nonce_init_failed", level=ERROR, address=address, error=str(result))
                synced[address] = None
            else:
                synced[address] = result
        return synced

    def allocate(self, address: str) -> int:
        """Return the current nonce and advance the stored value by one."""
        current = self._nonces.get(address)
        if current is None:
            if self._metrics is not None:
                self._metrics.nonce_misses.inc()
            raise NonceNotFound(address)
        self._nonces[address] = current + 1
        if self._metrics is not None:
            self._metrics.nonces_allocated.labels(address=address).inc()
        log_event(log, "nonce_allocated", level=DEBUG, address=address, nonce=current)
        return current

    def reserve(self, address: str, count: int) -> List[int]:
        """Allocate `count` consecutive nonces in one step."""
        if count < 0:
            raise ValueError("count must be >= 0")
        current = self._nonces.get(address)
        if current is None:
            if self._metrics is not None:
                self._metrics.nonce_misses.inc()
            raise NonceNotFound(address)
        self._nonces[address] = current + count
        if self._metrics is not None and count:
            self._metrics.nonces_allocated.labels(address=address).inc(count)
        log_event(log, "nonce_reserved", level=DEBUG, address=address, first=current, count=count)
        return list(range(current, current + count))

    def peek(self, address: str) -> Optional[int]:
        return self._nonces.get(address)

    def addresses(self) -> List[str]:
        return list(self._nonces)
