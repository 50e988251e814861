"""
InclusionWatcher: resolves submitted extrinsic hashes to the block that
included them.

One background task polls the chain head while at least one hash is being
watched, scans every new block once, and completes the matching futures. There
is no timeout: a hash that never lands keeps its waiter pending until the
process stops.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from dexgate.infra.logging_cfg import DEBUG, WARNING, log_event

log = logging.getLogger("dexgate")

# (block_hash, [extrinsic_hash, ...]) for a block number
BlockFetcher = Callable[[int], Awaitable[Tuple[str, List[str]]]]


@dataclass(frozen=True)
class Inclusion:
    extrinsic_hash: str
    block_hash: str
    block_number: int
    extrinsic_index: int
    waited_sec: float


def _norm(h: str) -> str:
    h = h.lower()
    return h if h.startswith("0x") else f"0x{h}"


class InclusionWatcher:
    def __init__(
        self,
        fetch_head: Callable[[], Awaitable[int]],
        fetch_block: BlockFetcher,
        poll_interval: float = 2.0,
    ) -> None:
        self._fetch_head = fetch_head
        self._fetch_block = fetch_block
        self._poll_interval = poll_interval
        self._waiters: Dict[str, Tuple[asyncio.Future, float]] = {}
        self._next_block: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def watching(self) -> int:
        return len(self._waiters)

    async def wait_for(self, extrinsic_hash: str, from_block: int) -> Inclusion:
        """Wait until `extrinsic_hash` appears in a block at or after `from_block`."""
        if self._closed:
            raise ConnectionError("inclusion watcher closed")
        key = _norm(extrinsic_hash)
        entry = self._waiters.get(key)
        if entry is None:
            fut = asyncio.get_running_loop().create_future()
            self._waiters[key] = (fut, time.monotonic())
        else:
            fut = entry[0]
        if self._next_block is None or from_block < self._next_block:
            self._next_block = from_block
        self._ensure_running()
        return await fut

    def _ensure_running(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        while self._waiters and not self._closed:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_event(log, "inclusion_poll_error", level=WARNING, error=str(exc))
            if self._waiters:
                await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> int:
        """Scan blocks up to the current head. Returns the number of matches."""
        head = await self._fetch_head()
        if self._next_block is None:
            self._next_block = head
        matched = 0
        while self._next_block <= head and self._waiters:
            number = self._next_block
            block_hash, hashes = await self._fetch_block(number)
            for index, ext_hash in enumerate(hashes):
                if not ext_hash:
                    continue
                entry = self._waiters.pop(_norm(ext_hash), None)
                if entry is None:
                    continue
                fut, started = entry
                if not fut.done():
                    fut.set_result(
                        Inclusion(
                            extrinsic_hash=_norm(ext_hash),
                            block_hash=block_hash,
                            block_number=number,
                            extrinsic_index=index,
                            waited_sec=time.monotonic() - started,
                        )
                    )
                    matched += 1
            self._next_block = number + 1
        if matched:
            log_event(log, "inclusion_matched", level=DEBUG, count=matched, head=head)
        return matched

    async def close(self) -> None:
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        for fut, _ in self._waiters.values():
            if not fut.done():
                fut.set_exception(ConnectionError("ledger session closed"))
        self._waiters.clear()
