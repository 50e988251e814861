"""
Ledger session over a Substrate node.

One SubstrateInterface client per process, created lazily on first use and
shared by every query and submission. The client is blocking and its
websocket is not thread-safe, so all calls run on a single-worker executor.

Submission does not wait for inclusion on the executor thread: the signed
extrinsic is sent, then the InclusionWatcher resolves its hash to a block and
the receipt is decoded. Queries keep flowing while confirmations are pending.

Derived read queries are memoized per (query, key) in a QueryRegistry.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, TYPE_CHECKING

from substrateinterface import ExtrinsicReceipt, Keypair, SubstrateInterface
from substrateinterface.exceptions import SubstrateRequestException
from substrateinterface.utils.ss58 import ss58_encode

from dexgate.config.variants import ChainVariant
from dexgate.core.errors import SubmissionFailed
from dexgate.core.precision import (
    AMOUNT_PRECISION,
    PRICE_PRECISION,
    ZERO,
    asset_to_currency,
    from_raw,
    signed_balance,
)
from dexgate.infra.calls import CallSpec
from dexgate.infra.inclusion import InclusionWatcher
from dexgate.infra.logging_cfg import DEBUG, INFO, WARNING, log_event
from dexgate.infra.query_cache import QueryRegistry
from dexgate.infra.tx_result import decode_receipt

if TYPE_CHECKING:
    from dexgate.monitoring.metrics_rich import RichMetrics

log = logging.getLogger("dexgate")

# Oracle price of the variant's stable token, raw (1 USD)
STABLE_PRICE_RAW = 10**9


@dataclass(frozen=True)
class OrderView:
    """A resting order as read from the ledger, in natural units."""

    order_id: str
    account: str
    side: str  # "Buy" / "Sell"
    price: Decimal
    amount: Decimal
    asset: int
    created_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "account": self.account,
            "side": self.side,
            "price": self.price,
            "amount": self.amount,
            "asset": self.asset,
            "token": asset_to_currency(self.asset),
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class AssetInfo:
    token: str
    asset: int
    lot: Decimal = ZERO
    price_step: Decimal = ZERO
    maker_fee: Decimal = ZERO
    taker_fee: Decimal = ZERO


class Ledger(Protocol):
    """What the coordinator, registry and projections need from the chain."""

    async def account_nonce(self, address: str) -> int: ...

    async def submit(
        self, signer: Keypair, call: CallSpec, nonce: Optional[int] = None, tip: int = 0
    ) -> List[Dict[str, Any]]: ...

    async def orders(self, asset: int) -> List[OrderView]: ...

    async def all_orders(self) -> List[OrderView]: ...

    async def best_price(self, asset: int) -> Dict[str, Optional[Decimal]]: ...

    async def account_balances(self, address: str) -> Dict[int, Decimal]: ...

    async def subaccount(self, address: str) -> Optional[str]: ...

    async def asset_metadata(self) -> List[AssetInfo]: ...

    async def rates(self) -> Dict[int, Decimal]: ...

    async def genesis_hash(self) -> str: ...

    async def pending_extrinsics(self) -> List[Dict[str, Any]]: ...


def _plain(value: Any) -> Any:
    """Unwrap a scale object to its python value."""
    return getattr(value, "value", value)


def _hex(data: Any) -> Optional[str]:
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    return str(data)


def rpc_rejection(exc: SubstrateRequestException) -> SubmissionFailed:
    """Turn a node-side RPC rejection (e.g. 1010 stale nonce) into SubmissionFailed."""
    error = exc.args[0] if exc.args else None
    if isinstance(error, dict):
        message = str(error.get("message") or "Transaction rejected")
        if error.get("data"):
            message = f"{message}: {error['data']}"
        if error.get("code") is not None:
            message = f"{message} ({error['code']})"
    else:
        message = str(error or exc) or "Transaction rejected"
    return SubmissionFailed(message, section="author", method="submitExtrinsic")


def parse_order(raw: Dict[str, Any], asset: int) -> OrderView:
    side = raw.get("side")
    if isinstance(side, dict):
        side = next(iter(side), "")
    return OrderView(
        order_id=str(raw.get("order_id")),
        account=str(raw.get("account_id")),
        side=str(side),
        price=signed_balance(raw.get("price"), PRICE_PRECISION),
        amount=from_raw(raw.get("amount"), AMOUNT_PRECISION),
        asset=int(asset),
        created_at=raw.get("created_at"),
    )


def parse_balances(data: Any) -> Dict[int, Decimal]:
    """Account data is V0{balance: [(asset, SignedBalance)]} on these chains."""
    if isinstance(data, dict) and "V0" in data:
        data = data["V0"]
    if isinstance(data, dict) and "balance" in data:
        data = data["balance"]
    if isinstance(data, dict):
        data = list(data.items())
    balances: Dict[int, Decimal] = {}
    for entry in data or []:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            continue
        asset, balance = entry
        balances[int(asset)] = signed_balance(balance, PRICE_PRECISION)
    return balances


def parse_asset(raw: Dict[str, Any]) -> AssetInfo:
    asset = int(raw.get("id", 0))
    return AssetInfo(
        token=asset_to_currency(asset),
        asset=asset,
        lot=from_raw(raw.get("lot"), AMOUNT_PRECISION),
        price_step=from_raw(raw.get("price_step"), AMOUNT_PRECISION),
        maker_fee=from_raw(raw.get("maker_fee"), AMOUNT_PRECISION),
        taker_fee=from_raw(raw.get("taker_fee"), AMOUNT_PRECISION),
    )


class LedgerSession:
    def __init__(
        self,
        url: str,
        variant: ChainVariant,
        client_factory: Optional[Callable[[], Any]] = None,
        cache_ttl_ms: int = 500,
        cache_max_entries: int = 256,
        block_poll_interval: float = 2.0,
        metrics: Optional["RichMetrics"] = None,
        receipt_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.url = url
        self.variant = variant
        self._client_factory = client_factory or self._default_client
        self._client: Any = None
        self._receipt_factory = receipt_factory or ExtrinsicReceipt
        self._connect_lock = asyncio.Lock()
        # single worker: the websocket is one shared, non thread-safe resource
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger")
        self._queries = QueryRegistry(cache_ttl_ms, max_entries=cache_max_entries)
        self._metrics = metrics
        self._watcher = InclusionWatcher(
            self._head_number, self._block_extrinsics, poll_interval=block_poll_interval
        )

    def _default_client(self) -> SubstrateInterface:
        return SubstrateInterface(url=self.url, ss58_format=self.variant.ss58_format)

    @property
    def queries(self) -> QueryRegistry:
        return self._queries

    @property
    def watcher(self) -> InclusionWatcher:
        return self._watcher

    async def client(self) -> Any:
        """Return the shared client, connecting on first use."""
        if self._client is not None:
            return self._client
        async with self._connect_lock:
            if self._client is None:
                loop = asyncio.get_running_loop()
                self._client = await loop.run_in_executor(self._executor, self._client_factory)
                log_event(log, "ledger_connected", level=INFO, url=self.url, variant=self.variant.name)
        return self._client

    async def _call(self, fn: Callable[[Any], Any]) -> Any:
        client = await self.client()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, client)

    # ---- inclusion watcher hooks -------------------------------------------

    async def _head_number(self) -> int:
        def _read(s: Any) -> int:
            header = s.get_block_header(finalized_only=False)
            return int(header["header"]["number"])

        return await self._call(_read)

    async def _block_extrinsics(self, number: int) -> Tuple[str, List[str]]:
        def _read(s: Any) -> Tuple[str, List[str]]:
            block = s.get_block(block_number=number)
            block_hash = block["header"]["hash"]
            hashes = []
            for ext in block.get("extrinsics") or []:
                ext_hash = getattr(ext, "extrinsic_hash", None)
                if ext_hash is None and isinstance(_plain(ext), dict):
                    ext_hash = _plain(ext).get("extrinsic_hash")
                hashes.append(_hex(ext_hash) or "")
            return block_hash, hashes

        return await self._call(_read)

    # ---- submission ---------------------------------------------------------

    def _compose(self, s: Any, call: CallSpec) -> Any:
        params = dict(call.params)
        if call.inner is not None:
            params["call"] = self._compose(s, call.inner)
        return s.compose_call(call_module=call.module, call_function=call.function, call_params=params)

    async def submit(
        self, signer: Keypair, call: CallSpec, nonce: Optional[int] = None, tip: int = 0
    ) -> List[Dict[str, Any]]:
        """Sign, send and wait for inclusion. Returns the decoded events."""

        def _send(s: Any) -> Tuple[str, int]:
            kwargs: Dict[str, Any] = {"call": self._compose(s, call), "keypair": signer}
            # nonce None lets the node pick the next on-chain nonce
            if nonce is not None:
                kwargs["nonce"] = nonce
            if tip:
                kwargs["tip"] = tip
            extrinsic = s.create_signed_extrinsic(**kwargs)
            head = int(s.get_block_header(finalized_only=False)["header"]["number"])
            receipt = s.submit_extrinsic(extrinsic, wait_for_inclusion=False)
            return _hex(receipt.extrinsic_hash), head

        try:
            ext_hash, head = await self._call(_send)
        except SubstrateRequestException as exc:
            self._count_failure(call)
            rejected = rpc_rejection(exc)
            log_event(log, "submission_rejected", level=WARNING, call=call.name, nonce=nonce, error=rejected.message)
            raise rejected from exc
        except Exception as exc:
            self._count_failure(call)
            log_event(log, "submission_failed", level=WARNING, call=call.name, nonce=nonce, error=str(exc))
            raise
        if self._metrics is not None:
            self._metrics.submissions.labels(call=call.name).inc()
        log_event(log, "submission_sent", level=INFO, call=call.name, nonce=nonce, tip=tip, hash=ext_hash)

        inclusion = await self._watcher.wait_for(ext_hash, head)
        if self._metrics is not None:
            self._metrics.inclusion_latency_sec.observe(inclusion.waited_sec)

        def _receipt(s: Any) -> List[Dict[str, Any]]:
            receipt = self._receipt_factory(
                substrate=s,
                extrinsic_hash=inclusion.extrinsic_hash,
                block_hash=inclusion.block_hash,
                extrinsic_idx=inclusion.extrinsic_index,
            )
            return decode_receipt(receipt, (self.variant.dex_pallet, self.variant.pool_pallet))

        try:
            events = await self._call(_receipt)
        except SubmissionFailed as exc:
            self._count_failure(call)
            log_event(
                log,
                "submission_failed",
                level=WARNING,
                call=call.name,
                nonce=nonce,
                block=inclusion.block_number,
                error=exc.message,
            )
            raise
        # own writes should be visible to the next read
        self._queries.invalidate()
        log_event(
            log,
            "submission_included",
            level=INFO,
            call=call.name,
            nonce=nonce,
            block=inclusion.block_number,
            waited_sec=round(inclusion.waited_sec, 3),
        )
        return events

    def _count_failure(self, call: CallSpec) -> None:
        if self._metrics is not None:
            self._metrics.submission_failures.labels(call=call.name).inc()

    # ---- queries -----------------------------------------------------------

    async def account_nonce(self, address: str) -> int:
        return int(await self._call(lambda s: s.get_account_nonce(address)))

    async def orders(self, asset: int) -> List[OrderView]:
        def _read(s: Any) -> List[OrderView]:
            result = s.query_map(self.variant.dex_pallet, "OrdersByAssetAndChunkKey", [asset])
            views = []
            for _chunk, orders in result:
                for raw in _plain(orders) or []:
                    views.append(parse_order(raw, asset))
            return views

        return await self._queries.get(("orders", asset), lambda: self._call(_read))

    async def all_orders(self) -> List[OrderView]:
        def _read(s: Any) -> List[OrderView]:
            result = s.query_map(self.variant.dex_pallet, "OrdersByAssetAndChunkKey")
            views = []
            for key, orders in result:
                key = _plain(key)
                asset = key[0] if isinstance(key, (list, tuple)) else key
                for raw in _plain(orders) or []:
                    views.append(parse_order(raw, _plain(asset)))
            return views

        return await self._queries.get(("orders", None), lambda: self._call(_read))

    async def best_price(self, asset: int) -> Dict[str, Optional[Decimal]]:
        def _read(s: Any) -> Dict[str, Optional[Decimal]]:
            raw = _plain(s.query(self.variant.dex_pallet, "BestPriceByAsset", [asset])) or {}
            return {
                side: None if raw.get(side) is None else signed_balance(raw.get(side), PRICE_PRECISION)
                for side in ("ask", "bid")
            }

        return await self._queries.get(("best_price", asset), lambda: self._call(_read))

    async def account_balances(self, address: str) -> Dict[int, Decimal]:
        def _read(s: Any) -> Dict[int, Decimal]:
            account = _plain(s.query("System", "Account", [address])) or {}
            return parse_balances(account.get("data"))

        return await self._queries.get(("balances", address), lambda: self._call(_read))

    async def subaccount(self, address: str) -> Optional[str]:
        def _read(s: Any) -> Optional[str]:
            value = _plain(
                s.query(self.variant.subaccounts_pallet, "Subaccount", [address, self.variant.subaccount_kind])
            )
            return None if value in (None, "") else str(value)

        return await self._queries.get(("subaccount", address), lambda: self._call(_read))

    async def asset_metadata(self) -> List[AssetInfo]:
        def _read(s: Any) -> List[AssetInfo]:
            raw = _plain(s.query("EqAssets", "Assets")) or []
            return [parse_asset(a) for a in raw]

        return await self._queries.get(("assets",), lambda: self._call(_read))

    async def rates(self) -> Dict[int, Decimal]:
        assets = await self.asset_metadata()

        def _read(s: Any) -> Dict[int, Decimal]:
            prices: Dict[int, Decimal] = {}
            for info in assets:
                if info.token == self.variant.stable_token:
                    prices[info.asset] = from_raw(STABLE_PRICE_RAW, PRICE_PRECISION)
                    continue
                point = _plain(s.query("Oracle", "PricePoints", [info.asset]))
                raw = point.get("price") if isinstance(point, dict) else None
                prices[info.asset] = signed_balance(raw, PRICE_PRECISION) if raw is not None else ZERO
            return prices

        return await self._queries.get(("rates",), lambda: self._call(_read))

    async def genesis_hash(self) -> str:
        return str(await self._call(lambda s: s.get_block_hash(0)))

    async def pending_extrinsics(self) -> List[Dict[str, Any]]:
        """Decode every extrinsic in the node's transaction pool."""

        def _read(s: Any) -> List[Dict[str, Any]]:
            response = s.rpc_request("author_pendingExtrinsics", [])
            decoded = []
            for data in response.get("result") or []:
                value = _plain(s.decode_scale("Extrinsic", data))
                if not isinstance(value, dict):
                    continue
                signer = value.get("address")
                if isinstance(signer, str) and signer.startswith("0x"):
                    signer = ss58_encode(signer, self.variant.ss58_format)
                call = value.get("call") or {}
                decoded.append({
                    "signer": signer,
                    "nonce": value.get("nonce"),
                    "tip": value.get("tip"),
                    "section": call.get("call_module"),
                    "method": call.get("call_function"),
                    "args": call.get("call_args"),
                })
            return decoded

        extrinsics = await self._call(_read)
        log_event(log, "pending_extrinsics_read", level=DEBUG, count=len(extrinsics))
        return extrinsics

    async def close(self) -> None:
        await self._watcher.close()
        if self._client is not None:
            client = self._client
            self._client = None
            close = getattr(client, "close", None)
            if close is not None:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(self._executor, close)
        # prefer graceful shutdown to avoid leaking threads between restarts
        self._executor.shutdown(wait=True)
