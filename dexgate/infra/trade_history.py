"""
Minimal async HTTP client for the trade-history aggregation backend.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from dexgate.core.errors import UpstreamUnavailable
from dexgate.infra.logging_cfg import INFO, WARNING, log_event

log = logging.getLogger("dexgate")


class TradeHistoryClient:
    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.chain_id: Optional[int] = None
        # If a shared client is passed in, we won't close it in close(); otherwise we own the client.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def resolve_chain_id(self, genesis_hash: str) -> int:
        """Look up the backend's chain id for a genesis hash and remember it."""
        data = await self._get("/chains/byHash", {"hash": genesis_hash})
        if not isinstance(data, dict) or not isinstance(data.get("chainId"), int) or not isinstance(
            data.get("genesisHash"), str
        ):
            raise UpstreamUnavailable(f"Unexpected chain info response: {data!r}")
        self.chain_id = data["chainId"]
        log_event(log, "chain_id_resolved", level=INFO, chainId=self.chain_id, genesis=genesis_hash)
        return self.chain_id

    async def trades(
        self,
        currency: str,
        acc: Optional[str] = None,
        page: int = 0,
        page_size: int = 100,
    ) -> Any:
        """One page of DEX exchanges for a currency, optionally for one account."""
        if self.chain_id is None:
            raise UpstreamUnavailable("Chain id is not initialized")
        params: dict[str, Any] = {
            "chainId": self.chain_id,
            "currency": currency,
            "page": page,
            "pageSize": page_size,
        }
        if acc:
            params["acc"] = acc
        return await self._get("/dex/exchanges", params)

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        try:
            resp = await self.client.get(path, params=params)
        except httpx.HTTPError as exc:
            log_event(log, "trade_history_error", level=WARNING, path=path, error=str(exc))
            raise UpstreamUnavailable(str(exc) or type(exc).__name__) from exc
        if resp.status_code // 100 != 2:
            log_event(log, "trade_history_error", level=WARNING, path=path, status=resp.status_code)
            raise UpstreamUnavailable(f"Error {resp.status_code}")
        return resp.json()
