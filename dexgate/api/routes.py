"""
HTTP/JSON surface of the gateway (aiohttp).

Handlers validate the request, call into the coordinator or a projection and
render the result. Errors from the gateway taxonomy become
`{success: false, pending: false, payload: {error}}` bodies; validation errors
use HTTP 400 and ledger-side errors keep 200 so clients branch on `success`.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, TYPE_CHECKING

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from dexgate.api.schemas import (
    LimitOrderCancel,
    LimitOrderCreate,
    LimitOrdersCancel,
    LimitOrderUpdate,
    MarketOrderCreate,
    Paging,
    Transfer,
    Validator,
)
from dexgate.core.errors import GatewayError, InvalidRequest
from dexgate.core.json_utils import dumps, loads
from dexgate.core.results import error_response
from dexgate.infra.logging_cfg import WARNING, log_event

if TYPE_CHECKING:
    from dexgate.execution.nonce import AccountRegistry
    from dexgate.execution.operation_tracker import OperationTracker
    from dexgate.execution.order_coordinator import OrderCoordinator
    from dexgate.infra.signer import Keyring
    from dexgate.infra.trade_history import TradeHistoryClient
    from dexgate.market_data.projections import MarketData
    from dexgate.monitoring.metrics_rich import RichMetrics

log = logging.getLogger("dexgate")


def json_response(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=dumps)


def _route_name(request: web.Request) -> str:
    resource = request.match_info.route.resource
    return resource.canonical if resource is not None else "unmatched"


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render gateway errors in the response shape clients poll against."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except GatewayError as exc:
        log_event(
            log,
            "request_rejected",
            level=WARNING,
            method=request.method,
            path=request.path,
            code=exc.code,
            error=exc.message,
        )
        return json_response(error_response(exc), status=exc.http_status)
    except Exception as exc:
        log.exception(dumps({"event": "request_failed", "method": request.method, "path": request.path}))
        body = {
            "success": False,
            "pending": False,
            "payload": {"error": {"code": "internal_error", "message": str(exc) or type(exc).__name__}},
        }
        return json_response(body, status=500)


def _make_metrics_middleware(metrics: "RichMetrics"):
    """aiohttp middleware that counts requests per route and status."""

    @web.middleware
    async def metrics_middleware(request: web.Request, handler):
        status = 500
        try:
            response = await handler(request)
            status = response.status
            return response
        except web.HTTPException as exc:
            status = exc.status
            raise
        finally:
            metrics.http_requests.labels(
                method=request.method, route=_route_name(request), status=str(status)
            ).inc()

    return metrics_middleware


class GatewayAPI:
    """Thin aiohttp wrapper around the coordinator and projections."""

    def __init__(
        self,
        coordinator: "OrderCoordinator",
        market_data: "MarketData",
        tracker: "OperationTracker",
        registry: "AccountRegistry",
        keyring: "Keyring",
        tokens: Iterable[str],
        trade_history: Optional["TradeHistoryClient"] = None,
        metrics: Optional["RichMetrics"] = None,
        host: str = "0.0.0.0",
        port: int = 3000,
    ) -> None:
        self.coordinator = coordinator
        self.market_data = market_data
        self.tracker = tracker
        self.registry = registry
        self.keyring = keyring
        self.trade_history = trade_history
        self.metrics = metrics
        self.validator = Validator(tokens)
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    # -- lifecycle -----------------------------------------------------------

    def build_app(self) -> web.Application:
        middlewares: list = []
        if self.metrics is not None:
            middlewares.append(_make_metrics_middleware(self.metrics))
        middlewares.append(error_middleware)
        app = web.Application(middlewares=middlewares)
        self._register_routes(app)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info(dumps({"event": "http_listening", "host": self.host, "port": self.port}))

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # -- routes --------------------------------------------------------------

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/metrics", self._metrics)
        app.router.add_get("/chainId", self._chain_id)

        app.router.add_get("/orders/{token}", self._orders)
        app.router.add_get("/orders/{token}/{address}", self._orders_by_address)
        app.router.add_get("/orderBook/{token}", self._order_book)
        app.router.add_get("/bestPrices/{token}", self._best_prices)
        app.router.add_get("/balances/{token}/{address}", self._balances)
        app.router.add_get("/margin/{address}", self._margin)
        app.router.add_get("/lockedBalance/{address}", self._locked_balance)
        app.router.add_get("/rates", self._rates)
        app.router.add_get("/token/{token}", self._token)
        app.router.add_get("/trades/{token}", self._trades)
        app.router.add_get("/tradesByAddress/{token}/{address}", self._trades_by_address)

        app.router.add_post("/deposit", self._deposit)
        app.router.add_post("/withdraw", self._withdraw)
        app.router.add_post("/sudo/deposit", self._sudo_deposit)

        app.router.add_post("/limitOrder", self._create_limit_order)
        app.router.add_put("/limitOrder", self._update_limit_order)
        app.router.add_delete("/limitOrder", self._cancel_limit_order)
        app.router.add_delete("/limitOrders", self._cancel_limit_orders)
        app.router.add_get("/limitOrder/{operationId}", self._get_operation)
        app.router.add_post("/marketOrder", self._create_market_order)
        app.router.add_get("/marketOrder/{operationId}", self._get_operation)
        app.router.add_get("/pendingExtrinsics/{address}", self._pending_extrinsics)

    async def _json(self, request: web.Request) -> Any:
        try:
            return loads(await request.read())
        except ValueError:
            raise InvalidRequest("Invalid JSON body") from None

    # -- service -------------------------------------------------------------

    async def _health(self, request: web.Request) -> web.Response:
        return json_response({
            "status": "ok",
            "signers": len(self.keyring),
            "nonces": len(self.registry.addresses()),
            "operations": self.tracker.stats(),
        })

    async def _metrics(self, request: web.Request) -> web.Response:
        if self.metrics is None:
            raise web.HTTPNotFound(text="metrics disabled")
        return web.Response(body=self.metrics.render(), headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _chain_id(self, request: web.Request) -> web.Response:
        chain_id = self.trade_history.chain_id if self.trade_history is not None else None
        return json_response({"success": chain_id is not None, "chainId": chain_id})

    # -- projections ---------------------------------------------------------

    async def _orders(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        return json_response(await self.market_data.orders(token))

    async def _orders_by_address(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        address = self.validator.address(request.match_info["address"])
        return json_response(await self.market_data.orders_by_address(token, address))

    async def _order_book(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        return json_response(await self.market_data.depth(token, request.query.get("depth")))

    async def _best_prices(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        return json_response(await self.market_data.best_price(token))

    async def _balances(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        address = self.validator.address(request.match_info["address"])
        return json_response(await self.market_data.balances(token, address))

    async def _margin(self, request: web.Request) -> web.Response:
        address = self.validator.address(request.match_info["address"])
        return json_response(await self.market_data.margin(address))

    async def _locked_balance(self, request: web.Request) -> web.Response:
        address = self.validator.address(request.match_info["address"])
        return json_response(await self.market_data.collateral(address))

    async def _rates(self, request: web.Request) -> web.Response:
        return json_response(await self.market_data.rates())

    async def _token(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        return json_response(await self.market_data.token_info(token))

    async def _trades(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        paging = Paging.from_query(request.query, self.validator)
        return json_response(
            await self.market_data.trades(token, page=paging.page, page_size=paging.page_size)
        )

    async def _trades_by_address(self, request: web.Request) -> web.Response:
        token = self.validator.token(request.match_info["token"])
        address = self.validator.address(request.match_info["address"])
        paging = Paging.from_query(request.query, self.validator)
        return json_response(
            await self.market_data.trades(token, address, page=paging.page, page_size=paging.page_size)
        )

    # -- transfers -----------------------------------------------------------

    async def _deposit(self, request: web.Request) -> web.Response:
        req = Transfer.from_body(await self._json(request), self.validator)
        result = await self.coordinator.deposit(req.token, req.amount, req.address)
        return json_response(result.to_response())

    async def _withdraw(self, request: web.Request) -> web.Response:
        req = Transfer.from_body(await self._json(request), self.validator)
        result = await self.coordinator.withdraw(req.token, req.amount, req.address)
        return json_response(result.to_response())

    async def _sudo_deposit(self, request: web.Request) -> web.Response:
        req = Transfer.from_body(await self._json(request), self.validator, require_to=True)
        result = await self.coordinator.sudo_deposit(req.token, req.amount, req.address, req.to)
        return json_response(result.to_response())

    # -- orders --------------------------------------------------------------

    async def _create_limit_order(self, request: web.Request) -> web.Response:
        req = LimitOrderCreate.from_body(await self._json(request), self.validator)
        result = self.coordinator.create_limit_order(
            req.token, req.amount, req.limit_price, req.direction, req.address, use_pool=req.use_pool
        )
        return json_response(result.to_response())

    async def _update_limit_order(self, request: web.Request) -> web.Response:
        req = LimitOrderUpdate.from_body(await self._json(request), self.validator)
        result = await self.coordinator.update_limit_order(
            req.operation_id,
            req.token,
            req.amount_new,
            req.limit_price,
            req.limit_price_new,
            req.direction,
            req.address,
            tip=req.tip,
            nonce=req.nonce,
        )
        return json_response(result.to_response())

    async def _cancel_limit_order(self, request: web.Request) -> web.Response:
        req = LimitOrderCancel.from_body(await self._json(request), self.validator)
        result = await self.coordinator.cancel_limit_order(
            req.token, req.price, req.order_id, req.address, use_pool=req.use_pool
        )
        return json_response(result.to_response())

    async def _cancel_limit_orders(self, request: web.Request) -> web.Response:
        req = LimitOrdersCancel.from_body(await self._json(request), self.validator)
        result = self.coordinator.cancel_limit_orders(req.orders, req.address, use_pool=req.use_pool)
        return json_response(result.to_response())

    async def _create_market_order(self, request: web.Request) -> web.Response:
        req = MarketOrderCreate.from_body(await self._json(request), self.validator)
        result = self.coordinator.create_market_order(req.token, req.amount, req.direction, req.address)
        return json_response(result.to_response())

    async def _get_operation(self, request: web.Request) -> web.Response:
        return json_response(self.coordinator.get_operation(request.match_info["operationId"]))

    async def _pending_extrinsics(self, request: web.Request) -> web.Response:
        address = self.validator.address(request.match_info["address"])
        return json_response(await self.coordinator.pending_extrinsics(address))
