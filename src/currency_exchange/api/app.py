"""
FastAPI application exposing the exchange core over HTTP and WebSocket.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.config import ServiceConfig
from ..core.errors import (
    ExchangeError,
    InsufficientBalanceError,
    PersistenceError,
    SettlementFailure,
    ValidationError,
)
from ..core.service import ExchangeService
from .models import (
    AccountSummary,
    Currency,
    DepositRequest,
    ErrorResponse,
    ExchangeRequest,
    ExchangeResult,
    Payment,
    PaymentResult,
    PlatformStats,
    PriceSnapshot,
    QuoteRequest,
    QuoteResponse,
    RateResponse,
    Transaction,
    WithdrawRequest,
)

logger = logging.getLogger(__name__)

STALE_PRICES_MS = 60 * 1000


class PriceFeedHealth(BaseModel):
    """Health of the external price feed."""
    status: str  # "healthy", "degraded", "stale", "unavailable"
    source: Optional[str] = None  # "live" or "synthetic"
    last_update: Optional[int] = None  # Unix timestamp ms
    circuit_breaker: Optional[str] = None  # "closed", "open", "half_open"


class HealthResponse(BaseModel):
    """Overall health response."""
    status: str  # "healthy", "degraded", "unhealthy"
    price_feed: PriceFeedHealth
    pending_settlements: int


def get_service(request: Request) -> ExchangeService:
    service: Optional[ExchangeService] = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized yet.")
    return service


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity verified upstream by the authentication layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()


def _error(status_code: int, reason: str, transaction_id: Optional[int] = None) -> JSONResponse:
    body = ErrorResponse(error=reason, transaction_id=transaction_id)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def on_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, exc.reason)

    @app.exception_handler(InsufficientBalanceError)
    async def on_insufficient_balance(request: Request, exc: InsufficientBalanceError) -> JSONResponse:
        return _error(400, exc.reason)

    @app.exception_handler(SettlementFailure)
    async def on_settlement_failure(request: Request, exc: SettlementFailure) -> JSONResponse:
        return _error(409, exc.reason, exc.record_id)

    @app.exception_handler(PersistenceError)
    async def on_persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence error on %s: %s", request.url.path, exc.reason)
        return _error(500, "Internal error")

    @app.exception_handler(ExchangeError)
    async def on_exchange_error(request: Request, exc: ExchangeError) -> JSONResponse:
        logger.error("Unhandled exchange error on %s: %s", request.url.path, exc.reason)
        return _error(500, "Internal error")


def create_app(
    config: Optional[ServiceConfig] = None, service: Optional[ExchangeService] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Config used to build a service when none is given
        service: Pre-built service, mainly for tests

    Returns:
        The FastAPI app; the service is started and stopped by its lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service or ExchangeService(config or ServiceConfig.from_env())
        await app.state.service.start()
        yield
        await app.state.service.stop()
        app.state.service = None

    app = FastAPI(
        title="Currency Exchange Service",
        description="Currency conversion with fee, balance settlement and a live price feed",
        version="1.0.0",
        lifespan=lifespan,
    )
    _register_error_handlers(app)

    @app.get("/prices", summary="Current price table")
    async def get_prices(svc: ExchangeService = Depends(get_service)) -> Dict[str, Decimal]:
        return await svc.get_prices()

    @app.get("/rates/{from_currency}/{to_currency}", response_model=RateResponse)
    async def get_rate(
        from_currency: Currency, to_currency: Currency, svc: ExchangeService = Depends(get_service)
    ) -> RateResponse:
        rate, source = await svc.get_rate(from_currency, to_currency)
        return RateResponse(
            from_currency=from_currency, to_currency=to_currency, rate=rate, source=source.value
        )

    @app.get("/orderbook/{symbol}", response_model=Dict[str, Any], summary="Top of the venue order book")
    async def get_order_book(
        symbol: str,
        limit: int = Query(default=10, ge=1, le=200),
        svc: ExchangeService = Depends(get_service),
    ) -> Dict[str, Any] | JSONResponse:
        book = await svc.get_order_book(symbol, limit=limit)
        if book is None:
            return _error(404, f"No order book for {symbol.upper()}")
        return book

    @app.post("/quote", response_model=QuoteResponse, summary="Preview a conversion")
    async def quote(body: QuoteRequest, svc: ExchangeService = Depends(get_service)) -> QuoteResponse:
        conversion, source = await svc.orchestrator.quote(
            body.from_currency, body.to_currency, body.from_amount
        )
        return QuoteResponse(
            from_currency=conversion.from_currency,
            to_currency=conversion.to_currency,
            from_amount=conversion.amount,
            rate=conversion.rate,
            rate_source=source.value,
            fee=conversion.fee,
            net_sent=conversion.net_sent,
            received=conversion.received,
        )

    @app.post("/exchange", response_model=ExchangeResult)
    async def exchange(
        body: ExchangeRequest,
        user_id: str = Depends(get_current_user),
        svc: ExchangeService = Depends(get_service),
    ) -> ExchangeResult:
        return await svc.orchestrator.exchange(
            user_id, body.from_currency, body.to_currency, body.from_amount
        )

    @app.post("/deposit", response_model=PaymentResult)
    async def deposit(
        body: DepositRequest,
        user_id: str = Depends(get_current_user),
        svc: ExchangeService = Depends(get_service),
    ) -> PaymentResult:
        return await svc.orchestrator.deposit(user_id, body.currency, body.amount, body.method)

    @app.post("/withdraw", response_model=PaymentResult)
    async def withdraw(
        body: WithdrawRequest,
        user_id: str = Depends(get_current_user),
        svc: ExchangeService = Depends(get_service),
    ) -> PaymentResult:
        return await svc.orchestrator.withdraw(
            user_id, body.currency, body.amount, body.method, body.wallet_address
        )

    @app.get("/balances", response_model=AccountSummary)
    async def get_balances(
        user_id: str = Depends(get_current_user), svc: ExchangeService = Depends(get_service)
    ) -> AccountSummary:
        return AccountSummary(user_id=user_id, balances=svc.ledger.get_balances(user_id))

    @app.get("/transactions", response_model=List[Transaction])
    async def list_transactions(
        limit: int = Query(default=50, ge=1, le=500),
        user_id: str = Depends(get_current_user),
        svc: ExchangeService = Depends(get_service),
    ) -> List[Transaction]:
        return svc.store.list_transactions(user_id=user_id, limit=limit)

    @app.get("/payments", response_model=List[Payment])
    async def list_payments(
        user_id: str = Depends(get_current_user), svc: ExchangeService = Depends(get_service)
    ) -> List[Payment]:
        return svc.list_payments(user_id)

    @app.get("/payments/{payment_id}", response_model=Payment)
    async def get_payment(
        payment_id: int,
        user_id: str = Depends(get_current_user),
        svc: ExchangeService = Depends(get_service),
    ) -> Payment | JSONResponse:
        try:
            payment = svc.store.get_payment(payment_id)
        except PersistenceError:
            return _error(404, "Payment not found")
        if payment.user_id != user_id:
            return _error(404, "Payment not found")
        return payment

    @app.get("/users", response_model=List[AccountSummary], summary="Accounts with balances")
    async def list_users(svc: ExchangeService = Depends(get_service)) -> List[AccountSummary]:
        return svc.list_accounts()

    @app.get("/stats", response_model=PlatformStats)
    async def get_stats(svc: ExchangeService = Depends(get_service)) -> PlatformStats:
        return svc.get_stats()

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint.

        Price feed status:
        - healthy: live prices updated within the last minute
        - degraded: serving synthetic prices or the circuit breaker is open
        - stale: last update older than a minute
        - unavailable: no prices fetched yet
        """
        svc: Optional[ExchangeService] = getattr(request.app.state, "service", None)
        if svc is None:
            return HealthResponse(
                status="unhealthy",
                price_feed=PriceFeedHealth(status="unavailable"),
                pending_settlements=0,
            )

        breaker = getattr(svc.price_source, "circuit_breaker", None)
        cb_status = breaker.state.value if breaker is not None else None
        snapshot = svc.prices.snapshot

        if snapshot is None:
            feed = PriceFeedHealth(status="unavailable", circuit_breaker=cb_status)
        else:
            age = int(time.time() * 1000) - snapshot.timestamp
            if age >= STALE_PRICES_MS:
                feed_status = "stale"
            elif snapshot.source != "live" or cb_status == "open":
                feed_status = "degraded"
            else:
                feed_status = "healthy"
            feed = PriceFeedHealth(
                status=feed_status,
                source=snapshot.source,
                last_update=snapshot.timestamp,
                circuit_breaker=cb_status,
            )

        # Synthetic prices keep the service usable, so the feed never makes it unhealthy
        overall = "healthy" if feed.status == "healthy" else "degraded"
        return HealthResponse(
            status=overall,
            price_feed=feed,
            pending_settlements=svc.orchestrator.pending_settlements,
        )

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        """
        WebSocket endpoint that streams price and platform updates.
        Sends the current state on connect, then every changed price snapshot.
        """
        svc: Optional[ExchangeService] = getattr(websocket.app.state, "service", None)
        if svc is None:
            await websocket.close(code=1013)
            return

        await websocket.accept()
        queue: asyncio.Queue[PriceSnapshot | None] = asyncio.Queue()
        unsubscribe = svc.subscribe_prices(queue.put_nowait)

        def update_message(prices: Dict[str, Decimal]) -> dict:
            return {
                "type": "update",
                "prices": {symbol: str(price) for symbol, price in prices.items()},
                "stats": svc.get_stats().model_dump(mode="json"),
            }

        async def watch_disconnect() -> None:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    queue.put_nowait(None)
                    return

        watcher = asyncio.create_task(watch_disconnect())
        try:
            await websocket.send_json(update_message(await svc.get_prices()))
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    logger.info("WebSocket client disconnected")
                    break
                await websocket.send_json(update_message(snapshot.prices))
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")
        except Exception as e:
            logger.error("WebSocket error: %s", e)
        finally:
            unsubscribe()
            watcher.cancel()
            try:
                await websocket.close()
            except RuntimeError:
                pass  # already closed by the client

    return app


app = create_app()
