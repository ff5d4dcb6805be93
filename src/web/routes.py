# === MODULE PURPOSE ===
# REST API for the trading simulator.

# === ENDPOINTS ===
# GET    /api/status                       - Health check
# GET    /api/state                        - Full read-only snapshot
# GET    /api/stocks                       - Listed stocks
# POST   /api/stocks                       - Create stock
# DELETE /api/stocks/{id}                  - Delete stock (cascades)
# POST   /api/stocks/select                - Select stock
# POST   /api/orders                       - Create order
# POST   /api/orders/{id}/cancel           - Cancel order
# PATCH  /api/holdings/{id}                - Edit stop-loss / take-profit
# POST   /api/holdings/{id}/close          - Close position
# POST   /api/account/reset                - Reset account
# POST   /api/account/margin               - Set leverage
# GET    /api/portfolio                    - Portfolio summary
# GET    /api/reports/daily                - Daily cash-flow summary
# GET    /api/reports/stocks               - Per-stock statistics
# GET    /api/settings                     - Market settings
# PUT    /api/settings                     - Update market settings
# POST   /api/market/update                - Tick the market now
# GET    /api/notifications                - Notification feed
# POST   /api/notifications/{id}/read      - Mark notification read
# DELETE /api/notifications                - Clear notifications

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from src.common.errors import (
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from src.market.ticker import MarketTicker
from src.trading.engine import CommandResult
from src.trading.service import TradingService

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type, int] = {
    ValidationError: 400,
    InsufficientBalanceError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
}


# ==================== Request Models ====================


class CreateStockRequest(BaseModel):
    """Request body for listing a new stock."""

    name: str
    initial_value: float
    total_shares: int
    price_evolution: float


class SelectStockRequest(BaseModel):
    stock_id: str | None = None


class CreateOrderRequest(BaseModel):
    """Request body for placing an order."""

    stock_id: str
    order_type: Literal["buy", "sell", "stoploss", "take_profit"]
    quantity: int | None = None
    execution_type: Literal["market", "limit"] = "market"
    limit_price: float | None = None
    stop_price: float | None = None  # Stop-loss level
    take_profit_price: float | None = None
    holding_id: str | None = None


class EditHoldingRequest(BaseModel):
    stop_loss_price: float | None = None
    take_profit_price: float | None = None


class MarginRequest(BaseModel):
    margin: float = Field(..., description="Leverage multiplier for new orders")


class SettingsRequest(BaseModel):
    """Partial settings update; omitted fields keep their value."""

    update_interval: int | None = None
    auto_update: bool | None = None
    volatility: float | None = None


def _respond(result: CommandResult) -> dict[str, Any]:
    """Return a successful result, or raise the HTTP error matching its failure."""
    if result.success:
        return result.to_dict()
    status = ERROR_STATUS.get(type(result.error), 400)
    raise HTTPException(status_code=status, detail=result.message)


def create_router() -> APIRouter:
    """Create API router with all endpoints."""
    router = APIRouter(prefix="/api")

    def get_service(request: Request) -> TradingService:
        return request.app.state.trading_service

    def get_ticker(request: Request) -> MarketTicker:
        return request.app.state.market_ticker

    @router.get("/status")
    async def get_status(request: Request) -> dict:
        """Health check."""
        ticker = get_ticker(request)
        return {
            "status": "ok",
            "ticker_running": ticker.is_running,
            "ticks": ticker.tick_count,
        }

    @router.get("/state")
    async def get_state(request: Request) -> dict:
        return await get_service(request).snapshot()

    # ==================== Stocks ====================

    @router.get("/stocks")
    async def list_stocks(request: Request) -> list[dict]:
        snapshot = await get_service(request).snapshot()
        return snapshot["stocks"]

    @router.post("/stocks")
    async def create_stock(request: Request, body: CreateStockRequest) -> dict:
        result = await get_service(request).create_stock(
            body.name, body.initial_value, body.total_shares, body.price_evolution
        )
        return _respond(result)

    @router.post("/stocks/select")
    async def select_stock(request: Request, body: SelectStockRequest) -> dict:
        return _respond(await get_service(request).select_stock(body.stock_id))

    @router.delete("/stocks/{stock_id}")
    async def delete_stock(request: Request, stock_id: str) -> dict:
        return _respond(await get_service(request).delete_stock(stock_id))

    # ==================== Orders & Holdings ====================

    @router.post("/orders")
    async def create_order(request: Request, body: CreateOrderRequest) -> dict:
        result = await get_service(request).create_order(
            body.stock_id,
            body.order_type,
            body.quantity,
            execution_type=body.execution_type,
            limit_price=body.limit_price,
            stop_price=body.stop_price,
            take_profit_price=body.take_profit_price,
            holding_id=body.holding_id,
        )
        return _respond(result)

    @router.post("/orders/{order_id}/cancel")
    async def cancel_order(request: Request, order_id: str) -> dict:
        return _respond(await get_service(request).cancel_order(order_id))

    @router.patch("/holdings/{holding_id}")
    async def edit_holding(request: Request, holding_id: str, body: EditHoldingRequest) -> dict:
        result = await get_service(request).edit_holding(
            holding_id, body.stop_loss_price, body.take_profit_price
        )
        return _respond(result)

    @router.post("/holdings/{holding_id}/close")
    async def close_holding(request: Request, holding_id: str) -> dict:
        return _respond(await get_service(request).close_holding(holding_id))

    # ==================== Account ====================

    @router.post("/account/reset")
    async def reset_account(request: Request) -> dict:
        return _respond(await get_service(request).reset_account())

    @router.post("/account/margin")
    async def set_margin(request: Request, body: MarginRequest) -> dict:
        margin: float | int = int(body.margin) if body.margin.is_integer() else body.margin
        return _respond(await get_service(request).set_margin(margin))

    @router.get("/portfolio")
    async def get_portfolio(request: Request) -> dict:
        return await get_service(request).portfolio()

    @router.get("/reports/daily")
    async def get_daily_summary(request: Request) -> list[dict]:
        return await get_service(request).daily_summary()

    @router.get("/reports/stocks")
    async def get_stock_statistics(request: Request) -> list[dict]:
        return await get_service(request).stock_statistics()

    # ==================== Market ====================

    @router.get("/settings")
    async def get_settings(request: Request) -> dict:
        settings = get_service(request).settings
        return {
            **settings.to_dict(),
            "speedLabel": settings.speed_label,
            "volatilityLabel": settings.volatility_label,
        }

    @router.put("/settings")
    async def update_settings(request: Request, body: SettingsRequest) -> dict:
        try:
            settings = await get_service(request).update_settings(
                update_interval=body.update_interval,
                auto_update=body.auto_update,
                volatility=body.volatility,
            )
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return settings.to_dict()

    @router.post("/market/update")
    async def update_market(request: Request) -> dict:
        """Tick the market immediately."""
        return _respond(await get_ticker(request).trigger_now())

    # ==================== Notifications ====================

    @router.get("/notifications")
    async def list_notifications(request: Request) -> dict:
        snapshot = await get_service(request).snapshot()
        return {
            "notifications": snapshot["notifications"],
            "unreadCount": snapshot["unreadCount"],
        }

    @router.post("/notifications/{notification_id}/read")
    async def mark_notification_read(request: Request, notification_id: str) -> dict:
        return _respond(await get_service(request).mark_notification_read(notification_id))

    @router.delete("/notifications")
    async def clear_notifications(request: Request) -> dict:
        return _respond(await get_service(request).clear_notifications())

    return router
