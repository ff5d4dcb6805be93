# === MODULE PURPOSE ===
# FastAPI application for the trading simulator.

# === DEPENDENCIES ===
# - service: TradingService owning engine state and persistence
# - ticker: MarketTicker driving periodic price updates

from __future__ import annotations

import logging

from fastapi import FastAPI

from src.common.config import Config, get_web_config
from src.market.ticker import MarketTicker
from src.trading.repository import create_state_store_from_config
from src.trading.service import TradingService
from src.web.routes import create_router

logger = logging.getLogger(__name__)


def create_app(
    service: TradingService | None = None,
    config: Config | None = None,
    start_ticker: bool = True,
) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        service: Trading service. Built from `config` if not provided.
        config: Configuration used when building the service.
        start_ticker: Start periodic market updates on startup.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Stock Trading Simulator",
        description="Simulated market with orders, positions and P&L",
        version="1.0.0",
    )

    if service is None:
        config = config or Config.defaults()
        service = TradingService(config, store=create_state_store_from_config(config))

    ticker = MarketTicker(service)

    app.state.trading_service = service
    app.state.market_ticker = ticker

    app.include_router(create_router())

    @app.on_event("startup")
    async def startup():
        await service.store.connect()
        await service.load()
        if start_ticker:
            ticker.start()
        logger.info("Trading API started")

    @app.on_event("shutdown")
    async def shutdown():
        await ticker.stop()
        await service.close()
        logger.info("Trading API stopped")

    return app


def run_server(config: Config | None = None) -> None:
    """
    Run the web server (blocking).

    Args:
        config: Configuration; host/port come from get_web_config().
    """
    import uvicorn

    config = config or Config.defaults()
    web = get_web_config(config)
    app = create_app(config=config)
    uvicorn.run(app, host=web["host"], port=web["port"])
