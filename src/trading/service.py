# === MODULE PURPOSE ===
# Async facade over the trading engine.
# Serializes every command and tick behind one lock and persists the
# state slices each command changed.

# === KEY CONCEPTS ===
# - Single writer: commands, ticks and saves never interleave
# - Slice persistence: only dirty slices are written after a command
# - Market settings live beside the engine and persist as their own slice

import asyncio
import logging
from typing import Any, Callable

from src.common.config import Config
from src.common.notifications import NotificationCallback
from src.market.settings import MarketSettings
from src.trading import reporting
from src.trading.engine import CommandResult, TradingEngine
from src.trading.repository import MARKET_SETTINGS_SLICE, MemoryStateStore, StateStore

logger = logging.getLogger(__name__)


class TradingService:
    """
    Owns one TradingEngine and its persistence.

    Usage:
        service = TradingService(config, store=JsonFileStateStore("data/state.json"))
        await service.load()

        result = await service.create_order(stock_id, "buy", 10)
        await service.update_market()
    """

    def __init__(
        self,
        config: Config | None = None,
        store: StateStore | None = None,
        engine: TradingEngine | None = None,
    ):
        self._config = config or Config.defaults()
        self._store = store or MemoryStateStore()
        self.engine = engine or TradingEngine(self._config)
        self.settings = MarketSettings.from_config(self._config)
        self._lock = asyncio.Lock()

    @property
    def store(self) -> StateStore:
        return self._store

    # ==================== Lifecycle ====================

    async def load(self) -> None:
        """Restore persisted state, or seed and persist defaults when none exists."""
        async with self._lock:
            state = await self._store.load_state()

            if state.get("stocks") is None and state.get("user") is None:
                logger.info("No persisted state, seeding defaults")
                self.engine.seed_defaults()
            else:
                self.engine.load_state(state)

            settings = state.get(MARKET_SETTINGS_SLICE)
            if settings is not None:
                self.settings = MarketSettings.from_dict(settings)

            await self._store.save_state(self.engine.export_state())
            await self._store.save_slice(MARKET_SETTINGS_SLICE, self.settings.to_dict())
            self.engine.drain_dirty()

    async def close(self) -> None:
        await self._store.close()

    def subscribe(self, callback: NotificationCallback) -> None:
        """Receive every notification the engine emits."""
        self.engine.notifications.subscribe(callback)

    def unsubscribe(self, callback: NotificationCallback) -> None:
        self.engine.notifications.unsubscribe(callback)

    # ==================== Commands ====================

    async def _execute(self, command: Callable[..., CommandResult], *args: Any, **kwargs: Any) -> CommandResult:
        async with self._lock:
            result = command(*args, **kwargs)
            await self._persist()
            return result

    async def _persist(self) -> None:
        dirty = self.engine.drain_dirty()
        if not dirty:
            return
        state = self.engine.export_state()
        for name in sorted(dirty):
            await self._store.save_slice(name, state[name])
        logger.debug(f"Persisted slices: {', '.join(sorted(dirty))}")

    async def create_stock(
        self,
        name: str,
        initial_value: float,
        total_shares: int,
        price_evolution: float,
    ) -> CommandResult:
        return await self._execute(
            self.engine.create_stock, name, initial_value, total_shares, price_evolution
        )

    async def delete_stock(self, stock_id: str) -> CommandResult:
        return await self._execute(self.engine.delete_stock, stock_id)

    async def select_stock(self, stock_id: str | None) -> CommandResult:
        return await self._execute(self.engine.select_stock, stock_id)

    async def create_order(self, stock_id: str, order_type: str, quantity: Any, **kwargs: Any) -> CommandResult:
        return await self._execute(self.engine.create_order, stock_id, order_type, quantity, **kwargs)

    async def cancel_order(self, order_id: str) -> CommandResult:
        return await self._execute(self.engine.cancel_order, order_id)

    async def edit_holding(
        self,
        holding_id: str,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
    ) -> CommandResult:
        return await self._execute(
            self.engine.edit_holding, holding_id, stop_loss_price, take_profit_price
        )

    async def close_holding(self, holding_id: str) -> CommandResult:
        return await self._execute(self.engine.close_holding, holding_id)

    async def set_margin(self, leverage: Any) -> CommandResult:
        return await self._execute(self.engine.set_margin, leverage)

    async def reset_account(self) -> CommandResult:
        return await self._execute(self.engine.reset_account)

    async def mark_notification_read(self, notification_id: str) -> CommandResult:
        return await self._execute(self.engine.mark_notification_read, notification_id)

    async def clear_notifications(self) -> CommandResult:
        return await self._execute(self.engine.clear_notifications)

    async def update_market(self) -> CommandResult:
        """One tick at the current volatility setting."""
        return await self._execute(self.engine.update_market, self.settings.volatility_fraction)

    # ==================== Settings ====================

    async def update_settings(
        self,
        update_interval: int | None = None,
        auto_update: bool | None = None,
        volatility: float | None = None,
    ) -> MarketSettings:
        """
        Change market settings. None leaves a field unchanged.

        Raises:
            ValidationError: If the result is out of range (settings stay unchanged).
        """
        async with self._lock:
            candidate = MarketSettings(
                update_interval=self.settings.update_interval if update_interval is None else update_interval,
                auto_update=self.settings.auto_update if auto_update is None else auto_update,
                volatility=self.settings.volatility if volatility is None else volatility,
            )
            candidate.validate()
            self.settings = candidate
            await self._store.save_slice(MARKET_SETTINGS_SLICE, candidate.to_dict())
            logger.info(
                f"Market settings: every {candidate.update_interval}s "
                f"({'auto' if candidate.auto_update else 'manual'}), volatility {candidate.volatility}%"
            )
            return candidate

    # ==================== Queries ====================

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            view = self.engine.snapshot()
            view["settings"] = self.settings.to_dict()
            return view

    async def portfolio(self) -> dict[str, Any]:
        async with self._lock:
            engine = self.engine
            return reporting.portfolio_summary(
                engine.balance, engine.positions.holdings, engine.market.stocks
            )

    async def daily_summary(self) -> list[dict[str, Any]]:
        async with self._lock:
            return reporting.daily_summary(self.engine.transactions.transactions)

    async def stock_statistics(self) -> list[dict[str, Any]]:
        async with self._lock:
            engine = self.engine
            return reporting.stock_statistics(
                engine.transactions.transactions, engine.positions.holdings, engine.market.stocks
            )
