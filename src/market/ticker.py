# === MODULE PURPOSE ===
# Background driver that ticks the market on a fixed interval.

# === KEY CONCEPTS ===
# - Reads settings on every cycle, so interval/auto-update changes apply
#   from the next sleep
# - A failing tick is logged and the loop keeps running

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.trading.engine import CommandResult
    from src.trading.service import TradingService

logger = logging.getLogger(__name__)


class MarketTicker:
    """
    Periodic market updates for a TradingService.

    Usage:
        ticker = MarketTicker(service)
        ticker.start()
        ...
        await ticker.stop()
    """

    def __init__(self, service: "TradingService"):
        self._service = service
        self._task: asyncio.Task | None = None
        self._ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._ticks

    def start(self) -> None:
        """Start the tick loop (no-op if already running)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Market ticker started (every {self._service.settings.update_interval}s)")

    async def stop(self) -> None:
        """Stop the tick loop and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Market ticker stopped")

    async def trigger_now(self) -> "CommandResult":
        """Run one tick immediately, regardless of auto-update."""
        return await self._tick()

    async def _tick(self) -> "CommandResult":
        result = await self._service.update_market()
        self._ticks += 1
        if not result.success:
            logger.warning(f"Market tick failed: {result.message}")
        return result

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._service.settings.update_interval)
                if self._service.settings.auto_update:
                    await self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in market ticker: {e}")
