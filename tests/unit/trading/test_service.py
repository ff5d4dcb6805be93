# === MODULE PURPOSE ===
# Tests for TradingService.
# Uses MemoryStateStore so persistence can be inspected directly.

import pytest

from src.common.config import Config
from src.common.errors import ValidationError
from src.trading.engine import TradingEngine
from src.trading.repository import MemoryStateStore
from src.trading.service import TradingService


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def service(config, engine, store) -> TradingService:
    return TradingService(config, store=store, engine=engine)


class TestLoad:
    """Tests for TradingService.load()."""

    @pytest.mark.asyncio
    async def test_seeds_when_empty(self, clock, store):
        """Test an empty store gets the default listings and a full save."""
        config = Config.from_dict({"trading": {"starting_balance": 1000.0}})
        service = TradingService(config, store=store, engine=TradingEngine(config, clock=clock))

        await service.load()

        stocks = await store.load_slice("stocks")
        assert [s["name"] for s in stocks] == ["TechCorp", "FinanceHub"]
        assert (await store.load_slice("user"))["balance"] == 1000.0
        assert await store.load_slice("marketSettings") == service.settings.to_dict()
        assert service.engine.drain_dirty() == set()

    @pytest.mark.asyncio
    async def test_restores_persisted_state(self, config, engine, stock, clock):
        """Test persisted slices are loaded instead of seeding."""
        engine.create_order(stock.id, "buy", 10)
        store = MemoryStateStore(
            {
                **engine.export_state(),
                "marketSettings": {"updateInterval": 20, "autoUpdate": False, "volatility": 10},
            }
        )
        service = TradingService(config, store=store, engine=TradingEngine(config, clock=clock))

        await service.load()

        restored = service.engine
        assert len(restored.market) == 1
        assert restored.positions.open_for_stock(stock.id).quantity == 10
        assert service.settings.update_interval == 20
        assert service.settings.auto_update is False


class TestCommands:
    """Tests for command persistence."""

    @pytest.mark.asyncio
    async def test_command_persists_dirty_slices(self, service, store, stock):
        """Test a successful order saves the stocks and user slices."""
        result = await service.create_order(stock.id, "buy", 10)

        assert result.success is True
        user = await store.load_slice("user")
        assert len(user["holdings"]) == 1
        stocks = await store.load_slice("stocks")
        assert stocks[0]["availableShares"] == 990
        assert len(await store.load_slice("notifications")) == 2

    @pytest.mark.asyncio
    async def test_rejected_command_saves_only_notifications(self, service, store, stock):
        """Test a failed command leaves stocks and user unsaved."""
        service.engine.drain_dirty()

        result = await service.create_order(stock.id, "buy", 0)

        assert result.success is False
        assert await store.load_slice("user") is None
        assert await store.load_slice("stocks") is None
        assert len(await store.load_slice("notifications")) == 2

    @pytest.mark.asyncio
    async def test_update_market_uses_volatility_setting(self, service, store, stock):
        """Test ticks use the configured volatility."""
        await service.update_settings(volatility=0)

        result = await service.update_market()

        assert result.success is True
        assert stock.current_value == 100.0
        assert len(await store.load_slice("stocks")) == 1

    @pytest.mark.asyncio
    async def test_notification_subscription(self, service, stock):
        """Test subscribers see every emitted notification."""
        seen = []
        service.subscribe(seen.append)

        await service.create_order(stock.id, "buy", 10)
        service.unsubscribe(seen.append)
        await service.create_order(stock.id, "buy", 10)

        assert [n.title for n in seen] == ["Order Executed"]


class TestSettings:
    """Tests for TradingService.update_settings()."""

    @pytest.mark.asyncio
    async def test_partial_update(self, service, store):
        """Test unspecified fields keep their values and the slice is saved."""
        before = service.settings

        settings = await service.update_settings(update_interval=10)

        assert settings.update_interval == 10
        assert settings.volatility == before.volatility
        assert (await store.load_slice("marketSettings"))["updateInterval"] == 10

    @pytest.mark.asyncio
    async def test_invalid_update_keeps_settings(self, service, store):
        """Test an out-of-range value changes nothing."""
        before = service.settings

        with pytest.raises(ValidationError):
            await service.update_settings(update_interval=60)

        assert service.settings == before
        assert await store.load_slice("marketSettings") is None


class TestQueries:
    """Tests for read-only views."""

    @pytest.mark.asyncio
    async def test_snapshot_includes_settings(self, service, stock):
        """Test the snapshot carries market settings."""
        snapshot = await service.snapshot()

        assert snapshot["settings"] == service.settings.to_dict()
        assert snapshot["stocks"][0]["id"] == stock.id

    @pytest.mark.asyncio
    async def test_reports(self, service, stock):
        """Test portfolio and report views reflect trades."""
        await service.create_order(stock.id, "buy", 100)

        portfolio = await service.portfolio()
        daily = await service.daily_summary()
        stats = await service.stock_statistics()

        assert portfolio["openHoldings"] == 1
        assert portfolio["unrealizedPnL"] == pytest.approx(1000.0)
        assert daily[0]["trades"] == 1
        assert stats[0]["stockId"] == stock.id
