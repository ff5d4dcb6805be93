# === MODULE PURPOSE ===
# Tests for MarketModel.
# Verifies stock creation rules, price impact, share supply bounds,
# the random walk and the price floor.

import random

import pytest

from src.common.clock import EngineClock
from src.common.errors import NotFoundError, ValidationError
from src.market.market_model import MarketModel
from src.market.models import MIN_PRICE, Stock, TradeSide


@pytest.fixture
def market() -> MarketModel:
    return MarketModel(clock=EngineClock(start_ms=1000), rng=random.Random(7))


class TestCreateStock:
    """Tests for stock creation."""

    def test_new_stock_state(self, market):
        """Test a new stock starts at its initial value with full supply."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        assert stock.current_value == 100.0
        assert stock.available_shares == 1000
        assert stock.symbol == "TECH"
        assert stock.to_dict()["symbol"] == "TECH"
        assert len(stock.history) == 1
        assert stock.history[0].price == 100.0
        assert stock.volume == []
        assert stock.id in market

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "", "initial_value": 100.0, "total_shares": 1000, "price_evolution": 1.0},
            {"name": "X", "initial_value": 0.0, "total_shares": 1000, "price_evolution": 1.0},
            {"name": "X", "initial_value": 10.0, "total_shares": 99, "price_evolution": 1.0},
            {"name": "X", "initial_value": 10.0, "total_shares": 150.5, "price_evolution": 1.0},
            {"name": "X", "initial_value": 10.0, "total_shares": 1000, "price_evolution": 0.0},
        ],
    )
    def test_invalid_parameters_rejected(self, market, kwargs):
        """Test each violated constraint raises ValidationError."""
        with pytest.raises(ValidationError):
            market.create_stock(**kwargs)
        assert len(market) == 0

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_values_rejected(self, market, value):
        """Test NaN or infinite prices and elasticities are rejected."""
        with pytest.raises(ValidationError):
            market.create_stock("NaNCo", value, 1000, 10.0)
        with pytest.raises(ValidationError):
            market.create_stock("NaNCo", 100.0, 1000, value)
        assert len(market) == 0

    def test_short_name_symbol(self, market):
        """Test symbols of short names are the whole upper-cased name."""
        stock = market.create_stock("abc", 5.0, 100, 1.0)
        assert stock.symbol == "ABC"


class TestApplyFill:
    """Tests for trade-driven price impact."""

    def test_buy_impact(self, market):
        """Test buying 100 shares at evolution 10% moves price by 10."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        new_price = market.apply_fill(stock.id, TradeSide.BUY, 100)

        assert new_price == pytest.approx(110.0)
        assert stock.available_shares == 900
        assert stock.history[-1].price == pytest.approx(110.0)
        assert stock.volume[-1].volume == 100
        assert stock.volume[-1].type is TradeSide.BUY

    def test_sell_impact_returns_supply(self, market):
        """Test a sell lowers the price and returns shares to the pool."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)
        market.apply_fill(stock.id, TradeSide.BUY, 100)

        market.apply_fill(stock.id, TradeSide.SELL, 50)

        assert stock.current_value == pytest.approx(105.0)
        assert stock.available_shares == 950

    def test_price_floor(self, market):
        """Test heavy selling never pushes price below the floor."""
        stock = market.create_stock("Penny", 1.0, 1000, 100.0)

        market.apply_fill(stock.id, TradeSide.SELL, 500, supply_quantity=0)

        assert stock.current_value == MIN_PRICE

    def test_buy_more_than_available_rejected(self, market):
        """Test buys beyond available supply are rejected without side effects."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        with pytest.raises(ValidationError):
            market.apply_fill(stock.id, TradeSide.BUY, 1001)

        assert stock.current_value == 100.0
        assert stock.available_shares == 1000
        assert len(stock.history) == 1

    def test_return_beyond_total_rejected(self, market):
        """Test returning more shares than the pool can hold is rejected."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        with pytest.raises(ValidationError):
            market.apply_fill(stock.id, TradeSide.SELL, 1)

    def test_short_sell_leaves_supply(self, market):
        """Test a zero-supply sell moves price but not availability."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        market.apply_fill(stock.id, TradeSide.SELL, 50, supply_quantity=0)

        assert stock.available_shares == 1000
        assert stock.current_value == pytest.approx(95.0)

    def test_unknown_stock(self, market):
        """Test unknown stock IDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            market.apply_fill("missing", TradeSide.BUY, 1)

    def test_timestamps_strictly_increase(self, market):
        """Test history timestamps increase even with a frozen clock."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)
        market.apply_fill(stock.id, TradeSide.BUY, 10)
        market.apply_fill(stock.id, TradeSide.BUY, 10)

        stamps = [p.timestamp for p in stock.history]
        assert stamps == sorted(set(stamps))


class TestTick:
    """Tests for the random walk."""

    def test_zero_volatility_keeps_prices(self, market):
        """Test volatility 0 appends history without moving price."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        prices = market.tick(0.0)

        assert prices[stock.id] == 100.0
        assert len(stock.history) == 2

    def test_step_bounded_by_volatility(self, market):
        """Test each step stays within +/- 1% of initial value at volatility 1."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        previous = stock.current_value
        for _ in range(50):
            market.tick(1.0)
            assert abs(stock.current_value - previous) <= 1.0 + 1e-9
            previous = stock.current_value

    def test_deterministic_with_seeded_rng(self):
        """Test identical seeds produce identical walks."""
        prices = []
        for _ in range(2):
            m = MarketModel(clock=EngineClock(start_ms=0), rng=random.Random(3))
            s = m.create_stock("TechCorp", 100.0, 1000, 10.0)
            m.tick(0.5)
            prices.append(m.find_stock(s.id).current_value)
        assert prices[0] == prices[1]

    def test_floor_on_tick(self, market):
        """Test the walk never goes below the floor."""
        stock = market.create_stock("Penny", 0.5, 1000, 1.0)
        stock.current_value = MIN_PRICE

        for _ in range(20):
            market.tick(1.0)
            assert stock.current_value >= MIN_PRICE

    @pytest.mark.parametrize("volatility", [-0.1, 1.5])
    def test_out_of_range_volatility(self, market, volatility):
        """Test volatility outside [0, 1] is rejected."""
        with pytest.raises(ValidationError):
            market.tick(volatility)


class TestLifecycle:
    """Tests for reset, removal and persistence."""

    def test_reset(self, market):
        """Test reset restores listing state."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)
        market.apply_fill(stock.id, TradeSide.BUY, 100)

        market.reset()

        assert stock.current_value == 100.0
        assert stock.available_shares == 1000
        assert len(stock.history) == 1
        assert stock.volume == []

    def test_remove_stock(self, market):
        """Test removed stocks are gone and unknown removals raise."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)
        market.remove_stock(stock.id)

        assert stock.id not in market
        with pytest.raises(NotFoundError):
            market.remove_stock(stock.id)

    def test_load_restores_stocks(self, market):
        """Test to_list/load preserves every field."""
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)
        market.apply_fill(stock.id, TradeSide.BUY, 30)

        other = MarketModel()
        other.load(market.to_list())

        restored = other.get_stock(stock.id)
        assert restored.to_dict() == stock.to_dict()

    def test_stock_from_dict_defaults(self):
        """Test missing currentValue/availableShares fall back to listing values."""
        stock = Stock.from_dict(
            {"id": "s", "name": "Foo", "initialValue": 10, "totalShares": 200, "priceEvolution": 1}
        )
        assert stock.current_value == 10.0
        assert stock.available_shares == 200
