# === MODULE PURPOSE ===
# Tests for PositionLedger.
# Covers open / add / reduce / close / flip fills, realized P&L
# conservation, mark-to-market and archive records.

import pytest

from src.common.clock import EngineClock
from src.common.errors import InvalidStateError, NotFoundError, ValidationError
from src.market.models import TradeSide
from src.trading.models import HoldingStatus, PositionType
from src.trading.position_ledger import PositionLedger

BUY = TradeSide.BUY
SELL = TradeSide.SELL


@pytest.fixture
def ledger() -> PositionLedger:
    return PositionLedger(EngineClock(start_ms=1000))


class TestApplyFill:
    """Tests for PositionLedger.apply_fill()."""

    def test_open_long(self, ledger):
        """Test a buy with no holding opens a long."""
        result = ledger.apply_fill("s1", "TECH", BUY, 100, 100.0)

        holding = result.holding
        assert holding.position_type is PositionType.LONG
        assert holding.quantity == 100
        assert holding.average_entry_price == 100.0
        assert holding.margin_used == 10_000.0
        assert result.added_margin == 10_000.0
        assert result.realized_pnl == 0.0

    def test_open_short_with_leverage(self, ledger):
        """Test a sell with no holding opens a short, margin scaled by leverage."""
        result = ledger.apply_fill("s1", "TECH", SELL, 50, 110.0, leverage=5)

        assert result.holding.position_type is PositionType.SHORT
        assert result.holding.margin_used == pytest.approx(1100.0)

    def test_add_same_direction_weights_entry(self, ledger):
        """Test adding uses a quantity-weighted average entry."""
        ledger.apply_fill("s1", "TECH", BUY, 100, 100.0)
        result = ledger.apply_fill("s1", "TECH", BUY, 50, 130.0)

        assert result.holding.quantity == 150
        assert result.holding.average_entry_price == pytest.approx(110.0)
        assert result.holding.margin_used == pytest.approx(16_500.0)
        assert len(ledger.open_holdings) == 1

    def test_partial_reduce_realizes_closed_portion_only(self, ledger):
        """Test reducing keeps the entry price and realizes the closed shares."""
        ledger.apply_fill("s1", "TECH", BUY, 100, 100.0)
        result = ledger.apply_fill("s1", "TECH", SELL, 40, 120.0)

        holding = result.holding
        assert holding.is_open
        assert holding.quantity == 60
        assert holding.average_entry_price == 100.0
        assert result.realized_pnl == pytest.approx(800.0)
        assert holding.realized_pnl == pytest.approx(800.0)
        assert result.released_margin == pytest.approx(4000.0)
        assert holding.margin_used == pytest.approx(6000.0)

    def test_exact_close(self, ledger):
        """Test an equal opposite fill closes and archives the holding."""
        opened = ledger.apply_fill("s1", "TECH", BUY, 100, 100.0).holding
        result = ledger.apply_fill("s1", "TECH", SELL, 100, 90.0)

        assert result.closed_holding is opened
        assert opened.status is HoldingStatus.CLOSED
        assert opened.average_exit_price == 90.0
        assert opened.realized_pnl == pytest.approx(-1000.0)
        assert opened.unrealized_pnl == 0.0
        assert opened.closed_at == 1000
        assert ledger.open_for_stock("s1") is None
        assert len(ledger.history) == 1
        assert ledger.history[0].quantity == 100
        assert ledger.history[0].to_dict()["holdingType"] == "long"

    def test_flip_long_to_short(self, ledger):
        """Test an oversized sell closes the long and opens the remainder short."""
        ledger.apply_fill("s1", "TECH", BUY, 100, 100.0)
        result = ledger.apply_fill("s1", "TECH", SELL, 150, 110.0)

        assert result.flipped is True
        assert result.realized_pnl == pytest.approx(1000.0)
        assert result.closed_holding.status is HoldingStatus.CLOSED
        assert result.holding.position_type is PositionType.SHORT
        assert result.holding.quantity == 50
        assert result.holding.average_entry_price == 110.0
        assert len(ledger.open_holdings) == 1

    def test_flip_short_to_long(self, ledger):
        """Test covering more than the short opens a long."""
        ledger.apply_fill("s1", "TECH", SELL, 20, 50.0)
        result = ledger.apply_fill("s1", "TECH", BUY, 30, 40.0)

        assert result.realized_pnl == pytest.approx(200.0)
        assert result.holding.position_type is PositionType.LONG
        assert result.holding.quantity == 10

    def test_holdings_are_per_stock(self, ledger):
        """Test fills on different stocks never interact."""
        ledger.apply_fill("s1", "TECH", BUY, 10, 10.0)
        ledger.apply_fill("s2", "FINA", SELL, 10, 10.0)

        assert len(ledger.open_holdings) == 2

    @pytest.mark.parametrize("quantity,price,leverage", [(0, 10.0, 1), (5, 0.0, 1), (5, 10.0, 0)])
    def test_invalid_fill(self, ledger, quantity, price, leverage):
        """Test non-positive inputs are rejected."""
        with pytest.raises(ValidationError):
            ledger.apply_fill("s1", "TECH", BUY, quantity, price, leverage)

    def test_realized_pnl_conservation(self, ledger):
        """Test realized P&L equals the sum of per-fill deltas."""
        fills = [(BUY, 100, 100.0), (SELL, 30, 110.0), (SELL, 100, 105.0), (BUY, 50, 95.0), (SELL, 20, 90.0)]
        total_delta = 0.0
        for side, qty, price in fills:
            total_delta += ledger.apply_fill("s1", "TECH", side, qty, price).realized_pnl

        assert ledger.realized_pnl() == pytest.approx(total_delta)
        # 30*10 + 70*5 (long closed) + 30*(105-95) (short 30 covered, long 20 opened) - 20*5
        assert total_delta == pytest.approx(300 + 350 + 300 - 100)


class TestPreview:
    """Tests for PositionLedger.preview()."""

    def test_preview_split(self, ledger):
        """Test preview splits fills into closing and opening shares."""
        ledger.apply_fill("s1", "TECH", BUY, 100, 100.0)

        assert ledger.preview("s1", SELL, 150) == (100, 50)
        assert ledger.preview("s1", SELL, 40) == (40, 0)
        assert ledger.preview("s1", BUY, 10) == (0, 10)
        assert ledger.preview("s2", SELL, 10) == (0, 10)


class TestMarkToMarket:
    """Tests for unrealized P&L."""

    def test_mark_long_and_short(self, ledger):
        """Test unrealized P&L sign per direction."""
        ledger.apply_fill("s1", "TECH", BUY, 10, 100.0)
        ledger.apply_fill("s2", "FINA", SELL, 10, 100.0)

        ledger.mark_all({"s1": 105.0, "s2": 105.0})

        assert ledger.open_for_stock("s1").unrealized_pnl == pytest.approx(50.0)
        assert ledger.open_for_stock("s2").unrealized_pnl == pytest.approx(-50.0)
        assert ledger.unrealized_pnl() == pytest.approx(0.0)


class TestRiskLevels:
    """Tests for set_risk_levels() and force_close()."""

    def test_set_levels(self, ledger):
        """Test levels update and None keeps the current value."""
        holding = ledger.apply_fill("s1", "TECH", BUY, 10, 100.0).holding

        ledger.set_risk_levels(holding.id, stop_loss_price=90.0)
        ledger.set_risk_levels(holding.id, take_profit_price=120.0)

        assert holding.stop_loss_price == 90.0
        assert holding.take_profit_price == 120.0

    def test_set_levels_invalid(self, ledger):
        """Test non-positive levels are rejected."""
        holding = ledger.apply_fill("s1", "TECH", BUY, 10, 100.0).holding
        with pytest.raises(ValidationError):
            ledger.set_risk_levels(holding.id, stop_loss_price=-1)

    @pytest.mark.parametrize("level", [float("nan"), float("inf")])
    def test_set_levels_non_finite(self, ledger, level):
        """Test NaN or infinite levels are rejected and the holding is unchanged."""
        holding = ledger.apply_fill("s1", "TECH", BUY, 10, 100.0).holding
        with pytest.raises(ValidationError):
            ledger.set_risk_levels(holding.id, take_profit_price=level)
        assert holding.take_profit_price is None

    def test_closed_holding_is_frozen(self, ledger):
        """Test closed holdings reject edits and re-closing."""
        holding = ledger.apply_fill("s1", "TECH", BUY, 10, 100.0).holding
        ledger.force_close(holding.id, 100.0)

        with pytest.raises(InvalidStateError):
            ledger.set_risk_levels(holding.id, stop_loss_price=90.0)
        with pytest.raises(InvalidStateError):
            ledger.force_close(holding.id, 100.0)

    def test_unknown_holding(self, ledger):
        """Test unknown IDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ledger.force_close("missing", 1.0)


class TestPersistence:
    """Tests for load()."""

    def test_round_trip(self, ledger):
        """Test holdings and archive survive serialization."""
        ledger.apply_fill("s1", "TECH", BUY, 100, 100.0)
        ledger.apply_fill("s1", "TECH", SELL, 150, 110.0)

        other = PositionLedger()
        other.load(ledger.holdings_to_list(), ledger.history_to_list())

        assert other.holdings_to_list() == ledger.holdings_to_list()
        assert other.history_to_list() == ledger.history_to_list()
        assert other.open_for_stock("s1").position_type is PositionType.SHORT
