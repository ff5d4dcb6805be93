# === MODULE PURPOSE ===
# Position ledger: tracks the user's holdings and applies fills to them.
# Realizes P&L on reduce/close/flip and marks open holdings to market.

# === KEY CONCEPTS ===
# - One open holding per stock, quantity always positive
# - Same-side fill: add quantity, quantity-weighted average entry
# - Opposite-side fill: close min(existing, fill), realize only that portion
# - Flip: fill larger than the holding closes it and opens the remainder
#   in the other direction at the execution price
# - Closed holdings are frozen and archived as HoldingHistory

import logging
import math
import uuid
from typing import Any

from src.common.clock import EngineClock
from src.common.errors import InvalidStateError, NotFoundError, ValidationError
from src.market.models import TradeSide
from src.trading.models import (
    FillResult,
    Holding,
    HoldingHistory,
    HoldingStatus,
    PositionType,
)

logger = logging.getLogger(__name__)


class PositionLedger:
    """
    Holdings of a single user.

    Usage:
        ledger = PositionLedger(clock)

        result = ledger.apply_fill(stock.id, "TECH", TradeSide.BUY, 100, 100.0, leverage=1)
        ledger.mark_to_market(stock.id, 110.0)
        result.holding.unrealized_pnl  # 1000.0
    """

    def __init__(self, clock: EngineClock | None = None):
        self._clock = clock or EngineClock()
        self._holdings: dict[str, Holding] = {}
        self._open_by_stock: dict[str, str] = {}
        self._history: list[HoldingHistory] = []

    # ==================== Queries ====================

    @property
    def holdings(self) -> list[Holding]:
        """Every holding, open and closed, in creation order."""
        return list(self._holdings.values())

    @property
    def open_holdings(self) -> list[Holding]:
        return [self._holdings[hid] for hid in self._open_by_stock.values()]

    @property
    def closed_holdings(self) -> list[Holding]:
        return [h for h in self._holdings.values() if not h.is_open]

    @property
    def history(self) -> list[HoldingHistory]:
        return list(self._history)

    def find(self, holding_id: str) -> Holding | None:
        return self._holdings.get(holding_id)

    def get(self, holding_id: str) -> Holding:
        """
        Raises:
            NotFoundError: If the holding does not exist.
        """
        holding = self._holdings.get(holding_id)
        if holding is None:
            raise NotFoundError(f"Holding {holding_id} not found")
        return holding

    def get_open(self, holding_id: str) -> Holding:
        """
        Raises:
            NotFoundError: If the holding does not exist.
            InvalidStateError: If the holding is already closed.
        """
        holding = self.get(holding_id)
        if not holding.is_open:
            raise InvalidStateError(f"Holding {holding.symbol} is already closed")
        return holding

    def open_for_stock(self, stock_id: str) -> Holding | None:
        holding_id = self._open_by_stock.get(stock_id)
        return self._holdings[holding_id] if holding_id else None

    def realized_pnl(self) -> float:
        """Total realized P&L across all holdings."""
        return sum(h.realized_pnl for h in self._holdings.values())

    def unrealized_pnl(self) -> float:
        return sum(h.unrealized_pnl for h in self.open_holdings)

    def margin_in_use(self) -> float:
        return sum(h.margin_used for h in self.open_holdings)

    # ==================== Fills ====================

    def preview(self, stock_id: str, side: TradeSide, quantity: int) -> tuple[int, int]:
        """
        Split a prospective fill into closing and opening portions.

        Returns:
            (closing_quantity, opening_quantity)
        """
        holding = self.open_for_stock(stock_id)
        if holding is None or holding.position_type.closing_side is not side:
            return 0, quantity
        closing = min(holding.quantity, quantity)
        return closing, quantity - closing

    def apply_fill(
        self,
        stock_id: str,
        symbol: str,
        side: TradeSide,
        quantity: int,
        price: float,
        leverage: float = 1,
    ) -> FillResult:
        """
        Apply an executed fill to the stock's holding.

        Args:
            stock_id: Stock traded.
            symbol: Ticker symbol stored on new holdings.
            side: Fill direction.
            quantity: Shares filled, positive.
            price: Execution price, positive.
            leverage: Margin multiplier for the opened portion.

        Returns:
            FillResult with the resulting open holding (or the closed one
            when the fill exactly closes the position).

        Raises:
            ValidationError: On non-positive quantity, price or leverage.
        """
        if quantity <= 0:
            raise ValidationError(f"Fill quantity must be positive, got {quantity}")
        if price <= 0:
            raise ValidationError(f"Fill price must be positive, got {price}")
        if leverage <= 0:
            raise ValidationError(f"Leverage must be positive, got {leverage}")

        holding = self.open_for_stock(stock_id)

        if holding is None:
            opened = self._open(stock_id, symbol, PositionType.for_side(side), quantity, price, leverage)
            return FillResult(
                holding=opened,
                opened_quantity=quantity,
                added_margin=opened.margin_used,
            )

        if holding.position_type is PositionType.for_side(side):
            return self._add(holding, quantity, price, leverage)

        closing = min(holding.quantity, quantity)

        if quantity < holding.quantity:
            return self._reduce(holding, closing, price)

        result = self._close(holding, price)
        if quantity == closing:
            return result

        remainder = quantity - closing
        opened = self._open(stock_id, symbol, PositionType.for_side(side), remainder, price, leverage)
        logger.info(
            f"Flipped {symbol} {holding.position_type.value} -> {opened.position_type.value}, "
            f"{remainder} @ {price:.2f}"
        )
        result.holding = opened
        result.opened_quantity = remainder
        result.added_margin = opened.margin_used
        result.flipped = True
        return result

    def force_close(self, holding_id: str, price: float) -> FillResult:
        """
        Close an open holding in full at `price`.

        Raises:
            NotFoundError: If the holding does not exist.
            InvalidStateError: If the holding is already closed.
        """
        holding = self.get_open(holding_id)
        return self._close(holding, price)

    def mark_to_market(self, stock_id: str, price: float) -> Holding | None:
        """Recompute unrealized P&L of the stock's open holding."""
        holding = self.open_for_stock(stock_id)
        if holding is not None:
            holding.unrealized_pnl = holding.pnl_at(price)
        return holding

    def mark_all(self, prices: dict[str, float]) -> None:
        """Mark every open holding whose stock has a price in `prices`."""
        for stock_id in list(self._open_by_stock):
            if stock_id in prices:
                self.mark_to_market(stock_id, prices[stock_id])

    def set_risk_levels(
        self,
        holding_id: str,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
    ) -> Holding:
        """
        Update protective levels on an open holding. None leaves a level unchanged.

        Raises:
            NotFoundError: If the holding does not exist.
            InvalidStateError: If the holding is closed.
            ValidationError: If a level is not a positive finite number.
        """
        holding = self.get_open(holding_id)
        for label, level in (("Stop-loss", stop_loss_price), ("Take-profit", take_profit_price)):
            if level is not None and (not math.isfinite(level) or level <= 0):
                raise ValidationError(f"{label} price must be a positive number, got {level}")

        if stop_loss_price is not None:
            holding.stop_loss_price = float(stop_loss_price)
        if take_profit_price is not None:
            holding.take_profit_price = float(take_profit_price)
        holding.updated_at = self._clock.now_ms()
        return holding

    # ==================== Persistence ====================

    def clear(self) -> None:
        self._holdings = {}
        self._open_by_stock = {}
        self._history = []

    def load(self, holdings: list[dict[str, Any]], history: list[dict[str, Any]] | None = None) -> None:
        """Replace ledger contents with persisted holdings and archive."""
        self.clear()
        for item in holdings:
            holding = Holding.from_dict(item)
            self._holdings[holding.id] = holding
            if not holding.is_open:
                continue
            previous = self._open_by_stock.get(holding.stock_id)
            if previous is not None:
                logger.warning(
                    f"Multiple open holdings for stock {holding.stock_id}, keeping {holding.id}"
                )
            self._open_by_stock[holding.stock_id] = holding.id
        self._history = [HoldingHistory.from_dict(h) for h in history or []]

    def holdings_to_list(self) -> list[dict[str, Any]]:
        return [h.to_dict() for h in self._holdings.values()]

    def history_to_list(self) -> list[dict[str, Any]]:
        return [h.to_dict() for h in self._history]

    # ==================== Internal ====================

    def _open(
        self,
        stock_id: str,
        symbol: str,
        position_type: PositionType,
        quantity: int,
        price: float,
        leverage: float,
    ) -> Holding:
        now = self._clock.now_ms()
        holding = Holding(
            id=str(uuid.uuid4()),
            stock_id=stock_id,
            symbol=symbol,
            position_type=position_type,
            quantity=quantity,
            average_entry_price=price,
            leverage=leverage,
            margin_used=quantity * price / leverage,
            created_at=now,
            updated_at=now,
        )
        self._holdings[holding.id] = holding
        self._open_by_stock[stock_id] = holding.id
        logger.info(f"Opened {position_type.value} {symbol}: {quantity} @ {price:.2f}")
        return holding

    def _add(self, holding: Holding, quantity: int, price: float, leverage: float) -> FillResult:
        total = holding.quantity + quantity
        holding.average_entry_price = (
            holding.quantity * holding.average_entry_price + quantity * price
        ) / total
        added_margin = quantity * price / leverage
        holding.quantity = total
        holding.margin_used += added_margin
        holding.leverage = leverage
        holding.updated_at = self._clock.now_ms()
        logger.info(
            f"Added {quantity} to {holding.symbol} {holding.position_type.value}, "
            f"now {total} @ {holding.average_entry_price:.2f}"
        )
        return FillResult(holding=holding, opened_quantity=quantity, added_margin=added_margin)

    def _realize(self, holding: Holding, closing: int, price: float) -> float:
        if holding.position_type is PositionType.LONG:
            return (price - holding.average_entry_price) * closing
        return (holding.average_entry_price - price) * closing

    def _record_exit(self, holding: Holding, closing: int, price: float) -> None:
        exited = holding.exited_quantity + closing
        previous = holding.average_exit_price or 0.0
        holding.average_exit_price = (previous * holding.exited_quantity + price * closing) / exited
        holding.exited_quantity = exited

    def _reduce(self, holding: Holding, closing: int, price: float) -> FillResult:
        delta = self._realize(holding, closing, price)
        released = holding.margin_used * closing / holding.quantity

        self._record_exit(holding, closing, price)
        holding.quantity -= closing
        holding.margin_used -= released
        holding.realized_pnl += delta
        holding.updated_at = self._clock.now_ms()

        logger.info(
            f"Reduced {holding.symbol} {holding.position_type.value} by {closing} @ {price:.2f}, "
            f"realized {delta:+.2f}"
        )
        return FillResult(
            holding=holding,
            realized_pnl=delta,
            closed_quantity=closing,
            released_margin=released,
        )

    def _close(self, holding: Holding, price: float) -> FillResult:
        closing = holding.quantity
        delta = self._realize(holding, closing, price)
        released = holding.margin_used
        now = self._clock.now_ms()

        self._record_exit(holding, closing, price)
        holding.realized_pnl += delta
        holding.unrealized_pnl = 0.0
        holding.status = HoldingStatus.CLOSED
        holding.closed_at = now
        holding.updated_at = now
        del self._open_by_stock[holding.stock_id]

        record = HoldingHistory.from_holding(holding, closing)
        self._history.append(record)

        logger.info(
            f"Closed {holding.symbol} {holding.position_type.value} {closing} @ {price:.2f}, "
            f"realized {delta:+.2f} (total {holding.realized_pnl:+.2f})"
        )
        return FillResult(
            holding=holding,
            realized_pnl=delta,
            closed_quantity=closing,
            released_margin=released,
            closed_holding=holding,
        )
