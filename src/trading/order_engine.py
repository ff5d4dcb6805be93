# === MODULE PURPOSE ===
# Order book: builds order records, drives their state machine and
# decides which waiting orders a price snapshot triggers.

# === KEY CONCEPTS ===
# - Market orders are PENDING and execute immediately
# - Limit / stop-loss / take-profit orders wait as OPEN
# - Trigger rules:
#     limit buy        price <= limitPrice
#     limit sell       price >= limitPrice
#     stop-loss long   price <= stopPrice     short  price >= stopPrice
#     take-profit long price >= target        short  price <= target
# - Execution price: limit orders fill at limitPrice, all others at the
#   current price

import logging
import math
import uuid
from typing import Any

from src.common.clock import EngineClock
from src.common.errors import NotFoundError, ValidationError
from src.market.models import Stock, TradeSide
from src.trading.models import (
    EntryOrder,
    ExecutionType,
    Holding,
    LimitOrder,
    MarketOrder,
    Order,
    OrderStatus,
    PositionType,
    StopLossOrder,
    TakeProfitOrder,
    order_from_dict,
)

logger = logging.getLogger(__name__)


def validate_quantity(quantity: Any) -> int:
    """
    Raises:
        ValidationError: Unless quantity is a positive whole number.
    """
    if isinstance(quantity, bool) or quantity is None:
        raise ValidationError(f"Quantity must be a positive whole number, got {quantity}")
    try:
        whole = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError(f"Quantity must be a positive whole number, got {quantity}")
    if whole != quantity or whole <= 0:
        raise ValidationError(f"Quantity must be a positive whole number, got {quantity}")
    return whole


def _validate_price(label: str, price: float | None) -> None:
    if price is not None and (not math.isfinite(price) or price <= 0):
        raise ValidationError(f"{label} must be a positive number, got {price}")


def is_triggered(order: Order, price: float, position_type: PositionType | None = None) -> bool:
    """
    Whether `price` satisfies the order's trigger.

    Protective orders need the direction of the holding they protect.
    """
    match order:
        case LimitOrder(side=TradeSide.BUY, limit_price=limit):
            return price <= limit
        case LimitOrder(side=TradeSide.SELL, limit_price=limit):
            return price >= limit
        case StopLossOrder(stop_price=stop):
            if position_type is PositionType.LONG:
                return price <= stop
            if position_type is PositionType.SHORT:
                return price >= stop
            return False
        case TakeProfitOrder(take_profit_price=target):
            if position_type is PositionType.LONG:
                return price >= target
            if position_type is PositionType.SHORT:
                return price <= target
            return False
        case _:
            return False


def execution_price(order: Order, market_price: float) -> float:
    """Limit orders fill at their limit; everything else at the market."""
    match order:
        case LimitOrder(limit_price=limit):
            return limit
        case _:
            return market_price


class OrderBook:
    """
    Every order the user has placed, in submission order.

    Usage:
        book = OrderBook(clock)
        order = book.new_entry_order(stock, TradeSide.BUY, 10, ExecutionType.LIMIT, limit_price=90.0)
        book.triggered_by({stock.id: 88.0}, position_types={})  # [order]
    """

    def __init__(self, clock: EngineClock | None = None):
        self._clock = clock or EngineClock()
        self._orders: dict[str, Order] = {}

    def __len__(self) -> int:
        return len(self._orders)

    @property
    def orders(self) -> list[Order]:
        return list(self._orders.values())

    def find(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def get(self, order_id: str) -> Order:
        """
        Raises:
            NotFoundError: If the order does not exist.
        """
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def open_orders(self) -> list[Order]:
        """OPEN orders, oldest first."""
        waiting = [o for o in self._orders.values() if o.status is OrderStatus.OPEN]
        return sorted(waiting, key=lambda o: o.created_at)

    def active_for_stock(self, stock_id: str) -> list[Order]:
        return [o for o in self._orders.values() if o.stock_id == stock_id and o.is_active]

    def protective_for_holding(self, holding_id: str, kind: type[Order] | None = None) -> list[Order]:
        """Active stop-loss / take-profit orders bound to a holding."""
        kinds = (kind,) if kind else (StopLossOrder, TakeProfitOrder)
        return [
            o
            for o in self._orders.values()
            if o.holding_id == holding_id and o.is_active and isinstance(o, kinds)
        ]

    # ==================== Construction ====================

    def new_entry_order(
        self,
        stock: Stock,
        side: TradeSide,
        quantity: Any,
        execution_type: ExecutionType = ExecutionType.MARKET,
        limit_price: float | None = None,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
    ) -> EntryOrder:
        """
        Build (but do not add) a buy or sell order.

        Raises:
            ValidationError: On bad quantity or prices.
        """
        quantity = validate_quantity(quantity)
        _validate_price("Stop-loss price", stop_loss_price)
        _validate_price("Take-profit price", take_profit_price)

        now = self._clock.now_ms()
        common = dict(
            id=str(uuid.uuid4()),
            stock_id=stock.id,
            symbol=stock.symbol,
            quantity=quantity,
            side=side,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            created_at=now,
            updated_at=now,
        )

        if execution_type is ExecutionType.LIMIT:
            if limit_price is None:
                raise ValidationError("Limit orders require a limit price")
            _validate_price("Limit price", limit_price)
            return LimitOrder(limit_price=float(limit_price), status=OrderStatus.OPEN, **common)

        return MarketOrder(status=OrderStatus.PENDING, **common)

    def new_protective_order(
        self,
        holding: Holding,
        kind: type[StopLossOrder] | type[TakeProfitOrder],
        level: float,
    ) -> Order:
        """Build (but do not add) an OPEN stop-loss or take-profit order for a holding."""
        _validate_price("Trigger price", level)
        now = self._clock.now_ms()
        common = dict(
            id=str(uuid.uuid4()),
            stock_id=holding.stock_id,
            symbol=holding.symbol,
            quantity=holding.quantity,
            status=OrderStatus.OPEN,
            holding_id=holding.id,
            created_at=now,
            updated_at=now,
        )
        if kind is StopLossOrder:
            return StopLossOrder(stop_price=float(level), **common)
        return TakeProfitOrder(take_profit_price=float(level), **common)

    def add(self, order: Order) -> Order:
        self._orders[order.id] = order
        logger.info(
            f"Order {order.id[:8]} {order.order_type.value}/{order.execution_type.value} "
            f"{order.quantity} {order.symbol} -> {order.status.value}"
        )
        return order

    # ==================== Transitions ====================

    def cancel(self, order_id: str) -> Order:
        """
        Cancel a pending or open order.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidStateError: If the order is already terminal.
        """
        order = self.get(order_id)
        order.transition(OrderStatus.CANCELLED, self._clock.now_ms())
        logger.info(f"Cancelled order {order.id[:8]} ({order.order_type.value} {order.symbol})")
        return order

    def cancel_all(self, orders: list[Order]) -> list[Order]:
        """Cancel each still-active order in `orders`."""
        cancelled = []
        for order in orders:
            if order.is_active:
                cancelled.append(self.cancel(order.id))
        return cancelled

    def mark_triggered(self, order: Order) -> None:
        order.transition(OrderStatus.TRIGGERED, self._clock.now_ms())
        logger.info(f"Triggered order {order.id[:8]} ({order.order_type.value} {order.symbol})")

    def mark_executed(self, order: Order, price: float, holding_id: str) -> None:
        now = self._clock.now_ms()
        order.transition(OrderStatus.EXECUTED, now)
        order.executed_at = now
        order.executed_price = price
        order.holding_id = holding_id

    def mark_rejected(self, order: Order) -> None:
        """Move a pending or triggered order to CANCELLED after a failed execution."""
        order.transition(OrderStatus.CANCELLED, self._clock.now_ms())
        logger.warning(f"Rejected order {order.id[:8]} ({order.order_type.value} {order.symbol})")

    def triggered_by(
        self,
        prices: dict[str, float],
        position_types: dict[str, PositionType],
    ) -> list[Order]:
        """
        OPEN orders whose trigger the price snapshot satisfies, oldest first.

        Args:
            prices: Price snapshot keyed by stock ID.
            position_types: Direction of each protected holding, keyed by holding ID.
        """
        matched = []
        for order in self.open_orders():
            price = prices.get(order.stock_id)
            if price is None:
                continue
            position_type = position_types.get(order.holding_id) if order.holding_id else None
            if is_triggered(order, price, position_type):
                matched.append(order)
        return matched

    # ==================== Persistence ====================

    def clear(self) -> None:
        self._orders = {}

    def to_list(self) -> list[dict[str, Any]]:
        return [o.to_dict() for o in self._orders.values()]

    def load(self, data: list[dict[str, Any]]) -> None:
        self._orders = {}
        for item in data:
            order = order_from_dict(item)
            self._orders[order.id] = order
