# === MODULE PURPOSE ===
# Trading engine: the single explicit state object of the simulator.
# Owns the market, the position/transaction ledgers, the order book,
# the user's cash and the notification feed, and exposes every user
# command and the market tick.

# === KEY CONCEPTS ===
# - Commands validate first, then mutate; a rejected command leaves
#   committed state untouched and emits one notification
# - Fill path: preview -> supply check -> position ledger -> market impact
#   -> cash -> transaction -> mark-to-market -> protective cleanup
# - Tick: random walk, mark-to-market, then trigger evaluation against
#   the price snapshot taken after the walk
# - Dirty slices: stocks / user / notifications, drained by the service
#   to persist only what changed

import logging
from dataclasses import dataclass
from typing import Any, Callable

from src.common.clock import EngineClock
from src.common.config import Config
from src.common.errors import (
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    TradingError,
    ValidationError,
)
from src.common.notifications import NotificationEmitter, NotificationType
from src.market.market_model import MarketModel
from src.market.models import Stock, TradeSide
from src.trading.models import (
    EntryOrder,
    ExecutionType,
    FillResult,
    Holding,
    LimitOrder,
    Order,
    OrderStatus,
    OrderType,
    StopLossOrder,
    TakeProfitOrder,
)
from src.trading.order_engine import OrderBook, execution_price, validate_quantity
from src.trading.position_ledger import PositionLedger
from src.trading.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

STOCKS_SLICE = "stocks"
USER_SLICE = "user"
NOTIFICATIONS_SLICE = "notifications"

DEFAULT_STOCKS: list[dict[str, Any]] = [
    {"name": "TechCorp", "initial_value": 1000.0, "total_shares": 1000, "price_evolution": 0.1},
    {"name": "FinanceHub", "initial_value": 500.0, "total_shares": 2000, "price_evolution": 0.2},
]


@dataclass
class CommandResult:
    """Outcome of one engine command."""

    success: bool
    message: str
    data: Any = None
    error: TradingError | None = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "CommandResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, error: TradingError, data: Any = None) -> "CommandResult":
        return cls(success=False, message=error.message, data=data, error=error)

    @property
    def error_kind(self) -> str | None:
        return type(self.error).__name__ if self.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "error": self.error_kind,
        }


class TradingEngine:
    """
    Synchronous trading state machine for one user.

    Not thread-safe: callers serialize access (see TradingService).

    Usage:
        engine = TradingEngine(Config.defaults(), clock=EngineClock(start_ms=0))
        engine.seed_defaults()

        result = engine.create_order(stock_id, "buy", 1)
        if not result.success:
            print(result.message)

        engine.update_market(0.5)
    """

    def __init__(
        self,
        config: Config | None = None,
        clock: EngineClock | None = None,
        rng: Any = None,
    ):
        self.config = config or Config.defaults()
        self.clock = clock or EngineClock()

        self.starting_balance = self.config.get_float("trading.starting_balance", 1000.0)
        self.default_leverage = self.config.get_int("trading.default_leverage", 1)
        self.max_leverage = self.config.get_int("trading.max_leverage", 10)

        self.market = MarketModel(
            clock=self.clock,
            rng=rng,
            min_total_shares=self.config.get_int("market.min_total_shares", 100),
        )
        self.positions = PositionLedger(self.clock)
        self.orders = OrderBook(self.clock)
        self.transactions = TransactionLedger(self.clock)
        self.notifications = NotificationEmitter(
            limit=self.config.get_int("trading.notification_limit", 50),
            clock=self.clock,
        )

        self.balance = self.starting_balance
        self.leverage = self.default_leverage
        self.selected_stock_id: str | None = None

        self._dirty: set[str] = set()

    # ==================== Dirty tracking ====================

    def drain_dirty(self) -> set[str]:
        """Return and reset the slices changed since the last drain."""
        dirty, self._dirty = self._dirty, set()
        return dirty

    def _touch(self, *slices: str) -> None:
        self._dirty.update(slices)

    def _notify(self, notification_type: NotificationType | str, title: str, message: str) -> None:
        self.notifications.emit(notification_type, title, message)
        self._touch(NOTIFICATIONS_SLICE)

    def _run(self, action: str, command: Callable[[], CommandResult]) -> CommandResult:
        """Run a command, turning domain errors into a notification and a failed result."""
        try:
            return command()
        except TradingError as e:
            logger.warning(f"{action} rejected: {e.message}")
            self._notify(e.notification_type, e.title, e.message)
            return CommandResult.failed(e)

    # ==================== Stocks ====================

    def seed_defaults(self) -> None:
        """Fresh account with the default listings."""
        self.balance = self.starting_balance
        if self.config.get_bool("trading.seed_default_stocks", True):
            for listing in DEFAULT_STOCKS:
                stock = self.market.create_stock(**listing)
                if self.selected_stock_id is None:
                    self.selected_stock_id = stock.id
        logger.info(f"Seeded {len(self.market)} stocks, balance {self.balance:.2f}")
        self._touch(STOCKS_SLICE, USER_SLICE)

    def create_stock(
        self,
        name: str,
        initial_value: float,
        total_shares: int,
        price_evolution: float,
    ) -> CommandResult:
        def command() -> CommandResult:
            stock = self.market.create_stock(name, initial_value, total_shares, price_evolution)
            self._touch(STOCKS_SLICE)
            if self.selected_stock_id is None:
                self.selected_stock_id = stock.id
                self._touch(USER_SLICE)
            self._notify(
                NotificationType.SUCCESS,
                "Stock Created",
                f"{stock.name} ({stock.symbol}) listed at {stock.initial_value:.2f}",
            )
            return CommandResult.ok(f"Created {stock.name}", stock.to_dict())

        return self._run("Create stock", command)

    def delete_stock(self, stock_id: str) -> CommandResult:
        """Cancel the stock's active orders, force-close its holding, then delist it."""

        def command() -> CommandResult:
            stock = self.market.get_stock(stock_id)

            cancelled = self.orders.cancel_all(self.orders.active_for_stock(stock.id))

            closed = None
            holding = self.positions.open_for_stock(stock.id)
            if holding is not None:
                result = self.positions.force_close(holding.id, stock.current_value)
                self._settle_cash(result)
                closed = result.closed_holding

            self.market.remove_stock(stock.id)
            if self.selected_stock_id == stock.id:
                self.selected_stock_id = None

            self._touch(STOCKS_SLICE, USER_SLICE)
            message = f"{stock.name} removed, {len(cancelled)} order(s) cancelled"
            if closed is not None:
                message += f", position closed ({closed.realized_pnl:+.2f})"
            self._notify(NotificationType.INFO, "Stock Deleted", message)
            return CommandResult.ok(
                message,
                {
                    "stockId": stock.id,
                    "cancelledOrders": [o.id for o in cancelled],
                    "closedHolding": closed.to_dict() if closed else None,
                },
            )

        return self._run("Delete stock", command)

    def select_stock(self, stock_id: str | None) -> CommandResult:
        def command() -> CommandResult:
            if stock_id is not None:
                self.market.get_stock(stock_id)
            self.selected_stock_id = stock_id
            self._touch(USER_SLICE)
            return CommandResult.ok("Selection updated", {"selectedStockId": stock_id})

        return self._run("Select stock", command)

    # ==================== Account ====================

    def set_margin(self, leverage: Any) -> CommandResult:
        """Set the leverage used for new orders."""

        def command() -> CommandResult:
            if isinstance(leverage, bool) or not isinstance(leverage, (int, float)):
                raise ValidationError(f"Leverage must be a number, got {leverage}")
            if not 1 <= leverage <= self.max_leverage:
                raise ValidationError(f"Leverage must be 1-{self.max_leverage}x, got {leverage}")
            self.leverage = leverage
            self._touch(USER_SLICE)
            return CommandResult.ok(f"Leverage set to {leverage}x", {"margin": leverage})

        return self._run("Set margin", command)

    def reset_account(self) -> CommandResult:
        """Restore the starting balance and relist every stock at its initial state."""
        self.balance = self.starting_balance
        self.positions.clear()
        self.orders.clear()
        self.transactions.clear()
        self.market.reset()
        self._touch(STOCKS_SLICE, USER_SLICE)
        self._notify(
            NotificationType.INFO,
            "Account Reset",
            f"Balance restored to {self.starting_balance:.2f}",
        )
        return CommandResult.ok("Account reset")

    # ==================== Orders ====================

    def create_order(
        self,
        stock_id: str,
        order_type: str,
        quantity: Any,
        execution_type: str = "market",
        limit_price: float | None = None,
        stop_price: float | None = None,
        take_profit_price: float | None = None,
        holding_id: str | None = None,
    ) -> CommandResult:
        """
        Submit an order.

        buy / sell: market orders execute now, limit orders wait. stop_price and
        take_profit_price become protective orders on the resulting holding.

        stoploss / take_profit: protect holding_id (or the stock's open holding).
        """

        def command() -> CommandResult:
            try:
                kind = OrderType(order_type)
                exec_type = ExecutionType(execution_type)
            except ValueError:
                raise ValidationError(f"Unknown order type {order_type}/{execution_type}")

            stock = self.market.get_stock(stock_id)

            if kind in (OrderType.STOPLOSS, OrderType.TAKE_PROFIT):
                return self._place_protective(stock, kind, quantity, stop_price, take_profit_price, holding_id)

            order = self.orders.new_entry_order(
                stock,
                TradeSide(kind.value),
                quantity,
                exec_type,
                limit_price=limit_price,
                stop_loss_price=stop_price,
                take_profit_price=take_profit_price,
            )
            if not isinstance(order, LimitOrder):
                self._check_supply(stock.id, order.side, order.quantity)
            self.orders.add(order)
            self._touch(USER_SLICE)

            if isinstance(order, LimitOrder):
                self._notify(
                    NotificationType.INFO,
                    "Order Placed",
                    f"Limit {order.side.value} {order.quantity} {order.symbol} @ {order.limit_price:.2f}",
                )
                return CommandResult.ok("Limit order placed", order.to_dict())

            return self._execute_entry(order, stock.current_value)

        return self._run("Create order", command)

    def cancel_order(self, order_id: str) -> CommandResult:
        def command() -> CommandResult:
            order = self.orders.cancel(order_id)
            self._touch(USER_SLICE)
            self._notify(
                NotificationType.INFO,
                "Order Cancelled",
                f"{order.order_type.value} {order.quantity} {order.symbol} cancelled",
            )
            return CommandResult.ok("Order cancelled", order.to_dict())

        return self._run("Cancel order", command)

    # ==================== Holdings ====================

    def edit_holding(
        self,
        holding_id: str,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
    ) -> CommandResult:
        def command() -> CommandResult:
            if stop_loss_price is None and take_profit_price is None:
                raise ValidationError("Provide a stop-loss or take-profit price")
            holding = self.positions.get_open(holding_id)
            placed = self._protect(holding, stop_loss_price, take_profit_price)
            self._notify(
                NotificationType.SUCCESS,
                "Holding Updated",
                f"{holding.symbol} protection: stop-loss {holding.stop_loss_price}, "
                f"take-profit {holding.take_profit_price}",
            )
            return CommandResult.ok(
                "Holding updated",
                {"holding": holding.to_dict(), "orders": [o.to_dict() for o in placed]},
            )

        return self._run("Edit holding", command)

    def close_holding(self, holding_id: str) -> CommandResult:
        """Market fill opposite to the holding for its full quantity."""

        def command() -> CommandResult:
            holding = self.positions.get_open(holding_id)
            stock = self.market.get_stock(holding.stock_id)
            side = holding.position_type.closing_side

            self._check_supply(stock.id, side, holding.quantity)
            order = self.orders.new_entry_order(stock, side, holding.quantity)
            order.holding_id = holding.id
            self.orders.add(order)
            self._touch(USER_SLICE)

            price = stock.current_value
            try:
                result = self._fill(order, side, order.quantity, price, holding.leverage)
            except TradingError:
                self.orders.mark_rejected(order)
                raise

            self._notify(
                NotificationType.SUCCESS,
                "Position Closed",
                f"Closed {holding.symbol} {holding.position_type.value} @ {price:.2f}, "
                f"realized {result.realized_pnl:+.2f}",
            )
            return CommandResult.ok("Position closed", holding.to_dict())

        return self._run("Close holding", command)

    # ==================== Market ====================

    def update_market(self, volatility: float) -> CommandResult:
        """
        One market tick.

        Args:
            volatility: Random-walk swing, 0.0 to 1.0.
        """

        def command() -> CommandResult:
            prices = self.market.tick(volatility)
            self._touch(STOCKS_SLICE)
            if self.positions.open_holdings:
                self.positions.mark_all(prices)
                self._touch(USER_SLICE)
            executed = self._evaluate_triggers(prices)
            return CommandResult.ok(
                f"Prices updated, {len(executed)} order(s) executed",
                {"prices": prices, "executedOrders": [o.id for o in executed]},
            )

        return self._run("Update market", command)

    def _evaluate_triggers(self, prices: dict[str, float]) -> list[Order]:
        """Execute every OPEN order the snapshot triggers. Returns executed orders."""
        position_types = {h.id: h.position_type for h in self.positions.open_holdings}
        executed = []

        for order in self.orders.triggered_by(prices, position_types):
            # An earlier execution in this scan may have cancelled it
            if order.status is not OrderStatus.OPEN:
                continue

            self.orders.mark_triggered(order)
            self._touch(USER_SLICE)

            try:
                if isinstance(order, EntryOrder):
                    self._execute_triggered_entry(order)
                else:
                    self._execute_protective(order)
            except TradingError as e:
                self.orders.mark_rejected(order)
                logger.warning(f"Triggered order {order.id[:8]} failed: {e.message}")
                self._notify(e.notification_type, e.title, e.message)
                continue

            if order.status is OrderStatus.EXECUTED:
                executed.append(order)

        if executed:
            logger.info(f"Executed {len(executed)} triggered order(s)")
        return executed

    def _execute_triggered_entry(self, order: EntryOrder) -> None:
        stock = self.market.get_stock(order.stock_id)
        price = execution_price(order, stock.current_value)
        self._check_balance(order.side, order.stock_id, order.quantity, price, self.leverage)
        self._fill_entry(order, price)

    def _execute_protective(self, order: Order) -> None:
        holding = self.positions.find(order.holding_id) if order.holding_id else None
        if holding is None or not holding.is_open:
            raise InvalidStateError(f"Holding for {order.symbol} is no longer open")

        stock = self.market.get_stock(order.stock_id)
        side = holding.position_type.closing_side
        quantity = min(order.quantity, holding.quantity)
        price = stock.current_value

        result = self._fill(order, side, quantity, price, holding.leverage)
        title = "Stop-Loss Triggered" if isinstance(order, StopLossOrder) else "Take-Profit Triggered"
        self._notify(
            NotificationType.SUCCESS,
            title,
            f"{side.value.capitalize()} {quantity} {order.symbol} @ {price:.2f}, "
            f"realized {result.realized_pnl:+.2f}",
        )

    # ==================== Fill path ====================

    def _execute_entry(self, order: EntryOrder, price: float) -> CommandResult:
        """Execute a PENDING market order, rejecting it on insufficient balance."""
        try:
            self._check_balance(order.side, order.stock_id, order.quantity, price, self.leverage)
        except InsufficientBalanceError as e:
            self.orders.mark_rejected(order)
            self._notify(e.notification_type, e.title, e.message)
            return CommandResult.failed(e, order.to_dict())

        try:
            result = self._fill_entry(order, price)
        except TradingError:
            self.orders.mark_rejected(order)
            raise
        return CommandResult.ok(
            f"{order.side.value.capitalize()} {order.quantity} {order.symbol} executed",
            {"order": order.to_dict(), "holding": result.holding.to_dict()},
        )

    def _fill_entry(self, order: EntryOrder, price: float) -> FillResult:
        result = self._fill(order, order.side, order.quantity, price, self.leverage)

        if result.flipped:
            self._notify(
                NotificationType.INFO,
                "Position Flipped",
                f"{order.symbol} now {result.holding.position_type.value} {result.holding.quantity} "
                f"@ {price:.2f}, realized {result.realized_pnl:+.2f}",
            )
        else:
            verb = "Bought" if order.side is TradeSide.BUY else "Sold"
            self._notify(
                NotificationType.SUCCESS,
                "Order Executed",
                f"{verb} {order.quantity} {order.symbol} @ {price:.2f}",
            )

        if result.holding.is_open and (
            order.stop_loss_price is not None or order.take_profit_price is not None
        ):
            self._protect(result.holding, order.stop_loss_price, order.take_profit_price)
        return result

    def _check_balance(
        self,
        side: TradeSide,
        stock_id: str,
        quantity: int,
        price: float,
        leverage: float,
    ) -> None:
        """
        Buys need price*qty/leverage in cash. Sells that open a short need
        margin for the opening portion.

        Raises:
            InsufficientBalanceError: If cash does not cover the requirement.
        """
        if side is TradeSide.BUY:
            required = price * quantity / leverage
        else:
            _, opening = self.positions.preview(stock_id, side, quantity)
            required = price * opening / leverage

        if self.balance < required:
            raise InsufficientBalanceError(
                f"Need {required:.2f} at {leverage}x, balance is {self.balance:.2f}"
            )

    def _check_supply(self, stock_id: str, side: TradeSide, quantity: int) -> int:
        """
        Validate the share movement a fill implies and return it.

        Buys take the opening (long) portion from the pool, sells return the
        closing portion of a long. Short exposure never touches the pool.

        Raises:
            ValidationError: If the stock's supply cannot absorb the fill.
        """
        closing, opening = self.positions.preview(stock_id, side, quantity)
        supply = opening if side is TradeSide.BUY else closing
        self.market.check_fill(stock_id, side, supply)
        return supply

    def _fill(
        self,
        order: Order,
        side: TradeSide,
        quantity: int,
        price: float,
        leverage: float,
    ) -> FillResult:
        """
        Apply one fill across market, ledgers and cash.

        Every check that can fail runs before the first mutation.
        """
        stock = self.market.get_stock(order.stock_id)
        supply = self._check_supply(stock.id, side, quantity)
        current = self.positions.open_for_stock(stock.id)
        previous_quantity = current.quantity if current else 0

        result = self.positions.apply_fill(stock.id, stock.symbol, side, quantity, price, leverage)
        self.market.apply_fill(stock.id, side, quantity, supply)
        self._settle_cash(result)

        self.transactions.record(stock.id, stock.name, side, quantity, price, leverage, order.id)
        self.orders.mark_executed(order, price, result.holding.id)
        self.positions.mark_all(self.market.prices())

        if result.closed_holding is not None:
            self.orders.cancel_all(self.orders.protective_for_holding(result.closed_holding.id))
        if current is not None and current.is_open:
            self._resize_protective(result.holding, previous_quantity)

        self._touch(STOCKS_SLICE, USER_SLICE)
        return result

    def _settle_cash(self, result: FillResult) -> None:
        self.balance += result.released_margin + result.realized_pnl - result.added_margin

    def _resize_protective(self, holding: Holding, previous_quantity: int) -> None:
        """Orders sized to the whole holding follow it; smaller ones are capped by it."""
        for order in self.orders.protective_for_holding(holding.id):
            if order.quantity >= previous_quantity:
                order.quantity = holding.quantity
            else:
                order.quantity = min(order.quantity, holding.quantity)

    def _protect(
        self,
        holding: Holding,
        stop_loss_price: float | None,
        take_profit_price: float | None,
    ) -> list[Order]:
        """Set holding levels and replace its protective orders of the same kind."""
        self.positions.set_risk_levels(holding.id, stop_loss_price, take_profit_price)

        placed = []
        for kind, level in ((StopLossOrder, stop_loss_price), (TakeProfitOrder, take_profit_price)):
            if level is None:
                continue
            self.orders.cancel_all(self.orders.protective_for_holding(holding.id, kind))
            placed.append(self.orders.add(self.orders.new_protective_order(holding, kind, level)))

        self._touch(USER_SLICE)
        return placed

    def _place_protective(
        self,
        stock: Stock,
        kind: OrderType,
        quantity: Any,
        stop_price: float | None,
        take_profit_price: float | None,
        holding_id: str | None,
    ) -> CommandResult:
        if holding_id is not None:
            holding = self.positions.get_open(holding_id)
            if holding.stock_id != stock.id:
                raise ValidationError(f"Holding {holding_id} is not a {stock.symbol} position")
        else:
            holding = self.positions.open_for_stock(stock.id)
            if holding is None:
                raise NotFoundError(f"No open {stock.symbol} position to protect")

        size = holding.quantity if quantity is None else min(validate_quantity(quantity), holding.quantity)

        if kind is OrderType.STOPLOSS:
            if stop_price is None:
                raise ValidationError("Stop-loss orders require a stop price")
            placed = self._protect(holding, stop_price, None)
        else:
            if take_profit_price is None:
                raise ValidationError("Take-profit orders require a take-profit price")
            placed = self._protect(holding, None, take_profit_price)

        order = placed[0]
        order.quantity = size

        self._notify(
            NotificationType.INFO,
            "Order Placed",
            f"{kind.value} {order.quantity} {order.symbol} armed",
        )
        return CommandResult.ok("Protective order placed", order.to_dict())

    # ==================== Notifications ====================

    def mark_notification_read(self, notification_id: str) -> CommandResult:
        def command() -> CommandResult:
            if not self.notifications.mark_read(notification_id):
                raise NotFoundError(f"Notification {notification_id} not found")
            self._touch(NOTIFICATIONS_SLICE)
            return CommandResult.ok("Notification read")

        return self._run("Mark notification", command)

    def clear_notifications(self) -> CommandResult:
        self.notifications.clear_all()
        self._touch(NOTIFICATIONS_SLICE)
        return CommandResult.ok("Notifications cleared")

    # ==================== State ====================

    def portfolio_value(self) -> float:
        """Cash plus margin in use plus unrealized P&L."""
        return self.balance + self.positions.margin_in_use() + self.positions.unrealized_pnl()

    def user_to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "margin": self.leverage,
            "selectedStockId": self.selected_stock_id,
            "holdings": self.positions.holdings_to_list(),
            "orders": self.orders.to_list(),
            "transactions": self.transactions.to_list(),
            "holdingHistory": self.positions.history_to_list(),
        }

    def export_state(self) -> dict[str, Any]:
        """Persistable state keyed by slice name."""
        return {
            STOCKS_SLICE: self.market.to_list(),
            USER_SLICE: self.user_to_dict(),
            NOTIFICATIONS_SLICE: self.notifications.to_list(),
        }

    def load_state(self, state: dict[str, Any]) -> None:
        """Restore from persisted slices. Missing slices keep their current value."""
        if state.get(STOCKS_SLICE) is not None:
            self.market.load(state[STOCKS_SLICE])

        user = state.get(USER_SLICE)
        if user is not None:
            self.balance = float(user.get("balance", self.starting_balance))
            self.leverage = user.get("margin", self.default_leverage)
            self.selected_stock_id = user.get("selectedStockId")
            self.positions.load(user.get("holdings", []), user.get("holdingHistory", []))
            self.orders.load(user.get("orders", []))
            self.transactions.load(user.get("transactions", []))

        if state.get(NOTIFICATIONS_SLICE) is not None:
            self.notifications.load(state[NOTIFICATIONS_SLICE])

        self.positions.mark_all(self.market.prices())
        self._dirty = set()
        logger.info(
            f"Loaded state: {len(self.market)} stocks, {len(self.positions.open_holdings)} open holdings, "
            f"{len(self.orders)} orders, {len(self.transactions)} transactions"
        )

    def snapshot(self) -> dict[str, Any]:
        """Read-only presentation view."""
        return {
            "stocks": self.market.to_list(),
            "selectedStockId": self.selected_stock_id,
            "user": self.user_to_dict(),
            "portfolioValue": self.portfolio_value(),
            "notifications": self.notifications.to_list(),
            "unreadCount": self.notifications.unread_count,
        }
