# === MODULE PURPOSE ===
# Data models for positions, orders and fills.
# Field names in to_dict() match the persisted JSON layout.

# === KEY CONCEPTS ===
# - Holding: net exposure to one stock (long or short), open or closed
# - HoldingHistory: immutable archive record of a closed holding
# - Order variants: MarketOrder, LimitOrder, StopLossOrder, TakeProfitOrder
# - Order state machine:
#     PENDING -> EXECUTED | CANCELLED
#     OPEN -> TRIGGERED -> EXECUTED
#     OPEN | TRIGGERED -> CANCELLED
# - Transaction: one executed fill, append-only

from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.common.errors import InvalidStateError, ValidationError
from src.market.models import TradeSide


class PositionType(str, Enum):
    """Direction of a holding."""

    LONG = "long"
    SHORT = "short"

    @classmethod
    def for_side(cls, side: TradeSide) -> "PositionType":
        """Position opened by a fill on `side`."""
        return cls.LONG if side is TradeSide.BUY else cls.SHORT

    @property
    def closing_side(self) -> TradeSide:
        """Fill side that reduces this position."""
        return TradeSide.SELL if self is PositionType.LONG else TradeSide.BUY


class HoldingStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class OrderType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    STOPLOSS = "stoploss"
    TAKE_PROFIT = "take_profit"


class ExecutionType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """Order lifecycle state."""

    PENDING = "pending"  # Submitted, about to execute
    OPEN = "open"  # Waiting for a trigger
    TRIGGERED = "triggered"  # Trigger matched, executing
    EXECUTED = "executed"  # Filled (terminal)
    CANCELLED = "cancelled"  # Cancelled or rejected (terminal)


ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.EXECUTED, OrderStatus.CANCELLED},
    OrderStatus.OPEN: {OrderStatus.TRIGGERED, OrderStatus.CANCELLED},
    OrderStatus.TRIGGERED: {OrderStatus.EXECUTED, OrderStatus.CANCELLED},
    OrderStatus.EXECUTED: set(),
    OrderStatus.CANCELLED: set(),
}


def _opt_float(value: Any) -> float | None:
    return float(value) if value is not None else None


@dataclass
class Holding:
    """
    Net position in one stock.

    quantity is always positive; direction lives in position_type.
    At most one open holding exists per stock.
    """

    id: str
    stock_id: str
    symbol: str
    position_type: PositionType
    quantity: int
    average_entry_price: float
    leverage: float
    margin_used: float
    created_at: int
    updated_at: int
    status: HoldingStatus = HoldingStatus.OPEN
    average_exit_price: float | None = None
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    stop_loss_price: float | None = None
    take_profit_price: float | None = None
    closed_at: int | None = None
    exited_quantity: int = 0

    @property
    def is_open(self) -> bool:
        return self.status is HoldingStatus.OPEN

    def pnl_at(self, price: float) -> float:
        """Mark-to-market P&L of the full quantity at `price`."""
        if self.position_type is PositionType.LONG:
            return (price - self.average_entry_price) * self.quantity
        return (self.average_entry_price - price) * self.quantity

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "stockId": self.stock_id,
            "symbol": self.symbol,
            "status": self.status.value,
            "positionType": self.position_type.value,
            "quantity": self.quantity,
            "averageEntryPrice": self.average_entry_price,
            "averageExitPrice": self.average_exit_price,
            "unrealizedPnL": self.unrealized_pnl,
            "realizedPnL": self.realized_pnl,
            "stopLossPrice": self.stop_loss_price,
            "takeProfitPrice": self.take_profit_price,
            "leverage": self.leverage,
            "marginUsed": self.margin_used,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "closedAt": self.closed_at,
            "exitedQuantity": self.exited_quantity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Holding":
        """Create from dictionary (accepts the legacy holdingType key)."""
        return cls(
            id=data["id"],
            stock_id=data["stockId"],
            symbol=data.get("symbol", ""),
            status=HoldingStatus(data.get("status", "open")),
            position_type=PositionType(data.get("positionType") or data.get("holdingType")),
            quantity=int(data["quantity"]),
            average_entry_price=float(data["averageEntryPrice"]),
            average_exit_price=_opt_float(data.get("averageExitPrice")),
            unrealized_pnl=float(data.get("unrealizedPnL", 0.0)),
            realized_pnl=float(data.get("realizedPnL", 0.0)),
            stop_loss_price=_opt_float(data.get("stopLossPrice")),
            take_profit_price=_opt_float(data.get("takeProfitPrice")),
            leverage=float(data.get("leverage", 1)),
            margin_used=float(data.get("marginUsed", 0.0)),
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", 0)),
            closed_at=data.get("closedAt"),
            exited_quantity=int(data.get("exitedQuantity", 0)),
        )


@dataclass(frozen=True)
class HoldingHistory:
    """Archive record written when a holding closes."""

    holding_id: str
    stock_id: str
    symbol: str
    position_type: PositionType
    quantity: int
    average_entry_price: float
    average_exit_price: float
    realized_pnl: float
    leverage: float
    margin_used: float
    created_at: int
    closed_at: int

    @classmethod
    def from_holding(cls, holding: Holding, closed_quantity: int) -> "HoldingHistory":
        return cls(
            holding_id=holding.id,
            stock_id=holding.stock_id,
            symbol=holding.symbol,
            position_type=holding.position_type,
            quantity=closed_quantity,
            average_entry_price=holding.average_entry_price,
            average_exit_price=holding.average_exit_price or 0.0,
            realized_pnl=holding.realized_pnl,
            leverage=holding.leverage,
            margin_used=holding.margin_used,
            created_at=holding.created_at,
            closed_at=holding.closed_at or holding.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "holdingId": self.holding_id,
            "stockId": self.stock_id,
            "symbol": self.symbol,
            "holdingType": self.position_type.value,
            "quantity": self.quantity,
            "averageEntryPrice": self.average_entry_price,
            "averageExitPrice": self.average_exit_price,
            "realizedPnL": self.realized_pnl,
            "leverage": self.leverage,
            "marginUsed": self.margin_used,
            "createdAt": self.created_at,
            "closedAt": self.closed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HoldingHistory":
        return cls(
            holding_id=data["holdingId"],
            stock_id=data["stockId"],
            symbol=data.get("symbol", ""),
            position_type=PositionType(data.get("holdingType") or data.get("positionType")),
            quantity=int(data["quantity"]),
            average_entry_price=float(data["averageEntryPrice"]),
            average_exit_price=float(data["averageExitPrice"]),
            realized_pnl=float(data["realizedPnL"]),
            leverage=float(data.get("leverage", 1)),
            margin_used=float(data.get("marginUsed", 0.0)),
            created_at=int(data.get("createdAt", 0)),
            closed_at=int(data.get("closedAt", 0)),
        )


# ==================== Orders ====================


@dataclass(kw_only=True)
class Order:
    """
    Fields shared by every order variant.

    Use one of the concrete variants; each carries only its own price fields.
    """

    id: str
    stock_id: str
    symbol: str
    quantity: int
    created_at: int
    updated_at: int
    status: OrderStatus = OrderStatus.PENDING
    executed_at: int | None = None
    executed_price: float | None = None
    holding_id: str | None = None

    @property
    def order_type(self) -> OrderType:
        raise NotImplementedError

    @property
    def execution_type(self) -> ExecutionType:
        return ExecutionType.MARKET

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self.status]

    @property
    def is_active(self) -> bool:
        """Pending or open (cancellable)."""
        return self.status in (OrderStatus.PENDING, OrderStatus.OPEN)

    def transition(self, new_status: OrderStatus, now: int) -> None:
        """
        Move to a new state.

        Raises:
            InvalidStateError: If the transition is not allowed.
        """
        if new_status not in ORDER_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Order {self.id} cannot go from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.updated_at = now

    def _variant_fields(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "stockId": self.stock_id,
            "symbol": self.symbol,
            "orderType": self.order_type.value,
            "executionType": self.execution_type.value,
            "status": self.status.value,
            "quantity": self.quantity,
            **self._variant_fields(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "executedAt": self.executed_at,
            "executedPrice": self.executed_price,
            "holdingId": self.holding_id,
        }


@dataclass(kw_only=True)
class EntryOrder(Order):
    """Buy or sell order, optionally carrying protective levels to attach on fill."""

    side: TradeSide
    stop_loss_price: float | None = None
    take_profit_price: float | None = None

    @property
    def order_type(self) -> OrderType:
        return OrderType(self.side.value)

    def _variant_fields(self) -> dict[str, Any]:
        return {
            "stopLossPrice": self.stop_loss_price,
            "takeProfitPrice": self.take_profit_price,
        }


@dataclass(kw_only=True)
class MarketOrder(EntryOrder):
    """Executes immediately at the current price."""


@dataclass(kw_only=True)
class LimitOrder(EntryOrder):
    """Waits until the price reaches limit_price, then fills at limit_price."""

    limit_price: float

    @property
    def execution_type(self) -> ExecutionType:
        return ExecutionType.LIMIT

    def _variant_fields(self) -> dict[str, Any]:
        return {"limitPrice": self.limit_price, **super()._variant_fields()}


@dataclass(kw_only=True)
class StopLossOrder(Order):
    """Closes the protected holding when price moves against it past stop_price."""

    stop_price: float

    @property
    def order_type(self) -> OrderType:
        return OrderType.STOPLOSS

    def _variant_fields(self) -> dict[str, Any]:
        return {"stopPrice": self.stop_price}


@dataclass(kw_only=True)
class TakeProfitOrder(Order):
    """Closes the protected holding when price moves favorably past take_profit_price."""

    take_profit_price: float

    @property
    def order_type(self) -> OrderType:
        return OrderType.TAKE_PROFIT

    def _variant_fields(self) -> dict[str, Any]:
        return {"takeProfitPrice": self.take_profit_price}


def order_from_dict(data: dict[str, Any]) -> Order:
    """
    Rebuild the right order variant from its persisted form.

    Raises:
        ValidationError: On an unknown orderType/executionType combination.
    """
    common = {
        "id": data["id"],
        "stock_id": data["stockId"],
        "symbol": data.get("symbol", ""),
        "quantity": int(data["quantity"]),
        "status": OrderStatus(data.get("status", "pending")),
        "created_at": int(data.get("createdAt", 0)),
        "updated_at": int(data.get("updatedAt", 0)),
        "executed_at": data.get("executedAt"),
        "executed_price": _opt_float(data.get("executedPrice")),
        "holding_id": data.get("holdingId"),
    }

    match (data.get("orderType"), data.get("executionType", "market")):
        case ("buy" | "sell") as side, "market":
            return MarketOrder(
                side=TradeSide(side),
                stop_loss_price=_opt_float(data.get("stopLossPrice")),
                take_profit_price=_opt_float(data.get("takeProfitPrice")),
                **common,
            )
        case ("buy" | "sell") as side, "limit":
            return LimitOrder(
                side=TradeSide(side),
                limit_price=float(data["limitPrice"]),
                stop_loss_price=_opt_float(data.get("stopLossPrice")),
                take_profit_price=_opt_float(data.get("takeProfitPrice")),
                **common,
            )
        case "stoploss", _:
            return StopLossOrder(stop_price=float(data["stopPrice"]), **common)
        case "take_profit", _:
            return TakeProfitOrder(take_profit_price=float(data["takeProfitPrice"]), **common)
        case other:
            raise ValidationError(f"Unknown order kind: {other}")


# ==================== Transactions ====================


@dataclass(frozen=True)
class Transaction:
    """One executed fill."""

    id: str
    stock_id: str
    stock_name: str
    type: TradeSide
    quantity: int
    price: float
    margin: float
    timestamp: int
    order_id: str | None = None

    @property
    def total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "stockId": self.stock_id,
            "stockName": self.stock_name,
            "type": self.type.value,
            "quantity": self.quantity,
            "price": self.price,
            "margin": self.margin,
            "timestamp": self.timestamp,
            "total": self.total,
            "orderId": self.order_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Transaction":
        return cls(
            id=data["id"],
            stock_id=data["stockId"],
            stock_name=data.get("stockName", ""),
            type=TradeSide(data["type"]),
            quantity=int(data["quantity"]),
            price=float(data["price"]),
            margin=float(data.get("margin", 1)),
            timestamp=int(data["timestamp"]),
            order_id=data.get("orderId"),
        )


@dataclass
class FillResult:
    """Outcome of applying one fill to the position ledger."""

    holding: Holding
    realized_pnl: float = 0.0
    closed_quantity: int = 0
    opened_quantity: int = 0
    released_margin: float = 0.0
    added_margin: float = 0.0
    closed_holding: Holding | None = None
    flipped: bool = False
