# === MODULE PURPOSE ===
# Trading module: order lifecycle, position management and P&L tracking
# for the simulated market.

# === KEY CONCEPTS ===
# - TradingEngine: single state object, commands in, notifications out
# - PositionLedger: holdings, fills, realized/unrealized P&L
# - OrderBook: order records and trigger evaluation
# - TransactionLedger: append-only fill record
# - TradingService: async single-writer facade with slice persistence

# === PERSISTENCE ===
# Slices (stocks, user, notifications, marketSettings) go to a JSON file,
# PostgreSQL (JSONB rows) or memory, see repository.py.

from src.trading.engine import CommandResult, TradingEngine
from src.trading.models import (
    Holding,
    HoldingHistory,
    LimitOrder,
    MarketOrder,
    Order,
    OrderStatus,
    OrderType,
    PositionType,
    StopLossOrder,
    TakeProfitOrder,
    Transaction,
)
from src.trading.repository import (
    JsonFileStateStore,
    MemoryStateStore,
    PostgresStateStore,
    PostgresStoreConfig,
    StateStore,
    create_state_store_from_config,
)
from src.trading.service import TradingService

__all__ = [
    # Engine
    "TradingEngine",
    "TradingService",
    "CommandResult",
    # Models
    "Holding",
    "HoldingHistory",
    "Order",
    "MarketOrder",
    "LimitOrder",
    "StopLossOrder",
    "TakeProfitOrder",
    "OrderStatus",
    "OrderType",
    "PositionType",
    "Transaction",
    # Persistence
    "StateStore",
    "JsonFileStateStore",
    "MemoryStateStore",
    "PostgresStateStore",
    "PostgresStoreConfig",
    "create_state_store_from_config",
]
