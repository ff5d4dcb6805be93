# === MODULE PURPOSE ===
# Append-only record of executed fills.

import logging
import uuid
from typing import Any

from src.common.clock import EngineClock
from src.market.models import TradeSide
from src.trading.models import Transaction

logger = logging.getLogger(__name__)


class TransactionLedger:
    """Executed fills, oldest first. Entries are never edited or removed individually."""

    def __init__(self, clock: EngineClock | None = None):
        self._clock = clock or EngineClock()
        self._transactions: list[Transaction] = []

    def __len__(self) -> int:
        return len(self._transactions)

    @property
    def transactions(self) -> list[Transaction]:
        return list(self._transactions)

    def record(
        self,
        stock_id: str,
        stock_name: str,
        side: TradeSide,
        quantity: int,
        price: float,
        margin: float,
        order_id: str | None = None,
    ) -> Transaction:
        """Append one fill."""
        transaction = Transaction(
            id=str(uuid.uuid4()),
            stock_id=stock_id,
            stock_name=stock_name,
            type=side,
            quantity=quantity,
            price=price,
            margin=margin,
            timestamp=self._clock.now_ms(),
            order_id=order_id,
        )
        self._transactions.append(transaction)
        logger.debug(f"Recorded {side.value} {quantity} {stock_name} @ {price:.2f}")
        return transaction

    def for_stock(self, stock_id: str) -> list[Transaction]:
        return [t for t in self._transactions if t.stock_id == stock_id]

    def clear(self) -> None:
        """Drop the whole ledger (account reset only)."""
        self._transactions = []

    def to_list(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._transactions]

    def load(self, data: list[dict[str, Any]]) -> None:
        self._transactions = [Transaction.from_dict(d) for d in data]
