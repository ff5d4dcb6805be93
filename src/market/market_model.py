# === MODULE PURPOSE ===
# Market model: owns every stock's price, share supply and history.
# Applies trade-driven price impact and the periodic random walk.

# === KEY CONCEPTS ===
# - Price impact: (priceEvolution / 100) * initialValue * (quantity / 100)
# - Random walk: initialValue * (rand() - 0.5) * 0.02 * volatility per tick
# - Price floor: currentValue never drops below MIN_PRICE
# - Share supply: availableShares stays within [0, totalShares]

import logging
import math
import random
import uuid
from typing import Any

from src.common.clock import EngineClock
from src.common.errors import NotFoundError, ValidationError
from src.market.models import MIN_PRICE, PricePoint, Stock, TradeSide, VolumePoint

logger = logging.getLogger(__name__)

DEFAULT_MIN_TOTAL_SHARES = 100

# Maximum random-walk step as a fraction of initial value (at volatility 1.0)
RANDOM_WALK_SCALE = 0.02


class MarketModel:
    """
    Synthetic market of independently priced stocks.

    Usage:
        market = MarketModel(clock=EngineClock(), rng=random.Random(7))
        stock = market.create_stock("TechCorp", 100.0, 1000, 10.0)

        # Trade-driven impact (buy 100 shares pushes price up by 10)
        market.apply_fill(stock.id, TradeSide.BUY, 100)

        # Periodic movement at 50% volatility
        prices = market.tick(0.5)
    """

    def __init__(
        self,
        clock: EngineClock | None = None,
        rng: random.Random | None = None,
        min_total_shares: int = DEFAULT_MIN_TOTAL_SHARES,
    ):
        self._clock = clock or EngineClock()
        self._rng = rng or random.Random()
        self._min_total_shares = min_total_shares
        self._stocks: dict[str, Stock] = {}

    def __len__(self) -> int:
        return len(self._stocks)

    def __contains__(self, stock_id: str) -> bool:
        return stock_id in self._stocks

    @property
    def stocks(self) -> list[Stock]:
        """All stocks in creation order."""
        return list(self._stocks.values())

    def find_stock(self, stock_id: str) -> Stock | None:
        return self._stocks.get(stock_id)

    def get_stock(self, stock_id: str) -> Stock:
        """
        Get a stock by ID.

        Raises:
            NotFoundError: If the stock does not exist.
        """
        stock = self._stocks.get(stock_id)
        if stock is None:
            raise NotFoundError(f"Stock {stock_id} not found")
        return stock

    def prices(self) -> dict[str, float]:
        """Snapshot of current prices keyed by stock ID."""
        return {stock_id: s.current_value for stock_id, s in self._stocks.items()}

    def create_stock(
        self,
        name: str,
        initial_value: float,
        total_shares: int,
        price_evolution: float,
    ) -> Stock:
        """
        Create and list a new stock.

        Args:
            name: Display name (symbol derives from it).
            initial_value: Reference price, must be positive.
            total_shares: Share supply, at least the configured minimum.
            price_evolution: Percent impact per 100 shares, must be positive.

        Returns:
            The new stock with a single history point.

        Raises:
            ValidationError: On any violated constraint.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Stock name cannot be empty")
        if initial_value is None or not math.isfinite(initial_value) or initial_value <= 0:
            raise ValidationError(f"Initial value must be positive, got {initial_value}")
        if total_shares is None or int(total_shares) != total_shares:
            raise ValidationError(f"Total shares must be a whole number, got {total_shares}")
        if total_shares < self._min_total_shares:
            raise ValidationError(
                f"Total shares must be at least {self._min_total_shares}, got {total_shares}"
            )
        if price_evolution is None or not math.isfinite(price_evolution) or price_evolution <= 0:
            raise ValidationError(f"Price evolution must be positive, got {price_evolution}")

        stock = Stock(
            id=str(uuid.uuid4()),
            name=name,
            initial_value=float(initial_value),
            current_value=float(initial_value),
            total_shares=int(total_shares),
            available_shares=int(total_shares),
            price_evolution=float(price_evolution),
            history=[PricePoint(timestamp=self._clock.now_ms(), price=float(initial_value))],
        )
        self._stocks[stock.id] = stock

        logger.info(
            f"Created stock {stock.name} ({stock.symbol}): {stock.total_shares} shares "
            f"@ {stock.initial_value:.2f}, evolution {stock.price_evolution}%"
        )
        return stock

    def price_impact(self, stock: Stock, quantity: int) -> float:
        """Absolute price move caused by trading `quantity` shares."""
        return (stock.price_evolution / 100) * stock.initial_value * (quantity / 100)

    def check_fill(self, stock_id: str, side: TradeSide, supply_quantity: int) -> Stock:
        """
        Validate that a fill fits the stock's share supply.

        Args:
            stock_id: Stock being traded.
            side: Fill direction.
            supply_quantity: Shares moving between the pool and the user's
                long position (taken on buy, returned on sell).

        Returns:
            The stock.

        Raises:
            NotFoundError: If the stock does not exist.
            ValidationError: If supply would leave [0, totalShares].
        """
        stock = self.get_stock(stock_id)

        if supply_quantity < 0:
            raise ValidationError(f"Supply quantity cannot be negative, got {supply_quantity}")

        if side is TradeSide.BUY and supply_quantity > stock.available_shares:
            raise ValidationError(
                f"Only {stock.available_shares} shares of {stock.symbol} available, "
                f"requested {supply_quantity}"
            )
        if side is TradeSide.SELL and stock.available_shares + supply_quantity > stock.total_shares:
            raise ValidationError(
                f"Returning {supply_quantity} shares would exceed {stock.symbol} "
                f"supply of {stock.total_shares}"
            )
        return stock

    def apply_fill(
        self,
        stock_id: str,
        side: TradeSide,
        quantity: int,
        supply_quantity: int | None = None,
    ) -> float:
        """
        Apply a fill's price impact and supply change.

        Args:
            stock_id: Stock being traded.
            side: Fill direction.
            quantity: Traded shares (drives impact and volume).
            supply_quantity: Shares moving in/out of the pool.
                Defaults to `quantity`.

        Returns:
            New current price.

        Raises:
            NotFoundError: If the stock does not exist.
            ValidationError: On invalid quantity or supply violation.
        """
        if quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {quantity}")
        if supply_quantity is None:
            supply_quantity = quantity

        stock = self.check_fill(stock_id, side, supply_quantity)
        impact = self.price_impact(stock, quantity)
        old_price = stock.current_value

        if side is TradeSide.BUY:
            new_price = old_price + impact
            stock.available_shares -= supply_quantity
        else:
            new_price = old_price - impact
            stock.available_shares += supply_quantity

        stock.current_value = max(new_price, MIN_PRICE)

        ts = self._next_timestamp(stock)
        stock.history.append(PricePoint(timestamp=ts, price=stock.current_value))
        stock.volume.append(VolumePoint(timestamp=ts, volume=quantity, type=side))

        logger.debug(
            f"{stock.symbol} {side.value} {quantity}: {old_price:.2f} -> {stock.current_value:.2f}"
        )
        return stock.current_value

    def tick(self, volatility: float) -> dict[str, float]:
        """
        Move every stock one random-walk step.

        Args:
            volatility: 0.0 (frozen) to 1.0 (maximum swing).

        Returns:
            New prices keyed by stock ID.

        Raises:
            ValidationError: If volatility is outside [0, 1].
        """
        if not 0.0 <= volatility <= 1.0:
            raise ValidationError(f"Volatility must be within [0, 1], got {volatility}")

        for stock in self._stocks.values():
            step = stock.initial_value * (self._rng.random() - 0.5) * RANDOM_WALK_SCALE * volatility
            stock.current_value = max(stock.current_value + step, MIN_PRICE)
            stock.history.append(
                PricePoint(timestamp=self._next_timestamp(stock), price=stock.current_value)
            )

        logger.debug(f"Market tick at volatility {volatility:.2f} over {len(self._stocks)} stocks")
        return self.prices()

    def remove_stock(self, stock_id: str) -> Stock:
        """
        Delist a stock.

        Callers cascade orders and holdings first.

        Raises:
            NotFoundError: If the stock does not exist.
        """
        stock = self.get_stock(stock_id)
        del self._stocks[stock_id]
        logger.info(f"Removed stock {stock.name} ({stock.symbol})")
        return stock

    def reset(self) -> None:
        """Return every stock to its listing state."""
        now = self._clock.now_ms()
        for stock in self._stocks.values():
            stock.current_value = stock.initial_value
            stock.available_shares = stock.total_shares
            stock.history = [PricePoint(timestamp=now, price=stock.initial_value)]
            stock.volume = []
        logger.info(f"Reset {len(self._stocks)} stocks to initial values")

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize all stocks."""
        return [s.to_dict() for s in self._stocks.values()]

    def load(self, data: list[dict[str, Any]]) -> None:
        """Replace all stocks with persisted ones."""
        self._stocks = {}
        for item in data:
            stock = Stock.from_dict(item)
            self._stocks[stock.id] = stock

    def _next_timestamp(self, stock: Stock) -> int:
        """Current time, bumped so the stock's series stays strictly increasing."""
        return max(self._clock.now_ms(), stock.last_timestamp + 1)
