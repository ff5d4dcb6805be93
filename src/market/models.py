# === MODULE PURPOSE ===
# Data models for the synthetic market.
# Stocks carry their own price history and traded volume.

# === KEY CONCEPTS ===
# - Stock: price, share supply, elasticity (priceEvolution), history
# - PricePoint / VolumePoint: append-only series with increasing timestamps
# - TradeSide: direction of a fill against the market

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MIN_PRICE = 0.01


class TradeSide(str, Enum):
    """Direction of a fill."""

    BUY = "buy"
    SELL = "sell"


@dataclass
class PricePoint:
    timestamp: int
    price: float

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "price": self.price}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricePoint":
        return cls(timestamp=int(data["timestamp"]), price=float(data["price"]))


@dataclass
class VolumePoint:
    timestamp: int
    volume: int
    type: TradeSide

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "volume": self.volume, "type": self.type.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VolumePoint":
        return cls(
            timestamp=int(data["timestamp"]),
            volume=int(data["volume"]),
            type=TradeSide(data["type"]),
        )


@dataclass
class Stock:
    """
    A synthetic stock.

    priceEvolution is the percent price impact per 100 shares traded,
    relative to initial_value. Larger values mean thinner liquidity.

    available_shares counts shares not held long by the user.
    """

    id: str
    name: str
    initial_value: float
    current_value: float
    total_shares: int
    available_shares: int
    price_evolution: float
    history: list[PricePoint] = field(default_factory=list)
    volume: list[VolumePoint] = field(default_factory=list)

    @property
    def symbol(self) -> str:
        """Ticker symbol: first four letters of the name, upper-cased."""
        return self.name.upper()[:4]

    @property
    def last_timestamp(self) -> int:
        """Timestamp of the latest history point (0 if none)."""
        return self.history[-1].timestamp if self.history else 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "initialValue": self.initial_value,
            "currentValue": self.current_value,
            "totalShares": self.total_shares,
            "availableShares": self.available_shares,
            "priceEvolution": self.price_evolution,
            "history": [p.to_dict() for p in self.history],
            "volume": [v.to_dict() for v in self.volume],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Stock":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            initial_value=float(data["initialValue"]),
            current_value=float(data.get("currentValue", data["initialValue"])),
            total_shares=int(data["totalShares"]),
            available_shares=int(data.get("availableShares", data["totalShares"])),
            price_evolution=float(data["priceEvolution"]),
            history=[PricePoint.from_dict(p) for p in data.get("history", [])],
            volume=[VolumePoint.from_dict(v) for v in data.get("volume", [])],
        )
