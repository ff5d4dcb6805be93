# === MODULE PURPOSE ===
# Market update settings consumed by the tick driver.
# Persisted as the "marketSettings" slice.

from dataclasses import dataclass
from typing import Any

from src.common.config import Config
from src.common.errors import ValidationError

MIN_UPDATE_INTERVAL = 1
MAX_UPDATE_INTERVAL = 30


@dataclass
class MarketSettings:
    """
    Tick driver parameters.

    Fields:
        update_interval: Seconds between ticks (1..30)
        auto_update: Whether the driver ticks on its own
        volatility: Swing level in percent (0..100)
    """

    update_interval: int = 5
    auto_update: bool = True
    volatility: float = 50.0

    def validate(self) -> None:
        """
        Check ranges.

        Raises:
            ValidationError: If interval or volatility is out of range.
        """
        if not MIN_UPDATE_INTERVAL <= self.update_interval <= MAX_UPDATE_INTERVAL:
            raise ValidationError(
                f"Update interval must be {MIN_UPDATE_INTERVAL}-{MAX_UPDATE_INTERVAL} seconds, "
                f"got {self.update_interval}"
            )
        if not 0 <= self.volatility <= 100:
            raise ValidationError(f"Volatility must be 0-100%, got {self.volatility}")

    @property
    def volatility_fraction(self) -> float:
        """Volatility scaled to 0..1 for MarketModel.tick()."""
        return self.volatility / 100

    @property
    def speed_label(self) -> str:
        if self.update_interval <= 5:
            return "Fast"
        if self.update_interval <= 15:
            return "Medium"
        return "Slow"

    @property
    def volatility_label(self) -> str:
        if self.volatility <= 25:
            return "Conservative"
        if self.volatility <= 75:
            return "Moderate"
        return "Aggressive"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "updateInterval": self.update_interval,
            "autoUpdate": self.auto_update,
            "volatility": self.volatility,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketSettings":
        """
        Create from persisted dictionary.

        Missing values fall back to defaults.
        """
        defaults = cls()
        interval = data.get("updateInterval")
        volatility = data.get("volatility")
        settings = cls(
            update_interval=int(interval) if interval is not None else defaults.update_interval,
            auto_update=data.get("autoUpdate") is not False,
            volatility=float(volatility) if volatility is not None else defaults.volatility,
        )
        settings.validate()
        return settings

    @classmethod
    def from_config(cls, config: Config) -> "MarketSettings":
        """Build defaults from the `market.*` config section."""
        settings = cls(
            update_interval=config.get_int("market.update_interval", 5),
            auto_update=config.get_bool("market.auto_update", True),
            volatility=config.get_float("market.volatility", 50.0),
        )
        settings.validate()
        return settings
