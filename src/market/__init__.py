# === MODULE PURPOSE ===
# Synthetic market: stocks, price impact, random-walk ticks and settings.

from src.market.market_model import MarketModel
from src.market.models import MIN_PRICE, PricePoint, Stock, TradeSide, VolumePoint
from src.market.settings import MarketSettings

__all__ = [
    "MIN_PRICE",
    "MarketModel",
    "MarketSettings",
    "PricePoint",
    "Stock",
    "TradeSide",
    "VolumePoint",
]
