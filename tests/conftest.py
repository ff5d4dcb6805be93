# === MODULE PURPOSE ===
# Pytest configuration and shared fixtures for tests.

import random

import pytest

from src.common.clock import EngineClock
from src.common.config import Config
from src.trading.engine import TradingEngine

START_MS = 1_700_000_000_000


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for pytest-asyncio."""
    return "asyncio"


@pytest.fixture
def clock() -> EngineClock:
    """Frozen clock at a fixed instant."""
    return EngineClock(start_ms=START_MS)


@pytest.fixture
def config() -> Config:
    """Roomy account, no seeded stocks."""
    return Config.from_dict(
        {
            "trading": {
                "starting_balance": 100_000.0,
                "seed_default_stocks": False,
            },
            "persistence": {"backend": "memory"},
        }
    )


@pytest.fixture
def engine(config: Config, clock: EngineClock) -> TradingEngine:
    return TradingEngine(config, clock=clock, rng=random.Random(42))


@pytest.fixture
def stock(engine: TradingEngine):
    """Stock with impact 10 per 100 shares at price 100."""
    result = engine.create_stock("TechCorp", 100.0, 1000, 10.0)
    return engine.market.get_stock(result.data["id"])
