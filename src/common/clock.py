# === MODULE PURPOSE ===
# Time source for the trading engine.
# All records carry epoch-millisecond timestamps, matching the persisted layout.

# === KEY CONCEPTS ===
# - Wall clock by default, frozen/advanceable clock for tests and replays
# - Timestamps are integers (milliseconds since epoch)

import logging
import time

logger = logging.getLogger(__name__)


class EngineClock:
    """
    Millisecond clock used for every timestamp the engine writes.

    Usage:
        clock = EngineClock()              # follows wall time
        clock = EngineClock(start_ms=0)    # frozen at 0, advance manually

        ts = clock.now_ms()
        clock.advance(5_000)
    """

    def __init__(self, start_ms: int | None = None):
        self._frozen_ms = start_ms

    @property
    def is_frozen(self) -> bool:
        """Check if the clock is detached from wall time."""
        return self._frozen_ms is not None

    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""
        if self._frozen_ms is not None:
            return self._frozen_ms
        return int(time.time() * 1000)

    def advance(self, delta_ms: int) -> int:
        """
        Advance a frozen clock.

        Args:
            delta_ms: Milliseconds to move forward.

        Returns:
            New current time.

        Raises:
            ValueError: If the clock follows wall time or delta is negative.
        """
        if self._frozen_ms is None:
            raise ValueError("Cannot advance a wall clock")
        if delta_ms < 0:
            raise ValueError(f"Cannot go back in time: {delta_ms}ms")

        self._frozen_ms += delta_ms
        return self._frozen_ms

    def set_time(self, ms: int) -> None:
        """
        Freeze the clock at a given time.

        Use with caution - mainly for testing.
        """
        self._frozen_ms = ms
        logger.debug(f"Clock set to {ms}")
