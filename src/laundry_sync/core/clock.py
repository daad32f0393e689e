"""Time sources for status derivation and event stamping."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Supplies the current instant to every time-dependent component."""

    def now(self) -> int:
        """Return the current time as whole epoch seconds."""
        ...

    def now_ms(self) -> int:
        """Return the current time as epoch milliseconds."""
        ...


class SystemClock:
    """Wall-clock time source backed by ``time.time``."""

    def now(self) -> int:
        return int(time.time())

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


system_clock = SystemClock()
