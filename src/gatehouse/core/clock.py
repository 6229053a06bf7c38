"""Wall-clock abstraction shared by every time-dependent service."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Source of the current time as epoch seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    """Clock backed by the host's real-time clock."""

    def now(self) -> float:
        return time.time()


system_clock = SystemClock()
