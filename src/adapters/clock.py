"""Clock — источники времени (unix sec)."""

import time


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Управляемое время для тестов и симуляции."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Clock cannot go backwards: {seconds}")
        self._now += seconds
        return self._now

    def set(self, ts: int) -> None:
        if ts < self._now:
            raise ValueError(f"Clock cannot go backwards: {ts} < {self._now}")
        self._now = ts
