from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, List, Optional

from .models import Bar


class BarBuffer:
    """Rolling chart buffer of time-ascending bars, capped at `max_bars`."""

    def __init__(self, max_bars: int = 1000) -> None:
        self.max_bars = max(2, int(max_bars))
        self._bars: Deque[Bar] = deque(maxlen=self.max_bars)

    def merge(self, bars: Iterable[Bar]) -> int:
        """Merge freshly fetched bars. Returns how many new bars were appended.

        Newer bars are appended, a bar with the same timestamp as the last one
        replaces it (the exchange keeps updating the in-progress candle) and
        anything older is ignored.
        """
        appended = 0
        for b in bars:
            last = self.last_time_ms
            if last is None or b.time_ms > last:
                self._bars.append(b)
                appended += 1
            elif b.time_ms == last:
                self._bars[-1] = b
        return appended

    def bars(self) -> List[Bar]:
        return list(self._bars)

    def clear(self) -> None:
        self._bars.clear()

    @property
    def last_time_ms(self) -> Optional[int]:
        return self._bars[-1].time_ms if self._bars else None

    def __len__(self) -> int:
        return len(self._bars)
