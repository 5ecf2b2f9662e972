from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional

from .models import Signal


class SignalHistory:
    """Newest-first display window of accepted signals."""

    def __init__(self, maxlen: int = 15) -> None:
        self.maxlen = max(1, int(maxlen))
        self._items: Deque[Signal] = deque(maxlen=self.maxlen)

    def add(self, sig: Signal) -> None:
        # appendleft on a bounded deque evicts from the right (oldest)
        self._items.appendleft(sig)

    def extend_oldest(self, signals: Iterable[Signal]) -> None:
        """Append already newest-first signals behind the current ones."""
        for sig in signals:
            if len(self._items) >= self.maxlen:
                break
            self._items.append(sig)

    def latest(self) -> Optional[Signal]:
        return self._items[0] if self._items else None

    def to_list(self) -> List[Signal]:
        return list(self._items)

    def __iter__(self) -> Iterator[Signal]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
