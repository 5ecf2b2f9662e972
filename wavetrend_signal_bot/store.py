from __future__ import annotations

import json
import logging
import os
from collections import deque
from typing import Deque, List, Optional

from .models import Signal

log = logging.getLogger("store")

TAIL_CHUNK = 4096


def is_same_signal(a: Optional[Signal], b: Signal) -> bool:
    """Store-side duplicate rule: same type and level as the last persisted signal."""
    return a is not None and a.type == b.type and a.level == b.level


class MemorySignalStore:
    def __init__(self, max_items: int = 1000) -> None:
        self._items: Deque[Signal] = deque(maxlen=max(1, int(max_items)))

    def save(self, sig: Signal) -> bool:
        last = self._items[-1] if self._items else None
        if is_same_signal(last, sig):
            log.info("store_skip_duplicate type=%s level=%s time=%s", sig.type, sig.level, sig.time_ms)
            return False
        self._items.append(sig)
        return True

    def recent(self, n: int) -> List[Signal]:
        if n <= 0:
            return []
        items = list(self._items)
        return list(reversed(items[-n:]))


class JsonlSignalStore:
    """Append-only JSON-lines file, one signal per line, oldest first."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _last_signal(self) -> Optional[Signal]:
        """Newest parseable signal, read backwards from the end of the file."""
        if not os.path.exists(self.path):
            return None
        with open(self.path, "rb") as f:
            f.seek(0, os.SEEK_END)
            pos = f.tell()
            carry = b""
            while pos > 0:
                step = min(TAIL_CHUNK, pos)
                pos -= step
                f.seek(pos)
                lines = (f.read(step) + carry).split(b"\n")
                # the first piece may be cut mid-line until we reach the start of the file
                carry = lines.pop(0) if pos > 0 else b""
                for raw in reversed(lines):
                    raw = raw.strip()
                    if not raw:
                        continue
                    try:
                        return Signal.from_dict(json.loads(raw.decode("utf-8")))
                    except (ValueError, KeyError, TypeError) as e:
                        log.warning("store_bad_line path=%s err=%s", self.path, e)
        return None

    def _read_all(self) -> List[Signal]:
        if not os.path.exists(self.path):
            return []
        out: List[Signal] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(Signal.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    log.warning("store_bad_line path=%s line=%d err=%s", self.path, lineno, e)
        return out

    def recent(self, n: int) -> List[Signal]:
        if n <= 0:
            return []
        try:
            items = self._read_all()
        except OSError as e:
            log.warning("store_read_failed path=%s err=%s", self.path, e)
            return []
        return list(reversed(items[-n:]))

    def save(self, sig: Signal) -> bool:
        try:
            if is_same_signal(self._last_signal(), sig):
                log.info("store_skip_duplicate type=%s level=%s time=%s", sig.type, sig.level, sig.time_ms)
                return False
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(sig.to_dict(), sort_keys=True, separators=(",", ":")) + "\n")
            return True
        except OSError as e:
            log.warning("store_write_failed path=%s err=%s", self.path, e)
            return False
