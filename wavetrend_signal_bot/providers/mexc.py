from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from ..models import Bar

log = logging.getLogger("mexc")

REST_BASE = "https://contract.mexc.com"

# Bybit-style interval -> (MEXC interval name, seconds per bar)
_INTERVALS = {
    "1": ("Min1", 60),
    "5": ("Min5", 300),
    "15": ("Min15", 900),
    "30": ("Min30", 1800),
    "60": ("Min60", 3600),
    "240": ("Hour4", 14400),
    "480": ("Hour8", 28800),
    "D": ("Day1", 86400),
}


def mexc_symbol(symbol: str) -> str:
    s = symbol.upper()
    if "_" in s:
        return s
    for quote in ("USDT", "USDC", "USD"):
        if s.endswith(quote) and len(s) > len(quote):
            return f"{s[:-len(quote)]}_{quote}"
    return s


def mexc_interval(interval: str) -> tuple:
    key = str(interval).strip().upper()
    if key not in _INTERVALS:
        raise ValueError(f"Unsupported interval for MEXC: {interval}")
    return _INTERVALS[key]


def parse_mexc_klines(payload: Dict[str, Any]) -> List[Bar]:
    """MEXC returns column arrays (time in seconds) oldest first."""
    if not isinstance(payload, dict):
        raise RuntimeError("Invalid data from MEXC API: payload is not an object")
    data = payload.get("data") or {}
    if payload.get("code") != 0 or not data.get("time"):
        raise RuntimeError(f"Invalid data from MEXC API: {payload.get('msg') or 'Incomplete data returned'}")

    cols = [data.get(k) for k in ("time", "open", "high", "low", "close")]
    if any(not isinstance(c, list) for c in cols):
        raise RuntimeError("Invalid data from MEXC API: missing price columns")
    vol = data.get("vol") or []
    if not isinstance(vol, list):
        raise RuntimeError("Invalid data from MEXC API: vol is not a list")

    n = min(len(c) for c in cols)
    if any(len(c) != n for c in cols):
        log.warning("mexc_inconsistent_lengths truncating_to=%d", n)

    times, opens, highs, lows, closes = cols
    out: List[Bar] = []
    for i in range(n):
        try:
            out.append(Bar(
                time_ms=int(times[i]) * 1000,
                open=float(opens[i]),
                high=float(highs[i]),
                low=float(lows[i]),
                close=float(closes[i]),
                volume=float(vol[i]) if i < len(vol) else 0.0,
            ))
        except (TypeError, ValueError) as e:
            raise RuntimeError(f"Invalid data from MEXC API: bad kline at index {i}: {e}") from e
    return out


class MexcProvider:
    def __init__(self, *, rest_timeout_s: int = 20, base_url: str = REST_BASE):
        self.rest_timeout_s = rest_timeout_s
        self.base_url = base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.rest_timeout_s))
        return self._session

    async def fetch_bars(self, symbol: str, interval: str, limit: int, *, now_s: Optional[int] = None) -> List[Bar]:
        name, step_s = mexc_interval(interval)
        end = int(now_s if now_s is not None else time.time())
        start = end - step_s * max(1, int(limit))
        url = f"{self.base_url}/api/v1/contract/kline/{mexc_symbol(symbol)}"
        params = {"interval": name, "start": start, "end": end}

        sess = await self._get_session()
        async with sess.get(url, params=params) as resp:
            if resp.status != 200:
                txt = await resp.text()
                raise RuntimeError(f"Failed to fetch data from MEXC: {resp.status} {txt[:500]}")
            data = await resp.json(content_type=None)

        bars = parse_mexc_klines(data)
        return bars[-int(limit):] if limit > 0 else bars
