from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..models import Bar

log = logging.getLogger("bybit")

REST_BASE = "https://api.bybit.com"
KLINE_PATH = "/v5/market/kline"
MAX_LIMIT = 1000


def parse_bybit_klines(payload: Dict[str, Any]) -> List[Bar]:
    """Turn a /v5/market/kline response into time-ascending bars.

    Bybit returns rows newest first as string arrays:
    [startTime, open, high, low, close, volume, turnover].
    """
    if not isinstance(payload, dict):
        raise RuntimeError("Invalid data from Bybit API: payload is not an object")
    if payload.get("retCode") != 0:
        raise RuntimeError(f"Invalid data from Bybit API: {payload.get('retMsg')}")
    result = payload.get("result") or {}
    rows = result.get("list") if isinstance(result, dict) else None
    if not isinstance(rows, list):
        raise RuntimeError("Invalid data from Bybit API: missing result.list")

    out: List[Bar] = []
    for row in reversed(rows):
        try:
            out.append(Bar(
                time_ms=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            ))
        except (IndexError, KeyError, TypeError, ValueError) as e:
            raise RuntimeError(f"Invalid data from Bybit API: bad kline row {row!r}: {e}") from e
    return out


class BybitProvider:
    def __init__(
        self,
        *,
        category: str = "linear",
        rest_timeout_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        base_url: str = REST_BASE,
    ):
        self.category = category
        self.rest_timeout_s = rest_timeout_s
        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.base_url = base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout())
        return self._session

    async def fetch_bars(self, symbol: str, interval: str, limit: int) -> List[Bar]:
        url = self.base_url + KLINE_PATH
        params = {
            "category": self.category,
            "symbol": symbol.upper(),
            "interval": str(interval),
            "limit": max(1, min(int(limit), MAX_LIMIT)),
        }

        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        data: Any = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status in (403, 429):
                        txt = await resp.text()
                        log.warning(
                            "rest_rate_limited status=%s symbol=%s interval=%s sleep=%.1fs body=%s",
                            resp.status,
                            symbol,
                            interval,
                            backoff,
                            txt[:200],
                        )
                        await asyncio.sleep(backoff)
                        backoff = min(backoff * 2.0, 20.0)
                        continue

                    if resp.status != 200:
                        txt = await resp.text()
                        raise RuntimeError(f"Bybit API Error: {resp.status} {txt[:500]}")

                    data = await resp.json(content_type=None)

                last_err = None
                break

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= int(self.rest_max_retries):
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d symbol=%s interval=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    symbol,
                    interval,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if last_err is not None:
            raise last_err
        if data is None:
            raise RuntimeError(f"Bybit API Error: rate limited after {self.rest_max_retries} attempts")

        return parse_bybit_klines(data)
