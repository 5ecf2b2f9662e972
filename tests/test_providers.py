import asyncio

import aiohttp
import pytest

from wavetrend_signal_bot.providers import bybit as bybit_mod
from wavetrend_signal_bot.providers.bybit import MAX_LIMIT, BybitProvider, parse_bybit_klines
from wavetrend_signal_bot.providers.mexc import MexcProvider, mexc_interval, mexc_symbol, parse_mexc_klines


class _Resp:
    def __init__(self, status=200, payload=None, body=""):
        self.status = status
        self.payload = payload
        self.body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self.body

    async def json(self, content_type=None):
        return self.payload


class _Session:
    """Hands out queued responses (or raises queued errors) for each GET."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.closed = False

    def get(self, url, params=None):
        self.calls.append((url, params))
        out = self.outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out

    async def close(self):
        self.closed = True


def _no_sleep(monkeypatch):
    sleeps = []

    async def _sleep(s):
        sleeps.append(s)

    monkeypatch.setattr(bybit_mod.asyncio, "sleep", _sleep)
    return sleeps


BYBIT_OK = {
    "retCode": 0,
    "retMsg": "OK",
    "result": {"list": [["120000", "1", "2", "0.5", "1.5", "10", "15"], ["60000", "1", "1", "1", "1", "5", "5"]]},
}


def test_parse_bybit_reverses_newest_first_rows():
    payload = {
        "retCode": 0,
        "retMsg": "OK",
        "result": {
            "list": [
                ["120000", "0.12", "0.13", "0.11", "0.125", "1000", "125"],
                ["60000", "0.10", "0.12", "0.10", "0.12", "900", "108"],
            ]
        },
    }
    bars = parse_bybit_klines(payload)
    assert [b.time_ms for b in bars] == [60_000, 120_000]
    assert bars[1].close == 0.125
    assert bars[0].volume == 900.0


def test_parse_bybit_error_code_raises():
    with pytest.raises(RuntimeError):
        parse_bybit_klines({"retCode": 10001, "retMsg": "params error"})
    with pytest.raises(RuntimeError):
        parse_bybit_klines({"retCode": 0, "result": {}})


def test_parse_mexc_columns_and_truncation():
    payload = {
        "success": True,
        "code": 0,
        "data": {
            "time": [60, 120, 180],
            "open": [1.0, 2.0, 3.0],
            "high": [1.5, 2.5, 3.5],
            "low": [0.5, 1.5],
            "close": [1.2, 2.2, 3.2],
            "vol": [10.0, 20.0, 30.0],
        },
    }
    bars = parse_mexc_klines(payload)
    assert len(bars) == 2
    assert bars[0].time_ms == 60_000
    assert bars[1].low == 1.5
    assert bars[1].volume == 20.0


def test_parse_mexc_invalid_payload_raises():
    with pytest.raises(RuntimeError):
        parse_mexc_klines({"code": 600, "msg": "bad symbol"})
    with pytest.raises(RuntimeError):
        parse_mexc_klines({"code": 0, "data": {"time": []}})


def test_mexc_symbol_and_interval_mapping():
    assert mexc_symbol("DOGEUSDT") == "DOGE_USDT"
    assert mexc_symbol("doge_usdt") == "DOGE_USDT"
    assert mexc_interval("1") == ("Min1", 60)
    assert mexc_interval("d") == ("Day1", 86400)
    with pytest.raises(ValueError):
        mexc_interval("7")


def test_parse_bybit_malformed_rows_raise_runtime_error():
    with pytest.raises(RuntimeError):
        parse_bybit_klines({"retCode": 0, "result": {"list": [["60000", "0.1"]]}})
    with pytest.raises(RuntimeError):
        parse_bybit_klines({"retCode": 0, "result": {"list": [["60000", None, "1", "1", "1", "1"]]}})
    with pytest.raises(RuntimeError):
        parse_bybit_klines({"retCode": 0, "result": {"list": [["60000", "abc", "1", "1", "1", "1"]]}})
    with pytest.raises(RuntimeError):
        parse_bybit_klines({"retCode": 0, "result": {"list": "nope"}})


def test_parse_mexc_malformed_values_raise_runtime_error():
    with pytest.raises(RuntimeError):
        parse_mexc_klines({"code": 0, "data": {"time": [60], "open": [None], "high": [1], "low": [1], "close": [1]}})
    with pytest.raises(RuntimeError):
        parse_mexc_klines({"code": 0, "data": {"time": [60], "open": 1, "high": [1], "low": [1], "close": [1]}})


def test_bybit_fetch_retries_after_rate_limit(monkeypatch):
    sleeps = _no_sleep(monkeypatch)

    async def _run():
        provider = BybitProvider(rest_backoff_s=0.5)
        sess = _Session([_Resp(429, body="slow down"), _Resp(200, BYBIT_OK)])
        provider._session = sess
        bars = await provider.fetch_bars("dogeusdt", "1", 5000)
        assert [b.time_ms for b in bars] == [60_000, 120_000]
        assert len(sess.calls) == 2
        params = sess.calls[0][1]
        assert params["symbol"] == "DOGEUSDT"
        assert params["limit"] == MAX_LIMIT
        assert sleeps == [0.5]
        await provider.close()
        assert sess.closed

    asyncio.run(_run())


def test_bybit_fetch_bad_status_raises_without_retry(monkeypatch):
    _no_sleep(monkeypatch)

    async def _run():
        provider = BybitProvider()
        sess = _Session([_Resp(500, body="boom")])
        provider._session = sess
        with pytest.raises(RuntimeError) as exc:
            await provider.fetch_bars("DOGEUSDT", "1", 10)
        assert "500" in str(exc.value)
        assert len(sess.calls) == 1

    asyncio.run(_run())


def test_bybit_fetch_client_errors_exhaust_retries(monkeypatch):
    sleeps = _no_sleep(monkeypatch)

    async def _run():
        provider = BybitProvider(rest_max_retries=3, rest_backoff_s=1.0)
        sess = _Session([aiohttp.ClientError("reset"), asyncio.TimeoutError(), aiohttp.ClientError("reset again")])
        provider._session = sess
        with pytest.raises(aiohttp.ClientError):
            await provider.fetch_bars("DOGEUSDT", "1", 10)
        assert len(sess.calls) == 3
        assert sleeps == [1.0, 2.0]

    asyncio.run(_run())


def test_bybit_fetch_rate_limited_every_attempt(monkeypatch):
    _no_sleep(monkeypatch)

    async def _run():
        provider = BybitProvider(rest_max_retries=2)
        provider._session = _Session([_Resp(403), _Resp(429)])
        with pytest.raises(RuntimeError) as exc:
            await provider.fetch_bars("DOGEUSDT", "1", 10)
        assert "rate limited" in str(exc.value)

    asyncio.run(_run())


def test_mexc_fetch_builds_window_and_trims(monkeypatch):
    async def _run():
        provider = MexcProvider()
        payload = {
            "code": 0,
            "data": {"time": [60, 120, 180], "open": [1, 2, 3], "high": [1, 2, 3], "low": [1, 2, 3], "close": [1, 2, 3], "vol": [1, 1, 1]},
        }
        sess = _Session([_Resp(200, payload)])
        provider._session = sess
        bars = await provider.fetch_bars("DOGEUSDT", "1", 2, now_s=1_000)
        assert [b.time_ms for b in bars] == [120_000, 180_000]
        url, params = sess.calls[0]
        assert url.endswith("/DOGE_USDT")
        assert params == {"interval": "Min1", "start": 880, "end": 1_000}

        provider._session = _Session([_Resp(502, body="bad gateway")])
        with pytest.raises(RuntimeError):
            await provider.fetch_bars("DOGEUSDT", "1", 2, now_s=1_000)

    asyncio.run(_run())
