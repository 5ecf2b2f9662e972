import asyncio
import math

from wavetrend_signal_bot.config import default_config
from wavetrend_signal_bot.formatters import format_signal
from wavetrend_signal_bot.models import BUY, Bar, Signal
from wavetrend_signal_bot.providers.bybit import parse_bybit_klines
from wavetrend_signal_bot.runner import SignalRunner, make_engine
from wavetrend_signal_bot.store import MemorySignalStore
from wavetrend_signal_bot.strategy import trend_weakening


def _wave_bars(n: int = 200) -> list:
    out = []
    for i in range(n):
        close = 100 + 0.5 * i + 5 * math.sin(i / 5.0)
        out.append(Bar(time_ms=i * 60_000, open=close, high=close + 0.5, low=close - 0.5, close=close, volume=1000.0))
    return out


class FakeProvider:
    def __init__(self, bars=None, error=None):
        self.bars = bars or []
        self.error = error
        self.calls = []
        self.closed = False

    async def fetch_bars(self, symbol, interval, limit):
        self.calls.append((symbol, interval, limit))
        if self.error is not None:
            raise self.error
        return list(self.bars)

    async def close(self):
        self.closed = True


def _cfg():
    cfg = default_config()
    cfg.store.type = "memory"
    cfg.telegram.enabled = False
    return cfg


def _first_signal_prefix(cfg, bars):
    eng = make_engine(cfg)
    for k in range(2, len(bars) + 1):
        sig = eng.evaluate(bars[:k], None)
        if sig is not None:
            return k, sig
    raise AssertionError("no signal in synthetic series")


def test_tick_accepts_persists_and_dedupes():
    async def _run():
        cfg = _cfg()
        bars = _wave_bars()
        k, expected = _first_signal_prefix(cfg, bars)

        provider = FakeProvider(bars[:k])
        store = MemorySignalStore()
        runner = SignalRunner(cfg, provider=provider, store=store)

        sig = await runner.tick()
        assert sig == expected
        assert sig.symbol == "DOGEUSDT"
        assert runner.state.last_signal == sig
        assert runner.history.latest() == sig
        assert store.recent(1) == [sig]
        assert provider.calls[0][2] == cfg.provider.history_limit

        # unchanged data -> nothing new
        assert await runner.tick() is None
        assert len(runner.history) == 1
        assert provider.calls[1][2] == cfg.provider.poll_limit

        await runner.close()
        assert provider.closed

    asyncio.run(_run())


def test_seeded_last_signal_suppresses_same_type():
    async def _run():
        cfg = _cfg()
        bars = _wave_bars()
        k, expected = _first_signal_prefix(cfg, bars)
        assert expected.type == BUY

        store = MemorySignalStore()
        store.save(Signal(type=BUY, level="Low", price=1.0, time_ms=0))
        runner = SignalRunner(cfg, provider=FakeProvider(bars[:k]), store=store)
        await runner.warmup()
        assert runner.state.last_signal.type == BUY
        assert len(runner.history) == 1

        assert await runner.tick() is None

    asyncio.run(_run())


def test_fetch_failure_is_logged_and_skipped():
    async def _run():
        runner = SignalRunner(_cfg(), provider=FakeProvider(error=RuntimeError("Bybit API Error: 500")), store=MemorySignalStore())
        assert await runner.tick() is None
        assert runner.state.fetch_failures == 1
        assert runner.state.ticks == 1

    asyncio.run(_run())


def test_insufficient_data_waits():
    async def _run():
        runner = SignalRunner(_cfg(), provider=FakeProvider(_wave_bars(30)), store=MemorySignalStore())
        assert await runner.tick() is None
        assert len(runner.buffer) == 30

    asyncio.run(_run())


def test_overlapping_tick_is_dropped():
    async def _run():
        provider = FakeProvider(_wave_bars(10))
        runner = SignalRunner(_cfg(), provider=provider, store=MemorySignalStore())
        runner._busy = True
        assert await runner.tick() is None
        assert runner.state.skipped_ticks == 1
        assert provider.calls == []

    asyncio.run(_run())


class MalformedBybitProvider(FakeProvider):
    async def fetch_bars(self, symbol, interval, limit):
        self.calls.append((symbol, interval, limit))
        return parse_bybit_klines({"retCode": 0, "result": {"list": [["60000", "0.1"]]}})


class FakeTelegram:
    def __init__(self):
        self.sent = []

    def enabled(self):
        return True

    async def send(self, text, *, parse_mode=None):
        self.sent.append((text, parse_mode))
        return 1


class FakeWebhook:
    enabled = True

    def __init__(self):
        self.signals = []

    async def send_signal(self, sig):
        self.signals.append(sig)
        return True


def test_malformed_kline_row_counts_as_fetch_failure():
    async def _run():
        provider = MalformedBybitProvider()
        runner = SignalRunner(_cfg(), provider=provider, store=MemorySignalStore())
        assert await runner.tick() is None
        assert runner.state.fetch_failures == 1
        assert len(runner.buffer) == 0

        # the loop keeps going on the next tick
        assert await runner.tick() is None
        assert runner.state.fetch_failures == 2
        assert runner.state.ticks == 2

    asyncio.run(_run())


def test_accepted_signal_reaches_webhook_and_telegram():
    async def _run():
        cfg = _cfg()
        cfg.alerts.parse_mode = "MarkdownV2"
        bars = _wave_bars()
        k, expected = _first_signal_prefix(cfg, bars)
        cur, _ = make_engine(cfg).latest_snapshots(bars[:k])
        warn = trend_weakening(cur, cfg.strategy.trend_warning_pct)

        tg = FakeTelegram()
        wh = FakeWebhook()
        runner = SignalRunner(cfg, provider=FakeProvider(bars[:k]), store=MemorySignalStore(), telegram=tg, webhook=wh)
        sig = await runner.tick()

        assert sig == expected
        assert wh.signals == [sig]
        assert tg.sent == [(format_signal(sig, cfg.alerts, trend_warning=warn), "MarkdownV2")]

        # duplicates are not re-sent
        assert await runner.tick() is None
        assert len(wh.signals) == 1
        assert len(tg.sent) == 1

    asyncio.run(_run())
