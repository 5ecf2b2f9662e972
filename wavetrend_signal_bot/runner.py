from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .bar_buffer import BarBuffer
from .config import Config
from .formatters import format_signal
from .history import SignalHistory
from .models import Signal
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .providers.bybit import BybitProvider
from .providers.mexc import MexcProvider
from .store import JsonlSignalStore, MemorySignalStore
from .strategy import SignalEngine, trend_weakening

log = logging.getLogger("runner")

FETCH_ERRORS = (RuntimeError, ValueError, asyncio.TimeoutError, aiohttp.ClientError)


def make_provider(cfg: Config):
    kind = (cfg.provider.type or "bybit").lower()
    if kind == "bybit":
        return BybitProvider(rest_timeout_s=cfg.provider.rest_timeout_s)
    if kind == "mexc":
        return MexcProvider(rest_timeout_s=cfg.provider.rest_timeout_s)
    raise ValueError(f"Unsupported provider type: {cfg.provider.type}")


def make_store(cfg: Config):
    kind = (cfg.store.type or "jsonl").lower()
    if kind == "jsonl":
        return JsonlSignalStore(cfg.store.path)
    if kind == "memory":
        return MemorySignalStore()
    raise ValueError(f"Unsupported store type: {cfg.store.type}")


def make_engine(cfg: Config) -> SignalEngine:
    st = cfg.strategy
    return SignalEngine(
        st.indicator_params(),
        volume_spike_mult=st.volume_spike_mult,
        rsi_midline=st.rsi_midline,
        require_trend=st.require_trend,
        dedupe_key=st.dedupe_key,
        wt_oversold=st.wt_oversold,
        wt_overbought=st.wt_overbought,
        symbol=cfg.provider.symbol.upper(),
    )


@dataclass
class RunnerState:
    last_signal: Optional[Signal] = None
    ticks: int = 0
    skipped_ticks: int = 0
    fetch_failures: int = 0


class SignalRunner:
    """Owns the bar buffer, signal history and last accepted signal for one symbol."""

    def __init__(self, cfg: Config, *, provider=None, store=None, telegram=None, webhook=None):
        self.cfg = cfg
        self.provider = provider if provider is not None else make_provider(cfg)
        self.store = store if store is not None else make_store(cfg)
        self.engine = make_engine(cfg)
        self.buffer = BarBuffer(cfg.provider.max_bars)
        self.history = SignalHistory(cfg.store.history_size)
        self.state = RunnerState()
        self.tg = telegram if telegram is not None else TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids or [],
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = webhook if webhook is not None else WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )
        self._busy = False

    def seed_from_store(self) -> None:
        """Restore history and the last accepted signal after a restart."""
        recent = self.store.recent(self.history.maxlen)
        self.history.extend_oldest(recent)
        if recent:
            self.state.last_signal = recent[0]
            log.info(
                "last_signal_loaded type=%s level=%s price=%s time=%s",
                recent[0].type,
                recent[0].level,
                recent[0].price,
                recent[0].time_ms,
            )

    async def warmup(self) -> None:
        self.seed_from_store()
        try:
            await self._fetch()
        except FETCH_ERRORS as e:
            self.state.fetch_failures += 1
            log.warning("warmup_fetch_failed symbol=%s err=%s", self.cfg.provider.symbol, e)
        log.info("warmup_done symbol=%s bars=%d need=%d", self.cfg.provider.symbol, len(self.buffer), self.engine.warmup_bars)

    async def _fetch(self) -> int:
        pc = self.cfg.provider
        limit = pc.history_limit if len(self.buffer) < self.engine.warmup_bars else pc.poll_limit
        bars = await self.provider.fetch_bars(pc.symbol, pc.interval, limit)
        if not bars:
            log.warning("fetch_empty symbol=%s interval=%s", pc.symbol, pc.interval)
            return 0
        appended = self.buffer.merge(bars)
        log.debug("fetch_ok symbol=%s got=%d appended=%d buffer=%d", pc.symbol, len(bars), appended, len(self.buffer))
        return appended

    async def tick(self) -> Optional[Signal]:
        """fetch -> compute -> decide -> persist/notify. Overlapping ticks are dropped."""
        if self._busy:
            self.state.skipped_ticks += 1
            log.info("tick_skipped reason=previous_tick_running skipped=%d", self.state.skipped_ticks)
            return None

        self._busy = True
        try:
            self.state.ticks += 1
            try:
                await self._fetch()
            except FETCH_ERRORS as e:
                self.state.fetch_failures += 1
                log.warning("fetch_failed symbol=%s err=%s", self.cfg.provider.symbol, e)
                return None
            return await self.process()
        finally:
            self._busy = False

    async def process(self) -> Optional[Signal]:
        bars = self.buffer.bars()
        snaps = self.engine.latest_snapshots(bars)
        if snaps is None:
            log.info("waiting_for_data have=%d need=%d", len(bars), self.engine.warmup_bars)
            return None

        cur, prev = snaps
        sig = self.engine.decide(cur, prev, self.state.last_signal)
        if sig is None:
            return None

        warn = trend_weakening(cur, self.cfg.strategy.trend_warning_pct)
        await self._accept(sig, trend_warning=warn)
        return sig

    async def _accept(self, sig: Signal, *, trend_warning: bool = False) -> None:
        self.state.last_signal = sig
        self.history.add(sig)
        log.info(
            "signal_accepted type=%s level=%s price=%s time=%s score=%s volume_spike=%s",
            sig.type,
            sig.level,
            sig.price,
            sig.time_ms,
            sig.score,
            sig.volume_spike,
        )

        if self.store.save(sig):
            log.info("signal_saved type=%s level=%s time=%s", sig.type, sig.level, sig.time_ms)
        else:
            log.warning("signal_not_saved type=%s level=%s time=%s", sig.type, sig.level, sig.time_ms)

        if self.webhook.enabled:
            await self.webhook.send_signal(sig)

        if self.tg.enabled():
            parse_mode = getattr(self.cfg.alerts, "parse_mode", "HTML") or "HTML"
            await self.tg.send(format_signal(sig, self.cfg.alerts, trend_warning=trend_warning), parse_mode=parse_mode)

    async def run_forever(self) -> None:
        await self.warmup()
        if self.tg.enabled():
            await self.tg.send(f"✅ {self.cfg.app.name}: monitoring {self.cfg.provider.symbol.upper()} ({self.cfg.provider.interval}).")

        loop = asyncio.get_running_loop()
        interval = max(0.1, float(self.cfg.provider.poll_interval_s))
        while True:
            started = loop.time()
            await self.tick()
            await asyncio.sleep(max(0.0, interval - (loop.time() - started)))

    async def close(self) -> None:
        await self.provider.close()
