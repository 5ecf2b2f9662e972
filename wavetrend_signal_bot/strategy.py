from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .models import (
    BUY,
    LEVEL_HIGH,
    LEVEL_LOW,
    LEVEL_MEDIUM,
    SELL,
    Bar,
    IndicatorSnapshot,
    Signal,
)
from .indicators import IndicatorParams, compute_indicators, mul, sub

DEDUPE_TYPE = "type"
DEDUPE_TYPE_LEVEL = "type_level"
DEDUPE_KEYS = (DEDUPE_TYPE, DEDUPE_TYPE_LEVEL)


def warmup_bars(params: IndicatorParams) -> int:
    """Shortest bar sequence for which every indicator has had time to settle."""
    return max(
        params.ema_trend_period,
        params.rsi_period + 1,
        params.macd_slow + params.macd_signal,
        params.wt_signal_length + 1,
        params.volume_avg_period,
    )


def wt_buy_cross(cur: IndicatorSnapshot, prev: IndicatorSnapshot) -> bool:
    return prev.wt1 < prev.wt2 and cur.wt1 > cur.wt2


def wt_sell_cross(cur: IndicatorSnapshot, prev: IndicatorSnapshot) -> bool:
    return prev.wt1 > prev.wt2 and cur.wt1 < cur.wt2


def trend_weakening(snap: IndicatorSnapshot, threshold: float = 0.10) -> bool:
    """MACD histogram has shrunk below `threshold` of the MACD value."""
    hist = sub(snap.macd_line, snap.macd_signal)
    if hist is None:
        return False
    return abs(hist) < abs(snap.macd_line) * threshold


@dataclass(frozen=True)
class Confirmation:
    score: int  # 0..3
    volume_spike: bool

    @property
    def level(self) -> str:
        if self.score >= 2 and self.volume_spike:
            return LEVEL_HIGH
        if self.score >= 1:
            return LEVEL_MEDIUM
        return LEVEL_LOW


class SignalEngine:
    """Turns indicator snapshots into BUY/SELL signals.

    Holds configuration only. The last accepted signal is passed in by the
    caller on every call and the caller decides what to do with the result.
    """

    def __init__(
        self,
        params: Optional[IndicatorParams] = None,
        *,
        volume_spike_mult: float = 1.8,
        rsi_midline: float = 50.0,
        require_trend: bool = True,
        dedupe_key: str = DEDUPE_TYPE,
        wt_oversold: Optional[float] = None,
        wt_overbought: Optional[float] = None,
        symbol: Optional[str] = None,
    ):
        if dedupe_key not in DEDUPE_KEYS:
            raise ValueError(f"Unsupported dedupe_key: {dedupe_key} (use one of {DEDUPE_KEYS})")
        self.params = params or IndicatorParams()
        self.volume_spike_mult = volume_spike_mult
        self.rsi_midline = rsi_midline
        self.require_trend = require_trend
        self.dedupe_key = dedupe_key
        self.wt_oversold = wt_oversold
        self.wt_overbought = wt_overbought
        self.symbol = symbol

    @property
    def warmup_bars(self) -> int:
        return warmup_bars(self.params)

    def latest_snapshots(self, bars: Sequence[Bar]) -> Optional[Tuple[IndicatorSnapshot, IndicatorSnapshot]]:
        """(current, previous) snapshots, or None while the warm-up is incomplete."""
        if len(bars) < max(2, self.warmup_bars):
            return None
        series = compute_indicators(bars, self.params)
        n = len(series)
        return series.snapshot(n - 1), series.snapshot(n - 2)

    def evaluate(self, bars: Sequence[Bar], last_signal: Optional[Signal]) -> Optional[Signal]:
        """One poll tick: recompute indicators over `bars` and decide on the latest bar."""
        snaps = self.latest_snapshots(bars)
        if snaps is None:
            return None
        cur, prev = snaps
        return self.decide(cur, prev, last_signal)

    def decide(
        self,
        cur: IndicatorSnapshot,
        prev: IndicatorSnapshot,
        last_signal: Optional[Signal],
    ) -> Optional[Signal]:
        if not self._ready(cur, prev):
            return None

        side: Optional[str] = None
        if wt_buy_cross(cur, prev) and self._in_band(BUY, cur.wt1) and self._trend_ok(BUY, cur):
            side = BUY
        elif wt_sell_cross(cur, prev) and self._in_band(SELL, cur.wt1) and self._trend_ok(SELL, cur):
            side = SELL
        if side is None:
            return None

        conf = self.confirm(side, cur)
        candidate = Signal(
            type=side,
            level=conf.level,
            price=cur.close,
            time_ms=cur.time_ms,
            score=conf.score,
            volume_spike=conf.volume_spike,
            symbol=self.symbol,
        )
        if self.is_duplicate(candidate, last_signal):
            return None
        return candidate

    def confirm(self, side: str, snap: IndicatorSnapshot) -> Confirmation:
        if side == BUY:
            checks = (
                snap.macd_line > snap.macd_signal,
                snap.rsi > self.rsi_midline,
                snap.close > snap.trend_ema,
            )
        else:
            checks = (
                snap.macd_line < snap.macd_signal,
                snap.rsi < self.rsi_midline,
                snap.close < snap.trend_ema,
            )
        return Confirmation(score=sum(1 for c in checks if c), volume_spike=self.volume_spike(snap))

    def volume_spike(self, snap: IndicatorSnapshot) -> bool:
        threshold = mul(snap.volume_avg, self.volume_spike_mult)
        if threshold is None or snap.volume is None:
            return False
        return snap.volume > threshold

    def is_duplicate(self, candidate: Signal, last_signal: Optional[Signal]) -> bool:
        if last_signal is None or last_signal.type != candidate.type:
            return False
        if self.dedupe_key == DEDUPE_TYPE_LEVEL:
            return last_signal.level == candidate.level
        return True

    def _ready(self, cur: IndicatorSnapshot, prev: IndicatorSnapshot) -> bool:
        required = (
            cur.wt1, cur.wt2, prev.wt1, prev.wt2,
            cur.rsi, cur.trend_ema, cur.macd_line, cur.macd_signal,
        )
        return all(v is not None for v in required)

    def _in_band(self, side: str, wt1: float) -> bool:
        if side == BUY:
            return self.wt_oversold is None or wt1 < self.wt_oversold
        return self.wt_overbought is None or wt1 > self.wt_overbought

    def _trend_ok(self, side: str, snap: IndicatorSnapshot) -> bool:
        if not self.require_trend:
            return True
        if side == BUY:
            return snap.close > snap.trend_ema
        return snap.close < snap.trend_ema
