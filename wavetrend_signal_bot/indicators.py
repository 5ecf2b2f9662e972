from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .models import Bar, IndicatorSnapshot

Series = List[Optional[float]]

WT_CI_FACTOR = 0.015


def sub(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return a - b


def mul(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return a * b


def sub_series(a: Sequence[Optional[float]], b: Sequence[Optional[float]]) -> Series:
    return [sub(x, y) for x, y in zip(a, b)]


def sma(series: Sequence[Optional[float]], period: int) -> Series:
    out: Series = [None] * len(series)
    if period <= 0:
        return out
    for i in range(period - 1, len(series)):
        window = series[i - period + 1:i + 1]
        if any(v is None for v in window):
            continue
        out[i] = sum(window) / float(period)
    return out


def ema(series: Sequence[Optional[float]], period: int) -> Series:
    """EMA seeded with the first defined value, k = 2 / (period + 1)."""
    out: Series = [None] * len(series)
    if period <= 0:
        return out
    k = 2.0 / (period + 1.0)
    prev: Optional[float] = None
    for i, x in enumerate(series):
        if x is None:
            continue
        prev = x if prev is None else (x * k + prev * (1.0 - k))
        out[i] = prev
    return out


def rsi(closes: Sequence[float], period: int = 14) -> Series:
    out: Series = [None] * len(closes)
    if period <= 0 or len(closes) <= period:
        return out

    # seed over the first `period` differences
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        ch = closes[i] - closes[i - 1]
        if ch > 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period
    out[period] = _rsi_value(avg_gain, avg_loss)

    # Wilder smoothing
    for i in range(period + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        gain = ch if ch > 0 else 0.0
        loss = -ch if ch < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        out[i] = _rsi_value(avg_gain, avg_loss)
    return out


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def typical_price(bars: Sequence[Bar]) -> List[float]:
    return [(b.high + b.low + b.close) / 3.0 for b in bars]


def wave_trend(
    bars: Sequence[Bar],
    channel_length: int,
    average_length: int,
    signal_length: int,
) -> Tuple[Series, Series]:
    """WaveTrend oscillator. Returns (wt1, wt2)."""
    ap = typical_price(bars)
    esa = ema(ap, channel_length)
    dev = [None if e is None else abs(p - e) for p, e in zip(ap, esa)]
    d = ema(dev, channel_length)

    ci: Series = []
    for p, e, dd in zip(ap, esa, d):
        if e is None or dd is None:
            ci.append(None)
        elif dd == 0:
            ci.append(0.0)
        else:
            ci.append((p - e) / (WT_CI_FACTOR * dd))

    wt1 = ema(ci, average_length)
    wt2 = sma(wt1, signal_length)
    return wt1, wt2


def macd(closes: Sequence[float], fast: int, slow: int, signal_period: int) -> Tuple[Series, Series]:
    line = sub_series(ema(closes, fast), ema(closes, slow))
    return line, ema(line, signal_period)


def macd_histogram(macd_line: Sequence[Optional[float]], signal_line: Sequence[Optional[float]]) -> Series:
    return sub_series(macd_line, signal_line)


def volume_average(volumes: Sequence[float], period: int) -> Series:
    return sma(volumes, period)


@dataclass(frozen=True)
class IndicatorParams:
    wt_channel_length: int = 10
    wt_average_length: int = 21
    wt_signal_length: int = 4
    ema_trend_period: int = 50
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    volume_avg_period: int = 20


@dataclass
class IndicatorSeries:
    """All indicator series for one bar sequence, aligned index-for-index."""
    bars: List[Bar]
    trend_ema: Series
    wt1: Series
    wt2: Series
    macd_line: Series
    macd_signal: Series
    rsi: Series
    volume_avg: Series

    def __len__(self) -> int:
        return len(self.bars)

    def snapshot(self, idx: int) -> IndicatorSnapshot:
        b = self.bars[idx]
        return IndicatorSnapshot(
            time_ms=b.time_ms,
            close=b.close,
            trend_ema=self.trend_ema[idx],
            wt1=self.wt1[idx],
            wt2=self.wt2[idx],
            macd_line=self.macd_line[idx],
            macd_signal=self.macd_signal[idx],
            rsi=self.rsi[idx],
            volume=b.volume,
            volume_avg=self.volume_avg[idx],
        )


def compute_indicators(bars: Sequence[Bar], params: Optional[IndicatorParams] = None) -> IndicatorSeries:
    """Recompute every series from scratch over the full bar sequence."""
    p = params or IndicatorParams()
    bars = list(bars)
    closes = [b.close for b in bars]
    volumes = [b.volume for b in bars]

    wt1, wt2 = wave_trend(bars, p.wt_channel_length, p.wt_average_length, p.wt_signal_length)
    macd_line, macd_signal = macd(closes, p.macd_fast, p.macd_slow, p.macd_signal)

    return IndicatorSeries(
        bars=bars,
        trend_ema=ema(closes, p.ema_trend_period),
        wt1=wt1,
        wt2=wt2,
        macd_line=macd_line,
        macd_signal=macd_signal,
        rsi=rsi(closes, p.rsi_period),
        volume_avg=volume_average(volumes, p.volume_avg_period),
    )
