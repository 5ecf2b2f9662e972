from __future__ import annotations

import argparse
import math

from wavetrend_signal_bot.models import Bar
from wavetrend_signal_bot.strategy import SignalEngine


def wave_sequence(n: int, turn: int):
    """Oscillating price drifting up until `turn`, then down."""
    bars = []
    for i in range(n):
        base = 100 + 0.5 * i if i < turn else 100 + 0.5 * turn - 0.5 * (i - turn)
        close = base + 5 * math.sin(i / 5.0)
        vol = 3000.0 if i % 17 == 0 else 1000.0
        bars.append(Bar(time_ms=i * 60_000, open=close, high=close + 0.5, low=close - 0.5, close=close, volume=vol))
    return bars


def main():
    p = argparse.ArgumentParser(description="Replay a synthetic series through the signal engine")
    p.add_argument("--bars", type=int, default=400)
    p.add_argument("--turn", type=int, default=200)
    p.add_argument("--dedupe-key", default="type", choices=["type", "type_level"])
    args = p.parse_args()

    eng = SignalEngine(dedupe_key=args.dedupe_key)
    print("warmup_bars =", eng.warmup_bars)

    bars = wave_sequence(args.bars, args.turn)
    last = None
    for k in range(1, len(bars) + 1):
        sig = eng.evaluate(bars[:k], last)
        if sig is None:
            continue
        last = sig
        print(f"bar={k - 1:4d} {sig.type:4s} {sig.level:6s} price={sig.price:.3f} score={sig.score} spike={sig.volume_spike}")


if __name__ == "__main__":
    main()
