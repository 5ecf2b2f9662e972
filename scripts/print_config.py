from __future__ import annotations

import argparse
import dataclasses
import pprint

from wavetrend_signal_bot.config import load_config
from wavetrend_signal_bot.strategy import warmup_bars


def main():
    p = argparse.ArgumentParser(description="Print the effective strategy inputs for a config")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args()

    cfg = load_config(args.config)

    print("STRATEGY INPUTS:")
    pprint.pprint(dataclasses.asdict(cfg.strategy))
    print("\nPROVIDER:")
    pprint.pprint(dataclasses.asdict(cfg.provider))
    print("\nwarmup_bars =", warmup_bars(cfg.strategy.indicator_params()))


if __name__ == "__main__":
    main()
