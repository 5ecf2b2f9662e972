from __future__ import annotations

import argparse
import asyncio
import logging

from .config import default_config, apply_env_overrides, load_config
from .runner import SignalRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="WaveTrend Signal Bot - polling BUY/SELL signal generator")
    p.add_argument("--config", help="Path to YAML config (defaults are used when omitted)")
    p.add_argument("--log-level", help="Override app.log_level")
    args = p.parse_args(argv)

    try:
        if args.config:
            cfg = load_config(args.config)
        else:
            cfg = apply_env_overrides(default_config())
            cfg.strategy.validate()
    except (OSError, ValueError, TypeError) as e:
        _setup_logging(args.log_level or "INFO")
        logging.getLogger("main").error("config_error path=%s err=%s", args.config, e)
        return 1
    _setup_logging(args.log_level or cfg.app.log_level)

    runner = SignalRunner(cfg)

    async def _run() -> None:
        try:
            await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            await runner.close()

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
