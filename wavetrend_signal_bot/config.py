from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import os
import yaml

from .indicators import IndicatorParams


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class StrategyConfig:
    # WaveTrend
    wt_channel_length: int = 10
    wt_average_length: int = 21
    wt_signal_length: int = 4
    wt_oversold: Optional[float] = None  # e.g. -60 to only buy deep crosses
    wt_overbought: Optional[float] = None

    # Filters / confirmations
    ema_trend_period: int = 50
    rsi_period: int = 14
    rsi_midline: float = 50.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    volume_avg_period: int = 20
    volume_spike_mult: float = 1.8
    trend_warning_pct: float = 0.10

    require_trend: bool = True
    dedupe_key: str = "type"  # type | type_level

    def indicator_params(self) -> IndicatorParams:
        return IndicatorParams(
            wt_channel_length=self.wt_channel_length,
            wt_average_length=self.wt_average_length,
            wt_signal_length=self.wt_signal_length,
            ema_trend_period=self.ema_trend_period,
            rsi_period=self.rsi_period,
            macd_fast=self.macd_fast,
            macd_slow=self.macd_slow,
            macd_signal=self.macd_signal,
            volume_avg_period=self.volume_avg_period,
        )

    def validate(self) -> None:
        errs = []
        for name in (
            "wt_channel_length",
            "wt_average_length",
            "wt_signal_length",
            "ema_trend_period",
            "rsi_period",
            "macd_fast",
            "macd_slow",
            "macd_signal",
            "volume_avg_period",
        ):
            if int(getattr(self, name)) <= 0:
                errs.append(f"{name} must be > 0")
        if self.macd_fast >= self.macd_slow:
            errs.append("macd_fast must be < macd_slow")
        if self.volume_spike_mult <= 0:
            errs.append("volume_spike_mult must be > 0")
        if self.dedupe_key not in ("type", "type_level"):
            errs.append(f"dedupe_key must be 'type' or 'type_level' (got {self.dedupe_key!r})")
        if errs:
            raise ValueError("Strategy config invalid: " + "; ".join(errs))


@dataclass
class ProviderConfig:
    type: str = "bybit"  # bybit | mexc
    symbol: str = "DOGEUSDT"
    interval: str = "1"
    history_limit: int = 1000
    poll_limit: int = 5
    poll_interval_s: float = 5.0
    rest_timeout_s: int = 20
    max_bars: int = 1000


@dataclass
class StoreConfig:
    type: str = "jsonl"  # jsonl | memory
    path: str = "data/signals.jsonl"
    history_size: int = 15


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    include_trend_warning: bool = True
    include_score: bool = True
    footer: str = ""


@dataclass
class AppConfig:
    name: str = "WaveTrend Signal Bot"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    strategy: StrategyConfig
    store: StoreConfig
    telegram: TelegramConfig
    webhook: WebhookConfig
    alerts: AlertsConfig


def default_config() -> Config:
    cfg = Config(
        app=AppConfig(),
        provider=ProviderConfig(),
        strategy=StrategyConfig(),
        store=StoreConfig(),
        telegram=TelegramConfig(chat_ids=[]),
        webhook=WebhookConfig(headers={}),
        alerts=AlertsConfig(),
    )
    return cfg


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        strategy=StrategyConfig(**raw.get("strategy", {})),
        store=StoreConfig(**raw.get("store", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )
    apply_env_overrides(cfg)
    cfg.strategy.validate()
    return cfg


def apply_env_overrides(cfg: Config) -> Config:
    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = [x.strip() for x in chat_env.split(",") if x.strip()]

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    cfg.store.path = _env_override(cfg.store.path, "SIGNAL_STORE_PATH")
    cfg.provider.poll_interval_s = _env_override(float(cfg.provider.poll_interval_s), "POLL_INTERVAL_S")
    return cfg
