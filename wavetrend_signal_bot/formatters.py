from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional

from .models import BUY, Signal


def _fmt_ms(ts_ms: int, tz=timezone.utc) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).astimezone(tz)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:g}"


def format_signal(signal: Signal, cfg, *, trend_warning: bool = False) -> str:
    """Format an accepted signal for Telegram alerts."""
    parse_mode = (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()
    icon = "🟢" if signal.type == BUY else "🔴"

    title = f"{signal.level} {signal.type}"
    if signal.symbol:
        title = f"{signal.symbol} {title}"

    lines = [
        f"{icon} {_bold(title, parse_mode)}",
        _escape_text(f"Price: {_fmt_price(signal.price)}", parse_mode),
        _escape_text(f"Time (UTC): {_fmt_ms(signal.time_ms)}", parse_mode),
    ]

    if getattr(cfg, "include_score", True) and signal.score is not None:
        spike = " + volume spike" if signal.volume_spike else ""
        lines.append(_escape_text(f"Confirmations: {signal.score}/3{spike}", parse_mode))

    if trend_warning and getattr(cfg, "include_trend_warning", True):
        lines.append(_escape_text("Trend weakening: MACD histogram is narrowing", parse_mode))

    footer = (getattr(cfg, "footer", "") or "").strip()
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, parse_mode))

    return "\n".join(lines)
