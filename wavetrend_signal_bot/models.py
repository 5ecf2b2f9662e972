from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

BUY = "BUY"
SELL = "SELL"

LEVEL_LOW = "Low"
LEVEL_MEDIUM = "Medium"
LEVEL_HIGH = "High"


@dataclass(frozen=True)
class Bar:
    time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values at one bar index. None means not enough history yet."""
    time_ms: int
    close: float
    trend_ema: Optional[float] = None
    wt1: Optional[float] = None
    wt2: Optional[float] = None
    macd_line: Optional[float] = None
    macd_signal: Optional[float] = None
    rsi: Optional[float] = None
    volume: Optional[float] = None
    volume_avg: Optional[float] = None


@dataclass(frozen=True)
class Signal:
    type: str  # BUY or SELL
    level: str  # Low, Medium or High
    price: float
    time_ms: int
    score: Optional[int] = None
    volume_spike: Optional[bool] = None
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "type": self.type,
            "level": self.level,
            "price": self.price,
            "time": int(self.time_ms),
        }
        if self.score is not None:
            out["score"] = self.score
        if self.volume_spike is not None:
            out["volume_spike"] = self.volume_spike
        if self.symbol:
            out["symbol"] = self.symbol
        return out

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Signal":
        return cls(
            type=str(raw["type"]).upper(),
            level=str(raw["level"]),
            price=float(raw["price"]),
            time_ms=int(raw["time"]),
            score=raw.get("score"),
            volume_spike=raw.get("volume_spike"),
            symbol=raw.get("symbol"),
        )
