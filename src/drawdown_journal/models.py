from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

LONG = "long"
SHORT = "short"

BID = "bid"
ASK = "ask"

HIT_NONE = "NONE"
HIT_CLOSE = "CLOSE"
HIT_SL = "SL"
HIT_BE = "BE"

NOTE_NO_SL = "NO_SL"


@dataclass
class TradeRecord:
    trade_id: str
    symbol: str
    trade_type: str | None
    entry_price: float | None
    stop_loss: float | None
    take_profit: float | None
    close_price: float | None
    volume: float | None
    profit: float | None
    open_raw: str | None
    close_raw: str | None
    duration_seconds: float | None
    created_at: datetime
    account_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def side(self) -> str:
        text = str(self.trade_type or "").lower()
        if "short" in text or "sell" in text:
            return SHORT
        return LONG


@dataclass(frozen=True)
class TimeWindow:
    open_at: datetime
    close_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.close_at - self.open_at).total_seconds()


@dataclass(frozen=True)
class QueryRange:
    start: datetime
    end: datetime
    utc_offset_minutes: int
    received_start: datetime | None = None
    received_end: datetime | None = None
    count: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": _iso(self.start),
            "to": _iso(self.end),
            "utc_offset": self.utc_offset_minutes,
        }
        if self.count is not None:
            payload["received_from"] = _iso(self.received_start) if self.received_start else None
            payload["received_to"] = _iso(self.received_end) if self.received_end else None
            payload["count"] = self.count
        return payload


@dataclass(frozen=True)
class DrawdownResult:
    id: str
    adverse_pips: float | None
    pct_to_sl: float | None
    hit: str
    adverse_usd: float | None = None
    note: str | None = None
    candle_range: QueryRange | None = None
    tick_range: QueryRange | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "adverse_pips": self.adverse_pips,
            "adverse_usd": self.adverse_usd,
            "pct_to_sl": self.pct_to_sl,
            "hit": self.hit,
            "note": self.note,
            "candle_range": self.candle_range.to_payload() if self.candle_range else None,
            "tick_range": self.tick_range.to_payload() if self.tick_range else None,
            "error": self.error,
        }


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
