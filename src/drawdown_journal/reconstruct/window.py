from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from drawdown_journal.models import ASK, BID, LONG, TimeWindow, TradeRecord

MIN_WINDOW = timedelta(seconds=60)

_EXPLICIT_ZONE_RE = re.compile(r"[zZ]|[+\-]\d{2}:?\d{2}$")
_COMPACT_OFFSET_RE = re.compile(r"([+\-]\d{2})(\d{2})$")
_FRACTION_RE = re.compile(r"\.\d+$")
_NOISE_RE = re.compile(r"[^0-9\-: T]")
_NAIVE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2})(?::(\d{2}))?$")


@dataclass(frozen=True)
class ResolvedWindow:
    window: TimeWindow
    side: str
    quote_side: str


def resolve_trade_window(trade: TradeRecord) -> ResolvedWindow:
    """Rebuild the UTC open/close pair for a trade.

    Naive timestamps are read as UTC wall-clock; any broker-server offset is
    applied later, uniformly, by the price fetcher.
    """
    fallback = _ensure_utc(trade.created_at)
    open_at = parse_trade_timestamp(trade.open_raw) or fallback
    close_at = parse_trade_timestamp(trade.close_raw) or fallback

    duration = trade.duration_seconds
    if duration is not None and math.isfinite(duration) and duration > 0:
        close_at = open_at + timedelta(seconds=math.floor(duration))

    if close_at <= open_at:
        close_at = open_at + MIN_WINDOW

    side = trade.side
    quote_side = BID if side == LONG else ASK
    return ResolvedWindow(window=TimeWindow(open_at=open_at, close_at=close_at), side=side, quote_side=quote_side)


def parse_trade_timestamp(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    original = str(raw).strip()
    if not original:
        return None

    if _EXPLICIT_ZONE_RE.search(original):
        parsed = _parse_zoned(original)
        if parsed is not None:
            return parsed

    cleaned = _NOISE_RE.sub("", _FRACTION_RE.sub("", original)).strip()
    match = _NAIVE_RE.match(cleaned)
    if not match:
        return None
    year, month, day, hour, minute = (int(match.group(idx)) for idx in range(1, 6))
    second = int(match.group(6) or 0)
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None


def floor_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def ceil_to_minute(value: datetime) -> datetime:
    floored = floor_to_minute(value)
    return floored if floored == value else floored + timedelta(minutes=1)


def _parse_zoned(text: str) -> datetime | None:
    normalized = text.replace("Z", "+00:00").replace("z", "+00:00")
    normalized = _COMPACT_OFFSET_RE.sub(r"\1:\2", normalized)
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
