from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from drawdown_journal.metrics.excursions import PriceBar, Tick
from drawdown_journal.models import TradeRecord
from drawdown_journal.storage.sqlite_store import iso_utc

_TIMEFRAME_STEPS = {
    "1m": timedelta(minutes=1),
    "1h": timedelta(hours=1),
}


def connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def load_trade(conn: sqlite3.Connection, trade_id: str) -> TradeRecord | None:
    row = conn.execute("SELECT * FROM trades WHERE trade_id = ?", (trade_id,)).fetchone()
    if row is None:
        return None
    return _row_to_trade(row)


def load_trade_ids(conn: sqlite3.Connection, *, account_id: str | None = None) -> list[str]:
    if account_id is None:
        rows = conn.execute("SELECT trade_id FROM trades ORDER BY created_at, trade_id").fetchall()
    else:
        rows = conn.execute(
            "SELECT trade_id FROM trades WHERE account_id = ? ORDER BY created_at, trade_id",
            (account_id,),
        ).fetchall()
    return [row["trade_id"] for row in rows]


def load_price_bars(
    conn: sqlite3.Connection,
    *,
    source: str,
    instrument: str,
    timeframe: str,
    quote_side: str,
    start: datetime,
    end: datetime,
) -> list[PriceBar]:
    step = _TIMEFRAME_STEPS.get(timeframe, timedelta(minutes=1))
    rows = conn.execute(
        """
        SELECT timestamp, open, high, low, close FROM price_bars
        WHERE source = ? AND instrument = ? AND timeframe = ? AND quote_side = ?
          AND timestamp >= ? AND timestamp < ?
        ORDER BY timestamp
        """,
        (source, instrument, timeframe, quote_side, iso_utc(start), iso_utc(end)),
    ).fetchall()
    bars: list[PriceBar] = []
    for row in rows:
        start_time = _parse_iso(row["timestamp"])
        bars.append(
            PriceBar(
                start_time=start_time,
                end_time=start_time + step,
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
            )
        )
    return bars


def load_ticks(
    conn: sqlite3.Connection,
    *,
    source: str,
    instrument: str,
    start: datetime,
    end: datetime,
) -> list[Tick]:
    rows = conn.execute(
        """
        SELECT timestamp, bid, ask FROM ticks
        WHERE source = ? AND instrument = ? AND timestamp >= ? AND timestamp <= ?
        ORDER BY timestamp
        """,
        (source, instrument, iso_utc(start), iso_utc(end)),
    ).fetchall()
    return [
        Tick(timestamp=_parse_iso(row["timestamp"]), bid=float(row["bid"]), ask=float(row["ask"]))
        for row in rows
    ]


def _row_to_trade(row: sqlite3.Row) -> TradeRecord:
    return TradeRecord(
        trade_id=row["trade_id"],
        account_id=row["account_id"],
        symbol=row["symbol"],
        trade_type=row["trade_type"],
        volume=_float_or_none(row["volume"]),
        entry_price=_float_or_none(row["entry_price"]),
        stop_loss=_float_or_none(row["stop_loss"]),
        take_profit=_float_or_none(row["take_profit"]),
        close_price=_float_or_none(row["close_price"]),
        profit=_float_or_none(row["profit"]),
        open_raw=row["open_raw"],
        close_raw=row["close_raw"],
        duration_seconds=_float_or_none(row["duration_seconds"]),
        created_at=_parse_iso(row["created_at"]),
        raw=_maybe_json(row["raw_json"]),
    )


def _float_or_none(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _maybe_json(value: Any) -> Any:
    if value is None:
        return {}
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return value


def _parse_iso(value: str | None) -> datetime:
    if value is None:
        raise ValueError("Missing timestamp")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
