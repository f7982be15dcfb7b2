from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from drawdown_journal.metrics.excursions import PriceBar, Tick
from drawdown_journal.models import TradeRecord


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            trade_id TEXT PRIMARY KEY,
            account_id TEXT,
            symbol TEXT NOT NULL,
            trade_type TEXT,
            volume REAL,
            entry_price REAL,
            stop_loss REAL,
            take_profit REAL,
            close_price REAL,
            profit REAL,
            open_raw TEXT,
            close_raw TEXT,
            duration_seconds TEXT,
            created_at TEXT NOT NULL,
            raw_json TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS price_bars (
            source TEXT NOT NULL,
            instrument TEXT NOT NULL,
            timeframe TEXT NOT NULL,
            quote_side TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            open REAL NOT NULL,
            high REAL NOT NULL,
            low REAL NOT NULL,
            close REAL NOT NULL,
            volume REAL,
            PRIMARY KEY (source, instrument, timeframe, quote_side, timestamp)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ticks (
            source TEXT NOT NULL,
            instrument TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            bid REAL NOT NULL,
            ask REAL NOT NULL,
            PRIMARY KEY (source, instrument, timestamp, bid, ask)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_account ON trades (account_id, created_at)")
    conn.commit()


def upsert_trades(conn: sqlite3.Connection, trades: Iterable[TradeRecord]) -> int:
    rows = [
        (
            trade.trade_id,
            trade.account_id,
            trade.symbol,
            trade.trade_type,
            trade.volume,
            trade.entry_price,
            trade.stop_loss,
            trade.take_profit,
            trade.close_price,
            trade.profit,
            trade.open_raw,
            trade.close_raw,
            None if trade.duration_seconds is None else str(trade.duration_seconds),
            iso_utc(trade.created_at),
            _json_dump(trade.raw),
        )
        for trade in trades
    ]
    if not rows:
        return 0
    conn.executemany(
        """
        INSERT INTO trades (
            trade_id, account_id, symbol, trade_type, volume, entry_price, stop_loss,
            take_profit, close_price, profit, open_raw, close_raw, duration_seconds,
            created_at, raw_json
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(trade_id) DO UPDATE SET
            account_id = excluded.account_id,
            symbol = excluded.symbol,
            trade_type = excluded.trade_type,
            volume = excluded.volume,
            entry_price = excluded.entry_price,
            stop_loss = excluded.stop_loss,
            take_profit = excluded.take_profit,
            close_price = excluded.close_price,
            profit = excluded.profit,
            open_raw = excluded.open_raw,
            close_raw = excluded.close_raw,
            duration_seconds = excluded.duration_seconds,
            raw_json = excluded.raw_json
        """,
        rows,
    )
    conn.commit()
    return len(rows)


def upsert_price_bars(
    conn: sqlite3.Connection,
    bars: Iterable[PriceBar],
    *,
    source: str,
    instrument: str,
    timeframe: str,
    quote_side: str,
) -> int:
    rows = [
        (source, instrument, timeframe, quote_side, iso_utc(bar.start_time), bar.open, bar.high, bar.low, bar.close, None)
        for bar in bars
    ]
    if not rows:
        return 0
    conn.executemany(
        """
        INSERT OR REPLACE INTO price_bars (
            source, instrument, timeframe, quote_side, timestamp, open, high, low, close, volume
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        rows,
    )
    conn.commit()
    return len(rows)


def upsert_ticks(conn: sqlite3.Connection, ticks: Iterable[Tick], *, source: str, instrument: str) -> int:
    rows = [(source, instrument, iso_utc(tick.timestamp), tick.bid, tick.ask) for tick in ticks]
    if not rows:
        return 0
    conn.executemany(
        "INSERT OR IGNORE INTO ticks (source, instrument, timestamp, bid, ask) VALUES (?, ?, ?, ?, ?)",
        rows,
    )
    conn.commit()
    return len(rows)


def iso_utc(value: datetime) -> str:
    # Fixed precision keeps lexical order equal to time order in range queries.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _json_dump(value: object) -> str:
    return json.dumps(value, default=str, sort_keys=True)
