from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from drawdown_journal.metrics.excursions import PriceBar, Tick
from drawdown_journal.pricing.source import CancelToken, PriceSource
from drawdown_journal.storage import sqlite_reader

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SOURCE = "dukascopy"

# Cached ticks count as covering a window when they reach this close to both edges.
_TICK_EDGE_SLACK = timedelta(seconds=60)


class CachedPriceSource:
    """Serve price history from the local SQLite cache before asking upstream.

    The cache is populated by the ingestion job; this wrapper never writes.
    A missing or unreadable cache falls through to the upstream source.
    """

    def __init__(self, upstream: PriceSource, db_path: Path, *, source_name: str = DEFAULT_CACHE_SOURCE) -> None:
        self._upstream = upstream
        self._db_path = db_path
        self._source_name = source_name

    def fetch_bars(
        self,
        instrument: str,
        quote_side: str,
        start: datetime,
        end: datetime,
        timeframe: str = "1m",
        *,
        cancel: CancelToken | None = None,
    ) -> list[PriceBar]:
        cached = self._read_cache(
            sqlite_reader.load_price_bars,
            source=self._source_name,
            instrument=instrument,
            timeframe=timeframe,
            quote_side=quote_side,
            start=start,
            end=end,
        )
        if _covers_window(cached, start, end):
            logger.debug("Serving %d cached %s bars for %s", len(cached), timeframe, instrument)
            return cached
        return self._upstream.fetch_bars(instrument, quote_side, start, end, timeframe, cancel=cancel)

    def fetch_ticks(
        self,
        instrument: str,
        start: datetime,
        end: datetime,
        *,
        cancel: CancelToken | None = None,
    ) -> list[Tick]:
        cached = self._read_cache(
            sqlite_reader.load_ticks,
            source=self._source_name,
            instrument=instrument,
            start=start,
            end=end,
        )
        if _ticks_cover_window(cached, start, end):
            logger.debug("Serving %d cached ticks for %s", len(cached), instrument)
            return cached
        return self._upstream.fetch_ticks(instrument, start, end, cancel=cancel)

    def _read_cache(self, loader: Callable[..., list[Any]], **query: Any) -> list[Any]:
        if not self._db_path.exists():
            return []
        conn = sqlite_reader.connect(self._db_path)
        try:
            return loader(conn, **query)
        except sqlite3.OperationalError as exc:
            logger.warning("Price cache unreadable at %s, using upstream: %s", self._db_path, exc)
            return []
        finally:
            conn.close()


def _covers_window(bars: list[PriceBar], start: datetime, end: datetime) -> bool:
    if not bars:
        return False
    earliest = bars[0].start_time
    latest = bars[-1].end_time
    return earliest <= start and latest >= end


def _ticks_cover_window(ticks: list[Tick], start: datetime, end: datetime) -> bool:
    if not ticks:
        return False
    return ticks[0].timestamp - start <= _TICK_EDGE_SLACK and end - ticks[-1].timestamp <= _TICK_EDGE_SLACK
