from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from drawdown_journal.metrics.excursions import PriceBar, Tick
from drawdown_journal.models import QueryRange, TimeWindow
from drawdown_journal.pricing.source import CancelToken, PriceSource, PriceSourceUnavailable
from drawdown_journal.reconstruct.window import ceil_to_minute, floor_to_minute

logger = logging.getLogger(__name__)

DEFAULT_TIMEFRAME = "1m"
DEFAULT_PAD_SECONDS = 60


@dataclass(frozen=True)
class BarFetch:
    bars: list[PriceBar]
    query: QueryRange


@dataclass(frozen=True)
class TickFetch:
    ticks: list[Tick]
    query: QueryRange


class PriceHistoryFetcher:
    """Query a price source over trade windows.

    Trade windows are expressed in the journal's clock. The provider is asked
    for ``window + utc_offset_minutes`` and the returned timestamps are shifted
    back, so every series handed to callers shares the trade's clock.
    """

    def __init__(
        self,
        source: PriceSource,
        *,
        utc_offset_minutes: int = 0,
        pad_seconds: int = DEFAULT_PAD_SECONDS,
    ) -> None:
        self._source = source
        self._offset = timedelta(minutes=utc_offset_minutes)
        self._utc_offset_minutes = utc_offset_minutes
        self._pad = timedelta(seconds=max(0, pad_seconds))

    def fetch_bars(
        self,
        instrument: str,
        quote_side: str,
        window: TimeWindow,
        timeframe: str = DEFAULT_TIMEFRAME,
        *,
        cancel: CancelToken | None = None,
    ) -> BarFetch:
        start = floor_to_minute(window.open_at)
        end = ceil_to_minute(window.close_at)
        bars = self._bars(instrument, quote_side, start, end, timeframe, cancel)
        if not bars and self._pad:
            start = floor_to_minute(window.open_at - self._pad)
            end = ceil_to_minute(window.close_at + self._pad)
            logger.debug("No %s bars for %s, retrying padded window %s -> %s", timeframe, instrument, start, end)
            bars = self._bars(instrument, quote_side, start, end, timeframe, cancel)
        query = QueryRange(
            start=start,
            end=end,
            utc_offset_minutes=self._utc_offset_minutes,
            received_start=bars[0].start_time if bars else None,
            received_end=bars[-1].start_time if bars else None,
            count=len(bars),
        )
        return BarFetch(bars=bars, query=query)

    def fetch_ticks(
        self,
        instrument: str,
        window: TimeWindow,
        *,
        cancel: CancelToken | None = None,
    ) -> TickFetch:
        start = window.open_at
        end = window.close_at
        ticks = self._ticks(instrument, start, end, cancel)
        query = QueryRange(
            start=start,
            end=end,
            utc_offset_minutes=self._utc_offset_minutes,
            received_start=ticks[0].timestamp if ticks else None,
            received_end=ticks[-1].timestamp if ticks else None,
            count=len(ticks),
        )
        return TickFetch(ticks=ticks, query=query)

    def _bars(
        self,
        instrument: str,
        quote_side: str,
        start: datetime,
        end: datetime,
        timeframe: str,
        cancel: CancelToken | None,
    ) -> list[PriceBar]:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            raw = self._source.fetch_bars(
                instrument,
                quote_side,
                start + self._offset,
                end + self._offset,
                timeframe,
                cancel=cancel,
            )
        except PriceSourceUnavailable as exc:
            logger.warning("Bar fetch failed for %s %s -> %s: %s", instrument, start, end, exc)
            return []
        bars = [
            replace(bar, start_time=bar.start_time - self._offset, end_time=bar.end_time - self._offset)
            for bar in raw
        ]
        bars.sort(key=lambda bar: bar.start_time)
        return bars

    def _ticks(
        self,
        instrument: str,
        start: datetime,
        end: datetime,
        cancel: CancelToken | None,
    ) -> list[Tick]:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            raw = self._source.fetch_ticks(instrument, start + self._offset, end + self._offset, cancel=cancel)
        except PriceSourceUnavailable as exc:
            logger.warning("Tick fetch failed for %s %s -> %s: %s", instrument, start, end, exc)
            return []
        ticks = [replace(tick, timestamp=tick.timestamp - self._offset) for tick in raw]
        ticks.sort(key=lambda tick: tick.timestamp)
        return ticks
