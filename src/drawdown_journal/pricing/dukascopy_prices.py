from __future__ import annotations

import logging
import lzma
import struct
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

from drawdown_journal.config.app_config import PricingSettings
from drawdown_journal.metrics.excursions import PriceBar, Tick
from drawdown_journal.models import ASK, BID
from drawdown_journal.pricing.instruments import is_index, is_metal
from drawdown_journal.pricing.source import CancelToken, PriceSourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://datafeed.dukascopy.com/datafeed"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.75
DEFAULT_BATCH_SIZE = 10
DEFAULT_PAUSE_BETWEEN_BATCHES_MS = 1000

# (seconds from period start, open, close, low, high, volume)
_CANDLE_RECORD = struct.Struct(">IIIIIf")
# (millis from hour start, ask, bid, ask volume, bid volume)
_TICK_RECORD = struct.Struct(">IIIff")

_TIMEFRAMES = {
    "1m": timedelta(minutes=1),
    "m1": timedelta(minutes=1),
    "1h": timedelta(hours=1),
    "h1": timedelta(hours=1),
}

Fetch = Callable[[str, float], bytes]


@dataclass(frozen=True)
class DukascopyConfig:
    base_url: str
    timeout_seconds: float
    retry_attempts: int
    retry_backoff_seconds: float
    batch_size: int
    pause_between_batches_ms: int

    @classmethod
    def from_settings(cls, settings: PricingSettings) -> "DukascopyConfig":
        return cls(
            base_url=settings.base_url.rstrip("/") or DEFAULT_BASE_URL,
            timeout_seconds=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            batch_size=settings.batch_size,
            pause_between_batches_ms=settings.pause_between_batches_ms,
        )


class DukascopyPriceClient:
    """Reads bars and ticks from the public Dukascopy datafeed (.bi5 files)."""

    def __init__(self, config: DukascopyConfig, fetch: Fetch | None = None) -> None:
        self._config = config
        self._fetch = fetch or _http_get

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
        step = _timeframe_step(timeframe)
        side_prefix = _side_prefix(quote_side)
        code = instrument.strip().upper()
        if step == timedelta(minutes=1):
            periods = list(_day_starts(start, end))
            urls = [f"{self._day_path(code, period)}/{side_prefix}_candles_min_1.bi5" for period in periods]
        else:
            periods = list(_month_starts(start, end))
            urls = [f"{self._month_path(code, period)}/{side_prefix}_candles_hour_1.bi5" for period in periods]

        factor = _point_factor(instrument)
        payloads = self._download_all(urls, cancel)
        bars: list[PriceBar] = []
        for period, payload in zip(periods, payloads):
            for bar in _decode_candles(payload, period, step, factor):
                if start <= bar.start_time < end:
                    bars.append(bar)
        bars.sort(key=lambda bar: bar.start_time)
        return bars

    def fetch_ticks(
        self,
        instrument: str,
        start: datetime,
        end: datetime,
        *,
        cancel: CancelToken | None = None,
    ) -> list[Tick]:
        code = instrument.strip().upper()
        hours = list(_hour_starts(start, end))
        urls = [f"{self._day_path(code, hour)}/{hour.hour:02d}h_ticks.bi5" for hour in hours]

        factor = _point_factor(instrument)
        payloads = self._download_all(urls, cancel)
        ticks: list[Tick] = []
        for hour, payload in zip(hours, payloads):
            for tick in _decode_ticks(payload, hour, factor):
                if start <= tick.timestamp <= end:
                    ticks.append(tick)
        ticks.sort(key=lambda tick: tick.timestamp)
        return ticks

    def _day_path(self, code: str, day: datetime) -> str:
        return f"{self._month_path(code, day)}/{day.day:02d}"

    def _month_path(self, code: str, period: datetime) -> str:
        # Dukascopy months are zero-based.
        return f"{self._config.base_url}/{code}/{period.year:04d}/{period.month - 1:02d}"

    def _download_all(self, urls: list[str], cancel: CancelToken | None) -> list[bytes]:
        batch_size = max(1, self._config.batch_size)
        pause_seconds = max(0, self._config.pause_between_batches_ms) / 1000.0
        payloads: list[bytes] = []
        for index in range(0, len(urls), batch_size):
            if index:
                _pause(pause_seconds, cancel)
            elif cancel is not None:
                cancel.raise_if_cancelled()
            batch = urls[index : index + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                payloads.extend(pool.map(lambda url: self._download(url, cancel), batch))
        return payloads

    def _download(self, url: str, cancel: CancelToken | None) -> bytes:
        last_error: Exception | None = None
        attempts = max(1, self._config.retry_attempts)
        for attempt in range(attempts):
            if cancel is not None:
                cancel.raise_if_cancelled()
            timeout = self._config.timeout_seconds if cancel is None else cancel.timeout(self._config.timeout_seconds)
            try:
                return self._fetch(url, timeout)
            except (urllib.error.URLError, TimeoutError, ConnectionError) as exc:
                last_error = exc
                if attempt >= attempts - 1:
                    break
                _pause(self._config.retry_backoff_seconds * (2**attempt), cancel)
        raise PriceSourceUnavailable(f"Dukascopy download failed for {url}: {last_error}") from last_error


def _http_get(url: str, timeout: float) -> bytes:
    request = urllib.request.Request(url, headers={"Accept": "application/octet-stream"})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        if exc.code == 404:
            return b""
        raise


def _decode_candles(payload: bytes, period_start: datetime, step: timedelta, factor: float) -> Iterator[PriceBar]:
    for seconds, open_, close, low, high, _volume in _records(payload, _CANDLE_RECORD):
        start_time = period_start + timedelta(seconds=seconds)
        yield PriceBar(
            start_time=start_time,
            end_time=start_time + step,
            open=open_ / factor,
            high=high / factor,
            low=low / factor,
            close=close / factor,
        )


def _decode_ticks(payload: bytes, hour_start: datetime, factor: float) -> Iterator[Tick]:
    for millis, ask, bid, _ask_volume, _bid_volume in _records(payload, _TICK_RECORD):
        yield Tick(
            timestamp=hour_start + timedelta(milliseconds=millis),
            bid=bid / factor,
            ask=ask / factor,
        )


def _records(payload: bytes, record: struct.Struct) -> Iterator[tuple]:
    if not payload:
        return iter(())
    raw = lzma.decompress(payload)
    if len(raw) % record.size:
        raise ValueError(f"Malformed datafeed payload: {len(raw)} bytes is not a multiple of {record.size}")
    return record.iter_unpack(raw)


def _point_factor(instrument: str) -> float:
    text = instrument.lower()
    if "jpy" in text or is_metal(text) or is_index(text):
        return 1_000.0
    return 100_000.0


def _side_prefix(quote_side: str) -> str:
    side = quote_side.strip().lower()
    if side == BID:
        return "BID"
    if side == ASK:
        return "ASK"
    raise ValueError(f"Unsupported quote side: {quote_side}")


def _timeframe_step(timeframe: str) -> timedelta:
    step = _TIMEFRAMES.get(timeframe.strip().lower())
    if step is None:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return step


def _pause(seconds: float, cancel: CancelToken | None) -> None:
    if cancel is None:
        time.sleep(seconds)
    else:
        cancel.sleep(seconds)


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def _hour_starts(start: datetime, end: datetime) -> Iterator[datetime]:
    hour = _utc(start).replace(minute=0, second=0, microsecond=0)
    stop = _utc(end)
    while hour <= stop:
        yield hour
        hour += timedelta(hours=1)


def _day_starts(start: datetime, end: datetime) -> Iterator[datetime]:
    day = _utc(start).replace(hour=0, minute=0, second=0, microsecond=0)
    stop = _utc(end)
    while day < stop:
        yield day
        day += timedelta(days=1)


def _month_starts(start: datetime, end: datetime) -> Iterator[datetime]:
    month = _utc(start).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    stop = _utc(end)
    while month < stop:
        yield month
        if month.month == 12:
            month = month.replace(year=month.year + 1, month=1)
        else:
            month = month.replace(month=month.month + 1)
