from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from drawdown_journal.metrics.excursions import PriceBar, Tick
from drawdown_journal.models import TradeRecord
from drawdown_journal.pricing.source import PriceSourceUnavailable

T0 = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)


def bar(minute: int, low: float, high: float, *, start: datetime = T0) -> PriceBar:
    start_time = start + timedelta(minutes=minute)
    mid = (low + high) / 2
    return PriceBar(
        start_time=start_time,
        end_time=start_time + timedelta(minutes=1),
        open=mid,
        high=high,
        low=low,
        close=mid,
    )


def tick(second: int, bid: float, ask: float | None = None, *, start: datetime = T0) -> Tick:
    return Tick(timestamp=start + timedelta(seconds=second), bid=bid, ask=bid + 0.0001 if ask is None else ask)


class FakePriceSource:
    """Serves canned series and records every call."""

    def __init__(self, bars=None, ticks=None, *, fail: bool = False, bar_batches=None) -> None:
        self.bars = list(bars or [])
        self.ticks = list(ticks or [])
        self.fail = fail
        # Optional per-call answers for fetch_bars, consumed in order.
        self.bar_batches = list(bar_batches) if bar_batches is not None else None
        self.bar_calls: list[tuple] = []
        self.tick_calls: list[tuple] = []

    @property
    def calls(self) -> int:
        return len(self.bar_calls) + len(self.tick_calls)

    def fetch_bars(self, instrument, quote_side, start, end, timeframe="1m", *, cancel=None):
        self.bar_calls.append((instrument, quote_side, start, end, timeframe))
        if self.fail:
            raise PriceSourceUnavailable("offline")
        if self.bar_batches is not None:
            return list(self.bar_batches.pop(0)) if self.bar_batches else []
        return list(self.bars)

    def fetch_ticks(self, instrument, start, end, *, cancel=None):
        self.tick_calls.append((instrument, start, end))
        if self.fail:
            raise PriceSourceUnavailable("offline")
        return list(self.ticks)


def make_trade(**overrides) -> TradeRecord:
    values = {
        "trade_id": "t-1",
        "symbol": "EURUSD",
        "trade_type": "long",
        "entry_price": 1.1000,
        "stop_loss": 1.0950,
        "take_profit": 1.1100,
        "close_price": 1.1050,
        "volume": 1.0,
        "profit": 50.0,
        "open_raw": "2024-03-05 10:00:00",
        "close_raw": "2024-03-05 10:10:00",
        "duration_seconds": None,
        "created_at": T0,
    }
    values.update(overrides)
    return TradeRecord(**values)


@pytest.fixture
def trade_factory():
    return make_trade
