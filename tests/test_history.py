from datetime import timedelta

import pytest

from conftest import FakePriceSource, T0, bar, tick
from drawdown_journal.models import TimeWindow
from drawdown_journal.pricing.history import PriceHistoryFetcher
from drawdown_journal.pricing.source import AnalysisCancelled, CancelToken

WINDOW = TimeWindow(open_at=T0 + timedelta(seconds=20), close_at=T0 + timedelta(minutes=3, seconds=5))


def test_bars_use_minute_aligned_window():
    source = FakePriceSource(bars=[bar(0, 1.0, 1.1), bar(1, 1.0, 1.1)])
    fetch = PriceHistoryFetcher(source).fetch_bars("eurusd", "bid", WINDOW)
    assert len(source.bar_calls) == 1
    assert fetch.query.start == T0
    assert fetch.query.end == T0 + timedelta(minutes=4)
    assert fetch.query.count == 2
    assert fetch.query.received_start == T0
    assert fetch.query.received_end == T0 + timedelta(minutes=1)


def test_empty_bars_retry_once_with_padding():
    padded = [bar(-1, 1.0, 1.1)]
    source = FakePriceSource(bar_batches=[[], padded])
    fetch = PriceHistoryFetcher(source, pad_seconds=60).fetch_bars("eurusd", "bid", WINDOW)
    assert len(source.bar_calls) == 2
    _, _, start, end, _ = source.bar_calls[1]
    assert start == T0 - timedelta(minutes=1)
    assert end == T0 + timedelta(minutes=5)
    assert fetch.bars == padded
    assert fetch.query.start == start


def test_padding_can_be_disabled():
    source = FakePriceSource()
    PriceHistoryFetcher(source, pad_seconds=0).fetch_bars("eurusd", "bid", WINDOW)
    assert len(source.bar_calls) == 1


def test_unavailable_source_yields_empty_series():
    source = FakePriceSource(fail=True)
    fetcher = PriceHistoryFetcher(source)
    assert fetcher.fetch_bars("eurusd", "bid", WINDOW).bars == []
    ticks = fetcher.fetch_ticks("eurusd", WINDOW)
    assert ticks.ticks == []
    assert ticks.query.count == 0


def test_offset_is_applied_to_query_and_removed_from_results():
    shifted_start = T0 + timedelta(hours=2)
    source = FakePriceSource(
        bars=[bar(0, 1.0, 1.1, start=shifted_start)],
        ticks=[tick(30, 1.05, start=shifted_start)],
    )
    fetcher = PriceHistoryFetcher(source, utc_offset_minutes=120)

    bars = fetcher.fetch_bars("eurusd", "bid", WINDOW)
    assert source.bar_calls[0][2] == shifted_start
    assert bars.bars[0].start_time == T0
    assert bars.query.start == T0
    assert bars.query.to_payload()["utc_offset"] == 120

    ticks = fetcher.fetch_ticks("eurusd", WINDOW)
    assert source.tick_calls[0][1] == WINDOW.open_at + timedelta(hours=2)
    assert ticks.ticks[0].timestamp == T0 + timedelta(seconds=30)


def test_results_are_sorted():
    source = FakePriceSource(bars=[bar(2, 1.0, 1.1), bar(0, 1.0, 1.1)])
    bars = PriceHistoryFetcher(source).fetch_bars("eurusd", "bid", WINDOW).bars
    assert [item.start_time for item in bars] == [T0, T0 + timedelta(minutes=2)]


def test_ticks_use_exact_window():
    source = FakePriceSource(ticks=[tick(30, 1.05)])
    fetch = PriceHistoryFetcher(source).fetch_ticks("eurusd", WINDOW)
    assert source.tick_calls == [("eurusd", WINDOW.open_at, WINDOW.close_at)]
    assert fetch.query.to_payload() == {
        "from": "2024-03-05T10:00:20Z",
        "to": "2024-03-05T10:03:05Z",
        "utc_offset": 0,
        "received_from": "2024-03-05T10:00:30Z",
        "received_to": "2024-03-05T10:00:30Z",
        "count": 1,
    }


def test_cancelled_token_stops_before_fetching():
    token = CancelToken()
    token.cancel()
    source = FakePriceSource()
    with pytest.raises(AnalysisCancelled):
        PriceHistoryFetcher(source).fetch_bars("eurusd", "bid", WINDOW, cancel=token)
    assert source.calls == 0


def test_expired_deadline_cancels():
    token = CancelToken(timeout_seconds=0)
    assert token.cancelled
    assert token.remaining() == 0.0
    with pytest.raises(AnalysisCancelled):
        token.raise_if_cancelled()
