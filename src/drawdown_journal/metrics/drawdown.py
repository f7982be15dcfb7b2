"""Classify how close a closed trade came to its stop-loss.

Rules are evaluated in a fixed order and the first match wins:

1. ``NO_SL``: no usable stop (or entry); nothing is fetched.
2. ``EXACT_SL_CLOSE``: the close sits within half a pip of the stop. A stop
   that itself sits within half a pip of entry is reported as ``BE``.
3. ``CLOSED_IN_DD``: a losing trade with a close price is measured from the
   close alone.
4. ``STOP_NOT_ADVERSE``: the stop is on the profit side of entry, so there is
   no adverse distance to measure against.
5. Minute bars are walked; a stop touch reports ``SL``.
6. Winning trades whose bars show no adverse movement are re-walked on ticks.
7. ``NO_PRICE_DATA``: no bars could be fetched.

Every branch emits one :class:`DecisionEvent`. Unexpected failures come back
as a result carrying ``error``; only cancellation propagates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict

from drawdown_journal.metrics.excursions import (
    EXIT_SL,
    pct_of_stop,
    price_to_pips,
    stop_distance,
    walk_bars,
    walk_ticks,
)
from drawdown_journal.metrics.trace import DecisionEvent, TraceSink, log_sink
from drawdown_journal.models import (
    HIT_BE,
    HIT_CLOSE,
    HIT_NONE,
    HIT_SL,
    NOTE_NO_SL,
    DrawdownResult,
    QueryRange,
    TradeRecord,
)
from drawdown_journal.pricing.history import DEFAULT_TIMEFRAME, PriceHistoryFetcher
from drawdown_journal.pricing.instruments import resolve_instrument
from drawdown_journal.pricing.source import AnalysisCancelled, CancelToken
from drawdown_journal.reconstruct.window import resolve_trade_window

logger = logging.getLogger(__name__)

BE_TOLERANCE_PIPS = 0.5
_NEAR_ZERO_PIPS = 1e-9
# Float slack on the half-pip boundary, applied in pip units.
_PIP_EPSILON = 1e-9


class _Emitter:
    def __init__(self, trade_id: str, debug: bool, sink: TraceSink) -> None:
        self._trade_id = trade_id
        self._debug = debug
        self._sink = sink

    def __call__(self, branch: str, **details) -> None:
        self._sink(DecisionEvent(branch=branch, trade_id=self._trade_id, debug=self._debug, details=details))


def compute_drawdown(
    trade: TradeRecord,
    fetcher: PriceHistoryFetcher,
    *,
    debug: bool = False,
    timeframe: str = DEFAULT_TIMEFRAME,
    sink: TraceSink | None = None,
    cancel: CancelToken | None = None,
) -> DrawdownResult:
    emit = _Emitter(trade.trade_id, debug, sink or log_sink)
    try:
        return _classify(trade, fetcher, emit, debug=debug, timeframe=timeframe, cancel=cancel)
    except AnalysisCancelled:
        raise
    except Exception as exc:
        logger.exception("Drawdown computation failed for trade %s", trade.trade_id)
        message = str(exc) or type(exc).__name__
        emit("ERROR", error=message)
        return DrawdownResult(id=trade.trade_id, adverse_pips=None, pct_to_sl=None, hit=HIT_NONE, error=message)


def _classify(
    trade: TradeRecord,
    fetcher: PriceHistoryFetcher,
    emit: _Emitter,
    *,
    debug: bool,
    timeframe: str,
    cancel: CancelToken | None,
) -> DrawdownResult:
    resolved = resolve_trade_window(trade)
    profile = resolve_instrument(trade.symbol)
    window = resolved.window
    side = resolved.side
    pip = profile.pip_size

    entry = _finite(trade.entry_price) or 0.0
    stop = trade.stop_loss
    target = _finite(trade.take_profit)
    close_px = _finite(trade.close_price)
    profit = _finite(trade.profit)
    volume = _finite(trade.volume) or 1.0

    context = {
        "symbol": trade.symbol,
        "instrument": profile.canonical_id,
        "side": side,
        "quote_side": resolved.quote_side,
        "entry": entry,
        "stop": stop,
        "target": target,
        "profit": profit,
        "open_at": window.open_at.isoformat(),
        "close_at": window.close_at.isoformat(),
        "duration_seconds": window.duration_seconds,
    }

    if not entry > 0 or stop is None or not math.isfinite(stop) or stop <= 0:
        emit("NO_SL", **context)
        return DrawdownResult(id=trade.trade_id, adverse_pips=0.0, pct_to_sl=None, hit=HIT_NONE, note=NOTE_NO_SL)

    stop_pips = price_to_pips(abs(stop - entry), pip)

    if close_px is not None and _within_tolerance(close_px, stop, pip):
        hit = HIT_BE if _within_tolerance(stop, entry, pip) else HIT_SL
        emit("EXACT_SL_CLOSE", close=close_px, stop_pips=_round2(stop_pips), hit=hit, **context)
        return DrawdownResult(id=trade.trade_id, adverse_pips=_round2(stop_pips), pct_to_sl=100.0, hit=hit)

    if profit is not None and profit < 0 and close_px is not None:
        adverse_pips = price_to_pips(abs(close_px - entry), pip)
        pct = pct_of_stop(adverse_pips, stop_pips)
        adverse_usd = adverse_pips * profile.contract_size * volume
        emit(
            "CLOSED_IN_DD",
            close=close_px,
            adverse_pips=_round2(adverse_pips),
            stop_pips=_round2(stop_pips),
            pct_to_sl=_round2(pct),
            **context,
        )
        return DrawdownResult(
            id=trade.trade_id,
            adverse_pips=_round2(adverse_pips),
            adverse_usd=_round2(adverse_usd),
            pct_to_sl=_round2(pct),
            hit=HIT_CLOSE,
        )

    if not stop_distance(side, entry, stop) > 0:
        emit("STOP_NOT_ADVERSE", **context)
        return DrawdownResult(id=trade.trade_id, adverse_pips=0.0, pct_to_sl=0.0, hit=HIT_NONE)

    bar_fetch = fetcher.fetch_bars(profile.canonical_id, resolved.quote_side, window, timeframe, cancel=cancel)
    candle_range = bar_fetch.query
    if not bar_fetch.bars:
        emit("NO_PRICE_DATA", candle_range=candle_range.to_payload(), timeframe=timeframe, **context)
        return DrawdownResult(
            id=trade.trade_id,
            adverse_pips=0.0,
            pct_to_sl=0.0,
            hit=HIT_NONE,
            candle_range=candle_range,
        )

    if debug:
        emit("SAMPLE_KEYS", keys=sorted(asdict(bar_fetch.bars[0])), count=len(bar_fetch.bars))

    bar_walk = walk_bars(bar_fetch.bars, side, entry, stop, target)
    if bar_walk.early_exit == EXIT_SL:
        emit("CANDLE_SL", candle_range=candle_range.to_payload(), samples=bar_walk.samples, **context)
        return _stop_hit(trade, stop_pips, candle_range, None)

    adverse_pips = price_to_pips(bar_walk.adverse, pip)
    pct = pct_of_stop(adverse_pips, stop_pips)
    tick_range: QueryRange | None = None

    if (adverse_pips <= _NEAR_ZERO_PIPS or pct <= 0) and profit is not None and profit > 0:
        tick_fetch = fetcher.fetch_ticks(profile.canonical_id, window, cancel=cancel)
        tick_range = tick_fetch.query
        if tick_fetch.ticks:
            tick_walk = walk_ticks(tick_fetch.ticks, side, entry, stop, target)
            if tick_walk.early_exit == EXIT_SL:
                emit(
                    "TICK_SL",
                    candle_range=candle_range.to_payload(),
                    tick_range=tick_range.to_payload(),
                    samples=tick_walk.samples,
                    **context,
                )
                return _stop_hit(trade, stop_pips, candle_range, tick_range)
            adverse_pips = price_to_pips(tick_walk.adverse, pip)
            pct = pct_of_stop(adverse_pips, stop_pips)
        emit(
            "TICK_FALLBACK",
            ticks_count=len(tick_fetch.ticks),
            adverse_pips=_round2(adverse_pips),
            pct_to_sl=_round2(pct),
            tick_range=tick_range.to_payload(),
            **context,
        )

    adverse_usd = adverse_pips * profile.contract_size * volume
    emit(
        "RESULT",
        bars_count=len(bar_fetch.bars),
        extreme=bar_walk.extreme,
        early_exit=bar_walk.early_exit,
        adverse_pips=_round2(adverse_pips),
        adverse_usd=_round2(adverse_usd),
        stop_pips=_round2(stop_pips),
        pct_to_sl=_round2(pct),
        candle_range=candle_range.to_payload(),
        timeframe=timeframe,
        **context,
    )
    return DrawdownResult(
        id=trade.trade_id,
        adverse_pips=_round2(adverse_pips),
        adverse_usd=_round2(adverse_usd),
        pct_to_sl=_round2(pct),
        hit=HIT_CLOSE,
        candle_range=candle_range,
        tick_range=tick_range,
    )


def _stop_hit(
    trade: TradeRecord,
    stop_pips: float,
    candle_range: QueryRange,
    tick_range: QueryRange | None,
) -> DrawdownResult:
    return DrawdownResult(
        id=trade.trade_id,
        adverse_pips=_round2(stop_pips),
        pct_to_sl=100.0,
        hit=HIT_SL,
        candle_range=candle_range,
        tick_range=tick_range,
    )


def _within_tolerance(price: float, level: float, pip: float) -> bool:
    return price_to_pips(abs(price - level), pip) <= BE_TOLERANCE_PIPS + _PIP_EPSILON


def _finite(value: float | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _round2(value: float) -> float:
    return round(value, 2)
