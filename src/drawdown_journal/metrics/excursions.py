from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from drawdown_journal.models import LONG

EXIT_SL = "SL"
EXIT_TP = "TP"


@dataclass(frozen=True)
class PriceBar:
    start_time: datetime
    end_time: datetime
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class Tick:
    timestamp: datetime
    bid: float
    ask: float


@dataclass(frozen=True)
class WalkResult:
    adverse: float
    early_exit: str | None
    extreme: float
    samples: int


def walk_bars(
    bars: Iterable[PriceBar],
    side: str,
    entry: float,
    stop: float,
    target: float | None = None,
) -> WalkResult:
    """Track the worst excursion against the position across OHLC bars.

    Long positions are hurt by lows and exit on highs; shorts mirror that.
    A stop touch ends the walk with the full stop distance; a target touch
    ends it with the excursion seen so far.
    """
    if side == LONG:
        path = ((bar.low, bar.high) for bar in bars)
    else:
        path = ((bar.high, bar.low) for bar in bars)
    return _walk(path, side, entry, stop, target)


def walk_ticks(
    ticks: Iterable[Tick],
    side: str,
    entry: float,
    stop: float,
    target: float | None = None,
) -> WalkResult:
    # A long exits at the bid, a short at the ask; the same price drives both checks.
    if side == LONG:
        path = ((tick.bid, tick.bid) for tick in ticks)
    else:
        path = ((tick.ask, tick.ask) for tick in ticks)
    return _walk(path, side, entry, stop, target)


def price_to_pips(delta: float, pip_size: float) -> float:
    return delta / pip_size


def stop_distance(side: str, entry: float, stop: float) -> float:
    return entry - stop if side == LONG else stop - entry


def pct_of_stop(adverse_pips: float, stop_pips: float) -> float:
    if stop_pips <= 0:
        return 0.0
    return max(0.0, min(100.0, adverse_pips / stop_pips * 100.0))


def _walk(
    path: Iterable[tuple[float, float]],
    side: str,
    entry: float,
    stop: float,
    target: float | None,
) -> WalkResult:
    is_long = side == LONG
    extreme = entry
    samples = 0
    early_exit: str | None = None
    has_target = target is not None and math.isfinite(target)

    for adverse_px, favourable_px in path:
        samples += 1
        if math.isfinite(adverse_px):
            extreme = min(extreme, adverse_px) if is_long else max(extreme, adverse_px)
            stop_hit = adverse_px <= stop if is_long else adverse_px >= stop
            if stop_hit:
                return WalkResult(
                    adverse=stop_distance(side, entry, stop),
                    early_exit=EXIT_SL,
                    extreme=extreme,
                    samples=samples,
                )
        if has_target and math.isfinite(favourable_px):
            target_hit = favourable_px >= target if is_long else favourable_px <= target
            if target_hit:
                early_exit = EXIT_TP
                break

    adverse = entry - extreme if is_long else extreme - entry
    return WalkResult(adverse=max(0.0, adverse), early_exit=early_exit, extreme=extreme, samples=samples)
