from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Protocol

from drawdown_journal.metrics.excursions import PriceBar, Tick


class PriceSourceUnavailable(RuntimeError):
    """The upstream price source could not be reached or refused the request."""


class AnalysisCancelled(RuntimeError):
    """The caller cancelled the analysis or its deadline elapsed."""


class CancelToken:
    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = None if timeout_seconds is None else time.monotonic() + max(0.0, timeout_seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled("Analysis cancelled by caller.")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise AnalysisCancelled("Analysis deadline exceeded.")

    def timeout(self, default: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._event.wait(self.timeout(seconds))
        self.raise_if_cancelled()


class PriceSource(Protocol):
    """Market data provider queried in true UTC."""

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
        ...

    def fetch_ticks(
        self,
        instrument: str,
        start: datetime,
        end: datetime,
        *,
        cancel: CancelToken | None = None,
    ) -> list[Tick]:
        ...
