from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from drawdown_journal.config.app_config import AppConfig
from drawdown_journal.metrics.drawdown import compute_drawdown
from drawdown_journal.metrics.trace import TraceSink
from drawdown_journal.models import HIT_NONE, DrawdownResult, TradeRecord
from drawdown_journal.pricing.cached_prices import CachedPriceSource
from drawdown_journal.pricing.dukascopy_prices import DukascopyConfig, DukascopyPriceClient
from drawdown_journal.pricing.history import DEFAULT_TIMEFRAME, PriceHistoryFetcher
from drawdown_journal.pricing.source import CancelToken, PriceSource
from drawdown_journal.storage import sqlite_reader

logger = logging.getLogger(__name__)

TradeLoader = Callable[[str], TradeRecord | None]


class DrawdownAnalyzer:
    def __init__(
        self,
        load_trade: TradeLoader,
        fetcher: PriceHistoryFetcher,
        *,
        timeframe: str = DEFAULT_TIMEFRAME,
        sink: TraceSink | None = None,
    ) -> None:
        self._load_trade = load_trade
        self._fetcher = fetcher
        self._timeframe = timeframe
        self._sink = sink

    def compute_drawdown(
        self,
        trade_id: str,
        debug: bool = False,
        cancel: CancelToken | None = None,
    ) -> DrawdownResult | None:
        """Analyze one stored trade; ``None`` means the id is unknown."""
        try:
            trade = self._load_trade(trade_id)
        except Exception as exc:
            logger.exception("Failed to load trade %s", trade_id)
            return DrawdownResult(
                id=trade_id,
                adverse_pips=None,
                pct_to_sl=None,
                hit=HIT_NONE,
                error=str(exc) or type(exc).__name__,
            )
        if trade is None:
            return None
        return compute_drawdown(
            trade,
            self._fetcher,
            debug=debug,
            timeframe=self._timeframe,
            sink=self._sink,
            cancel=cancel,
        )


def sqlite_trade_loader(db_path: Path) -> TradeLoader:
    def _load(trade_id: str) -> TradeRecord | None:
        if not db_path.exists():
            return None
        conn = sqlite_reader.connect(db_path)
        try:
            return sqlite_reader.load_trade(conn, trade_id)
        finally:
            conn.close()

    return _load


def build_price_source(app_config: AppConfig) -> PriceSource:
    client = DukascopyPriceClient(DukascopyConfig.from_settings(app_config.pricing))
    if app_config.pricing.use_local_cache:
        return CachedPriceSource(client, app_config.app.db_path)
    return client


def build_analyzer(app_config: AppConfig, *, sink: TraceSink | None = None) -> DrawdownAnalyzer:
    pricing = app_config.pricing
    fetcher = PriceHistoryFetcher(
        build_price_source(app_config),
        utc_offset_minutes=pricing.utc_offset_minutes,
        pad_seconds=pricing.pad_seconds,
    )
    return DrawdownAnalyzer(
        sqlite_trade_loader(app_config.app.db_path),
        fetcher,
        timeframe=pricing.timeframe,
        sink=sink,
    )
