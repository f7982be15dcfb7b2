import logging
from dataclasses import replace

from conftest import FakePriceSource, make_trade
from drawdown_journal.analyzer import DrawdownAnalyzer, build_analyzer, build_price_source, sqlite_trade_loader
from drawdown_journal.config.app_config import load_app_config
from drawdown_journal.logging_setup import setup_logging, teardown_logging
from drawdown_journal.metrics.trace import DecisionEvent, log_sink
from drawdown_journal.models import HIT_NONE
from drawdown_journal.pricing.cached_prices import CachedPriceSource
from drawdown_journal.pricing.dukascopy_prices import DukascopyPriceClient
from drawdown_journal.pricing.history import PriceHistoryFetcher
from drawdown_journal.storage.sqlite_store import connect, init_db, upsert_trades


def _config(tmp_path, *, use_local_cache=False):
    config = load_app_config(tmp_path / "missing.toml")
    return replace(
        config,
        app=replace(config.app, db_path=tmp_path / "journal.sqlite"),
        pricing=replace(config.pricing, use_local_cache=use_local_cache),
    )


def test_unknown_trade_returns_none():
    analyzer = DrawdownAnalyzer(lambda trade_id: None, PriceHistoryFetcher(FakePriceSource()))
    assert analyzer.compute_drawdown("missing") is None


def test_loader_failure_becomes_error_result():
    def broken(trade_id):
        raise RuntimeError("database is locked")

    result = DrawdownAnalyzer(broken, PriceHistoryFetcher(FakePriceSource())).compute_drawdown("t-1")
    assert result.hit == HIT_NONE
    assert result.error == "database is locked"


def test_sqlite_loader(tmp_path):
    db_path = tmp_path / "journal.sqlite"
    assert sqlite_trade_loader(db_path)("t-1") is None
    conn = connect(db_path)
    init_db(conn)
    upsert_trades(conn, [make_trade()])
    conn.close()
    assert sqlite_trade_loader(db_path)("t-1").symbol == "EURUSD"


def test_price_source_honours_cache_toggle(tmp_path):
    assert isinstance(build_price_source(_config(tmp_path)), DukascopyPriceClient)
    assert isinstance(build_price_source(_config(tmp_path, use_local_cache=True)), CachedPriceSource)


def test_build_analyzer_with_sink(tmp_path):
    db_path = tmp_path / "journal.sqlite"
    conn = connect(db_path)
    init_db(conn)
    upsert_trades(conn, [make_trade(stop_loss=None)])
    conn.close()

    events = []
    analyzer = build_analyzer(_config(tmp_path), sink=events.append)
    result = analyzer.compute_drawdown("t-1")
    assert result.note == "NO_SL"
    assert [event.branch for event in events] == ["NO_SL"]


def test_log_sink_level_follows_debug(caplog):
    with caplog.at_level(logging.DEBUG, logger="drawdown_journal.metrics.trace"):
        log_sink(DecisionEvent(branch="RESULT", trade_id="t-1", debug=True, details={"pct_to_sl": 20.0}))
        log_sink(DecisionEvent(branch="NO_SL", trade_id="t-2", debug=False))
    levels = [(record.levelno, record.getMessage()) for record in caplog.records]
    assert levels[0][0] == logging.INFO
    assert '"pct_to_sl": 20.0' in levels[0][1]
    assert levels[1][0] == logging.DEBUG


def test_setup_logging_writes_file(tmp_path):
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    for handler in saved[0]:
        root.removeHandler(handler)
    try:
        setup_logging("warning", tmp_path / "logs", console_output=False)
        logging.getLogger("drawdown_journal.test").warning("hello")
        assert root.level == logging.WARNING
        teardown_logging()
        assert "hello" in (tmp_path / "logs" / "drawdown_journal.log").read_text(encoding="utf-8")
    finally:
        teardown_logging()
        for handler in saved[0]:
            root.addHandler(handler)
        root.setLevel(saved[1])
