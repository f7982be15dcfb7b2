from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from drawdown_journal.analyzer import build_analyzer
from drawdown_journal.config.app_config import AppConfig, load_app_config
from drawdown_journal.logging_setup import setup_logging
from drawdown_journal.pricing.source import AnalysisCancelled, CancelToken
from drawdown_journal.storage import sqlite_reader

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Compute adverse excursion against the stop-loss for stored trades.")
    parser.add_argument("trade_ids", nargs="*", help="Trade ids to analyze.")
    parser.add_argument("--all", action="store_true", help="Analyze every stored trade.")
    parser.add_argument("--account", type=str, default=None, help="Limit --all to one account id.")
    parser.add_argument("--db", type=Path, default=None, help="SQLite DB path (overrides config).")
    parser.add_argument("--config", type=Path, default=None, help="Path to app.toml.")
    parser.add_argument("--debug", action="store_true", help="Log every decision branch at INFO.")
    parser.add_argument("--out", type=Path, default=None, help="Write JSON to a file instead of stdout.")
    args = parser.parse_args(argv)

    if not args.trade_ids and not args.all:
        parser.error("pass one or more trade ids, or --all")

    app_config = load_app_config(args.config)
    if args.db is not None:
        app_config = _with_db_path(app_config, args.db)
    setup_logging(app_config.logging.level, app_config.logging.logs_dir)

    db_path = app_config.app.db_path
    if not db_path.exists():
        logger.error("SQLite DB not found: %s", db_path)
        return 1

    trade_ids = list(args.trade_ids)
    if args.all:
        conn = sqlite_reader.connect(db_path)
        try:
            trade_ids.extend(
                trade_id
                for trade_id in sqlite_reader.load_trade_ids(conn, account_id=args.account)
                if trade_id not in trade_ids
            )
        finally:
            conn.close()

    analyzer = build_analyzer(app_config)
    debug = args.debug or app_config.analysis.debug
    payload: dict[str, dict[str, Any] | None] = {}
    missing = 0
    for trade_id in trade_ids:
        token = CancelToken(app_config.analysis.timeout_seconds)
        try:
            result = analyzer.compute_drawdown(trade_id, debug=debug, cancel=token)
        except AnalysisCancelled as exc:
            logger.warning("Analysis timed out for trade %s: %s", trade_id, exc)
            payload[trade_id] = None
            continue
        if result is None:
            logger.warning("Trade not found: %s", trade_id)
            missing += 1
            payload[trade_id] = None
            continue
        payload[trade_id] = result.to_payload()

    text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
    if args.out is None:
        sys.stdout.write(text)
    else:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_text(text, encoding="utf-8")
        logger.info("Wrote %d results to %s", len(payload), args.out)
    return 0 if missing == 0 else 2


def _with_db_path(app_config: AppConfig, db_path: Path) -> AppConfig:
    return replace(app_config, app=replace(app_config.app, db_path=db_path))


if __name__ == "__main__":
    raise SystemExit(main())
