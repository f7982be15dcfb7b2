import json

import pytest

from conftest import T0, make_trade
from drawdown_journal import compute_drawdowns
from drawdown_journal.storage.sqlite_store import connect, init_db, upsert_trades


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(compute_drawdowns, "setup_logging", lambda *args, **kwargs: None)


def _seed(db_path):
    conn = connect(db_path)
    init_db(conn)
    upsert_trades(
        conn,
        [
            make_trade(trade_id="no-stop", stop_loss=None, account_id="one"),
            make_trade(trade_id="in-dd", close_price=1.0980, profit=-20.0, account_id="two", created_at=T0.replace(hour=11)),
        ],
    )
    conn.close()


def _config(tmp_path):
    path = tmp_path / "app.toml"
    path.write_text("[logging]\nlevel = \"WARNING\"\n", encoding="utf-8")
    return path


def test_all_trades_written_to_file(tmp_path):
    db_path = tmp_path / "journal.sqlite"
    _seed(db_path)
    out = tmp_path / "out" / "drawdowns.json"
    code = compute_drawdowns.main(["--all", "--db", str(db_path), "--config", str(_config(tmp_path)), "--out", str(out)])
    assert code == 0
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert sorted(payload) == ["in-dd", "no-stop"]
    assert payload["no-stop"]["note"] == "NO_SL"
    assert payload["in-dd"]["hit"] == "CLOSE"
    assert payload["in-dd"]["pct_to_sl"] == 40.0


def test_account_filter_and_missing_ids(tmp_path, capsys):
    db_path = tmp_path / "journal.sqlite"
    _seed(db_path)
    code = compute_drawdowns.main(
        ["ghost", "--all", "--account", "one", "--db", str(db_path), "--config", str(_config(tmp_path))]
    )
    assert code == 2
    payload = json.loads(capsys.readouterr().out)
    assert sorted(payload) == ["ghost", "no-stop"]
    assert payload["ghost"] is None


def test_missing_db_fails(tmp_path):
    code = compute_drawdowns.main(["t-1", "--db", str(tmp_path / "absent.sqlite"), "--config", str(_config(tmp_path))])
    assert code == 1
