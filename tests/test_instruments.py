import pytest

from drawdown_journal.pricing.instruments import (
    DEFAULT_PIP_SIZE,
    FINE_PIP_SIZE,
    FX_CONTRACT_SIZE,
    INDEX_CONTRACT_SIZE,
    INDEX_PIP_SIZE,
    INSTRUMENT_ALIASES,
    METAL_CONTRACT_SIZE,
    clean_symbol,
    resolve_instrument,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("EURUSD", "eurusd"),
        ("EUR_USD", "eurusd"),
        ("FX:GBPUSD", "gbpusd"),
        ("cfd:us100", "us100"),
        ("US100.cash", "us100"),
        ("US100 cash", "us100"),
        ("  xauusd.pro ", "xauusd"),
        (None, ""),
    ],
)
def test_clean_symbol(raw, expected):
    assert clean_symbol(raw) == expected


def test_forex_major_defaults():
    profile = resolve_instrument("EURUSD")
    assert profile.canonical_id == "eurusd"
    assert profile.pip_size == DEFAULT_PIP_SIZE
    assert profile.contract_size == FX_CONTRACT_SIZE


def test_jpy_pair_uses_fine_pip():
    profile = resolve_instrument("USDJPY.pro")
    assert profile.pip_size == FINE_PIP_SIZE
    assert profile.contract_size == FX_CONTRACT_SIZE


def test_gold_alias_is_a_metal():
    profile = resolve_instrument("GOLD")
    assert profile.canonical_id == "xauusd"
    assert profile.pip_size == FINE_PIP_SIZE
    assert profile.contract_size == METAL_CONTRACT_SIZE


def test_index_alias_maps_to_provider_id():
    profile = resolve_instrument("NAS100")
    assert profile.canonical_id == "usatechidxusd"
    assert profile.pip_size == INDEX_PIP_SIZE
    assert profile.contract_size == INDEX_CONTRACT_SIZE


def test_cash_index_suffix_folds_onto_alias():
    assert resolve_instrument("US30 cash").canonical_id == INSTRUMENT_ALIASES["us30"]


def test_unknown_symbol_passes_through():
    profile = resolve_instrument("EURNOK")
    assert profile.canonical_id == "eurnok"
    assert profile.pip_size == DEFAULT_PIP_SIZE


@pytest.mark.parametrize("raw", ["", "   ", None, "???", "a" * 200])
def test_resolution_never_raises(raw):
    profile = resolve_instrument(raw)
    assert profile.pip_size > 0
    assert profile.contract_size > 0


def test_alias_table_is_read_only():
    with pytest.raises(TypeError):
        INSTRUMENT_ALIASES["eurusd"] = "x"  # type: ignore[index]
