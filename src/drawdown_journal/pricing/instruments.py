"""Broker symbol normalization and per-instrument pip/contract metadata."""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

DEFAULT_PIP_SIZE = 0.0001
FINE_PIP_SIZE = 0.01
INDEX_PIP_SIZE = 1.0

FX_CONTRACT_SIZE = 100_000.0
METAL_CONTRACT_SIZE = 100.0
INDEX_CONTRACT_SIZE = 1.0

_SUFFIX_RE = re.compile(r"\.(cash|pro|mini|micro)$")
_SEPARATOR_RE = re.compile(r"[-_\s]")
_PREFIX_RE = re.compile(r"^(fx:|cfds?:)")

# Broker shorthand -> Dukascopy instrument id. Majors pass through unchanged.
INSTRUMENT_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "eurusd": "eurusd",
        "gbpusd": "gbpusd",
        "usdchf": "usdchf",
        "usdjpy": "usdjpy",
        "eurjpy": "eurjpy",
        "gbpjpy": "gbpjpy",
        "audusd": "audusd",
        "nzdusd": "nzdusd",
        "xauusd": "xauusd",
        "xagusd": "xagusd",
        "gold": "xauusd",
        "silver": "xagusd",
        "us100": "usatechidxusd",
        "nas100": "usatechidxusd",
        "nasdaq100": "usatechidxusd",
        "us500": "usa500idxusd",
        "sp500": "usa500idxusd",
        "spx500": "usa500idxusd",
        "us30": "usa30idxusd",
        "dow": "usa30idxusd",
        "dj30": "usa30idxusd",
        "ger30": "deuidxeur",
        "de30": "deuidxeur",
        "ger40": "deuidxeur",
        "de40": "deuidxeur",
    }
)

# Separator stripping turns "US100 cash" into "us100cash"; fold those back onto the index alias.
_CASH_INDEX_TOKENS: Mapping[str, str] = MappingProxyType(
    {
        "us100cash": "us100",
        "us500cash": "us500",
        "us30cash": "us30",
    }
)

_FINE_PIP_MARKERS = ("jpy", "xau", "xag")
_METAL_MARKERS = ("xau", "xag")
_INDEX_MARKERS = ("idx", "us100", "us500", "us30", "ger30", "ger40")


@dataclass(frozen=True)
class InstrumentProfile:
    canonical_id: str
    pip_size: float
    contract_size: float


def clean_symbol(raw_symbol: str | None) -> str:
    text = str(raw_symbol or "").strip().lower()
    text = _SUFFIX_RE.sub("", text)
    text = _SEPARATOR_RE.sub("", text)
    text = _PREFIX_RE.sub("", text)
    return _CASH_INDEX_TOKENS.get(text, text)


def resolve_instrument(raw_symbol: str | None) -> InstrumentProfile:
    """Map any broker symbol to a profile; unknown symbols get FX defaults."""
    token = clean_symbol(raw_symbol)
    canonical = INSTRUMENT_ALIASES.get(token, token)
    # Match markers on both spellings so aliases like "gold" or "nas100" pick up their class.
    haystack = f"{token} {canonical}"
    return InstrumentProfile(
        canonical_id=canonical,
        pip_size=_pip_size(haystack),
        contract_size=_contract_size(haystack),
    )


def is_index(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _INDEX_MARKERS)


def is_metal(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _METAL_MARKERS)


def _pip_size(text: str) -> float:
    if any(marker in text for marker in _FINE_PIP_MARKERS):
        return FINE_PIP_SIZE
    if is_index(text):
        return INDEX_PIP_SIZE
    return DEFAULT_PIP_SIZE


def _contract_size(text: str) -> float:
    if is_metal(text):
        return METAL_CONTRACT_SIZE
    if is_index(text):
        return INDEX_CONTRACT_SIZE
    return FX_CONTRACT_SIZE
