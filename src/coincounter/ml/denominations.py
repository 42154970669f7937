"""Denomination value table.

Values are keyed by normalized label text, independent of catalog order, so
a customised catalog does not change value semantics on its own.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

OTHER_LABEL = "other"

COIN_VALUES: Mapping[str, int] = MappingProxyType(
    {
        "1yen": 1,
        "5yen": 5,
        "10yen": 10,
        "50yen": 50,
        "100yen": 100,
        "500yen": 500,
        OTHER_LABEL: 0,
    }
)


def normalize_label(label: str) -> str:
    """Lowercase and drop all whitespace. Used for lookups, never for display."""
    return "".join(label.lower().split())


def coin_value(label: str) -> int:
    """Monetary value of one coin of ``label``; 0 for unknown labels."""
    return COIN_VALUES.get(normalize_label(label), 0)


def is_other(label: str) -> bool:
    return normalize_label(label) == OTHER_LABEL
