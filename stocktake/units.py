"""Unit token canonicalisation used as part of the aggregation key."""

from __future__ import annotations

import re
from typing import Any

WHITESPACE_RE = re.compile(r"\s+")
TRAILING_DOTS_RE = re.compile(r"[\s.]+$")

CANONICAL_UNITS = ("g", "kg", "mg", "l", "ml", "szt", "m", "opak")

UNIT_ALIASES = {
    "g": ("gram", "grams", "gramme", "grammes", "gr", "gramy", "gramów"),
    "kg": ("kilogram", "kilograms", "kilogramme", "kilo", "kilos", "kgs", "kilogramy", "kilogramów"),
    "mg": ("milligram", "milligrams", "milligramme", "miligram", "miligramy"),
    "l": ("liter", "liters", "litre", "litres", "ltr", "lt", "litr", "litry", "litrów"),
    "ml": ("milliliter", "milliliters", "millilitre", "millilitres", "mililitr", "mililitry"),
    "szt": ("pcs", "pc", "piece", "pieces", "sztuk", "sztuka", "sztuki", "ea", "each", "unit", "units"),
    "m": ("meter", "meters", "metre", "metres", "metr", "metry"),
    "opak": ("pack", "packs", "package", "packages", "opakowanie", "opakowania", "op"),
}

ALIAS_LOOKUP = {alias: canonical for canonical, aliases in UNIT_ALIASES.items() for alias in aliases}


def _clean_token(unit: Any) -> str:
    if unit is None:
        return ""
    text = WHITESPACE_RE.sub(" ", str(unit)).strip().lower()
    return TRAILING_DOTS_RE.sub("", text)


def normalize_unit(unit: Any) -> str:
    """Return the canonical spelling of ``unit``; unknown tokens come back lower-cased."""
    token = _clean_token(unit)
    return ALIAS_LOOKUP.get(token, token)


def is_known_unit(unit: Any) -> bool:
    token = normalize_unit(unit)
    return token in CANONICAL_UNITS


def units_match(left: Any, right: Any) -> bool:
    return normalize_unit(left) == normalize_unit(right)
