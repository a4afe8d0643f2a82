"""Cell coercion at the spreadsheet boundary.

Every cell handed to the engine is reduced to one of ``str``, ``int``,
``float`` or ``None`` before anything else looks at it. Parsers in this
module never raise on odd input; they return ``None`` and let the caller
decide whether that is an error.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time
from typing import Any

import pandas as pd

THOUSANDS_SPACES = (" ", "\u00a0", "\u202f", "\u2009", "'")
NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")


def normalize_cell(value: Any) -> str | int | float | None:
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        return value.to_pydatetime().isoformat(sep=" ")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, "item"):
        # numpy scalars
        return normalize_cell(value.item())
    return str(value).replace("\x00", "")


def is_blank(value: Any) -> bool:
    normalized = normalize_cell(value)
    if normalized is None:
        return True
    if isinstance(normalized, str):
        return not normalized.strip()
    return False


def is_blank_row(row: Any) -> bool:
    if not row:
        return True
    return all(is_blank(cell) for cell in row)


def cell_text(value: Any) -> str:
    """Trimmed display text for a cell; integral floats lose their ``.0``."""
    normalized = normalize_cell(value)
    if normalized is None:
        return ""
    if isinstance(normalized, float) and normalized.is_integer():
        return str(int(normalized))
    return str(normalized).strip()


def parse_quantity(value: Any) -> float | None:
    """Parse a locale-agnostic decimal.

    Either ``,`` or ``.`` is accepted as the decimal separator. When both
    appear, the rightmost one is the decimal separator and the other is a
    thousands separator. Spaces (including NBSP) are thousands separators.
    Returns ``None`` for anything that is not a finite number.
    """
    normalized = normalize_cell(value)
    if normalized is None:
        return None
    if isinstance(normalized, (int, float)):
        number = float(normalized)
        return number if math.isfinite(number) else None

    text = normalized.strip()
    if not text:
        return None
    for space in THOUSANDS_SPACES:
        text = text.replace(space, "")

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif text.count(",") == 1:
        text = text.replace(",", ".")
    elif text.count(",") > 1:
        text = text.replace(",", "")

    if not NUMBER_RE.fullmatch(text):
        return None
    number = float(text)
    if not math.isfinite(number):
        return None
    return number


def is_numeric(value: Any) -> bool:
    return parse_quantity(value) is not None


def parse_ordinal(value: Any) -> int | None:
    number = parse_quantity(value)
    if number is None or not number.is_integer():
        return None
    return int(number)
