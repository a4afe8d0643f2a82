"""Canonical column mapping and per-row application.

A mapping assigns a zero-based column index to each canonical field.
``apply_mapping`` turns one raw row into a :class:`CanonicalRecord` or
raises :class:`MappingError`; it never returns a partially filled record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from stocktake.cells import cell_text, parse_ordinal, parse_quantity
from stocktake.units import normalize_unit

CANONICAL_FIELDS = ("lp", "itemId", "name", "quantity", "unit")
REQUIRED_FIELDS = ("name", "quantity", "unit")
OPTIONAL_FIELDS = ("itemId", "lp")


class MappingError(ValueError):
    """A row could not be turned into a canonical record."""

    def __init__(self, message: str, *, row_index: int | None = None, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.row_index = row_index
        self.field = field

    def __str__(self) -> str:
        if self.row_index is None:
            return self.message
        return f"row {self.row_index}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "row_index": self.row_index, "field": self.field}


class InvalidMappingError(ValueError):
    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid column mapping: " + "; ".join(self.errors))


def validate_mapping(mapping: Mapping[str, Any], column_count: int | None = None) -> list[str]:
    """Return every problem with ``mapping``; an empty list means it is usable."""
    errors: list[str] = []
    for field in REQUIRED_FIELDS:
        if mapping.get(field) is None:
            errors.append(f"Missing required field: {field}")

    seen: dict[int, str] = {}
    for field, index in mapping.items():
        if field not in CANONICAL_FIELDS:
            errors.append(f"Unknown field: {field}")
            continue
        if index is None:
            continue
        if isinstance(index, bool) or not isinstance(index, int):
            errors.append(f"Column index for {field} must be an integer, got {index!r}")
            continue
        if index < 0:
            errors.append(f"Invalid column index: {index}")
        elif column_count is not None and index >= column_count:
            errors.append(f"Column index out of bounds: {index}")
        if index in seen:
            errors.append(f"Duplicate column assignment: {index} ({seen[index]}, {field})")
        else:
            seen[index] = field
    return errors


@dataclass(frozen=True)
class ColumnMapping:
    name: int
    quantity: int
    unit: int
    item_id: int | None = None
    lp: int | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], column_count: int | None = None) -> "ColumnMapping":
        cleaned = {key: value for key, value in payload.items() if value is not None}
        errors = validate_mapping(cleaned, column_count)
        if errors:
            raise InvalidMappingError(errors)
        return cls(
            name=cleaned["name"],
            quantity=cleaned["quantity"],
            unit=cleaned["unit"],
            item_id=cleaned.get("itemId"),
            lp=cleaned.get("lp"),
        )

    def to_dict(self) -> dict[str, int]:
        payload = {"name": self.name, "quantity": self.quantity, "unit": self.unit}
        if self.item_id is not None:
            payload["itemId"] = self.item_id
        if self.lp is not None:
            payload["lp"] = self.lp
        return payload

    def get(self, field: str) -> int | None:
        return self.to_dict().get(field)

    def max_index(self) -> int:
        return max(self.to_dict().values())


@dataclass(frozen=True)
class CanonicalRecord:
    name: str
    quantity: float
    unit: str
    original_row_index: int
    item_id: str | None = None
    lp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "itemId": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "lp": self.lp,
            "originalRowIndex": self.original_row_index,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CanonicalRecord":
        return cls(
            name=payload["name"],
            quantity=float(payload["quantity"]),
            unit=payload["unit"],
            original_row_index=int(payload["originalRowIndex"]),
            item_id=payload.get("itemId"),
            lp=payload.get("lp"),
        )


def apply_mapping(row: Sequence[Any], mapping: ColumnMapping, row_index: int) -> CanonicalRecord:
    row = list(row or [])
    for field, index in mapping.to_dict().items():
        if index >= len(row):
            raise MappingError("index out of bounds", row_index=row_index, field=field)

    quantity = parse_quantity(row[mapping.quantity])
    if quantity is None:
        raise MappingError("invalid quantity", row_index=row_index, field="quantity")

    name = cell_text(row[mapping.name])
    if not name:
        raise MappingError("missing required field: name", row_index=row_index, field="name")

    unit = normalize_unit(cell_text(row[mapping.unit]))
    if not unit:
        raise MappingError("missing required field: unit", row_index=row_index, field="unit")

    item_id = None
    if mapping.item_id is not None:
        item_id = cell_text(row[mapping.item_id]) or None

    lp = None
    if mapping.lp is not None:
        lp = parse_ordinal(row[mapping.lp])

    return CanonicalRecord(
        name=name,
        quantity=quantity,
        unit=unit,
        original_row_index=row_index,
        item_id=item_id,
        lp=lp,
    )
