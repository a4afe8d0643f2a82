"""Category-header vs. data-row classification of a sheet body.

Inventory sheets often group items under label rows such as ``SUROWCE`` or
``RAW MATERIALS``. ``classify_body`` walks the body once, records those
labels and a lightweight marker for every data row in the order they
appear, and hands the data rows on with their position in the body.
The recorded structure is what the export path later uses to put the
category labels back between the items.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Sequence

from stocktake.cells import cell_text, is_blank, is_blank_row, is_numeric
from stocktake.mapping import CanonicalRecord, ColumnMapping
from stocktake.units import normalize_unit

HEADER = "header"
ITEM = "item"


class StructureInvariantError(AssertionError):
    """The recorded structure and the queued data rows disagree."""


@dataclass(frozen=True)
class ItemMarker:
    name: str
    unit: str
    item_id: str | None = None

    def key(self) -> tuple[str | None, str, str]:
        return (self.item_id, self.name, self.unit)

    def to_dict(self) -> dict[str, Any]:
        return {"itemId": self.item_id, "name": self.name, "unit": self.unit}


@dataclass(frozen=True)
class StructureEntry:
    type: str
    content: str | ItemMarker

    @classmethod
    def header(cls, label: str) -> "StructureEntry":
        return cls(HEADER, label)

    @classmethod
    def item(cls, name: str, unit: str, item_id: str | None = None) -> "StructureEntry":
        return cls(ITEM, ItemMarker(name=name, unit=unit, item_id=item_id))

    @property
    def is_header(self) -> bool:
        return self.type == HEADER

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.content, ItemMarker):
            return {"type": self.type, "content": self.content.to_dict()}
        return {"type": self.type, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StructureEntry":
        kind = payload.get("type")
        content = payload.get("content")
        if kind == HEADER:
            return cls.header(str(content))
        if kind == ITEM and isinstance(content, Mapping):
            return cls.item(
                name=content.get("name") or "",
                unit=content.get("unit") or "",
                item_id=content.get("itemId"),
            )
        raise StructureInvariantError(f"Unknown structure entry: {payload!r}")


@dataclass(frozen=True)
class DataRow:
    row: tuple[Any, ...]
    original_row_index: int


@dataclass
class ClassifiedBody:
    structure: list[StructureEntry] = field(default_factory=list)
    data_rows: list[DataRow] = field(default_factory=list)

    def structure_dicts(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.structure]

    @property
    def header_count(self) -> int:
        return sum(1 for entry in self.structure if entry.is_header)


def non_empty_cells(row: Sequence[Any]) -> list[Any]:
    return [cell for cell in row if not is_blank(cell)]


def is_category_row(row: Sequence[Any] | None) -> bool:
    """Exactly one non-empty cell, and that cell is not a number."""
    if not row:
        return False
    filled = non_empty_cells(row)
    if len(filled) != 1:
        return False
    return not is_numeric(cell_text(filled[0]))


def _cell_at(row: Sequence[Any], index: int | None) -> str:
    if index is None or index < 0 or index >= len(row):
        return ""
    return cell_text(row[index])


def _item_marker(row: Sequence[Any], mapping: ColumnMapping | Mapping[str, int] | None) -> StructureEntry:
    if mapping is None:
        lookup: Mapping[str, int] = {}
    elif isinstance(mapping, ColumnMapping):
        lookup = mapping.to_dict()
    else:
        lookup = mapping
    return StructureEntry.item(
        name=_cell_at(row, lookup.get("name")),
        unit=normalize_unit(_cell_at(row, lookup.get("unit"))),
        item_id=_cell_at(row, lookup.get("itemId")) or None,
    )


def classify_body(
    body: Iterable[Sequence[Any] | None],
    mapping: ColumnMapping | Mapping[str, int] | None,
) -> ClassifiedBody:
    result = ClassifiedBody()
    for index, raw in enumerate(body):
        row = tuple(raw or ())
        if is_blank_row(row):
            continue
        if is_category_row(row):
            result.structure.append(StructureEntry.header(cell_text(non_empty_cells(row)[0])))
            continue
        result.structure.append(_item_marker(row, mapping))
        result.data_rows.append(DataRow(row=row, original_row_index=index))

    items = len(result.structure) - result.header_count
    if items != len(result.data_rows):
        raise StructureInvariantError(
            f"{items} item markers recorded for {len(result.data_rows)} data rows"
        )
    return result


def structure_from_dicts(payload: Iterable[Mapping[str, Any]] | None) -> list[StructureEntry]:
    return [StructureEntry.from_dict(item) for item in payload or []]


@dataclass(frozen=True)
class LayoutLine:
    kind: str
    label: str | None = None
    record: CanonicalRecord | None = None


def interleave_records(
    structure: Sequence[StructureEntry],
    records: Sequence[CanonicalRecord],
) -> Iterator[LayoutLine]:
    """Put a file's category labels back between its records.

    Item markers are matched to records in ``original_row_index`` order, so a
    record list that came out of the same ``classify_body`` call reproduces
    the original grouping exactly. Records left over once the structure runs
    out are yielded at the end.
    """
    queue = sorted(records, key=lambda record: record.original_row_index)
    position = 0
    for entry in structure:
        if entry.is_header:
            yield LayoutLine(kind=HEADER, label=str(entry.content))
            continue
        if position < len(queue):
            yield LayoutLine(kind=ITEM, record=queue[position])
            position += 1
    for record in queue[position:]:
        yield LayoutLine(kind=ITEM, record=record)
