"""Building the aggregated and raw export listings.

Both builders return plain :class:`ExportLine` lists; ``stocktake.workbook``
turns them into a styled ``.xlsx``. Keeping the two apart lets the CLI print
the same listing as JSON without touching openpyxl.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from stocktake.aggregation import AggregateEntry, AggregateKey
from stocktake.structure import HEADER, ITEM, ItemMarker, interleave_records

if TYPE_CHECKING:
    from stocktake.storage import InventoryStore

logger = logging.getLogger(__name__)

AGGREGATED = "aggregated"
RAW = "raw"
EXPORT_KINDS = (AGGREGATED, RAW)


@dataclass(frozen=True)
class ExportLine:
    kind: str
    label: Optional[str] = None
    lp: Optional[int] = None
    item_id: Optional[str] = None
    name: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    source_file: Optional[str] = None
    source_position: Optional[int] = None

    @property
    def is_header(self) -> bool:
        return self.kind == HEADER

    def to_dict(self) -> dict[str, Any]:
        if self.is_header:
            return {"type": HEADER, "label": self.label}
        payload = {
            "type": ITEM,
            "lp": self.lp,
            "itemId": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
        }
        if self.source_file is not None:
            payload["sourceFile"] = self.source_file
            payload["sourcePosition"] = self.source_position
        return payload


def _aggregate_line(entry: AggregateEntry, lp: int) -> ExportLine:
    return ExportLine(
        kind=ITEM,
        lp=lp,
        item_id=entry.item_id,
        name=entry.name,
        quantity=entry.quantity,
        unit=entry.unit,
    )


def _marker_key(marker: ItemMarker) -> AggregateKey:
    return AggregateKey.of(marker.name, marker.unit, marker.item_id)


def build_aggregated_export(store: "InventoryStore") -> list[ExportLine]:
    """One line per aggregate, laid out along the category structure of the uploads.

    Files are walked in upload order. A category label is emitted the first
    time it is seen; an aggregate is emitted at the first item marker that
    names it. Aggregates no structure mentions (manual additions) follow at
    the end.
    """
    aggregates = {entry.key: entry for entry in store.find_aggregates()}
    lines: list[ExportLine] = []
    seen_labels: set[str] = set()
    emitted: set[AggregateKey] = set()
    lp = 1

    for record in store.find_files():
        for entry in record.structure:
            if entry.is_header:
                label = str(entry.content)
                if label not in seen_labels:
                    seen_labels.add(label)
                    lines.append(ExportLine(kind=HEADER, label=label))
                continue
            key = _marker_key(entry.content)
            aggregate = aggregates.get(key)
            if aggregate is None or key in emitted:
                continue
            lines.append(_aggregate_line(aggregate, lp))
            emitted.add(key)
            lp += 1

    leftovers = [entry for key, entry in aggregates.items() if key not in emitted]
    for entry in leftovers:
        lines.append(_aggregate_line(entry, lp))
        lp += 1
    if leftovers:
        logger.debug("%d aggregates had no structural position", len(leftovers))
    return lines


def build_raw_export(store: "InventoryStore") -> list[ExportLine]:
    """Every stored row with its source file and 1-based position in that file."""
    rows_by_file: dict[str, list] = {}
    for row in store.find_rows():
        rows_by_file.setdefault(row.file_id, []).append(row.record)

    lines: list[ExportLine] = []
    lp = 1
    for record in store.find_files():
        for layout in interleave_records(record.structure, rows_by_file.get(record.id, [])):
            if layout.kind == HEADER:
                lines.append(ExportLine(kind=HEADER, label=layout.label))
                continue
            row = layout.record
            lines.append(
                ExportLine(
                    kind=ITEM,
                    lp=lp,
                    item_id=row.item_id,
                    name=row.name,
                    quantity=row.quantity,
                    unit=row.unit,
                    source_file=record.file_name,
                    source_position=row.original_row_index + 1,
                )
            )
            lp += 1
    return lines


def build_export(store: "InventoryStore", kind: str) -> list[ExportLine]:
    if kind == AGGREGATED:
        return build_aggregated_export(store)
    if kind == RAW:
        return build_raw_export(store)
    raise ValueError(f"Unknown export kind '{kind}'. Expected one of: {', '.join(EXPORT_KINDS)}")
