"""Folding canonical records into the running aggregate.

One aggregate entry exists per :class:`AggregateKey`. The merge rules live
in the pure functions below; the store applies them inside its atomic
``upsert_aggregate`` so that two folds of the same key can never interleave.
``AggregationFolder`` itself keeps no state between calls.

Quantities are summed with plain float addition, the same way the stored
totals have always been produced.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from stocktake.mapping import CanonicalRecord
from stocktake.units import normalize_unit

if TYPE_CHECKING:
    from stocktake.storage import InventoryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateKey:
    item_id: str | None
    name: str
    unit: str

    @classmethod
    def of(cls, name: str, unit: str, item_id: str | None = None) -> "AggregateKey":
        return cls(item_id=item_id or None, name=name, unit=normalize_unit(unit))

    @classmethod
    def from_record(cls, record: CanonicalRecord) -> "AggregateKey":
        return cls.of(record.name, record.unit, record.item_id)

    def as_tuple(self) -> tuple[str | None, str, str]:
        return (self.item_id, self.name, self.unit)


@dataclass(frozen=True)
class AggregateEntry:
    id: str
    name: str
    unit: str
    quantity: float
    count: int
    source_files: tuple[str, ...] = field(default_factory=tuple)
    item_id: str | None = None

    @property
    def key(self) -> AggregateKey:
        return AggregateKey(item_id=self.item_id, name=self.name, unit=self.unit)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "itemId": self.item_id,
            "name": self.name,
            "unit": self.unit,
            "quantity": self.quantity,
            "count": self.count,
            "sourceFiles": list(self.source_files),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AggregateEntry":
        return cls(
            id=payload["id"],
            item_id=payload.get("itemId"),
            name=payload["name"],
            unit=payload["unit"],
            quantity=float(payload["quantity"]),
            count=int(payload.get("count") or 0),
            source_files=tuple(payload.get("sourceFiles") or ()),
        )


def new_entry_id() -> str:
    return str(uuid.uuid4())


def merge_quantity(
    existing: AggregateEntry | None,
    key: AggregateKey,
    quantity: float,
    file_id: str | None,
    count: int = 1,
) -> AggregateEntry:
    """Create the entry for ``key`` or add ``quantity`` to it.

    ``file_id`` is appended to the source files only when it is not already
    listed; ``None`` (a manual entry) leaves them untouched.
    """
    if existing is None:
        return AggregateEntry(
            id=new_entry_id(),
            item_id=key.item_id,
            name=key.name,
            unit=key.unit,
            quantity=quantity,
            count=count,
            source_files=(file_id,) if file_id else (),
        )
    sources = existing.source_files
    if file_id and file_id not in sources:
        sources = sources + (file_id,)
    return replace(
        existing,
        quantity=existing.quantity + quantity,
        count=existing.count + count,
        source_files=sources,
    )


def unfold_file(
    existing: AggregateEntry,
    file_id: str,
    quantity: float,
    count: int,
) -> AggregateEntry | None:
    """Remove one file's contribution; ``None`` means the entry should be deleted."""
    sources = tuple(source for source in existing.source_files if source != file_id)
    if not sources:
        return None
    return replace(
        existing,
        quantity=max(0.0, existing.quantity - quantity),
        count=max(0, existing.count - count),
        source_files=sources,
    )


class AggregationFolder:
    def __init__(self, store: "InventoryStore") -> None:
        self.store = store

    def fold(self, record: CanonicalRecord, file_id: str) -> AggregateEntry:
        key = AggregateKey.from_record(record)
        return self.store.upsert_aggregate(key, record.quantity, file_id)

    def fold_many(self, records: Iterable[CanonicalRecord], file_id: str) -> list[AggregateEntry]:
        """Fold every record; returns the final entry for each distinct key touched."""
        touched: dict[AggregateKey, AggregateEntry] = {}
        folded = 0
        for record in records:
            entry = self.fold(record, file_id)
            touched[entry.key] = entry
            folded += 1
        logger.debug("Folded %d records into %d aggregate entries for file %s", folded, len(touched), file_id)
        return list(touched.values())

    def add_manual(
        self,
        name: str,
        quantity: float,
        unit: str,
        item_id: str | None = None,
    ) -> AggregateEntry:
        name = (name or "").strip()
        if not name or not normalize_unit(unit):
            raise ValueError("Name, quantity, and unit are required")
        amount = float(quantity)
        if not math.isfinite(amount):
            raise ValueError(f"Quantity must be a finite number, got {quantity!r}")
        key = AggregateKey.of(name, unit, (item_id or "").strip() or None)
        return self.store.upsert_aggregate(key, amount, None)
