"""Storage collaborator for ingested files, raw rows and aggregates.

The engine never imports a global client; every entry point takes an
object satisfying :class:`InventoryStore`. ``InMemoryStore`` is the
implementation shipped with the package. It serialises every mutation
behind one re-entrant lock, which is what makes ``upsert_aggregate`` the
single atomic read-modify-write for a key, and it can snapshot itself to a
JSON document between CLI runs.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Protocol, Sequence

from stocktake.aggregation import AggregateEntry, AggregateKey, merge_quantity, unfold_file
from stocktake.contracts import utc_now_iso
from stocktake.mapping import CanonicalRecord
from stocktake.structure import StructureEntry, structure_from_dicts

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = 1


class StoreError(KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "store error"


@dataclass(frozen=True)
class FileRecord:
    id: str
    file_name: str
    row_count: int
    uploaded_at: str
    structure: tuple[StructureEntry, ...] = field(default_factory=tuple)
    column_mapping: Mapping[str, int] = field(default_factory=dict)
    detected_headers: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "rowCount": self.row_count,
            "uploadDate": self.uploaded_at,
            "originalStructure": [entry.to_dict() for entry in self.structure],
            "columnMapping": dict(self.column_mapping),
            "detectedHeaders": list(self.detected_headers),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FileRecord":
        return cls(
            id=payload["id"],
            file_name=payload["fileName"],
            row_count=int(payload.get("rowCount") or 0),
            uploaded_at=payload.get("uploadDate") or utc_now_iso(),
            structure=tuple(structure_from_dicts(payload.get("originalStructure"))),
            column_mapping=dict(payload.get("columnMapping") or {}),
            detected_headers=tuple(payload.get("detectedHeaders") or ()),
        )


@dataclass(frozen=True)
class StoredRow:
    id: str
    file_id: str
    record: CanonicalRecord

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "fileId": self.file_id, **self.record.to_dict()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoredRow":
        return cls(id=payload["id"], file_id=payload["fileId"], record=CanonicalRecord.from_dict(payload))


class InventoryStore(Protocol):
    def transaction(self) -> Any: ...

    def create_file(
        self,
        file_name: str,
        structure: Sequence[StructureEntry],
        column_mapping: Mapping[str, int],
        detected_headers: Sequence[str] = (),
        row_count: int = 0,
    ) -> FileRecord: ...

    def insert_rows(self, file_id: str, records: Iterable[CanonicalRecord]) -> list[StoredRow]: ...

    def upsert_aggregate(
        self,
        key: AggregateKey,
        quantity: float,
        file_id: str | None,
        count: int = 1,
    ) -> AggregateEntry: ...

    def find_files(self) -> list[FileRecord]: ...

    def find_file(self, file_id: str) -> FileRecord: ...

    def find_rows(self, file_id: str | None = None) -> list[StoredRow]: ...

    def find_aggregates(self, file_id: str | None = None) -> list[AggregateEntry]: ...

    def delete_file(self, file_id: str) -> None: ...


class InMemoryStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._files: dict[str, FileRecord] = {}
        self._rows: list[StoredRow] = []
        self._aggregates: dict[AggregateKey, AggregateEntry] = {}

    # ── transactions ───────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStore"]:
        """Apply everything inside the block or nothing at all."""
        with self._lock:
            snapshot = (dict(self._files), list(self._rows), dict(self._aggregates))
            try:
                yield self
            except BaseException:
                self._files, self._rows, self._aggregates = snapshot
                logger.warning("Store transaction rolled back")
                raise

    # ── writes ─────────────────────────────────────────────────────────────

    def create_file(
        self,
        file_name: str,
        structure: Sequence[StructureEntry],
        column_mapping: Mapping[str, int],
        detected_headers: Sequence[str] = (),
        row_count: int = 0,
    ) -> FileRecord:
        record = FileRecord(
            id=str(uuid.uuid4()),
            file_name=file_name,
            row_count=row_count,
            uploaded_at=utc_now_iso(),
            structure=tuple(structure),
            column_mapping=dict(column_mapping),
            detected_headers=tuple(str(header) for header in detected_headers),
        )
        with self._lock:
            self._files[record.id] = record
        return record

    def insert_rows(self, file_id: str, records: Iterable[CanonicalRecord]) -> list[StoredRow]:
        with self._lock:
            self._require_file(file_id)
            ordered = sorted(records, key=lambda record: record.original_row_index)
            stored = [StoredRow(id=str(uuid.uuid4()), file_id=file_id, record=record) for record in ordered]
            self._rows.extend(stored)
        return stored

    def upsert_aggregate(
        self,
        key: AggregateKey,
        quantity: float,
        file_id: str | None,
        count: int = 1,
    ) -> AggregateEntry:
        with self._lock:
            entry = merge_quantity(self._aggregates.get(key), key, quantity, file_id, count)
            self._aggregates[key] = entry
            return entry

    def delete_file(self, file_id: str) -> None:
        """Delete a file, its rows, and its contribution to every aggregate."""
        with self.transaction():
            self._require_file(file_id)
            quantities: dict[AggregateKey, float] = {}
            counts: dict[AggregateKey, int] = {}
            for row in self._rows:
                if row.file_id != file_id:
                    continue
                key = AggregateKey.from_record(row.record)
                quantities[key] = quantities.get(key, 0.0) + row.record.quantity
                counts[key] = counts.get(key, 0) + 1

            for key, entry in list(self._aggregates.items()):
                if file_id not in entry.source_files:
                    continue
                remaining = unfold_file(entry, file_id, quantities.get(key, 0.0), counts.get(key, 0))
                if remaining is None:
                    del self._aggregates[key]
                else:
                    self._aggregates[key] = remaining

            self._rows = [row for row in self._rows if row.file_id != file_id]
            del self._files[file_id]
        logger.info("Deleted file %s", file_id)

    # ── reads ──────────────────────────────────────────────────────────────

    def find_files(self) -> list[FileRecord]:
        with self._lock:
            return list(self._files.values())

    def find_file(self, file_id: str) -> FileRecord:
        with self._lock:
            return self._require_file(file_id)

    def find_rows(self, file_id: str | None = None) -> list[StoredRow]:
        """Rows in upload order, then by position in their source file."""
        with self._lock:
            order = {fid: position for position, fid in enumerate(self._files)}
            rows = [row for row in self._rows if file_id is None or row.file_id == file_id]
        return sorted(rows, key=lambda row: (order.get(row.file_id, len(order)), row.record.original_row_index))

    def find_aggregates(self, file_id: str | None = None) -> list[AggregateEntry]:
        """Aggregates in first-seen order, optionally only those a file contributed to."""
        with self._lock:
            entries = list(self._aggregates.values())
        if file_id is None:
            return entries
        return [entry for entry in entries if file_id in entry.source_files]

    def find_aggregate(self, key: AggregateKey) -> AggregateEntry | None:
        with self._lock:
            return self._aggregates.get(key)

    def _require_file(self, file_id: str) -> FileRecord:
        try:
            return self._files[file_id]
        except KeyError:
            raise StoreError(f"File not found: {file_id}") from None

    # ── persistence ────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": STORE_FORMAT_VERSION,
                "files": [record.to_dict() for record in self._files.values()],
                "rows": [row.to_dict() for row in self._rows],
                "aggregates": [entry.to_dict() for entry in self._aggregates.values()],
            }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "InMemoryStore":
        version = payload.get("version", STORE_FORMAT_VERSION)
        if version != STORE_FORMAT_VERSION:
            raise ValueError(f"Unsupported store format version: {version}")
        store = cls()
        for item in payload.get("files") or []:
            record = FileRecord.from_dict(item)
            store._files[record.id] = record
        store._rows = [StoredRow.from_dict(item) for item in payload.get("rows") or []]
        for item in payload.get("aggregates") or []:
            entry = AggregateEntry.from_dict(item)
            store._aggregates[entry.key] = entry
        return store

    def save(self, path: "str | Path") -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_dict()
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)
        return path

    @classmethod
    def load(cls, path: "str | Path") -> "InMemoryStore":
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Could not read store {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Store root must be a JSON object: {path}")
        return cls.from_dict(payload)
