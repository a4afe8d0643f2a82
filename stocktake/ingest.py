"""Ingestion pipeline: one sheet in, one file record plus folded aggregates out.

Everything that can fail on the content of the sheet (detection, mapping
validation, per-row application) runs before the store is touched. The
writes themselves happen inside a single store transaction, so a sheet is
either fully ingested or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from stocktake.aggregation import AggregateEntry, AggregationFolder
from stocktake.cells import cell_text, is_blank_row
from stocktake.column_detector import LOW_CONFIDENCE_THRESHOLD, DetectionResult, detect_columns
from stocktake.loader import load_sheet
from stocktake.mapping import CanonicalRecord, ColumnMapping, MappingError, apply_mapping
from stocktake.structure import ClassifiedBody, classify_body, is_category_row

if TYPE_CHECKING:
    from stocktake.storage import FileRecord, InventoryStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 5


class LowConfidenceError(ValueError):
    """Auto-detection found a mapping, but not one worth trusting unasked."""

    def __init__(self, detection: DetectionResult, threshold: int) -> None:
        self.detection = detection
        self.threshold = threshold
        super().__init__(
            f"Column detection confidence {detection.confidence}% is below {threshold}%; "
            "review the mapping or accept it explicitly"
        )


@dataclass
class IngestResult:
    file: "FileRecord"
    mapping: ColumnMapping
    records: list[CanonicalRecord] = field(default_factory=list)
    aggregates: list[AggregateEntry] = field(default_factory=list)
    detection: Optional[DetectionResult] = None
    category_headers: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_id": self.file.id,
            "file_name": self.file.file_name,
            "row_count": len(self.records),
            "category_headers": self.category_headers,
            "aggregates_touched": len(self.aggregates),
            "mapping": self.mapping.to_dict(),
            "confidence": self.detection.confidence if self.detection else None,
            "warnings": list(self.warnings),
        }


def split_header(rows: Sequence[Sequence[Any] | None]) -> tuple[list[Any], list[list[Any]]]:
    """First non-blank row is the header; everything after it is the body."""
    for index, row in enumerate(rows):
        if not is_blank_row(row):
            headers = [cell_text(cell) for cell in row]
            body = [list(r or []) for r in rows[index + 1:]]
            return headers, body
    return [], []


def sample_data_rows(body: Sequence[Sequence[Any] | None], limit: int = DEFAULT_SAMPLE_SIZE) -> list[list[Any]]:
    samples = []
    for row in body:
        if len(samples) >= limit:
            break
        if is_blank_row(row) or is_category_row(row):
            continue
        samples.append(list(row))
    return samples


def prepare_records(
    body: Sequence[Sequence[Any] | None],
    mapping: ColumnMapping,
) -> tuple[ClassifiedBody, list[CanonicalRecord]]:
    """Classify ``body`` and apply ``mapping`` to every data row.

    The first bad row raises :class:`MappingError` and nothing is returned.
    """
    classified = classify_body(body, mapping)
    records = [apply_mapping(data.row, mapping, data.original_row_index) for data in classified.data_rows]
    return classified, records


def resolve_mapping(
    headers: Sequence[Any],
    body: Sequence[Sequence[Any] | None],
    mapping: "ColumnMapping | Mapping[str, Any] | None" = None,
    *,
    min_confidence: int = LOW_CONFIDENCE_THRESHOLD,
    accept_low_confidence: bool = False,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> tuple[ColumnMapping, Optional[DetectionResult]]:
    if isinstance(mapping, ColumnMapping):
        return mapping, None
    if mapping is not None:
        return ColumnMapping.from_dict(mapping, len(headers)), None

    detection = detect_columns(headers, sample_data_rows(body, sample_size))
    logger.info("Detected mapping %s at %d%% confidence", detection.mapping, detection.confidence)
    if detection.confidence < min_confidence and not accept_low_confidence:
        raise LowConfidenceError(detection, min_confidence)
    return ColumnMapping.from_dict(detection.mapping, len(headers)), detection


def ingest_sheet(
    store: "InventoryStore",
    file_name: str,
    headers: Sequence[Any],
    body: Sequence[Sequence[Any] | None],
    mapping: "ColumnMapping | Mapping[str, Any] | None" = None,
    *,
    min_confidence: int = LOW_CONFIDENCE_THRESHOLD,
    accept_low_confidence: bool = False,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    warnings: Sequence[str] = (),
) -> IngestResult:
    resolved, detection = resolve_mapping(
        headers,
        body,
        mapping,
        min_confidence=min_confidence,
        accept_low_confidence=accept_low_confidence,
        sample_size=sample_size,
    )

    try:
        classified, records = prepare_records(body, resolved)
    except MappingError as exc:
        logger.error("Aborting ingest of %s: %s", file_name, exc)
        raise

    folder = AggregationFolder(store)
    with store.transaction():
        record = store.create_file(
            file_name,
            classified.structure,
            resolved.to_dict(),
            detected_headers=[cell_text(header) for header in headers],
            row_count=len(records),
        )
        store.insert_rows(record.id, records)
        touched = folder.fold_many(records, record.id)

    logger.info(
        "Ingested %s: %d rows, %d category headers, %d aggregates",
        file_name, len(records), classified.header_count, len(touched),
    )
    return IngestResult(
        file=record,
        mapping=resolved,
        records=records,
        aggregates=touched,
        detection=detection,
        category_headers=classified.header_count,
        warnings=list(warnings),
    )


def ingest_file(
    store: "InventoryStore",
    path: "str | Path",
    mapping: "ColumnMapping | Mapping[str, Any] | None" = None,
    *,
    sheet_name: Optional[str] = None,
    min_confidence: int = LOW_CONFIDENCE_THRESHOLD,
    accept_low_confidence: bool = False,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> IngestResult:
    path = Path(path)
    sheet = load_sheet(path, sheet_name=sheet_name)
    headers, body = split_header(sheet.rows)
    if not headers:
        raise ValueError(f"{path.name} contains no rows")
    return ingest_sheet(
        store,
        path.name,
        headers,
        body,
        mapping,
        min_confidence=min_confidence,
        accept_low_confidence=accept_low_confidence,
        sample_size=sample_size,
        warnings=sheet.warnings,
    )
