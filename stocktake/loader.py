"""
loader.py: turn an inventory spreadsheet on disk into a grid of cells.

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods

Public API:
    sheet = load_sheet("path/to/stock.xlsx")
    sheet.rows      -> list of lists, every row padded to the same width

No header inference happens here; the ingestion pipeline decides which row
is the header. Cells come back normalised by ``stocktake.cells.normalize_cell``
so that text stays text, numbers stay numbers and blanks are ``None``.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import chardet
import openpyxl
import pandas as pd

from stocktake.cells import is_blank_row, normalize_cell

logger = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
OPENPYXL_FORMATS = {".xlsx", ".xlsm"}
LEGACY_EXCEL_FORMATS = {".xls"}
ODS_FORMATS = {".ods"}
ALL_FORMATS = TEXT_FORMATS | OPENPYXL_FORMATS | LEGACY_EXCEL_FORMATS | ODS_FORMATS


@dataclass
class LoadedSheet:
    rows: list[list[Any]]
    detected_format: str
    detected_encoding: Optional[str] = None
    delimiter: Optional[str] = None
    sheet_name: Optional[str] = None
    sheet_names: Optional[list[str]] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def column_count(self) -> int:
        return max((len(row) for row in self.rows), default=0)


# ══════════════════════════════════════════════════════════════════════════════
# TEXT FILES
# ══════════════════════════════════════════════════════════════════════════════

def detect_encoding(raw: bytes) -> str:
    """Best guess at the encoding of ``raw``; UTF-8 when chardet has no opinion."""
    if not raw:
        return "utf-8"
    try:
        raw.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        pass
    result = chardet.detect(raw)
    return result.get("encoding") or "utf-8"


def _decode(raw: bytes, encoding: str) -> str:
    for enc in (encoding, "cp1250", "latin-1"):
        try:
            return raw.decode(enc).replace("\x00", "")
        except (LookupError, UnicodeDecodeError):
            continue
    return raw.decode("cp1252", errors="replace").replace("\x00", "")


def detect_delimiter(text: str) -> str:
    """Infer the delimiter from the first non-empty lines; comma when unsure."""
    sample = "\n".join([line for line in text.splitlines() if line.strip()][:25])
    if not sample:
        return ","
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
    except csv.Error:
        counts = {delim: sample.count(delim) for delim in (";", "\t", "|", ",")}
        best = max(counts, key=counts.get)
        return best if counts[best] else ","


def _load_text(path: Path, suffix: str) -> LoadedSheet:
    raw = path.read_bytes()
    encoding = detect_encoding(raw)
    text = _decode(raw, encoding)
    delimiter = "\t" if suffix == ".tsv" else detect_delimiter(text)
    # ragged rows: size the frame to the widest line up front
    width = max((len(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)), default=0)
    if width == 0:
        return LoadedSheet(rows=[], detected_format=suffix.lstrip("."), detected_encoding=encoding, delimiter=delimiter)

    try:
        df = pd.read_csv(
            io.StringIO(text),
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            sep=delimiter,
            engine="python",
            quotechar='"',
            skip_blank_lines=False,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error) as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc

    return LoadedSheet(
        rows=_frame_rows(df),
        detected_format=suffix.lstrip("."),
        detected_encoding=encoding,
        delimiter=delimiter,
    )


# ══════════════════════════════════════════════════════════════════════════════
# WORKBOOKS
# ══════════════════════════════════════════════════════════════════════════════

def _pick_sheet(all_sheets: list[str], sheet_name: Optional[str], warnings: list[str]) -> str:
    if not all_sheets:
        raise ValueError("Workbook contains no sheets")
    if sheet_name is not None:
        if sheet_name not in all_sheets:
            raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
        return sheet_name
    if len(all_sheets) > 1:
        warnings.append(
            f"Workbook has {len(all_sheets)} sheets; using '{all_sheets[0]}'. "
            "Pass a sheet name to read another one."
        )
    return all_sheets[0]


def _load_openpyxl(path: Path, suffix: str, sheet_name: Optional[str]) -> LoadedSheet:
    warnings: list[str] = []
    try:
        wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except Exception as exc:
        raise ValueError(f"Could not read workbook {path.name}: {exc}") from exc
    try:
        all_sheets = list(wb.sheetnames)
        chosen = _pick_sheet(all_sheets, sheet_name, warnings)
        rows = [
            [normalize_cell(value) for value in row]
            for row in wb[chosen].iter_rows(values_only=True)
        ]
    finally:
        wb.close()

    return LoadedSheet(
        rows=_pad(rows),
        detected_format=suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=all_sheets,
        warnings=warnings,
    )


def _load_with_pandas(path: Path, suffix: str, sheet_name: Optional[str]) -> LoadedSheet:
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd; run: pip install 'stocktake[excel-legacy]'")
        engine = "xlrd"
    else:
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy; run: pip install 'stocktake[ods]'")
        engine = "odf"

    warnings: list[str] = []
    try:
        with pd.ExcelFile(path, engine=engine) as xf:
            all_sheets = [str(name) for name in xf.sheet_names]
            chosen = _pick_sheet(all_sheets, sheet_name, warnings)
            df = pd.read_excel(xf, sheet_name=chosen, header=None, dtype=object)
    except (ValueError, OSError) as exc:
        raise ValueError(f"Could not read workbook {path.name}: {exc}") from exc

    return LoadedSheet(
        rows=_frame_rows(df),
        detected_format=suffix.lstrip("."),
        sheet_name=chosen,
        sheet_names=all_sheets,
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def _frame_rows(df: pd.DataFrame) -> list[list[Any]]:
    rows = [[normalize_cell(value) for value in record] for record in df.itertuples(index=False, name=None)]
    return _pad(rows)


def _pad(rows: list[list[Any]]) -> list[list[Any]]:
    """Drop trailing blank rows and pad every row to the widest one."""
    while rows and is_blank_row(rows[-1]):
        rows.pop()
    width = max((len(row) for row in rows), default=0)
    return [list(row) + [None] * (width - len(row)) for row in rows]


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_sheet(path: "str | Path", sheet_name: Optional[str] = None) -> LoadedSheet:
    """
    Read one sheet of an inventory file.

    Raises:
        FileNotFoundError  if the path does not exist
        ValueError         on an unsupported extension or unreadable content
        ImportError        when the optional engine for .xls/.ods is not installed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix not in ALL_FORMATS:
        raise ValueError(
            f"Unsupported file type '{suffix}'. Supported: {', '.join(sorted(ALL_FORMATS))}"
        )

    if suffix in TEXT_FORMATS:
        sheet = _load_text(path, suffix)
    elif suffix in OPENPYXL_FORMATS:
        sheet = _load_openpyxl(path, suffix, sheet_name)
    else:
        sheet = _load_with_pandas(path, suffix, sheet_name)

    for warning in sheet.warnings:
        logger.warning("%s: %s", path.name, warning)
    logger.debug(
        "Loaded %s as %s: %d rows x %d columns",
        path.name, sheet.detected_format, len(sheet.rows), sheet.column_count,
    )
    return sheet
