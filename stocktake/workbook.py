from __future__ import annotations

import io
from pathlib import Path
from typing import Sequence

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from stocktake.export import AGGREGATED, EXPORT_KINDS, RAW, ExportLine

AGGREGATED_HEADERS = ["L.p.", "Nr indeksu", "Nazwa towaru", "Ilość", "JMZ"]
RAW_HEADERS = AGGREGATED_HEADERS + ["Plik źródłowy", "Pozycja w oryginalnym pliku"]

AGGREGATED_WIDTHS = [8, 15, 40, 12, 10]
RAW_WIDTHS = AGGREGATED_WIDTHS + [20, 15]

HEADER_FILL = PatternFill("solid", fgColor="4472C4")
HEADER_FONT = Font(bold=True, color="FFFFFF")
CATEGORY_FILL = PatternFill("solid", fgColor="E6E6E6")
CATEGORY_FONT = Font(bold=True)


def _style_header_row(ws, widths: Sequence[int]) -> None:
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
    for index, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width
    ws.freeze_panes = "A2"


def _style_category_row(ws, row_number: int, width: int):
    for col in range(1, width + 1):
        cell = ws.cell(row=row_number, column=col)
        cell.font = CATEGORY_FONT
        cell.fill = CATEGORY_FILL
        cell.alignment = Alignment(horizontal="left")


def _line_values(line: ExportLine, kind: str) -> list:
    values = [line.lp, line.item_id, line.name, line.quantity, line.unit]
    if kind == RAW:
        values += [line.source_file, line.source_position]
    return values


def write_export_workbook(
    lines: Sequence[ExportLine],
    output: "str | Path | io.BytesIO",
    kind: str = AGGREGATED,
    sheet_title: str | None = None,
) -> "Path | io.BytesIO":
    """Write an export listing to ``output`` (a path or a binary buffer)."""
    if kind not in EXPORT_KINDS:
        raise ValueError(f"Unknown export kind '{kind}'")
    headers = RAW_HEADERS if kind == RAW else AGGREGATED_HEADERS
    widths = RAW_WIDTHS if kind == RAW else AGGREGATED_WIDTHS

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = (sheet_title or ("Raw Data" if kind == RAW else "Aggregated Data"))[:31]
    ws.append(headers)

    for line in lines:
        if line.is_header:
            ws.append([line.label] + [None] * (len(headers) - 1))
            _style_category_row(ws, ws.max_row, len(headers))
        else:
            ws.append(_line_values(line, kind))

    _style_header_row(ws, widths)

    if isinstance(output, io.BytesIO):
        wb.save(output)
        output.seek(0)
        return output
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(path)
    return path
