from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from stocktake import __version__ as TOOL_VERSION
from stocktake.aggregation import AggregationFolder
from stocktake.cells import parse_quantity
from stocktake.column_detector import detect_columns, suggest_column_roles
from stocktake.config import DEFAULT_CONFIG_NAME, ConfigError, Settings, load_settings, write_default_config
from stocktake.contracts import build_run_summary, wrap_payload
from stocktake.export import EXPORT_KINDS, build_export
from stocktake.ingest import IngestResult, LowConfidenceError, ingest_file, sample_data_rows, split_header
from stocktake.loader import ALL_FORMATS, load_sheet
from stocktake.logging_utils import configure_logging
from stocktake.mapping import InvalidMappingError, MappingError
from stocktake.storage import InMemoryStore, StoreError
from stocktake.structure import StructureInvariantError
from stocktake.workbook import write_export_workbook

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_UNREADABLE_INPUT = 2
EXIT_LOW_CONFIDENCE = 3
EXIT_MAPPING_FAILED = 4
EXIT_NOT_FOUND = 5


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class StocktakeArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, LowConfidenceError):
        return EXIT_LOW_CONFIDENCE
    if isinstance(exc, (MappingError, InvalidMappingError, StructureInvariantError)):
        return EXIT_MAPPING_FAILED
    if isinstance(exc, StoreError):
        return EXIT_NOT_FOUND
    if isinstance(exc, ConfigError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (ImportError, UnicodeDecodeError, FileNotFoundError)):
        return EXIT_UNREADABLE_INPUT
    if isinstance(exc, ValueError):
        return EXIT_UNREADABLE_INPUT
    return EXIT_COMMAND_ERROR


def format_quantity(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


# ── Shared setup ───────────────────────────────────────────────────────────────

def resolve_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings(getattr(args, "config", None))
    if getattr(args, "store", None):
        settings.store_path = args.store
    verbose = getattr(args, "verbose", 0) or 0
    level = settings.log_level
    if verbose == 1:
        level = "INFO"
    elif verbose >= 2:
        level = "DEBUG"
    configure_logging(level, settings.log_file)
    return settings


def open_store(settings: Settings) -> InMemoryStore:
    return InMemoryStore.load(settings.store_path)


def parse_mapping_arg(raw: str | None) -> dict[str, Any] | None:
    """``--mapping`` accepts inline JSON or a path to a JSON file."""
    if not raw:
        return None
    candidate = Path(raw)
    text = candidate.read_text(encoding="utf-8") if candidate.suffix.lower() == ".json" and candidate.exists() else raw
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CliError(f"--mapping is not valid JSON: {exc}", EXIT_COMMAND_ERROR) from exc
    if not isinstance(payload, dict):
        raise CliError("--mapping must be a JSON object of field -> column index", EXIT_COMMAND_ERROR)
    return payload


def default_export_path(kind: str) -> Path:
    return Path.cwd() / f"{kind}_data_{datetime.now(timezone.utc).strftime('%Y-%m-%d')}.xlsx"


# ── Rendering ──────────────────────────────────────────────────────────────────

def render_detection_text(file_name: str, payload: dict[str, Any], headers: list[str]) -> str:
    lines = [
        "stocktake detect",
        f"File: {file_name}",
        f"Confidence: {payload['confidence']}%",
    ]
    for field_name, column in sorted(payload["mapping"].items(), key=lambda item: item[1]):
        lines.append(f"  {field_name:<8} <- column {column} ({headers[column]!r})")
    if payload["missing_fields"]:
        lines.append(f"Missing: {', '.join(payload['missing_fields'])}")
    if payload["low_confidence"]:
        lines.append("Low confidence: pass --mapping or --accept-low-confidence to ingest")
    return "\n".join(lines)


def render_ingest_text(result: IngestResult) -> str:
    confidence = f", confidence {result.detection.confidence}%" if result.detection else ""
    return (
        f"Ingested {result.file.file_name} as {result.file.id}: "
        f"{len(result.records)} rows, {result.category_headers} category headers, "
        f"{len(result.aggregates)} aggregates{confidence}"
    )


# ── Parser ─────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help=f"Settings file (default: ./{DEFAULT_CONFIG_NAME} when present)")
    common.add_argument("--store", help="Store document path (overrides store_path)")
    common.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    common.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    common.add_argument("-v", "--verbose", action="count", default=0, help="More logs (-vv for debug)")

    parser = StocktakeArgumentParser(prog="stocktake", description="Inventory spreadsheet mapping and aggregation.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    detect = subparsers.add_parser("detect", parents=[common], help="Detect the column mapping of a file.")
    detect.add_argument("input", help="Input file path")
    detect.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")

    ingest = subparsers.add_parser("ingest", parents=[common], help="Ingest one or more files into the store.")
    ingest.add_argument("inputs", nargs="+", help="Input file paths")
    ingest.add_argument("--mapping", help="Explicit mapping as JSON or a .json file path")
    ingest.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    ingest.add_argument("--accept-low-confidence", action="store_true", help="Ingest even when detection is unsure")

    export = subparsers.add_parser("export", parents=[common], help="Write an aggregated or raw workbook.")
    export.add_argument("kind", choices=list(EXPORT_KINDS), help="Export layout")
    export.add_argument("-o", "--output", help="Output .xlsx path")
    export.add_argument("--force", action="store_true", help="Overwrite an existing output file")

    files = subparsers.add_parser("files", help="List or delete ingested files.")
    files_subparsers = files.add_subparsers(dest="files_command", required=True)
    files_subparsers.add_parser("list", parents=[common], help="List ingested files.")
    files_delete = files_subparsers.add_parser("delete", parents=[common], help="Delete a file and its contribution.")
    files_delete.add_argument("file_id", help="File id")

    aggregates = subparsers.add_parser("aggregates", parents=[common], help="List aggregate entries.")
    aggregates.add_argument("--file", dest="file_id", help="Only entries this file contributed to")

    add = subparsers.add_parser("add", parents=[common], help="Add a manual quantity to the aggregate.")
    add.add_argument("name", help="Item name")
    add.add_argument("quantity", help="Quantity")
    add.add_argument("unit", help="Unit")
    add.add_argument("--item-id", dest="item_id", help="Stock code")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_NAME, help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


# ── Commands ───────────────────────────────────────────────────────────────────

def run_detect(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    input_path = Path(args.input)
    sheet = load_sheet(input_path, sheet_name=args.sheet_name)
    headers, body = split_header(sheet.rows)
    detection = detect_columns(headers, sample_data_rows(body, settings.sample_rows))
    low = detection.confidence < settings.min_confidence
    payload = detection.to_dict()
    payload["low_confidence"] = low
    payload["headers"] = headers
    payload["column_roles"] = suggest_column_roles(headers)

    if args.json:
        summary = build_run_summary(
            command="detect",
            input_path=input_path,
            status="low_confidence" if low else "ok",
            metrics={"confidence": detection.confidence, "columns": len(headers)},
            warnings=sheet.warnings,
        )
        maybe_emit_json_stdout(wrap_payload("stocktake.detect", payload, summary), True)
    else:
        emit_human(render_detection_text(input_path.name, payload, headers), quiet=args.quiet)
    return EXIT_LOW_CONFIDENCE if low else EXIT_SUCCESS


def run_ingest(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    mapping = parse_mapping_arg(args.mapping)
    store = open_store(settings)
    results: list[IngestResult] = []
    try:
        for raw in args.inputs:
            input_path = Path(raw)
            if input_path.suffix.lower() not in ALL_FORMATS:
                raise CliError(
                    f"Unsupported file type '{input_path.suffix or '[missing extension]'}'. "
                    f"Supported: {', '.join(sorted(ALL_FORMATS))}",
                    EXIT_UNREADABLE_INPUT,
                )
            result = ingest_file(
                store,
                input_path,
                mapping,
                sheet_name=args.sheet_name,
                min_confidence=settings.min_confidence,
                accept_low_confidence=args.accept_low_confidence,
                sample_size=settings.sample_rows,
            )
            store.save(settings.store_path)
            results.append(result)
            emit_human(render_ingest_text(result), quiet=args.quiet or args.json)
    except LowConfidenceError as exc:
        eprint(f"{raw}: {exc}")
        missing = exc.detection.missing_fields()
        if missing:
            eprint(f"Undetected fields: {', '.join(missing)}")
        return EXIT_LOW_CONFIDENCE
    finally:
        if args.json and results:
            warnings = [warning for result in results for warning in result.warnings]
            summary = build_run_summary(
                command="ingest",
                input_path=Path(args.inputs[0]) if len(args.inputs) == 1 else None,
                output_path=Path(settings.store_path),
                status="ok" if len(results) == len(args.inputs) else "partial",
                metrics={"files": len(results), "rows": sum(len(result.records) for result in results)},
                warnings=warnings,
            )
            payload = {"files": [result.to_dict() for result in results]}
            maybe_emit_json_stdout(wrap_payload("stocktake.ingest_summary", payload, summary), True)
    return EXIT_SUCCESS


def run_export(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    store = open_store(settings)
    lines = build_export(store, args.kind)
    if not any(not line.is_header for line in lines):
        raise CliError(f"No {args.kind} data to export", EXIT_NOT_FOUND)

    output_path = Path(args.output) if args.output else default_export_path(args.kind)
    if output_path.exists() and not args.force:
        raise CliError(f"Refusing to overwrite existing output: {output_path}", EXIT_COMMAND_ERROR)
    write_export_workbook(lines, output_path, args.kind, settings.sheet_title(args.kind))

    items = sum(1 for line in lines if not line.is_header)
    if args.json:
        summary = build_run_summary(
            command=f"export {args.kind}",
            output_path=output_path,
            metrics={"items": items, "category_headers": len(lines) - items},
        )
        payload = {"kind": args.kind, "lines": [line.to_dict() for line in lines]}
        maybe_emit_json_stdout(wrap_payload("stocktake.export_summary", payload, summary), True)
    else:
        emit_human(f"Export written: {output_path} ({items} items)", quiet=args.quiet)
    return EXIT_SUCCESS


def run_files_list(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    store = open_store(settings)
    records = store.find_files()
    if args.json:
        payload = [
            {
                "id": record.id,
                "fileName": record.file_name,
                "rowCount": record.row_count,
                "uploadDate": record.uploaded_at,
                "columnMapping": dict(record.column_mapping),
            }
            for record in records
        ]
        maybe_emit_json_stdout(payload, True)
        return EXIT_SUCCESS
    if not records:
        emit_human("No files ingested.", quiet=args.quiet)
    for record in records:
        print(f"{record.id}  {record.uploaded_at}  {record.row_count:>6} rows  {record.file_name}")
    return EXIT_SUCCESS


def run_files_delete(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    store = open_store(settings)
    record = store.find_file(args.file_id)
    store.delete_file(args.file_id)
    store.save(settings.store_path)
    if args.json:
        maybe_emit_json_stdout({"deleted": record.id, "fileName": record.file_name}, True)
    else:
        emit_human(f"Deleted {record.file_name} ({record.id})", quiet=args.quiet)
    return EXIT_SUCCESS


def run_aggregates(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    store = open_store(settings)
    if args.file_id:
        store.find_file(args.file_id)
    entries = store.find_aggregates(args.file_id)
    if args.json:
        summary = build_run_summary(command="aggregates", metrics={"entries": len(entries)})
        payload = {"aggregates": [entry.to_dict() for entry in entries]}
        maybe_emit_json_stdout(wrap_payload("stocktake.aggregates", payload, summary), True)
        return EXIT_SUCCESS
    if not entries:
        emit_human("No aggregates.", quiet=args.quiet)
    for entry in entries:
        print(
            f"{entry.item_id or '-':<12} {entry.name:<40} {format_quantity(entry.quantity):>12} "
            f"{entry.unit:<6} x{entry.count}  ({len(entry.source_files)} files)"
        )
    return EXIT_SUCCESS


def run_add(args: argparse.Namespace) -> int:
    settings = resolve_settings(args)
    quantity = parse_quantity(args.quantity)
    if quantity is None:
        raise CliError(f"Quantity must be a number, got {args.quantity!r}", EXIT_MAPPING_FAILED)
    store = open_store(settings)
    try:
        entry = AggregationFolder(store).add_manual(args.name, quantity, args.unit, args.item_id)
    except ValueError as exc:
        raise CliError(str(exc), EXIT_MAPPING_FAILED) from exc
    store.save(settings.store_path)
    if args.json:
        maybe_emit_json_stdout(entry.to_dict(), True)
    else:
        emit_human(f"{entry.name}: {format_quantity(entry.quantity)} {entry.unit}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_config_init(args: argparse.Namespace) -> int:
    path = write_default_config(args.path)
    emit_human(f"Config written: {path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def dispatch(args: argparse.Namespace) -> int:
    if args.command == "detect":
        return run_detect(args)
    if args.command == "ingest":
        return run_ingest(args)
    if args.command == "export":
        return run_export(args)
    if args.command == "files":
        if args.files_command == "list":
            return run_files_list(args)
        if args.files_command == "delete":
            return run_files_delete(args)
    if args.command == "aggregates":
        return run_aggregates(args)
    if args.command == "add":
        return run_add(args)
    if args.command == "config":
        if args.config_command == "init":
            return run_config_init(args)
    if args.command == "version":
        return run_version()
    raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        return dispatch(args)
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    except (ValueError, ImportError, OSError, KeyError, StructureInvariantError) as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


if __name__ == "__main__":
    raise SystemExit(main())
