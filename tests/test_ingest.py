import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook

from stocktake.aggregation import AggregateKey
from stocktake.ingest import (
    LowConfidenceError,
    ingest_file,
    ingest_sheet,
    prepare_records,
    sample_data_rows,
    split_header,
)
from stocktake.mapping import ColumnMapping, InvalidMappingError, MappingError
from stocktake.storage import InMemoryStore

HEADERS = ["Nr indeksu", "Nazwa towaru", "Ilość", "JMZ"]


class SplitHeaderTests(unittest.TestCase):
    def test_leading_blank_rows_are_skipped(self):
        headers, body = split_header([[None, None], ["Nazwa", "Ilość"], ["Flour", 1]])
        self.assertEqual(headers, ["Nazwa", "Ilość"])
        self.assertEqual(body, [["Flour", 1]])

    def test_empty_sheet(self):
        self.assertEqual(split_header([]), ([], []))

    def test_samples_skip_categories_and_blanks(self):
        body = [["SUROWCE"], [None], ["A", "B"], ["C", "D"], ["E", "F"]]
        self.assertEqual(sample_data_rows(body, 2), [["A", "B"], ["C", "D"]])


class PrepareRecordsTests(unittest.TestCase):
    def test_row_indexes_are_positions_in_the_body(self):
        body = [["SUROWCE"], ["A001", "Flour", "10", "kg"], [], ["A002", "Sugar", "2,5", "kg"]]
        classified, records = prepare_records(body, ColumnMapping(item_id=0, name=1, quantity=2, unit=3))
        self.assertEqual([record.original_row_index for record in records], [1, 3])
        self.assertEqual(records[1].quantity, 2.5)
        self.assertEqual(classified.header_count, 1)

    def test_first_bad_row_aborts(self):
        body = [["A001", "Flour", "10", "kg"], ["A002", "Sugar", "??", "kg"]]
        with self.assertRaises(MappingError) as ctx:
            prepare_records(body, ColumnMapping(item_id=0, name=1, quantity=2, unit=3))
        self.assertEqual(ctx.exception.row_index, 1)


class IngestSheetTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()

    def test_detected_mapping_is_stored_with_structure(self):
        body = [["SUROWCE"], ["A001", "Product A", "100", "kg"]]
        result = ingest_sheet(self.store, "stock.xlsx", HEADERS, body)

        self.assertEqual(result.detection.confidence, 100)
        self.assertEqual(len(result.records), 1)
        stored = self.store.find_file(result.file.id)
        self.assertEqual(stored.column_mapping, {"itemId": 0, "name": 1, "quantity": 2, "unit": 3})
        self.assertEqual(stored.detected_headers, tuple(HEADERS))
        self.assertEqual(stored.row_count, 1)
        self.assertEqual([entry.type for entry in stored.structure], ["header", "item"])
        self.assertEqual(self.store.find_rows()[0].record.original_row_index, 1)

    def test_two_uploads_fold_into_running_total(self):
        ingest_sheet(self.store, "f1.xlsx", HEADERS, [["A001", "Product A", "100", "kg"]])
        ingest_sheet(self.store, "f2.xlsx", HEADERS, [["A001", "Product A", "25", "KG"]])
        entry = self.store.find_aggregate(AggregateKey.of("Product A", "kg", "A001"))
        self.assertEqual(entry.quantity, 125.0)
        self.assertEqual(entry.count, 2)
        self.assertEqual(len(entry.source_files), 2)

    def test_bad_row_persists_nothing(self):
        body = [["A001", "Flour", "10", "kg"], ["A002", "Sugar"]]
        with self.assertRaises(MappingError):
            ingest_sheet(self.store, "bad.xlsx", HEADERS, body)
        self.assertEqual(self.store.find_files(), [])
        self.assertEqual(self.store.find_rows(), [])
        self.assertEqual(self.store.find_aggregates(), [])

    def test_low_confidence_needs_explicit_acceptance(self):
        headers = ["Towar", "Kolumna B", "Kolumna C"]
        body = [["Flour", "xx", "kg"]]
        with self.assertRaises(LowConfidenceError) as ctx:
            ingest_sheet(self.store, "odd.csv", headers, body, min_confidence=90)
        self.assertLess(ctx.exception.detection.confidence, 90)
        self.assertEqual(self.store.find_files(), [])

    def test_accepting_an_incomplete_detection_still_fails_validation(self):
        with self.assertRaises(InvalidMappingError):
            ingest_sheet(self.store, "odd.csv", ["foo", "bar"], [["x", "y"]], accept_low_confidence=True)

    def test_explicit_mapping_skips_detection(self):
        result = ingest_sheet(
            self.store,
            "manual.csv",
            ["a", "b", "c"],
            [["Flour", "kg", "3"]],
            {"name": 0, "unit": 1, "quantity": 2},
        )
        self.assertIsNone(result.detection)
        self.assertEqual(result.records[0].quantity, 3.0)

    def test_explicit_mapping_is_validated(self):
        with self.assertRaises(InvalidMappingError) as ctx:
            ingest_sheet(self.store, "manual.csv", ["a", "b"], [["x", "y"]], {"name": 0, "quantity": 0, "unit": 5})
        self.assertTrue(any("Duplicate column assignment" in error for error in ctx.exception.errors))
        self.assertTrue(any("out of bounds" in error for error in ctx.exception.errors))

    def test_mapping_bounds_follow_the_header_not_wider_rows(self):
        body = [["Flour", "3", "x", "y", "kg"]]
        with self.assertRaises(InvalidMappingError) as ctx:
            ingest_sheet(self.store, "wide.csv", ["a", "b", "c"], body, {"name": 0, "quantity": 1, "unit": 4})
        self.assertTrue(any("out of bounds" in error for error in ctx.exception.errors))
        self.assertEqual(self.store.find_files(), [])


class IngestFileTests(unittest.TestCase):
    def test_ingest_xlsx_end_to_end(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stock.xlsx"
            wb = Workbook()
            ws = wb.active
            ws.append(HEADERS)
            ws.append(["SUROWCE"])
            ws.append(["A001", "Mąka", 12.5, "kg"])
            ws.append(["A002", "Cukier", 3, "KG"])
            wb.save(path)

            store = InMemoryStore()
            result = ingest_file(store, path)

        self.assertEqual(result.file.file_name, "stock.xlsx")
        self.assertEqual([record.name for record in result.records], ["Mąka", "Cukier"])
        self.assertEqual([record.unit for record in result.records], ["kg", "kg"])
        self.assertEqual(result.category_headers, 1)
        self.assertEqual(len(store.find_aggregates()), 2)

    def test_ingest_semicolon_csv(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stock.csv"
            path.write_text(
                "Nazwa towaru;Ilość;JMZ\nPRODUKCJA;;\nChleb;1 200,5;szt\n",
                encoding="utf-8",
            )
            store = InMemoryStore()
            result = ingest_file(store, path)

        self.assertEqual(result.records[0].quantity, 1200.5)
        self.assertEqual(result.records[0].original_row_index, 1)
        self.assertEqual(result.category_headers, 1)


if __name__ == "__main__":
    unittest.main()
