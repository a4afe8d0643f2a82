import unittest

from stocktake.mapping import CanonicalRecord, ColumnMapping
from stocktake.structure import (
    HEADER,
    ITEM,
    StructureEntry,
    StructureInvariantError,
    classify_body,
    interleave_records,
    is_category_row,
    structure_from_dicts,
)

MAPPING = ColumnMapping(item_id=0, name=1, quantity=2, unit=3)


class CategoryRowTests(unittest.TestCase):
    def test_single_text_cell_is_a_category(self):
        self.assertTrue(is_category_row(["SUROWCE", None, "", None]))
        self.assertTrue(is_category_row([None, "PÓŁPRODUKTY"]))

    def test_numbers_and_multi_cell_rows_are_not_categories(self):
        self.assertFalse(is_category_row(["12", None, None]))
        self.assertFalse(is_category_row([None, 4.5]))
        self.assertFalse(is_category_row(["A001", "Flour", None, None]))
        self.assertFalse(is_category_row([None, None]))
        self.assertFalse(is_category_row([]))


class ClassifyBodyTests(unittest.TestCase):
    def test_classification_is_repeatable(self):
        body = [
            ["SUROWCE", None, None, None],
            ["A001", "Flour", "10", "kg"],
            [None, None, None, None],
            ["A002", "Sugar", "2,5", "KG"],
            ["PRODUKCJA"],
            None,
            ["B001", "Bread", "5", "szt."],
        ]
        first = classify_body(body, MAPPING)
        second = classify_body(body, MAPPING)
        self.assertEqual(first.structure_dicts(), second.structure_dicts())
        self.assertEqual(first.data_rows, second.data_rows)
        self.assertEqual([row.original_row_index for row in first.data_rows], [1, 3, 6])

    def test_header_then_item(self):
        body = [["SUROWCE"], ["A001", "Flour", "10", "kg"]]
        classified = classify_body(body, MAPPING)
        self.assertEqual(
            classified.structure_dicts(),
            [
                {"type": "header", "content": "SUROWCE"},
                {"type": "item", "content": {"itemId": "A001", "name": "Flour", "unit": "kg"}},
            ],
        )
        self.assertEqual(len(classified.data_rows), 1)
        self.assertEqual(classified.data_rows[0].original_row_index, 1)
        self.assertEqual(classified.header_count, 1)

    def test_blank_rows_are_skipped_but_keep_positions(self):
        body = [
            ["A001", "Flour", "10", "kg"],
            [None, None, None, None],
            [],
            ["PRODUKCJA", None, None, None],
            ["B002", "Bread", "5", "SZT"],
        ]
        classified = classify_body(body, MAPPING)
        self.assertEqual([entry.type for entry in classified.structure], [ITEM, HEADER, ITEM])
        self.assertEqual([row.original_row_index for row in classified.data_rows], [0, 4])
        self.assertEqual(classified.structure[2].content.unit, "szt")

    def test_item_markers_match_data_rows(self):
        body = [["X"], ["1", "A", "1", "kg"], ["Y"], ["2", "B", "2", "kg"], ["3", "C", "3", "kg"]]
        classified = classify_body(body, MAPPING)
        items = [entry for entry in classified.structure if not entry.is_header]
        self.assertEqual(len(items), len(classified.data_rows))

    def test_classification_does_not_validate_rows(self):
        classified = classify_body([["A001", "Flour"]], MAPPING)
        self.assertEqual(classified.structure[0].content.unit, "")
        self.assertEqual(len(classified.data_rows), 1)


class StructureSerialisationTests(unittest.TestCase):
    def test_round_trip_through_dicts(self):
        structure = [StructureEntry.header("SUROWCE"), StructureEntry.item("Flour", "kg", "A001")]
        restored = structure_from_dicts([entry.to_dict() for entry in structure])
        self.assertEqual(restored, structure)

    def test_unknown_entry_type_is_rejected(self):
        with self.assertRaises(StructureInvariantError):
            structure_from_dicts([{"type": "footer", "content": "x"}])


class InterleaveRecordsTests(unittest.TestCase):
    def test_headers_are_put_back_between_records(self):
        structure = [
            StructureEntry.header("SUROWCE"),
            StructureEntry.item("Flour", "kg"),
            StructureEntry.header("PRODUKCJA"),
            StructureEntry.item("Bread", "szt"),
        ]
        records = [
            CanonicalRecord(name="Bread", quantity=5, unit="szt", original_row_index=3),
            CanonicalRecord(name="Flour", quantity=10, unit="kg", original_row_index=1),
        ]
        lines = list(interleave_records(structure, records))
        self.assertEqual(
            [(line.kind, line.label or line.record.name) for line in lines],
            [(HEADER, "SUROWCE"), (ITEM, "Flour"), (HEADER, "PRODUKCJA"), (ITEM, "Bread")],
        )

    def test_records_beyond_the_structure_are_appended(self):
        records = [CanonicalRecord(name="Salt", quantity=1, unit="kg", original_row_index=0)]
        lines = list(interleave_records([StructureEntry.header("X")], records))
        self.assertEqual([line.kind for line in lines], [HEADER, ITEM])


if __name__ == "__main__":
    unittest.main()
