import json
import tempfile
import unittest
from pathlib import Path

from stocktake.aggregation import AggregateKey, AggregationFolder
from stocktake.mapping import CanonicalRecord
from stocktake.storage import InMemoryStore, StoreError
from stocktake.structure import StructureEntry

MAPPING = {"itemId": 0, "name": 1, "quantity": 2, "unit": 3}


def rec(name, quantity, index, unit="kg", item_id=None):
    return CanonicalRecord(name=name, quantity=quantity, unit=unit, original_row_index=index, item_id=item_id)


def ingest(store, file_name, records):
    with store.transaction():
        file_record = store.create_file(
            file_name,
            [StructureEntry.item(r.name, r.unit, r.item_id) for r in records],
            MAPPING,
            row_count=len(records),
        )
        store.insert_rows(file_record.id, records)
        AggregationFolder(store).fold_many(records, file_record.id)
    return file_record


class TransactionTests(unittest.TestCase):
    def test_failed_transaction_leaves_store_untouched(self):
        store = InMemoryStore()
        ingest(store, "first.xlsx", [rec("Flour", 10, 0)])
        before = store.to_dict()

        with self.assertRaises(RuntimeError):
            with store.transaction():
                created = store.create_file("second.xlsx", [], MAPPING)
                store.insert_rows(created.id, [rec("Flour", 5, 0)])
                AggregationFolder(store).fold(rec("Flour", 5, 0), created.id)
                raise RuntimeError("boom")

        self.assertEqual(store.to_dict(), before)
        self.assertEqual(len(store.find_files()), 1)

    def test_insert_rows_requires_known_file(self):
        with self.assertRaises(StoreError) as ctx:
            InMemoryStore().insert_rows("nope", [rec("Flour", 1, 0)])
        self.assertEqual(str(ctx.exception), "File not found: nope")


class QueryTests(unittest.TestCase):
    def test_rows_come_back_in_upload_then_row_order(self):
        store = InMemoryStore()
        first = ingest(store, "a.csv", [rec("B", 1, 5), rec("A", 1, 2)])
        second = ingest(store, "b.csv", [rec("C", 1, 0)])
        rows = store.find_rows()
        self.assertEqual([(row.file_id, row.record.original_row_index) for row in rows],
                         [(first.id, 2), (first.id, 5), (second.id, 0)])
        self.assertEqual([row.record.name for row in store.find_rows(second.id)], ["C"])

    def test_aggregates_can_be_filtered_by_file(self):
        store = InMemoryStore()
        first = ingest(store, "a.csv", [rec("Flour", 1, 0)])
        ingest(store, "b.csv", [rec("Sugar", 1, 0)])
        self.assertEqual([entry.name for entry in store.find_aggregates(first.id)], ["Flour"])


class DeleteFileTests(unittest.TestCase):
    def test_delete_reverses_the_file_contribution(self):
        store = InMemoryStore()
        first = ingest(store, "a.csv", [rec("Flour", 10, 0), rec("Salt", 1, 1)])
        ingest(store, "b.csv", [rec("Flour", 4, 0)])

        store.delete_file(first.id)

        flour = store.find_aggregate(AggregateKey.of("Flour", "kg"))
        self.assertEqual(flour.quantity, 4.0)
        self.assertEqual(flour.count, 1)
        self.assertNotIn(first.id, flour.source_files)
        self.assertIsNone(store.find_aggregate(AggregateKey.of("Salt", "kg")))
        self.assertEqual(len(store.find_rows()), 1)
        self.assertEqual([record.file_name for record in store.find_files()], ["b.csv"])

    def test_delete_unknown_file(self):
        with self.assertRaises(StoreError):
            InMemoryStore().delete_file("missing")


class PersistenceTests(unittest.TestCase):
    def test_save_and_load_round_trip(self):
        store = InMemoryStore()
        ingest(store, "a.csv", [rec("Flour", 10.5, 0, item_id="A001")])
        AggregationFolder(store).add_manual("Salt", 1, "kg")

        with tempfile.TemporaryDirectory() as tmpdir:
            path = store.save(Path(tmpdir) / "nested" / "store.json")
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(payload["version"], 1)
            restored = InMemoryStore.load(path)

        self.assertEqual(restored.to_dict(), store.to_dict())
        self.assertEqual(restored.find_files()[0].structure, store.find_files()[0].structure)

    def test_missing_store_file_loads_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = InMemoryStore.load(Path(tmpdir) / "absent.json")
        self.assertEqual(store.find_files(), [])

    def test_corrupt_store_file_is_reported(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "store.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "Could not read store"):
                InMemoryStore.load(path)

    def test_unsupported_version_is_rejected(self):
        with self.assertRaisesRegex(ValueError, "Unsupported store format version"):
            InMemoryStore.from_dict({"version": 99})


if __name__ == "__main__":
    unittest.main()
