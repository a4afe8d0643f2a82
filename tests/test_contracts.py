from __future__ import annotations

import re
import unittest
from pathlib import Path

from stocktake.contracts import CONTRACT_VERSIONS, build_contract, build_run_summary, utc_now_iso, wrap_payload


class ContractTests(unittest.TestCase):
    def test_every_contract_is_versioned(self):
        for name, version in CONTRACT_VERSIONS.items():
            self.assertEqual(build_contract(name), {"name": name, "version": version})
            self.assertRegex(version, r"^\d+\.\d+\.\d+$")

    def test_unknown_contract_is_a_key_error(self):
        with self.assertRaises(KeyError):
            build_contract("stocktake.unknown")

    def test_run_summary_shape(self):
        summary = build_run_summary(
            command="ingest",
            input_path=Path("stock.xlsx"),
            metrics={"rows": 3},
            warnings=["Workbook has 2 sheets"],
        )
        self.assertEqual(summary["tool"], "stocktake")
        self.assertEqual(summary["input_file"], "stock.xlsx")
        self.assertIsNone(summary["output_file"])
        self.assertEqual(summary["warnings_count"], 1)
        self.assertEqual(summary["metrics"], {"rows": 3})

    def test_wrapped_payload_carries_contract_and_summary(self):
        summary = build_run_summary(command="detect")
        payload = wrap_payload("stocktake.detect", {"confidence": 100}, summary)
        self.assertEqual(payload["contract"]["name"], "stocktake.detect")
        self.assertEqual(payload["schema_version"], payload["contract"]["version"])
        self.assertEqual(payload["confidence"], 100)
        self.assertIs(payload["run_summary"], summary)

    def test_timestamps_are_utc_seconds(self):
        self.assertTrue(re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", utc_now_iso()))


if __name__ == "__main__":
    unittest.main()
