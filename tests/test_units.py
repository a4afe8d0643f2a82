import unittest

from stocktake.units import CANONICAL_UNITS, is_known_unit, normalize_unit, units_match


class UnitNormalizerTests(unittest.TestCase):
    def test_case_and_whitespace_are_folded(self):
        self.assertEqual(normalize_unit("KG"), "kg")
        self.assertEqual(normalize_unit("  Kg "), "kg")
        self.assertEqual(normalize_unit("szt."), "szt")

    def test_aliases_map_to_canonical_spelling(self):
        self.assertEqual(normalize_unit("kilogram"), "kg")
        self.assertEqual(normalize_unit("Litre"), "l")
        self.assertEqual(normalize_unit("pcs"), "szt")
        self.assertEqual(normalize_unit("sztuk"), "szt")
        self.assertEqual(normalize_unit("opakowanie"), "opak")

    def test_unknown_tokens_are_lowercased_not_rejected(self):
        self.assertEqual(normalize_unit("Karton"), "karton")
        self.assertFalse(is_known_unit("karton"))

    def test_normalization_is_idempotent(self):
        for raw in ["KG", "Grams", "ml", "Each", "Paleta", "  L  ", "kg . .", "szt..", "Op. ."]:
            once = normalize_unit(raw)
            self.assertEqual(normalize_unit(once), once, raw)

    def test_stacked_trailing_dots_are_stripped_in_one_pass(self):
        self.assertEqual(normalize_unit("kg . ."), "kg")
        self.assertEqual(normalize_unit("szt. ."), "szt")

    def test_every_canonical_unit_is_known(self):
        for unit in CANONICAL_UNITS:
            self.assertTrue(is_known_unit(unit))
            self.assertEqual(normalize_unit(unit), unit)

    def test_units_match_compares_canonical_forms(self):
        self.assertTrue(units_match("kg", "KG"))
        self.assertTrue(units_match("piece", "szt"))
        self.assertFalse(units_match("g", "kg"))

    def test_none_and_blank_become_empty(self):
        self.assertEqual(normalize_unit(None), "")
        self.assertEqual(normalize_unit("   "), "")


if __name__ == "__main__":
    unittest.main()
