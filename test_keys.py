#!/usr/bin/env python3
"""
Test OData literal formatting and key predicate construction.
"""

import unittest

from odata_catalog_lib.keys import build_key_predicate, format_literal
from odata_catalog_lib.models import Property

GUID = "0b6c2a34-9d1e-4f3a-8c7b-2e5d9f1a4b6c"


class TestFormatLiteral(unittest.TestCase):
    """Values rendered as URL literals for each EDM type."""

    def test_v4_literals(self):
        cases = [
            (7, "Edm.Int32", "7"),
            ("7", "Edm.Int32", "7"),
            (5, "Edm.Int64", "5"),
            ("O'Brien", "Edm.String", "'O''Brien'"),
            (12, "Edm.String", "'12'"),
            (GUID, "Edm.Guid", GUID),
            ("1.50", "Edm.Decimal", "1.50"),
            (2.5, "Edm.Double", "2.5"),
            (True, "Edm.Boolean", "true"),
            ("false", "Edm.Boolean", "false"),
            ("2024-01-01T00:00:00Z", "Edm.DateTimeOffset", "2024-01-01T00:00:00Z"),
            ("2024-01-01", "Edm.Date", "2024-01-01"),
        ]
        for value, edm_type, expected in cases:
            with self.subTest(value=value, edm_type=edm_type):
                self.assertEqual(format_literal(value, edm_type), expected)

    def test_v2_literals(self):
        cases = [
            (5, "Edm.Int64", "5L"),
            (5, "Edm.Int32", "5"),
            ("1.50", "Edm.Decimal", "1.50M"),
            (GUID, "Edm.Guid", f"guid'{GUID}'"),
            ("2024-01-01T00:00:00", "Edm.DateTime", "datetime'2024-01-01T00:00:00'"),
            ("2024-01-01T00:00:00Z", "Edm.DateTimeOffset", "datetimeoffset'2024-01-01T00:00:00Z'"),
        ]
        for value, edm_type, expected in cases:
            with self.subTest(value=value, edm_type=edm_type):
                self.assertEqual(format_literal(value, edm_type, version="2.0"), expected)

    def test_inferred_literals(self):
        self.assertEqual(format_literal(3), "3")
        self.assertEqual(format_literal("abc"), "'abc'")
        self.assertEqual(format_literal(GUID), GUID)
        self.assertEqual(format_literal(GUID, version="2.0"), f"guid'{GUID}'")

    def test_type_mismatch(self):
        cases = [
            ("abc", "Edm.Int32"),
            (1.5, "Edm.Int32"),
            ("not-a-guid", "Edm.Guid"),
            ("many", "Edm.Decimal"),
            ("yes", "Edm.Boolean"),
        ]
        for value, edm_type in cases:
            with self.subTest(value=value, edm_type=edm_type):
                with self.assertRaises(ValueError):
                    format_literal(value, edm_type)


class TestKeyPredicates(unittest.TestCase):
    """Key predicates in declaration order, and parsing them back."""

    def setUp(self):
        self.single = [Property(name="ProductID", type="Edm.Int32", nullable=False, is_key=True)]
        self.composite = [
            Property(name="OrderID", type="Edm.String", nullable=False, is_key=True),
            Property(name="LineNo", type="Edm.Int32", nullable=False, is_key=True),
        ]

    def test_single_key(self):
        self.assertEqual(build_key_predicate(self.single, {"ProductID": 7}), "(7)")

    def test_composite_key_uses_declaration_order(self):
        predicate = build_key_predicate(self.composite, {"LineNo": 2, "OrderID": "A1"})
        self.assertEqual(predicate, "(OrderID='A1',LineNo=2)")

    def test_reserved_characters_are_encoded(self):
        key = [Property(name="Code", type="Edm.String", is_key=True)]
        self.assertEqual(build_key_predicate(key, {"Code": "New York"}), "('New%20York')")
        self.assertEqual(build_key_predicate(key, {"Code": "a/b"}), "('a%2Fb')")

    def test_no_key_properties(self):
        with self.assertRaises(ValueError):
            build_key_predicate([], {})

    def test_v2_typed_composite_key(self):
        keys = [
            Property(name="Id", type="Edm.Guid", is_key=True),
            Property(name="Version", type="Edm.Int64", is_key=True),
        ]
        predicate = build_key_predicate(keys, {"Id": GUID, "Version": 9}, version="2.0")
        self.assertEqual(predicate, f"(Id=guid'{GUID}',Version=9L)")


if __name__ == "__main__":
    unittest.main()
