import json
import math
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from progress_index.utils import (
    base_suffix,
    chunked,
    dedupe_preserving_order,
    excel_serial_to_date,
    is_blank,
    is_numeric_string,
    natural_sort_key,
    parse_date,
    stringify_value,
    write_json,
)


class UtilsTests(unittest.TestCase):
    def test_blank_values(self) -> None:
        for value in (None, "", "  ", "N/A", " N/A ", math.nan):
            with self.subTest(value=value):
                self.assertTrue(is_blank(value))
        for value in ("0", 0, False, "n/a-1"):
            with self.subTest(value=value):
                self.assertFalse(is_blank(value))

    def test_stringify_value(self) -> None:
        self.assertEqual(stringify_value(425.0), "425")
        self.assertEqual(stringify_value(12.5), "12.5")
        self.assertEqual(stringify_value("  Villa A "), "Villa A")
        self.assertIsNone(stringify_value("N/A"))

    def test_numeric_strings(self) -> None:
        for value in ("425", " 425 ", "-1", "+3.5", ".5", "1e3", "10."):
            with self.subTest(value=value):
                self.assertTrue(is_numeric_string(value))
        for value in ("", "A12", "0x1A", "inf", "nan", "1,000", "12 B"):
            with self.subTest(value=value):
                self.assertFalse(is_numeric_string(value))
        self.assertTrue(is_numeric_string("425", strict=True))
        self.assertFalse(is_numeric_string("425.0", strict=True))

    def test_natural_sort(self) -> None:
        values = ["100", "B2", "9", "39a", "39", "A1"]
        self.assertEqual(sorted(values, key=natural_sort_key), ["9", "39", "39a", "100", "A1", "B2"])

    def test_chunked_and_dedupe(self) -> None:
        self.assertEqual(list(chunked(range(5), 2)), [[0, 1], [2, 3], [4]])
        with self.assertRaises(ValueError):
            list(chunked([1], 0))
        self.assertEqual(dedupe_preserving_order([3, 1], None, [1, 2, 3]), [3, 1, 2])

    def test_dates(self) -> None:
        self.assertEqual(excel_serial_to_date(45658), date(2025, 1, 1))
        self.assertEqual(parse_date("2025-01-02T10:00:00Z"), date(2025, 1, 2))
        self.assertEqual(parse_date("1-Dec-25"), date(2025, 12, 1))
        self.assertEqual(parse_date(datetime(2025, 3, 4, 5, 6)), date(2025, 3, 4))
        self.assertIsNone(parse_date("someday"))
        self.assertIsNone(parse_date(True))
        self.assertIsNone(parse_date(math.inf))

    def test_base_suffix(self) -> None:
        self.assertEqual(base_suffix("scene.jsonl.zst"), ".jsonl")
        self.assertEqual(base_suffix("scene.JSON.gz"), ".json")
        self.assertEqual(base_suffix("rows.csv"), ".csv")

    def test_write_json(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_json(Path(tmp) / "nested" / "out.json", {"when": date(2025, 1, 1), "ids": {2, 1}})
            self.assertEqual(json.loads(path.read_text(encoding="utf-8")), {"when": "2025-01-01", "ids": [1, 2]})


if __name__ == "__main__":
    unittest.main()
