import csv
import gzip
import json
import tempfile
import unittest
from datetime import date
from pathlib import Path

from progress_index.dataset import TabularDataset
from progress_index.errors import DatasetError, MissingProviderError

TODAY = date(2025, 6, 1)

ROWS = [
    {
        "Block": "39",
        "Plot": "425",
        "Component": "Raft",
        "Planned Start": 45658,  # 2025-01-01
        "Planned Finish": "2025-02-01",
        "Actual Start": "2025-01-03",
        "Actual Finish": "2025-02-05",
    },
    {
        "Block": "39",
        "Plot": "426",
        "Component": "Walls",
        "Planned Start": "2024-12-15",
        "Planned Finish": "2025-05-01",
        "Actual Start": "2025-02-10",
        "Actual Finish": None,
    },
    {
        "Block": "40",
        "Plot": "500",
        "Planned Start": "01/03/2025",
        "Planned Finish": "2025-09-01",
        "Actual Start": "2025-03-01",
    },
    {"Block": "40", "Plot": "501", "Planned Finish": "2025-10-01"},
]


class TabularDatasetTests(unittest.TestCase):
    def setUp(self) -> None:
        self.dataset = TabularDataset()
        self.dataset.load_rows(ROWS)

    def test_canonical_records_parse_dates(self) -> None:
        first = self.dataset.records[0]
        self.assertEqual(first["plot"], "425")
        self.assertEqual(first["planned_start"], date(2025, 1, 1))
        self.assertEqual(first["actual_finish"], date(2025, 2, 5))
        self.assertEqual(self.dataset.records[2]["planned_start"], date(2025, 3, 1))
        self.assertIsNone(self.dataset.records[3]["actual_start"])

    def test_block_summary(self) -> None:
        summary = self.dataset.block_summary(TODAY)
        self.assertEqual(
            summary["39"],
            {"block": "39", "total": 2, "completed": 1, "in_progress": 1, "delayed": 1, "not_started": 0},
        )
        self.assertEqual(summary["40"]["in_progress"], 1)
        self.assertEqual(summary["40"]["delayed"], 0)
        self.assertEqual(summary["40"]["not_started"], 1)

    def test_schedule_by_block(self) -> None:
        schedules = self.dataset.schedule_by_block()
        self.assertEqual(list(schedules), ["39", "40"])
        self.assertEqual(schedules["39"]["planned_start"], date(2024, 12, 15))
        self.assertEqual(schedules["39"]["planned_finish"], date(2025, 5, 1))
        self.assertEqual(schedules["39"]["component"], "Raft")
        self.assertEqual(schedules["40"]["component"], "Precast")
        self.assertEqual(self.dataset.block_schedule(40)["planned_finish"], date(2025, 10, 1))
        self.assertIsNone(self.dataset.block_schedule("99"))

    def test_overall_stats(self) -> None:
        stats = self.dataset.overall_stats(TODAY)
        self.assertEqual(stats["total"], 4)
        self.assertEqual(stats["completed"], 1)
        self.assertEqual(stats["blocks"], 2)
        self.assertEqual(stats["plots"], 4)
        self.assertEqual(stats["completion_rate"], 25.0)

    def test_reload_replaces_rows(self) -> None:
        self.dataset.load_rows([{"Plot": "1"}])
        self.assertEqual(len(self.dataset), 1)
        self.dataset.clear()
        self.assertEqual(self.dataset.records, [])

    def test_invalid_rows(self) -> None:
        with self.assertRaises(DatasetError) as ctx:
            self.dataset.load_rows([{"Plot": "1"}, ["not", "a", "row"]])
        self.assertEqual(ctx.exception.code, "INVALID_DATASET")
        with self.assertRaises(MissingProviderError):
            self.dataset.load_rows(None)


class DatasetFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_csv(self) -> None:
        path = self.root / "schedule.csv"
        with open(path, "w", encoding="utf-8", newline="") as fh:
            writer = csv.DictWriter(fh, fieldnames=["Plot", "Block", "Status"])
            writer.writeheader()
            writer.writerow({"Plot": "425", "Block": "39", "Status": "Raft Completed"})
        dataset = TabularDataset()
        self.assertEqual(dataset.load_file(path, show_progress=False), 1)
        self.assertEqual(dataset.records[0]["status"], "Raft Completed")

    def test_compressed_json(self) -> None:
        path = self.root / "schedule.json.gz"
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            json.dump([{"Plot": 425, "Planned Finish": 45688.0}], fh)
        dataset = TabularDataset()
        dataset.load_file(path, show_progress=False)
        self.assertEqual(dataset.records[0]["plot"], 425)
        self.assertEqual(dataset.records[0]["planned_finish"], date(2025, 1, 31))

    def test_jsonl(self) -> None:
        path = self.root / "schedule.jsonl"
        path.write_text('{"Plot": "1"}\n\n{"Plot": "2"}\n', encoding="utf-8")
        dataset = TabularDataset()
        self.assertEqual(dataset.load_file(path, show_progress=False), 2)

    def test_unsupported_format(self) -> None:
        path = self.root / "schedule.xlsx"
        path.write_bytes(b"PK")
        with self.assertRaises(DatasetError) as ctx:
            TabularDataset().load_file(path, show_progress=False)
        self.assertEqual(ctx.exception.code, "UNSUPPORTED_FORMAT")

    def test_broken_json(self) -> None:
        path = self.root / "schedule.json"
        path.write_text('[{"Plot": ', encoding="utf-8")
        with self.assertRaises(DatasetError) as ctx:
            TabularDataset().load_file(path, show_progress=False)
        self.assertEqual(ctx.exception.code, "INVALID_DATASET")


if __name__ == "__main__":
    unittest.main()
