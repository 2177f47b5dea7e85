"""
Tabular progress dataset (one row per plot/component schedule line).

Rows arrive as column -> value mappings, typically exported from the
planning spreadsheet. They are normalized through a column map into
canonical fields; date columns are parsed (Excel serial numbers included).
"""

import csv
import io
import logging
import sys
from collections.abc import Mapping
from datetime import date

import ijson
from tqdm import tqdm

from . import config
from .errors import DatasetError, MissingProviderError
from .status import COMPLETED, DELAYED, NOT_STARTED, row_status
from .utils import base_suffix, iter_jsonl, natural_sort_key, normalize_value, open_binary, parse_date, stringify_value

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".json", ".jsonl")
DEFAULT_SCHEDULE_COMPONENT = "Precast"


def _iter_file_rows(path):
    suffix = base_suffix(path)
    if suffix == ".csv":
        with open_binary(path) as raw:
            with io.TextIOWrapper(raw, encoding="utf-8-sig", newline="") as fh:
                yield from csv.DictReader(fh)
    elif suffix == ".jsonl":
        yield from iter_jsonl(path)
    elif suffix == ".json":
        with open_binary(path) as fh:
            yield from ijson.items(fh, "item", use_float=True)
    else:
        raise DatasetError(
            "UNSUPPORTED_FORMAT",
            f"Unsupported dataset format {suffix or '(none)'!r}; expected one of {', '.join(SUPPORTED_SUFFIXES)}",
            {"path": str(path)},
        )


class TabularDataset:
    def __init__(self, column_map=None):
        self.column_map = dict(column_map or config.DATASET_COLUMNS)
        self.rows = []
        self.records = []

    def __len__(self):
        return len(self.rows)

    def clear(self):
        self.rows = []
        self.records = []
        logger.debug("[*] Dataset cleared.")

    def canonical_record(self, row):
        """Read a raw row through the column map; date columns become dates."""
        record = {}
        for field, column in self.column_map.items():
            value = row.get(column)
            if field in config.DATE_COLUMNS:
                record[field] = parse_date(value)
            else:
                record[field] = value
        return record

    def load_rows(self, rows):
        """Replace the dataset with new rows; returns the number of rows loaded."""
        if rows is None:
            raise MissingProviderError("No dataset rows were supplied.")
        loaded = []
        for position, row in enumerate(rows):
            if not isinstance(row, Mapping):
                raise DatasetError(
                    "INVALID_DATASET",
                    f"Dataset row {position} is not a column mapping.",
                    {"row": position, "type": type(row).__name__},
                )
            loaded.append(dict(row))
        self.rows = loaded
        self.records = [self.canonical_record(row) for row in loaded]
        if loaded:
            missing = [column for column in self.column_map.values() if column not in loaded[0]]
            if missing:
                logger.warning("[!] Dataset is missing mapped columns: %s", ", ".join(missing))
        logger.info("[+] Loaded %s dataset rows.", f"{len(loaded):,}")
        return len(loaded)

    def load_file(self, path, show_progress=config.SHOW_PROGRESS_BAR):
        try:
            rows = list(
                tqdm(
                    _iter_file_rows(path),
                    desc="Loading dataset",
                    unit=" row",
                    disable=not (show_progress and sys.stderr.isatty()),
                )
            )
        except FileNotFoundError as exc:
            raise DatasetError("INVALID_DATASET", f"Dataset file not found: {path}", {"path": str(path)}) from exc
        except (ValueError, ijson.JSONError) as exc:
            raise DatasetError("INVALID_DATASET", f"Could not parse dataset {path}: {exc}", {"path": str(path)}) from exc
        return self.load_rows(rows)

    def block_summary(self, today=None):
        """Per-block row counts: completed / in progress (delayed included) / not started."""
        today = today or date.today()
        blocks = {}
        for record in self.records:
            key = normalize_value(record.get("block"))
            entry = blocks.setdefault(
                key,
                {
                    "block": stringify_value(record.get("block")),
                    "total": 0,
                    "completed": 0,
                    "in_progress": 0,
                    "delayed": 0,
                    "not_started": 0,
                },
            )
            entry["total"] += 1
            status = row_status(record, today)
            if status == COMPLETED:
                entry["completed"] += 1
            elif status == NOT_STARTED:
                entry["not_started"] += 1
            else:
                entry["in_progress"] += 1
                if status == DELAYED:
                    entry["delayed"] += 1
        return blocks

    def schedule_by_block(self):
        """Earliest planned start and latest planned finish per block."""
        schedules = {}
        for record in self.records:
            block = stringify_value(record.get("block"))
            if block is None:
                continue
            start = record.get("planned_start")
            finish = record.get("planned_finish")
            existing = schedules.get(block)
            if existing is None:
                schedules[block] = {
                    "block": block,
                    "planned_start": start,
                    "planned_finish": finish,
                    "component": stringify_value(record.get("component")) or DEFAULT_SCHEDULE_COMPONENT,
                }
                continue
            if start and (existing["planned_start"] is None or start < existing["planned_start"]):
                existing["planned_start"] = start
            if finish and (existing["planned_finish"] is None or finish > existing["planned_finish"]):
                existing["planned_finish"] = finish
        return dict(sorted(schedules.items(), key=lambda item: natural_sort_key(item[0])))

    def block_schedule(self, block):
        key = stringify_value(block)
        if key is None:
            return None
        return self.schedule_by_block().get(key)

    def overall_stats(self, today=None):
        blocks = self.block_summary(today)
        totals = {"total": 0, "completed": 0, "in_progress": 0, "delayed": 0, "not_started": 0}
        for entry in blocks.values():
            for name in totals:
                totals[name] += entry[name]
        plots = {normalize_value(record.get("plot")) for record in self.records}
        total = totals["total"]
        return {
            **totals,
            "blocks": len(blocks),
            "plots": len(plots),
            "completion_rate": round(totals["completed"] / total * 100, 1) if total else 0.0,
        }
