"""
Join of the classified element store against a keyed tabular dataset.

Elements are matched by their key attribute (plot number by default).
Keys are normalized on both sides: trimmed, lowercased and stripped of a
leading "plot" / "villa" / "unit" prefix, so "Plot 425", "425" and
"villa-425" all meet on "425".
"""

import logging
import re
from collections.abc import Mapping

from . import config
from .errors import MissingProviderError
from .models import ExternalRecord, JoinStatistics, MappingEntry
from .utils import element_id_key, is_blank, stringify_value

logger = logging.getLogger(__name__)


def key_prefix_pattern(prefixes):
    alternatives = "|".join(re.escape(prefix) for prefix in prefixes)
    return re.compile(rf"^(?:{alternatives})[\s#:_\-.]*", re.IGNORECASE)


def _values_match(actual, expected):
    if actual == expected:
        return True
    return stringify_value(actual) is not None and stringify_value(actual) == stringify_value(expected)


class ExternalDataJoiner:
    def __init__(self, key_field=config.KEY_FIELD, column_map=None, key_prefixes=config.KEY_PREFIXES):
        self.key_field = key_field
        self.column_map = dict(column_map or config.DATASET_COLUMNS)
        self.key_column = self.column_map.get(key_field, key_field)
        self._prefix_re = key_prefix_pattern(key_prefixes) if key_prefixes else None
        self.records_by_key = {}
        self.rows_without_key = 0
        self.reset_mappings()

    def reset_mappings(self):
        self.forward = {}
        self.reverse = {}
        self._unmapped_ids = {}
        self._unmapped_keys = {}
        self._keyless_ids = {}

    def normalize_key(self, value):
        if is_blank(value):
            return ""
        text = stringify_value(value)
        if self._prefix_re is not None:
            text = self._prefix_re.sub("", text)
        return text.strip().lower()

    def clear(self):
        self.records_by_key = {}
        self.rows_without_key = 0
        self.reset_mappings()
        logger.debug("[*] Mappings cleared.")

    def load_records(self, rows):
        """Group dataset rows by normalized key, replacing any previous dataset."""
        if rows is None:
            raise MissingProviderError("No dataset rows were supplied.")
        records_by_key = {}
        without_key = 0
        for row in rows:
            if not isinstance(row, Mapping):
                without_key += 1
                continue
            key = self.normalize_key(row.get(self.key_column))
            if not key:
                without_key += 1
                continue
            fields = {field: row.get(column) for field, column in self.column_map.items()}
            records_by_key.setdefault(key, []).append(ExternalRecord(key=key, fields=fields, row=dict(row)))
        self.records_by_key = records_by_key
        self.rows_without_key = without_key
        if without_key:
            logger.warning("[!] %s dataset rows have no %r value and were skipped.", without_key, self.key_column)
        logger.info("[+] Indexed %s dataset keys.", f"{len(records_by_key):,}")
        return len(records_by_key)

    def join(self, index):
        """Rebuild forward, reverse and unmapped mappings from the index."""
        self.reset_mappings()
        total = 0
        for element_id, attributes in index.items():
            total += 1
            key = self.normalize_key(attributes.get(self.key_field))
            if not key:
                self._keyless_ids[element_id] = None
                continue
            records = self.records_by_key.get(key)
            if not records:
                self._unmapped_ids[element_id] = None
                self._unmapped_keys[key] = None
                continue
            self.forward[element_id] = MappingEntry(key=key, records=tuple(records), attributes=attributes)
            self.reverse.setdefault(key, []).append(element_id)

        stats = JoinStatistics(
            total_elements=total,
            mapped=len(self.forward),
            unmapped_elements=len(self._unmapped_ids),
            keyless_elements=len(self._keyless_ids),
            unmapped_keys=len(self._unmapped_keys),
            unique_keys=len(self.reverse),
            dataset_keys=len(self.records_by_key),
            coverage_percent=self.coverage(total),
        )
        logger.info(
            "[+] Mapped %s/%s elements (%s%%), %s unmapped, %s without a %s.",
            f"{stats.mapped:,}",
            f"{total:,}",
            stats.coverage_percent,
            f"{stats.unmapped_elements:,}",
            f"{stats.keyless_elements:,}",
            self.key_field,
        )
        if stats.unmapped_keys:
            sample = list(self._unmapped_keys)[:10]
            logger.warning("[!] %s keys have no dataset rows (e.g. %s).", stats.unmapped_keys, ", ".join(sample))
        return stats

    def coverage(self, total=None):
        if total is None:
            total = len(self.forward) + len(self._unmapped_ids) + len(self._keyless_ids)
        if not total:
            return 0.0
        return round(len(self.forward) / total * 100, 1)

    def records_for(self, element_id):
        entry = self.forward.get(element_id)
        return list(entry.records) if entry else None

    def ids_for_key(self, key):
        return list(self.reverse.get(self.normalize_key(key), ()))

    def mapping_for(self, element_id):
        return self.forward.get(element_id)

    def is_mapped(self, element_id):
        return element_id in self.forward

    def mapped_keys(self):
        return list(self.reverse)

    def unmapped_ids(self):
        return list(self._unmapped_ids)

    def unmapped_keys(self):
        return list(self._unmapped_keys)

    def keyless_ids(self):
        return list(self._keyless_ids)

    def export_unmapped(self):
        return {
            "unmapped_ids": [element_id_key(element_id) for element_id in self._unmapped_ids],
            "unmapped_keys": list(self._unmapped_keys),
            "keyless_ids": [element_id_key(element_id) for element_id in self._keyless_ids],
            "count": {
                "elements": len(self._unmapped_ids),
                "keys": len(self._unmapped_keys),
                "keyless": len(self._keyless_ids),
            },
        }

    def find_elements(self, criteria):
        """Ids whose first dataset row matches every criterion (field or column name)."""
        matches = []
        for element_id, entry in self.forward.items():
            first = entry.records[0]
            if all(_values_match(first.get(name), value) for name, value in criteria.items()):
                matches.append(element_id)
        return matches

    def group_by_column(self, column):
        """value -> ids over all rows of every mapped element."""
        groups = {}
        for element_id, entry in self.forward.items():
            for record in entry.records:
                value = stringify_value(record.get(column))
                if value is None:
                    continue
                groups.setdefault(value, {})[element_id] = None
        return {value: list(ids) for value, ids in groups.items()}
