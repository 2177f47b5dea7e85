import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .models import DIMENSIONS, ElementAttributes, ElementId
from .utils import natural_sort_key, normalize_value

logger = logging.getLogger(__name__)

# Neighborhood and phase values are spelled inconsistently across source models;
# block and plot keep their raw form because "039", "39" and "R039" all occur.
NORMALIZED_DIMENSIONS = frozenset({"neighborhood", "phase"})


def index_key(dimension, value):
    """Return the bucket key for a dimension value ('' means "not indexed")."""
    if value is None:
        return ""
    if dimension in NORMALIZED_DIMENSIONS:
        return normalize_value(value)
    return str(value).strip()


class MultiIndex:
    """Primary attribute store plus one value -> ids index per dimension."""

    def __init__(self, dimensions: Iterable[str] = DIMENSIONS):
        self.dimensions: Tuple[str, ...] = tuple(dimensions)
        self._attributes: Dict[ElementId, ElementAttributes] = {}
        # Insertion-ordered dicts used as ordered sets of ids
        self._buckets: Dict[str, Dict[str, Dict[ElementId, None]]] = {d: {} for d in self.dimensions}

    def __len__(self):
        return len(self._attributes)

    def __contains__(self, element_id):
        return element_id in self._attributes

    def clear(self):
        self._attributes.clear()
        for buckets in self._buckets.values():
            buckets.clear()
        logger.debug("[*] Multi-index cleared.")

    def merge(self, element_id: ElementId, attributes: ElementAttributes) -> None:
        if element_id in self._attributes:
            self._unindex(element_id, self._attributes[element_id])
        self._attributes[element_id] = attributes
        for dimension in self.dimensions:
            key = index_key(dimension, attributes.get(dimension))
            if not key:
                continue
            self._buckets[dimension].setdefault(key, {})[element_id] = None

    def merge_batch(self, entries: Iterable[Tuple[ElementId, ElementAttributes]]) -> int:
        merged = 0
        for element_id, attributes in entries:
            self.merge(element_id, attributes)
            merged += 1
        return merged

    def _unindex(self, element_id, attributes):
        for dimension in self.dimensions:
            key = index_key(dimension, attributes.get(dimension))
            bucket = self._buckets[dimension].get(key)
            if bucket is None:
                continue
            bucket.pop(element_id, None)
            if not bucket:
                del self._buckets[dimension][key]

    def _require_dimension(self, dimension):
        if dimension not in self._buckets:
            raise KeyError(f"Unknown index dimension {dimension!r}; expected one of {self.dimensions}")

    def lookup(self, dimension: str, value) -> List[ElementId]:
        """Ids whose attribute equals value (normalized the same way as the keys)."""
        self._require_dimension(dimension)
        return list(self._buckets[dimension].get(index_key(dimension, value), ()))

    def values(self, dimension: str) -> List[str]:
        """Distinct values of a dimension, numeric-aware sorted."""
        self._require_dimension(dimension)
        return sorted(self._buckets[dimension], key=natural_sort_key)

    def groups(self, dimension: str) -> Dict[str, List[ElementId]]:
        self._require_dimension(dimension)
        return {key: list(self._buckets[dimension][key]) for key in self.values(dimension)}

    def get_attributes(self, element_id: ElementId) -> Optional[ElementAttributes]:
        return self._attributes.get(element_id)

    def items(self):
        return self._attributes.items()

    def ids(self) -> List[ElementId]:
        return list(self._attributes)

    def dimension_counts(self) -> Dict[str, int]:
        return {dimension: len(self._buckets[dimension]) for dimension in self.dimensions}

    def indexed_ids(self, dimension: str) -> set:
        self._require_dimension(dimension)
        out = set()
        for bucket in self._buckets[dimension].values():
            out.update(bucket)
        return out
