"""
Property resolution against one element's raw property bag.

Candidate names come in three forms, tried in the order they are listed:

  - ``"Element/Plot"``   exact match on ``category/displayName``
  - ``"Element/*Plot*"`` case-insensitive wildcard on ``category/displayName``
  - ``"Plot"``           exact match on ``displayName``, then case-insensitive

The first candidate with a non-blank hit wins. Blank values (None, empty,
whitespace-only, "N/A") never count as a hit.
"""

import functools
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from . import config
from .models import Primitive, RawPropertyRecord
from .utils import is_blank


@functools.lru_cache(maxsize=256)
def wildcard_pattern(candidate: str) -> "re.Pattern[str]":
    body = ".*".join(re.escape(part) for part in candidate.split("*"))
    return re.compile(f"^{body}$", re.IGNORECASE | re.DOTALL)


def _matches_exact(prop: RawPropertyRecord, candidate: str) -> bool:
    if "/" in candidate and "*" not in candidate:
        return prop.full_name == candidate
    if "*" in candidate:
        return bool(wildcard_pattern(candidate).match(prop.full_name))
    return prop.display_name == candidate


def find_property(properties: Sequence[RawPropertyRecord], candidate: str) -> Optional[RawPropertyRecord]:
    """Return the first non-blank property matching one candidate name."""
    if not properties or not candidate:
        return None
    for prop in properties:
        if not is_blank(prop.display_value) and _matches_exact(prop, candidate):
            return prop
    if "/" in candidate or "*" in candidate:
        return None
    lowered = candidate.lower()
    for prop in properties:
        if not is_blank(prop.display_value) and prop.display_name.lower() == lowered:
            return prop
    return None


def resolve(properties: Sequence[RawPropertyRecord], candidates: Iterable[str]) -> Optional[Primitive]:
    """Resolve a canonical attribute: first candidate with a hit wins."""
    for candidate in candidates:
        prop = find_property(properties, candidate)
        if prop is not None:
            return prop.display_value
    return None


def _matches_any_case(prop: RawPropertyRecord, candidate: str) -> bool:
    if "/" in candidate or "*" in candidate:
        return _matches_exact(prop, candidate)
    return prop.display_name.lower() == candidate.lower()


def filter_properties(properties: Iterable[RawPropertyRecord], names: Optional[Iterable[str]]) -> List[RawPropertyRecord]:
    """Keep properties that find_property could match for any requested name.

    Bare display names match case-insensitively, so a filtered fetch never
    drops a property the resolver would fall back to.
    """
    if not names:
        return list(properties)
    names = list(names)
    return [prop for prop in properties if any(_matches_any_case(prop, name) for name in names)]


class PropertyResolver:
    """Resolves canonical attributes through named candidate lists."""

    def __init__(self, candidates: Optional[Mapping[str, Sequence[str]]] = None):
        if candidates is None:
            candidates = {**config.MODEL_PROPERTIES, **config.ATTRIBUTE_PROPERTIES}
        self.candidates: Dict[str, List[str]] = {name: list(values) for name, values in candidates.items()}

    def candidates_for(self, attribute: str) -> List[str]:
        try:
            return self.candidates[attribute]
        except KeyError:
            raise KeyError(f"No candidate list configured for {attribute!r}") from None

    def resolve(self, attribute: str, properties: Sequence[RawPropertyRecord]) -> Optional[Primitive]:
        return resolve(properties, self.candidates_for(attribute))
