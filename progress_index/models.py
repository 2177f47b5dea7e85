from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from .errors import MalformedPropertyError

ElementId = Union[int, str]
Primitive = Union[str, int, float, bool, None]

DIMENSIONS: Tuple[str, ...] = ("block", "plot", "neighborhood", "phase", "component")
IDENTIFYING_FIELDS: Tuple[str, ...] = ("block", "plot", "villa_type", "neighborhood")
INFRASTRUCTURE_FIELDS: Tuple[str, ...] = ("activity_id", "network", "zone")

EXCLUDED_NO_PRIMARY_IDENTIFIER = "NO_PRIMARY_IDENTIFIER"
EXCLUDED_NO_IDENTIFIER_AFTER_CLEANUP = "NO_IDENTIFIER_AFTER_CLEANUP"


@dataclass(frozen=True)
class RawPropertyRecord:
    category: str
    display_name: str
    display_value: Primitive

    @property
    def full_name(self) -> str:
        return f"{self.category}/{self.display_name}"

    @classmethod
    def from_payload(cls, payload: Any) -> "RawPropertyRecord":
        if not isinstance(payload, Mapping):
            raise MalformedPropertyError("Property must be an object.", {"value": payload})
        display_name = payload.get("displayName")
        if not isinstance(display_name, str):
            raise MalformedPropertyError("Property displayName must be a string.", {"value": payload})
        category = payload.get("category")
        if category is None:
            category = ""
        elif not isinstance(category, str):
            raise MalformedPropertyError("Property category must be a string.", {"value": payload})
        value = payload.get("displayValue")
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise MalformedPropertyError("Property displayValue must be a primitive.", {"value": payload})
        return cls(category=category, display_name=display_name, display_value=value)


def parse_property_list(payload: Any) -> List[RawPropertyRecord]:
    if not isinstance(payload, list):
        raise MalformedPropertyError("Element properties must be a list.", {"value": type(payload).__name__})
    return [RawPropertyRecord.from_payload(item) for item in payload]


@dataclass(frozen=True)
class ElementAttributes:
    block: Optional[str] = None
    plot: Optional[str] = None
    neighborhood: Optional[str] = None
    villa_type: Optional[str] = None
    component: Optional[str] = None
    phase: Optional[str] = None
    level: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    family: Optional[str] = None
    category: Optional[str] = None
    source_file: Optional[str] = None
    document_title: Optional[str] = None
    revit_type: Optional[str] = None
    substructure: Optional[str] = None
    volume: Optional[str] = None
    layer: Optional[str] = None
    planned_start: Optional[str] = None
    planned_finish: Optional[str] = None
    completion_date: Optional[str] = None

    def get(self, name: str) -> Optional[str]:
        return getattr(self, name, None)

    def has_identifier(self) -> bool:
        return any(self.get(name) for name in IDENTIFYING_FIELDS)

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in dataclasses.asdict(self).items() if v is not None}


ATTRIBUTE_FIELDS: FrozenSet[str] = frozenset(f.name for f in dataclasses.fields(ElementAttributes))


@dataclass(frozen=True)
class DomainEntity:
    attributes: ElementAttributes
    primary_fields: FrozenSet[str] = frozenset()

    is_domain_entity = True


@dataclass(frozen=True)
class Excluded:
    reason: str

    is_domain_entity = False


ClassificationResult = Union[DomainEntity, Excluded]


@dataclass(frozen=True)
class ExternalRecord:
    key: str
    fields: Dict[str, Any]
    row: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.fields:
            return self.fields[name]
        return self.row.get(name, default)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "fields": dict(self.fields), "row": dict(self.row)}


@dataclass(frozen=True)
class MappingEntry:
    key: str
    records: Tuple[ExternalRecord, ...]
    attributes: ElementAttributes


@dataclass(frozen=True)
class ScanStatistics:
    total_scanned: int
    primary_total: int
    secondary_total: int
    classified: int
    excluded: int
    skipped: int
    batches: int
    per_batch_classified: Tuple[int, ...]
    per_dimension_counts: Dict[str, int]
    exclusion_reasons: Dict[str, int]
    analysis_rate_percent: float

    def to_dict(self) -> Dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["per_batch_classified"] = list(self.per_batch_classified)
        return payload


@dataclass(frozen=True)
class JoinStatistics:
    total_elements: int
    mapped: int
    unmapped_elements: int
    keyless_elements: int
    unmapped_keys: int
    unique_keys: int
    dataset_keys: int
    coverage_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)
