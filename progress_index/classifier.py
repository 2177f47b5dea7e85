"""
Element classification: domain entity (villa) vs. infrastructure noise.

The scene mixes a large infrastructure majority with a much smaller set of
domain entities, and both share property names. An element is a domain
entity only when one of its identifying attributes (block, neighborhood,
plot, villa type) is set by a primary rule. Fallback rules enrich
attributes but can never make an element a domain entity on their own.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from . import config
from .models import (
    ATTRIBUTE_FIELDS,
    EXCLUDED_NO_IDENTIFIER_AFTER_CLEANUP,
    EXCLUDED_NO_PRIMARY_IDENTIFIER,
    IDENTIFYING_FIELDS,
    INFRASTRUCTURE_FIELDS,
    ClassificationResult,
    DomainEntity,
    ElementAttributes,
    Excluded,
    RawPropertyRecord,
)
from .resolver import PropertyResolver
from .utils import is_numeric_string, stringify_value

Extractor = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ExtractionRule:
    field: str
    source: str
    extract: Optional[Extractor] = None
    sets_domain_flag: bool = False
    fallback: bool = False
    infrastructure_only: bool = False


def extract_block_from_activity_id(activity_id: str) -> Optional[str]:
    """141CWARSSE4R002PW030 -> 'R002'; otherwise the first 3-4 digit run."""
    for pattern in config.ACTIVITY_BLOCK_PATTERNS:
        match = re.search(pattern, activity_id)
        if match:
            return match.group(0)
    return None


def extract_phase_from_activity_id(activity_id: str) -> Optional[str]:
    """141CWARSSE4R002PW030 -> '141'."""
    match = re.match(config.ACTIVITY_PHASE_PATTERN, activity_id)
    return match.group(1) if match else None


def extract_zone_from_network(network_name: str) -> Optional[str]:
    """'Zone A Potable-Fire Network' -> 'Zone A'; other names pass through."""
    match = re.search(config.NETWORK_ZONE_PATTERN, network_name, re.IGNORECASE)
    return match.group(0) if match else network_name


def plot_extractor(strict: bool = config.STRICT_PLOT_INTEGERS) -> Extractor:
    def _extract(value: str) -> Optional[str]:
        return value if is_numeric_string(value, strict=strict) else None

    return _extract


def build_default_rules(strict_plot_integers: bool = config.STRICT_PLOT_INTEGERS) -> Tuple[ExtractionRule, ...]:
    return (
        # Identifying attributes
        ExtractionRule("block", "BLOCK", sets_domain_flag=True),
        ExtractionRule("neighborhood", "NBH", sets_domain_flag=True),
        ExtractionRule("plot", "PLOT_NUMBER", extract=plot_extractor(strict_plot_integers), sets_domain_flag=True),
        ExtractionRule("villa_type", "VILLA_TYPE", sets_domain_flag=True),
        # Descriptive attributes
        ExtractionRule("level", "LEVEL"),
        ExtractionRule("phase", "PHASE"),
        ExtractionRule("name", "NAME"),
        ExtractionRule("type", "TYPE"),
        ExtractionRule("family", "FAMILY"),
        ExtractionRule("category", "CATEGORY"),
        ExtractionRule("source_file", "SOURCE_FILE"),
        ExtractionRule("document_title", "DOCUMENT_TITLE"),
        ExtractionRule("revit_type", "REVIT_TYPE"),
        ExtractionRule("substructure", "SUBSTRUCTURE"),
        ExtractionRule("volume", "VOLUME"),
        ExtractionRule("layer", "LAYER"),
        ExtractionRule("planned_start", "PLANNED_START"),
        ExtractionRule("planned_finish", "PLANNED_FINISH"),
        ExtractionRule("completion_date", "COMPLETION_DATE"),
        # Fallbacks: only fill fields the primary rules left empty
        ExtractionRule("level", "LEVEL_FALLBACK", fallback=True),
        ExtractionRule("component", "VILLA_TYPE", fallback=True),
        ExtractionRule("component", "CATEGORY", fallback=True),
        ExtractionRule("activity_id", "ACTIVITY_ID", fallback=True, infrastructure_only=True),
        ExtractionRule("block", "ACTIVITY_ID", extract=extract_block_from_activity_id, fallback=True),
        ExtractionRule("phase", "ACTIVITY_ID", extract=extract_phase_from_activity_id, fallback=True),
        ExtractionRule("network", "NETWORK", fallback=True, infrastructure_only=True),
        ExtractionRule("zone", "NETWORK", extract=extract_zone_from_network, fallback=True, infrastructure_only=True),
    )


class ElementClassifier:
    """Evaluates the rule table over one element's properties."""

    def __init__(
        self,
        resolver: Optional[PropertyResolver] = None,
        rules: Optional[Sequence[ExtractionRule]] = None,
        strict_plot_integers: bool = config.STRICT_PLOT_INTEGERS,
    ):
        self.resolver = resolver or PropertyResolver()
        self.rules = tuple(rules) if rules is not None else build_default_rules(strict_plot_integers)
        self._validate_rules()

    def _validate_rules(self) -> None:
        for rule in self.rules:
            if rule.infrastructure_only:
                if rule.field not in INFRASTRUCTURE_FIELDS:
                    raise ValueError(f"Rule field {rule.field!r} is not an infrastructure field.")
                if rule.sets_domain_flag:
                    raise ValueError(f"Infrastructure rule {rule.field!r} cannot set the domain flag.")
            elif rule.field not in ATTRIBUTE_FIELDS:
                raise ValueError(f"Rule field {rule.field!r} is not an element attribute.")
            if rule.fallback and rule.sets_domain_flag:
                raise ValueError(f"Fallback rule {rule.field!r} cannot set the domain flag.")
            if rule.sets_domain_flag and rule.field not in IDENTIFYING_FIELDS:
                raise ValueError(f"Rule field {rule.field!r} cannot identify a domain entity.")
            self.resolver.candidates_for(rule.source)

    def extract(self, properties: Sequence[RawPropertyRecord]) -> Tuple[Dict[str, str], List[str]]:
        """Run every rule once; return (fields, primary identifying fields)."""
        values: Dict[str, str] = {}
        primary_fields: List[str] = []
        for rule in self.rules:
            if rule.field in values:
                continue
            value = stringify_value(self.resolver.resolve(rule.source, properties))
            if value is None:
                continue
            if rule.extract is not None:
                value = rule.extract(value)
                if value is None:
                    continue
            values[rule.field] = value
            if rule.sets_domain_flag:
                primary_fields.append(rule.field)
        return values, primary_fields

    def classify(self, properties: Sequence[RawPropertyRecord]) -> ClassificationResult:
        values, primary_fields = self.extract(properties)
        if not primary_fields:
            return Excluded(EXCLUDED_NO_PRIMARY_IDENTIFIER)

        for name in INFRASTRUCTURE_FIELDS:
            values.pop(name, None)

        attributes = ElementAttributes(**values)
        if not attributes.has_identifier():
            return Excluded(EXCLUDED_NO_IDENTIFIER_AFTER_CLEANUP)

        return DomainEntity(attributes, frozenset(primary_fields))


def classify_element(properties: Sequence[RawPropertyRecord]) -> ClassificationResult:
    """Classify with the default rule table and candidate lists."""
    return ElementClassifier().classify(properties)
