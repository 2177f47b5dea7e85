from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import jsonschema

from . import config
from .errors import SettingsValidationError

logger = logging.getLogger(__name__)

# Dict-valued settings are merged key by key over the defaults
MERGED_FIELDS = ("column_map", "model_properties", "attribute_properties")


def _copy_lists(mapping: dict[str, list[str]]) -> dict[str, list[str]]:
    return {name: list(values) for name, values in mapping.items()}


@dataclass(frozen=True)
class EngineSettings:
    chunk_size: int = config.CHUNK_SIZE
    yield_delay: float = config.YIELD_DELAY_SECONDS
    max_attempts: int = config.FETCH_MAX_ATTEMPTS
    retry_backoff: float = config.FETCH_RETRY_BACKOFF
    batch_timeout: Optional[float] = config.BATCH_TIMEOUT_SECONDS
    show_progress: bool = config.SHOW_PROGRESS_BAR
    subtree_root: Optional[Union[int, str]] = config.DOMAIN_SUBTREE_ROOT
    strict_plot_integers: bool = config.STRICT_PLOT_INTEGERS
    key_field: str = config.KEY_FIELD
    key_prefixes: tuple[str, ...] = tuple(config.KEY_PREFIXES)
    column_map: dict[str, str] = field(default_factory=lambda: dict(config.DATASET_COLUMNS))
    model_properties: dict[str, list[str]] = field(default_factory=lambda: _copy_lists(config.MODEL_PROPERTIES))
    attribute_properties: dict[str, list[str]] = field(
        default_factory=lambda: _copy_lists(config.ATTRIBUTE_PROPERTIES)
    )
    property_filter: Optional[tuple[str, ...]] = None
    inspect_sample_size: int = config.INSPECT_SAMPLE_SIZE

    @property
    def candidates(self) -> dict[str, list[str]]:
        return {**self.model_properties, **self.attribute_properties}

    def with_overrides(self, overrides: dict[str, Any]) -> "EngineSettings":
        changes: dict[str, Any] = {}
        for name, value in overrides.items():
            if name in MERGED_FIELDS:
                changes[name] = {**getattr(self, name), **value}
            elif name in ("key_prefixes", "property_filter") and value is not None:
                changes[name] = tuple(value)
            else:
                changes[name] = value
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["key_prefixes"] = list(self.key_prefixes)
        if self.property_filter is not None:
            payload["property_filter"] = list(self.property_filter)
        return payload


def load_schema(path: Union[str, Path] = config.SETTINGS_SCHEMA_PATH) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_settings(obj: Any, schema: Optional[dict[str, Any]] = None) -> None:
    validator = jsonschema.Draft202012Validator(schema or load_schema())
    errors = sorted(validator.iter_errors(obj), key=lambda e: len(list(e.absolute_path)))
    if errors:
        error = errors[0]
        details = {
            "path": list(error.absolute_path),
            "schema_path": list(error.absolute_schema_path),
            "message": error.message,
        }
        raise SettingsValidationError(f"Settings validation failed: {error.message}", details)


def load_settings(path: Optional[Union[str, Path]] = None, base: Optional[EngineSettings] = None) -> EngineSettings:
    """Build settings from defaults, optionally overridden by a JSON file."""
    settings = base or EngineSettings()
    if path is None:
        return settings
    try:
        with open(path, "r", encoding="utf-8") as handle:
            overrides = json.load(handle)
    except FileNotFoundError as exc:
        raise SettingsValidationError(f"Settings file not found: {path}", {"path": str(path)}) from exc
    except json.JSONDecodeError as exc:
        raise SettingsValidationError(f"Settings file is not valid JSON: {exc}", {"path": str(path)}) from exc
    validate_settings(overrides)
    logger.info("[*] Loaded settings overrides from %s: %s", path, ", ".join(sorted(overrides)) or "(none)")
    return settings.with_overrides(overrides)
