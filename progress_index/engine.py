"""
ProgressEngine: the one object that owns scan, index and join state.

Typical use::

    engine = ProgressEngine(provider=load_scene_dump("scene.jsonl.zst"))
    await engine.analyze_model(progress_callback=print)
    engine.load_dataset_file("schedule.csv")
    engine.build_mappings()
    engine.export_unmapped()
"""

import logging

from . import status as status_mod
from .classifier import ElementClassifier
from .dataset import TabularDataset
from .diagnostics import inspect_property_names
from .errors import MalformedPropertyError, MissingProviderError
from .index import MultiIndex
from .joiner import ExternalDataJoiner
from .models import parse_property_list
from .resolver import PropertyResolver, find_property
from .scanner import ChunkedScanner, payload_id
from .settings import EngineSettings
from .utils import chunked, element_id_key

logger = logging.getLogger(__name__)


class ProgressEngine:
    def __init__(self, provider=None, settings=None):
        self.provider = provider
        self.settings = settings or EngineSettings()
        self.resolver = PropertyResolver(self.settings.candidates)
        self.classifier = ElementClassifier(
            resolver=self.resolver,
            strict_plot_integers=self.settings.strict_plot_integers,
        )
        self.index = MultiIndex()
        self.dataset = TabularDataset(self.settings.column_map)
        self.joiner = ExternalDataJoiner(
            key_field=self.settings.key_field,
            column_map=self.settings.column_map,
            key_prefixes=self.settings.key_prefixes,
        )
        self.scan_stats = None
        self.join_stats = None

    def _require_provider(self):
        if self.provider is None:
            raise MissingProviderError("No scene graph provider is attached.")
        return self.provider

    def clear(self):
        """Reset scan and mapping state (the loaded dataset is kept)."""
        self.index.clear()
        self.joiner.reset_mappings()
        self.scan_stats = None
        self.join_stats = None

    def make_scanner(self):
        return ChunkedScanner(
            self._require_provider(),
            self.classifier,
            self.index,
            batch_size=self.settings.chunk_size,
            yield_delay=self.settings.yield_delay,
            max_attempts=self.settings.max_attempts,
            retry_backoff=self.settings.retry_backoff,
            batch_timeout=self.settings.batch_timeout,
            property_filter=self.settings.property_filter,
            show_progress=self.settings.show_progress,
        )

    async def analyze_model(self, progress_callback=None, cancel_event=None):
        """Full re-scan: leaf ids plus the domain subtree, classified into the index."""
        provider = self._require_provider()
        scanner = self.make_scanner()
        self.clear()

        primary_ids = await provider.get_all_leaf_ids()
        secondary_ids = []
        if self.settings.subtree_root is not None:
            secondary_ids = await provider.enumerate_subtree(self.settings.subtree_root)
            logger.info(
                "[*] Found %s elements under subtree root %s.",
                f"{len(secondary_ids):,}",
                self.settings.subtree_root,
            )

        self.scan_stats = await scanner.scan(
            primary_ids,
            secondary_ids,
            progress_callback=progress_callback,
            cancel_event=cancel_event,
        )
        return self.scan_stats

    def load_dataset(self, rows):
        rows = list(rows) if rows is not None else None
        count = self.dataset.load_rows(rows)
        self.joiner.load_records(self.dataset.rows)
        self.joiner.reset_mappings()
        self.join_stats = None
        return count

    def load_dataset_file(self, path):
        count = self.dataset.load_file(path, show_progress=self.settings.show_progress)
        self.joiner.load_records(self.dataset.rows)
        self.joiner.reset_mappings()
        self.join_stats = None
        return count

    def build_mappings(self):
        self.join_stats = self.joiner.join(self.index)
        return self.join_stats

    # Index lookups

    def get_attributes(self, element_id):
        return self.index.get_attributes(element_id)

    def lookup(self, dimension, value):
        return self.index.lookup(dimension, value)

    def values(self, dimension):
        return self.index.values(dimension)

    def groups(self, dimension):
        return self.index.groups(dimension)

    def elements_by_block(self, block):
        return self.index.lookup("block", block)

    def elements_by_plot(self, plot):
        return self.index.lookup("plot", plot)

    def elements_by_neighborhood(self, neighborhood):
        return self.index.lookup("neighborhood", neighborhood)

    def elements_by_phase(self, phase):
        return self.index.lookup("phase", phase)

    def elements_by_component(self, component):
        return self.index.lookup("component", component)

    # Join lookups

    def records_for(self, element_id):
        return self.joiner.records_for(element_id)

    def ids_for_key(self, key):
        return self.joiner.ids_for_key(key)

    def coverage(self):
        return self.joiner.coverage()

    def export_unmapped(self):
        return self.joiner.export_unmapped()

    def find_elements(self, criteria):
        return self.joiner.find_elements(criteria)

    def group_by_column(self, column):
        return self.joiner.group_by_column(column)

    # Status and reporting

    def group_by_status(self, today=None):
        return status_mod.group_by_status(self.index, today)

    def stats(self, today=None):
        counts = self.index.dimension_counts()
        return {
            "total_elements": len(self.index),
            "blocks": counts.get("block", 0),
            "plots": counts.get("plot", 0),
            "neighborhoods": counts.get("neighborhood", 0),
            "phases": counts.get("phase", 0),
            "components": counts.get("component", 0),
            "status": status_mod.status_summary(self.group_by_status(today)),
            "scan": self.scan_stats.to_dict() if self.scan_stats else None,
            "join": self.join_stats.to_dict() if self.join_stats else None,
        }

    def export_data(self):
        return {
            "total_elements": len(self.index),
            "dimensions": {dimension: self.index.values(dimension) for dimension in self.index.dimensions},
            "elements": {element_id_key(element_id): attrs.to_dict() for element_id, attrs in self.index.items()},
        }

    async def inspect_property_names(self, sample_size=None):
        provider = self._require_provider()
        ids = await provider.get_all_leaf_ids()
        if sample_size is None:
            sample_size = self.settings.inspect_sample_size
        return await inspect_property_names(provider, ids, sample_size)

    async def search_by_property(self, property_name, value):
        """Leaf ids whose property contains value (case-insensitive)."""
        provider = self._require_provider()
        needle = str(value).lower()
        matches = []
        ids = await provider.get_all_leaf_ids()
        for batch in chunked(ids, self.settings.chunk_size):
            payloads = await provider.get_bulk_properties(batch, [property_name])
            for payload in payloads:
                element_id = payload_id(payload)
                if element_id is None:
                    continue
                try:
                    properties = parse_property_list(payload.get("properties"))
                except MalformedPropertyError:
                    continue
                prop = find_property(properties, property_name)
                if prop is not None and needle in str(prop.display_value).lower():
                    matches.append(element_id)
        logger.info("[+] %s elements match %s ~ %r.", len(matches), property_name, value)
        return matches
