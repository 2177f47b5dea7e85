import asyncio
import unittest

from progress_index.classifier import ElementClassifier
from progress_index.errors import MissingProviderError, ProviderFetchError, ScanCancelledError
from progress_index.index import MultiIndex
from progress_index.providers import InMemorySceneGraph
from progress_index.scanner import ChunkedScanner


def element_properties(element_id):
    # Every third element is a villa part; the rest is infrastructure noise
    if element_id % 3 == 0:
        return [
            {"category": "Element", "displayName": "Block", "displayValue": str(element_id % 7)},
            {"category": "Element", "displayName": "Plot", "displayValue": str(element_id)},
        ]
    return [{"category": "Element", "displayName": "Category", "displayValue": "Pipes"}]


class FakeProvider:
    def __init__(self, fail_calls=(), fail_batches=(), delay=0.0):
        self.calls = 0
        self.fail_calls = set(fail_calls)
        self.fail_batches = set(fail_batches)
        self.delay = delay
        self.requested = []

    async def get_bulk_properties(self, ids, property_name_filter=None):
        self.calls += 1
        self.requested.append(list(ids))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.calls in self.fail_calls or ids[0] in self.fail_batches:
            raise ProviderFetchError("FETCH_FAILED", f"call {self.calls} failed")
        return [{"id": element_id, "properties": element_properties(element_id)} for element_id in ids]


class ChunkedScannerTests(unittest.IsolatedAsyncioTestCase):
    def make_scanner(self, provider, **kwargs):
        index = MultiIndex()
        options = {"batch_size": 5000, "yield_delay": 0, "retry_backoff": 0, "show_progress": False}
        options.update(kwargs)
        return ChunkedScanner(provider, ElementClassifier(), index, **options), index

    async def test_batches_and_progress(self) -> None:
        scanner, index = self.make_scanner(FakeProvider())
        progress = []
        stats = await scanner.scan(range(12000), progress_callback=lambda pct, msg: progress.append(pct))
        self.assertEqual(stats.batches, 3)
        self.assertEqual(len(progress), 3)
        self.assertEqual(progress, sorted(progress))
        self.assertEqual(progress[-1], 100)
        self.assertEqual(stats.classified, sum(stats.per_batch_classified))
        self.assertEqual(stats.classified, 4000)
        self.assertEqual(stats.excluded, 8000)
        self.assertEqual(stats.exclusion_reasons, {"NO_PRIMARY_IDENTIFIER": 8000})
        self.assertEqual(stats.analysis_rate_percent, 33.3)
        self.assertEqual(len(index), 4000)
        self.assertEqual(stats.per_dimension_counts["block"], 7)

    async def test_id_union_is_deduplicated(self) -> None:
        provider = FakeProvider()
        scanner, _ = self.make_scanner(provider, batch_size=2)
        stats = await scanner.scan([1, 2, 3], [3, 4, 2])
        self.assertEqual(stats.total_scanned, 4)
        self.assertEqual(stats.primary_total, 3)
        self.assertEqual(stats.secondary_total, 3)
        self.assertEqual(provider.requested, [[1, 2], [3, 4]])

    async def test_transient_failure_is_retried(self) -> None:
        provider = FakeProvider(fail_calls={1})
        scanner, index = self.make_scanner(provider, batch_size=10)
        stats = await scanner.scan(range(30))
        self.assertEqual(provider.calls, 4)
        self.assertEqual(stats.classified, 10)
        self.assertEqual(len(index), 10)

    async def test_permanent_failure_keeps_earlier_batches(self) -> None:
        provider = FakeProvider(fail_batches={10})
        scanner, index = self.make_scanner(provider, batch_size=10, max_attempts=3)
        with self.assertRaises(ProviderFetchError) as ctx:
            await scanner.scan(range(30))
        self.assertEqual(ctx.exception.code, "FETCH_FAILED")
        self.assertEqual(provider.calls, 4)
        self.assertEqual(sorted(index.ids()), [0, 3, 6, 9])

    async def test_batch_timeout(self) -> None:
        scanner, index = self.make_scanner(FakeProvider(delay=0.5), max_attempts=1, batch_timeout=0.01)
        with self.assertRaises(ProviderFetchError) as ctx:
            await scanner.scan([3, 6])
        self.assertEqual(ctx.exception.code, "FETCH_TIMEOUT")
        self.assertEqual(len(index), 0)

    async def test_cancellation_stops_at_batch_boundary(self) -> None:
        cancel = asyncio.Event()
        scanner, index = self.make_scanner(FakeProvider(), batch_size=10)
        with self.assertRaises(ScanCancelledError) as ctx:
            await scanner.scan(range(30), progress_callback=lambda pct, msg: cancel.set(), cancel_event=cancel)
        self.assertEqual(ctx.exception.code, "SCAN_CANCELLED")
        self.assertEqual(ctx.exception.details["batches_completed"], 1)
        self.assertEqual(sorted(index.ids()), [0, 3, 6, 9])

    async def test_malformed_elements_are_skipped(self) -> None:
        class MalformedProvider(FakeProvider):
            async def get_bulk_properties(self, ids, property_name_filter=None):
                return [
                    {"id": 3, "properties": element_properties(3)},
                    {"id": 6, "properties": "broken"},
                    {"dbId": 9, "properties": [{"category": "Element", "displayValue": "x"}]},
                    {"properties": []},
                    {"dbId": 12, "properties": element_properties(12)},
                ]

        scanner, index = self.make_scanner(MalformedProvider())
        stats = await scanner.scan([3, 6, 9, 12])
        self.assertEqual(stats.skipped, 3)
        self.assertEqual(stats.classified, 2)
        self.assertEqual(sorted(index.ids()), [3, 12])

    async def test_repeated_scans_are_identical(self) -> None:
        scanner, index = self.make_scanner(FakeProvider(), batch_size=7)
        first = await scanner.scan(range(50), [99])
        first_export = {eid: attrs.to_dict() for eid, attrs in index.items()}
        index.clear()
        second = await scanner.scan(range(50), [99])
        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(first_export, {eid: attrs.to_dict() for eid, attrs in index.items()})

    async def test_property_filter_does_not_change_classification(self) -> None:
        graph = InMemorySceneGraph({1: {"properties": [{"category": "Element", "displayName": "plot", "displayValue": "425"}]}})
        results = {}
        for property_filter in (None, ("Element/Plot", "Plot")):
            scanner, index = self.make_scanner(graph, property_filter=property_filter)
            stats = await scanner.scan([1])
            results[property_filter] = (stats.classified, index.lookup("plot", "425"))
        self.assertEqual(results[None], (1, [1]))
        self.assertEqual(results[("Element/Plot", "Plot")], results[None])

    async def test_missing_provider(self) -> None:
        scanner, _ = self.make_scanner(None)
        with self.assertRaises(MissingProviderError):
            await scanner.scan([1])

    async def test_empty_scan(self) -> None:
        scanner, _ = self.make_scanner(FakeProvider())
        stats = await scanner.scan([])
        self.assertEqual(stats.batches, 0)
        self.assertEqual(stats.analysis_rate_percent, 0.0)


if __name__ == "__main__":
    unittest.main()
