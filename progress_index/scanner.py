"""
Chunked scanning of a scene graph.

The id populations are merged (order-preserving, de-duplicated) and walked
in fixed-size batches. Each batch is fetched, classified in full, and only
then merged into the index, so a failing batch never leaves partial state.
Between batches the scanner sleeps briefly to give the event loop back to
the host application.
"""

import asyncio
import logging
import math
import sys
import time
from collections import Counter

from tqdm import tqdm

from . import config
from .errors import MalformedPropertyError, MissingProviderError, ProviderFetchError, ScanCancelledError
from .models import ScanStatistics, parse_property_list
from .utils import chunked, dedupe_preserving_order, format_elapsed

logger = logging.getLogger(__name__)


def payload_id(payload):
    """Providers return either "id" or "dbId" as the element id key."""
    if not isinstance(payload, dict):
        return None
    element_id = payload.get("id")
    if element_id is None:
        element_id = payload.get("dbId")
    return element_id


class ChunkedScanner:
    def __init__(
        self,
        provider,
        classifier,
        index,
        batch_size=config.CHUNK_SIZE,
        yield_delay=config.YIELD_DELAY_SECONDS,
        max_attempts=config.FETCH_MAX_ATTEMPTS,
        retry_backoff=config.FETCH_RETRY_BACKOFF,
        batch_timeout=config.BATCH_TIMEOUT_SECONDS,
        property_filter=None,
        show_progress=config.SHOW_PROGRESS_BAR,
    ):
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.provider = provider
        self.classifier = classifier
        self.index = index
        self.batch_size = batch_size
        self.yield_delay = yield_delay
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.batch_timeout = batch_timeout
        self.property_filter = property_filter
        self.show_progress = show_progress

    async def _fetch_batch(self, batch, batch_number):
        last_error = None
        for attempt in range(self.max_attempts):
            try:
                request = self.provider.get_bulk_properties(batch, self.property_filter)
                if self.batch_timeout:
                    return await asyncio.wait_for(request, timeout=self.batch_timeout)
                return await request
            except asyncio.TimeoutError:
                last_error = ProviderFetchError(
                    "FETCH_TIMEOUT",
                    f"Batch {batch_number} timed out after {self.batch_timeout}s",
                    {"batch": batch_number, "attempts": attempt + 1},
                )
            except ProviderFetchError as exc:
                last_error = exc
            except (OSError, ValueError) as exc:
                last_error = ProviderFetchError(
                    "FETCH_FAILED",
                    f"Batch {batch_number} fetch failed: {exc}",
                    {"batch": batch_number, "attempts": attempt + 1},
                )
            if attempt + 1 < self.max_attempts:
                sleep_for = self.retry_backoff * (2**attempt)
                logger.warning("[!] Batch %s fetch failed (%s). Retrying in %ss...", batch_number, last_error, sleep_for)
                await asyncio.sleep(sleep_for)
        logger.error("[!] Batch %s failed after %s attempts.", batch_number, self.max_attempts)
        raise last_error

    def _classify_batch(self, payloads, reasons):
        """Classify a whole batch; return (entries to merge, excluded count, skipped count)."""
        entries = []
        excluded = 0
        skipped = 0
        for payload in payloads or ():
            element_id = payload_id(payload)
            if element_id is None:
                skipped += 1
                logger.debug("[!] Skipping payload without an id: %r", payload)
                continue
            try:
                properties = parse_property_list(payload.get("properties"))
            except MalformedPropertyError as exc:
                skipped += 1
                logger.debug("[!] Skipping element %s: %s", element_id, exc)
                continue
            result = self.classifier.classify(properties)
            if result.is_domain_entity:
                entries.append((element_id, result.attributes))
            else:
                excluded += 1
                reasons[result.reason] += 1
        return entries, excluded, skipped

    async def scan(self, primary_ids, secondary_ids=(), progress_callback=None, cancel_event=None):
        if self.provider is None:
            raise MissingProviderError("No scene graph provider is attached.")

        primary_ids = list(primary_ids or ())
        secondary_ids = list(secondary_ids or ())
        all_ids = dedupe_preserving_order(primary_ids, secondary_ids)
        total = len(all_ids)
        total_batches = math.ceil(total / self.batch_size) if total else 0
        logger.info(
            "[*] Scanning %s elements (%s primary, %s secondary) in %s batches of %s.",
            f"{total:,}",
            f"{len(primary_ids):,}",
            f"{len(secondary_ids):,}",
            total_batches,
            self.batch_size,
        )

        started = time.monotonic()
        classified = 0
        excluded = 0
        skipped = 0
        per_batch = []
        reasons = Counter()

        with tqdm(
            total=total,
            desc="Scanning elements",
            unit=" el",
            disable=not (self.show_progress and sys.stderr.isatty()),
        ) as pbar:
            for batch_number, batch in enumerate(chunked(all_ids, self.batch_size)):
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning("[!] Scan cancelled before batch %s/%s.", batch_number + 1, total_batches)
                    raise ScanCancelledError(
                        f"Scan cancelled after {batch_number} of {total_batches} batches",
                        {"batches_completed": batch_number, "classified": classified},
                    )

                payloads = await self._fetch_batch(batch, batch_number + 1)
                batch_reasons = Counter()
                entries, batch_excluded, batch_skipped = self._classify_batch(payloads, batch_reasons)

                merged = self.index.merge_batch(entries)
                classified += merged
                excluded += batch_excluded
                skipped += batch_skipped
                reasons.update(batch_reasons)
                per_batch.append(merged)
                pbar.update(len(batch))

                if progress_callback is not None:
                    percent = round((batch_number + 1) / total_batches * 100)
                    progress_callback(
                        percent,
                        f"Analyzed batch {batch_number + 1}/{total_batches}: {classified:,} elements classified",
                    )
                await asyncio.sleep(self.yield_delay)

        rate = round(classified / total * 100, 1) if total else 0.0
        stats = ScanStatistics(
            total_scanned=total,
            primary_total=len(primary_ids),
            secondary_total=len(secondary_ids),
            classified=classified,
            excluded=excluded,
            skipped=skipped,
            batches=len(per_batch),
            per_batch_classified=tuple(per_batch),
            per_dimension_counts=self.index.dimension_counts(),
            exclusion_reasons=dict(sorted(reasons.items())),
            analysis_rate_percent=rate,
        )
        logger.info(
            "[+] Scan complete in %s: %s of %s elements classified (%s%%), %s excluded, %s skipped.",
            format_elapsed(time.monotonic() - started),
            f"{classified:,}",
            f"{total:,}",
            rate,
            f"{excluded:,}",
            skipped,
        )
        if skipped:
            logger.warning("[!] %s elements had malformed property payloads and were skipped.", skipped)
        return stats
