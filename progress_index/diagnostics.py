import logging
from collections import Counter
from pathlib import Path

from . import config
from .errors import MalformedPropertyError, MissingProviderError
from .models import RawPropertyRecord
from .scanner import payload_id
from .utils import is_blank, utc_now_iso, write_json

logger = logging.getLogger(__name__)


async def inspect_property_names(provider, ids, sample_size=config.INSPECT_SAMPLE_SIZE):
    """Property-name frequency over the first sample_size ids, most frequent first."""
    if provider is None:
        raise MissingProviderError("No scene graph provider is attached.")
    sample = list(ids)[: max(0, sample_size)]
    logger.info("[*] Inspecting property names from %s elements...", len(sample))
    payloads = await provider.get_bulk_properties(sample, None) if sample else []

    counts = Counter()
    examples = {}
    categories = {}
    malformed = 0
    for payload in payloads:
        if payload_id(payload) is None:
            malformed += 1
            continue
        for raw in payload.get("properties") or ():
            try:
                prop = RawPropertyRecord.from_payload(raw)
            except MalformedPropertyError:
                malformed += 1
                continue
            name = prop.full_name
            counts[name] += 1
            categories.setdefault(name, prop.category)
            if name not in examples and not is_blank(prop.display_value):
                examples[name] = prop.display_value

    sampled = len(sample)
    properties = [
        {
            "name": name,
            "category": categories[name],
            "display_name": name[len(categories[name]) + 1 :],
            "count": count,
            "frequency_percent": round(count / sampled * 100, 1) if sampled else 0.0,
            "example": examples.get(name),
        }
        for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]
    if malformed:
        logger.warning("[!] %s malformed property entries ignored during inspection.", malformed)
    logger.info("[+] Found %s distinct property names.", len(properties))
    return {
        "sample_size": sampled,
        "total_property_names": len(properties),
        "malformed": malformed,
        "properties": properties,
    }


def report_path(name, out_dir=config.REPORTS_DIR, run_id=config.RUN_ID):
    return Path(out_dir) / f"{run_id}_{name}.json"


def write_report(name, payload, out_dir=config.REPORTS_DIR, run_id=config.RUN_ID):
    """Write a JSON report stamped with the run id and generation time."""
    path = report_path(name, out_dir, run_id)
    write_json(path, {"run_id": run_id, "generated_at": utc_now_iso(), name: payload})
    logger.info("[+] Wrote %s report to %s", name, path)
    return path
