import gzip
import io
import json
import math
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import zstandard as zstd

from . import config

LOOSE_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
INTEGER_RE = re.compile(r"^\d+$")
LEADING_DIGITS_RE = re.compile(r"^(\d+)")
EXCEL_EPOCH = datetime(1899, 12, 30)
DATE_FORMATS = ("%Y-%m-%d", "%d-%b-%y", "%d-%b-%Y", "%d/%m/%Y", "%d.%m.%Y", "%Y/%m/%d", "%b %d, %Y")


def utc_now_iso():
    """Return a UTC timestamp string in ISO 8601 format (second precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def format_elapsed(seconds):
    """Return compact HH:MM:SS elapsed display."""
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def is_blank(value):
    """Return True for values the modelling tools use to mean "no value"."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in config.BLANK_VALUES
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def stringify_value(value):
    """Render a primitive property value as a trimmed string (None when blank)."""
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def normalize_value(value):
    """Trim and lowercase a grouping key; blank values become ''."""
    if is_blank(value):
        return ""
    return str(value).strip().lower()


def is_numeric_string(value, strict=False):
    """Loose numeric check used for plot numbers (sign, fraction and exponent allowed)."""
    if value is None:
        return False
    text = str(value).strip()
    if not text:
        return False
    if strict:
        return bool(INTEGER_RE.match(text))
    return bool(LOOSE_NUMBER_RE.match(text))


def natural_sort_key(value):
    """Sort key comparing the leading digit run numerically, then lexicographically."""
    text = str(value)
    match = LEADING_DIGITS_RE.match(text)
    if match:
        return (0, int(match.group(1)), text)
    return (1, 0, text)


def chunked(items, size):
    """Yield list slices of fixed size (used for batched property fetches)."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    batch = []
    for item in items:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


def dedupe_preserving_order(*sequences):
    """Union several id sequences, keeping first-seen order."""
    merged = {}
    for seq in sequences:
        for item in seq or ():
            merged.setdefault(item, None)
    return list(merged)


def excel_serial_to_date(serial):
    """Convert an Excel serial day number to a date."""
    return (EXCEL_EPOCH + timedelta(days=float(serial))).date()


def parse_date(raw):
    """Parse dates coming from property bags or spreadsheets; None when unparseable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        try:
            return excel_serial_to_date(raw)
        except OverflowError:
            return None
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not text:
        return None
    normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(normalized).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def element_id_key(element_id):
    """JSON object keys must be strings; ids may be ints or strings."""
    return str(element_id)


def _json_default(obj):
    """JSON serializer fallback for dates, Decimal, sets and Path."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, Path):
        return str(obj)
    return str(obj)


def write_json(path, payload):
    """Write a JSON report, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2, default=_json_default)
    return path


def open_binary(path):
    """Open a possibly compressed file (.gz / .zst) for binary streaming."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".gz":
        return gzip.open(path, "rb")
    if suffix in {".zst", ".zstd"}:
        raw = open(path, "rb")
        reader = zstd.ZstdDecompressor().stream_reader(raw, closefd=True)
        return io.BufferedReader(reader)
    return open(path, "rb")


def base_suffix(path):
    """Return the data suffix of a file, ignoring a compression suffix."""
    path = Path(path)
    suffixes = [s.lower() for s in path.suffixes]
    if suffixes and suffixes[-1] in {".gz", ".zst", ".zstd"}:
        suffixes = suffixes[:-1]
    return suffixes[-1] if suffixes else ""


def iter_jsonl(path):
    """Yield objects from a (possibly compressed) JSONL file."""
    with open_binary(path) as fh:
        for raw_line in fh:
            line = raw_line.decode("utf-8").strip()
            if not line:
                continue
            yield json.loads(line)
