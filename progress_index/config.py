from datetime import UTC, datetime
from pathlib import Path

# Scan tuning knobs
CHUNK_SIZE = 5000  # Elements per bulk property fetch
YIELD_DELAY_SECONDS = 0.01  # Cooperative pause between batches
FETCH_MAX_ATTEMPTS = 4  # Total attempts per batch (first try + retries)
FETCH_RETRY_BACKOFF = 0.5  # Seconds, doubled per attempt
BATCH_TIMEOUT_SECONDS = 120  # Per-batch fetch timeout; None disables it
SHOW_PROGRESS_BAR = True

# Federated models host domain geometry under a dedicated subtree that the
# default leaf traversal does not always reach.
DOMAIN_SUBTREE_ROOT = 3

# Property candidate lists, in priority order (more specific names first).
# Supported forms:
#   'Plot'            -> displayName match (exact, then case-insensitive)
#   'Element/Plot'    -> exact "category/displayName" match
#   'Element/*Plot*'  -> case-insensitive wildcard over "category/displayName"
MODEL_PROPERTIES = {
    "PLOT_NUMBER": ["Element/Plot", "Plot", "PlotNumber", "Plot Number"],
    "VILLA_TYPE": ["Element/Villa_Type", "Villa_Type", "Villa", "VillaType", "Villa Type"],
    "BLOCK": ["Element/Block", "Block", "BlockNumber", "Block Number"],
    "NBH": ["Element/NBH", "NBH", "Neighborhood"],
    "VILLA": ["Element/Villa", "Villa"],
}

# Descriptive attributes; these never identify a domain entity on their own.
ATTRIBUTE_PROPERTIES = {
    "LEVEL": ["Level/Name"],
    "LEVEL_FALLBACK": ["Item/Layer"],
    "PHASE": ["Phase Created/Name"],
    "NAME": ["Item/Name", "Element/Name"],
    "TYPE": ["Item/Type", "Element/Type"],
    "FAMILY": ["Element/Family", "Symbol/FamilyName"],
    "CATEGORY": ["Element/Category", "Category/Name"],
    "SOURCE_FILE": ["Item/Source File"],
    "DOCUMENT_TITLE": ["Document/Title"],
    "REVIT_TYPE": ["Revit Type/Name"],
    "SUBSTRUCTURE": ["Element/Substructure"],
    "VOLUME": ["Element/Volume"],
    "LAYER": ["Layer", "General/Layer name"],
    "PLANNED_START": ["*start*date*", "*date*start*"],
    "PLANNED_FINISH": ["*finish*date*", "*date*finish*"],
    "COMPLETION_DATE": ["*completion*"],
    # Legacy DWG / Navisworks sources, used only as fallbacks
    "ACTIVITY_ID": ["Activity_ID"],
    "NETWORK": ["General/Network name", "Network name"],
}

# Placeholder values exported by the modelling tools for "no value"
BLANK_VALUES = {"", "N/A"}

# Plot validation: loose decimal numbers unless strict integers are requested
STRICT_PLOT_INTEGERS = False

# Legacy identifier patterns
ACTIVITY_BLOCK_PATTERNS = (r"[RB]\d{3}", r"\d{3,4}")
ACTIVITY_PHASE_PATTERN = r"^(\d{2,3})"
NETWORK_ZONE_PATTERN = r"Zone\s+[A-Z]"

# Tabular dataset column mapping (canonical field -> column header)
DATASET_COLUMNS = {
    "project": "Project",
    "phase": "Phase",
    "neighborhood": "Neighborhood",
    "sector": "Sector",
    "block": "Block",
    "plot": "Plot",
    "villa": "Villa",
    "component": "Component",
    "planned_start": "Planned Start",
    "planned_finish": "Planned Finish",
    "actual_start": "Actual Start",
    "actual_finish": "Actual Finish",
    "status": "Status",
    "precaster": "PreCaster",
}
DATE_COLUMNS = ("planned_start", "planned_finish", "actual_start", "actual_finish")

# Join key: element attribute and the dataset field it is matched against
KEY_FIELD = "plot"
KEY_PREFIXES = ("plot", "villa", "unit")

# Remote scene-graph provider (Model Derivative REST API)
API_BASE_URL = "https://developer.api.autodesk.com/modelderivative/v2/designdata"
API_TIMEOUT = 30  # Seconds per HTTP request
API_MAX_RETRIES = 4
API_PAGE_LIMIT = 1000

# Diagnostics
INSPECT_SAMPLE_SIZE = 100

# Run logging and report locations
RUN_ID = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
REPORTS_DIR = Path("reports")
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
SETTINGS_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "engine_settings.schema.json"
