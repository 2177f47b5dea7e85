"""Progress status derived from element attributes or schedule rows."""

from datetime import date
from typing import Dict, List, Optional

from .utils import parse_date

COMPLETED = "COMPLETED"
IN_PROGRESS = "IN_PROGRESS"
DELAYED = "DELAYED"
NOT_STARTED = "NOT_STARTED"
STATUSES = (COMPLETED, IN_PROGRESS, DELAYED, NOT_STARTED)


def element_status(attributes, today: Optional[date] = None) -> str:
    """Completion date wins; otherwise compare the planned finish with today."""
    today = today or date.today()
    if attributes.get("completion_date"):
        return COMPLETED
    planned_finish = attributes.get("planned_finish")
    if planned_finish:
        finish = parse_date(planned_finish)
        if finish is not None and today > finish:
            return DELAYED
        return IN_PROGRESS
    return NOT_STARTED


def row_status(record, today: Optional[date] = None) -> str:
    """Status of a canonical dataset row from its actual and planned dates."""
    today = today or date.today()
    if parse_date(record.get("actual_finish")):
        return COMPLETED
    if parse_date(record.get("actual_start")):
        finish = parse_date(record.get("planned_finish"))
        if finish is not None and today > finish:
            return DELAYED
        return IN_PROGRESS
    return NOT_STARTED


def group_by_status(index, today: Optional[date] = None) -> Dict[str, List]:
    groups: Dict[str, List] = {status: [] for status in STATUSES}
    for element_id, attributes in index.items():
        groups[element_status(attributes, today)].append(element_id)
    return groups


def status_summary(groups: Dict[str, List]) -> Dict[str, float]:
    total = sum(len(ids) for ids in groups.values())
    completed = len(groups.get(COMPLETED, ()))
    return {
        "total": total,
        "completed": completed,
        "in_progress": len(groups.get(IN_PROGRESS, ())),
        "delayed": len(groups.get(DELAYED, ())),
        "not_started": len(groups.get(NOT_STARTED, ())),
        "completion_rate": round(completed / total * 100, 1) if total else 0.0,
    }
