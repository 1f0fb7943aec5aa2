"""
SmartSuite record normalizer.

Converts raw record dicts from the records/list endpoints into field dicts
that map directly onto the Project and Video columns. No DB access here;
the sync service handles persistence.

SmartSuite nests most typed values:

    project due date:  {"projdue456": {"to_date": {"date": "2025-10-01T00:00:00Z"}}}
    status fields:     {"mainStreamStatus": {"value": "ready"}}

Anything else on the record is ignored.
"""
from datetime import date, datetime
from typing import Any, Dict, Optional

UNTITLED_PROJECT = "Untitled Project"
UNTITLED_VIDEO = "Untitled Video"
REUSE_PRODUCTION_TYPE = "reuse"


def _record_id(raw: Dict[str, Any]) -> str:
    record_id = raw.get("id")
    if not record_id:
        raise ValueError(f"SmartSuite record has no id: {sorted(raw)}")
    return str(record_id)


def _nested_value(raw: Dict[str, Any], key: str) -> Optional[str]:
    """Return raw[key]["value"], tolerating a missing or non-dict field."""
    field = raw.get(key)
    if isinstance(field, dict):
        return field.get("value") or None
    return None


def _parse_date(s: Optional[str]) -> Optional[date]:
    """Parse "YYYY-MM-DD" or an ISO 8601 timestamp into a date; None if unparseable."""
    if not s:
        return None
    s = s.strip()
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(s[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def normalize_project(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize a SmartSuite project record into Project model fields.

    Raises:
        ValueError: if the record has no id.
    """
    due = ((raw.get("projdue456") or {}).get("to_date") or {}).get("date")
    return {
        "id": _record_id(raw),
        "title": raw.get("title") or UNTITLED_PROJECT,
        "due_date": _parse_date(due),
    }


def normalize_video(raw: Dict[str, Any], project_id: str) -> Dict[str, Any]:
    """
    Normalize a SmartSuite video record into Video model fields.

    Args:
        raw: Record from the videos records/list endpoint.
        project_id: SmartSuite id of the project the video was fetched for.

    Raises:
        ValueError: if the record has no id.
    """
    return {
        "id": _record_id(raw),
        "project_id": project_id,
        "title": raw.get("title") or UNTITLED_VIDEO,
        "main_stream_status": _nested_value(raw, "mainStreamStatus"),
        "vo_stream_status": _nested_value(raw, "voStreamStatus"),
        "production_type": raw.get("productionType"),
    }


def is_reused_video(raw: Dict[str, Any]) -> bool:
    """Reused videos belong to another project's script and are not mirrored."""
    return raw.get("productionType") == REUSE_PRODUCTION_TYPE
