"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- Dotted-path lookup over nested dicts/lists
- JSON-safe serialization for log context and scope snapshots
"""

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalise a datetime to aware UTC.

    Naive values are assumed to already be UTC (that is how the
    database hands them back).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_minute(value: datetime) -> datetime:
    """Drop seconds and microseconds."""
    return value.replace(second=0, microsecond=0)


_MISSING = object()


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Resolve ``a.b.0.c`` against nested dicts, lists and objects.

    Args:
        data: Root value
        path: Dot-separated path; numeric segments index into lists
        default: Returned when any segment is missing

    Returns:
        The resolved value or ``default``
    """
    if not path:
        return data

    current = data
    for part in path.split("."):
        if current is None:
            return default
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        elif isinstance(current, (str, bytes, int, float, bool)):
            return default
        else:
            current = getattr(current, part, _MISSING)
        if current is _MISSING:
            return default
    return current


def safe_serialize(obj: Any, depth: int = 0) -> Any:
    """Recursively coerce a value into something JSON columns accept."""
    if depth > 10:
        return str(obj)
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return obj[:10000] if len(obj) > 10000 else obj
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): safe_serialize(v, depth + 1) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [safe_serialize(v, depth + 1) for v in obj]
    if hasattr(obj, "model_dump"):
        return safe_serialize(obj.model_dump(mode="json"), depth + 1)
    return str(obj)
