"""Human readable labels for OrgMeter records."""

from typing import Any

from mca_jobs.core.constants import DESCRIPTOR_FIELDS


def describe_entity(data: dict[str, Any], fallback: str | None = None) -> str:
    """Pick the most descriptive label available on a record."""
    for key in DESCRIPTOR_FIELDS:
        value = data.get(key)
        if value:
            return str(value)
    first, last = data.get("firstName"), data.get("lastName")
    if first or last:
        return " ".join(part for part in (first, last) if part)
    return fallback or str(data.get("id", "unknown"))


def sort_key(data: dict[str, Any]) -> tuple[int, int | str]:
    """Order records by numeric id, with non-numeric ids after, as strings."""
    raw = data.get("id")
    try:
        return (0, int(raw))
    except (TypeError, ValueError):
        return (1, str(raw))
