"""Helpers for the append-only JSON logs kept on workflow records"""

from datetime import datetime
from typing import Optional


def now() -> datetime:
    """Naive local time, the clock every workflow timestamp uses"""
    return datetime.now()


def append_entry(record, field: str, entry: dict) -> dict:
    """Append ``entry`` to the JSON list ``field``.

    The list is replaced rather than mutated so SQLAlchemy sees the change.
    """
    setattr(record, field, [*(getattr(record, field) or []), entry])
    return entry


def record_status(record, status: str, changed_by: int, notes: Optional[str] = None) -> dict:
    """Set ``record.status`` and append the matching status-history entry"""
    record.status = status
    return append_entry(
        record,
        "status_history",
        {
            "status": status,
            "changed_by": changed_by,
            "changed_at": now().isoformat(),
            "notes": notes,
        },
    )


def note_history(record, changed_by: int, notes: str) -> dict:
    """Append a history entry that leaves the status unchanged"""
    return append_entry(
        record,
        "status_history",
        {
            "status": record.status,
            "changed_by": changed_by,
            "changed_at": now().isoformat(),
            "notes": notes,
        },
    )
