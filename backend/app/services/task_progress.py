"""Checklist/progress/status consistency rules for tasks."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from ..models import TASK_STATUSES

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"


def _item_completed(item: Any) -> bool:
    if isinstance(item, Mapping):
        return bool(item.get("completed"))
    return bool(getattr(item, "completed", False))


def _item_text(item: Any) -> str:
    if isinstance(item, Mapping):
        return str(item.get("text") or "")
    return str(getattr(item, "text", "") or "")


def normalize_checklist(items: Iterable[Any] | None) -> list[dict[str, Any]]:
    """Return the stored JSON shape for checklist items, preserving order."""
    return [
        {"text": _item_text(item).strip(), "completed": _item_completed(item)}
        for item in (items or [])
    ]


def compute_progress(checklist: Iterable[Any] | None) -> tuple[int, int, int]:
    """Return (completed, total, progress) for a checklist.

    progress is 100 * completed / total rounded half up; 0 for an empty list.
    """
    items = list(checklist or [])
    total = len(items)
    completed = sum(1 for item in items if _item_completed(item))
    return completed, total, percentage(completed, total)


def percentage(part: int, whole: int) -> int:
    """100 * part / whole rounded half up; 0 when whole is 0."""
    if whole == 0:
        return 0
    return int((Decimal(100 * part) / Decimal(whole)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def status_for_progress(progress: int) -> str:
    if progress >= 100:
        return STATUS_COMPLETED
    if progress > 0:
        return STATUS_IN_PROGRESS
    return STATUS_PENDING


def force_completed(checklist: Iterable[Any] | None) -> list[dict[str, Any]]:
    return [{**item, "completed": True} for item in normalize_checklist(checklist)]


def reset_checklist(checklist: Iterable[Any] | None) -> list[dict[str, Any]]:
    return [{**item, "completed": False} for item in normalize_checklist(checklist)]


def normalize_task_status(status: str | None) -> str:
    """Map loose client input ("in progress", "completed") onto a canonical status."""
    if not status:
        raise ValueError("Status is required")
    wanted = " ".join(status.replace("_", " ").replace("-", " ").split()).lower()
    for canonical in TASK_STATUSES:
        if canonical.lower() == wanted:
            return canonical
    raise ValueError(f"Invalid status: {status}. Must be one of {', '.join(TASK_STATUSES)}")
