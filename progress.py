# progress.py

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Sequence

from schemas import TASK_CATEGORIES

# Half credit for tasks that are started but not finished.
IN_PROGRESS_WEIGHT = 0.5


def percent(part: float, total: int) -> int:
    """round(100 * part / total), half-up; 0 when total is 0."""
    if total <= 0:
        return 0
    return int(math.floor(100 * part / total + 0.5))


def topic_percentage(subtopics: Sequence[Any]) -> int:
    """Share of completed subtopics. Accepts Subtopic models or raw dicts."""
    done = 0
    for s in subtopics:
        completed = s.get("completed") if isinstance(s, dict) else s.completed
        if completed:
            done += 1
    return percent(done, len(subtopics))


def sort_topics(topics: Iterable[Dict[str, Any]], order: str = "default") -> List[Dict[str, Any]]:
    """
    Order serialized topics (each carrying a `progress` key).

    sorted() is stable, also with reverse=True, so equal percentages keep
    their insertion order in every mode.
    """
    items = list(topics)
    if order == "completion-asc":
        return sorted(items, key=lambda t: t["progress"])
    if order == "completion-desc":
        return sorted(items, key=lambda t: t["progress"], reverse=True)
    if order == "default":
        return items
    raise ValueError(f"unknown topic order: {order}")


def task_summary(tasks: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    total = completed = in_progress = pending = 0
    for t in tasks:
        total += 1
        status = t.get("status")
        if status == "completed":
            completed += 1
        elif status == "in-progress":
            in_progress += 1
        elif status == "pending":
            pending += 1
    return {
        "total": total,
        "completed": completed,
        "in_progress": in_progress,
        "pending": pending,
        "completion": percent(completed, total),
        "progress": percent(completed + IN_PROGRESS_WEIGHT * in_progress, total),
    }


def category_summary(tasks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Blended progress per category; categories with tasks first, then by name."""
    grouped: Dict[str, List[Dict[str, Any]]] = {c: [] for c in TASK_CATEGORIES}
    for t in tasks:
        grouped.setdefault(t.get("category") or "general", []).append(t)

    rows = [dict(category=name, **task_summary(items)) for name, items in grouped.items()]
    rows.sort(key=lambda r: (r["total"] == 0, r["category"]))
    return rows
