# notifications.py

"""
Notification buckets for a user's open tasks.

All comparisons use one captured `now`:
- overdue:   due_date < now
- dueToday:  start_of_today <= due_date <= end_of_today, and not overdue
- reminders: now <= reminder_date <= now + 24h

Reminders are evaluated independently of the due-date buckets, so a task can
be in reminders and in one of overdue/dueToday at the same time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Tuple

from schemas import as_utc

REMINDER_WINDOW = timedelta(hours=24)


def day_bounds(now: datetime, tz: tzinfo) -> Tuple[datetime, datetime]:
    """[00:00:00.000, 23:59:59.999] of `now`'s calendar day in `tz`, as UTC."""
    local = now.astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = local.replace(hour=23, minute=59, second=59, microsecond=999000)
    return as_utc(start), as_utc(end)


@dataclass(frozen=True, slots=True)
class Window:
    now: datetime
    start_of_today: datetime
    end_of_today: datetime
    reminder_until: datetime

    @staticmethod
    def at(now: datetime, tz: tzinfo) -> "Window":
        now = as_utc(now)
        start, end = day_bounds(now, tz)
        return Window(now=now, start_of_today=start, end_of_today=end, reminder_until=now + REMINDER_WINDOW)

    def is_overdue(self, task: Dict[str, Any]) -> bool:
        due = as_utc(task.get("due_date"))
        return due is not None and due < self.now

    def is_due_today(self, task: Dict[str, Any]) -> bool:
        due = as_utc(task.get("due_date"))
        return due is not None and self.start_of_today <= due <= self.end_of_today

    def is_reminder(self, task: Dict[str, Any]) -> bool:
        remind = as_utc(task.get("reminder_date"))
        return remind is not None and self.now <= remind <= self.reminder_until


@dataclass(slots=True)
class Buckets:
    reminders: List[Dict[str, Any]] = field(default_factory=list)
    due_today: List[Dict[str, Any]] = field(default_factory=list)
    overdue: List[Dict[str, Any]] = field(default_factory=list)

    def matched(self) -> List[Dict[str, Any]]:
        """Every task in at least one bucket, once, in first-seen order."""
        seen = set()
        out = []
        for task in (*self.overdue, *self.due_today, *self.reminders):
            key = id(task)
            if key not in seen:
                seen.add(key)
                out.append(task)
        return out


def candidate_filter(owner: str) -> Dict[str, Any]:
    """Open tasks of one owner that carry at least one date; bucket_tasks decides the rest."""
    return {
        "owner": owner,
        "status": {"$ne": "completed"},
        "$or": [
            {"due_date": {"$ne": None}},
            {"reminder_date": {"$ne": None}},
        ],
    }


def bucket_tasks(tasks: Iterable[Dict[str, Any]], window: Window) -> Buckets:
    buckets = Buckets()
    for task in tasks:
        if task.get("status") == "completed":
            continue
        if window.is_overdue(task):
            buckets.overdue.append(task)
        elif window.is_due_today(task):
            buckets.due_today.append(task)
        if window.is_reminder(task):
            buckets.reminders.append(task)
    return buckets
