"""Builders and an in-memory calendar shared by the test modules."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from oncall_sync.errors import MutationFailure
from oncall_sync.models import (
    MANAGED_BY,
    CalendarEvent,
    ScheduleEntry,
    Transition,
    encode_history,
)

SGT = ZoneInfo("Asia/Singapore")
SCHEDULE_ID = "PSCHED1"


def at(day: int, hour: int = 0, month: int = 1) -> datetime:
    return datetime(2023, month, day, hour, tzinfo=SGT)


def entry(user: str, start: datetime, end: datetime, schedule_id: str = SCHEDULE_ID) -> ScheduleEntry:
    return ScheduleEntry(schedule_id, user, user.title(), start, end)


def gcal_item(
    event_id: str,
    user: Optional[str],
    start: datetime,
    end: datetime,
    created: Optional[datetime] = None,
    managed: bool = True,
    history: Tuple[Transition, ...] = (),
    schedule_id: str = SCHEDULE_ID,
    summary: Optional[str] = None,
) -> dict:
    item = {
        "id": event_id,
        "etag": f'"{event_id}-1"',
        "summary": summary if summary is not None else f"On-call: {(user or '').title()} ({user})",
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }
    if created is not None:
        item["created"] = created.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if managed:
        private = {"managed_by": MANAGED_BY, "schedule_id": schedule_id}
        if user:
            private.update({"user_id": user, "user_name": user.title()})
        if history:
            private["swap_history"] = encode_history(history)
        item["extendedProperties"] = {"private": private}
    return item


def event(event_id: str, user: Optional[str], start: datetime, end: datetime, order: int = 0, **kwargs) -> CalendarEvent:
    return CalendarEvent.from_gcal(gcal_item(event_id, user, start, end, **kwargs), order)


class FakeCalendarStore:
    """Keeps Google-shaped event items in memory and applies mutations to them."""

    def __init__(self, items: Optional[List[dict]] = None) -> None:
        self.items: Dict[str, dict] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_ids: Set[str] = set()
        self.fail_creates_for: Set[str] = set()
        self._ids = itertools.count(1)
        self._clock = datetime(2022, 12, 1, tzinfo=timezone.utc)
        for item in items or []:
            self.items[item["id"]] = item

    def _stamp(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat().replace("+00:00", "Z")

    def fetch_events(self, time_min=None, time_max=None) -> List[CalendarEvent]:
        return [CalendarEvent.from_gcal(item, order) for order, item in enumerate(self.items.values())]

    def create_event(self, entry: ScheduleEntry, history: Tuple[Transition, ...] = ()) -> CalendarEvent:
        self.calls.append(("create", entry.user_id))
        if entry.user_id in self.fail_creates_for:
            raise MutationFailure(f"insert rejected for {entry.user_id}")
        event_id = f"new{next(self._ids)}"
        item = dict(entry.to_gcal_body(history), id=event_id, etag=f'"{event_id}-1"', created=self._stamp())
        self.items[event_id] = item
        return CalendarEvent.from_gcal(item)

    def update_event(self, event_id, entry, history=(), etag=None) -> CalendarEvent:
        self.calls.append(("update", event_id))
        if event_id in self.fail_ids:
            raise MutationFailure(f"update rejected for {event_id}")
        current = self.items[event_id]
        item = dict(entry.to_gcal_body(history), id=event_id, etag=f'"{event_id}-2"', created=current.get("created"))
        self.items[event_id] = item
        return CalendarEvent.from_gcal(item)

    def delete_event(self, event_id) -> None:
        self.calls.append(("delete", event_id))
        if event_id in self.fail_ids:
            raise MutationFailure(f"delete rejected for {event_id}")
        del self.items[event_id]
