from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple, Union

from .errors import MalformedEntry
from .utils import parse_timestamp

MANAGED_BY = "pd_oncall_sync"
SUMMARY_PREFIX = "On-call:"
SUMMARY_RE = re.compile(r"^On-call: (?P<name>.+) \((?P<user_id>[^()]+)\)$")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    def __str__(self) -> str:
        return f"{self.start.isoformat()} - {self.end.isoformat()}"


@dataclass(frozen=True)
class Transition:
    from_user: str
    to_user: str

    def reversed(self) -> "Transition":
        return Transition(self.to_user, self.from_user)

    def __str__(self) -> str:
        return f"{self.from_user}>{self.to_user}"


def encode_history(transitions: Tuple[Transition, ...]) -> str:
    return ";".join(str(t) for t in transitions)


def decode_history(raw: Optional[str]) -> Tuple[Transition, ...]:
    transitions: List[Transition] = []
    for part in (raw or "").split(";"):
        from_user, sep, to_user = part.partition(">")
        if sep and from_user and to_user:
            transitions.append(Transition(from_user, to_user))
    return tuple(transitions)


@dataclass
class ScheduleEntry:
    schedule_id: str
    user_id: str
    user_name: str
    start: datetime
    end: datetime
    user_email: Optional[str] = None

    @property
    def slot(self) -> Slot:
        return Slot(self.start, self.end)

    @property
    def summary(self) -> str:
        return f"{SUMMARY_PREFIX} {self.user_name or self.user_id} ({self.user_id})"

    def validate(self) -> None:
        if not self.user_id:
            raise MalformedEntry(f"Entry {self.start}-{self.end} has no assignee")
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise MalformedEntry(f"Entry for {self.user_id} has a naive timestamp")
        if self.start >= self.end:
            raise MalformedEntry(f"Entry for {self.user_id} is empty or inverted: {self.start} >= {self.end}")

    def to_gcal_body(self, history: Tuple[Transition, ...] = ()) -> dict:
        assignee = self.user_name or self.user_id
        if self.user_email:
            assignee = f"{assignee} <{self.user_email}>"
        private = {
            "managed_by": MANAGED_BY,
            "schedule_id": self.schedule_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
        }
        if history:
            private["swap_history"] = encode_history(history)
        return {
            "summary": self.summary,
            "description": f"Assignee: {assignee}\nPagerDuty schedule: {self.schedule_id}\nManaged by {MANAGED_BY}",
            "start": {"dateTime": self.start.isoformat()},
            "end": {"dateTime": self.end.isoformat()},
            "transparency": "transparent",
            "extendedProperties": {"private": private},
        }


@dataclass
class CalendarEvent:
    id: Optional[str]
    start: datetime
    end: datetime
    summary: str
    user_id: Optional[str]
    user_name: Optional[str] = None
    schedule_id: Optional[str] = None
    etag: Optional[str] = None
    created: Optional[datetime] = None
    order: int = 0
    managed: bool = False
    swap_history: Tuple[Transition, ...] = ()

    @property
    def slot(self) -> Slot:
        return Slot(self.start, self.end)

    @property
    def creation_key(self) -> tuple:
        # Events without a creation stamp sort after stamped ones, then by fetch order.
        return (self.created is None, self.created or datetime.min, self.order)

    @classmethod
    def from_gcal(cls, item: dict, order: int = 0) -> "CalendarEvent":
        start = item.get("start", {}).get("dateTime")
        end = item.get("end", {}).get("dateTime")
        if not start or not end:
            raise ValueError(f"Event {item.get('id')} has no dateTime bounds")
        props = item.get("extendedProperties", {}).get("private", {})
        summary = item.get("summary", "")
        user_id = props.get("user_id")
        user_name = props.get("user_name")
        if not user_id:
            match = SUMMARY_RE.match(summary)
            if match:
                user_id = match.group("user_id")
                user_name = user_name or match.group("name")
        created = item.get("created")
        return cls(
            id=item.get("id"),
            start=parse_timestamp(start),
            end=parse_timestamp(end),
            summary=summary,
            user_id=user_id,
            user_name=user_name,
            schedule_id=props.get("schedule_id"),
            etag=item.get("etag"),
            created=parse_timestamp(created) if created else None,
            order=order,
            managed=props.get("managed_by") == MANAGED_BY,
            swap_history=decode_history(props.get("swap_history")),
        )


@dataclass
class Create:
    entry: ScheduleEntry
    kind = "CREATE"

    @property
    def slot(self) -> Slot:
        return self.entry.slot


@dataclass
class Update:
    event: CalendarEvent
    entry: ScheduleEntry
    history: Tuple[Transition, ...] = ()
    flagged: bool = False
    kind = "UPDATE"

    @property
    def slot(self) -> Slot:
        return self.entry.slot

    @property
    def is_override(self) -> bool:
        return self.event.user_id != self.entry.user_id


@dataclass
class Delete:
    event: CalendarEvent
    reason: str = "stale"
    kind = "DELETE"

    @property
    def slot(self) -> Slot:
        return self.event.slot


MutationIntent = Union[Create, Update, Delete]


@dataclass
class MutationResult:
    intent: MutationIntent
    ok: bool
    error: Optional[str] = None
    event: Optional[CalendarEvent] = None


class OutcomeStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    FLAGGED_ACCEPTED = "flagged, accepted"
    FLAGGED_SKIPPED = "flagged, skipped"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class SlotOutcome:
    status: OutcomeStatus
    slot: Optional[Slot]
    user: Optional[str]
    previous_user: Optional[str] = None
    detail: str = ""


@dataclass
class ReconcilePlan:
    intents: List[MutationIntent] = field(default_factory=list)
    unchanged: List[SlotOutcome] = field(default_factory=list)
    skipped: List[SlotOutcome] = field(default_factory=list)
    rejected: List[SlotOutcome] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.intents
