"""Plan and apply the calendar mutations that mirror an on-call schedule.

``reconcile`` is pure: it takes the fetched schedule entries and managed
calendar events and returns a ``ReconcilePlan``. ``apply_plan`` pushes the
plan through a calendar store with partial-success semantics.

Matching happens in two passes. First, entries with an event of the same
assignee and interval (within ``tolerance``) are paired and left alone.
Then every remaining entry claims the unclaimed event it overlaps the most,
which becomes an update; a change of assignee on that event is an override
and goes through the swap-cycle check. Leftover entries are created and
leftover events deleted. Ties between events always go to the one created
first, so repeated runs keep the same event.

When the sync window is given, events are compared only by their part inside
it, and an update never trims what a same-assignee event covers outside it.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from .errors import MalformedEntry, MutationFailure
from .models import (
    CalendarEvent,
    Create,
    Delete,
    MutationIntent,
    MutationResult,
    OutcomeStatus,
    ReconcilePlan,
    ScheduleEntry,
    SlotOutcome,
    Transition,
    Update,
)
from .prompt import OverridePrompt
from .swaps import SwapDecision, SwapHistory
from .utils import intersection, same_interval

_KIND_ORDER = {"DELETE": 0, "UPDATE": 1, "CREATE": 2}

Window = Tuple[datetime, datetime]


class EventStore(Protocol):
    def create_event(self, entry: ScheduleEntry, history: Tuple[Transition, ...] = ()) -> CalendarEvent:
        ...

    def update_event(
        self,
        event_id: str,
        entry: ScheduleEntry,
        history: Tuple[Transition, ...] = (),
        etag: Optional[str] = None,
    ) -> CalendarEvent:
        ...

    def delete_event(self, event_id: str) -> None:
        ...


def _validated(entries: Iterable[ScheduleEntry], plan: ReconcilePlan) -> List[ScheduleEntry]:
    valid: List[ScheduleEntry] = []
    for entry in entries:
        try:
            entry.validate()
        except MalformedEntry as exc:
            logging.error("Rejected schedule entry: %s", exc)
            plan.rejected.append(
                SlotOutcome(OutcomeStatus.REJECTED, entry.slot, entry.user_id or None, detail=str(exc))
            )
            continue
        valid.append(entry)
    valid.sort(key=lambda e: (e.start, e.end, e.user_id))
    return valid


def _working_set(events: Iterable[CalendarEvent], schedule_id: Optional[str]) -> List[CalendarEvent]:
    pool: List[CalendarEvent] = []
    for event in events:
        if not event.managed:
            logging.debug("Ignoring unmanaged event %s", event.id)
            continue
        if schedule_id and event.schedule_id and event.schedule_id != schedule_id:
            logging.debug("Ignoring event %s of schedule %s", event.id, event.schedule_id)
            continue
        pool.append(event)
    pool.sort(key=lambda e: e.creation_key)
    return pool


def _describe_oscillation(event: CalendarEvent, entry: ScheduleEntry, history: SwapHistory) -> str:
    previous = ", then ".join(str(t) for t in history.transitions(event.slot))
    return (
        f"Shift {entry.start:%Y-%m-%d %H:%M} - {entry.end:%Y-%m-%d %H:%M} keeps swapping: "
        f"{previous}. PagerDuty now hands it from {event.user_id} back to {entry.user_id}."
    )


def _clamped(event: CalendarEvent, window: Optional[Window]) -> Window:
    if window is None:
        return event.start, event.end
    return max(event.start, window[0]), min(event.end, window[1])


def _widened(entry: ScheduleEntry, event: CalendarEvent, window: Optional[Window]) -> ScheduleEntry:
    """Keep the part of the assignee's event that lies outside the window.

    PagerDuty cuts rendered entries at the window edges, so an entry starting
    exactly at the window start says nothing about the time before it.
    """
    if window is None:
        return entry
    start, end = entry.start, entry.end
    if start == window[0] and event.start < start:
        start = event.start
    if end == window[1] and event.end > end:
        end = event.end
    if (start, end) == (entry.start, entry.end):
        return entry
    return replace(entry, start=start, end=end)


def _best_overlap(
    entry: ScheduleEntry, unclaimed: Sequence[CalendarEvent], window: Optional[Window]
) -> Optional[CalendarEvent]:
    # ``unclaimed`` is in creation order, so strict ``>`` keeps the oldest event on ties.
    best: Optional[CalendarEvent] = None
    best_overlap = timedelta(0)
    for event in unclaimed:
        overlap = intersection(entry.start, entry.end, *_clamped(event, window))
        if overlap > best_overlap:
            best, best_overlap = event, overlap
    return best


def reconcile(
    entries: Iterable[ScheduleEntry],
    events: Iterable[CalendarEvent],
    prompt: OverridePrompt,
    history: Optional[SwapHistory] = None,
    tolerance: timedelta = timedelta(0),
    schedule_id: Optional[str] = None,
    window: Optional[Window] = None,
) -> ReconcilePlan:
    plan = ReconcilePlan()
    valid = _validated(entries, plan)
    unclaimed = _working_set(events, schedule_id)
    if history is None:
        history = SwapHistory.from_events(unclaimed)

    updates: List[Update] = []
    pending: List[ScheduleEntry] = []
    for entry in valid:
        exact = next(
            (
                ev
                for ev in unclaimed
                if ev.user_id == entry.user_id
                and same_interval(*_clamped(ev, window), entry.start, entry.end, tolerance)
            ),
            None,
        )
        if exact is None:
            pending.append(entry)
            continue
        unclaimed.remove(exact)
        if exact.summary != entry.summary:
            updates.append(Update(exact, _widened(entry, exact, window), history.transitions(exact.slot)))
        else:
            plan.unchanged.append(SlotOutcome(OutcomeStatus.UNCHANGED, entry.slot, entry.user_id))

    creates: List[Create] = []
    for entry in pending:
        event = _best_overlap(entry, unclaimed, window)
        if event is None:
            creates.append(Create(entry))
            continue
        unclaimed.remove(event)
        if event.user_id is None or event.user_id == entry.user_id:
            updates.append(Update(event, _widened(entry, event, window), history.transitions(event.slot)))
            continue

        transition = Transition(event.user_id, entry.user_id)
        decision = history.check_and_record(event.slot, transition)
        if decision is SwapDecision.ALLOW:
            updates.append(Update(event, entry, history.transitions(event.slot)))
            continue
        if prompt.confirm(_describe_oscillation(event, entry, history)):
            history.record(event.slot, transition)
            updates.append(Update(event, entry, history.transitions(event.slot), flagged=True))
        else:
            logging.warning("Leaving %s on %s, override to %s skipped", event.user_id, event.slot, entry.user_id)
            plan.skipped.append(
                SlotOutcome(
                    OutcomeStatus.FLAGGED_SKIPPED,
                    event.slot,
                    entry.user_id,
                    previous_user=event.user_id,
                    detail="oscillating override declined",
                )
            )

    deletes: List[Delete] = []
    for event in unclaimed:
        superseded = any(intersection(e.start, e.end, event.start, event.end) for e in valid)
        deletes.append(Delete(event, "superseded" if superseded else "stale"))

    intents: List[MutationIntent] = [*deletes, *updates, *creates]
    intents.sort(key=lambda i: (_KIND_ORDER[i.kind], i.slot.start, i.slot.end))
    plan.intents = intents
    logging.info(
        "Plan: %d delete, %d update, %d create, %d unchanged, %d skipped, %d rejected",
        len(deletes),
        len(updates),
        len(creates),
        len(plan.unchanged),
        len(plan.skipped),
        len(plan.rejected),
    )
    return plan


def _apply_one(store: EventStore, intent: MutationIntent) -> Optional[CalendarEvent]:
    if isinstance(intent, Create):
        logging.info("CREATE %s %s-%s", intent.entry.user_id, intent.entry.start, intent.entry.end)
        return store.create_event(intent.entry)
    if not intent.event.managed or not intent.event.id:
        raise MutationFailure(f"Refusing to touch unmanaged event {intent.event.id}")
    if isinstance(intent, Update):
        logging.info(
            "UPDATE %s %s-%s (was %s)", intent.entry.user_id, intent.entry.start, intent.entry.end, intent.event.user_id
        )
        return store.update_event(intent.event.id, intent.entry, intent.history, etag=intent.event.etag)
    logging.info("DELETE %s %s-%s", intent.event.user_id, intent.event.start, intent.event.end)
    store.delete_event(intent.event.id)
    return None


def apply_plan(store: EventStore, plan: ReconcilePlan, dry_run: bool = False) -> List[MutationResult]:
    results: List[MutationResult] = []
    for intent in plan.intents:
        if dry_run:
            logging.info("[dry-run] %s %s", intent.kind, intent.slot)
            results.append(MutationResult(intent, ok=True))
            continue
        try:
            event = _apply_one(store, intent)
        except MutationFailure as exc:
            logging.error("%s failed for %s: %s", intent.kind, intent.slot, exc)
            results.append(MutationResult(intent, ok=False, error=str(exc)))
            continue
        results.append(MutationResult(intent, ok=True, event=event))
    failed = sum(1 for r in results if not r.ok)
    logging.info("Sync complete. %d actions, %d failed", len(results), failed)
    return results


def _result_outcome(result: MutationResult) -> SlotOutcome:
    intent = result.intent
    if isinstance(intent, Create):
        status, user, previous = OutcomeStatus.CREATED, intent.entry.user_id, None
    elif isinstance(intent, Update):
        status = OutcomeStatus.FLAGGED_ACCEPTED if intent.flagged else OutcomeStatus.UPDATED
        user, previous = intent.entry.user_id, intent.event.user_id
    else:
        status, user, previous = OutcomeStatus.DELETED, intent.event.user_id, None
    detail = getattr(intent, "reason", "")
    if not result.ok:
        status, detail = OutcomeStatus.FAILED, f"{intent.kind.lower()}: {result.error}"
    return SlotOutcome(status, intent.slot, user, previous_user=previous, detail=detail)


def summarize(plan: ReconcilePlan, results: Sequence[MutationResult]) -> List[SlotOutcome]:
    # Rejected entries may carry naive timestamps, so they are listed first and not sorted.
    handled = [*plan.unchanged, *plan.skipped, *(_result_outcome(r) for r in results)]
    handled.sort(key=lambda o: (o.slot.start, o.slot.end, o.status.value))
    return [*plan.rejected, *handled]
