"""Swap-cycle detection for overridden on-call slots.

Two people overriding the same shift back and forth would make every run flip
the calendar event between them. For each slot the last two override
transitions are kept; a proposal that would restore the state from two steps
back (A>B, B>A, then A>B again) is flagged so an operator can decide.

Only immediate A<->B alternation is detected. Longer rotations such as
A>B, B>C, C>A are allowed on purpose.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Deque, Dict, Iterable, Tuple

from .models import CalendarEvent, Slot, Transition

HISTORY_SIZE = 2


class SwapDecision(str, Enum):
    ALLOW = "allow"
    FLAG_FOR_CONFIRMATION = "flag"


class SwapHistory:
    """Run-scoped transition buffers, keyed by slot."""

    def __init__(self) -> None:
        self._slots: Dict[Slot, Deque[Transition]] = {}

    @classmethod
    def from_events(cls, events: Iterable[CalendarEvent]) -> "SwapHistory":
        history = cls()
        seen = set()
        # Duplicates of a slot defer to the earliest-created event.
        for event in sorted(events, key=lambda e: e.creation_key):
            if not event.managed or event.slot in seen:
                continue
            seen.add(event.slot)
            for transition in event.swap_history[-HISTORY_SIZE:]:
                history.record(event.slot, transition)
        return history

    def transitions(self, slot: Slot) -> Tuple[Transition, ...]:
        return tuple(self._slots.get(slot, ()))

    def record(self, slot: Slot, transition: Transition) -> None:
        buffer = self._slots.setdefault(slot, deque(maxlen=HISTORY_SIZE))
        buffer.append(transition)

    def is_oscillation(self, slot: Slot, proposed: Transition) -> bool:
        buffer = self._slots.get(slot)
        if not buffer or len(buffer) < HISTORY_SIZE:
            return False
        older, newer = buffer
        return newer == older.reversed() and proposed == newer.reversed()

    def check_and_record(self, slot: Slot, proposed: Transition) -> SwapDecision:
        if self.is_oscillation(slot, proposed):
            # A declined swap must not become history itself.
            logging.info("Swap %s for slot %s repeats %s", proposed, slot, " then ".join(map(str, self.transitions(slot))))
            return SwapDecision.FLAG_FOR_CONFIRMATION
        self.record(slot, proposed)
        return SwapDecision.ALLOW

    def __len__(self) -> int:
        return len(self._slots)
