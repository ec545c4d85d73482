from __future__ import annotations

from collections import Counter
from typing import List, Sequence
from zoneinfo import ZoneInfo

from .models import SlotOutcome

COLUMNS = ("status", "start", "end", "assignee", "previous", "detail")


def _row(outcome: SlotOutcome, tz: ZoneInfo) -> List[str]:
    if outcome.slot is None:
        start = end = ""
    elif outcome.slot.start.tzinfo is None:
        start, end = f"{outcome.slot.start:%a %Y-%m-%d %H:%M}", f"{outcome.slot.end:%a %Y-%m-%d %H:%M}"
    else:
        start = f"{outcome.slot.start.astimezone(tz):%a %Y-%m-%d %H:%M}"
        end = f"{outcome.slot.end.astimezone(tz):%a %Y-%m-%d %H:%M}"
    return [outcome.status.value, start, end, outcome.user or "", outcome.previous_user or "", outcome.detail]


def format_summary(outcomes: Sequence[SlotOutcome], tz: ZoneInfo) -> str:
    rows = [list(COLUMNS)] + [_row(o, tz) for o in outcomes]
    widths = [max(len(row[i]) for row in rows) for i in range(len(COLUMNS))]
    lines = []
    for idx, row in enumerate(rows):
        lines.append(" | ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
        if idx == 0:
            lines.append("-+-".join("-" * width for width in widths))
    counts = Counter(o.status.value for o in outcomes)
    totals = ", ".join(f"{count} {status}" for status, count in sorted(counts.items())) or "nothing to do"
    lines.append("")
    lines.append(f"Total: {totals}")
    return "\n".join(lines)
