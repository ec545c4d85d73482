from __future__ import annotations

import argparse
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import List, Optional

from oncall_sync.config import Settings, get_settings, sync_window
from oncall_sync.errors import MalformedEntry, SyncError
from oncall_sync.gcal import CalendarStore, build_service
from oncall_sync.models import OutcomeStatus, SlotOutcome
from oncall_sync.pagerduty import PagerDutyClient
from oncall_sync.prompt import ConsolePrompt, OverridePrompt, StaticPrompt
from oncall_sync.reconcile import apply_plan, reconcile, summarize
from oncall_sync.report import format_summary

EXIT_OK = 0
EXIT_MUTATION_FAILED = 1
EXIT_FATAL = 2


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError("must be greater than zero")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync a PagerDuty on-call schedule to Google Calendar")
    parser.add_argument("--start-date", type=_iso_date, required=True, help="Start date YYYY-MM-DD")
    parser.add_argument("--duration-days", type=_positive_int, required=True, help="Number of days to sync")
    parser.add_argument("--pd-schedule", required=True, help="PagerDuty schedule id")
    parser.add_argument("--calendar-id", default=None, help="Target calendar (defaults to CALENDAR_ID)")
    parser.add_argument("--dry-run", action="store_true", help="Show actions without modifying calendar")
    parser.add_argument(
        "--on-oscillation",
        choices=("ask", "accept", "skip"),
        default="ask",
        help="What to do when two people keep swapping the same shift",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def make_prompt(policy: str) -> OverridePrompt:
    if policy == "accept":
        return StaticPrompt(True)
    if policy == "skip":
        return StaticPrompt(False)
    return ConsolePrompt()


def _rejected_outcome(exc: MalformedEntry) -> SlotOutcome:
    user = ((exc.record or {}).get("user") or {}).get("summary")
    return SlotOutcome(OutcomeStatus.REJECTED, None, user, detail=str(exc))


def run(
    args: argparse.Namespace,
    settings: Settings,
    pagerduty: Optional[PagerDutyClient] = None,
    store: Optional[CalendarStore] = None,
    prompt: Optional[OverridePrompt] = None,
) -> int:
    time_min, time_max = sync_window(args.start_date, args.duration_days, settings.timezone)
    if store is None:
        calendar_id = args.calendar_id or settings.calendar_id
        store = CalendarStore(build_service(settings, calendar_id), calendar_id, args.pd_schedule)
    if pagerduty is None:
        pagerduty = PagerDutyClient(settings.pd_api_key, settings.pd_base_url, time_zone=settings.timezone.key)

    with ThreadPoolExecutor(max_workers=2) as pool:
        source_future = pool.submit(pagerduty.fetch_entries, args.pd_schedule, time_min, time_max)
        events_future = pool.submit(store.fetch_events, time_min, time_max)
        source = source_future.result()
        events = events_future.result()

    plan = reconcile(
        source.entries,
        events,
        prompt or make_prompt(args.on_oscillation),
        tolerance=settings.match_tolerance,
        schedule_id=args.pd_schedule,
        window=(time_min, time_max),
    )
    plan.rejected.extend(_rejected_outcome(exc) for exc in source.rejected)
    results = apply_plan(store, plan, dry_run=args.dry_run)

    print(format_summary(summarize(plan, results), settings.timezone))
    if any(not r.ok for r in results):
        return EXIT_MUTATION_FAILED
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    settings = get_settings()
    logging.getLogger().setLevel(logging.DEBUG if args.verbose else settings.log_level)
    missing = settings.missing()
    if missing:
        logging.error("Missing required environment variables: %s", ", ".join(missing))
        return EXIT_FATAL

    try:
        code = run(args, settings)
    except SyncError as exc:
        logging.error("%s: %s", type(exc).__name__, exc)
        return EXIT_FATAL

    logging.info("Done")
    return code


if __name__ == "__main__":
    raise SystemExit(main())
