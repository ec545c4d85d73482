from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional

import requests
from tenacity.wait import wait_base

from .errors import MalformedEntry, SourceFetchFailure
from .models import ScheduleEntry
from .utils import parse_timestamp, read_retrying

ACCEPT = "application/vnd.pagerduty+json;version=2"


class SourceResult(NamedTuple):
    entries: List[ScheduleEntry]
    rejected: List[MalformedEntry]


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return False


class PagerDutyClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.pagerduty.com",
        time_zone: str = "Asia/Singapore",
        session: Optional[requests.Session] = None,
        lookup_emails: bool = True,
        timeout: float = 30,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.time_zone = time_zone
        self.session = session or requests.Session()
        self.lookup_emails = lookup_emails
        self.timeout = timeout
        self.retry_wait = retry_wait
        self._emails: Dict[str, Optional[str]] = {}

    def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        headers = {"Authorization": f"Token token={self.api_key}", "Accept": ACCEPT}
        for attempt in read_retrying(is_transient, self.retry_wait):
            with attempt:
                logging.debug("GET %s %s", url, params or "")
                resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
                resp.raise_for_status()
                return resp.json()

    def fetch_entries(self, schedule_id: str, range_start: datetime, range_end: datetime) -> SourceResult:
        logging.info("Retrieving PagerDuty schedule %s from %s to %s", schedule_id, range_start, range_end)
        params = {
            "since": range_start.isoformat(),
            "until": range_end.isoformat(),
            "time_zone": self.time_zone,
        }
        try:
            payload = self._get_json(f"{self.base_url}/schedules/{schedule_id}", params)
        except (requests.RequestException, ValueError) as exc:
            raise SourceFetchFailure(f"PagerDuty GET /schedules/{schedule_id} failed: {exc}") from exc
        try:
            records = payload["schedule"]["final_schedule"]["rendered_schedule_entries"]
        except (KeyError, TypeError) as exc:
            raise SourceFetchFailure(f"PagerDuty schedule {schedule_id} response has no rendered entries") from exc

        entries: List[ScheduleEntry] = []
        rejected: List[MalformedEntry] = []
        user_urls: Dict[str, str] = {}
        for record in records:
            try:
                entry = parse_entry(schedule_id, record)
            except MalformedEntry as exc:
                logging.error("Rejected PagerDuty entry %s: %s", record, exc)
                rejected.append(exc)
                continue
            user_urls.setdefault(entry.user_id, (record.get("user") or {}).get("self") or "")
            entries.append(entry)

        if self.lookup_emails:
            for entry in entries:
                entry.user_email = self.user_email(entry.user_id, user_urls.get(entry.user_id))
        entries.sort(key=lambda e: (e.start, e.end))
        logging.info("Parsed %d entries (%d rejected) for schedule %s", len(entries), len(rejected), schedule_id)
        return SourceResult(entries, rejected)

    def user_email(self, user_id: str, url: Optional[str] = None) -> Optional[str]:
        if user_id in self._emails:
            return self._emails[user_id]
        try:
            payload = self._get_json(url or f"{self.base_url}/users/{user_id}")
            email = payload["user"]["email"]
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logging.warning("PagerDuty lookup of user %s failed: %s. Continuing without e-mail.", user_id, exc)
            email = None
        self._emails[user_id] = email
        return email


def parse_entry(schedule_id: str, record: dict) -> ScheduleEntry:
    user = record.get("user") or {}
    try:
        start = parse_timestamp(record["start"])
        end = parse_timestamp(record["end"])
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise MalformedEntry(f"Unreadable start/end: {exc}", record) from exc
    entry = ScheduleEntry(
        schedule_id=schedule_id,
        user_id=user.get("id") or "",
        user_name=user.get("summary") or "",
        start=start,
        end=end,
    )
    try:
        entry.validate()
    except MalformedEntry as exc:
        exc.record = record
        raise
    return entry
