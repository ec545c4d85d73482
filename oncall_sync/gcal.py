from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from google.auth.exceptions import GoogleAuthError, RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error
from tenacity.wait import wait_base

from .config import Settings
from .errors import AuthenticationFailure, CalendarFetchFailure, MutationFailure
from .models import MANAGED_BY, CalendarEvent, ScheduleEntry, Transition
from .utils import read_retrying

SCOPES = ["https://www.googleapis.com/auth/calendar.events"]
OAUTH_TIMEOUT_SECONDS = 300
# googleapiclient surfaces DNS and connection failures as httplib2 errors.
TRANSPORT_ERRORS = (HttpError, HttpLib2Error, OSError, GoogleAuthError)


def _client_config(settings: Settings) -> dict:
    return {
        "installed": {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
    }


def _run_oauth_flow(settings: Settings) -> Credentials:
    flow = InstalledAppFlow.from_client_config(_client_config(settings), SCOPES)
    logging.info("Starting local callback webserver on port %d", settings.oauth_port)
    try:
        # run_local_server closes its listener on every exit path, timeout included.
        return flow.run_local_server(
            port=settings.oauth_port,
            timeout_seconds=OAUTH_TIMEOUT_SECONDS,
            success_message="Successfully exchanged auth data. You may close this window.",
        )
    except Exception as exc:
        raise AuthenticationFailure(f"Google OAuth flow on port {settings.oauth_port} failed: {exc!r}") from exc


def load_credentials(settings: Settings) -> Credentials:
    token_file = Path(settings.google_token_file)
    creds = None
    if token_file.exists():
        try:
            creds = Credentials.from_authorized_user_file(str(token_file), SCOPES)
        except (ValueError, OSError) as exc:
            logging.warning("Ignoring unreadable token file %s: %s", token_file, exc)

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            logging.warning("Token refresh rejected (%s). Triggering oauth flow.", exc)
            creds = None
        except TransportError as exc:
            raise AuthenticationFailure(f"Google token refresh failed: {exc}") from exc
    else:
        logging.info("No usable token in %s. Triggering oauth flow.", token_file)
        creds = None

    if creds is None:
        creds = _run_oauth_flow(settings)
    _save_token(creds, token_file)
    return creds


def _save_token(creds: Credentials, token_file: Path) -> None:
    try:
        token_file.write_text(creds.to_json())
    except OSError as exc:
        logging.warning("Unable to write token file %s: %s", token_file, exc)


def _token_accepted(service, calendar_id: str) -> bool:
    """One cheap authorised read; False when Google rejects the token."""
    try:
        service.events().list(calendarId=calendar_id, maxResults=1).execute()
    except RefreshError as exc:
        logging.warning("Token refresh rejected (%s)", exc)
        return False
    except HttpError as exc:
        if exc.resp.status == 401:
            return False
        raise CalendarFetchFailure(f"Google Calendar access check on {calendar_id} failed: {exc}") from exc
    except TRANSPORT_ERRORS as exc:
        raise CalendarFetchFailure(f"Google Calendar access check on {calendar_id} failed: {exc}") from exc
    return True


def build_service(settings: Settings, calendar_id: Optional[str] = None):
    calendar_id = calendar_id or settings.calendar_id
    creds = load_credentials(settings)
    service = build("calendar", "v3", credentials=creds, cache_discovery=False)
    if _token_accepted(service, calendar_id):
        return service

    # Revoked tokens still look valid locally until they expire.
    logging.warning("Google rejected the cached token. Triggering oauth flow.")
    creds = _run_oauth_flow(settings)
    _save_token(creds, Path(settings.google_token_file))
    service = build("calendar", "v3", credentials=creds, cache_discovery=False)
    if not _token_accepted(service, calendar_id):
        raise AuthenticationFailure("Google rejected the token from a fresh oauth flow")
    return service


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, HttpError):
        return exc.resp.status == 429 or exc.resp.status >= 500
    return isinstance(exc, (HttpLib2Error, OSError, TransportError))


def _status(exc: BaseException) -> Optional[int]:
    return exc.resp.status if isinstance(exc, HttpError) else None


class CalendarStore:
    """Managed on-call events on one Google calendar."""

    def __init__(
        self,
        service,
        calendar_id: str = "primary",
        schedule_id: Optional[str] = None,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self.service = service
        self.calendar_id = calendar_id
        self.schedule_id = schedule_id
        self.retry_wait = retry_wait

    def _execute_read(self, request) -> dict:
        for attempt in read_retrying(is_transient, self.retry_wait):
            with attempt:
                return request.execute()

    def _is_ours(self, item: dict) -> bool:
        props = item.get("extendedProperties", {}).get("private", {})
        if props.get("managed_by") != MANAGED_BY:
            return False
        return not self.schedule_id or props.get("schedule_id") in (None, self.schedule_id)

    def _list_items(self, time_min: dt.datetime, time_max: dt.datetime) -> List[dict]:
        items: List[dict] = []
        page_token = None
        while True:
            request = self.service.events().list(
                calendarId=self.calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                showDeleted=False,
                privateExtendedProperty=f"managed_by={MANAGED_BY}",
                maxResults=2500,
                pageToken=page_token,
            )
            events_result = self._execute_read(request)
            items.extend(events_result.get("items", []))
            page_token = events_result.get("nextPageToken")
            if not page_token:
                return items

    def fetch_events(self, time_min: dt.datetime, time_max: dt.datetime) -> List[CalendarEvent]:
        logging.info("Fetching existing events from %s to %s", time_min, time_max)
        try:
            items = self._list_items(time_min, time_max)
        except TRANSPORT_ERRORS as exc:
            raise CalendarFetchFailure(f"Google Calendar events.list on {self.calendar_id} failed: {exc}") from exc

        events: List[CalendarEvent] = []
        for order, item in enumerate(items):
            if not self._is_ours(item):
                continue
            try:
                events.append(CalendarEvent.from_gcal(item, order))
            except ValueError as exc:
                logging.warning("Skipping managed event %s: %s", item.get("id"), exc)
        logging.info("Found %d existing managed events", len(events))
        return events

    def _written(self, item: dict, call: str) -> CalendarEvent:
        try:
            return CalendarEvent.from_gcal(item)
        except ValueError as exc:
            raise MutationFailure(f"{call} succeeded but returned an unreadable event: {exc}") from exc

    def create_event(self, entry: ScheduleEntry, history: Tuple[Transition, ...] = ()) -> CalendarEvent:
        body = entry.to_gcal_body(history)
        try:
            item = self.service.events().insert(calendarId=self.calendar_id, body=body).execute()
        except TRANSPORT_ERRORS as exc:
            raise MutationFailure(f"events.insert for {entry.user_id} at {entry.start} failed: {exc}") from exc
        return self._written(item, f"events.insert for {entry.user_id} at {entry.start}")

    def update_event(
        self,
        event_id: str,
        entry: ScheduleEntry,
        history: Tuple[Transition, ...] = (),
        etag: Optional[str] = None,
    ) -> CalendarEvent:
        try:
            current = self._execute_read(self.service.events().get(calendarId=self.calendar_id, eventId=event_id))
        except TRANSPORT_ERRORS as exc:
            raise MutationFailure(f"events.get for {event_id} failed: {exc}") from exc
        if not self._is_ours(current):
            raise MutationFailure(f"Event {event_id} is no longer managed by {MANAGED_BY}")
        if etag and current.get("etag") != etag:
            raise MutationFailure(f"Event {event_id} was modified externally since it was read")

        body = entry.to_gcal_body(history)
        try:
            item = (
                self.service.events()
                .update(calendarId=self.calendar_id, eventId=event_id, body=body)
                .execute()
            )
        except TRANSPORT_ERRORS as exc:
            raise MutationFailure(f"events.update for {event_id} failed: {exc}") from exc
        return self._written(item, f"events.update for {event_id}")

    def delete_event(self, event_id: str) -> None:
        try:
