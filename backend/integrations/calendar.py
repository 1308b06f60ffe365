from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from practice.models import DEFAULT_SESSION_MINUTES, UNKNOWN_CLIENT_ID, Appointment, Client
from practice.time_utils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
VIRTUAL_LOCATION_KEYWORDS = ("zoom", "meet")
EVENT_DESCRIPTION = "Scheduled via MindfulFlow AI"


class CalendarError(Exception):
    pass


def infer_session_type(location: str | None) -> str:
    lowered = (location or "").lower()
    if any(keyword in lowered for keyword in VIRTUAL_LOCATION_KEYWORDS):
        return "Virtual"
    return "In-Person"


def resolve_client_id(summary: str | None, clients: list[Client] | None) -> str:
    lowered = (summary or "").lower()
    if not lowered:
        return UNKNOWN_CLIENT_ID
    for client in clients or []:
        if client.name and client.name.lower() in lowered:
            return client.id
    return UNKNOWN_CLIENT_ID


def _event_duration_minutes(start: datetime | None, end: datetime | None) -> int:
    if start is None or end is None or end <= start:
        return DEFAULT_SESSION_MINUTES
    return int((end - start).total_seconds() // 60) or DEFAULT_SESSION_MINUTES


def event_to_appointment(event: dict[str, Any], clients: list[Client] | None = None) -> Appointment:
    start_info = event.get("start") or {}
    end_info = event.get("end") or {}
    start_raw = start_info.get("dateTime") or start_info.get("date") or ""
    start = parse_iso(start_info.get("dateTime"))
    end = parse_iso(end_info.get("dateTime"))
    summary = event.get("summary")
    return Appointment(
        id=str(event.get("id") or ""),
        client_id=resolve_client_id(summary, clients),
        date=to_iso(start) if start else start_raw,
        duration_minutes=_event_duration_minutes(start, end),
        type=infer_session_type(event.get("location")),
        summary=summary,
    )


def build_calendar_service(token_path: str | Path) -> Any:
    path = Path(token_path)
    if not path.exists():
        raise CalendarError(
            f"Calendar token not found at {path}. Complete the Google OAuth flow once to generate it."
        )
    creds = Credentials.from_authorized_user_file(str(path), SCOPES)
    if creds and creds.expired and creds.refresh_token:
        creds.refresh(Request())
        path.write_text(creds.to_json(), encoding="utf-8")
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


class GoogleCalendarAdapter:
    def __init__(
        self,
        *,
        calendar_id: str = "primary",
        token_path: str | Path | None = None,
        timezone_name: str = "UTC",
        service_factory: Callable[[], Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.calendar_id = calendar_id
        self.timezone_name = timezone_name
        self._token_path = Path(token_path) if token_path else None
        self._service_factory = service_factory
        self._clock = clock
        self._service: Any = None
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        if self._service_factory is not None:
            return True
        return self._token_path is not None and self._token_path.exists()

    def _require_service(self) -> Any:
        if not self.configured:
            raise CalendarError("Calendar API not initialized")
        with self._lock:
            if self._service is None:
                if self._service_factory is not None:
                    self._service = self._service_factory()
                else:
                    self._service = build_calendar_service(self._token_path)
            return self._service

    def list_upcoming_events(self, clients: list[Client] | None = None, max_results: int = 20) -> list[Appointment]:
        try:
            service = self._require_service()
            response = (
                service.events()
                .list(
                    calendarId=self.calendar_id,
                    timeMin=to_iso(self._clock()),
                    showDeleted=False,
                    singleEvents=True,
                    maxResults=max_results,
                    orderBy="startTime",
                )
                .execute()
            )
        except (CalendarError, GoogleAuthError, HttpError, OSError) as exc:
            logger.warning("Error listing calendar events: %s", exc)
            return []
        items = response.get("items") or []
        return [event_to_appointment(event, clients) for event in items]

    def create_event(
        self,
        summary: str,
        start_iso: str,
        duration_minutes: int = DEFAULT_SESSION_MINUTES,
    ) -> dict[str, Any]:
        try:
            zone = ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise CalendarError(f"Unknown calendar time zone: {self.timezone_name!r}") from exc
        start = parse_iso(start_iso, default_tz=zone)
        if start is None:
            raise CalendarError(f"Invalid start time: {start_iso!r}")
        end = start + timedelta(minutes=duration_minutes or DEFAULT_SESSION_MINUTES)
        body = {
            "summary": summary,
            "description": EVENT_DESCRIPTION,
            "start": {"dateTime": to_iso(start), "timeZone": self.timezone_name},
            "end": {"dateTime": to_iso(end), "timeZone": self.timezone_name},
        }
        service = self._require_service()
        try:
            created = service.events().insert(calendarId=self.calendar_id, body=body).execute()
        except (GoogleAuthError, HttpError, OSError) as exc:
            raise CalendarError(f"Calendar insert failed: {exc}") from exc
        logger.info("Created calendar event %s for %s", created.get("id"), summary)
        return created
