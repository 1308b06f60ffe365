from __future__ import annotations

import logging
import uuid
from typing import Any

from copilot_core.models import ToolResult
from copilot_core.registry import ToolDefinition, ToolRegistry
from integrations.calendar import CalendarError, GoogleCalendarAdapter
from practice.models import DEFAULT_SESSION_MINUTES, SESSION_TYPES, UNKNOWN_CLIENT_ID, Appointment
from practice.workspace import PracticeWorkspace

logger = logging.getLogger(__name__)


SCHEDULE_APPOINTMENT_DECLARATION: dict[str, Any] = {
    "name": "scheduleAppointment",
    "description": "Schedule a new appointment for a client using Google Calendar.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "clientName": {"type": "STRING", "description": "The name of the client."},
            "dateTime": {"type": "STRING", "description": "ISO 8601 date string for the appointment."},
            "durationMinutes": {"type": "NUMBER", "description": "Duration in minutes (default 50)."},
            "type": {"type": "STRING", "description": 'Type of appointment: "In-Person" or "Virtual".'},
        },
        "required": ["clientName", "dateTime"],
    },
}

UPDATE_CLIENT_NOTE_DECLARATION: dict[str, Any] = {
    "name": "updateClientNote",
    "description": "Update or append to the latest note for a client. Create a new note if none exists.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "clientName": {"type": "STRING", "description": "The name of the client."},
            "content": {"type": "STRING", "description": "The content to add to the note."},
            "mode": {"type": "STRING", "description": '"append" to add to existing note, "replace" to overwrite.'},
        },
        "required": ["clientName", "content"],
    },
}


def _coerce_minutes(value: Any) -> int:
    try:
        minutes = int(float(value))
    except (TypeError, ValueError):
        return DEFAULT_SESSION_MINUTES
    return minutes if minutes > 0 else DEFAULT_SESSION_MINUTES


class PracticeToolset:
    def __init__(self, workspace: PracticeWorkspace, calendar: GoogleCalendarAdapter) -> None:
        self.workspace = workspace
        self.calendar = calendar

    def schedule_appointment(self, args: dict[str, Any]) -> ToolResult:
        client_name = str(args.get("clientName") or "").strip()
        date_time = str(args.get("dateTime") or "").strip()
        if not date_time:
            return ToolResult.error("dateTime is required to schedule an appointment")
        duration = _coerce_minutes(args.get("durationMinutes"))
        session_type = str(args.get("type") or "In-Person")
        if session_type not in SESSION_TYPES:
            session_type = "In-Person"

        client = self.workspace.find_client_by_name(client_name)
        display_name = client.name if client else client_name
        try:
            self.calendar.create_event(f"Session with {display_name}", date_time, duration)
        except CalendarError as exc:
            logger.warning("Calendar write failed for %s: %s", display_name, exc)
            return ToolResult.error(f"Failed to schedule on Google Calendar: {exc or 'Check connection'}")

        refreshed = self.calendar.list_upcoming_events(clients=self.workspace.list_clients())
        if refreshed:
            self.workspace.replace_appointments(refreshed)
        else:
            self.workspace.add_appointment(
                Appointment(
                    id=f"a_{uuid.uuid4().hex[:12]}",
                    client_id=client.id if client else UNKNOWN_CLIENT_ID,
                    date=date_time,
                    duration_minutes=duration,
                    type=session_type,
                )
            )
        return ToolResult.success(
            f"Scheduled on Google Calendar: {session_type} appointment with {display_name} for {date_time}"
        )

    def update_client_note(self, args: dict[str, Any]) -> ToolResult:
        client_name = str(args.get("clientName") or "").strip()
        content = str(args.get("content") or "")
        mode = str(args.get("mode") or "append").strip().lower()

        client = self.workspace.find_client_by_name(client_name)
        if client is None:
            return ToolResult.error(f"Client {client_name} not found")

        appended = None
        if mode != "replace":
            appended = self.workspace.append_to_latest_note(client.id, content)
        if appended is None:
            self.workspace.add_note(client.id, content, sentiment="Neutral")
        return ToolResult.success(f"Updated notes for {client.name}")


def register_tools(registry: ToolRegistry, toolset: PracticeToolset) -> None:
    registry.register(
        ToolDefinition("scheduleAppointment", toolset.schedule_appointment, SCHEDULE_APPOINTMENT_DECLARATION)
    )
    registry.register(
        ToolDefinition("updateClientNote", toolset.update_client_note, UPDATE_CLIENT_NOTE_DECLARATION)
    )
