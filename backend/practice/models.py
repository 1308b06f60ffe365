from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .time_utils import parse_iso


CLIENT_STATUSES = {"Active", "Archived"}
SENTIMENTS = {"Positive", "Neutral", "Concern"}
SESSION_TYPES = {"In-Person", "Virtual"}

DEFAULT_SESSION_MINUTES = 50
UNKNOWN_CLIENT_ID = "unknown"


@dataclass
class Note:
    id: str
    date: str
    content: str
    summary: str | None = None
    sentiment: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "content": self.content,
            "summary": self.summary,
            "sentiment": self.sentiment,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Note:
        return cls(
            id=str(payload["id"]),
            date=str(payload.get("date") or ""),
            content=str(payload.get("content") or ""),
            summary=payload.get("summary"),
            sentiment=payload.get("sentiment"),
        )


@dataclass
class DocumentFile:
    id: str
    name: str
    type: str
    upload_date: str
    content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "uploadDate": self.upload_date,
            "content": self.content,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DocumentFile:
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            type=str(payload.get("type") or "application/octet-stream"),
            upload_date=str(payload.get("uploadDate") or payload.get("upload_date") or ""),
            content=payload.get("content"),
        )


@dataclass
class Client:
    id: str
    name: str
    avatar: str = ""
    status: str = "Active"
    diagnosis: str | None = None
    next_appointment: str | None = None
    notes: list[Note] = field(default_factory=list)
    documents: list[DocumentFile] = field(default_factory=list)

    @property
    def latest_note(self) -> Note | None:
        return self.notes[0] if self.notes else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "status": self.status,
            "diagnosis": self.diagnosis,
            "nextAppointment": self.next_appointment,
            "notes": [note.to_dict() for note in self.notes],
            "documents": [doc.to_dict() for doc in self.documents],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Client:
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or ""),
            avatar=str(payload.get("avatar") or ""),
            status=str(payload.get("status") or "Active"),
            diagnosis=payload.get("diagnosis"),
            next_appointment=payload.get("nextAppointment") or payload.get("next_appointment"),
            notes=[Note.from_dict(item) for item in payload.get("notes") or []],
            documents=[DocumentFile.from_dict(item) for item in payload.get("documents") or []],
        )


@dataclass
class Appointment:
    id: str
    client_id: str
    date: str
    duration_minutes: int = DEFAULT_SESSION_MINUTES
    type: str = "In-Person"
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "clientId": self.client_id,
            "date": self.date,
            "durationMinutes": self.duration_minutes,
            "type": self.type,
        }
        if self.summary:
            payload["summary"] = self.summary
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Appointment:
        return cls(
            id=str(payload["id"]),
            client_id=str(payload.get("clientId") or payload.get("client_id") or UNKNOWN_CLIENT_ID),
            date=str(payload.get("date") or ""),
            duration_minutes=int(payload.get("durationMinutes") or payload.get("duration_minutes") or DEFAULT_SESSION_MINUTES),
            type=str(payload.get("type") or "In-Person"),
            summary=payload.get("summary"),
        )


@dataclass
class User:
    id: str
    name: str
    email: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> User:
        return cls(id=str(payload["id"]), name=str(payload.get("name") or ""), email=str(payload.get("email") or ""))


@dataclass
class PracticeSnapshot:
    clients: list[Client] = field(default_factory=list)
    appointments: list[Appointment] = field(default_factory=list)

    @classmethod
    def empty(cls) -> PracticeSnapshot:
        return cls()

    def to_dict(self) -> dict[str, Any]:
        return {
            "clients": [client.to_dict() for client in self.clients],
            "appointments": [appt.to_dict() for appt in self.appointments],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PracticeSnapshot:
        return cls(
            clients=[Client.from_dict(item) for item in payload.get("clients") or []],
            appointments=[Appointment.from_dict(item) for item in payload.get("appointments") or []],
        )


def search_clients(clients: list[Client], term: str | None) -> list[Client]:
    needle = (term or "").strip().lower()
    if not needle:
        return list(clients)
    return [
        client
        for client in clients
        if needle in client.name.lower() or needle in (client.diagnosis or "").lower()
    ]


def upcoming_appointments(appointments: list[Appointment], now: datetime) -> list[Appointment]:
    dated = [(parse_iso(appt.date), appt) for appt in appointments]
    future = [(start, appt) for start, appt in dated if start is not None and start >= now]
    future.sort(key=lambda item: item[0])
    return [appt for _, appt in future]
