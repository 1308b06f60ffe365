from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from config import Settings, bootstrap_local_env, load_settings
from copilot_core import ToolDispatcher, ToolRegistry
from copilot_tools import PracticeToolset, register_tools
from integrations import CalendarError, GeminiTextService, GoogleCalendarAdapter, build_chat_context
from integrations.gemini_text import NEW_CLIENT_GREETING
from practice import (
    Appointment,
    AuthService,
    Client,
    ClientNotFoundError,
    DuplicateEmailError,
    InvalidCredentialsError,
    LocalCache,
    PracticeStore,
    PracticeWorkspace,
    RelationalDB,
    StoreUnavailableError,
    User,
    UserStore,
)
from practice.models import CLIENT_STATUSES, DEFAULT_SESSION_MINUTES, SESSION_TYPES, search_clients, upcoming_appointments
from practice.time_utils import parse_iso, to_iso, utc_now
from voice import SessionState, VoiceSessionBridge, VoiceSessionError
from voice.devices import MicrophoneCapture, SpeakerOutput
from voice.live import GeminiLiveConnector

bootstrap_local_env()
settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("mindfulflow")


class RegisterPayload(BaseModel):
    name: str
    email: str
    password: str


class LoginPayload(BaseModel):
    email: str
    password: str


class ClientPayload(BaseModel):
    name: str
    diagnosis: str | None = None
    status: str = "Active"
    avatar: str | None = None


class NotePayload(BaseModel):
    content: str
    analyze: bool = True


class DocumentPayload(BaseModel):
    name: str
    type: str = "application/octet-stream"
    content: str | None = None


class AppointmentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")
    date: str
    duration_minutes: int = Field(default=DEFAULT_SESSION_MINUTES, alias="durationMinutes")
    type: str = "In-Person"


class CalendarEventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: str
    start: str
    duration_minutes: int = Field(default=DEFAULT_SESSION_MINUTES, alias="durationMinutes")


class AnalyzePayload(BaseModel):
    text: str


class ChatPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    history: list[dict[str, str]] = Field(default_factory=list)
    document_id: str | None = Field(default=None, alias="documentId")


class MindfulFlowApp:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.db = RelationalDB(settings.database_url)
        self.cache = LocalCache(settings.cache_path)
        self.store = PracticeStore(self.db, seed_new_users=settings.seed_new_users) if self.db.configured else None
        self.auth = AuthService(self.db, UserStore(self.db), self.cache)
        self.calendar = GoogleCalendarAdapter(
            calendar_id=settings.calendar_id,
            token_path=settings.calendar_token_path,
            timezone_name=settings.calendar_timezone,
        )
        self.text_ai = GeminiTextService(settings.gemini_api_key, model=settings.text_model)
        self.live = GeminiLiveConnector(
            settings.gemini_api_key,
            model=settings.live_model,
            sample_rate=settings.capture_sample_rate,
        )
        self.capture_factory: Callable[[], Any] = lambda: MicrophoneCapture(
            sample_rate=settings.capture_sample_rate,
            frame_samples=settings.capture_frame_samples,
        )
        self.output_factory: Callable[[], Any] = lambda: SpeakerOutput(sample_rate=settings.playback_sample_rate)
        self.voice: VoiceSessionBridge | None = None
        self._workspaces: dict[str, PracticeWorkspace] = {}
        self._workspaces_lock = threading.Lock()
        self._voice_lock = asyncio.Lock()

    def workspace_for(self, user_id: str) -> PracticeWorkspace:
        with self._workspaces_lock:
            workspace = self._workspaces.get(user_id)
            if workspace is None:
                workspace = PracticeWorkspace.load(user_id, store=self.store, cache=self.cache)
                self._workspaces[user_id] = workspace
            return workspace

    def build_voice_bridge(self, workspace: PracticeWorkspace) -> VoiceSessionBridge:
        registry = ToolRegistry()
        register_tools(registry, PracticeToolset(workspace, self.calendar))
        return VoiceSessionBridge(
            connector=self.live,
            dispatcher=ToolDispatcher(registry),
            capture_factory=self.capture_factory,
            output_factory=self.output_factory,
            playback_sample_rate=self.settings.playback_sample_rate,
        )

    async def toggle_voice(self, user_id: str) -> dict[str, Any]:
        async with self._voice_lock:
            return await self._toggle_voice(user_id)

    async def _toggle_voice(self, user_id: str) -> dict[str, Any]:
        if self.voice is not None and self.voice.state is not SessionState.IDLE:
            await self.voice.stop()
            return self.voice.status()
        workspace = await asyncio.to_thread(self.workspace_for, user_id)
        self.voice = self.build_voice_bridge(workspace)
        await self.voice.start()
        return self.voice.status()

    async def stop_voice(self) -> dict[str, Any]:
        async with self._voice_lock:
            if self.voice is None:
                return {"state": SessionState.IDLE.value}
            await self.voice.stop()
            return self.voice.status()

    def voice_status(self) -> dict[str, Any]:
        if self.voice is None:
            return {"state": SessionState.IDLE.value}
        return self.voice.status()

    async def close(self) -> None:
        await self.stop_voice()
        self.db.dispose()


container = MindfulFlowApp(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "MindfulFlow backend starting (store=%s, calendar=%s, ai=%s)",
        "remote" if container.db.configured else "local",
        "on" if container.calendar.configured else "off",
        "on" if container.text_ai.configured else "off",
    )
    yield
    await container.close()


app = FastAPI(title="MindfulFlow Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization")
    token = authorization.replace("Bearer", "", 1).strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing Authorization")
    return token


def require_user(authorization: str | None) -> User:
    user = container.auth.current_user(_bearer_token(authorization))
    if user is None:
        raise HTTPException(status_code=401, detail="Session expired or invalid")
    return user


def _client_or_404(workspace: PracticeWorkspace, client_id: str) -> Client:
    try:
        return workspace.get_client(client_id)
    except ClientNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/health")
def health():
    return {
        "ok": True,
        "store": "remote" if container.db.configured else "local",
        "calendar": container.calendar.configured,
        "ai": container.text_ai.configured,
    }


@app.post("/auth/register")
def auth_register(payload: RegisterPayload):
    if not payload.name.strip() or not payload.email.strip() or not payload.password:
        raise HTTPException(status_code=400, detail="Name, email and password are required.")
    try:
        session = container.auth.register(payload.name, payload.email, payload.password)
    except DuplicateEmailError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return session.to_dict()


@app.post("/auth/login")
def auth_login(payload: LoginPayload):
    try:
        session = container.auth.login(payload.email, payload.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return session.to_dict()


@app.post("/auth/logout")
def auth_logout(authorization: str | None = Header(default=None)):
    container.auth.logout(_bearer_token(authorization))
    return {"ok": True}


@app.get("/auth/me")
def auth_me(authorization: str | None = Header(default=None)):
    return require_user(authorization).to_dict()


@app.get("/practice")
def get_practice(authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    workspace = container.workspace_for(user.id)
    return {
        "user": user.to_dict(),
        **workspace.snapshot().to_dict(),
        "sync": workspace.sync_status(),
    }


@app.get("/clients")
def list_clients(search: str | None = None, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    clients = search_clients(container.workspace_for(user.id).list_clients(), search)
    return {"items": [client.to_dict() for client in clients]}


@app.post("/clients")
def create_client(payload: ClientPayload, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Client name is required.")
    if payload.status not in CLIENT_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid client status.")
    client = container.workspace_for(user.id).add_client(
        payload.name,
        diagnosis=payload.diagnosis,
        status=payload.status,
        avatar=payload.avatar,
    )
    return client.to_dict()


@app.get("/clients/{client_id}")
def get_client(client_id: str, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    return _client_or_404(container.workspace_for(user.id), client_id).to_dict()


@app.post("/clients/{client_id}/notes")
def add_client_note(client_id: str, payload: NotePayload, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="Note content is required.")
    workspace = container.workspace_for(user.id)
    _client_or_404(workspace, client_id)
    analysis = container.text_ai.analyze_note(payload.content) if payload.analyze else None
    try:
        note = workspace.add_note(
            client_id,
            payload.content,
            summary=analysis.summary if analysis else None,
            sentiment=analysis.sentiment if analysis else "Neutral",
        )
    except ClientNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"note": note.to_dict(), "analysis": analysis.to_dict() if analysis else None}


@app.post("/clients/{client_id}/documents")
def add_client_document(client_id: str, payload: DocumentPayload, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    if not payload.name.strip():
        raise HTTPException(status_code=400, detail="Document name is required.")
    try:
        doc = container.workspace_for(user.id).add_document(client_id, payload.name, payload.type, payload.content)
    except ClientNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return doc.to_dict()


@app.get("/appointments")
def list_appointments(upcoming: bool = False, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    appointments = container.workspace_for(user.id).list_appointments()
    if upcoming:
        appointments = upcoming_appointments(appointments, utc_now())
    return {"items": [appt.to_dict() for appt in appointments]}


@app.post("/appointments")
def create_appointment(payload: AppointmentPayload, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    start = parse_iso(payload.date)
    if start is None:
        raise HTTPException(status_code=400, detail="Invalid appointment date.")
    if payload.type not in SESSION_TYPES:
        raise HTTPException(status_code=400, detail="Invalid session type.")
    if payload.duration_minutes <= 0:
        raise HTTPException(status_code=400, detail="Duration must be positive.")
    workspace = container.workspace_for(user.id)
    _client_or_404(workspace, payload.client_id)
    appt = workspace.add_appointment(
        Appointment(
            id=f"a_{uuid.uuid4().hex[:12]}",
            client_id=payload.client_id,
            date=to_iso(start),
            duration_minutes=payload.duration_minutes,
            type=payload.type,
        )
    )
    return appt.to_dict()


@app.get("/calendar/events")
def calendar_events(refresh: bool = False, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    workspace = container.workspace_for(user.id)
    events = container.calendar.list_upcoming_events(clients=workspace.list_clients())
    if refresh and events:
        workspace.replace_appointments(events)
    return {"items": [appt.to_dict() for appt in events], "configured": container.calendar.configured}


@app.post("/calendar/events")
def create_calendar_event(payload: CalendarEventPayload, authorization: str | None = Header(default=None)):
    require_user(authorization)
    try:
        event = container.calendar.create_event(payload.summary, payload.start, payload.duration_minutes)
    except CalendarError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"id": event.get("id"), "htmlLink": event.get("htmlLink"), "status": event.get("status")}


@app.get("/ai/briefing")
def ai_briefing(authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    snapshot = container.workspace_for(user.id).snapshot()
    return {"text": container.text_ai.daily_briefing(snapshot.appointments, snapshot.clients)}


@app.get("/clients/{client_id}/recap")
def client_recap(client_id: str, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    client = _client_or_404(container.workspace_for(user.id), client_id)
    last_note = client.latest_note
    if last_note is None:
        return {"text": NEW_CLIENT_GREETING, "type": "intake"}
    return {"text": container.text_ai.session_recap(last_note, client.name), "type": "recall"}


@app.post("/ai/analyze-note")
def ai_analyze_note(payload: AnalyzePayload, authorization: str | None = Header(default=None)):
    require_user(authorization)
    return container.text_ai.analyze_note(payload.text).to_dict()


@app.post("/clients/{client_id}/chat")
def client_chat(client_id: str, payload: ChatPayload, authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    client = _client_or_404(container.workspace_for(user.id), client_id)
    active_document = None
    if payload.document_id:
        active_document = next((doc for doc in client.documents if doc.id == payload.document_id), None)
        if active_document is None:
            raise HTTPException(status_code=404, detail=f"Document not found: {payload.document_id}")
    context = build_chat_context(client, active_document)
    return {"text": container.text_ai.chat_with_context(payload.history, context, payload.query)}


@app.post("/voice/session")
async def voice_toggle(authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    try:
        return await container.toggle_voice(user.id)
    except VoiceSessionError as exc:
        raise HTTPException(status_code=503, detail=f"Failed to start voice session: {exc}") from exc


@app.delete("/voice/session")
async def voice_stop(authorization: str | None = Header(default=None)):
    require_user(authorization)
    return await container.stop_voice()


@app.get("/voice/session")
def voice_status(authorization: str | None = Header(default=None)):
    require_user(authorization)
    return container.voice_status()


@app.get("/sync")
def sync_status(authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    return container.workspace_for(user.id).sync_status()


@app.post("/sync/flush")
def sync_flush(authorization: str | None = Header(default=None)):
    user = require_user(authorization)
    return container.workspace_for(user.id).flush_pending()
