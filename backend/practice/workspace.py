from __future__ import annotations

import logging
import threading
import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .errors import ClientNotFoundError, StoreUnavailableError
from .local_cache import LocalCache
from .models import Appointment, Client, DocumentFile, Note, PracticeSnapshot
from .practice_store import PracticeStore
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class PracticeWorkspace:
    """In-memory practice state for one user.

    Mutations land locally first and are then written through to the store.
    Writes the store rejects are journaled (and cached) until `flush_pending`
    replays them; nothing is retried automatically.
    """

    def __init__(
        self,
        user_id: str,
        snapshot: PracticeSnapshot,
        *,
        store: PracticeStore | None,
        cache: LocalCache,
    ) -> None:
        self.user_id = user_id
        self._clients = snapshot.clients
        self._appointments = snapshot.appointments
        self._store = store
        self._cache = cache
        self._lock = threading.RLock()
        self._pending: list[dict[str, Any]] = cache.load_pending(user_id)

    @classmethod
    def load(cls, user_id: str, *, store: PracticeStore | None, cache: LocalCache) -> PracticeWorkspace:
        if store is None or not store.db.configured:
            return cls(user_id, cache.load_user_data(user_id), store=None, cache=cache)
        try:
            snapshot = store.fetch_user_data(user_id)
        except StoreUnavailableError as exc:
            logger.warning("Practice store unreachable for %s, using local data: %s", user_id, exc)
            snapshot = cache.load_user_data(user_id)
        return cls(user_id, snapshot, store=store, cache=cache)

    @property
    def mode(self) -> str:
        return "remote" if self._store is not None else "local"

    def snapshot(self) -> PracticeSnapshot:
        with self._lock:
            return PracticeSnapshot.from_dict(
                PracticeSnapshot(clients=self._clients, appointments=self._appointments).to_dict()
            )

    def list_clients(self) -> list[Client]:
        return self.snapshot().clients

    def list_appointments(self) -> list[Appointment]:
        return self.snapshot().appointments

    def get_client(self, client_id: str) -> Client:
        with self._lock:
            for client in self._clients:
                if client.id == client_id:
                    return Client.from_dict(client.to_dict())
        raise ClientNotFoundError(f"Client not found: {client_id}")

    def find_client_by_name(self, name: str) -> Client | None:
        needle = (name or "").strip().lower()
        if not needle:
            return None
        with self._lock:
            for client in self._clients:
                if needle in client.name.lower():
                    return Client.from_dict(client.to_dict())
        return None

    def add_client(
        self,
        name: str,
        *,
        diagnosis: str | None = None,
        status: str = "Active",
        avatar: str | None = None,
    ) -> Client:
        client = Client(
            id=f"c_{uuid.uuid4().hex[:12]}",
            name=name.strip(),
            avatar=avatar or f"https://picsum.photos/200/200?random={uuid.uuid4().int % 1000}",
            status=status,
            diagnosis=diagnosis,
        )
        with self._lock:
            self._clients.append(client)
            self._write_through("create_client", {"user_id": self.user_id, "client": client.to_dict()})
        return Client.from_dict(client.to_dict())

    def add_note(
        self,
        client_id: str,
        content: str,
        *,
        summary: str | None = None,
        sentiment: str | None = "Neutral",
        date: str | None = None,
    ) -> Note:
        note = Note(
            id=f"n_{uuid.uuid4().hex}",
            date=date or to_iso(utc_now()),
            content=content,
            summary=summary,
            sentiment=sentiment,
        )
        with self._lock:
            client = self._require_client(client_id)
            client.notes.insert(0, note)
            self._write_through("add_note", {"client_id": client_id, "note": note.to_dict()})
        return Note.from_dict(note.to_dict())

    def append_to_latest_note(self, client_id: str, content: str) -> Note | None:
        with self._lock:
            client = self._require_client(client_id)
            latest = client.latest_note
            if latest is None:
                return None
            latest.content = f"{latest.content}\n{content}"
            self._write_through("update_note_content", {"note_id": latest.id, "content": latest.content})
            return Note.from_dict(latest.to_dict())

    def add_document(self, client_id: str, name: str, mime_type: str, content: str | None = None) -> DocumentFile:
        doc = DocumentFile(
            id=f"d_{uuid.uuid4().hex}",
            name=name,
            type=mime_type or "application/octet-stream",
            upload_date=to_iso(utc_now()),
            content=content,
        )
        with self._lock:
            client = self._require_client(client_id)
            client.documents.insert(0, doc)
            self._write_through("add_document", {"client_id": client_id, "document": doc.to_dict()})
        return DocumentFile.from_dict(doc.to_dict())

    def add_appointment(self, appt: Appointment) -> Appointment:
        with self._lock:
            self._appointments.append(appt)
            for client in self._clients:
                if client.id == appt.client_id:
                    client.next_appointment = appt.date
            self._write_through("create_appointment", {"user_id": self.user_id, "appointment": appt.to_dict()})
        return Appointment.from_dict(appt.to_dict())

    def replace_appointments(self, appointments: list[Appointment]) -> None:
        with self._lock:
            self._appointments = list(appointments)
            if self._store is None:
                self._save_local()

    def sync_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "mode": self.mode,
                "pending": len(self._pending),
                "entries": [dict(entry) for entry in self._pending],
            }

    def flush_pending(self) -> dict[str, Any]:
        """Replay journaled writes in order, stopping at the first that still fails."""
        with self._lock:
            if self._store is None:
                self._pending = []
                self._cache.save_pending(self.user_id, self._pending)
                return self.sync_status()
            replayed = 0
            while self._pending:
                entry = self._pending[0]
                try:
                    self._apply(entry["op"], entry["args"])
                except (StoreUnavailableError, SQLAlchemyError) as exc:
                    entry["error"] = str(exc)
                    logger.warning("Replay of %s failed, %d write(s) still pending: %s", entry["op"], len(self._pending), exc)
                    break
                self._pending.pop(0)
                replayed += 1
            self._cache.save_pending(self.user_id, self._pending)
            status = self.sync_status()
        status["replayed"] = replayed
        return status

    def _require_client(self, client_id: str) -> Client:
        for client in self._clients:
            if client.id == client_id:
                return client
        raise ClientNotFoundError(f"Client not found: {client_id}")

    def _save_local(self) -> None:
        self._cache.save_user_data(
            self.user_id,
            PracticeSnapshot(clients=self._clients, appointments=self._appointments),
        )

    def _write_through(self, op: str, args: dict[str, Any]) -> None:
        if self._store is None:
            self._save_local()
            return
        if self._pending:
            # Later writes may depend on earlier ones, so keep journal order.
            self._journal(op, args, "queued behind pending writes")
            return
        try:
            self._apply(op, args)
        except (StoreUnavailableError, SQLAlchemyError) as exc:
            logger.warning("Write-through %s failed for %s, journaling: %s", op, self.user_id, exc)
            self._journal(op, args, str(exc))

    def _journal(self, op: str, args: dict[str, Any], error: str) -> None:
        self._pending.append(
            {"id": uuid.uuid4().hex, "op": op, "args": args, "error": error, "failed_at": to_iso(utc_now())}
        )
        self._cache.save_pending(self.user_id, self._pending)
        self._save_local()

    def _apply(self, op: str, args: dict[str, Any]) -> None:
        store = self._store
        if store is None:
            return
        if op == "create_client":
            store.create_client(args["user_id"], Client.from_dict(args["client"]))
        elif op == "add_note":
            store.add_note(args["client_id"], Note.from_dict(args["note"]))
        elif op == "update_note_content":
            store.update_note_content(args["note_id"], args["content"])
        elif op == "add_document":
            store.add_document(args["client_id"], DocumentFile.from_dict(args["document"]))
        elif op == "create_appointment":
            store.create_appointment(args["user_id"], Appointment.from_dict(args["appointment"]))
        else:
            raise ValueError(f"Unknown write operation: {op}")
