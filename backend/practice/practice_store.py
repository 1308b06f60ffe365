from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .database import RelationalDB, is_missing_relation
from .models import Appointment, Client, DocumentFile, Note, PracticeSnapshot
from .seed import starter_clients

logger = logging.getLogger(__name__)


def _note_from_row(row: Any) -> Note:
    return Note(
        id=row["id"],
        date=row["date"],
        content=row["content"],
        summary=row["summary"],
        sentiment=row["sentiment"],
    )


def _document_from_row(row: Any) -> DocumentFile:
    return DocumentFile(
        id=row["id"],
        name=row["name"],
        type=row["type"] or "application/octet-stream",
        upload_date=row["upload_date"] or "",
        content=row["content"],
    )


class PracticeStore:
    def __init__(self, db: RelationalDB, *, seed_new_users: bool = True) -> None:
        self._db = db
        self._seed_new_users = seed_new_users

    @property
    def db(self) -> RelationalDB:
        return self._db

    def fetch_user_data(self, user_id: str) -> PracticeSnapshot:
        """Load every client (with notes and documents) and appointment for a user.

        A missing table triggers one schema repair and a single retry. Any other
        query failure, or a failed retry, yields an empty snapshot so callers can
        keep rendering. Connection failures propagate as StoreUnavailableError.
        """
        try:
            return self._fetch_user_data(user_id)
        except SQLAlchemyError as exc:
            if not is_missing_relation(exc):
                logger.error("Error fetching user data for %s: %s", user_id, exc)
                return PracticeSnapshot.empty()
            logger.warning("Database schema appears to be missing, attempting repair: %s", exc)

        try:
            self._db.ensure_schema()
            logger.info("Schema repaired, retrying data fetch for %s", user_id)
            return self._fetch_user_data(user_id)
        except SQLAlchemyError as exc:
            logger.error("Failed to recover from schema error for %s: %s", user_id, exc)
            return PracticeSnapshot.empty()

    def _fetch_user_data(self, user_id: str) -> PracticeSnapshot:
        with self._db.connection() as conn:
            has_clients = conn.execute(
                text("SELECT id FROM clients WHERE user_id = :user_id LIMIT 1"),
                {"user_id": user_id},
            ).first()
        if has_clients is None and self._seed_new_users:
            self._seed_starter_data(user_id)
            with self._db.connection() as conn:
                return PracticeSnapshot(clients=self._load_clients(conn, user_id), appointments=[])

        with self._db.connection() as conn:
            clients = self._load_clients(conn, user_id)
            appointments = [
                Appointment(
                    id=row["id"],
                    client_id=row["client_id"],
                    date=row["date"],
                    duration_minutes=int(row["duration_minutes"]),
                    type=row["type"],
                )
                for row in conn.execute(
                    text(
                        """
                        SELECT id, client_id, date, duration_minutes, type
                        FROM appointments
                        WHERE user_id = :user_id
                        ORDER BY date
                        """
                    ),
                    {"user_id": user_id},
                ).mappings()
            ]
        return PracticeSnapshot(clients=clients, appointments=appointments)

    def _load_clients(self, conn: Connection, user_id: str) -> list[Client]:
        clients: list[Client] = []
        rows = conn.execute(
            text(
                """
                SELECT id, name, avatar, status, diagnosis, next_appointment
                FROM clients
                WHERE user_id = :user_id
                ORDER BY created_at, name
                """
            ),
            {"user_id": user_id},
        ).mappings().all()
        for row in rows:
            notes = [
                _note_from_row(note_row)
                for note_row in conn.execute(
                    text(
                        """
                        SELECT id, date, content, summary, sentiment
                        FROM notes
                        WHERE client_id = :client_id
                        ORDER BY date DESC
                        """
                    ),
                    {"client_id": row["id"]},
                ).mappings()
            ]
            documents = [
                _document_from_row(doc_row)
                for doc_row in conn.execute(
                    text(
                        """
                        SELECT id, name, type, upload_date, content
                        FROM documents
                        WHERE client_id = :client_id
                        ORDER BY upload_date DESC
                        """
                    ),
                    {"client_id": row["id"]},
                ).mappings()
            ]
            clients.append(
                Client(
                    id=row["id"],
                    name=row["name"],
                    avatar=row["avatar"] or "",
                    status=row["status"] or "Active",
                    diagnosis=row["diagnosis"],
                    next_appointment=row["next_appointment"],
                    notes=notes,
                    documents=documents,
                )
            )
        return clients

    def _seed_starter_data(self, user_id: str) -> None:
        logger.info("Seeding starter data for new user %s", user_id)
        with self._db.connection() as conn:
            existing_user = conn.execute(
                text("SELECT id FROM users WHERE id = :id"),
                {"id": user_id},
            ).first()
        if existing_user is None:
            # Clients reference users(id); keep the current session usable on a fresh database.
            try:
                with self._db.connection() as conn:
                    conn.execute(
                        text(
                            """
                            INSERT INTO users (id, email, name, password_hash)
                            VALUES (:id, :email, :name, :password_hash)
                            """
                        ),
                        {
                            "id": user_id,
                            "email": f"recovered_{user_id}@example.com",
                            "name": "Recovered User",
                            "password_hash": "placeholder",
                        },
                    )
            except SQLAlchemyError as exc:
                logger.warning("Failed to create placeholder user %s during seed: %s", user_id, exc)

        for template in starter_clients():
            client = Client(
                id=f"{template.id}_{user_id}_{uuid.uuid4().hex[:8]}",
                name=template.name,
                avatar=template.avatar,
                status=template.status,
                diagnosis=template.diagnosis,
                next_appointment=template.next_appointment,
            )
            self.create_client(user_id, client)
            for note in template.notes:
                self.add_note(client.id, Note(**{**note.to_dict(), "id": f"n_{uuid.uuid4().hex}"}))
            for doc in template.documents:
                self.add_document(
                    client.id,
                    DocumentFile(
                        id=f"d_{uuid.uuid4().hex}",
                        name=doc.name,
                        type=doc.type,
                        upload_date=doc.upload_date,
                        content=doc.content,
                    ),
                )

    def create_client(self, user_id: str, client: Client) -> Client:
        with self._db.connection() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO clients (id, user_id, name, avatar, status, diagnosis, next_appointment)
                    VALUES (:id, :user_id, :name, :avatar, :status, :diagnosis, :next_appointment)
                    """
                ),
                {
                    "id": client.id,
                    "user_id": user_id,
                    "name": client.name,
                    "avatar": client.avatar,
                    "status": client.status,
                    "diagnosis": client.diagnosis,
                    "next_appointment": client.next_appointment,
                },
            )
        return client

    def add_note(self, client_id: str, note: Note) -> None:
        with self._db.connection() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO notes (id, client_id, date, content, summary, sentiment)
                    VALUES (:id, :client_id, :date, :content, :summary, :sentiment)
                    """
                ),
                {"client_id": client_id, **note.to_dict()},
            )

    def update_note_content(self, note_id: str, content: str) -> None:
        with self._db.connection() as conn:
            conn.execute(
                text("UPDATE notes SET content = :content WHERE id = :id"),
                {"id": note_id, "content": content},
            )

    def add_document(self, client_id: str, doc: DocumentFile) -> None:
        with self._db.connection() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO documents (id, client_id, name, type, upload_date, content)
                    VALUES (:id, :client_id, :name, :type, :upload_date, :content)
                    """
                ),
                {
                    "id": doc.id,
                    "client_id": client_id,
                    "name": doc.name,
                    "type": doc.type,
                    "upload_date": doc.upload_date,
                    "content": doc.content,
                },
            )

    def create_appointment(self, user_id: str, appt: Appointment) -> None:
        with self._db.connection() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO appointments (id, user_id, client_id, date, duration_minutes, type)
                    VALUES (:id, :user_id, :client_id, :date, :duration_minutes, :type)
                    """
                ),
                {
                    "id": appt.id,
                    "user_id": user_id,
                    "client_id": appt.client_id,
                    "date": appt.date,
                    "duration_minutes": appt.duration_minutes,
                    "type": appt.type,
                },
            )
            conn.execute(
                text("UPDATE clients SET next_appointment = :date WHERE id = :client_id"),
                {"date": appt.date, "client_id": appt.client_id},
            )
