from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from .models import PracticeSnapshot, User
from .seed import starter_snapshot

logger = logging.getLogger(__name__)

SESSIONS_KEY = "mindfulflow_sessions"
USERS_KEY = "mindfulflow_users"


def user_data_key(user_id: str) -> str:
    return f"mindfulflow_data_{user_id}"


def pending_writes_key(user_id: str) -> str:
    return f"mindfulflow_pending_{user_id}"


class LocalCache:
    """JSON-file key/value store standing in for browser storage.

    With no path the cache lives in memory only.
    """

    def __init__(self, path: str | Path | None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._read()

    def _read(self) -> dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable local cache %s: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._data.get(key, default)
        return json.loads(json.dumps(value)) if value is not None else default

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = json.loads(json.dumps(value))
            self._flush()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def load_user_data(self, user_id: str) -> PracticeSnapshot:
        stored = self.get(user_data_key(user_id))
        if stored:
            return PracticeSnapshot.from_dict(stored)
        snapshot = starter_snapshot()
        self.save_user_data(user_id, snapshot)
        return snapshot

    def save_user_data(self, user_id: str, snapshot: PracticeSnapshot) -> None:
        self.set(user_data_key(user_id), snapshot.to_dict())

    def load_pending(self, user_id: str) -> list[dict[str, Any]]:
        return list(self.get(pending_writes_key(user_id), []))

    def save_pending(self, user_id: str, entries: list[dict[str, Any]]) -> None:
        if entries:
            self.set(pending_writes_key(user_id), entries)
        else:
            self.delete(pending_writes_key(user_id))

    def put_session(self, token: str, user: User) -> None:
        sessions = self.get(SESSIONS_KEY, {})
        sessions[token] = user.to_dict()
        self.set(SESSIONS_KEY, sessions)

    def get_session(self, token: str) -> User | None:
        payload = self.get(SESSIONS_KEY, {}).get(token)
        return User.from_dict(payload) if payload else None

    def drop_session(self, token: str) -> None:
        sessions = self.get(SESSIONS_KEY, {})
        if sessions.pop(token, None) is not None:
            self.set(SESSIONS_KEY, sessions)

    def find_local_user(self, email: str) -> dict[str, Any] | None:
        for record in self.get(USERS_KEY, []):
            if record.get("email") == email:
                return record
        return None

    def add_local_user(self, user: User, password_hash: str) -> None:
        records = self.get(USERS_KEY, [])
        records.append({**user.to_dict(), "password_hash": password_hash})
        self.set(USERS_KEY, records)
