from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from .database import RelationalDB
from .errors import DuplicateEmailError, InvalidCredentialsError, StoreUnavailableError
from .local_cache import LocalCache
from .models import User
from .user_store import UserStore

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


@dataclass
class AuthSession:
    token: str
    user: User

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token, "user": self.user.to_dict()}


class AuthService:
    def __init__(self, db: RelationalDB, users: UserStore, cache: LocalCache) -> None:
        self._db = db
        self._users = users
        self._cache = cache

    def login(self, email: str, password: str) -> AuthSession:
        email = email.strip().lower()
        password_hash = hash_password(password)
        try:
            user = self._users.find_by_credentials(email, password_hash)
        except (StoreUnavailableError, SQLAlchemyError) as exc:
            logger.warning("Remote login unavailable, checking local credentials: %s", exc)
            user = self._local_login(email, password_hash)
            if user is None:
                raise StoreUnavailableError("Login service unavailable and no local account matched.") from exc
            return self._issue(user)

        if user is None:
            user = self._local_login(email, password_hash)
            if user is None:
                raise InvalidCredentialsError("Invalid email or password")
        return self._issue(user)

    def register(self, name: str, email: str, password: str) -> AuthSession:
        email = email.strip().lower()
        password_hash = hash_password(password)
        user = User(id=str(uuid.uuid4()), name=name.strip(), email=email)
        try:
            self._db.ensure_schema()
            self._users.insert_user(user, password_hash)
        except (StoreUnavailableError, SQLAlchemyError) as exc:
            logger.warning("Remote registration unavailable, storing account locally: %s", exc)
            if self._cache.find_local_user(email) is not None:
                raise DuplicateEmailError("Email already exists") from exc
            self._cache.add_local_user(user, password_hash)
        return self._issue(user)

    def current_user(self, token: str | None) -> User | None:
        if not token:
            return None
        return self._cache.get_session(token)

    def logout(self, token: str) -> None:
        self._cache.drop_session(token)

    def _local_login(self, email: str, password_hash: str) -> User | None:
        record = self._cache.find_local_user(email)
        if record is None or record.get("password_hash") != password_hash:
            return None
        return User.from_dict(record)

    def _issue(self, user: User) -> AuthSession:
        token = secrets.token_urlsafe(32)
        self._cache.put_session(token, user)
        return AuthSession(token=token, user=user)
