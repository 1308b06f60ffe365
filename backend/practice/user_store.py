from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .database import RelationalDB
from .errors import DuplicateEmailError
from .models import User


class UserStore:
    def __init__(self, db: RelationalDB) -> None:
        self._db = db

    def find_by_credentials(self, email: str, password_hash: str) -> User | None:
        with self._db.connection() as conn:
            row = conn.execute(
                text(
                    """
                    SELECT id, name, email
                    FROM users
                    WHERE email = :email AND password_hash = :password_hash
                    """
                ),
                {"email": email, "password_hash": password_hash},
            ).mappings().first()
        if row is None:
            return None
        return User(id=row["id"], name=row["name"] or "", email=row["email"])

    def get_user(self, user_id: str) -> User | None:
        with self._db.connection() as conn:
            row = conn.execute(
                text("SELECT id, name, email FROM users WHERE id = :id"),
                {"id": user_id},
            ).mappings().first()
        if row is None:
            return None
        return User(id=row["id"], name=row["name"] or "", email=row["email"])

    def insert_user(self, user: User, password_hash: str) -> User:
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
                        "id": user.id,
                        "email": user.email,
                        "name": user.name,
                        "password_hash": password_hash,
                    },
                )
        except IntegrityError as exc:
            raise DuplicateEmailError("Email already exists") from exc
        return user
