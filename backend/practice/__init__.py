from .auth import AuthService, AuthSession, hash_password
from .database import RelationalDB, is_missing_relation
from .errors import (
    ClientNotFoundError,
    DuplicateEmailError,
    InvalidCredentialsError,
    PracticeError,
    StoreUnavailableError,
)
from .local_cache import LocalCache
from .models import Appointment, Client, DocumentFile, Note, PracticeSnapshot, User
from .practice_store import PracticeStore
from .user_store import UserStore
from .workspace import PracticeWorkspace

__all__ = [
    "Appointment",
    "AuthService",
    "AuthSession",
    "Client",
    "ClientNotFoundError",
    "DocumentFile",
    "DuplicateEmailError",
    "InvalidCredentialsError",
    "LocalCache",
    "Note",
    "PracticeError",
    "PracticeSnapshot",
    "PracticeStore",
    "PracticeWorkspace",
    "RelationalDB",
    "StoreUnavailableError",
    "User",
    "UserStore",
    "hash_password",
    "is_missing_relation",
]
