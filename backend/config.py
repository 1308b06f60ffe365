from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
BACKEND_DIR = Path(__file__).resolve().parent


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def bootstrap_local_env() -> None:
    repo_root = BACKEND_DIR.parent
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str
    cache_path: str
    gemini_api_key: str
    text_model: str
    live_model: str
    calendar_id: str
    calendar_token_path: str
    calendar_timezone: str
    capture_sample_rate: int
    playback_sample_rate: int
    capture_frame_samples: int
    seed_new_users: bool
    allowed_origins: tuple[str, ...]
    log_level: str


def load_settings() -> Settings:
    origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "").strip(),
        cache_path=os.getenv("MINDFULFLOW_CACHE_PATH", str(BACKEND_DIR / "mindfulflow-cache.json")),
        gemini_api_key=(os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip(),
        text_model=os.getenv("MINDFULFLOW_TEXT_MODEL", "gemini-2.5-flash"),
        live_model=os.getenv("MINDFULFLOW_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025"),
        calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
        calendar_token_path=os.getenv("GOOGLE_CALENDAR_TOKEN_PATH", str(BACKEND_DIR / "token.json")),
        calendar_timezone=os.getenv("MINDFULFLOW_TIMEZONE", "UTC"),
        capture_sample_rate=_env_int("MINDFULFLOW_CAPTURE_RATE", 16000),
        playback_sample_rate=_env_int("MINDFULFLOW_PLAYBACK_RATE", 24000),
        capture_frame_samples=_env_int("MINDFULFLOW_CAPTURE_FRAME", 4096),
        seed_new_users=_env_flag("MINDFULFLOW_SEED_NEW_USERS", True),
        allowed_origins=tuple(origin.strip() for origin in origins if origin.strip()),
        log_level=os.getenv("MINDFULFLOW_LOG_LEVEL", "INFO").upper(),
    )
