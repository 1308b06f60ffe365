from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "mindfulflow-test.sqlite"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("MINDFULFLOW_CACHE_PATH", str(tmp_path / "local-cache.json"))
    monkeypatch.setenv("GOOGLE_CALENDAR_TOKEN_PATH", str(tmp_path / "missing-token.json"))
    # Keep CI deterministic; AI tests inject fake clients explicitly.
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("API_KEY", "")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client) -> Callable[[str], dict[str, str]]:
    tokens: dict[str, str] = {}

    def _make(user: str) -> dict[str, str]:
        if user not in tokens:
            response = client.post(
                "/auth/register",
                json={"name": user.title(), "email": f"{user}@example.com", "password": f"{user}-secret"},
            )
            assert response.status_code == 200, response.text
            tokens[user] = response.json()["token"]
        return {"Authorization": f"Bearer {tokens[user]}"}

    return _make
