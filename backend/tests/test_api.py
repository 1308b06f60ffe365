from __future__ import annotations

import asyncio

from fakes import FakeCapture, FakeConnector, FakeOutput


def _first_client(client, headers):
    items = client.get("/clients", headers=headers).json()["items"]
    return next(item for item in items if item["name"] == "Sarah Jenkins")


def test_health_reports_backends(client):
    body = client.get("/health").json()

    assert body == {"ok": True, "store": "remote", "calendar": False, "ai": False}


def test_auth_flow(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer bogus"}).status_code == 401

    registered = client.post(
        "/auth/register", json={"name": "Dr. Ames", "email": "ames@example.com", "password": "pw"}
    )
    assert registered.status_code == 200
    duplicate = client.post(
        "/auth/register", json={"name": "Dr. Ames", "email": "AMES@example.com", "password": "pw"}
    )
    assert duplicate.status_code == 409
    assert client.post("/auth/login", json={"email": "ames@example.com", "password": "nope"}).status_code == 401
    missing = client.post("/auth/register", json={"name": " ", "email": "x@example.com", "password": "pw"})
    assert missing.status_code == 400

    login = client.post("/auth/login", json={"email": "ames@example.com", "password": "pw"})
    headers = {"Authorization": f"Bearer {login.json()['token']}"}
    assert client.get("/auth/me", headers=headers).json()["email"] == "ames@example.com"

    assert client.post("/auth/logout", headers=headers).json() == {"ok": True}
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_new_practice_is_seeded_and_scoped_per_user(client, auth_headers):
    alice = client.get("/practice", headers=auth_headers("alice")).json()
    bob = client.get("/practice", headers=auth_headers("bob")).json()

    assert alice["user"]["email"] == "alice@example.com"
    assert sorted(item["name"] for item in alice["clients"]) == ["Elena Rodriguez", "Michael Chen", "Sarah Jenkins"]
    assert alice["appointments"] == []
    assert alice["sync"] == {"mode": "remote", "pending": 0, "entries": []}
    assert {item["id"] for item in alice["clients"]}.isdisjoint({item["id"] for item in bob["clients"]})


def test_client_crud_and_search(client, auth_headers):
    headers = auth_headers("alice")

    created = client.post("/clients", headers=headers, json={"name": "Nora Quinn", "diagnosis": "Panic Disorder"})
    assert created.status_code == 200
    nora = created.json()
    assert nora["status"] == "Active"
    assert nora["notes"] == []

    assert client.post("/clients", headers=headers, json={"name": "X", "status": "Deleted"}).status_code == 400
    assert client.get(f"/clients/{nora['id']}", headers=headers).json()["name"] == "Nora Quinn"
    assert client.get("/clients/does-not-exist", headers=headers).status_code == 404

    by_diagnosis = client.get("/clients", headers=headers, params={"search": "panic"}).json()["items"]
    assert [item["id"] for item in by_diagnosis] == [nora["id"]]


def test_notes_documents_and_recap(client, auth_headers):
    headers = auth_headers("alice")
    nora = client.post("/clients", headers=headers, json={"name": "Nora Quinn"}).json()

    recap = client.get(f"/clients/{nora['id']}/recap", headers=headers).json()
    assert recap == {"text": "New client file opened. Ready for initial intake notes.", "type": "intake"}

    added = client.post(f"/clients/{nora['id']}/notes", headers=headers, json={"content": "Intake done."})
    assert added.status_code == 200
    assert added.json()["analysis"]["sentiment"] == "Neutral"
    assert client.post(f"/clients/{nora['id']}/notes", headers=headers, json={"content": "  "}).status_code == 400

    doc = client.post(
        f"/clients/{nora['id']}/documents", headers=headers, json={"name": "consent.pdf", "type": "application/pdf"}
    ).json()
    refreshed = client.get(f"/clients/{nora['id']}", headers=headers).json()
    assert refreshed["notes"][0]["content"] == "Intake done."
    assert refreshed["documents"][0]["id"] == doc["id"]

    recap = client.get(f"/clients/{nora['id']}/recap", headers=headers).json()
    assert recap == {"text": "Service unavailable.", "type": "recall"}


def test_chat_and_analysis_degrade_without_api_key(client, auth_headers):
    headers = auth_headers("alice")
    sarah = _first_client(client, headers)

    chat = client.post(f"/clients/{sarah['id']}/chat", headers=headers, json={"query": "How is sleep?"})
    assert chat.json() == {"text": "Service unavailable"}
    missing_doc = client.post(
        f"/clients/{sarah['id']}/chat", headers=headers, json={"query": "?", "documentId": "nope"}
    )
    assert missing_doc.status_code == 404
    assert client.get("/ai/briefing", headers=headers).json() == {"text": "Welcome, Dr. AI. Please check your API key."}
    assert client.post("/ai/analyze-note", headers=headers, json={"text": "x"}).json()["summary"] == ""


def test_appointments(client, auth_headers):
    headers = auth_headers("alice")
    sarah = _first_client(client, headers)

    created = client.post(
        "/appointments",
        headers=headers,
        json={"clientId": sarah["id"], "date": "2030-01-01T10:00:00+00:00", "type": "Virtual"},
    )
    assert created.status_code == 200
    assert created.json()["date"] == "2030-01-01T10:00:00Z"
    assert created.json()["durationMinutes"] == 50

    client.post(
        "/appointments",
        headers=headers,
        json={"clientId": sarah["id"], "date": "2001-01-01T10:00:00Z"},
    )
    upcoming = client.get("/appointments", headers=headers, params={"upcoming": True}).json()["items"]
    assert [item["date"] for item in upcoming] == ["2030-01-01T10:00:00Z"]
    assert len(client.get("/appointments", headers=headers).json()["items"]) == 2

    bad_type = {"clientId": sarah["id"], "date": "2030-01-01T10:00:00Z", "type": "Phone"}
    assert client.post("/appointments", headers=headers, json=bad_type).status_code == 400
    bad_date = {"clientId": sarah["id"], "date": "soon"}
    assert client.post("/appointments", headers=headers, json=bad_date).status_code == 400
    unknown = {"clientId": "ghost", "date": "2030-01-01T10:00:00Z"}
    assert client.post("/appointments", headers=headers, json=unknown).status_code == 404


def test_calendar_endpoints_without_credentials(client, auth_headers):
    headers = auth_headers("alice")

    assert client.get("/calendar/events", headers=headers).json() == {"items": [], "configured": False}
    created = client.post(
        "/calendar/events", headers=headers, json={"summary": "Session", "start": "2030-01-01T10:00:00Z"}
    )
    assert created.status_code == 503


def test_sync_endpoints(client, auth_headers):
    headers = auth_headers("alice")

    assert client.get("/sync", headers=headers).json() == {"mode": "remote", "pending": 0, "entries": []}
    flushed = client.post("/sync/flush", headers=headers).json()
    assert flushed["replayed"] == 0


def test_voice_session_toggle(client, auth_headers, backend_module, monkeypatch):
    headers = auth_headers("alice")
    connector = FakeConnector()
    container = backend_module.container
    monkeypatch.setattr(container, "live", connector)
    monkeypatch.setattr(container, "capture_factory", lambda: FakeCapture())
    monkeypatch.setattr(container, "output_factory", lambda: FakeOutput())

    assert client.get("/voice/session", headers=headers).json() == {"state": "idle"}

    started = client.post("/voice/session", headers=headers).json()
    assert started["state"] == "active"
    assert {item["name"] for item in connector.declarations} == {"scheduleAppointment", "updateClientNote"}
    assert client.get("/voice/session", headers=headers).json()["state"] == "active"

    stopped = client.post("/voice/session", headers=headers).json()
    assert stopped["state"] == "idle"
    assert connector.closed == 1

    client.post("/voice/session", headers=headers)
    assert client.delete("/voice/session", headers=headers).json()["state"] == "idle"
    assert connector.opened == 2
    assert connector.closed == 2


def test_voice_session_failure_is_reported(client, auth_headers, backend_module, monkeypatch):
    headers = auth_headers("alice")
    container = backend_module.container
    monkeypatch.setattr(container, "live", FakeConnector(fail=ConnectionError("handshake refused")))
    monkeypatch.setattr(container, "capture_factory", lambda: FakeCapture())
    monkeypatch.setattr(container, "output_factory", lambda: FakeOutput())

    response = client.post("/voice/session", headers=headers)

    assert response.status_code == 503
    assert "handshake refused" in response.json()["detail"]
    assert client.get("/voice/session", headers=headers).json()["state"] == "idle"
    assert client.get("/voice/session", headers=headers).json()["last_error"] == "handshake refused"


def test_voice_without_api_key_fails_cleanly(client, auth_headers, backend_module, monkeypatch):
    headers = auth_headers("alice")
    container = backend_module.container
    monkeypatch.setattr(container, "capture_factory", lambda: FakeCapture())
    monkeypatch.setattr(container, "output_factory", lambda: FakeOutput())

    response = client.post("/voice/session", headers=headers)

    assert response.status_code == 503
    assert "API Key missing" in response.json()["detail"]


def test_overlapping_voice_toggles_never_leave_two_sessions_open(backend_module, auth_headers):
    user_id = backend_module.container.auth.current_user(
        auth_headers("alice")["Authorization"].split(" ", 1)[1]
    ).id
    container = backend_module.MindfulFlowApp(backend_module.settings)
    connector = FakeConnector()
    container.live = connector
    container.capture_factory = lambda: FakeCapture()
    container.output_factory = lambda: FakeOutput()

    async def scenario():
        await asyncio.gather(container.toggle_voice(user_id), container.toggle_voice(user_id))
        await container.stop_voice()

    asyncio.run(scenario())

    assert connector.opened == 1
    assert connector.closed == connector.opened
    assert container.voice_status()["state"] == "idle"
