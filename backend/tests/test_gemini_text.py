from __future__ import annotations

from fakes import FakeGenAIClient
from integrations.gemini_text import (
    BRIEFING_FAILED,
    BRIEFING_NO_KEY,
    CHAT_EMPTY,
    CHAT_NO_KEY,
    RECAP_NO_KEY,
    GeminiTextService,
    NoteAnalysis,
    build_chat_context,
)
from practice.models import Appointment, Client, DocumentFile, Note


def test_unconfigured_service_returns_fallbacks():
    service = GeminiTextService("")
    note = Note(id="n1", date="2026-03-01T10:00:00Z", content="x")

    assert service.configured is False
    assert service.daily_briefing([], []) == BRIEFING_NO_KEY
    assert service.session_recap(note, "Sarah") == RECAP_NO_KEY
    assert service.analyze_note("anything").to_dict() == {"summary": "", "sentiment": "Neutral", "suggestions": []}
    assert service.chat_with_context([], "", "hello") == CHAT_NO_KEY


def test_briefing_lists_each_session_and_falls_back_on_error():
    fake = FakeGenAIClient(text="Two sessions today.")
    service = GeminiTextService(None, client=fake, model="test-model")
    clients = [Client(id="c1", name="Sarah Jenkins", diagnosis="GAD")]
    appointments = [
        Appointment(id="a1", client_id="c1", date="2026-03-02T14:30:00Z"),
        Appointment(id="a2", client_id="unknown", date="2026-03-02T16:00:00Z", summary="Session with Zed"),
    ]

    assert service.daily_briefing(appointments, clients) == "Two sessions today."
    prompt = fake.calls[0]["contents"]
    assert fake.calls[0]["model"] == "test-model"
    assert "02:30 PM with Sarah Jenkins (GAD)" in prompt
    assert "04:00 PM with Session with Zed (no diagnosis on file)" in prompt

    failing = GeminiTextService(None, client=FakeGenAIClient(error=RuntimeError("quota")))
    assert failing.daily_briefing(appointments, clients) == BRIEFING_FAILED


def test_analyze_note_requests_json_and_normalizes_sentiment():
    fake = FakeGenAIClient(text='{"summary": "Better sleep.", "sentiment": "concern", "suggestions": ["Sleep log", ""]}')
    analysis = GeminiTextService(None, client=fake).analyze_note("Slept 6 hours.")

    assert fake.calls[0]["config"].response_mime_type == "application/json"
    assert analysis == NoteAnalysis(summary="Better sleep.", sentiment="Concern", suggestions=["Sleep log"])


def test_analyze_note_unknown_sentiment_becomes_neutral():
    fake = FakeGenAIClient(text='{"summary": "Flat affect.", "sentiment": "Melancholy"}')

    assert GeminiTextService(None, client=fake).analyze_note("...").sentiment == "Neutral"


def test_analyze_note_invalid_json_is_a_failed_analysis():
    fake = FakeGenAIClient(text="not json at all")

    assert GeminiTextService(None, client=fake).analyze_note("...") == NoteAnalysis.failed()


def test_chat_sends_only_recent_turns():
    fake = FakeGenAIClient(text=None)
    history = [{"role": "user" if i % 2 == 0 else "model", "text": f"turn-{i}"} for i in range(6)]

    reply = GeminiTextService(None, client=fake).chat_with_context(history, "Context here", "What changed?")

    assert reply == CHAT_EMPTY
    prompt = fake.calls[0]["contents"]
    assert "turn-0" not in prompt and "turn-1" not in prompt
    assert "user: turn-2" in prompt and "model: turn-5" in prompt
    assert "User Query: What changed?" in prompt


def test_chat_context_prefers_active_document():
    client = Client(
        id="c1",
        name="Sarah",
        notes=[
            Note(id="n2", date="2026-02-01", content="Second"),
            Note(id="n1", date="2026-01-01", content="First"),
        ],
    )

    assert build_chat_context(client) == "Date: 2026-02-01\nContent: Second\n---\nDate: 2026-01-01\nContent: First"
    doc = DocumentFile(id="d1", name="Intake.pdf", type="application/pdf", upload_date="2026-01-01")
    assert build_chat_context(client, doc) == "Active File: Intake.pdf\nContent: (Simulated)"
