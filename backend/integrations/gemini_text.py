from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from google import genai
from google.genai import types

from practice.models import SENTIMENTS, Appointment, Client, DocumentFile, Note
from practice.time_utils import parse_iso, utc_now

logger = logging.getLogger(__name__)

BRIEFING_NO_KEY = "Welcome, Dr. AI. Please check your API key."
BRIEFING_EMPTY = "You have a few sessions today."
BRIEFING_FAILED = "Ready for your sessions today."
RECAP_NO_KEY = "Service unavailable."
RECAP_EMPTY = "Could not generate recap."
RECAP_FAILED = "Unable to access session history."
CHAT_NO_KEY = "Service unavailable"
CHAT_EMPTY = "I couldn't find that information."
CHAT_FAILED = "I'm having trouble connecting right now."
NEW_CLIENT_GREETING = "New client file opened. Ready for initial intake notes."

CHAT_HISTORY_TURNS = 4


@dataclass
class NoteAnalysis:
    summary: str
    sentiment: str = "Neutral"
    suggestions: list[str] = field(default_factory=list)

    @classmethod
    def failed(cls) -> NoteAnalysis:
        return cls(summary="Analysis failed", sentiment="Neutral", suggestions=[])

    @classmethod
    def from_payload(cls, payload: Any) -> NoteAnalysis:
        if not isinstance(payload, dict):
            raise ValueError("Analysis response is not a JSON object")
        sentiment = str(payload.get("sentiment") or "Neutral").strip().capitalize()
        if sentiment not in SENTIMENTS:
            sentiment = "Neutral"
        suggestions = payload.get("suggestions") or []
        if not isinstance(suggestions, list):
            suggestions = [suggestions]
        return cls(
            summary=str(payload.get("summary") or ""),
            sentiment=sentiment,
            suggestions=[str(item) for item in suggestions if str(item).strip()],
        )

    def to_dict(self) -> dict[str, Any]:
        return {"summary": self.summary, "sentiment": self.sentiment, "suggestions": self.suggestions}


def build_chat_context(client: Client, active_document: DocumentFile | None = None) -> str:
    if active_document is not None:
        return f"Active File: {active_document.name}\nContent: {active_document.content or '(Simulated)'}"
    return "\n---\n".join(f"Date: {note.date}\nContent: {note.content}" for note in client.notes)


def _format_time(value: str) -> str:
    parsed = parse_iso(value)
    return parsed.strftime("%I:%M %p") if parsed else value


def _format_date(value: str) -> str:
    parsed = parse_iso(value)
    return parsed.strftime("%Y-%m-%d") if parsed else value


class GeminiTextService:
    def __init__(self, api_key: str | None, *, model: str = "gemini-2.5-flash", client: Any = None) -> None:
        self._api_key = (api_key or "").strip()
        self.model = model
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _generate(self, prompt: str, *, json_mode: bool = False) -> str | None:
        config = types.GenerateContentConfig(response_mime_type="application/json") if json_mode else None
        response = self._get_client().models.generate_content(model=self.model, contents=prompt, config=config)
        return response.text

    def daily_briefing(self, appointments: list[Appointment], clients: list[Client]) -> str:
        if not self.configured:
            return BRIEFING_NO_KEY
        by_id = {client.id: client for client in clients}
        details = []
        for appt in appointments:
            client = by_id.get(appt.client_id)
            name = client.name if client else (appt.summary or "an unknown client")
            diagnosis = client.diagnosis if client else None
            details.append(f"{_format_time(appt.date)} with {name} ({diagnosis or 'no diagnosis on file'})")
        prompt = f"""
You are an executive assistant for a psychologist. Today is {utc_now().strftime('%A, %B %d, %Y')}.
Here is the schedule: {', '.join(details) or 'no sessions booked'}.

Write a 2-3 sentence warm, minimalist morning briefing.
Mention how many sessions there are and highlight if there's a busy block.
Do not use bullet points. Be conversational and calm.
"""
        try:
            return self._generate(prompt) or BRIEFING_EMPTY
        except Exception as exc:
            logger.warning("Daily briefing generation failed: %s", exc)
            return BRIEFING_FAILED

    def session_recap(self, last_note: Note, client_name: str) -> str:
        if not self.configured:
            return RECAP_NO_KEY
        prompt = f"""
You are a helpful AI co-pilot for a psychologist.
User is seeing client "{client_name}".
Last session date: {_format_date(last_note.date)}.
Last session notes: "{last_note.content}".

Write a short, natural paragraph reminding the psychologist what happened last time.
End with one relevant follow-up question they might want to ask the client today.
"""
        try:
            return self._generate(prompt) or RECAP_EMPTY
        except Exception as exc:
            logger.warning("Session recap generation failed for %s: %s", client_name, exc)
            return RECAP_FAILED

    def analyze_note(self, text: str) -> NoteAnalysis:
        if not self.configured:
            return NoteAnalysis(summary="", sentiment="Neutral", suggestions=[])
        prompt = f"""
Analyze these therapy notes:
"{text}"

Output JSON with:
- "summary": 1 sentence summary.
- "sentiment": "Positive", "Neutral", or "Concern".
- "suggestions": Array of 2 very brief (3-4 words) interventions.
"""
        try:
            raw = self._generate(prompt, json_mode=True)
            if not raw:
                raise ValueError("No response text")
            return NoteAnalysis.from_payload(json.loads(raw))
        except Exception as exc:
            logger.warning("Error analyzing note: %s", exc)
            return NoteAnalysis.failed()

    def chat_with_context(self, history: list[dict[str, str]], context: str, query: str) -> str:
        if not self.configured:
            return CHAT_NO_KEY
        recent = history[-CHAT_HISTORY_TURNS:] if history else []
        history_text = "\n".join(f"{turn.get('role', 'user')}: {turn.get('text', '')}" for turn in recent)
        prompt = f"""
System: You are a helpful assistant for a psychologist. Answer based on the context provided. Be brief and professional.

Context (Notes/Files):
{context}

Chat History:
{history_text}

User Query: {query}
"""
        try:
            return self._generate(prompt) or CHAT_EMPTY
        except Exception as exc:
            logger.warning("Context chat failed: %s", exc)
            return CHAT_FAILED
