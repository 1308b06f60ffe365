from .calendar import CalendarError, GoogleCalendarAdapter, event_to_appointment, infer_session_type
from .gemini_text import GeminiTextService, NoteAnalysis, build_chat_context

__all__ = [
    "CalendarError",
    "GeminiTextService",
    "GoogleCalendarAdapter",
    "NoteAnalysis",
    "build_chat_context",
    "event_to_appointment",
    "infer_session_type",
]
