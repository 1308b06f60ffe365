from .practice_tools import (
    SCHEDULE_APPOINTMENT_DECLARATION,
    UPDATE_CLIENT_NOTE_DECLARATION,
    PracticeToolset,
    register_tools,
)

__all__ = [
    "PracticeToolset",
    "SCHEDULE_APPOINTMENT_DECLARATION",
    "UPDATE_CLIENT_NOTE_DECLARATION",
    "register_tools",
]
