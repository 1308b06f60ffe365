from .bridge import SYSTEM_INSTRUCTION, SessionState, VoiceSessionBridge, VoiceSessionError
from .playback import PlaybackScheduler, ScheduledChunk

__all__ = [
    "PlaybackScheduler",
    "SYSTEM_INSTRUCTION",
    "ScheduledChunk",
    "SessionState",
    "VoiceSessionBridge",
    "VoiceSessionError",
]
