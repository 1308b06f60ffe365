from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from google import genai
from google.genai import types

from copilot_core.models import ToolCall, ToolResponse

from .audio import CAPTURE_SAMPLE_RATE, capture_mime_type
from .bridge import VoiceSessionError

logger = logging.getLogger(__name__)

DEFAULT_LIVE_MODEL = "gemini-2.5-flash-native-audio-preview-09-2025"


@dataclass
class LiveEvent:
    audio: bytes | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


def events_from_message(message: Any) -> list[LiveEvent]:
    events: list[LiveEvent] = []
    server_content = getattr(message, "server_content", None)
    model_turn = getattr(server_content, "model_turn", None) if server_content else None
    for part in getattr(model_turn, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            events.append(LiveEvent(audio=bytes(inline.data)))
    tool_call = getattr(message, "tool_call", None)
    if tool_call is not None and tool_call.function_calls:
        events.append(
            LiveEvent(
                tool_calls=[
                    ToolCall(id=call.id or "", name=call.name or "", args=dict(call.args or {}))
                    for call in tool_call.function_calls
                ]
            )
        )
    return events


class GeminiLiveSession:
    def __init__(self, session: Any, sample_rate: int = CAPTURE_SAMPLE_RATE) -> None:
        self._session = session
        self._mime_type = capture_mime_type(sample_rate)

    async def send_audio(self, pcm: bytes) -> None:
        await self._session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=self._mime_type))

    async def send_tool_responses(self, responses: list[ToolResponse]) -> None:
        await self._session.send_tool_response(
            function_responses=[
                types.FunctionResponse(id=response.id, name=response.name, response=response.as_payload())
                for response in responses
            ]
        )

    async def events(self) -> AsyncIterator[LiveEvent]:
        # receive() ends at every turn boundary; an empty turn means the socket closed.
        while True:
            received = False
            async for message in self._session.receive():
                received = True
                for event in events_from_message(message):
                    yield event
            if not received:
                return


class GeminiLiveConnector:
    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_LIVE_MODEL,
        sample_rate: int = CAPTURE_SAMPLE_RATE,
        client: Any = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self.model = model
        self.sample_rate = sample_rate
        self._client = client

    def build_config(self, system_instruction: str, declarations: list[dict[str, Any]]) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            system_instruction=types.Content(parts=[types.Part(text=system_instruction)]),
            tools=[
                types.Tool(
                    function_declarations=[types.FunctionDeclaration.model_validate(item) for item in declarations]
                )
            ],
        )

    @asynccontextmanager
    async def connect(self, system_instruction: str, declarations: list[dict[str, Any]]) -> AsyncIterator[GeminiLiveSession]:
        if self._client is None:
            if not self._api_key:
                raise VoiceSessionError("API Key missing")
            self._client = genai.Client(api_key=self._api_key)
        config = self.build_config(system_instruction, declarations)
        async with self._client.aio.live.connect(model=self.model, config=config) as session:
            logger.info("Live session connected to %s", self.model)
            yield GeminiLiveSession(session, sample_rate=self.sample_rate)
