from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Callable

from copilot_core.dispatcher import ToolDispatcher

from .audio import PLAYBACK_SAMPLE_RATE, float32_to_pcm16, pcm16_to_float32, rms
from .playback import PlaybackScheduler

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant for a psychologist's organizer app. You can schedule appointments "
    "on Google Calendar and edit client notes. Be concise. When scheduling, confirming the time."
)

PLAYBACK_QUEUE_CHUNKS = 64


class VoiceSessionError(Exception):
    pass


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"


class VoiceSessionBridge:
    """One live audio exchange with the voice model at a time.

    Idle -> Connecting -> Active -> Idle. Every exit from Active (user stop,
    remote close, task error) runs the same teardown, and a failed start
    releases whatever it had opened before raising VoiceSessionError.

    Collaborators are injected: ``connector.connect(system_instruction,
    declarations)`` returns an async context manager yielding a session with
    ``send_audio``, ``send_tool_responses`` and ``events()``; the capture and
    output factories return microphone/speaker objects shaped like
    ``voice.devices``.
    """

    def __init__(
        self,
        *,
        connector: Any,
        dispatcher: ToolDispatcher,
        capture_factory: Callable[[], Any],
        output_factory: Callable[[], Any],
        declarations: list[dict[str, Any]] | None = None,
        system_instruction: str = SYSTEM_INSTRUCTION,
        playback_sample_rate: int = PLAYBACK_SAMPLE_RATE,
    ) -> None:
        self._connector = connector
        self._dispatcher = dispatcher
        self._capture_factory = capture_factory
        self._output_factory = output_factory
        self._declarations = declarations if declarations is not None else dispatcher.registry.declarations()
        self._system_instruction = system_instruction
        self._playback_sample_rate = playback_sample_rate

        self.state = SessionState.IDLE
        self.volume = 0.0
        self.dropped_frames = 0
        self.last_error: str | None = None
        self.playback: PlaybackScheduler | None = None
        self.capture: Any = None

        self._lock = asyncio.Lock()
        self._stack: AsyncExitStack | None = None
        self._tasks: list[asyncio.Task] = []
        self._supervisor: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "volume": round(self.volume, 4),
            "dropped_frames": self.dropped_frames,
            "last_error": self.last_error,
            "playing_chunks": len(self.playback.active_handles()) if self.playback else 0,
            "next_start": self.playback.next_start if self.playback else 0.0,
        }

    async def toggle(self) -> SessionState:
        await self.start()
        return self.state

    async def start(self) -> None:
        async with self._lock:
            if self.state is not SessionState.IDLE:
                logger.info("Voice session already %s, stopping it", self.state.value)
                await self._teardown()
                return
            self.state = SessionState.CONNECTING
            self.last_error = None
            self.dropped_frames = 0
            stack = AsyncExitStack()
            try:
                session = await self._open(stack)
            except Exception as exc:
                logger.warning("Failed to start voice session: %s", exc)
                await self._close_stack(stack)
                self.state = SessionState.IDLE
                self.volume = 0.0
                self.last_error = str(exc) or exc.__class__.__name__
                raise VoiceSessionError(self.last_error) from exc
            self._stack = stack
            self._launch(session)
            self.state = SessionState.ACTIVE
            logger.info("Voice session connected")

    async def stop(self) -> None:
        async with self._lock:
            await self._teardown()

    async def _open(self, stack: AsyncExitStack) -> Any:
        loop = asyncio.get_running_loop()

        output = self._output_factory()
        output.open()
        stack.callback(output.close)

        playback = PlaybackScheduler(output, sample_rate=self._playback_sample_rate)
        output.on_finished = lambda handle: loop.call_soon_threadsafe(playback.complete, handle)
        stack.callback(playback.stop_all)
        self.playback = playback

        capture = self._capture_factory()
        capture.open()
        stack.callback(capture.close)
        self.capture = capture

        session = await stack.enter_async_context(
            self._connector.connect(self._system_instruction, self._declarations)
        )
        capture.start()
        return session

    def _launch(self, session: Any) -> None:
        send_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=1)
        playback_queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=PLAYBACK_QUEUE_CHUNKS)
        self._tasks = [
            asyncio.create_task(self._capture_loop(self.capture, send_queue), name="voice-capture"),
            asyncio.create_task(self._send_loop(session, send_queue), name="voice-send"),
            asyncio.create_task(self._receive_loop(session, playback_queue), name="voice-receive"),
            asyncio.create_task(self._playback_loop(playback_queue), name="voice-playback"),
        ]
        self._supervisor = asyncio.create_task(self._supervise(list(self._tasks)), name="voice-supervisor")

    async def _capture_loop(self, capture: Any, send_queue: asyncio.Queue[bytes]) -> None:
        while True:
            frame = await capture.read()
            self.volume = rms(frame)
            try:
                send_queue.put_nowait(float32_to_pcm16(frame))
            except asyncio.QueueFull:
                self.dropped_frames += 1

    async def _send_loop(self, session: Any, send_queue: asyncio.Queue[bytes]) -> None:
        while True:
            frame = await send_queue.get()
            try:
                await session.send_audio(frame)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.dropped_frames += 1
                logger.warning("Dropping audio frame after failed send: %s", exc)

    async def _receive_loop(self, session: Any, playback_queue: asyncio.Queue[bytes]) -> None:
        async for event in session.events():
            if event.audio:
                await playback_queue.put(event.audio)
            if event.tool_calls:
                responses = await self._dispatcher.dispatch_all(event.tool_calls)
                await session.send_tool_responses(responses)
        logger.info("Voice endpoint closed the session")

    async def _playback_loop(self, playback_queue: asyncio.Queue[bytes]) -> None:
        while True:
            chunk = await playback_queue.get()
            samples = pcm16_to_float32(chunk)
            if samples.size and self.playback is not None:
                self.playback.schedule(samples)

    async def _supervise(self, tasks: list[asyncio.Task]) -> None:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                self.last_error = str(exc) or exc.__class__.__name__
                logger.warning("Voice task %s failed: %s", task.get_name(), exc)
        async with self._lock:
            if self._supervisor is asyncio.current_task():
                await self._teardown()

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in [*self._tasks, self._supervisor] if task is not None and task is not current]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        self._supervisor = None

        stack, self._stack = self._stack, None
        if stack is not None:
            await self._close_stack(stack)
        was_running = self.state is not SessionState.IDLE
        self.state = SessionState.IDLE
        self.volume = 0.0
        self.capture = None
        if was_running:
            logger.info("Voice session stopped")

    async def _close_stack(self, stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception:
            logger.error("Error while releasing voice session resources", exc_info=True)
