from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Any, Callable

import numpy as np


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


class FakeCapture:
    def __init__(self, frames: list[np.ndarray] | None = None, fail_open: Exception | None = None) -> None:
        self.frames = list(frames or [])
        self.fail_open = fail_open
        self.opened = False
        self.started = False
        self.closed = False

    @property
    def live(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.opened = True

    def start(self) -> None:
        self.started = True

    async def read(self) -> np.ndarray:
        if self.frames:
            return self.frames.pop(0)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    def close(self) -> None:
        self.closed = True


class FakeOutput:
    def __init__(self) -> None:
        self.now = 0.0
        self.on_finished = None
        self.opened = False
        self.closed = False
        self.played: list[tuple[int, int, float]] = []
        self.stopped: list[int] = []
        self.stop_all_calls = 0

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def clock(self) -> float:
        return self.now

    def play(self, handle: int, samples: np.ndarray, start_at: float) -> None:
        self.played.append((handle, len(samples), start_at))

    def stop(self, handle: int) -> None:
        self.stopped.append(handle)

    def stop_all(self) -> None:
        self.stop_all_calls += 1


class FakeLiveSession:
    def __init__(self) -> None:
        self.sent_audio: list[bytes] = []
        self.tool_responses: list[list[Any]] = []
        self._events: asyncio.Queue = asyncio.Queue()

    def push(self, event: Any) -> None:
        self._events.put_nowait(event)

    def close_remote(self) -> None:
        self._events.put_nowait(None)

    def fail_remote(self, exc: Exception) -> None:
        self._events.put_nowait(exc)

    async def send_audio(self, pcm: bytes) -> None:
        self.sent_audio.append(pcm)

    async def send_tool_responses(self, responses: list[Any]) -> None:
        self.tool_responses.append(list(responses))

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                return
            if isinstance(event, Exception):
                raise event
            yield event


class FakeConnector:
    def __init__(self, session: FakeLiveSession | None = None, fail: Exception | None = None) -> None:
        self.session = session or FakeLiveSession()
        self.fail = fail
        self.opened = 0
        self.closed = 0
        self.declarations: list[dict[str, Any]] = []

    @asynccontextmanager
    async def connect(self, system_instruction: str, declarations: list[dict[str, Any]]):
        self.declarations = declarations
        if self.fail is not None:
            raise self.fail
        self.opened += 1
        try:
            yield self.session
        finally:
            self.closed += 1


class _FakeRequest:
    def __init__(self, fn: Callable[[], Any]) -> None:
        self._fn = fn

    def execute(self) -> Any:
        return self._fn()


class _FakeEvents:
    def __init__(self, service: FakeCalendarService) -> None:
        self._service = service

    def list(self, **kwargs: Any) -> _FakeRequest:
        self._service.list_calls.append(kwargs)

        def _run() -> dict[str, Any]:
            if self._service.fail_list is not None:
                raise self._service.fail_list
            return {"items": list(self._service.items)}

        return _FakeRequest(_run)

    def insert(self, calendarId: str, body: dict[str, Any]) -> _FakeRequest:
        def _run() -> dict[str, Any]:
            if self._service.fail_insert is not None:
                raise self._service.fail_insert
            created = {"id": f"evt_{len(self._service.inserted) + 1}", "status": "confirmed", **body}
            self._service.inserted.append({"calendarId": calendarId, **body})
            if self._service.list_after_insert:
                self._service.items.append(created)
            return created

        return _FakeRequest(_run)


class FakeCalendarService:
    def __init__(
        self,
        items: list[dict[str, Any]] | None = None,
        *,
        fail_list: Exception | None = None,
        fail_insert: Exception | None = None,
        list_after_insert: bool = False,
    ) -> None:
        self.items = list(items or [])
        self.fail_list = fail_list
        self.fail_insert = fail_insert
        self.list_after_insert = list_after_insert
        self.list_calls: list[dict[str, Any]] = []
        self.inserted: list[dict[str, Any]] = []

    def events(self) -> _FakeEvents:
        return _FakeEvents(self)


class FakeGenAIClient:
    def __init__(self, text: str | None = None, error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.models = SimpleNamespace(generate_content=self._generate_content)

    def _generate_content(self, *, model: str, contents: str, config: Any = None) -> Any:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)
