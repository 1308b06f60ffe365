from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable

import numpy as np

from .audio import CAPTURE_FRAME_SAMPLES, CAPTURE_SAMPLE_RATE, PLAYBACK_SAMPLE_RATE

logger = logging.getLogger(__name__)


class MicrophoneCapture:
    """Mono float32 microphone frames handed from the PortAudio thread to the event loop."""

    def __init__(
        self,
        sample_rate: int = CAPTURE_SAMPLE_RATE,
        frame_samples: int = CAPTURE_FRAME_SAMPLES,
        device: Any = None,
        max_buffered_frames: int = 8,
    ) -> None:
        self.sample_rate = sample_rate
        self.frame_samples = frame_samples
        self.device = device
        self._max_buffered = max_buffered_frames
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[np.ndarray] | None = None
        self._stream: Any = None

    @property
    def live(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_buffered)
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            blocksize=self.frame_samples,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )

    def start(self) -> None:
        if self._stream is None:
            raise RuntimeError("Microphone stream is not open")
        self._stream.start()

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Microphone status: %s", status)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._offer, indata[:, 0].copy())

    def _offer(self, frame: np.ndarray) -> None:
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            logger.debug("Microphone backlog full, dropping frame")

    async def read(self) -> np.ndarray:
        if self._queue is None:
            raise RuntimeError("Microphone stream is not open")
        return await self._queue.get()

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
        self._queue = None
        self._loop = None


class SpeakerOutput:
    """Mixes scheduled chunks onto a 24 kHz output stream.

    The clock is the number of frames already rendered, in seconds.
    """

    def __init__(self, sample_rate: int = PLAYBACK_SAMPLE_RATE, device: Any = None) -> None:
        self.sample_rate = sample_rate
        self.device = device
        self.on_finished: Callable[[int], None] | None = None
        self._segments: dict[int, tuple[int, np.ndarray]] = {}
        self._frames_rendered = 0
        self._lock = threading.Lock()
        self._stream: Any = None

    def open(self) -> None:
        import sounddevice as sd

        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()

    def clock(self) -> float:
        with self._lock:
            return self._frames_rendered / float(self.sample_rate)

    def play(self, handle: int, samples: np.ndarray, start_at: float) -> None:
        start_frame = int(round(start_at * self.sample_rate))
        with self._lock:
            # A chunk scheduled in the past starts now instead of losing its head.
            start_frame = max(start_frame, self._frames_rendered)
            self._segments[handle] = (start_frame, np.asarray(samples, dtype=np.float32).reshape(-1))

    def stop(self, handle: int) -> None:
        with self._lock:
            self._segments.pop(handle, None)

    def stop_all(self) -> None:
        with self._lock:
            self._segments.clear()

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("Speaker status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        finished: list[int] = []
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for handle, (start, samples) in self._segments.items():
                end = start + len(samples)
                if end <= block_start:
                    finished.append(handle)
                    continue
                if start >= block_end:
                    continue
                lo = max(start, block_start)
                hi = min(end, block_end)
                mix[lo - block_start : hi - block_start] += samples[lo - start : hi - start]
                if end <= block_end:
                    finished.append(handle)
            for handle in finished:
                del self._segments[handle]
            self._frames_rendered = block_end
        outdata[:, 0] = np.clip(mix, -1.0, 1.0)
        callback = self.on_finished
        if callback is not None:
            for handle in finished:
                callback(handle)

    def close(self) -> None:
        self.stop_all()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
        with self._lock:
            self._frames_rendered = 0
