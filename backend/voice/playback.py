from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from .audio import PLAYBACK_SAMPLE_RATE, duration_seconds


@dataclass
class ScheduledChunk:
    handle: int
    start: float
    end: float


class PlaybackScheduler:
    """Back-to-back scheduling of decoded chunks on an output timeline.

    Each chunk starts at ``max(clock, next_start)`` and moves the cursor to its
    end, so chunks never overlap. Entries live in an arena keyed by
    monotonically increasing handles and are pruned lazily once their scheduled
    end has passed, or when the output reports them finished.

    ``output`` must expose ``clock()``, ``play(handle, samples, start_at)``,
    ``stop(handle)`` and ``stop_all()``.
    """

    def __init__(self, output: Any, sample_rate: int = PLAYBACK_SAMPLE_RATE) -> None:
        self._output = output
        self.sample_rate = sample_rate
        self.next_start = 0.0
        self._entries: dict[int, ScheduledChunk] = {}
        self._next_handle = 1

    def schedule(self, samples: np.ndarray) -> ScheduledChunk:
        now = float(self._output.clock())
        self.prune(now)
        start = max(now, self.next_start)
        entry = ScheduledChunk(
            handle=self._next_handle,
            start=start,
            end=start + duration_seconds(len(samples), self.sample_rate),
        )
        self._next_handle += 1
        self._entries[entry.handle] = entry
        self.next_start = entry.end
        self._output.play(entry.handle, samples, start)
        return entry

    def complete(self, handle: int) -> None:
        self._entries.pop(handle, None)

    def prune(self, now: float) -> None:
        for handle in [handle for handle, entry in self._entries.items() if entry.end <= now]:
            del self._entries[handle]

    def active_handles(self) -> list[int]:
        return sorted(self._entries)

    def stop_all(self) -> None:
        for handle in list(self._entries):
            self._output.stop(handle)
        self._output.stop_all()
        self._entries.clear()
        self.next_start = 0.0
