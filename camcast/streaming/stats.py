# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional


LOG_CAPACITY = 500


@dataclass(frozen=True)
class StreamStats:
    """Snapshot of the current (or last) streaming session."""
    running: bool = False
    start_time: float = 0.0
    frames_processed: int = 0
    fps: float = 0.0
    kbps: float = 0.0
    error_message: Optional[str] = None
    video_codec: str = ""
    audio_codec: str = ""
    resolution: str = ""
    retry_count: int = 0
    trigger_label: str = ""

    def elapsed_seconds(self, now: Optional[float] = None) -> int:
        if not self.running or self.start_time <= 0:
            return 0
        now = time.time() if now is None else now
        return max(0, int(now - self.start_time))

    def duration_formatted(self, now: Optional[float] = None) -> str:
        s = self.elapsed_seconds(now)
        return f"{s // 3600:02d}:{(s % 3600) // 60:02d}:{s % 60:02d}"

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        data = asdict(self)
        data["elapsed_seconds"] = self.elapsed_seconds(now)
        data["duration"] = self.duration_formatted(now)
        return data


class LogBuffer:
    """Bounded ring of timestamped log lines; oldest lines fall off first."""

    def __init__(self, capacity: int = LOG_CAPACITY):
        self._lines: deque[str] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._lines.maxlen or 0

    def append(self, line: str) -> None:
        self._lines.append(line)

    def lines(self) -> List[str]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)


StatsListener = Callable[[StreamStats], None]
LogListener = Callable[[str], None]


class StatsAggregator:
    """Observable session state.

    Exactly one writer (the ProcessSupervisor) calls reset/update/append_log
    from the event loop; readers only see immutable StreamStats snapshots and
    copies of the log ring, or subscribe for pushes.
    """

    def __init__(self, log_capacity: int = LOG_CAPACITY, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._stats = StreamStats()
        self._logs = LogBuffer(log_capacity)
        self._stats_listeners: List[StatsListener] = []
        self._log_listeners: List[LogListener] = []

    @property
    def stats(self) -> StreamStats:
        return self._stats

    def logs(self) -> List[str]:
        return self._logs.lines()

    # --- writer side ---------------------------------------------------

    def reset(self, **fields) -> StreamStats:
        """Replace the snapshot with a fresh one (new session start)."""
        return self._publish(StreamStats(**fields))

    def update(self, **changes) -> StreamStats:
        return self._publish(replace(self._stats, **changes))

    def append_log(self, level: str, message: str) -> str:
        ts = time.strftime("%H:%M:%S", time.localtime(self._clock()))
        line = f"[{ts}] {level}: {message}"
        self._logs.append(line)
        logging.getLogger('stats').debug(line)
        for listener in list(self._log_listeners):
            try:
                listener(line)
            except Exception as e:
                logging.getLogger('stats').error(f"log listener error: {e!r}")
        return line

    def clear_logs(self) -> None:
        self._logs.clear()

    def _publish(self, stats: StreamStats) -> StreamStats:
        self._stats = stats
        for listener in list(self._stats_listeners):
            try:
                listener(stats)
            except Exception as e:
                logging.getLogger('stats').error(f"stats listener error: {e!r}")
        return stats

    # --- reader side ---------------------------------------------------

    def subscribe(self, listener: StatsListener) -> Callable[[], None]:
        """Register a stats listener; returns a function that unregisters it."""
        self._stats_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._stats_listeners:
                self._stats_listeners.remove(listener)

        return unsubscribe

    def subscribe_logs(self, listener: LogListener) -> Callable[[], None]:
        self._log_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._log_listeners:
                self._log_listeners.remove(listener)

        return unsubscribe

    async def watch(self) -> AsyncIterator[StreamStats]:
        """Yield the current snapshot, then every new one. Slow readers only see the latest."""
        queue: asyncio.Queue[StreamStats] = asyncio.Queue(maxsize=1)

        def push(stats: StreamStats) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(stats)

        push(self._stats)
        unsubscribe = self.subscribe(push)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
