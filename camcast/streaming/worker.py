# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import List, Optional, Union

from ..config import Config
from ..media.exceptions import WorkerLaunchError
from ..utils.hardware import get_ffmpeg_exe_path
from .parser import ProgressParser, ProgressSnapshot
from .retry import ExitInfo


# -progress on stdout carries metrics; stderr keeps the human-readable log
GLOBAL_FLAGS = ["-hide_banner", "-nostdin", "-progress", "pipe:1", "-nostats"]
DIAGNOSTIC_LINES = 50
TERMINATE_TIMEOUT_S = 3.0
READ_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class LineEvent:
    text: str


@dataclass(frozen=True)
class MetricsEvent:
    snapshot: ProgressSnapshot


@dataclass(frozen=True)
class ExitEvent:
    exit_info: ExitInfo
    diagnostics: str


WorkerEvent = Union[LineEvent, MetricsEvent, ExitEvent]


class FFmpegWorker:
    """One FFmpeg process and the single event channel it feeds.

    stderr lines, progress snapshots and the final exit are all delivered
    through one queue, in arrival order, to whoever iterates events().
    """

    def __init__(self, args: List[str], exe: Optional[str] = None, loglevel: Optional[str] = None):
        self.args = list(args)
        self._exe = exe
        self._loglevel = loglevel or Config.get("ffmpeg.loglevel", "info")
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._queue: asyncio.Queue[WorkerEvent] = asyncio.Queue()
        self._tail: deque[str] = deque(maxlen=DIAGNOSTIC_LINES)
        self._pump_task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def argv(self, exe: str) -> List[str]:
        return [exe, *GLOBAL_FLAGS, "-loglevel", self._loglevel, *self.args]

    async def start(self) -> None:
        exe = self._exe or get_ffmpeg_exe_path(Config.get("ffmpeg.path", None))
        if not exe:
            raise WorkerLaunchError("FFmpeg executable not found (install ffmpeg or imageio-ffmpeg)")

        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.argv(exe),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=READ_LIMIT,
            )
        except OSError as e:
            raise WorkerLaunchError(f"Cannot start FFmpeg ({exe}): {e}") from e

        logging.getLogger('worker').debug(f"ffmpeg pid={self._proc.pid} started")
        self._pump_task = asyncio.create_task(self._pump())

    async def events(self) -> AsyncIterator[WorkerEvent]:
        """Yield events until (and including) the ExitEvent."""
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, ExitEvent):
                return

    async def cancel(self) -> None:
        """Ask FFmpeg to stop, escalating to kill. Safe to call repeatedly."""
        self._cancelled = True
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return

        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=TERMINATE_TIMEOUT_S)
        except asyncio.TimeoutError:
            logging.getLogger('worker').warning(f"ffmpeg pid={proc.pid} ignored SIGTERM, killing")
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while True:
            try:
                raw = await self._proc.stderr.readline()
            except ValueError:
                # Line longer than READ_LIMIT; drop it and keep reading
                continue
            if not raw:
                break
            for text in raw.decode("utf-8", errors="replace").replace("\r", "\n").splitlines():
                if not text.strip():
                    continue
                self._tail.append(text)
                self._queue.put_nowait(LineEvent(text))

    async def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        progress = ProgressParser()
        while True:
            try:
                raw = await self._proc.stdout.readline()
            except ValueError:
                continue
            if not raw:
                break
            snapshot = progress.feed(raw.decode("utf-8", errors="replace"))
            if snapshot is not None:
                self._queue.put_nowait(MetricsEvent(snapshot))

    async def _pump(self) -> None:
        assert self._proc is not None
        returncode: Optional[int] = None
        try:
            await asyncio.gather(self._read_stderr(), self._read_stdout())
            returncode = await self._proc.wait()
        finally:
            self._queue.put_nowait(ExitEvent(ExitInfo(returncode, cancelled=self._cancelled), "\n".join(self._tail)))
            logging.getLogger('worker').debug(f"ffmpeg pid={self._proc.pid} exited rc={returncode}")
