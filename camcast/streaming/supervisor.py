# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import contextlib
import logging
import platform
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .. import APP_NAME, __version__
from ..config import Config
from ..media.exceptions import ConfigurationError, WorkerLaunchError
from ..utils.helpers import mask_command
from .command import FFmpegArgs, build_command
from .options import StreamConfig
from .parser import Event, Generic, OutputParser, ProgressSnapshot, Severity, StreamOpened
from .retry import MAX_RETRIES, ExitInfo, Outcome, decide
from .stats import StatsAggregator
from .worker import ExitEvent, FFmpegWorker, LineEvent, MetricsEvent


CMD_LOG_CHARS = 120
SEPARATOR = "-" * 37


class SupervisorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    RETRYING = "retrying"
    STOPPING = "stopping"


@dataclass
class Session:
    """One supervised stream, from start() until it terminates (across retries)."""
    config: StreamConfig
    trigger_label: str = ""
    retry_count: int = 0
    started_at: float = 0.0
    worker: Optional[FFmpegWorker] = None

    def secrets(self) -> List[str]:
        """URLs whose credentials or stream keys must never reach a log line."""
        return [self.config.source] + [o.delivery_url for o in self.config.outputs]


WorkerFactory = Callable[[List[str]], FFmpegWorker]
StatusListener = Callable[[str], None]


class ProcessSupervisor:
    """Runs at most one FFmpeg worker at a time and decides what happens when it exits.

    Each session is a single asyncio task. The task is the only consumer of
    the worker's event channel and the only writer of the StatsAggregator, so
    line, metrics and exit notifications are applied strictly one at a time.
    Retry delays are sleeps inside that task; stop() cancels the task, which
    also discards any retry that was waiting. start() and stop() are
    serialized by one lock, so overlapping calls never leave a second
    worker running untracked.
    """

    def __init__(
        self,
        stats: StatsAggregator,
        worker_factory: Optional[WorkerFactory] = None,
        max_retries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.stats = stats
        self._worker_factory: WorkerFactory = worker_factory or FFmpegWorker
        self._max_retries = max_retries if max_retries is not None else int(
            Config.get("retry.max_retries", MAX_RETRIES)
        )
        self._clock = clock
        self._sleep = sleep
        self._session: Optional[Session] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._state = SupervisorState.IDLE
        self._status_listeners: List[StatusListener] = []

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._task is not None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a live-status callback (e.g. a notification); returns an unregister function."""
        self._status_listeners.append(listener)

        def remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return remove

    async def start(self, config: StreamConfig, trigger_label: str = "") -> None:
        """Start streaming config, replacing any running session.

        Raises ConfigurationError without launching anything when the config
        has no source or no usable output.
        """
        try:
            config.validate()
        except ConfigurationError as e:
            self.stats.append_log("ERROR", str(e))
            raise

        async with self._lock:
            if self._task is not None:
                logging.getLogger('supervisor').info("superseding active session")
                await self._cancel_task()

            session = Session(config=config, trigger_label=trigger_label)
            self._session = session
            self._state = SupervisorState.STARTING
            config.log_info(f"label={trigger_label or '-'}")

            task = asyncio.create_task(self._run(session))
            self._task = task
            task.add_done_callback(self._on_done)

    async def stop(self) -> None:
        """Stop the active session. No-op when idle; an explicit stop is never an error."""
        async with self._lock:
            if self._task is None:
                return
            self._state = SupervisorState.STOPPING
            self.stats.append_log("INFO", "Stream stopped by user")
            await self._cancel_task()
            self._finish(None)

    async def wait(self) -> None:
        """Wait for the current session (if any) to terminate on its own."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(task)

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logging.getLogger('supervisor').error(f"session cleanup error: {e!r}")

    def _on_done(self, task: asyncio.Task) -> None:
        try:
            exc = task.exception()
        except asyncio.CancelledError:
            return
        if exc is None:
            return
        logging.getLogger('supervisor').error(f"session crashed: {exc!r}")
        if self._task is task:
            self._task = None
            self._finish(f"Internal error: {exc}")

    # --- session task --------------------------------------------------

    async def _run(self, session: Session) -> None:
        while True:
            self._state = SupervisorState.STARTING
            args = build_command(session.config)
            self._log_preamble(session, args)

            session.started_at = self._clock()
            self.stats.reset(
                running=True,
                start_time=session.started_at,
                retry_count=session.retry_count,
                trigger_label=session.trigger_label,
            )
            self._notify_status("Starting stream...")

            worker = self._worker_factory(args.to_argv())
            session.worker = worker
            try:
                await worker.start()
                self._state = SupervisorState.RUNNING
                exit_event = await self._consume(session, worker)
            except WorkerLaunchError as e:
                self._terminate(str(e))
                return
            except asyncio.CancelledError:
                await worker.cancel()
                raise

            if not await self._after_exit(session, exit_event):
                return

    async def _consume(self, session: Session, worker: FFmpegWorker) -> ExitEvent:
        parser = OutputParser()
        async for event in worker.events():
            if isinstance(event, LineEvent):
                for parsed in parser.feed(event.text):
                    self._handle_output(session, parsed)
            elif isinstance(event, MetricsEvent):
                self._handle_metrics(event.snapshot)
            elif isinstance(event, ExitEvent):
                for parsed in parser.flush():
                    self._handle_output(session, parsed)
                return event
        return ExitEvent(ExitInfo(None), "")

    async def _after_exit(self, session: Session, exit_event: ExitEvent) -> bool:
        """Apply the retry policy. Returns True when the session should relaunch."""
        info = exit_event.exit_info
        decision = decide(info, exit_event.diagnostics, session.retry_count, self._max_retries)

        if decision.outcome is Outcome.SUCCESS:
            self.stats.append_log("OK", "Stream ended cleanly")
            self._terminate(None)
            return False

        if decision.outcome is Outcome.USER_CANCELLED:
            self.stats.append_log("INFO", "FFmpeg session cancelled")
            self._terminate(None)
            return False

        self.stats.append_log("ERROR", info.describe())

        if decision.outcome is Outcome.FATAL:
            if isinstance(decision.error, ConfigurationError):
                self.stats.append_log("ERROR", "Fatal config error, not retrying. Check settings.")
            self._terminate(mask_command(decision.message, session.secrets()))
            return False

        session.retry_count = decision.retry_count
        self._state = SupervisorState.RETRYING
        self.stats.update(retry_count=session.retry_count)
        self.stats.append_log("WARN", f"Auto-retry #{session.retry_count} in {decision.delay_ms // 1000}s...")
        await self._sleep(decision.delay_ms / 1000.0)
        return True

    def _handle_output(self, session: Session, event: Event) -> None:
        if isinstance(event, StreamOpened):
            # Output-side descriptions describe our own encode, not the camera
            if event.direction != "input":
                return
            if event.kind == "video":
                changes = {"video_codec": event.codec}
                if event.width and event.height:
                    changes["resolution"] = f"{event.width}x{event.height}"
                self.stats.update(**changes)
            else:
                self.stats.update(audio_codec=event.codec)
        elif isinstance(event, Generic):
            text = mask_command(event.text, session.secrets())
            if event.severity is Severity.DEBUG:
                logging.getLogger('ffmpeg').debug(text)
            else:
                self.stats.append_log(event.severity.value, text)

    def _handle_metrics(self, snapshot: ProgressSnapshot) -> None:
        self.stats.update(fps=snapshot.fps, kbps=snapshot.kbps, frames_processed=snapshot.frame)
        self._notify_status(f"LIVE: {int(snapshot.kbps)} kbps / {int(snapshot.fps)} fps")

    def _log_preamble(self, session: Session, args: FFmpegArgs) -> None:
        self.stats.append_log(
            "INFO",
            f"Host: {platform.node() or 'unknown'} / {platform.system()} {platform.release()}"
            f" / Python {platform.python_version()}",
        )
        self.stats.append_log("INFO", f"App: {APP_NAME} v{__version__}")
        if session.trigger_label.strip():
            self.stats.append_log("INFO", f'Started by schedule: "{session.trigger_label}"')
        self.stats.append_log("INFO", "Starting stream...")
        command = mask_command(args.to_command(), session.secrets())
        self.stats.append_log("CMD", f"{command[:CMD_LOG_CHARS]}...")

    def _notify_status(self, text: str) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(text)
            except Exception as e:
                logging.getLogger('supervisor').error(f"status listener error: {e!r}")

    def _terminate(self, error: Optional[str]) -> None:
        """Terminal exit from inside the session task."""
        if self._task is asyncio.current_task():
            self._task = None
        self._finish(error)

    def _finish(self, error: Optional[str]) -> None:
        self._session = None
        self._state = SupervisorState.IDLE
        self.stats.update(running=False, error_message=error, trigger_label="")
        if error:
            self.stats.append_log("ERROR", error)
        self.stats.append_log("INFO", SEPARATOR)
        self._notify_status("")
