# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import Config
from ..streaming.command import build_command
from ..streaming.options import AudioMode, StreamConfig, VideoMode
from ..streaming.parser import Event, StreamOpened, parse_output
from ..streaming.worker import ExitEvent, FFmpegWorker, LineEvent
from ..utils.helpers import mask_url
from .compat import CompatItem, analyze
from .exceptions import WorkerLaunchError


DEFAULT_TIMEOUT_S = 5.0


class ProbeFailureKind(str, Enum):
    REFUSED = "refused"
    UNAUTHORIZED = "unauthorized"
    UNREACHABLE = "unreachable"
    MALFORMED_STREAM = "malformed_stream"
    UNKNOWN = "unknown"


# Scanned in order over everything the worker printed; first hit wins
FAILURE_RULES: Tuple[Tuple[re.Pattern, ProbeFailureKind, str], ...] = (
    (
        re.compile(r"Connection refused", re.IGNORECASE),
        ProbeFailureKind.REFUSED,
        "Connection refused: check camera IP and port",
    ),
    (
        re.compile(r"\b401\b|Unauthorized", re.IGNORECASE),
        ProbeFailureKind.UNAUTHORIZED,
        "Authentication failed: check username/password",
    ),
    (
        re.compile(r"No route to host|Network is unreachable|Network unreachable|Host is unreachable", re.IGNORECASE),
        ProbeFailureKind.UNREACHABLE,
        "Camera not reachable: check WiFi and camera IP",
    ),
    (
        re.compile(r"Invalid data", re.IGNORECASE),
        ProbeFailureKind.MALFORMED_STREAM,
        "Invalid RTSP stream: check camera settings",
    ),
)

UNKNOWN_FAILURE = "Cannot connect to stream. Check URL, credentials, and network."


@dataclass(frozen=True)
class StreamInfo:
    """What the worker said about the source's streams."""
    found: bool = False
    video_codec: str = ""
    width: int = 0
    height: int = 0
    fps: float = 0.0
    audio_codec: str = ""
    sample_rate: int = 0
    channels: int = 0


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe: either a full report or a single failure message."""
    success: bool
    video_codec: str = ""
    width: int = 0
    height: int = 0
    fps: float = 0.0
    audio_codec: str = ""
    sample_rate: int = 0
    channels: int = 0
    items: Tuple[CompatItem, ...] = field(default_factory=tuple)
    suggestions: Tuple[str, ...] = field(default_factory=tuple)
    error_message: str = ""
    failure_kind: Optional[ProbeFailureKind] = None

    @classmethod
    def failure(cls, kind: ProbeFailureKind, message: str) -> "ProbeResult":
        return cls(success=False, error_message=message, failure_kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["items"] = [
            {"label": item.label, "value": item.value, "status": item.status.value} for item in self.items
        ]
        data["suggestions"] = list(self.suggestions)
        data["failure_kind"] = self.failure_kind.value if self.failure_kind else None
        return data


def summarize_streams(events: Iterable[Event]) -> StreamInfo:
    """First input video and first input audio stream win."""
    video: Optional[StreamOpened] = None
    audio: Optional[StreamOpened] = None
    for event in events:
        if not isinstance(event, StreamOpened) or event.direction != "input":
            continue
        if event.kind == "video" and video is None:
            video = event
        elif event.kind == "audio" and audio is None:
            audio = event

    if video is None and audio is None:
        return StreamInfo()

    return StreamInfo(
        found=True,
        video_codec=video.codec if video else "",
        width=video.width if video else 0,
        height=video.height if video else 0,
        fps=video.fps if video else 0.0,
        audio_codec=audio.codec if audio else "",
        sample_rate=audio.sample_rate if audio else 0,
        channels=audio.channels if audio else 0,
    )


def classify_failure(text: str) -> Tuple[ProbeFailureKind, str]:
    for pattern, kind, message in FAILURE_RULES:
        if pattern.search(text or ""):
            return kind, message
    return ProbeFailureKind.UNKNOWN, UNKNOWN_FAILURE


def build_result(text: str) -> ProbeResult:
    """Turn the worker's complete output into a ProbeResult.

    The exit code is deliberately not consulted: a zero-frame run normally
    fails, yet the stream layout is printed before that happens.
    """
    info = summarize_streams(parse_output(text))
    if not info.found:
        kind, message = classify_failure(text)
        return ProbeResult.failure(kind, message)

    items, suggestions = analyze(info.video_codec, info.audio_codec, info.width, info.height, info.fps)
    return ProbeResult(
        success=True,
        video_codec=info.video_codec,
        width=info.width,
        height=info.height,
        fps=info.fps,
        audio_codec=info.audio_codec,
        sample_rate=info.sample_rate,
        channels=info.channels,
        items=tuple(items),
        suggestions=tuple(suggestions),
    )


class ProbeCoordinator:
    """Runs a bounded, output-free FFmpeg invocation to characterize a source.

    Probes own their worker and never touch the streaming StatsAggregator, so
    they can run alongside (or instead of) a live session.
    """

    def __init__(
        self,
        worker_factory: Optional[Callable[[List[str]], FFmpegWorker]] = None,
        timeout: Optional[float] = None,
    ):
        self._worker_factory = worker_factory or FFmpegWorker
        self._timeout = float(timeout if timeout is not None else Config.get("probe.timeout_s", DEFAULT_TIMEOUT_S))

    async def probe(self, source: str, transport: str = "tcp", timeout: Optional[float] = None) -> ProbeResult:
        source = (source or "").strip()
        if not source:
            return ProbeResult.failure(ProbeFailureKind.UNKNOWN, "No camera source given")

        timeout = self._timeout if timeout is None else float(timeout)
        config = StreamConfig(
            source=source,
            transport=transport,
            video_mode=VideoMode.PASSTHROUGH,
            audio_mode=AudioMode.PASSTHROUGH,
        )
        args = build_command(config, zero_frame_probe=True)
        logging.getLogger('probe').info(f"probing {mask_url(source)} transport={transport} timeout={timeout}s")

        worker = self._worker_factory(args.to_argv())
        try:
            await worker.start()
        except WorkerLaunchError as e:
            logging.getLogger('probe').error(f"probe launch failed: {e}")
            return ProbeResult.failure(ProbeFailureKind.UNKNOWN, str(e))

        lines: List[str] = []
        try:
            await asyncio.wait_for(self._drain(worker, lines), timeout=timeout)
        except asyncio.TimeoutError:
            logging.getLogger('probe').info(f"probe of {mask_url(source)} hit {timeout}s timeout, stopping worker")
            await worker.cancel()
        except asyncio.CancelledError:
            await worker.cancel()
            raise

        text = "\n".join(lines)
        logging.getLogger('probe').debug(f"FFmpeg output:\n{text}")
        result = build_result(text)
        if result.success:
            logging.getLogger('probe').info(
                f"probe ok: video={result.video_codec} {result.width}x{result.height}@{result.fps:g} "
                f"audio={result.audio_codec or '-'}"
            )
        else:
            logging.getLogger('probe').warning(f"probe failed ({result.failure_kind.value}): {result.error_message}")
        return result

    @staticmethod
    async def _drain(worker: FFmpegWorker, lines: List[str]) -> None:
        async for event in worker.events():
            if isinstance(event, LineEvent):
                lines.append(event.text)
            elif isinstance(event, ExitEvent):
                return


def probe_blocking(source: str, transport: str = "tcp", timeout: Optional[float] = None) -> ProbeResult:
    """Run a probe to completion from synchronous code."""
    return asyncio.run(ProbeCoordinator().probe(source, transport, timeout))
