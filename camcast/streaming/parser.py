# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Classification of FFmpeg's textual output.

FFmpeg reports stream layout on stderr, e.g.

    Stream #0:0: Video: h264 (Main), yuv420p(progressive), 1920x1080, 25 fps, 25 tbr
    Stream #0:1: Audio: aac (LC), 44100 Hz, stereo, fltp, 128 kb/s

and, with ``-progress pipe:1``, periodic ``key=value`` blocks on stdout that
end with ``progress=continue`` (or ``progress=end``). Some log sinks split one
stream line into a header and continuation lines starting with ':' or ','; those
are joined back before any rule is applied.

Nothing here raises on odd input: unknown text becomes a Generic event and
missing numbers stay at zero.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union


class Severity(str, Enum):
    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DBG"


@dataclass(frozen=True)
class StreamOpened:
    """A stream description line (input or output side)."""
    kind: str  # "video" | "audio"
    direction: str  # "input" | "output"
    codec: str
    width: int = 0
    height: int = 0
    fps: float = 0.0
    sample_rate: int = 0
    channels: int = 0
    text: str = ""


@dataclass(frozen=True)
class ProgressIgnored:
    """A live frame/fps counter line; the metrics channel already covers it."""
    text: str


@dataclass(frozen=True)
class Generic:
    severity: Severity
    text: str


Event = Union[StreamOpened, ProgressIgnored, Generic]


_STREAM_RE = re.compile(r"Stream #\d+:\d+")
_INPUT_HEADER_RE = re.compile(r"^Input #\d+")
_OUTPUT_HEADER_RE = re.compile(r"^Output #\d+")
_VIDEO_CODEC_RE = re.compile(r"Video:\s+(\w+)")
_AUDIO_CODEC_RE = re.compile(r"Audio:\s+(\w+)")
_RESOLUTION_RE = re.compile(r"(?<![\w.])(\d{2,5})[x×](\d{2,5})(?!\d)")
_FPS_RE = re.compile(r"(\d+(?:\.\d+)?)\s+(?:fps|tbr)\b")
_SAMPLE_RATE_RE = re.compile(r"(\d{4,6})\s+Hz")
_LAYOUT_RE = re.compile(r"\d\s+Hz,\s*([^,]+)")
_PROGRESS_RE = re.compile(r"frame=|fps=")
_CONTEXT_PREFIX_RE = re.compile(r"^\[[^\]]*\]\s*")

_LAYOUT_CHANNELS = {
    "mono": 1,
    "stereo": 2,
    "2.1": 3,
    "quad": 4,
    "5.0": 5,
    "5.1": 6,
    "6.1": 7,
    "7.1": 8,
}

# Applied in order to the text with any "[demuxer @ 0x...]" prefix removed; first hit wins.
_SEVERITY_RULES = [
    (re.compile(r"^(error|fatal)\b", re.IGNORECASE), Severity.ERROR),
    (re.compile(r"^warning\b", re.IGNORECASE), Severity.WARN),
    (
        re.compile(
            r"Connection refused|Unauthorized|\b401\b|No route to host|Network is unreachable"
            r"|Invalid data found|Unrecognized option|Option \S+ not found|Invalid option"
            r"|Missing argument for option|Conversion failed|Connection timed out"
            r"|Server returned \d{3}|Error (?:opening|while|writing|initializing|number)"
            r"|I/O error|Broken pipe|Immediate exit requested",
            re.IGNORECASE,
        ),
        Severity.ERROR,
    ),
    (
        re.compile(
            r"deprecated|Past duration|non[- ]monoton|Queue input is backward|max delay reached"
            r"|RTP: missed|decode_slice_header error|concealing \d+",
            re.IGNORECASE,
        ),
        Severity.WARN,
    ),
    (re.compile(r"Stream #|Input #|Output #|Stream mapping|Duration:"), Severity.INFO),
]


def is_continuation(text: str) -> bool:
    return text.startswith(":") or text.startswith(",")


def is_progress(text: str) -> bool:
    return bool(_PROGRESS_RE.search(text))


def coalesce(lines: Iterable[str]) -> List[str]:
    """Trim lines and glue continuation lines onto the logical line before them."""
    out: List[str] = []
    for raw in lines:
        text = raw.strip()
        if not text:
            continue
        if is_continuation(text) and out:
            out[-1] = out[-1] + text
        else:
            out.append(text)
    return out


def classify_severity(text: str) -> Severity:
    body = _CONTEXT_PREFIX_RE.sub("", text.strip())
    for pattern, severity in _SEVERITY_RULES:
        if pattern.search(body):
            return severity
    return Severity.DEBUG


def _to_int(value: Optional[str]) -> int:
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0


def _to_float(value: Optional[str]) -> float:
    try:
        return float(value) if value is not None else 0.0
    except ValueError:
        return 0.0


def _channels(text: str) -> int:
    m = _LAYOUT_RE.search(text)
    if not m:
        return 0
    layout = m.group(1).strip().lower()
    layout = layout.split("(")[0].strip()
    if layout in _LAYOUT_CHANNELS:
        return _LAYOUT_CHANNELS[layout]
    count = re.match(r"(\d+)\s+channels?", layout)
    return int(count.group(1)) if count else 0


def parse_video_stream(text: str, direction: str = "input") -> Optional[StreamOpened]:
    m = _VIDEO_CODEC_RE.search(text)
    if not m:
        return None
    # Only look past the marker, so codec tags and addresses before it never match
    tail = text[m.end():]
    width = height = 0
    res = _RESOLUTION_RE.search(tail)
    if res:
        width, height = _to_int(res.group(1)), _to_int(res.group(2))
    fps_match = _FPS_RE.search(tail)
    fps = _to_float(fps_match.group(1)) if fps_match else 0.0
    return StreamOpened("video", direction, m.group(1), width=width, height=height, fps=fps, text=text)


def parse_audio_stream(text: str, direction: str = "input") -> Optional[StreamOpened]:
    m = _AUDIO_CODEC_RE.search(text)
    if not m:
        return None
    tail = text[m.end():]
    rate = _SAMPLE_RATE_RE.search(tail)
    return StreamOpened(
        "audio",
        direction,
        m.group(1),
        sample_rate=_to_int(rate.group(1)) if rate else 0,
        channels=_channels(tail),
        text=text,
    )


def parse_line(line: str, direction: str = "input") -> List[Event]:
    """Classify one logical line (continuations already joined)."""
    text = line.strip()
    if not text:
        return []
    if is_progress(text):
        return [ProgressIgnored(text)]

    events: List[Event] = []
    if "Video:" in text or "Audio:" in text:
        if _STREAM_RE.search(text):
            opened = parse_video_stream(text, direction) or parse_audio_stream(text, direction)
            if opened is not None:
                events.append(opened)
        # Stream descriptions always surface at INFO
        events.append(Generic(Severity.INFO, text))
        return events

    events.append(Generic(classify_severity(text), text))
    return events


def parse_output(text: str) -> List[Event]:
    """Parse a whole captured log (probe mode) into events, tracking Input/Output sections."""
    parser = OutputParser()
    events: List[Event] = []
    for raw in text.splitlines():
        events.extend(parser.feed(raw))
    events.extend(parser.flush())
    return events


class OutputParser:
    """Incremental line parser for a live worker.

    Holds one logical line back until the next physical line shows whether it
    continues; call flush() when the worker exits.
    """

    def __init__(self):
        self._pending: Optional[str] = None
        self._direction = "input"

    @property
    def direction(self) -> str:
        return self._direction

    def feed(self, raw: str) -> List[Event]:
        text = raw.strip()
        if not text:
            return []
        if is_continuation(text) and self._pending is not None:
            self._pending += text
            return []
        events = self.flush()
        if is_progress(text):
            events.append(ProgressIgnored(text))
            return events
        self._pending = text
        return events

    def flush(self) -> List[Event]:
        if self._pending is None:
            return []
        line, self._pending = self._pending, None
        if _INPUT_HEADER_RE.match(line):
            self._direction = "input"
        elif _OUTPUT_HEADER_RE.match(line):
            self._direction = "output"
        return parse_line(line, self._direction)


@dataclass(frozen=True)
class ProgressSnapshot:
    """One -progress block from the worker."""
    frame: int = 0
    fps: float = 0.0
    kbps: float = 0.0
    total_size: int = 0
    out_time_us: int = 0
    speed: str = ""
    finished: bool = False


_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _first_number(value: Optional[str]) -> float:
    if not value:
        return 0.0
    m = _NUMBER_RE.search(value)
    return float(m.group(0)) if m else 0.0


class ProgressParser:
    """Accumulates key=value lines and yields a snapshot at each progress= line."""

    def __init__(self):
        self._block: dict[str, str] = {}

    def feed(self, line: str) -> Optional[ProgressSnapshot]:
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        key = key.strip()
        value = value.strip()
        self._block[key] = value
        if key != "progress":
            return None

        block, self._block = self._block, {}
        bitrate = block.get("bitrate", "")
        kbps = _first_number(bitrate)
        if "mbits" in bitrate.lower():
            kbps *= 1000
        elif bitrate and "kbits" not in bitrate.lower() and "bits" in bitrate.lower():
            kbps /= 1000
        return ProgressSnapshot(
            frame=int(_first_number(block.get("frame"))),
            fps=_first_number(block.get("fps")),
            kbps=kbps,
            total_size=int(_first_number(block.get("total_size"))),
            out_time_us=int(_first_number(block.get("out_time_us") or block.get("out_time_ms"))),
            speed=block.get("speed", ""),
            finished=value == "end",
        )
