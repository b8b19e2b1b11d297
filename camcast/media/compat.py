# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Compatibility report for a probed camera stream.

Checks run in a fixed order (video codec, resolution, frame rate, audio
codec) and a readiness item is always appended last: it is OK unless some
earlier item is ERROR. WARN items never block readiness.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple


MIN_WIDTH = 640
MIN_FPS = 15


class CompatStatus(str, Enum):
    OK = "OK"
    WARN = "WARN"
    ERROR = "ERROR"


@dataclass(frozen=True)
class CompatItem:
    label: str
    value: str
    status: CompatStatus


@dataclass(frozen=True)
class CodecRule:
    """First rule whose keywords appear in the codec name decides the item."""
    keywords: Tuple[str, ...]
    value: Callable[[str], str]
    status: CompatStatus
    suggestion: Optional[Callable[[str], str]] = None

    def matches(self, codec: str) -> bool:
        lowered = codec.lower()
        return any(k in lowered for k in self.keywords)


def _private_label(codec: str) -> str:
    return "PRIVATE" if len(codec) > 8 else codec.upper()


VIDEO_RULES: Tuple[CodecRule, ...] = (
    CodecRule(("h264", "avc"), lambda c: "H.264", CompatStatus.OK),
    CodecRule(
        ("hevc", "h265", "265"),
        lambda c: "H.265 (HEVC)",
        CompatStatus.WARN,
        lambda c: "H.265 detected: requires transcoding. Set Video Codec to libx264 (software encode), "
        "or switch the camera to H.264 for best performance.",
    ),
    CodecRule(
        ("mjpeg", "jpg", "jpeg"),
        lambda c: "MJPEG",
        CompatStatus.ERROR,
        lambda c: "MJPEG cannot be published to live-streaming services. "
        "Change the camera codec to H.264 in the camera web UI.",
    ),
)

VIDEO_FALLBACK = CodecRule(
    (),
    _private_label,
    CompatStatus.WARN,
    lambda c: f"Unknown/private codec '{c}' may not be compatible. Change the camera to H.264.",
)

AUDIO_RULES: Tuple[CodecRule, ...] = (
    CodecRule(("aac",), lambda c: "AAC", CompatStatus.OK),
    CodecRule(
        ("pcm", "g711", "g726", "alaw", "mulaw"),
        lambda c: f"{c.upper()} -> AAC",
        CompatStatus.WARN,
        lambda c: "Audio will be transcoded to AAC (required by live-streaming services)",
    ),
)

AUDIO_FALLBACK = CodecRule((), lambda c: c.upper(), CompatStatus.WARN)


def _apply_codec_rules(
    label: str,
    codec: str,
    rules: Tuple[CodecRule, ...],
    fallback: CodecRule,
    items: List[CompatItem],
    suggestions: List[str],
) -> None:
    codec = (codec or "").strip()
    if not codec:
        return
    rule = next((r for r in rules if r.matches(codec)), fallback)
    items.append(CompatItem(label, rule.value(codec), rule.status))
    if rule.suggestion is not None:
        suggestions.append(rule.suggestion(codec))


def analyze(
    video_codec: str,
    audio_codec: str,
    width: int,
    height: int,
    fps: float,
) -> Tuple[List[CompatItem], List[str]]:
    """Build the ordered compatibility items and remediation suggestions."""
    items: List[CompatItem] = []
    suggestions: List[str] = []

    _apply_codec_rules("VIDEO", video_codec, VIDEO_RULES, VIDEO_FALLBACK, items, suggestions)

    # Zero means "not reported", so no verdict either way
    if width and width > 0:
        ok = width >= MIN_WIDTH
        items.append(CompatItem("RES", f"{width}x{height}", CompatStatus.OK if ok else CompatStatus.WARN))
        if not ok:
            suggestions.append("Low resolution. Increase to 1280x720 minimum in camera settings")

    if fps and fps > 0:
        ok = fps >= MIN_FPS
        items.append(CompatItem("FPS", f"{int(fps)}fps", CompatStatus.OK if ok else CompatStatus.WARN))
        if not ok:
            suggestions.append("Low FPS. Set camera to minimum 15fps in Video settings")

    _apply_codec_rules("AUDIO", audio_codec, AUDIO_RULES, AUDIO_FALLBACK, items, suggestions)

    ready = not any(item.status is CompatStatus.ERROR for item in items)
    items.append(
        CompatItem("READY", "YES" if ready else "NEEDS FIX", CompatStatus.OK if ready else CompatStatus.ERROR)
    )
    return items, suggestions
