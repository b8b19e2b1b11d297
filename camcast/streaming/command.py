# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""FFmpeg invocation builder.

The command is assembled as an ordered list of flag/value pairs and only
serialized at the end, so each stage can be checked on its own. Building is
a pure function of the StreamConfig: no clocks, no environment lookups.
"""

import re
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..utils.helpers import is_rtsp_url, parse_kbps
from .options import AudioMode, StreamConfig, VideoMode


CONNECT_TIMEOUT_US = 5_000_000
STREAM_ANALYZE_US = 1_000_000
PROBE_ANALYZE_US = 2_000_000
KEYFRAME_INTERVAL = 50
AAC_BITRATE = "128k"
AAC_SAMPLE_RATE = 44100
NULL_SINK = "-"

_RESOLUTION_RE = re.compile(r"^(\d{2,5})x(\d{2,5})$")


@dataclass
class FFmpegArgs:
    """Ordered FFmpeg options followed by one output destination."""

    options: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    destination: str = NULL_SINK

    def add(self, flag: str, value: Optional[object] = None) -> "FFmpegArgs":
        self.options.append((flag, None if value is None else str(value)))
        return self

    def get(self, flag: str) -> Optional[str]:
        """Value of the last occurrence of a flag (None if absent or valueless)."""
        for name, value in reversed(self.options):
            if name == flag:
                return value
        return None

    def get_all(self, flag: str) -> List[Optional[str]]:
        return [value for name, value in self.options if name == flag]

    def has(self, flag: str) -> bool:
        return any(name == flag for name, _ in self.options)

    @property
    def flags(self) -> List[str]:
        return [name for name, _ in self.options]

    @property
    def output_format(self) -> Optional[str]:
        return self.get("-f")

    def to_argv(self) -> List[str]:
        argv: List[str] = []
        for name, value in self.options:
            argv.append(name)
            if value is not None:
                argv.append(value)
        argv.append(self.destination)
        return argv

    def to_command(self) -> str:
        """Shell-quoted single-string form, for logs and display."""
        return shlex.join(self.to_argv())


def parse_resolution(resolution: str) -> Optional[Tuple[int, int]]:
    """'1280x720' -> (1280, 720); 'source' or anything malformed -> None."""
    m = _RESOLUTION_RE.match(str(resolution or "").strip().lower())
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def _input_stage(args: FFmpegArgs, config: StreamConfig, zero_frame_probe: bool) -> None:
    if is_rtsp_url(config.source):
        args.add("-rtsp_transport", config.transport)
    args.add("-fflags", "+nobuffer+genpts")
    args.add("-flags", "low_delay")
    args.add("-timeout", CONNECT_TIMEOUT_US)
    analyze = PROBE_ANALYZE_US if zero_frame_probe else STREAM_ANALYZE_US
    args.add("-analyzeduration", analyze)
    args.add("-probesize", analyze)
    args.add("-i", config.source)


def _video_stage(args: FFmpegArgs, config: StreamConfig) -> None:
    if config.video_mode is VideoMode.PASSTHROUGH:
        args.add("-c:v", "copy")
    elif config.video_mode is VideoMode.HARDWARE:
        args.add("-c:v", config.hw_encoder or "h264")
        args.add("-b:v", config.bitrate)
    else:
        args.add("-c:v", "libx264")
        args.add("-preset", config.preset)
        args.add("-b:v", config.bitrate)
        args.add("-maxrate", config.bitrate)
        args.add("-bufsize", f"{parse_kbps(config.bitrate) * 2}k")
        args.add("-tune", "zerolatency")
        args.add("-g", KEYFRAME_INTERVAL)


def _scale_stage(args: FFmpegArgs, config: StreamConfig) -> None:
    size = parse_resolution(config.resolution)
    # A copied stream cannot be filtered
    if size is None or config.video_mode is VideoMode.PASSTHROUGH:
        return
    args.add("-vf", f"scale={size[0]}:{size[1]}")


def _audio_stage(args: FFmpegArgs, config: StreamConfig) -> None:
    if config.audio_mode is AudioMode.PASSTHROUGH:
        args.add("-c:a", "copy")
    else:
        args.add("-c:a", "aac")
        args.add("-b:a", AAC_BITRATE)
        args.add("-ar", AAC_SAMPLE_RATE)


def _output_stage(args: FFmpegArgs, config: StreamConfig, zero_frame_probe: bool) -> None:
    if config.video_mode is not VideoMode.PASSTHROUGH:
        args.add("-pix_fmt", "yuv420p")

    if zero_frame_probe:
        args.add("-frames:v", 0)
        args.add("-f", "null")
        args.destination = NULL_SINK
        return

    urls = [o.delivery_url for o in config.usable_outputs()]
    if not urls:
        # Deliberate "no destination configured" sink; the run itself is harmless
        args.add("-f", "null")
        args.destination = NULL_SINK
    elif len(urls) == 1:
        args.add("-f", "flv")
        args.destination = urls[0]
    else:
        # tee muxes once and aborts on any slave failure: every destination or none
        args.add("-map", "0:v")
        args.add("-map", "0:a?")
        args.add("-f", "tee")
        args.destination = "|".join(f"[f=flv]{url}" for url in urls)


def build_command(config: StreamConfig, zero_frame_probe: bool = False) -> FFmpegArgs:
    """Build the FFmpeg arguments for a config (without the executable or global flags)."""
    args = FFmpegArgs()
    _input_stage(args, config, zero_frame_probe)
    _video_stage(args, config)
    _scale_stage(args, config)
    _audio_stage(args, config)
    _output_stage(args, config, zero_frame_probe)
    return args
