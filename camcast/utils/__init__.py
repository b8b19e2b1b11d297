# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Utility modules for hardware detection, field validation, and helpers."""

from .hardware import get_ffmpeg_exe_path, pick_hw_encoder
from .helpers import is_rtsp_url, join_stream_url, mask_command, mask_url, parse_kbps


__all__ = [
    # Hardware
    "get_ffmpeg_exe_path",
    # Helpers
    "is_rtsp_url",
    "join_stream_url",
    "mask_command",
    "mask_url",
    "parse_kbps",
    "pick_hw_encoder",
]
