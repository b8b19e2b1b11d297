# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Streaming module for camcast.

This module handles the streaming session including:
- Stream configuration and FFmpeg command construction
- FFmpeg output parsing and progress metrics
- Worker supervision with retry/backoff and observable stats
"""

from .command import FFmpegArgs, build_command
from .options import AudioMode, OutputTarget, StreamConfig, VideoMode
from .parser import OutputParser, parse_line, parse_output
from .retry import Outcome, RetryDecision, decide
from .stats import StatsAggregator, StreamStats
from .supervisor import ProcessSupervisor, SupervisorState
from .worker import FFmpegWorker


__all__ = [
    "AudioMode",
    "FFmpegArgs",
    "FFmpegWorker",
    "Outcome",
    "OutputParser",
    "OutputTarget",
    "ProcessSupervisor",
    "RetryDecision",
    "StatsAggregator",
    "StreamConfig",
    "StreamStats",
    "SupervisorState",
    "VideoMode",
    "build_command",
    "decide",
    "parse_line",
    "parse_output",
]
