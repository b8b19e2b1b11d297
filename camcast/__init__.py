# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""camcast: relay an IP camera to live-streaming services through FFmpeg."""

APP_NAME = "camcast"
__version__ = "1.0.0"
