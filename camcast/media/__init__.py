# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Source-side modules: engine exceptions, compatibility analysis, and probing."""

from .compat import CompatItem, CompatStatus, analyze
from .exceptions import (
    ConfigurationError,
    StreamEngineError,
    TransientWorkerFailure,
    WorkerLaunchError,
)


# probe depends on the streaming package; import it as camcast.media.probe
__all__ = [
    "CompatItem",
    "CompatStatus",
    "ConfigurationError",
    "StreamEngineError",
    "TransientWorkerFailure",
    "WorkerLaunchError",
    "analyze",
]
