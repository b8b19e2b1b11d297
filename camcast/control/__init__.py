# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Control protocol implementations for managing the streaming session."""

from ..utils.fields import ControlFields
from .protocol import ControlProtocol, ControlSession
from .websocket import CONTROL_KEY, WebSocketControlProtocol, websocket_handler


__all__ = [
    "CONTROL_KEY",
    "ControlFields",
    "ControlProtocol",
    "ControlSession",
    "WebSocketControlProtocol",
    "websocket_handler",
]
