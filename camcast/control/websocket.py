# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import contextlib
import json
import logging
from typing import Dict, Any

from aiohttp import WSMessage, WSMsgType, web
from aiohttp.web_ws import WebSocketResponse

from .. import APP_NAME, __version__
from .protocol import ControlProtocol, ControlSession


HEARTBEAT_S = 20.0
PROTOCOL_CLOSE_CODE = 4001


def is_benign_disconnect(exc: BaseException) -> bool:
    """Check if an exception represents a benign disconnection."""
    if isinstance(exc, OSError) and getattr(exc, "winerror", None) in (64, 121):
        return True
    if isinstance(exc, ConnectionResetError):
        return True
    return False


def decode_message(msg: WSMessage) -> Dict[str, Any]:
    """Parse one frame into a control message; raises ValueError when it is not one."""
    if msg.type != WSMsgType.TEXT:
        raise ValueError("expected text message")
    data = json.loads(msg.data)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


class WebSocketControlProtocol(ControlProtocol):
    """Control protocol over an aiohttp WebSocket, one JSON object per text frame."""

    async def send_response(self, session: ControlSession, response: Dict[str, Any]) -> bool:
        ws = session.websocket
        if not ws or ws.closed:
            return False

        try:
            await ws.send_str(json.dumps(response, separators=(",", ":")))
            return True
        except (ConnectionResetError, OSError):
            return False

    async def send_error(self, session: ControlSession, code: str, message: str) -> bool:
        return await self.send_response(session, {
            "type": "error",
            "code": code,
            "message": message
        })

    async def handle_websocket(self, ws: WebSocketResponse, request):
        session = ControlSession(
            client_id=f"ws-{id(ws)}",
            client_ip=request.remote or "unknown",
            websocket=ws
        )

        try:
            if await self._handshake(session):
                await self._serve(session)
        except Exception as exc:
            if is_benign_disconnect(exc):
                logging.getLogger('websocket').info(f"{session.client_ip} dropped ({type(exc).__name__})")
            else:
                logging.getLogger('websocket').warning(f"{session.client_ip} control error: {exc!r}")
        finally:
            await self.cleanup_session(session)
            self.sessions.pop(session.client_id, None)
            logging.getLogger('websocket').info(f"{session.client_ip} dev={session.device_id} disconnected")

    async def _handshake(self, session: ControlSession) -> bool:
        """The first frame must be a hello; anything else closes the connection."""
        try:
            hello = decode_message(await session.websocket.receive())
        except ValueError as e:
            return await self._reject(session, f"invalid hello: {e}")

        if hello.get("type") != "hello":
            return await self._reject(session, "expect 'hello' first")

        session.device_id = hello.get("device_id", "unknown")
        self.sessions[session.client_id] = session
        logging.getLogger('websocket').info(
            f"{session.client_ip} dev={session.device_id} connected, stream {self.supervisor.state.value}"
        )

        await self.send_response(session, {
            "type": "hello_ack",
            "server_version": f"{APP_NAME}/{__version__}",
            "state": self.supervisor.state.value,
        })
        return True

    async def _reject(self, session: ControlSession, message: str) -> bool:
        await self.send_error(session, "proto", message)
        with contextlib.suppress(ConnectionResetError, OSError):
            await session.websocket.close(code=PROTOCOL_CLOSE_CODE, message=b"protocol")
        return False

    async def _serve(self, session: ControlSession) -> None:
        ws = session.websocket
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logging.getLogger('websocket').warning(f"{session.client_ip} connection error: {ws.exception()!r}")
                return
            try:
                data = decode_message(msg)
            except ValueError as e:
                await self.send_error(session, "bad_request", str(e))
                continue
            await self.dispatch(session, data)


CONTROL_KEY = web.AppKey("control", WebSocketControlProtocol)


async def websocket_handler(request):
    """Upgrade /control and hand the socket to the control protocol."""
    ws = WebSocketResponse(heartbeat=HEARTBEAT_S, autoping=True)
    await ws.prepare(request)
    await request.app[CONTROL_KEY].handle_websocket(ws, request)
    return ws
