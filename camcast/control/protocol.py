# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Dict, Any, List, Optional
import asyncio
import contextlib
import logging

from ..media.exceptions import ConfigurationError
from ..media.probe import ProbeCoordinator
from ..streaming.options import StreamConfig
from ..streaming.stats import StatsAggregator, StreamStats
from ..streaming.supervisor import ProcessSupervisor
from ..utils.fields import ControlFields, OutputFields, ProbeFields, StreamFields


class ControlSession:
    """Represents a client control session."""

    def __init__(self, client_id: str, client_ip: str, websocket=None):
        self.client_id = client_id
        self.client_ip = client_ip
        self.websocket = websocket
        self.device_id: Optional[str] = None
        # Outbound pushes (stats/log) for subscribed clients, drained by push_task
        self.outbox: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self.push_task: Optional[asyncio.Task] = None
        self.unsubscribers: List[Callable[[], None]] = []
        self.created_at = asyncio.get_running_loop().time()

    @property
    def subscribed(self) -> bool:
        return bool(self.unsubscribers)

    def __repr__(self):
        return f"ControlSession(id={self.client_id}, ip={self.client_ip}, device={self.device_id})"


class ControlProtocol(ABC):
    """Abstract base class for control protocols (WebSocket, HTTP, etc.).

    The supervisor and stats are shared by every client: a stream belongs to
    the server, not to the connection that started it.
    """

    def __init__(self, supervisor: ProcessSupervisor, stats: StatsAggregator, prober: ProbeCoordinator):
        self.supervisor = supervisor
        self.stats = stats
        self.prober = prober
        self.sessions: Dict[str, ControlSession] = {}

    @abstractmethod
    async def send_response(self, session: ControlSession, response: Dict[str, Any]) -> bool:
        """Send a response back to the client. Returns True if successful."""
        pass

    @abstractmethod
    async def send_error(self, session: ControlSession, code: str, message: str) -> bool:
        """Send an error response to the client."""
        pass

    async def handle_start_stream(self, session: ControlSession, params: Dict[str, Any]) -> None:
        """Handle start_stream request: validate, build the config, hand it to the supervisor."""
        ControlFields.validate_fields(params, "start")
        config = StreamConfig.from_params(params)
        label = str(params.get(OutputFields.LABEL.name) or "")

        logging.getLogger('protocol').info(f"start_stream request from session {session.client_id}")
        await self.supervisor.start(config, trigger_label=label)

        await self.send_response(session, {
            "type": "ack",
            "op": "start_stream",
            "applied": config.get_applied_params(),
        })

    async def handle_stop_stream(self, session: ControlSession, params: Dict[str, Any]) -> None:
        """Handle stop_stream request. Stopping an idle supervisor is not an error."""
        ControlFields.validate_fields(params, "stop")
        logging.getLogger('protocol').info(f"stop_stream request from session {session.client_id}")
        await self.supervisor.stop()
        await self.send_response(session, {"type": "ack", "op": "stop_stream"})

    async def handle_probe(self, session: ControlSession, params: Dict[str, Any]) -> None:
        """Handle probe request; the result (success or failure) is always returned as data."""
        ControlFields.validate_fields(params, "probe")
        source = StreamFields.SOURCE.transform(params[StreamFields.SOURCE.name])
        transport = StreamFields.TRANSPORT.transform(params.get(StreamFields.TRANSPORT.name) or "tcp")
        timeout = params.get(ProbeFields.TIMEOUT.name)

        result = await self.prober.probe(source, transport, float(timeout) if timeout is not None else None)
        await self.send_response(session, {"type": "probe_result", **result.to_dict()})

    async def handle_subscribe(self, session: ControlSession, params: Dict[str, Any]) -> None:
        """Start pushing stats snapshots and log lines to this client."""
        if not session.subscribed:
            session.unsubscribers.append(self.stats.subscribe(lambda s: self._push_stats(session, s)))
            session.unsubscribers.append(self.stats.subscribe_logs(lambda line: self._push_log(session, line)))
            session.push_task = asyncio.create_task(self._push_loop(session))

        await self.send_response(session, {
            "type": "ack",
            "op": "subscribe",
            "stats": self.stats.stats.to_dict(),
            "logs": self.stats.logs(),
        })

    async def handle_ping(self, session: ControlSession, params: Dict[str, Any]) -> None:
        """Handle ping request."""
        await self.send_response(session, {"type": "pong", "t": params.get("t")})

    async def dispatch(self, session: ControlSession, data: Dict[str, Any]) -> None:
        """Route one decoded message, reporting failures back to the client."""
        msg_type = data.get("type")
        handlers = {
            "start_stream": self.handle_start_stream,
            "stop_stream": self.handle_stop_stream,
            "probe": self.handle_probe,
            "subscribe": self.handle_subscribe,
            "ping": self.handle_ping,
        }
        handler = handlers.get(msg_type)
        if handler is None:
            await self.send_error(session, "bad_type", f"unknown type {msg_type}")
            return

        try:
            await handler(session, data)
        except ConfigurationError as e:
            await self.send_error(session, "bad_config", str(e))
        except ValueError as e:
            await self.send_error(session, "bad_request", str(e))
        except Exception as e:
            logging.getLogger('protocol').error(f"{msg_type} failed for {session.client_id}: {e!r}")
            await self.send_error(session, "server_error", str(e))

    async def cleanup_session(self, session: ControlSession) -> None:
        """Drop a client's subscriptions. The stream itself keeps running."""
        for unsubscribe in session.unsubscribers:
            unsubscribe()
        session.unsubscribers.clear()

        task, session.push_task = session.push_task, None
        if task and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _push_stats(self, session: ControlSession, stats: StreamStats) -> None:
        session.outbox.put_nowait({"type": "stats", "stats": stats.to_dict()})

    def _push_log(self, session: ControlSession, line: str) -> None:
        session.outbox.put_nowait({"type": "log", "line": line})

    async def _push_loop(self, session: ControlSession) -> None:
        while True:
            message = await session.outbox.get()
            if not await self.send_response(session, message):
                logging.getLogger('protocol').debug(f"push to {session.client_id} failed, dropping")
