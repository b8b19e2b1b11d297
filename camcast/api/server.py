# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from .. import APP_NAME, __version__
from ..config import Config
from ..control.websocket import CONTROL_KEY, WebSocketControlProtocol, websocket_handler
from ..media.exceptions import ConfigurationError
from ..media.probe import ProbeCoordinator
from ..streaming.options import StreamConfig
from ..streaming.stats import StatsAggregator
from ..streaming.supervisor import ProcessSupervisor
from ..utils.fields import ControlFields, OutputFields, ProbeFields, StreamFields


SUPERVISOR_KEY = web.AppKey("supervisor", ProcessSupervisor)
STATS_KEY = web.AppKey("stats", StatsAggregator)
PROBER_KEY = web.AppKey("prober", ProbeCoordinator)


async def _read_params(request: web.Request) -> Dict[str, Any]:
    """JSON body as a dict; an empty body means no parameters."""
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid json: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


async def health_check_handler(request):
    """Simple health check endpoint."""
    return web.json_response({"status": "ok", "service": APP_NAME, "version": __version__})


async def stats_handler(request):
    supervisor = request.app[SUPERVISOR_KEY]
    data = request.app[STATS_KEY].stats.to_dict()
    data["state"] = supervisor.state.value
    return web.json_response(data)


async def logs_handler(request):
    return web.json_response({"lines": request.app[STATS_KEY].logs()})


async def clear_logs_handler(request):
    request.app[STATS_KEY].clear_logs()
    return web.json_response({"status": "cleared"})


async def start_stream_handler(request):
    """Handle POST /api/stream/start. Body fields override configured stream defaults."""
    try:
        params = await _read_params(request)
        ControlFields.validate_fields(params, "start")
        config = StreamConfig.from_params(params)
        await request.app[SUPERVISOR_KEY].start(config, trigger_label=str(params.get(OutputFields.LABEL.name) or ""))
    except ConfigurationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except ValueError as e:
        return web.json_response({"error": f"Invalid parameter: {e}"}, status=400)

    return web.json_response({"status": "started", "applied": config.get_applied_params()})


async def stop_stream_handler(request):
    await request.app[SUPERVISOR_KEY].stop()
    return web.json_response({"status": "stopped"})


async def probe_handler(request):
    """Handle POST /api/probe. Probe failures are a normal 200 result with success=false."""
    try:
        params = await _read_params(request)
        ControlFields.validate_fields(params, "probe")
    except ValueError as e:
        return web.json_response({"error": f"Invalid parameter: {e}"}, status=400)

    source = StreamFields.SOURCE.transform(params[StreamFields.SOURCE.name])
    transport = StreamFields.TRANSPORT.transform(params.get(StreamFields.TRANSPORT.name) or "tcp")
    timeout = params.get(ProbeFields.TIMEOUT.name)

    result = await request.app[PROBER_KEY].probe(source, transport, float(timeout) if timeout is not None else None)
    return web.json_response(result.to_dict())


async def _shutdown_stream(app: web.Application) -> None:
    await app[SUPERVISOR_KEY].stop()


def create_app(
    supervisor: Optional[ProcessSupervisor] = None,
    stats: Optional[StatsAggregator] = None,
    prober: Optional[ProbeCoordinator] = None,
) -> web.Application:
    """Create and configure the unified HTTP/WebSocket application."""
    if stats is None:
        stats = supervisor.stats if supervisor is not None else StatsAggregator(int(Config.get("log.buffer_lines", 500)))
    supervisor = supervisor or ProcessSupervisor(stats)
    prober = prober or ProbeCoordinator()

    app = web.Application()
    app[STATS_KEY] = stats
    app[SUPERVISOR_KEY] = supervisor
    app[PROBER_KEY] = prober
    app[CONTROL_KEY] = WebSocketControlProtocol(supervisor, stats, prober)

    app.router.add_get('/control', websocket_handler)

    app.router.add_get('/api/system/health', health_check_handler)
    app.router.add_get('/api/stream/stats', stats_handler)
    app.router.add_get('/api/stream/logs', logs_handler)
    app.router.add_delete('/api/stream/logs', clear_logs_handler)
    app.router.add_post('/api/stream/start', start_stream_handler)
    app.router.add_post('/api/stream/stop', stop_stream_handler)
    app.router.add_post('/api/probe', probe_handler)

    app.on_cleanup.append(_shutdown_stream)
    return app


async def start_unified_server(host: str = "0.0.0.0", port: int = 8788, app: Optional[web.Application] = None):
    """Start the unified HTTP/WebSocket server."""
    app = app or create_app()

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logging.getLogger('server').info(f"Server on http://{host}:{port}/ (WebSocket: /control, Stream API: /api/stream/)")

    return runner
