# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import argparse
import asyncio
import json
import logging
import os

from .api.server import create_app, start_unified_server

# Always use relative imports (run via the camcast script or python -m camcast.main)
from .config import Config
from .media.probe import ProbeCoordinator
from .streaming.stats import StatsAggregator
from .streaming.supervisor import ProcessSupervisor
from .utils.helpers import mask_url


def setup_logging(config, override_level=None):
    """Configure logging based on config settings."""
    # Determine log level from override, config, or default
    log_level_str = override_level.lower() if override_level else config.get("log.level").lower()

    # Map string levels to logging constants
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "warn": logging.WARNING,  # alias
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    log_level = level_map.get(log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="[%(levelname)s] [%(name)s] %(message)s",  # Level first, then logger name
        handlers=[logging.StreamHandler()],
        force=True,  # Reset any existing configuration
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Camera to live-streaming relay server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8788, help="Port to bind to (WebSocket + HTTP API)")
    parser.add_argument("--config", default=None, help="Path to YAML/TOML/JSON config file")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "warn", "error", "critical"],
        type=str.lower,
        help="Set logging level (overrides config file)",
    )
    parser.add_argument("--probe", metavar="URL", default=None, help="Probe a camera source, print the report and exit")
    parser.add_argument("--transport", default=None, choices=["tcp", "udp"], help="RTSP transport for --probe")
    parser.add_argument("--timeout", type=float, default=None, help="Probe timeout in seconds")
    return parser


def format_probe_report(result) -> str:
    """Render a ProbeResult as the text report printed by --probe."""
    if not result.success:
        return f"FAILED ({result.failure_kind.value}): {result.error_message}"

    lines = [
        f"Video: {result.video_codec or '-'} {result.width}x{result.height} @ {result.fps:g} fps",
        f"Audio: {result.audio_codec or '-'} {result.sample_rate} Hz, {result.channels} ch",
        "",
    ]
    lines += [f"{item.label:<6} {item.value:<16} {item.status.value}" for item in result.items]
    if result.suggestions:
        lines.append("")
        lines += [f"- {s}" for s in result.suggestions]
    return "\n".join(lines)


async def probe_once(source: str, transport: str, timeout) -> int:
    result = await ProbeCoordinator().probe(source, transport, timeout)
    print(format_probe_report(result))
    logging.getLogger("main").debug(json.dumps(result.to_dict()))
    return 0 if result.success else 1


async def main():
    """Main entry point for the camcast server."""
    args = build_parser().parse_args()

    # Load configuration
    config = Config()
    config.load(args.config)

    # Setup logging
    setup_logging(config, override_level=args.log_level)
    logger = logging.getLogger("main")

    if args.probe:
        transport = args.transport or config.get("stream.transport")
        logger.info(f"probing {mask_url(args.probe)}")
        return await probe_once(args.probe, transport, args.timeout)

    logger.info(f"loaded config: source={mask_url(config.get('stream.source'))} outputs={list(config.get('outputs'))}")

    stats = StatsAggregator(int(config.get("log.buffer_lines")))
    supervisor = ProcessSupervisor(stats)
    app = create_app(supervisor, stats, ProbeCoordinator())

    runner = await start_unified_server(args.host, args.port, app)
    try:
        # Keep running until interrupted
        await asyncio.Future()  # run forever
    finally:
        await runner.cleanup()
    return 0


def _install_fast_loop():
    """Use uvloop/winloop when installed."""
    logger = logging.getLogger("main")
    if os.name == "nt":
        # Windows: use winloop
        try:
            import winloop  # type: ignore[import-not-found]

            asyncio.set_event_loop_policy(winloop.EventLoopPolicy())
            logger.info("winloop enabled")
        except ImportError:
            logger.info("winloop not available, using default asyncio loop")
    else:
        # Non-Windows: use uvloop
        try:
            import uvloop  # type: ignore[import-not-found]

            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
            logger.info("uvloop enabled")
        except ImportError:
            logger.info("uvloop not available, using default asyncio loop")


def run():
    """Entry point for setuptools console scripts."""
    _install_fast_loop()
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        logging.getLogger("main").info("Shutting down...")


if __name__ == "__main__":
    run()
