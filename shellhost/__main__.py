"""Run the interpreter engine as a persistent MCP daemon over HTTP.

Usage:
    python -m shellhost [--port PORT] [--env-file FILE] [--dialect NAME]

Interpreters survive individual client connections; the daemon tracks
them until they are disposed, found dead by the periodic cleanup, or the
daemon shuts down.
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
from pathlib import Path

import uvicorn

from shellhost.config import EngineConfig
from shellhost.engine.server import create_server
from shellhost.engine.supervisor import InterpreterEngine

log = logging.getLogger(__name__)


async def _run(config: EngineConfig) -> None:
    engine = InterpreterEngine(config)
    server = create_server(engine=engine, port=config.port)
    await engine.start()

    app = server.streamable_http_app()
    uvi = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=config.port, log_level="info")
    )

    # _serve() skips uvicorn's own signal capture so the handlers below work.
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    serve_task = asyncio.create_task(uvi._serve())
    await shutdown.wait()
    log.info("Signal received, shutting down")

    uvi.should_exit = True
    await serve_task
    log.info("Stopping interpreter engine")
    await engine.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Managed interpreter engine daemon")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on")
    parser.add_argument(
        "--env-file", type=Path, default=None,
        help="dotenv file with SHELLHOST_* settings (default: ./.env)",
    )
    parser.add_argument(
        "--dialect", default=None, help="Interpreter dialect: powershell or posix",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [shellhost] %(levelname)s %(message)s",
    )

    config = EngineConfig.from_env(args.env_file)
    overrides = {}
    if args.port is not None:
        overrides["port"] = args.port
    if args.dialect:
        overrides["dialect"] = args.dialect.strip().lower()
    if overrides:
        config = dataclasses.replace(config, **overrides)

    log.info("Starting shellhost on http://127.0.0.1:%d/mcp", config.port)
    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
