"""devicewatch main entry point.

Usage:
    python3 -m devicewatch list              List connected devices
    python3 -m devicewatch list --all        Ignore the configured device id
    python3 -m devicewatch watch             Print devices as they connect/disconnect
    python3 -m devicewatch serve             Serve the device API over HTTP
    python3 -m devicewatch regenerate-key    Generate a new API key
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI

from devicewatch.api.devices import router as devices_router
from devicewatch.auth import APIKeyMiddleware
from devicewatch.config import WatchConfig
from devicewatch.device import Device
from devicewatch.discovery.registry import DeviceRegistry

logger = logging.getLogger("devicewatch")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start discovery polling with the server and dispose it on shutdown."""
    config: WatchConfig = app.state.config
    registry: DeviceRegistry | None = app.state.registry
    if registry is None:
        registry = DeviceRegistry(
            specified_device_id=config.device_id,
            interval=config.poll_interval,
        )
        app.state.registry = registry

    registry.start_polling()
    logger.info(
        "Server started on http://%s:%d, API key: %s...%s",
        config.host,
        config.port,
        config.api_key[:8],
        config.api_key[-4:],
    )

    yield

    await registry.dispose()
    logger.info("Server stopped")


def create_app(
    config: WatchConfig | None = None,
    registry: DeviceRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A registry passed in is used as-is (tests inject fake sources this way);
    otherwise the lifespan builds one from the config.
    """
    if config is None:
        config = WatchConfig.from_user_config()

    app = FastAPI(
        title="devicewatch",
        version=VERSION,
        description="Device discovery and selection for app deployment",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.registry = registry

    app.add_middleware(APIKeyMiddleware, api_key=config.api_key)
    app.include_router(devices_router)

    @app.get("/health")
    async def health() -> dict:
        sources = []
        if app.state.registry is not None:
            sources = [s.model_dump(mode="json") for s in app.state.registry.statuses()]
        return {"status": "ok", "version": VERSION, "sources": sources}

    return app


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _format_device(device: Device) -> str:
    return f"{device.name} • {device.id} • {device.platform.value} • {device.support_message()}"


async def _list_devices(registry: DeviceRegistry, show_all: bool, as_json: bool) -> int:
    try:
        if show_all:
            devices = await registry.get_all_connected_devices()
        else:
            devices = await registry.get_devices()
    finally:
        await registry.dispose()

    if as_json:
        print(json.dumps([d.summary().model_dump(mode="json") for d in devices], indent=2))
        return 0

    if not devices:
        if registry.has_specified_device_id and not show_all:
            print(f"No connected device matches '{registry.specified_device_id}'.")
        else:
            print("No connected devices.")
        return 1

    print(f"{len(devices)} connected device{'s' if len(devices) != 1 else ''}:")
    for device in devices:
        print(f"  {_format_device(device)}")
    for status in registry.statuses():
        if status.error:
            print(f"Warning: {status.name} discovery failed: {status.error}", file=sys.stderr)
    return 0


async def _watch_devices(registry: DeviceRegistry) -> None:
    merged: asyncio.Queue[tuple[str, Device]] = asyncio.Queue()

    async def forward(label: str, queue: asyncio.Queue[Device]) -> None:
        while True:
            merged.put_nowait((label, await queue.get()))

    tasks = []
    for engine in registry.engines:
        tasks.append(asyncio.create_task(forward("+", engine.on_added.subscribe())))
        tasks.append(asyncio.create_task(forward("-", engine.on_removed.subscribe())))

    registry.start_polling()
    print("Watching for devices (Ctrl-C to stop)...")
    try:
        while True:
            label, device = await merged.get()
            print(f"{label} {_format_device(device)}", flush=True)
    finally:
        for task in tasks:
            task.cancel()
        await registry.dispose()


def _cmd_serve(config: WatchConfig) -> None:
    app = create_app(config=config)
    print(f"devicewatch v{VERSION}")
    print(f"  http://{config.host}:{config.port}")
    print(f"  API key: {config.api_key[:8]}...{config.api_key[-4:]}")
    if config.device_id:
        print(f"  Device filter: {config.device_id}")
    print()
    uvicorn.run(app, host=config.host, port=config.port, log_level="info")


def _build_parser() -> argparse.ArgumentParser:
    # Global options are accepted before or after the subcommand. SUPPRESS
    # keeps a subparser from resetting a flag given before it.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--verbose", "-v", action="store_true", default=argparse.SUPPRESS,
        help="Enable debug logging",
    )
    common.add_argument(
        "--device-id", "-d", default=argparse.SUPPRESS,
        help="Only target this device (case-insensitive match)",
    )
    common.add_argument(
        "--interval", type=float, default=argparse.SUPPRESS,
        help="Seconds between discovery polls (default: 4)",
    )

    parser = argparse.ArgumentParser(
        description="devicewatch: discover and select deployment target devices",
        parents=[common],
    )
    parser.set_defaults(verbose=False, device_id=None, interval=None, all=False, json=False)
    subparsers = parser.add_subparsers(dest="command")

    list_parser = subparsers.add_parser("list", parents=[common], help="List connected devices")
    list_parser.add_argument(
        "--all", action="store_true", default=False,
        help="Ignore --device-id and list every connected device",
    )
    list_parser.add_argument("--json", action="store_true", default=False, help="JSON output")

    subparsers.add_parser(
        "watch", parents=[common], help="Print devices as they connect and disconnect",
    )

    serve_parser = subparsers.add_parser(
        "serve", parents=[common], help="Serve the device API over HTTP",
    )
    serve_parser.add_argument("--host", default=None, help="Bind host (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: 9200)")

    subparsers.add_parser("regenerate-key", parents=[common], help="Generate a new API key")
    return parser


def cli() -> None:
    """CLI entry point."""
    args = _build_parser().parse_args()
    if args.command is None:
        args.command = "list"

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "regenerate-key":
        key = WatchConfig.regenerate_api_key()
        print(f"New API key: {key}")
        return

    config = WatchConfig.from_user_config(
        device_id=args.device_id,
        poll_interval=args.interval,
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
    )

    if args.command == "serve":
        logging.getLogger().setLevel(logging.DEBUG if args.verbose else logging.INFO)
        _cmd_serve(config)
        return

    registry = DeviceRegistry(specified_device_id=config.device_id, interval=config.poll_interval)
    if args.command == "list":
        sys.exit(asyncio.run(_list_devices(registry, args.all, args.json)))
    elif args.command == "watch":
        try:
            asyncio.run(_watch_devices(registry))
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    cli()
