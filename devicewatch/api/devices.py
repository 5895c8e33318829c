"""API routes for listing, watching and selecting devices."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, Request
from sse_starlette.sse import EventSourceResponse

from devicewatch.device import Device
from devicewatch.discovery.registry import DeviceRegistry
from devicewatch.discovery.selector import DeviceStore
from devicewatch.models import (
    DeviceEvent,
    DeviceSummary,
    DiscoveryStatus,
    SelectionEntry,
    SelectRequest,
    SelectResponse,
)

router = APIRouter(prefix="/api/v1/devices", tags=["devices"])
logger = logging.getLogger("devicewatch.api")

HEARTBEAT_SECONDS = 15.0


def _get_registry(request: Request) -> DeviceRegistry:
    registry = request.app.state.registry
    if registry is None:
        raise HTTPException(status_code=503, detail="Device registry not initialized")
    return registry


@router.get("")
async def list_devices(
    request: Request,
    all: bool = Query(default=False, description="Ignore the specified-device filter"),  # noqa: A002
) -> list[DeviceSummary]:
    """List connected devices, narrowed to the configured device id unless all=true."""
    registry = _get_registry(request)
    if all:
        devices = await registry.get_all_connected_devices()
    else:
        devices = await registry.get_devices()
    return [d.summary() for d in devices]


@router.get("/sources")
async def list_sources(request: Request) -> list[DiscoveryStatus]:
    """Status of every discovery engine."""
    return _get_registry(request).statuses()


@router.get("/events")
async def stream_events(request: Request) -> EventSourceResponse:
    """Stream device added/removed events via Server-Sent Events."""
    registry = _get_registry(request)

    async def event_generator():
        merged: asyncio.Queue[tuple[str, str, Device]] = asyncio.Queue(maxsize=1000)
        subscriptions = []
        for engine in registry.engines:
            for event, stream in (("added", engine.on_added), ("removed", engine.on_removed)):
                subscriptions.append((event, engine.name, stream, stream.subscribe()))

        async def forward(event: str, source: str, queue: asyncio.Queue[Device]) -> None:
            while True:
                device = await queue.get()
                try:
                    merged.put_nowait((event, source, device))
                except asyncio.QueueFull:
                    pass  # Drop if merged queue is full

        tasks = [
            asyncio.create_task(forward(event, source, queue))
            for event, source, _, queue in subscriptions
        ]
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event, source, device = await asyncio.wait_for(
                        merged.get(), timeout=HEARTBEAT_SECONDS,
                    )
                except asyncio.TimeoutError:
                    yield {
                        "event": "heartbeat",
                        "data": json.dumps({"time": datetime.now(timezone.utc).isoformat()}),
                    }
                    continue
                payload = DeviceEvent(
                    event=event,
                    source=source,
                    device=device.summary(),
                    timestamp=datetime.now(timezone.utc),
                )
                yield {"event": event, "data": payload.model_dump_json()}
        finally:
            for task in tasks:
                task.cancel()
            for _, _, stream, queue in subscriptions:
                stream.unsubscribe(queue)

    return EventSourceResponse(event_generator())


@router.post("/select")
async def select_devices(request: Request, body: SelectRequest) -> SelectResponse:
    """Pick one device per platform for the given build configurations."""
    registry = _get_registry(request)
    try:
        store = await DeviceStore.from_registry(body.configs, registry)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SelectResponse(
        selections=[
            SelectionEntry(
                platform=r.platform,
                device=r.device.summary() if r.device else None,
                ambiguous=r.ambiguous,
            )
            for r in store.results
        ],
        advisories=store.advisories,
    )


@router.get("/{device_id}")
async def get_device(request: Request, device_id: str) -> DeviceSummary:
    """Look up one connected device by id (case-insensitive)."""
    device = await _get_registry(request).get_device_by_id(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Device {device_id} not found")
    return device.summary()
