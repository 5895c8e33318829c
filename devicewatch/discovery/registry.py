"""Device registry: aggregates every discovery source on this host."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from devicewatch.device import Device
from devicewatch.discovery import DiscoverySource
from devicewatch.discovery.polling import POLL_INTERVAL, PollingDiscoveryEngine, SleepFunc
from devicewatch.models import DiscoveryStatus, TargetPlatform

logger = logging.getLogger("devicewatch.registry")


def default_sources() -> list[DiscoverySource]:
    """The known discoverers: Android, physical iOS, iOS simulators."""
    from devicewatch.platforms.android import AndroidDiscovery
    from devicewatch.platforms.ios import IOSDeviceDiscovery
    from devicewatch.platforms.simulator import SimulatorDiscovery

    return [AndroidDiscovery(), IOSDeviceDiscovery(), SimulatorDiscovery()]


class DeviceRegistry:
    """Answers "which devices are connected" across all platforms.

    Constructing a registry is cheap; sources are only enumerated when a
    query or polling needs them. The source list is fixed at construction.
    """

    def __init__(
        self,
        sources: Sequence[DiscoverySource] | None = None,
        specified_device_id: str | None = None,
        interval: float = POLL_INTERVAL,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if sources is None:
            sources = default_sources()
        self._engines = [
            PollingDiscoveryEngine(source, interval=interval, sleep=sleep) for source in sources
        ]
        # A user-specified device id (e.g. from --device-id)
        self.specified_device_id = specified_device_id

    @property
    def has_specified_device_id(self) -> bool:
        return self.specified_device_id is not None

    @property
    def engines(self) -> list[PollingDiscoveryEngine]:
        return list(self._engines)

    # ----------------------------------------------------------------
    # Queries
    # ----------------------------------------------------------------

    async def get_device_by_id(self, device_id: str) -> Device | None:
        """Return the connected device with a matching id, or None.

        The comparison is case-insensitive.
        """
        wanted = device_id.lower()
        for device in await self.get_all_connected_devices():
            if device.id.lower() == wanted:
                return device
        return None

    async def get_devices(self) -> list[Device]:
        """Connected devices, narrowed to the specified device if one is set."""
        if self.specified_device_id is None:
            return await self.get_all_connected_devices()
        device = await self.get_device_by_id(self.specified_device_id)
        return [] if device is None else [device]

    async def get_all_connected_devices(self) -> list[Device]:
        """Flattened snapshots of every source supported on this host."""
        supported = [e for e in self._engines if e.supports_platform()]
        snapshots = await asyncio.gather(*(e.devices() for e in supported))
        return [device for snapshot in snapshots for device in snapshot]

    async def devices_for_platform(self, platform: TargetPlatform) -> list[Device]:
        return [d for d in await self.get_all_connected_devices() if d.platform == platform]

    def statuses(self) -> list[DiscoveryStatus]:
        return [engine.status() for engine in self._engines]

    # ----------------------------------------------------------------
    # Polling lifecycle
    # ----------------------------------------------------------------

    def start_polling(self) -> None:
        """Start every supported engine. Unsupported sources are never polled."""
        for engine in self._engines:
            if engine.supports_platform():
                engine.start()
            else:
                logger.debug("Skipping %s: not supported on this host", engine)

    async def stop_polling(self) -> None:
        for engine in self._engines:
            await engine.stop()

    async def dispose(self) -> None:
        for engine in self._engines:
            await engine.dispose()
