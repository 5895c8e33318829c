"""Polling discovery engine.

Wraps a DiscoverySource with a periodic timer. Every tick enumerates the
source, diffs the result against the retained snapshot, commits the new
snapshot and publishes added/removed devices to subscribers.

At most one enumeration per engine is in flight at a time: a tick that fires
while the previous poll is still running is dropped, so a slow adb or
devicectl call can't pile up behind itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from devicewatch.device import Device
from devicewatch.discovery import ChangeSet, DiscoverySource, diff_snapshots
from devicewatch.models import DiscoveryStatus

logger = logging.getLogger("devicewatch.discovery")

POLL_INTERVAL = 4.0  # seconds
SUBSCRIBER_QUEUE_SIZE = 1000

SleepFunc = Callable[[float], Awaitable[None]]


class DeviceStream:
    """Fans devices out to subscriber queues."""

    def __init__(self, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._maxsize = maxsize
        self._subscribers: list[asyncio.Queue[Device]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[Device]:
        """Create a subscription queue. Caller must call unsubscribe() when done."""
        queue: asyncio.Queue[Device] = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Device]) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass

    def publish(self, device: Device) -> None:
        """Deliver a device to every subscriber without blocking."""
        dead_subs: list[asyncio.Queue[Device]] = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(device)
            except asyncio.QueueFull:
                # Subscriber stopped reading; drop it
                dead_subs.append(queue)

        for dead in dead_subs:
            self._subscribers.remove(dead)

    def close(self) -> None:
        """Release all subscribers."""
        self._subscribers.clear()


class PollingDiscoveryEngine:
    """Periodically polls one DiscoverySource and publishes device changes.

    Args:
        source: The source to enumerate.
        interval: Seconds between ticks (default 4s).
        sleep: Awaitable used to wait between ticks. Tests pass a manually
            driven timer here.
    """

    def __init__(
        self,
        source: DiscoverySource,
        interval: float = POLL_INTERVAL,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.source = source
        self.interval = interval
        self._sleep = sleep
        # None until the first poll commits; () is a seeded, empty snapshot
        self._snapshot: tuple[Device, ...] | None = None
        self._timer: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._error: str | None = None
        self.on_added = DeviceStream()
        self.on_removed = DeviceStream()
        self.poll_count: int = 0
        self.dropped_ticks: int = 0
        self.last_polled_at: datetime | None = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def is_polling(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_seeded(self) -> bool:
        return self._snapshot is not None

    def supports_platform(self) -> bool:
        return self.source.supports_platform()

    # ----------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------

    def start(self) -> None:
        """Start polling. Calling it again while polling does nothing."""
        if self.is_polling:
            return
        self._timer = asyncio.create_task(self._tick_loop())
        logger.info("Started %s (every %.1fs)", self, self.interval)

    async def stop(self) -> None:
        """Stop the timer.

        A poll that is already running is left to finish and its snapshot is
        still committed; no further polls are scheduled.
        """
        timer = self._timer
        self._timer = None
        if timer is None:
            return
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass
        logger.info("Stopped %s", self)

    async def dispose(self) -> None:
        """Stop polling and release all subscribers."""
        await self.stop()
        self.on_added.close()
        self.on_removed.close()

    # ----------------------------------------------------------------
    # Snapshot access
    # ----------------------------------------------------------------

    async def devices(self) -> list[Device]:
        """Return the current snapshot.

        The first call on an engine that has never polled runs one poll (or
        joins the poll already in flight) so the result is never unset.
        Seeding this way publishes no events.
        """
        if self._snapshot is None:
            task = self._launch_poll(publish=False) or self._inflight
            if task is not None:
                await asyncio.shield(task)
        return list(self._snapshot or ())

    def status(self) -> DiscoveryStatus:
        if self._error:
            status_str = "error"
        elif self.is_polling:
            status_str = "polling"
        else:
            status_str = "stopped"

        return DiscoveryStatus(
            name=self.name,
            status=status_str,
            supported=self.supports_platform(),
            device_count=len(self._snapshot or ()),
            poll_count=self.poll_count,
            dropped_ticks=self.dropped_ticks,
            last_polled_at=self.last_polled_at,
            error=self._error,
        )

    # ----------------------------------------------------------------
    # Polling
    # ----------------------------------------------------------------

    async def _tick_loop(self) -> None:
        while True:
            if self._launch_poll(publish=True) is None:
                self.dropped_ticks += 1
                logger.debug("%s: previous poll still running, dropping tick", self)
            await self._sleep(self.interval)

    def _launch_poll(self, publish: bool) -> asyncio.Task | None:
        """Start a poll task unless one is already in flight."""
        if self._inflight is not None and not self._inflight.done():
            return None
        self._inflight = asyncio.create_task(self._poll(publish))
        return self._inflight

    async def _poll(self, publish: bool) -> ChangeSet:
        self.poll_count += 1
        try:
            current = tuple(await self.source.current_devices())
        except Exception as e:
            # Keep what we knew; a failed probe is not a disconnect
            self._error = str(e) or type(e).__name__
            logger.warning("%s: poll failed, keeping previous snapshot: %s", self, self._error)
            if self._snapshot is None:
                self._snapshot = ()
            return ChangeSet()

        changes = diff_snapshots(self._snapshot or (), current)
        self._snapshot = current
        self._error = None
        self.last_polled_at = datetime.now(timezone.utc)

        if publish:
            self._publish(changes)
        return changes

    def _publish(self, changes: ChangeSet) -> None:
        for device in changes.added:
            logger.info("%s: connected %s (%s)", self, device.id, device.name)
            self.on_added.publish(device)
        for device in changes.removed:
            logger.info("%s: disconnected %s (%s)", self, device.id, device.name)
            self.on_removed.publish(device)

    def __str__(self) -> str:
        return f"{self.name} device discovery"
