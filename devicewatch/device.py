"""Device and DeviceLogReader base classes.

A Device is one addressable target (an Android phone, a physical iOS device,
a booted simulator). Two Device objects with the same ``id`` are the same
logical device no matter what else differs, so devices can be kept in sets
and diffed between discovery polls.

A DeviceLogReader is keyed by the log stream it reads rather than by the
device that created it: several simulators share one log stream, and we
don't want to show the same stream twice.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Callable, Hashable
from typing import Any

from devicewatch.models import (
    ApplicationPackage,
    DeviceSummary,
    StartOptions,
    TargetPlatform,
)

logger = logging.getLogger("devicewatch.device")

# Callback for each line a log reader produces
LineCallback = Callable[[str], None]


def device_key(device: Device) -> str:
    """Identity key for a device: its case-sensitive id."""
    return device.id


def log_reader_key(reader: DeviceLogReader) -> Hashable:
    """Identity key for a log reader: the stream it reads from."""
    return reader.source_key


class Device(abc.ABC):
    """Base class for all discoverable devices."""

    def __init__(self, id: str) -> None:  # noqa: A002
        self._id = id

    @property
    def id(self) -> str:
        return self._id

    @property
    @abc.abstractmethod
    def name(self) -> str: ...

    @property
    @abc.abstractmethod
    def platform(self) -> TargetPlatform: ...

    @property
    def supports_start_paused(self) -> bool:
        return True

    @abc.abstractmethod
    def is_connected(self) -> bool:
        """Check if the device is currently connected."""

    @abc.abstractmethod
    def is_supported(self) -> bool:
        """Check if apps can be deployed to this device."""

    def support_message(self) -> str:
        """User-facing text saying whether the device is supported, and if not, why."""
        return "Supported" if self.is_supported() else "Unsupported"

    @abc.abstractmethod
    async def install_app(self, package: ApplicationPackage) -> bool:
        """Install an app package on the device."""

    @abc.abstractmethod
    async def is_app_installed(self, package: ApplicationPackage) -> bool:
        """Check if the given app is already installed."""

    @abc.abstractmethod
    def create_log_reader(self, on_line: LineCallback | None = None) -> DeviceLogReader: ...

    @abc.abstractmethod
    async def start_app(
        self,
        package: ApplicationPackage,
        toolchain: Any = None,
        options: StartOptions | None = None,
    ) -> bool:
        """Start an app package on the device.

        ``toolchain`` is passed through untouched. ``options.platform_args``
        carries platform-specific arguments for the start call.
        """

    @abc.abstractmethod
    async def stop_app(self, package: ApplicationPackage) -> bool:
        """Stop an app package on the device."""

    def summary(self) -> DeviceSummary:
        return DeviceSummary(
            id=self.id,
            name=self.name,
            platform=self.platform,
            connected=self.is_connected(),
            supported=self.is_supported(),
            support_message=self.support_message(),
        )

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, Device):
            return NotImplemented
        return device_key(self) == device_key(other)

    def __hash__(self) -> int:
        return hash(device_key(self))

    def __repr__(self) -> str:
        return f"{type(self).__name__} {self.id}"

    __str__ = __repr__


class DeviceLogReader(abc.ABC):
    """Reads the log of a device.

    Readers that read the same underlying stream compare equal, so a set of
    readers collected from many devices holds each stream once.
    """

    def __init__(self, on_line: LineCallback | None = None) -> None:
        self.on_line = on_line
        self.lines_read: int = 0

    @property
    @abc.abstractmethod
    def name(self) -> str: ...

    @property
    @abc.abstractmethod
    def source_key(self) -> Hashable:
        """Hashable description of the underlying log stream."""

    @abc.abstractmethod
    async def logs(self, clear: bool = False) -> int:
        """Stream the log until it ends. Returns the stream's exit status."""

    async def _stream_command(self, *cmd: str) -> int:
        """Run ``cmd`` and hand every stdout line to on_line. Returns the exit code."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError:
            logger.error("%s not found, cannot read logs for %s", cmd[0], self.name)
            return 127

        assert proc.stdout is not None
        async for raw in proc.stdout:
            line = raw.decode(errors="replace").rstrip("\n")
            self.lines_read += 1
            if self.on_line is not None:
                self.on_line(line)
        return await proc.wait()

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, DeviceLogReader):
            return NotImplemented
        return log_reader_key(self) == log_reader_key(other)

    def __hash__(self) -> int:
        return hash(log_reader_key(self))

    def __str__(self) -> str:
        return self.name
