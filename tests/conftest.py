"""Shared fakes for discovery tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from devicewatch.device import Device, DeviceLogReader
from devicewatch.discovery import DiscoverySource
from devicewatch.models import ApplicationPackage, StartOptions, TargetPlatform


class FakeLogReader(DeviceLogReader):
    def __init__(self, stream: str) -> None:
        super().__init__()
        self.stream = stream

    @property
    def name(self) -> str:
        return f"fake log {self.stream}"

    @property
    def source_key(self) -> tuple[str, str]:
        return ("fake", self.stream)

    async def logs(self, clear: bool = False) -> int:
        return 0


class FakeDevice(Device):
    def __init__(
        self,
        id: str,  # noqa: A002
        name: str = "Fake",
        platform: TargetPlatform = TargetPlatform.ANDROID,
        supported: bool = True,
        log_stream: str | None = None,
    ) -> None:
        super().__init__(id)
        self._name = name
        self._platform = platform
        self.supported = supported
        self.log_stream = log_stream or id

    @property
    def name(self) -> str:
        return self._name

    @property
    def platform(self) -> TargetPlatform:
        return self._platform

    def is_connected(self) -> bool:
        return True

    def is_supported(self) -> bool:
        return self.supported

    async def install_app(self, package: ApplicationPackage) -> bool:
        return True

    async def is_app_installed(self, package: ApplicationPackage) -> bool:
        return False

    def create_log_reader(self, on_line=None) -> FakeLogReader:
        return FakeLogReader(self.log_stream)

    async def start_app(
        self,
        package: ApplicationPackage,
        toolchain: Any = None,
        options: StartOptions | None = None,
    ) -> bool:
        return True

    async def stop_app(self, package: ApplicationPackage) -> bool:
        return True


class FakeSource(DiscoverySource):
    """Returns ``devices``; counts calls; optionally blocks on ``gate`` or raises ``error``."""

    def __init__(
        self,
        devices: list[Device] | None = None,
        name: str = "Fake",
        supported: bool = True,
    ) -> None:
        self.devices = list(devices or [])
        self.name = name
        self.supported = supported
        self.calls = 0
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    def supports_platform(self) -> bool:
        return self.supported

    async def current_devices(self) -> list[Device]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.devices)


class ManualTimer:
    """Stand-in for asyncio.sleep; every waiting sleeper wakes on fire()."""

    def __init__(self) -> None:
        self.waiters: list[asyncio.Future] = []

    async def sleep(self, _interval: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self.waiters.append(fut)
        try:
            await fut
        finally:
            if fut in self.waiters:
                self.waiters.remove(fut)

    def fire(self) -> None:
        waiters, self.waiters = self.waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)


async def _settle() -> None:
    """Let pending tasks run to their next real suspension point."""
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def make_device():
    return FakeDevice


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_log_reader():
    return FakeLogReader


@pytest.fixture
def timer():
    return ManualTimer()


@pytest.fixture
def settle():
    return _settle
