"""iOS simulators discovered through `xcrun simctl`."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
from typing import Any

from devicewatch.device import Device, DeviceLogReader, LineCallback
from devicewatch.discovery import DiscoverySource
from devicewatch.models import (
    ApplicationPackage,
    DeviceError,
    StartOptions,
    TargetPlatform,
)

logger = logging.getLogger("devicewatch.simctl")


def launch_args(options: StartOptions) -> list[str]:
    """Engine arguments passed to an app launched on an iOS target."""
    args: list[str] = []
    if options.checked:
        args.append("--enable-checked-mode")
    if options.start_paused:
        args.append("--start-paused")
    if options.main_path:
        args.append(f"--main={options.main_path}")
    if options.route:
        args.append(f"--route={options.route}")
    args.append(f"--observatory-port={options.debug_port}")
    for key, value in options.platform_args.items():
        args.append(f"--{key}={value}")
    return args


class SimctlBackend:
    """Async wrapper around xcrun simctl."""

    async def run(self, *args: str) -> tuple[str, str]:
        """Run an xcrun simctl command and return (stdout, stderr).

        Raises DeviceError on non-zero exit code.
        """
        proc = await asyncio.create_subprocess_exec(
            "xcrun", "simctl", *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise DeviceError(
                f"simctl {args[0]} failed: {stderr.decode().strip()}",
                tool="simctl",
            )
        return stdout.decode(), stderr.decode()

    async def list_booted(self) -> list[dict[str, str]]:
        """List booted, available simulators from `simctl list devices --json`."""
        stdout, _ = await self.run("list", "devices", "--json")
        return self.parse_devices(stdout)

    @classmethod
    def parse_devices(cls, output: str) -> list[dict[str, str]]:
        data = json.loads(output)
        devices: list[dict[str, str]] = []

        for runtime_key, device_list in data.get("devices", {}).items():
            os_version = cls.parse_runtime(runtime_key)
            for dev in device_list:
                if not dev.get("isAvailable", False):
                    continue
                if dev.get("state", "").lower() != "booted":
                    continue
                devices.append({
                    "udid": dev["udid"],
                    "name": dev["name"],
                    "os_version": os_version,
                })

        return devices

    @staticmethod
    def parse_runtime(runtime_key: str) -> str:
        """Extract a human-readable OS version from a runtime identifier.

        e.g. 'com.apple.CoreSimulator.SimRuntime.iOS-18-6' -> 'iOS 18.6'
        """
        match = re.search(r"SimRuntime\.(.+)$", runtime_key)
        if not match:
            return runtime_key
        raw = match.group(1)  # e.g. 'iOS-18-6'
        parts = raw.split("-", 1)
        if len(parts) == 2:
            return f"{parts[0]} {parts[1].replace('-', '.')}"
        return raw


class IOSSimulator(Device):
    """A booted iOS simulator."""

    def __init__(
        self,
        id: str,  # noqa: A002
        name: str = "iOS Simulator",
        os_version: str = "",
        backend: SimctlBackend | None = None,
    ) -> None:
        super().__init__(id)
        self._name = name
        self.os_version = os_version
        self.backend = backend or SimctlBackend()

    @property
    def name(self) -> str:
        return self._name

    @property
    def platform(self) -> TargetPlatform:
        return TargetPlatform.IOS_SIMULATOR

    def is_connected(self) -> bool:
        # Only booted simulators are ever discovered
        return True

    def is_supported(self) -> bool:
        return not self.os_version or self.os_version.startswith("iOS")

    def support_message(self) -> str:
        if not self.is_supported():
            return f"Unsupported runtime: {self.os_version}"
        return super().support_message()

    async def install_app(self, package: ApplicationPackage) -> bool:
        try:
            await self.backend.run("install", self.id, package.local_path)
        except DeviceError as e:
            logger.warning("Install of %s on %s failed: %s", package.id, self.id[:8], e)
            return False
        return True

    async def is_app_installed(self, package: ApplicationPackage) -> bool:
        try:
            await self.backend.run("get_app_container", self.id, package.id)
        except DeviceError:
            return False
        return True

    def create_log_reader(self, on_line: LineCallback | None = None) -> SimulatorLogReader:
        return SimulatorLogReader(on_line=on_line)

    async def start_app(
        self,
        package: ApplicationPackage,
        toolchain: Any = None,
        options: StartOptions | None = None,
    ) -> bool:
        options = options or StartOptions()
        try:
            await self.backend.run("launch", self.id, package.id, *launch_args(options))
        except DeviceError as e:
            logger.warning("Launch of %s on %s failed: %s", package.id, self.id[:8], e)
            return False
        return True

    async def stop_app(self, package: ApplicationPackage) -> bool:
        try:
            await self.backend.run("terminate", self.id, package.id)
        except DeviceError as e:
            logger.warning("Terminate of %s on %s failed: %s", package.id, self.id[:8], e)
            return False
        return True


class SimulatorLogReader(DeviceLogReader):
    """Reads the booted simulator log stream.

    Every simulator reads the same `simctl spawn booted` stream, so all
    simulator log readers are equal.
    """

    @property
    def name(self) -> str:
        return "iOS Simulator"

    @property
    def source_key(self) -> tuple[str, str]:
        return ("simctl", "booted")

    async def logs(self, clear: bool = False) -> int:
        """Stream the simulator's unified log.

        `log stream` only emits entries written after it starts and the
        unified log can't be cleared from here, so ``clear`` has no effect.
        """
        return await self._stream_command(
            "xcrun", "simctl", "spawn", "booted", "log", "stream", "--style", "compact",
        )


class SimulatorDiscovery(DiscoverySource):
    """Enumerates booted simulators via simctl (macOS only)."""

    name = "iOS Simulator"

    def __init__(self, backend: SimctlBackend | None = None) -> None:
        self.backend = backend or SimctlBackend()

    def supports_platform(self) -> bool:
        return sys.platform == "darwin"

    async def current_devices(self) -> list[IOSSimulator]:
        return [
            IOSSimulator(
                info["udid"],
                name=info["name"],
                os_version=info["os_version"],
                backend=self.backend,
            )
            for info in await self.backend.list_booted()
        ]
