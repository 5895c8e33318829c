"""Physical iOS devices discovered through `xcrun devicectl`."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import tempfile
from pathlib import Path
from typing import Any

from devicewatch.device import Device, DeviceLogReader, LineCallback
from devicewatch.discovery import DiscoverySource
from devicewatch.models import (
    ApplicationPackage,
    DeviceError,
    StartOptions,
    TargetPlatform,
)
from devicewatch.platforms.simulator import launch_args

logger = logging.getLogger("devicewatch.devicectl")


class DevicectlBackend:
    """Async wrapper around xcrun devicectl.

    Discovery builds fresh IOSDevice objects on every poll, so the pids of
    processes we launched live here, keyed by (identifier, bundle_id).
    """

    def __init__(self) -> None:
        self.launched_pids: dict[tuple[str, str], int] = {}

    async def run(self, *args: str, json_output: bool = False) -> tuple[str, str]:
        """Run an xcrun devicectl command and return (stdout, stderr).

        When json_output=True, devicectl writes JSON to a temp file (not
        stdout) and that file's content is returned in place of stdout.

        Raises DeviceError on non-zero exit code.
        """
        cmd_args = ["xcrun", "devicectl"]

        if json_output:
            tmp = tempfile.NamedTemporaryFile(suffix=".json", delete=False)
            tmp_path = tmp.name
            tmp.close()
            cmd_args.extend(["--json-output", tmp_path])

        cmd_args.extend(args)

        proc = await asyncio.create_subprocess_exec(
            *cmd_args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await proc.communicate()

        if proc.returncode != 0:
            if json_output:
                Path(tmp_path).unlink(missing_ok=True)
            raise DeviceError(
                f"devicectl {args[0]} failed: {stderr_bytes.decode().strip()}",
                tool="devicectl",
            )

        if json_output:
            try:
                json_data = Path(tmp_path).read_text()
            finally:
                Path(tmp_path).unlink(missing_ok=True)
            return json_data, stderr_bytes.decode()

        return stdout_bytes.decode(), stderr_bytes.decode()

    async def list_devices(self) -> list[dict[str, Any]]:
        stdout, _ = await self.run("list", "devices", json_output=True)
        return self.parse_devices(stdout)

    @staticmethod
    def parse_devices(output: str) -> list[dict[str, Any]]:
        """Parse `devicectl list devices` JSON, keeping paired devices only."""
        data = json.loads(output)
        devices: list[dict[str, Any]] = []

        for dev in data.get("result", {}).get("devices", []):
            connection_props = dev.get("connectionProperties", {})
            if connection_props.get("pairingState", "") != "paired":
                continue

            device_props = dev.get("deviceProperties", {})
            devices.append({
                "udid": dev.get("hardwareProperties", {}).get("udid") or dev.get("identifier", ""),
                "identifier": dev.get("identifier", ""),
                "name": device_props.get("name", "Unknown"),
                "os_version": device_props.get("osVersionNumber", ""),
                "connected": connection_props.get("tunnelState", "") == "connected",
            })

        return devices


class IOSDevice(Device):
    """A paired physical iOS device.

    ``id`` is the device UDID; devicectl commands address the device by its
    CoreDevice identifier, which may differ.
    """

    def __init__(
        self,
        id: str,  # noqa: A002
        name: str = "iOS Device",
        identifier: str | None = None,
        os_version: str = "",
        connected: bool = True,
        backend: DevicectlBackend | None = None,
    ) -> None:
        super().__init__(id)
        self._name = name
        self.identifier = identifier or id
        self.os_version = os_version
        self.connected = connected
        self.backend = backend or DevicectlBackend()

    @property
    def name(self) -> str:
        return self._name

    @property
    def platform(self) -> TargetPlatform:
        return TargetPlatform.IOS

    def is_connected(self) -> bool:
        return self.connected

    def is_supported(self) -> bool:
        return True

    async def install_app(self, package: ApplicationPackage) -> bool:
        try:
            await self.backend.run(
                "device", "install", "app", "--device", self.identifier, package.local_path,
            )
        except DeviceError as e:
            logger.warning("Install of %s on %s failed: %s", package.id, self.id[:8], e)
            return False
        return True

    async def is_app_installed(self, package: ApplicationPackage) -> bool:
        try:
            stdout, _ = await self.backend.run(
                "device", "info", "apps",
                "--device", self.identifier,
                "--bundle-id", package.id,
                json_output=True,
            )
            apps = json.loads(stdout).get("result", {}).get("apps", [])
        except (DeviceError, json.JSONDecodeError):
            return False
        return any(app.get("bundleIdentifier") == package.id for app in apps)

    def create_log_reader(self, on_line: LineCallback | None = None) -> IOSDeviceLogReader:
        return IOSDeviceLogReader(self, on_line=on_line)

    async def start_app(
        self,
        package: ApplicationPackage,
        toolchain: Any = None,
        options: StartOptions | None = None,
    ) -> bool:
        options = options or StartOptions()
        try:
            stdout, _ = await self.backend.run(
                "device", "process", "launch",
                "--device", self.identifier,
                package.id,
                *launch_args(options),
                json_output=True,
            )
        except DeviceError as e:
            logger.warning("Launch of %s on %s failed: %s", package.id, self.id[:8], e)
            return False

        try:
            pid = json.loads(stdout)["result"]["process"]["processIdentifier"]
        except (json.JSONDecodeError, KeyError, TypeError):
            logger.debug("No pid in devicectl launch output for %s", package.id)
        else:
            self.backend.launched_pids[(self.identifier, package.id)] = int(pid)
        return True

    async def stop_app(self, package: ApplicationPackage) -> bool:
        pid = self.backend.launched_pids.get((self.identifier, package.id))
        if pid is None:
            logger.warning("Can't stop %s on %s: it wasn't launched by us", package.id, self.id[:8])
            return False
        try:
            await self.backend.run(
                "device", "process", "terminate",
                "--device", self.identifier,
                "--pid", str(pid),
            )
        except DeviceError as e:
            logger.warning("Terminate of %s on %s failed: %s", package.id, self.id[:8], e)
            return False
        self.backend.launched_pids.pop((self.identifier, package.id), None)
        return True


class IOSDeviceLogReader(DeviceLogReader):
    """Reads `idevicesyslog` for one device UDID."""

    def __init__(self, device: IOSDevice, on_line: LineCallback | None = None) -> None:
        super().__init__(on_line=on_line)
        self.device = device

    @property
    def name(self) -> str:
        return self.device.name

    @property
    def source_key(self) -> tuple[str, str]:
        return ("idevicesyslog", self.device.id)

    async def logs(self, clear: bool = False) -> int:
        """Stream the device syslog.

        idevicesyslog only relays lines logged after it connects and the
        device log can't be cleared remotely, so ``clear`` has no effect.
        """
        return await self._stream_command("idevicesyslog", "-u", self.device.id)


class IOSDeviceDiscovery(DiscoverySource):
    """Enumerates paired physical devices via devicectl (macOS only)."""

    name = "iOS"

    def __init__(self, backend: DevicectlBackend | None = None) -> None:
        self.backend = backend or DevicectlBackend()

    def supports_platform(self) -> bool:
        return sys.platform == "darwin"

    async def current_devices(self) -> list[IOSDevice]:
        return [
            IOSDevice(
                info["udid"],
                name=info["name"],
                identifier=info["identifier"],
                os_version=info["os_version"],
                connected=info["connected"],
                backend=self.backend,
            )
            for info in await self.backend.list_devices()
        ]
