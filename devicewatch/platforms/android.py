"""Android devices discovered through adb."""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Any

from devicewatch.device import Device, DeviceLogReader, LineCallback
from devicewatch.discovery import DiscoverySource
from devicewatch.models import (
    ApplicationPackage,
    DeviceError,
    StartOptions,
    TargetPlatform,
)

logger = logging.getLogger("devicewatch.android")


class AdbBackend:
    """Thin async wrapper around the adb CLI."""

    def __init__(self, adb_path: str = "adb") -> None:
        self.adb_path = adb_path

    async def run(self, *args: str, serial: str | None = None) -> tuple[str, str]:
        """Run an adb command and return (stdout, stderr).

        Raises DeviceError on non-zero exit code.
        """
        cmd = [self.adb_path]
        if serial:
            cmd.extend(["-s", serial])
        cmd.extend(args)

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise DeviceError(
                f"adb {args[0]} failed: {stderr.decode().strip()}",
                tool="adb",
            )
        return stdout.decode(), stderr.decode()

    async def list_devices(self) -> list[dict[str, str]]:
        """Parse `adb devices -l` into dicts with serial, state and properties."""
        stdout, _ = await self.run("devices", "-l")
        return self.parse_devices(stdout)

    @staticmethod
    def parse_devices(output: str) -> list[dict[str, str]]:
        """Parse `adb devices -l` output.

        e.g. 'emulator-5554  device product:sdk model:Pixel_7 device:emu transport_id:1'
        """
        devices: list[dict[str, str]] = []
        for line in output.splitlines():
            line = line.strip()
            if not line or line.startswith("List of devices") or line.startswith("*"):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            info = {"serial": parts[0], "state": parts[1]}
            for prop in parts[2:]:
                key, sep, value = prop.partition(":")
                if sep:
                    info[key] = value
            devices.append(info)
        return devices


class AndroidDevice(Device):
    """An Android device or emulator reachable through adb."""

    def __init__(
        self,
        id: str,  # noqa: A002
        name: str | None = None,
        state: str = "device",
        backend: AdbBackend | None = None,
    ) -> None:
        super().__init__(id)
        self._name = name or id
        self.state = state
        self.backend = backend or AdbBackend()

    @property
    def name(self) -> str:
        return self._name

    @property
    def platform(self) -> TargetPlatform:
        return TargetPlatform.ANDROID

    def is_connected(self) -> bool:
        return self.state == "device"

    def is_supported(self) -> bool:
        return self.state == "device"

    def support_message(self) -> str:
        if self.state == "unauthorized":
            return "Unauthorized: accept the USB debugging prompt on the device"
        if self.state == "offline":
            return "Offline"
        return super().support_message()

    async def install_app(self, package: ApplicationPackage) -> bool:
        try:
            await self.backend.run("install", "-r", package.local_path, serial=self.id)
        except DeviceError as e:
            logger.warning("Install of %s on %s failed: %s", package.id, self.id, e)
            return False
        logger.info("Installed %s on %s", package.id, self.id)
        return True

    async def is_app_installed(self, package: ApplicationPackage) -> bool:
        try:
            stdout, _ = await self.backend.run("shell", "pm", "path", package.id, serial=self.id)
        except DeviceError:
            return False
        return "package:" in stdout

    def create_log_reader(self, on_line: LineCallback | None = None) -> AdbLogReader:
        return AdbLogReader(self, on_line=on_line)

    def _start_args(self, package: ApplicationPackage, options: StartOptions) -> list[str]:
        args = [
            "shell", "am", "start",
            "-a", "android.intent.action.RUN",
            "-f", "0x20000000",
            "--ez", "enable-checked-mode", str(options.checked).lower(),
            "--ez", "start-paused", str(options.start_paused).lower(),
        ]
        if options.main_path:
            args.extend(["-d", options.main_path])
        if options.route:
            args.extend(["--es", "route", options.route])
        for key, value in options.platform_args.items():
            args.extend(["--es", key, str(value)])
        args.append(package.launch_activity or package.id)
        return args

    async def start_app(
        self,
        package: ApplicationPackage,
        toolchain: Any = None,
        options: StartOptions | None = None,
    ) -> bool:
        options = options or StartOptions()
        try:
            if options.clear_logs:
                await self.backend.run("logcat", "-c", serial=self.id)
            port = f"tcp:{options.debug_port}"
            await self.backend.run("forward", port, port, serial=self.id)
            stdout, _ = await self.backend.run(*self._start_args(package, options), serial=self.id)
        except DeviceError as e:
            logger.warning("Start of %s on %s failed: %s", package.id, self.id, e)
            return False
        # am start exits 0 even when the activity can't be resolved
        if "Error:" in stdout:
            logger.warning("Start of %s on %s failed: %s", package.id, self.id, stdout.strip())
            return False
        return True

    async def stop_app(self, package: ApplicationPackage) -> bool:
        try:
            await self.backend.run("shell", "am", "force-stop", package.id, serial=self.id)
        except DeviceError as e:
            logger.warning("Stop of %s on %s failed: %s", package.id, self.id, e)
            return False
        return True


class AdbLogReader(DeviceLogReader):
    """Reads `adb logcat` for one device serial."""

    def __init__(self, device: AndroidDevice, on_line: LineCallback | None = None) -> None:
        super().__init__(on_line=on_line)
        self.device = device

    @property
    def name(self) -> str:
        return self.device.name

    @property
    def source_key(self) -> tuple[str, str]:
        return ("adb", self.device.id)

    async def logs(self, clear: bool = False) -> int:
        adb = self.device.backend.adb_path
        if clear:
            try:
                await self.device.backend.run("logcat", "-c", serial=self.device.id)
            except DeviceError as e:
                logger.warning("Could not clear logcat on %s: %s", self.device.id, e)
        return await self._stream_command(adb, "-s", self.device.id, "logcat", "-v", "tag")


class AndroidDiscovery(DiscoverySource):
    """Enumerates devices from `adb devices -l`."""

    name = "Android"

    def __init__(self, backend: AdbBackend | None = None) -> None:
        self.backend = backend or AdbBackend()

    def supports_platform(self) -> bool:
        return shutil.which(self.backend.adb_path) is not None

    async def current_devices(self) -> list[AndroidDevice]:
        devices: list[AndroidDevice] = []
        for info in await self.backend.list_devices():
            model = info.get("model", "")
            devices.append(AndroidDevice(
                info["serial"],
                name=model.replace("_", " ") or None,
                state=info["state"],
                backend=self.backend,
            ))
        return devices
