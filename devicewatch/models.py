"""Core data models shared by discovery, selection and the API layer."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

# Port the VM service listens on when a caller doesn't pick one
DEFAULT_OBSERVATORY_PORT = 8181


class TargetPlatform(str, enum.Enum):
    """Platform family a device (or a build configuration) targets."""

    ANDROID = "android"
    IOS = "ios"
    IOS_SIMULATOR = "ios_simulator"
    MAC = "mac"
    LINUX = "linux"


class DeviceError(Exception):
    """Raised when a device CLI tool (adb, simctl, devicectl) fails."""

    def __init__(self, message: str, tool: str = "") -> None:
        super().__init__(message)
        self.tool = tool


# ---------------------------------------------------------------------------
# Values passed through Device operations
# ---------------------------------------------------------------------------


class ApplicationPackage(BaseModel):
    """An installable app. Discovery never looks inside it."""

    id: str = Field(description="Package name (Android) or bundle id (iOS)")
    name: str = ""
    local_path: str = Field(default="", description="Path to the .apk or .app on the host")
    launch_activity: str | None = Field(
        default=None, description="Android activity to start, e.g. 'com.example/.MainActivity'"
    )


class StartOptions(BaseModel):
    """Options for Device.start_app()."""

    main_path: str | None = None
    route: str | None = None
    checked: bool = True
    clear_logs: bool = False
    start_paused: bool = False
    debug_port: int = DEFAULT_OBSERVATORY_PORT
    platform_args: dict[str, Any] = Field(default_factory=dict)


class BuildConfiguration(BaseModel):
    """One per-platform build/run target as seen by the device selector."""

    target_platform: TargetPlatform
    device_id: str | None = None


# ---------------------------------------------------------------------------
# API schemas
# ---------------------------------------------------------------------------


class DeviceSummary(BaseModel):
    """Serialisable view of a discovered device."""

    id: str
    name: str
    platform: TargetPlatform
    connected: bool
    supported: bool
    support_message: str


class DeviceEvent(BaseModel):
    """A single added/removed transition published by a discovery engine."""

    event: str  # "added" or "removed"
    source: str
    device: DeviceSummary
    timestamp: datetime


class DiscoveryStatus(BaseModel):
    """Status of one polling discovery engine."""

    name: str
    status: str  # "polling", "stopped", "error"
    supported: bool
    device_count: int = 0
    poll_count: int = 0
    dropped_ticks: int = 0
    last_polled_at: datetime | None = None
    error: str | None = None


class SelectRequest(BaseModel):
    """Body for POST /api/v1/devices/select."""

    configs: list[BuildConfiguration]


class SelectionEntry(BaseModel):
    platform: TargetPlatform
    device: DeviceSummary | None = None
    ambiguous: bool = False


class SelectResponse(BaseModel):
    """Response from POST /api/v1/devices/select."""

    selections: list[SelectionEntry]
    advisories: list[str] = Field(default_factory=list)
