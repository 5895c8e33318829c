"""Device discovery, change tracking and target selection for app deployment."""

from devicewatch.device import Device, DeviceLogReader, device_key, log_reader_key
from devicewatch.discovery import ChangeSet, DiscoverySource, diff_snapshots
from devicewatch.discovery.polling import PollingDiscoveryEngine
from devicewatch.discovery.registry import DeviceRegistry
from devicewatch.discovery.selector import DeviceStore, SelectionResult, select_device

__all__ = [
    "ChangeSet",
    "Device",
    "DeviceLogReader",
    "DeviceRegistry",
    "DeviceStore",
    "DiscoverySource",
    "PollingDiscoveryEngine",
    "SelectionResult",
    "device_key",
    "diff_snapshots",
    "log_reader_key",
    "select_device",
]
