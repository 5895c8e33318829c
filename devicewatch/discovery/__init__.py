"""Abstract discovery source and snapshot diffing.

A discovery source knows how to enumerate the currently reachable devices of
one platform family (adb for Android, devicectl for iOS devices, simctl for
simulators). Each enumeration is a *snapshot*. Consecutive snapshots are
diffed by device identity to find what connected and what went away.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from dataclasses import dataclass, field

from devicewatch.device import Device, device_key

# One poll's worth of devices, id-unique
Snapshot = Sequence[Device]


class DiscoverySource(abc.ABC):
    """Base class for platform-specific device enumerators."""

    name: str = "unknown"

    @abc.abstractmethod
    def supports_platform(self) -> bool:
        """Whether this source can run on the current host.

        Must be cheap and must not spawn subprocesses; it is checked before
        every enumeration.
        """

    @abc.abstractmethod
    async def current_devices(self) -> Snapshot:
        """Enumerate the devices reachable right now.

        May be slow (seconds). Raising is allowed; the polling engine decides
        what a failed enumeration means.
        """


@dataclass(frozen=True)
class ChangeSet:
    """Devices that appeared and disappeared between two snapshots."""

    added: frozenset[Device] = field(default_factory=frozenset)
    removed: frozenset[Device] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def diff_snapshots(previous: Snapshot, current: Snapshot) -> ChangeSet:
    """Compute added/removed devices keyed by device identity.

    A device present in both snapshots yields nothing, even when its name or
    connection state changed.
    """
    previous_by_key = {device_key(d): d for d in previous}
    current_by_key = {device_key(d): d for d in current}
    return ChangeSet(
        added=frozenset(d for k, d in current_by_key.items() if k not in previous_by_key),
        removed=frozenset(d for k, d in previous_by_key.items() if k not in current_by_key),
    )
