"""Pick at most one target device per platform for a set of build configurations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from devicewatch.device import Device
from devicewatch.discovery.registry import DeviceRegistry
from devicewatch.models import BuildConfiguration, TargetPlatform

logger = logging.getLogger("devicewatch.selector")

AMBIGUOUS_ADVISORY = (
    "Multiple devices are connected, but no device ID was specified.\n"
    "Attempting to launch on all connected devices."
)

# Receives user-facing advisory text
AdvisoryCallback = Callable[[str], None]

# Platforms that have a slot in DeviceStore
_STORE_SLOTS = {
    TargetPlatform.ANDROID: "android",
    TargetPlatform.IOS: "ios",
    TargetPlatform.IOS_SIMULATOR: "ios_simulator",
}


def _log_advisory(message: str) -> None:
    for line in message.splitlines():
        logger.info(line)


@dataclass(frozen=True)
class SelectionResult:
    platform: TargetPlatform
    device: Device | None = None
    ambiguous: bool = False
    advisory: str | None = None


def select_device(
    config: BuildConfiguration,
    candidates: Sequence[Device],
    advise: AdvisoryCallback | None = None,
) -> SelectionResult:
    """Choose the device a configuration should run on.

    1. If the configuration names a device id, pick the candidate with exactly
       that id (case-sensitive). No match selects nothing.
    2. Otherwise a single candidate is picked.
    3. Several candidates with no id select nothing and emit one advisory;
       the caller is expected to launch on all of them.
    4. No candidates select nothing.
    """
    platform = config.target_platform

    if config.device_id is not None:
        for device in candidates:
            if device.id == config.device_id:
                return SelectionResult(platform=platform, device=device)
        return SelectionResult(platform=platform)

    if len(candidates) == 1:
        return SelectionResult(platform=platform, device=candidates[0])

    if len(candidates) > 1:
        (advise or _log_advisory)(AMBIGUOUS_ADVISORY)
        return SelectionResult(platform=platform, ambiguous=True, advisory=AMBIGUOUS_ADVISORY)

    return SelectionResult(platform=platform)


class DeviceStore:
    """The selected device for each deployable platform."""

    def __init__(
        self,
        android: Device | None = None,
        ios: Device | None = None,
        ios_simulator: Device | None = None,
        results: Sequence[SelectionResult] = (),
    ) -> None:
        self.android = android
        self.ios = ios
        self.ios_simulator = ios_simulator
        self.results = list(results)

    @property
    def all(self) -> list[Device]:
        return [d for d in (self.android, self.ios, self.ios_simulator) if d is not None]

    @property
    def advisories(self) -> list[str]:
        return [r.advisory for r in self.results if r.advisory]

    @classmethod
    def for_configs(
        cls,
        configs: Sequence[BuildConfiguration],
        candidates: Mapping[TargetPlatform, Sequence[Device]],
        advise: AdvisoryCallback | None = None,
    ) -> DeviceStore:
        """Run one selection pass over ``configs``.

        Raises:
            ValueError: If two configurations would both assign a device to
                the same platform.
        """
        selected: dict[str, Device | None] = {}
        results: list[SelectionResult] = []

        for config in configs:
            slot = _STORE_SLOTS.get(config.target_platform)
            if slot is None:
                # mac/linux targets have no device to select
                continue
            if selected.get(slot) is not None:
                raise ValueError(
                    f"A {config.target_platform.value} device is already selected; "
                    "only one build configuration per platform is allowed"
                )
            result = select_device(config, candidates.get(config.target_platform, ()), advise)
            selected[slot] = result.device
            results.append(result)

        return cls(results=results, **selected)

    @classmethod
    async def from_registry(
        cls,
        configs: Sequence[BuildConfiguration],
        registry: DeviceRegistry,
        advise: AdvisoryCallback | None = None,
    ) -> DeviceStore:
        """Select devices using the registry's connected devices as candidates."""
        candidates: dict[TargetPlatform, list[Device]] = {}
        for device in await registry.get_all_connected_devices():
            candidates.setdefault(device.platform, []).append(device)
        return cls.for_configs(configs, candidates, advise)
