"""Tests for target device selection."""

from __future__ import annotations

import pytest

from devicewatch.discovery.registry import DeviceRegistry
from devicewatch.discovery.selector import AMBIGUOUS_ADVISORY, DeviceStore, select_device
from devicewatch.models import BuildConfiguration, TargetPlatform


def _config(platform=TargetPlatform.ANDROID, device_id=None) -> BuildConfiguration:
    return BuildConfiguration(target_platform=platform, device_id=device_id)


class TestSelectDevice:
    def test_single_candidate_selected(self, make_device):
        x = make_device("X")
        advisories: list[str] = []
        result = select_device(_config(), [x], advise=advisories.append)
        assert result.device is x
        assert not result.ambiguous
        assert advisories == []

    def test_multiple_candidates_ambiguous(self, make_device):
        advisories: list[str] = []
        result = select_device(_config(), [make_device("X"), make_device("Y")], advise=advisories.append)
        assert result.device is None
        assert result.ambiguous
        assert advisories == [AMBIGUOUS_ADVISORY]
        assert result.advisory == AMBIGUOUS_ADVISORY

    def test_advisory_text(self):
        assert AMBIGUOUS_ADVISORY.splitlines() == [
            "Multiple devices are connected, but no device ID was specified.",
            "Attempting to launch on all connected devices.",
        ]

    def test_explicit_id_selects_match(self, make_device):
        y = make_device("Y")
        advisories: list[str] = []
        result = select_device(_config(device_id="Y"), [make_device("X"), y], advise=advisories.append)
        assert result.device is y
        assert advisories == []

    def test_explicit_id_is_case_sensitive(self, make_device):
        result = select_device(_config(device_id="y"), [make_device("X"), make_device("Y")])
        assert result.device is None
        assert not result.ambiguous

    def test_explicit_id_no_match_is_silent(self, make_device):
        advisories: list[str] = []
        result = select_device(_config(device_id="Z"), [make_device("X")], advise=advisories.append)
        assert result.device is None
        assert advisories == []

    def test_no_candidates(self):
        advisories: list[str] = []
        result = select_device(_config(), [], advise=advisories.append)
        assert result.device is None
        assert not result.ambiguous
        assert advisories == []

    def test_default_advisory_goes_to_log(self, make_device, caplog):
        with caplog.at_level("INFO", logger="devicewatch.selector"):
            select_device(_config(), [make_device("X"), make_device("Y")])
        assert "Multiple devices are connected" in caplog.text


class TestDeviceStore:
    def test_for_configs(self, make_device):
        pixel = make_device("pixel")
        sim = make_device("sim", platform=TargetPlatform.IOS_SIMULATOR)
        store = DeviceStore.for_configs(
            [
                _config(TargetPlatform.ANDROID),
                _config(TargetPlatform.IOS_SIMULATOR),
                _config(TargetPlatform.IOS),
            ],
            {TargetPlatform.ANDROID: [pixel], TargetPlatform.IOS_SIMULATOR: [sim]},
        )
        assert store.android is pixel
        assert store.ios_simulator is sim
        assert store.ios is None
        assert store.all == [pixel, sim]
        assert store.advisories == []

    def test_desktop_platforms_ignored(self, make_device):
        store = DeviceStore.for_configs(
            [_config(TargetPlatform.MAC), _config(TargetPlatform.LINUX)],
            {TargetPlatform.MAC: [make_device("mac")]},
        )
        assert store.all == []
        assert store.results == []

    def test_duplicate_platform_assignment_raises(self, make_device):
        with pytest.raises(ValueError, match="already selected"):
            DeviceStore.for_configs(
                [_config(TargetPlatform.ANDROID), _config(TargetPlatform.ANDROID)],
                {TargetPlatform.ANDROID: [make_device("pixel")]},
            )

    def test_ambiguous_collects_advisory(self, make_device):
        advisories: list[str] = []
        store = DeviceStore.for_configs(
            [_config(TargetPlatform.ANDROID)],
            {TargetPlatform.ANDROID: [make_device("a"), make_device("b")]},
            advise=advisories.append,
        )
        assert store.android is None
        assert store.advisories == [AMBIGUOUS_ADVISORY]
        assert len(advisories) == 1

    async def test_from_registry(self, make_source, make_device):
        registry = DeviceRegistry(sources=[
            make_source([make_device("pixel"), make_device("galaxy")], name="Android"),
            make_source([make_device("SIM-1", platform=TargetPlatform.IOS_SIMULATOR)], name="Sims"),
        ])
        store = await DeviceStore.from_registry(
            [
                _config(TargetPlatform.ANDROID, device_id="galaxy"),
                _config(TargetPlatform.IOS_SIMULATOR),
            ],
            registry,
        )
        assert store.android.id == "galaxy"
        assert store.ios_simulator.id == "SIM-1"
