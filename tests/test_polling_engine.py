"""Tests for the polling discovery engine, driven by a manual timer."""

from __future__ import annotations

import asyncio

import pytest

from devicewatch.discovery.polling import DeviceStream, PollingDiscoveryEngine
from devicewatch.models import DeviceError


@pytest.fixture
def source(make_source, make_device):
    return make_source([make_device("A")])


@pytest.fixture
def engine(source, timer):
    return PollingDiscoveryEngine(source, interval=4.0, sleep=timer.sleep)


def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class TestLifecycle:
    async def test_start_twice_creates_one_timer(self, engine, source, timer, settle):
        engine.start()
        engine.start()
        await settle()
        assert source.calls == 1
        assert len(timer.waiters) == 1

        for _ in range(3):
            timer.fire()
            await settle()

        assert source.calls == 4
        await engine.stop()

    async def test_polls_immediately_on_start(self, engine, source, settle):
        assert engine.status().status == "stopped"
        engine.start()
        await settle()
        assert source.calls == 1
        assert engine.is_polling
        assert engine.status().status == "polling"
        await engine.stop()

    async def test_stop_cancels_timer(self, engine, source, timer, settle):
        engine.start()
        await settle()
        await engine.stop()
        assert not engine.is_polling
        assert timer.waiters == []

        timer.fire()
        await settle()
        assert source.calls == 1

    async def test_stop_before_start_is_noop(self, engine):
        await engine.stop()
        await engine.stop()
        assert not engine.is_polling

    async def test_restart_after_stop(self, engine, source, settle):
        engine.start()
        await settle()
        await engine.stop()
        engine.start()
        await settle()
        assert source.calls == 2
        await engine.stop()

    async def test_stop_during_inflight_poll_commits_result(
        self, engine, source, timer, settle, make_device
    ):
        source.gate = asyncio.Event()
        source.devices = [make_device("A"), make_device("B")]
        engine.start()
        await settle()
        assert source.calls == 1

        await engine.stop()
        source.gate.set()
        await settle()

        assert engine.is_seeded
        assert {d.id for d in await engine.devices()} == {"A", "B"}
        timer.fire()
        await settle()
        assert source.calls == 1

    async def test_dispose_releases_subscribers(self, engine, settle):
        engine.on_added.subscribe()
        engine.on_removed.subscribe()
        engine.start()
        await settle()
        await engine.dispose()
        assert not engine.is_polling
        assert engine.on_added.subscriber_count == 0
        assert engine.on_removed.subscriber_count == 0

    def test_str(self, engine):
        assert str(engine) == "Fake device discovery"


class TestNotifications:
    async def test_first_tick_announces_every_device(self, engine, source, settle, make_device):
        source.devices = [make_device("A"), make_device("B")]
        added = engine.on_added.subscribe()
        engine.start()
        await settle()
        assert {d.id for d in _drain(added)} == {"A", "B"}
        await engine.stop()

    async def test_changes_published_once(self, engine, source, timer, settle, make_device):
        added = engine.on_added.subscribe()
        removed = engine.on_removed.subscribe()
        source.devices = [make_device("A"), make_device("B")]
        engine.start()
        await settle()
        _drain(added)

        source.devices = [make_device("B"), make_device("C")]
        timer.fire()
        await settle()
        assert [d.id for d in _drain(added)] == ["C"]
        assert [d.id for d in _drain(removed)] == ["A"]

        # Same snapshot again: nothing new
        timer.fire()
        await settle()
        assert _drain(added) == []
        assert _drain(removed) == []
        await engine.stop()

    async def test_streams_are_independent(self, engine, source, timer, settle):
        removed = engine.on_removed.subscribe()
        engine.start()
        await settle()
        assert removed.empty()

        source.devices = []
        timer.fire()
        await settle()
        assert [d.id for d in _drain(removed)] == ["A"]
        await engine.stop()


class TestDevicesAccess:
    async def test_first_access_seeds_without_events(self, engine, source):
        added = engine.on_added.subscribe()
        assert not engine.is_seeded
        devices = await engine.devices()
        assert [d.id for d in devices] == ["A"]
        assert source.calls == 1
        assert added.empty()

    async def test_later_access_uses_retained_snapshot(self, engine, source):
        await engine.devices()
        await engine.devices()
        assert source.calls == 1

    async def test_access_joins_inflight_poll(self, engine, source, settle):
        source.gate = asyncio.Event()
        engine.start()
        await settle()

        reader = asyncio.create_task(engine.devices())
        await settle()
        assert not reader.done()
        assert source.calls == 1

        source.gate.set()
        devices = await reader
        assert [d.id for d in devices] == ["A"]
        assert source.calls == 1
        await engine.stop()

    async def test_seeding_then_tick_only_reports_new(self, engine, source, timer, settle, make_device):
        await engine.devices()
        added = engine.on_added.subscribe()
        source.devices = [make_device("A"), make_device("Z")]
        engine.start()
        await settle()
        assert [d.id for d in _drain(added)] == ["Z"]
        await engine.stop()


class TestOverlap:
    async def test_tick_during_inflight_poll_is_dropped(self, engine, source, timer, settle):
        source.gate = asyncio.Event()
        engine.start()
        await settle()

        timer.fire()
        await settle()
        timer.fire()
        await settle()
        assert source.calls == 1
        assert engine.dropped_ticks == 2

        source.gate.set()
        await settle()
        timer.fire()
        await settle()
        assert source.calls == 2
        await engine.stop()


class TestProbeFailure:
    async def test_failure_keeps_previous_snapshot(self, engine, source, timer, settle):
        removed = engine.on_removed.subscribe()
        engine.start()
        await settle()

        source.error = DeviceError("adb server died", tool="adb")
        timer.fire()
        await settle()

        assert [d.id for d in await engine.devices()] == ["A"]
        assert removed.empty()
        status = engine.status()
        assert status.status == "error"
        assert "adb server died" in status.error

        source.error = None
        timer.fire()
        await settle()
        assert engine.status().status == "polling"
        assert engine.status().error is None
        await engine.stop()

    async def test_failed_seed_yields_empty_snapshot(self, engine, source):
        source.error = RuntimeError("boom")
        assert await engine.devices() == []
        assert engine.is_seeded
        assert engine.status().status == "error"

    async def test_status_counts(self, engine, source, timer, settle):
        engine.start()
        await settle()
        timer.fire()
        await settle()
        status = engine.status()
        assert status.poll_count == 2
        assert status.device_count == 1
        assert status.last_polled_at is not None
        assert status.supported is True
        await engine.stop()


class TestDeviceStream:
    def test_publish_to_all_subscribers(self, make_device):
        stream = DeviceStream()
        q1, q2 = stream.subscribe(), stream.subscribe()
        stream.publish(make_device("A"))
        assert q1.qsize() == 1
        assert q2.qsize() == 1

    def test_full_subscriber_dropped(self, make_device):
        stream = DeviceStream(maxsize=1)
        slow = stream.subscribe()
        stream.publish(make_device("A"))
        stream.publish(make_device("B"))
        assert stream.subscriber_count == 0
        assert slow.qsize() == 1

    def test_unsubscribe_unknown_queue(self):
        stream = DeviceStream()
        stream.unsubscribe(asyncio.Queue())
        assert stream.subscriber_count == 0
