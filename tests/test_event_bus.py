"""Tests for the EventBus pub/sub system."""

from __future__ import annotations

import asyncio
import threading

import pytest

from quire.contract import Mode
from quire.event_bus import (
    CommandDispatched,
    EventBus,
    ModeChanged,
    PluginStateChanged,
)


@pytest.fixture
def bus() -> EventBus:
    """Create a fresh EventBus for each test."""
    return EventBus()


class TestEventBus:
    """Test EventBus subscription and emission."""

    @pytest.mark.asyncio
    async def test_subscribe_and_emit(self, bus: EventBus) -> None:
        received: list[PluginStateChanged] = []

        async def listener(event: PluginStateChanged) -> None:
            received.append(event)

        bus.subscribe(PluginStateChanged, listener)
        event = PluginStateChanged(plugin="core", old="unloaded", new="initializing")
        bus.emit(event)

        # Give event loop time to process
        await asyncio.sleep(0.01)

        assert received == [event]

    @pytest.mark.asyncio
    async def test_listeners_only_see_their_type(self, bus: EventBus) -> None:
        modes: list[ModeChanged] = []

        async def listener(event: ModeChanged) -> None:
            modes.append(event)

        bus.subscribe(ModeChanged, listener)
        bus.emit(CommandDispatched(command="x", plugin=None, ok=False, error="nope"))
        bus.emit(ModeChanged(plugin="p", old=Mode.normal(), new=Mode.insert()))
        await asyncio.sleep(0.01)

        assert len(modes) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus: EventBus) -> None:
        received = []

        async def listener(event) -> None:
            received.append(event)

        unsubscribe = bus.subscribe(PluginStateChanged, listener)
        unsubscribe()
        unsubscribe()  # second call is a no-op
        bus.emit(PluginStateChanged(plugin="p", old="a", new="b"))
        await asyncio.sleep(0.01)

        assert received == []

    @pytest.mark.asyncio
    async def test_listener_error_does_not_affect_others(self, bus: EventBus) -> None:
        received = []

        async def broken(event) -> None:
            raise RuntimeError("listener bug")

        async def healthy(event) -> None:
            received.append(event)

        bus.subscribe(PluginStateChanged, broken)
        bus.subscribe(PluginStateChanged, healthy)
        bus.emit(PluginStateChanged(plugin="p", old="a", new="b"))
        await asyncio.sleep(0.01)

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_emit_from_worker_thread(self, bus: EventBus) -> None:
        received = []

        async def listener(event) -> None:
            received.append(event)

        bus.subscribe(PluginStateChanged, listener)
        bus.bind(asyncio.get_running_loop())
        worker = threading.Thread(
            target=bus.emit, args=(PluginStateChanged(plugin="p", old="a", new="b"),)
        )
        worker.start()
        worker.join()
        await asyncio.sleep(0.01)

        assert len(received) == 1

    def test_emit_without_loop_is_dropped(self, bus: EventBus) -> None:
        async def listener(event) -> None:
            raise AssertionError("should not run")

        bus.subscribe(PluginStateChanged, listener)
        bus.emit(PluginStateChanged(plugin="p", old="a", new="b"))
