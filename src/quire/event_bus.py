"""Lightweight asyncio event bus for intra-process pub/sub."""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from quire.contract import Mode
from quire.logger import logger

# --- Event types ---


@dataclass
class PluginStateChanged:
    """A plugin moved between lifecycle states."""

    plugin: str
    old: str
    new: str


@dataclass
class ModeChanged:
    """A plugin changed the editor mode through the broker."""

    plugin: str
    old: Mode
    new: Mode


@dataclass
class CommandDispatched:
    """A dispatch attempt finished (successfully or not)."""

    command: str
    plugin: str | None
    ok: bool
    error: str | None = None


type Event = PluginStateChanged | ModeChanged | CommandDispatched
type Listener = Callable[[Any], Coroutine[Any, Any, None]]


class EventBus:
    """Fire-and-forget async event dispatcher.

    ``emit`` may be called from plugin worker threads; events are handed
    to the loop the bus was bound to.
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event type. Returns an unsubscribe function."""
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[event_type].remove(listener)

        return _unsubscribe

    def emit(self, event: Event) -> None:
        """Emit an event to all subscribers. Non-blocking, fire-and-forget."""
        listeners = list(self._listeners[type(event)])
        if not listeners:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is None or self._loop.is_closed():
                logger.debug("EventBus dropped event, no loop", event=type(event).__name__)
                return
            self._loop.call_soon_threadsafe(_schedule, listeners, event)
            return
        _schedule(listeners, event)


def _schedule(listeners: list[Listener], event: Event) -> None:
    for listener in listeners:
        asyncio.ensure_future(_safe_call(listener, event))


async def _safe_call(listener: Listener, event: Event) -> None:
    try:
        await listener(event)
    except Exception as exc:
        logger.warning("EventBus listener error", err=str(exc))
