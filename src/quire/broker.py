"""Capability broker: the only path from plugin code to editor state.

Each plugin receives an ``EditorSession``. A session accepts calls only
while its plugin is the single call in flight, counts those calls against
the sandbox step budget, and translates host-side ids into per-session
generation-tagged handles so plugins never touch a real editor object.

Edits commit incrementally: every broker operation is applied atomically
under the broker lock, and nothing is rolled back if the plugin later
faults.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from quire.contract import EditError, Err, LineRange, Mode, Ok, Point, Result
from quire.editor import EditorBackend
from quire.errors import (
    BudgetExceeded,
    EditRejected,
    HandleInvalid,
    PointOutOfBounds,
    SessionClosed,
)
from quire.event_bus import EventBus, ModeChanged
from quire.handles import Handle, HandleArena
from quire.logger import logger


class View:
    """Guest-side proxy for a host view. Holds nothing but a handle."""

    __slots__ = ("_session", "handle")

    def __init__(self, session: EditorSession, handle: Handle) -> None:
        self._session = session
        self.handle = handle

    def __repr__(self) -> str:
        return f"View({self.handle})"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, View)
            and other._session is self._session
            and other.handle == self.handle
        )

    def __hash__(self) -> int:
        return hash(("view", self.handle))

    def get_buffer(self) -> Result[Buffer, HandleInvalid]:
        return self._session._view_get_buffer(self.handle)

    def get_cursor(self) -> Result[Point, HandleInvalid]:
        return self._session._view_get_cursor(self.handle)

    def set_cursor(self, point: Point) -> Result[None, HandleInvalid | PointOutOfBounds]:
        return self._session._view_set_cursor(self.handle, point)


class Buffer:
    """Guest-side proxy for a host buffer."""

    __slots__ = ("_session", "handle")

    def __init__(self, session: EditorSession, handle: Handle) -> None:
        self._session = session
        self.handle = handle

    def __repr__(self) -> str:
        return f"Buffer({self.handle})"

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Buffer)
            and other._session is self._session
            and other.handle == self.handle
        )

    def __hash__(self) -> int:
        return hash(("buffer", self.handle))

    def is_valid(self) -> bool:
        return self._session._buffer_is_valid(self.handle)


class EditorSession:
    """The ``editor`` capability surface handed to one plugin."""

    def __init__(self, broker: CapabilityBroker, plugin: str) -> None:
        self._broker = broker
        self.plugin = plugin
        self.closed = False
        self.calls = 0
        self.budget_exceeded = False
        self._views: HandleArena[int] = HandleArena("view")
        self._buffers: HandleArena[int] = HandleArena("buffer")

    def __repr__(self) -> str:
        return f"EditorSession({self.plugin!r})"

    # -- editor interface --

    def insert(self, text: str) -> Result[None, EditError]:
        """Insert *text* at the cursor of the active view."""
        with self._broker._call(self, "insert") as backend:
            try:
                backend.insert(str(text))
            except EditRejected as exc:
                return Err(exc.error)
            return Ok()

    def get_mode(self) -> Mode:
        with self._broker._call(self, "get_mode") as backend:
            return backend.get_mode()

    def set_mode(self, mode: Mode) -> None:
        mode = Mode.model_validate(mode)
        with self._broker._call(self, "set_mode") as backend:
            old = backend.get_mode()
            if old.operator is not None and mode.operator is not None and old != mode:
                logger.debug(
                    "Pending operator replaced",
                    plugin=self.plugin,
                    old=str(old.operator),
                    new=str(mode.operator),
                )
            backend.set_mode(mode)
        if old != mode:
            self._broker._emit(ModeChanged(plugin=self.plugin, old=old, new=mode))

    def get_active_view(self) -> View:
        with self._broker._call(self, "get_active_view") as backend:
            view_id = backend.active_view()
            return View(self, self._issue(self._views, view_id))

    def get_range(self) -> LineRange | None:
        """The address range of the command currently running, if any."""
        with self._broker._call(self, "get_range"):
            return self._broker._range

    # -- handle plumbing --

    @staticmethod
    def _issue(arena: HandleArena[int], host_id: int) -> Handle:
        handle = arena.find(host_id)
        return handle if handle is not None else arena.insert(host_id)

    def _resolve_view(self, backend: EditorBackend, handle: Handle) -> int | None:
        view_id = self._views.get(handle)
        if view_id is None:
            return None
        if not backend.has_view(view_id):
            self._views.remove(handle)
            return None
        return view_id

    def _view_get_buffer(self, handle: Handle) -> Result[Buffer, HandleInvalid]:
        with self._broker._call(self, "view.get_buffer") as backend:
            view_id = self._resolve_view(backend, handle)
            if view_id is None:
                return Err(HandleInvalid("view", handle))
            buffer_id = backend.view_buffer(view_id)
            return Ok(Buffer(self, self._issue(self._buffers, buffer_id)))

    def _view_get_cursor(self, handle: Handle) -> Result[Point, HandleInvalid]:
        with self._broker._call(self, "view.get_cursor") as backend:
            view_id = self._resolve_view(backend, handle)
            if view_id is None:
                return Err(HandleInvalid("view", handle))
            return Ok(backend.get_cursor(view_id))

    def _view_set_cursor(
        self, handle: Handle, point: Any
    ) -> Result[None, HandleInvalid | PointOutOfBounds]:
        point = Point.model_validate(point)
        with self._broker._call(self, "view.set_cursor") as backend:
            view_id = self._resolve_view(backend, handle)
            if view_id is None:
                return Err(HandleInvalid("view", handle))
            try:
                backend.set_cursor(view_id, point)
            except PointOutOfBounds as exc:
                return Err(exc)
            return Ok()

    def _buffer_is_valid(self, handle: Handle) -> bool:
        with self._broker._call(self, "buffer.is_valid") as backend:
            buffer_id = self._buffers.get(handle)
            if buffer_id is None:
                return False
            if not backend.has_buffer(buffer_id):
                self._buffers.remove(handle)
                return False
            return True

    # -- host side --

    def close(self) -> None:
        """Permanently invalidate the session and every handle it issued."""
        self.closed = True
        self._views.clear()
        self._buffers.clear()


class CapabilityBroker:
    """Serializes every plugin call against editor state."""

    def __init__(self, backend: EditorBackend, *, event_bus: EventBus | None = None) -> None:
        self.backend = backend
        self._event_bus = event_bus
        self._lock = threading.RLock()
        self._in_flight: EditorSession | None = None
        self._max_calls = 0
        self._range: LineRange | None = None

    def open_session(self, plugin: str) -> EditorSession:
        return EditorSession(self, plugin)

    @property
    def in_flight(self) -> EditorSession | None:
        return self._in_flight

    @contextmanager
    def invocation(
        self,
        session: EditorSession,
        *,
        max_calls: int,
        range: LineRange | None = None,
    ) -> Iterator[None]:
        """Mark *session* as the one call in flight for the duration of the block."""
        with self._lock:
            if self._in_flight is not None:
                raise RuntimeError(
                    f"{session.plugin!r} entered while {self._in_flight.plugin!r} is in flight"
                )
            self._in_flight = session
            self._max_calls = max_calls
            self._range = range
            session.calls = 0
            session.budget_exceeded = False
        try:
            yield
        finally:
            with self._lock:
                self._in_flight = None
                self._range = None

    @contextmanager
    def _call(self, session: EditorSession, op: str) -> Iterator[EditorBackend]:
        with self._lock:
            if session.closed or session is not self._in_flight:
                raise SessionClosed(session.plugin)
            session.calls += 1
            if session.calls > self._max_calls:
                session.budget_exceeded = True
                raise BudgetExceeded(session.plugin, self._max_calls)
            logger.debug("Broker call", plugin=session.plugin, op=op)
            yield self.backend

    def cursor_context(self) -> tuple[int, int]:
        """Cursor line and line count of the active view, read atomically."""
        with self._lock:
            view = self.backend.active_view()
            cursor = self.backend.get_cursor(view)
            return cursor.line, self.backend.line_count(self.backend.view_buffer(view))

    def _emit(self, event: ModeChanged) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event)
