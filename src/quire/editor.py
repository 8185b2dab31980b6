"""Editor state collaborator interface and an in-memory implementation.

The host never owns text storage; it talks to whatever implements
``EditorBackend``. ``MemoryEditor`` is a small list-of-lines backend used
by the CLI and tests.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from quire.contract import EditError, Mode, Point
from quire.errors import EditRejected, PointOutOfBounds


@runtime_checkable
class EditorBackend(Protocol):
    """Live editor state as seen by the capability broker.

    View and buffer ids are host-side identifiers; they never cross the
    plugin boundary. ``set_cursor`` raises ``PointOutOfBounds`` and
    ``insert`` raises ``EditRejected`` instead of clamping or ignoring.
    """

    def get_mode(self) -> Mode: ...

    def set_mode(self, mode: Mode) -> None: ...

    def active_view(self) -> int: ...

    def has_view(self, view: int) -> bool: ...

    def has_buffer(self, buffer: int) -> bool: ...

    def view_buffer(self, view: int) -> int: ...

    def get_cursor(self, view: int) -> Point: ...

    def set_cursor(self, view: int, point: Point) -> None: ...

    def line_count(self, buffer: int) -> int: ...

    def insert(self, text: str) -> None: ...


@dataclass
class MemoryBuffer:
    lines: list[str] = field(default_factory=lambda: [""])
    readonly: bool = False

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass
class MemoryView:
    buffer: int
    cursor: Point = field(default_factory=lambda: Point(line=0, col=0))


class MemoryEditor:
    """In-memory ``EditorBackend``: buffers are lists of lines."""

    def __init__(self, text: str = "", *, readonly: bool = False) -> None:
        self._ids = itertools.count(1)
        self.buffers: dict[int, MemoryBuffer] = {}
        self.views: dict[int, MemoryView] = {}
        self.mode = Mode.normal()
        self._active = self.open(text, readonly=readonly)

    # -- host-side management (not reachable from plugins) --

    def open(self, text: str = "", *, readonly: bool = False) -> int:
        """Create a buffer holding *text* and a view on it; the view becomes active."""
        buffer_id = next(self._ids)
        self.buffers[buffer_id] = MemoryBuffer(lines=text.split("\n"), readonly=readonly)
        view_id = next(self._ids)
        self.views[view_id] = MemoryView(buffer=buffer_id)
        self._active = view_id
        return view_id

    def focus(self, view: int) -> None:
        if view not in self.views:
            raise KeyError(view)
        self._active = view

    def close_view(self, view: int) -> None:
        """Close *view*, dropping its buffer when no other view shows it.

        The last view cannot be closed: there is always an active view.
        """
        if view in self.views and len(self.views) == 1:
            raise ValueError("cannot close the last view")
        closed = self.views.pop(view)
        if not any(v.buffer == closed.buffer for v in self.views.values()):
            del self.buffers[closed.buffer]
        if self._active == view:
            self._active = next(iter(self.views))

    def text(self, view: int | None = None) -> str:
        view = self._active if view is None else view
        return self.buffers[self.views[view].buffer].text

    # -- EditorBackend --

    def get_mode(self) -> Mode:
        return self.mode

    def set_mode(self, mode: Mode) -> None:
        self.mode = mode

    def active_view(self) -> int:
        return self._active

    def has_view(self, view: int) -> bool:
        return view in self.views

    def has_buffer(self, buffer: int) -> bool:
        return buffer in self.buffers

    def view_buffer(self, view: int) -> int:
        return self.views[view].buffer

    def get_cursor(self, view: int) -> Point:
        return self.views[view].cursor

    def set_cursor(self, view: int, point: Point) -> None:
        v = self.views[view]
        lines = self.buffers[v.buffer].lines
        if point.line >= len(lines) or point.col > len(lines[point.line]):
            raise PointOutOfBounds(point.line, point.col)
        v.cursor = point

    def line_count(self, buffer: int) -> int:
        return len(self.buffers[buffer].lines)

    def insert(self, text: str) -> None:
        view = self.views[self._active]
        buf = self.buffers[view.buffer]
        if buf.readonly:
            raise EditRejected(EditError.READONLY)

        line, col = view.cursor.line, view.cursor.col
        current = buf.lines[line]
        head, tail = current[:col], current[col:]
        pieces = text.split("\n")
        if len(pieces) == 1:
            buf.lines[line] = head + text + tail
            view.cursor = Point(line=line, col=col + len(text))
            return
        new_lines = [head + pieces[0], *pieces[1:-1], pieces[-1] + tail]
        buf.lines[line : line + 1] = new_lines
        view.cursor = Point(line=line + len(pieces) - 1, col=len(pieces[-1]))
