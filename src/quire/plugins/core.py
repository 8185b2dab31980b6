"""Built-in core plugin.

Basic editing commands implemented purely through the editor capability
contract, exactly as a third-party plugin would write them:

- ``insert <text>...`` inserts the words, space-joined, at the cursor
- ``mode <name> [operator]`` switches the editor mode
- ``[range]goto [line] [col]`` moves the cursor (1-based); without a line
  it jumps to the last line of the range
"""

from __future__ import annotations

import pluggy
import structlog

from quire.contract import (
    SCHEMA_VERSION,
    Arity,
    Command,
    CommandFlags,
    InitializeResult,
    Mode,
    ModeKind,
    Operator,
    Point,
)

hookimpl = pluggy.HookimplMarker("quire")

log = structlog.get_logger("quire.plugins.core")

COMMANDS = [
    Command(name="insert", arity=Arity(min=1, max=255)),
    Command(name="mode", arity=Arity(min=1, max=2)),
    Command(name="goto", arity=Arity(min=0, max=2), flags=CommandFlags.RANGE),
]


def _parse_mode(args: list[str]) -> Mode | None:
    try:
        kind = ModeKind(args[0])
        operator = Operator(args[1]) if len(args) > 1 else None
        return Mode(kind=kind, operator=operator)
    except ValueError:
        return None


class _CoreHandler:
    def __init__(self, editor) -> None:
        self.editor = editor

    def exec(self, cmd: str, args: list[str]) -> None:
        if cmd == "insert":
            result = self.editor.insert(" ".join(args))
            if result.is_err():
                log.warning("Insert refused", error=str(result.error))
        elif cmd == "mode":
            mode = _parse_mode(args)
            if mode is None:
                log.warning("Unknown mode", args=args)
                return
            self.editor.set_mode(mode)
        elif cmd == "goto":
            self._goto(args)

    def _goto(self, args: list[str]) -> None:
        try:
            if args:
                line = int(args[0]) - 1
            else:
                line = self.editor.get_range().end
            col = int(args[1]) - 1 if len(args) > 1 else 0
        except ValueError:
            log.warning("goto expects numbers", args=args)
            return
        if line < 0 or col < 0:
            log.warning("goto positions start at 1", args=args)
            return
        result = self.editor.get_active_view().set_cursor(Point(line=line, col=col))
        if result.is_err():
            log.warning("goto failed", error=str(result.error))


class CorePlugin:
    """Built-in plugin providing insert, mode and goto."""

    @hookimpl
    def quire_schema_version(self) -> int:
        return SCHEMA_VERSION

    @hookimpl
    def quire_get_name(self) -> str:
        return "core"

    @hookimpl
    def quire_dependencies(self) -> list[str]:
        return []

    @hookimpl
    def quire_initialize(self, editor) -> InitializeResult:
        return InitializeResult(commands=COMMANDS)

    @hookimpl
    def quire_create_handler(self, editor) -> _CoreHandler:
        return _CoreHandler(editor)
