"""Command-line parsing.

A command line is ``[:][range] name [arg ...]`` where ``range`` is one of
``%`` (whole buffer), ``A`` or ``A,B`` with each address a 1-based line
number, ``.`` (cursor line) or ``$`` (last line). Words are separated by
whitespace; a script is several command lines separated by ``;`` or
newlines.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from quire.contract import LineRange
from quire.errors import InvalidCommandLine

type Address = int | str

_ADDRESS = r"\.|\$|\d+"
_RANGE_RE = re.compile(rf"^(?:(?P<whole>%)|(?P<start>{_ADDRESS})(?:,(?P<end>{_ADDRESS}))?)")
_SEPARATOR_RE = re.compile(r"[;\n]")


@dataclass(frozen=True)
class RangeSpec:
    """An unresolved address range as typed by the user."""

    start: Address = "."
    end: Address = "."
    whole: bool = False

    def resolve(self, cursor_line: int, line_count: int, *, source: str = "") -> LineRange:
        """Turn the typed range into zero-based lines of a buffer."""
        if self.whole:
            return LineRange(start=0, end=max(line_count - 1, 0))
        start = self._line(self.start, cursor_line, line_count, source)
        end = self._line(self.end, cursor_line, line_count, source)
        if start > end:
            raise InvalidCommandLine(source, "backwards range")
        return LineRange(start=start, end=end)

    @staticmethod
    def _line(address: Address, cursor_line: int, line_count: int, source: str) -> int:
        if address == ".":
            return cursor_line
        if address == "$":
            return max(line_count - 1, 0)
        line = int(address) - 1
        if not 0 <= line < line_count:
            raise InvalidCommandLine(source, f"line {address} is outside the buffer")
        return line


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: list[str] = field(default_factory=list)
    range: RangeSpec | None = None
    source: str = ""


def _address(text: str) -> Address:
    if text in (".", "$"):
        return text
    if int(text) == 0:
        raise ValueError("line numbers start at 1")
    return int(text)


def parse_command_line(line: str) -> ParsedCommand:
    """Parse one command line.

    Raises:
        InvalidCommandLine: empty line, missing command name or bad range.
    """
    source = line
    text = line.strip()
    if text.startswith(":"):
        text = text[1:].lstrip()

    range_spec: RangeSpec | None = None
    match = _RANGE_RE.match(text)
    if match:
        try:
            if match["whole"]:
                range_spec = RangeSpec(whole=True)
            else:
                start = _address(match["start"])
                end = _address(match["end"]) if match["end"] else start
                range_spec = RangeSpec(start=start, end=end)
        except ValueError as exc:
            raise InvalidCommandLine(source, str(exc)) from exc
        text = text[match.end() :]

    words = text.split()
    if not words:
        raise InvalidCommandLine(source, "missing command name")
    return ParsedCommand(name=words[0], args=words[1:], range=range_spec, source=source)


def parse_script(script: str) -> list[ParsedCommand]:
    """Parse every non-blank command line of *script*, in order."""
    return [
        parse_command_line(part)
        for part in _SEPARATOR_RE.split(script)
        if part.strip() and part.strip() != ":"
    ]
