"""Entry point for `python -m quire` / `quire`.

Loads the configured plugins against an in-memory editor, runs command
lines against it and prints the resulting buffer.

    quire notes.txt -c ":insert hello" -c ":goto 2"
    quire --list
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from quire.config import get_settings
from quire.editor import MemoryEditor
from quire.lifecycle import PluginHost
from quire.logger import set_level


async def _run(args: argparse.Namespace) -> int:
    text = Path(args.file).read_text() if args.file else ""
    editor = MemoryEditor(text, readonly=args.readonly)

    async with PluginHost(editor) as host:
        report = host.report
        for err in report.errors if report else []:
            print(f"load error: {err}", file=sys.stderr)

        if args.list:
            for entry in host.commands():
                arity = entry.command.arity
                flags = " range" if entry.command.takes_range else ""
                print(f"{entry.name:<16} {entry.plugin:<12} {arity.min}..{arity.max}{flags}")
            return 0

        lines = list(args.command)
        if args.script:
            lines.append(Path(args.script).read_text())

        status = 0
        for line in lines:
            for result in await host.execute_script(line):
                if result.is_err():
                    print(f"error: {result.error}", file=sys.stderr)
                    status = 1

    output = editor.text()
    if args.output:
        Path(args.output).write_text(output)
    else:
        print(output)
    return status


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="quire",
        description="Run editor commands through the quire plugin host",
    )
    parser.add_argument("file", nargs="?", help="File to open (default: empty buffer)")
    parser.add_argument(
        "-c",
        "--command",
        action="append",
        default=[],
        help="Command line to execute; may be repeated",
    )
    parser.add_argument("--script", help="File of command lines to execute")
    parser.add_argument("--readonly", action="store_true", help="Open the buffer read-only")
    parser.add_argument("-o", "--output", help="Write the final buffer here instead of stdout")
    parser.add_argument("--list", action="store_true", help="List registered commands and exit")

    args = parser.parse_args()
    set_level(get_settings().logging.level)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
