"""Command registry and dispatcher.

The registry maps each command name to the plugin that owns it and the
handle of that plugin's handler. The dispatcher validates an invocation
against the registered declaration before plugin code ever runs, then
executes it inside the owner's sandbox.

Dispatch is serialized: invocations from different tasks queue FIFO on a
single lock, and a dispatch issued from the task that is already running
a handler is rejected with ``NestedDispatch`` rather than deadlocking.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from quire.broker import CapabilityBroker
from quire.config import CommandsConfig
from quire.contract import Command, Err, LineRange, Ok, Result
from quire.errors import (
    ArityViolation,
    CommandNotFound,
    DispatchError,
    DuplicateCommandName,
    HandlerFault,
    InvalidArity,
    InvalidCommand,
    NestedDispatch,
    RangeNotSupported,
    RangeRequired,
    RegistrationError,
)
from quire.event_bus import CommandDispatched, EventBus
from quire.handles import Handle, HandleArena
from quire.logger import logger
from quire.plugin.sandbox import PluginSandbox, SandboxFault


@dataclass(frozen=True)
class RegisteredCommand:
    command: Command
    plugin: str
    handler: Handle

    @property
    def name(self) -> str:
        return self.command.name


def _declared_name(raw: Any) -> str:
    """Best-effort name of a rejected declaration, without running its code."""
    try:
        name = raw.get("name") if isinstance(raw, dict) else getattr(raw, "name", None)
    except Exception:
        name = None
    if isinstance(name, str):
        return name
    return raw if isinstance(raw, str) else f"<{type(name).__name__}>"


class CommandRegistry:
    """Command name -> (owning plugin, handler handle)."""

    def __init__(self, duplicate_policy: str = "first-wins") -> None:
        self.duplicate_policy = duplicate_policy
        self._commands: dict[str, RegisteredCommand] = {}
        self._handlers: HandleArena[tuple[str, Any]] = HandleArena("handler")

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[RegisteredCommand]:
        return iter(list(self._commands.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def get(self, name: str) -> RegisteredCommand | None:
        return self._commands.get(name)

    # -- handlers --

    def add_handler(self, plugin: str, handler: Any) -> Handle:
        return self._handlers.insert((plugin, handler))

    def handler(self, handle: Handle) -> Any | None:
        entry = self._handlers.get(handle)
        return None if entry is None else entry[1]

    # -- registration --

    def register(
        self, plugin: str, handler: Handle, declared: Iterable[Any]
    ) -> tuple[list[Command], list[RegistrationError]]:
        """Validate and register each declared command individually.

        Returns the commands that were registered and the per-command
        problems. One bad declaration never rejects its siblings.
        """
        accepted: list[Command] = []
        problems: list[RegistrationError] = []

        for raw in declared:
            try:
                command = Command.model_validate(raw)
            except ValidationError as exc:
                problems.append(self._invalid(plugin, raw, exc))
                continue

            holder = self._commands.get(command.name)
            if holder is not None:
                if self.duplicate_policy == "last-wins":
                    problems.append(
                        DuplicateCommandName(command.name, plugin, holder.plugin, kept=plugin)
                    )
                else:
                    problems.append(
                        DuplicateCommandName(
                            command.name, plugin, holder.plugin, kept=holder.plugin
                        )
                    )
                    continue

            self._commands[command.name] = RegisteredCommand(command, plugin, handler)
            accepted.append(command)

        for problem in problems:
            logger.warning("Command registration problem", plugin=plugin, err=str(problem))
        logger.info(
            "Commands registered", plugin=plugin, commands=[c.name for c in accepted]
        )
        return accepted, problems

    @staticmethod
    def _invalid(plugin: str, raw: Any, exc: ValidationError) -> RegistrationError:
        name = _declared_name(raw)
        for error in exc.errors():
            if error["type"] == "invalid_arity":
                ctx = error.get("ctx", {})
                return InvalidArity(name, plugin, ctx.get("min", -1), ctx.get("max", -1))
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "command"
        return InvalidCommand(name, plugin, f"{location}: {first['msg']}")

    def deregister_plugin(self, plugin: str) -> list[str]:
        """Drop every command and handler owned by *plugin*."""
        removed = [name for name, entry in self._commands.items() if entry.plugin == plugin]
        for name in removed:
            del self._commands[name]
        for handle, (owner, _) in list(self._handlers):
            if owner == plugin:
                self._handlers.remove(handle)
        if removed:
            logger.info("Commands deregistered", plugin=plugin, commands=removed)
        return removed

    def clear(self) -> None:
        self._commands.clear()
        self._handlers.clear()


class Dispatcher:
    """Routes validated invocations to the owning plugin's handler."""

    def __init__(
        self,
        registry: CommandRegistry,
        broker: CapabilityBroker,
        *,
        sandbox_for: Callable[[str], PluginSandbox | None],
        on_fault: Callable[[str, str], None],
        config: CommandsConfig,
        event_bus: EventBus | None = None,
    ) -> None:
        self._registry = registry
        self._broker = broker
        self._sandbox_for = sandbox_for
        self._on_fault = on_fault
        self._config = config
        self._event_bus = event_bus
        self.lock = asyncio.Lock()
        self._running: asyncio.Task[Any] | None = None

    async def dispatch(
        self,
        name: str,
        args: Sequence[str] = (),
        range: LineRange | None = None,
    ) -> Result[None, DispatchError]:
        task = asyncio.current_task()
        if task is not None and task is self._running:
            result: Result[None, DispatchError] = Err(NestedDispatch(name))
            self._report(name, None, result)
            return result

        async with self.lock:
            self._running = task
            try:
                result, plugin = await self._dispatch(name, [str(a) for a in args], range)
            finally:
                self._running = None
        self._report(name, plugin, result)
        return result

    async def _dispatch(
        self, name: str, args: list[str], range: LineRange | None
    ) -> tuple[Result[None, DispatchError], str | None]:
        entry = self._registry.get(name)
        if entry is None:
            return Err(CommandNotFound(name)), None

        command = entry.command
        if not command.arity.accepts(len(args)):
            return Err(ArityViolation(name, command.arity, len(args))), entry.plugin

        if range is not None and not command.takes_range:
            return Err(RangeNotSupported(name)), entry.plugin
        if command.takes_range and range is None:
            if self._config.range_default == "reject":
                return Err(RangeRequired(name)), entry.plugin
            range = self._default_range()

        sandbox = self._sandbox_for(entry.plugin)
        handler = self._registry.handler(entry.handler)
        if sandbox is None or handler is None:
            # Registry and sandbox table disagree; treat the command as gone
            logger.error("Dangling command entry", command=name, plugin=entry.plugin)
            return Err(CommandNotFound(name)), entry.plugin

        try:
            await sandbox.exec(handler, name, args, range=range)
        except SandboxFault as fault:
            self._on_fault(entry.plugin, fault.reason)
            return Err(HandlerFault(entry.plugin, name, fault.reason)), entry.plugin
        return Ok(), entry.plugin

    def _default_range(self) -> LineRange:
        line, count = self._broker.cursor_context()
        if self._config.range_default == "buffer":
            return LineRange(start=0, end=max(count - 1, 0))
        return LineRange(start=line, end=line)

    def _report(
        self, name: str, plugin: str | None, result: Result[None, DispatchError]
    ) -> None:
        if isinstance(result, Err):
            logger.warning("Command failed", command=name, plugin=plugin, err=str(result.error))
            error: str | None = str(result.error)
        else:
            logger.debug("Command dispatched", command=name, plugin=plugin)
            error = None
        if self._event_bus is not None:
            self._event_bus.emit(
                CommandDispatched(command=name, plugin=plugin, ok=error is None, error=error)
            )
