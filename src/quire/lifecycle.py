"""Lifecycle manager: load, initialize, run and shut down plugins.

``PluginHost`` is the entry point for the rest of the editor. It owns one
load session at a time: the loaded sandboxes, the resolved dependency
order, and the order plugins actually reached ACTIVE. Shutting down
discards the whole session; nothing carries over to the next ``load``.

Per-plugin state machine::

    UNLOADED -> INITIALIZING -> ACTIVE -> SHUTTING_DOWN -> UNLOADED
                     |            |
                     v            v
                   FAILED      FAULTED -> SHUTTING_DOWN -> UNLOADED
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from quire.broker import CapabilityBroker
from quire.cmdline import ParsedCommand, parse_command_line, parse_script
from quire.commands import CommandRegistry, Dispatcher, RegisteredCommand
from quire.config import Settings, get_settings
from quire.contract import Command, Err, InitializeResult, LineRange, Result
from quire.editor import EditorBackend
from quire.errors import (
    DependencyFailed,
    DispatchError,
    InitializeFailed,
    InvalidCommandLine,
    LoadError,
    RegistrationError,
)
from quire.event_bus import EventBus, PluginStateChanged
from quire.logger import logger
from quire.plugin import discover_plugins
from quire.plugin.loader import LoadedPlugin, PluginLoader
from quire.plugin.sandbox import PluginSandbox, SandboxFault
from quire.resolver import resolve


class PluginState(enum.StrEnum):
    UNLOADED = "unloaded"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting-down"
    FAILED = "failed"
    FAULTED = "faulted"


@dataclass
class LoadReport:
    """Outcome of one ``PluginHost.load`` call."""

    order: list[str] = field(default_factory=list)
    active: list[str] = field(default_factory=list)
    errors: list[LoadError] = field(default_factory=list)
    warnings: list[RegistrationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def error_for(self, plugin: str) -> LoadError | None:
        return next((e for e in self.errors if e.plugin == plugin), None)


@dataclass
class LoadSession:
    plugins: dict[str, LoadedPlugin] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    initialized: list[str] = field(default_factory=list)


def _plugin_key(obj: object) -> str:
    try:
        name = getattr(obj, "__name__", None)
    except Exception:
        name = None
    return name if isinstance(name, str) else type(obj).__name__


def _declared_commands(result: Any) -> list[Any]:
    """Extract the raw command declarations from an initialize result.

    Runs on the plugin's worker. Each declaration is copied to plain data
    here so the host never touches plugin objects; individual commands are
    validated later, one by one.
    """
    if result is None:
        return []
    if isinstance(result, InitializeResult):
        return [_plain_declaration(raw) for raw in result.commands]
    if isinstance(result, dict):
        unknown = set(result) - {"commands"}
        if unknown:
            raise ValueError(f"unexpected keys in initialize result: {sorted(unknown)}")
        commands = result.get("commands", [])
        if isinstance(commands, (list, tuple)):
            return [_plain_declaration(raw) for raw in commands]
        raise ValueError("initialize result 'commands' must be a list")
    raise ValueError(f"initialize returned {type(result).__name__}, expected InitializeResult")


def _plain_declaration(raw: Any) -> Any:
    if isinstance(raw, Command):
        return raw
    if isinstance(raw, dict):
        return {str(key): value for key, value in raw.items()}
    # Anything else is rejected by validation; keep only its type name
    return f"<{type(raw).__name__}>"


def _require_handler(handler: Any) -> Any:
    if not callable(getattr(handler, "exec", None)):
        raise ValueError("commands declared but no handler with exec() provided")
    return handler


class PluginHost:
    """Loads plugins against an editor backend and dispatches their commands.

    Usage::

        async with PluginHost(MemoryEditor("hello")) as host:
            await host.execute_line(":insert world")
    """

    def __init__(
        self,
        editor: EditorBackend,
        *,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.event_bus = event_bus or EventBus()
        self.broker = CapabilityBroker(editor, event_bus=self.event_bus)
        self.registry = CommandRegistry(self.settings.commands.duplicate_policy)
        self.report: LoadReport | None = None
        self._loader = PluginLoader(self.broker, self.settings.sandbox)
        self._dispatcher = Dispatcher(
            self.registry,
            self.broker,
            sandbox_for=self._sandbox_for,
            on_fault=self._on_fault,
            config=self.settings.commands,
            event_bus=self.event_bus,
        )
        self._states: dict[str, PluginState] = {}
        self._session: LoadSession | None = None

    async def __aenter__(self) -> PluginHost:
        await self.load()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state(self, plugin: str) -> PluginState:
        return self._states.get(plugin, PluginState.UNLOADED)

    @property
    def order(self) -> list[str]:
        """Resolved initialization order of the current load session."""
        return list(self._session.order) if self._session else []

    def commands(self) -> list[RegisteredCommand]:
        return sorted(self.registry, key=lambda entry: entry.name)

    def _set_state(self, plugin: str, new: PluginState) -> None:
        old = self.state(plugin)
        if old is new:
            return
        self._states[plugin] = new
        logger.info("Plugin state changed", plugin=plugin, old=str(old), new=str(new))
        self.event_bus.emit(PluginStateChanged(plugin=plugin, old=str(old), new=str(new)))

    def _sandbox_for(self, plugin: str) -> PluginSandbox | None:
        if self._session is None or self.state(plugin) is not PluginState.ACTIVE:
            return None
        loaded = self._session.plugins.get(plugin)
        return loaded.sandbox if loaded else None

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load(self, plugins: Iterable[object] | None = None) -> LoadReport:
        """Load, resolve and initialize *plugins* (discovered from config when None)."""
        if self._session is not None:
            raise RuntimeError("plugins are already loaded; call shutdown() first")
        self.event_bus.bind(asyncio.get_running_loop())

        if plugins is None:
            candidates = discover_plugins(self.settings)
        else:
            candidates = [(_plugin_key(obj), obj) for obj in plugins]

        report = LoadReport()
        session = LoadSession()
        self._session = session
        self.report = report

        loaded, errors = await self._loader.load_all(candidates)
        report.errors.extend(errors)
        session.plugins = {p.name: p for p in loaded}

        resolution = resolve([p.descriptor for p in loaded])
        session.order = resolution.order
        report.order = list(resolution.order)
        for err in resolution.errors:
            self._fail(err, report)

        # Commands become dispatchable as each plugin activates; queue callers behind the rest
        async with self._dispatcher.lock:
            for name in session.order:
                await self._initialize(session.plugins[name], session, report)

        report.active = list(session.initialized)
        logger.info(
            "Plugins loaded",
            order=report.order,
            active=report.active,
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    def _fail(self, err: LoadError, report: LoadReport) -> None:
        report.errors.append(err)
        self._set_state(err.plugin, PluginState.FAILED)
        if self._session is not None and err.plugin in self._session.plugins:
            self._session.plugins[err.plugin].sandbox.close()

    async def _initialize(
        self, plugin: LoadedPlugin, session: LoadSession, report: LoadReport
    ) -> None:
        name = plugin.name
        for dep in plugin.descriptor.dependencies:
            if self.state(dep) is not PluginState.ACTIVE:
                self._fail(DependencyFailed(name, dep), report)
                return

        self._set_state(name, PluginState.INITIALIZING)
        sandbox = plugin.sandbox
        try:
            declared = await sandbox.call_hook(
                "quire_initialize", editor=sandbox.session, then=_declared_commands
            )
            handler = None
            if declared:
                handler = await sandbox.call_hook(
                    "quire_create_handler", editor=sandbox.session, then=_require_handler
                )
        except SandboxFault as fault:
            self._fail(InitializeFailed(name, fault.reason), report)
            return

        if declared:
            handle = self.registry.add_handler(name, handler)
            try:
                _, problems = self.registry.register(name, handle, declared)
            except Exception as exc:
                self.registry.deregister_plugin(name)
                self._fail(InitializeFailed(name, f"{type(exc).__name__}: {exc}"), report)
                return
            report.warnings.extend(problems)

        session.initialized.append(name)
        self._set_state(name, PluginState.ACTIVE)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(
        self,
        name: str,
        args: Sequence[str] = (),
        *,
        range: LineRange | None = None,
    ) -> Result[None, DispatchError]:
        """Dispatch one command. Every failure comes back as ``Err``."""
        return await self._dispatcher.dispatch(name, args, range)

    async def execute_line(self, line: str) -> Result[None, DispatchError]:
        try:
            parsed = parse_command_line(line)
        except InvalidCommandLine as exc:
            return Err(exc)
        return await self._execute_parsed(parsed)

    async def execute_script(self, script: str) -> list[Result[None, DispatchError]]:
        """Run each command line of *script*; stops after the first error."""
        try:
            parsed = parse_script(script)
        except InvalidCommandLine as exc:
            return [Err(exc)]
        results: list[Result[None, DispatchError]] = []
        for command in parsed:
            result = await self._execute_parsed(command)
            results.append(result)
            if result.is_err():
                break
        return results

    async def _execute_parsed(self, parsed: ParsedCommand) -> Result[None, DispatchError]:
        range = None
        if parsed.range is not None:
            cursor_line, line_count = self.broker.cursor_context()
            try:
                range = parsed.range.resolve(cursor_line, line_count, source=parsed.source)
            except InvalidCommandLine as exc:
                return Err(exc)
        return await self.execute(parsed.name, parsed.args, range=range)

    def _on_fault(self, plugin: str, reason: str) -> None:
        logger.error("Plugin faulted", plugin=plugin, reason=reason)
        self._set_state(plugin, PluginState.FAULTED)
        self.registry.deregister_plugin(plugin)
        if self._session is not None and plugin in self._session.plugins:
            self._session.plugins[plugin].sandbox.close()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Shut plugins down in reverse initialization order, best effort."""
        session = self._session
        if session is None:
            return

        # Wait for the command in flight; nothing dispatches after this point
        async with self._dispatcher.lock:
            for name in reversed(session.initialized):
                if self.state(name) not in (PluginState.ACTIVE, PluginState.FAULTED):
                    continue
                self._set_state(name, PluginState.SHUTTING_DOWN)
                self.registry.deregister_plugin(name)
                sandbox = session.plugins[name].sandbox
                try:
                    await sandbox.call_hook("quire_shutdown", editor=sandbox.session)
                except SandboxFault as fault:
                    logger.warning("Plugin shutdown failed", plugin=name, reason=fault.reason)
                sandbox.close()
                self._set_state(name, PluginState.UNLOADED)

            for plugin in session.plugins.values():
                plugin.sandbox.close()
            self.registry.clear()
            self._session = None
            self._states.clear()
        logger.info("Plugin host shut down")
