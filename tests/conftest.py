"""Shared test fixtures for quire."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from quire.contract import SCHEMA_VERSION
from quire.editor import MemoryEditor
from quire.lifecycle import PluginHost
from quire.plugin import hookimpl

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures; importable by test files)
# ---------------------------------------------------------------------------


def make_settings(**overrides):
    """Create a Settings object from pure defaults; no quire.toml, no .env.

    Usage::

        s = make_settings(sandbox=SandboxConfig(call_timeout=0.1))
    """
    from quire.config import (
        CommandsConfig,
        LoggingConfig,
        PluginsConfig,
        SandboxConfig,
        Settings,
    )

    defaults = {
        "logging": LoggingConfig(),
        "sandbox": SandboxConfig(),
        "commands": CommandsConfig(),
        "plugins": PluginsConfig(),
    }
    defaults.update(overrides)
    return Settings.model_construct(**defaults)


class _ScriptedHandler:
    def __init__(self, plugin: ScriptedPlugin, editor: Any) -> None:
        self.plugin = plugin
        self.editor = editor

    def exec(self, cmd: str, args: list[str]):
        self.plugin.calls.append((cmd, list(args)))
        if self.plugin.on_exec is not None:
            return self.plugin.on_exec(self.editor, cmd, args)
        return None


class ScriptedPlugin:
    """Test plugin whose behaviour is supplied as callbacks.

    Every lifecycle call is appended to ``journal`` so tests can assert
    on ordering across plugins.
    """

    def __init__(
        self,
        name: str,
        *,
        deps: list[str] | None = None,
        commands: list[Any] | None = None,
        on_init: Callable[[Any], Any] | None = None,
        on_exec: Callable[[Any, str, list[str]], Any] | None = None,
        on_shutdown: Callable[[Any], Any] | None = None,
        schema: Any = SCHEMA_VERSION,
        journal: list[tuple[str, str]] | None = None,
    ) -> None:
        self.name = name
        self.deps = deps or []
        self.commands = commands or []
        self.on_init = on_init
        self.on_exec = on_exec
        self.on_shutdown = on_shutdown
        self.schema = schema
        self.journal = journal if journal is not None else []
        self.calls: list[tuple[str, list[str]]] = []
        self.handlers_created = 0

    @hookimpl
    def quire_schema_version(self):
        return self.schema

    @hookimpl
    def quire_get_name(self):
        return self.name

    @hookimpl
    def quire_dependencies(self):
        return self.deps

    @hookimpl
    def quire_initialize(self, editor):
        self.journal.append(("init", self.name))
        if self.on_init is not None:
            result = self.on_init(editor)
            if result is not None:
                return result
        return {"commands": list(self.commands)}

    @hookimpl
    def quire_shutdown(self, editor):
        self.journal.append(("shutdown", self.name))
        if self.on_shutdown is not None:
            self.on_shutdown(editor)

    @hookimpl
    def quire_create_handler(self, editor):
        self.handlers_created += 1
        return _ScriptedHandler(self, editor)


def cmd(name: str, min: int = 0, max: int = 0, flags: int = 0) -> dict[str, Any]:
    """Raw command declaration the way a plugin would hand it over."""
    return {"name": name, "arity": {"min": min, "max": max}, "flags": flags}


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton built from defaults."""
    monkeypatch.setattr("quire.config._settings", make_settings())


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def editor() -> MemoryEditor:
    return MemoryEditor("alpha\nbeta\ngamma")


@pytest.fixture
async def make_host(editor):
    """Factory fixture for hosts bound to the shared ``editor``; shut down afterwards."""
    hosts: list[PluginHost] = []

    def _make(**overrides) -> PluginHost:
        host = PluginHost(editor, settings=make_settings(**overrides))
        hosts.append(host)
        return host

    yield _make

    for host in hosts:
        await host.shutdown()
