"""Tests for the plugin lifecycle manager."""

from __future__ import annotations

import asyncio

import pytest
from conftest import ScriptedPlugin, cmd, make_settings

from quire.contract import SCHEMA_VERSION, Arity, Command, InitializeResult, Mode
from quire.editor import MemoryEditor
from quire.errors import (
    CommandNotFound,
    DependencyCycle,
    DependencyFailed,
    DuplicateCommandName,
    DuplicatePluginName,
    InitializeFailed,
    InvalidArity,
    InvalidCommand,
    PluginLoadError,
    SchemaVersionMismatch,
    UnresolvedDependency,
)
from quire.event_bus import PluginStateChanged
from quire.lifecycle import PluginHost, PluginState
from quire.plugin import hookimpl


class TestLoadOrder:
    async def test_core_before_ext(self, make_host):
        journal: list[tuple[str, str]] = []
        ext = ScriptedPlugin("ext", deps=["core"], journal=journal)
        core = ScriptedPlugin("core", journal=journal)
        host = make_host()

        report = await host.load([ext, core])

        assert report.ok
        assert report.order == ["core", "ext"]
        assert report.active == ["core", "ext"]
        assert journal == [("init", "core"), ("init", "ext")]
        assert host.state("core") is PluginState.ACTIVE
        assert host.state("ext") is PluginState.ACTIVE

    async def test_missing_dependency_does_not_block_others(self, make_host):
        core = ScriptedPlugin("core")
        ext = ScriptedPlugin("ext", deps=["missing"])
        host = make_host()

        report = await host.load([core, ext])

        [error] = report.errors
        assert isinstance(error, UnresolvedDependency)
        assert (error.plugin, error.missing) == ("ext", "missing")
        assert host.state("core") is PluginState.ACTIVE
        assert host.state("ext") is PluginState.FAILED
        assert report.error_for("ext") is error

    async def test_cycle_members_never_initialize(self, make_host):
        journal: list[tuple[str, str]] = []
        a = ScriptedPlugin("a", deps=["b"], journal=journal)
        b = ScriptedPlugin("b", deps=["a"], journal=journal)
        host = make_host()

        report = await host.load([a, b])

        assert all(isinstance(e, DependencyCycle) for e in report.errors)
        assert journal == []
        assert report.active == []

    async def test_shutdown_in_reverse_order(self, make_host):
        journal: list[tuple[str, str]] = []
        plugins = [
            ScriptedPlugin("c", deps=["b"], journal=journal),
            ScriptedPlugin("a", journal=journal),
            ScriptedPlugin("b", deps=["a"], journal=journal),
        ]
        host = make_host()
        await host.load(plugins)
        await host.shutdown()

        assert journal == [
            ("init", "a"), ("init", "b"), ("init", "c"),
            ("shutdown", "c"), ("shutdown", "b"), ("shutdown", "a"),
        ]  # fmt: skip

    async def test_load_twice_requires_shutdown(self, make_host):
        host = make_host()
        await host.load([])
        with pytest.raises(RuntimeError):
            await host.load([])
        await host.shutdown()
        await host.load([])


class TestInitializeFailures:
    async def test_failure_excludes_transitive_dependents(self, make_host):
        def fail(editor):
            raise RuntimeError("no thanks")

        journal: list[tuple[str, str]] = []
        base = ScriptedPlugin("base", on_init=fail, journal=journal)
        mid = ScriptedPlugin("mid", deps=["base"], journal=journal)
        top = ScriptedPlugin("top", deps=["mid"], journal=journal)
        free = ScriptedPlugin("free", journal=journal)
        host = make_host()

        report = await host.load([base, mid, top, free])

        by_plugin = {e.plugin: e for e in report.errors}
        assert isinstance(by_plugin["base"], InitializeFailed)
        assert "no thanks" in by_plugin["base"].reason
        assert isinstance(by_plugin["mid"], DependencyFailed)
        assert by_plugin["mid"].dependency == "base"
        assert isinstance(by_plugin["top"], DependencyFailed)
        assert report.active == ["free"]
        assert ("init", "mid") not in journal

        await host.shutdown()
        # Only plugins that reached ACTIVE are shut down
        assert [e for e in journal if e[0] == "shutdown"] == [("shutdown", "free")]

    async def test_schema_mismatch(self, make_host):
        journal: list[tuple[str, str]] = []
        old = ScriptedPlugin("old", schema=SCHEMA_VERSION + 1, journal=journal)
        host = make_host()

        report = await host.load([old])

        [error] = report.errors
        assert isinstance(error, SchemaVersionMismatch)
        assert error.expected == SCHEMA_VERSION
        assert error.found == SCHEMA_VERSION + 1
        assert journal == []

    async def test_missing_schema_version(self, make_host):
        class Bare:
            @hookimpl
            def quire_get_name(self):
                return "bare"

        report = await make_host().load([Bare()])
        assert isinstance(report.errors[0], SchemaVersionMismatch)
        assert report.errors[0].found is None

    async def test_bad_hook_signature(self, make_host):
        class Wrong:
            @hookimpl
            def quire_initialize(self, editor, unexpected):
                return None

        report = await make_host().load([Wrong()])
        assert isinstance(report.errors[0], PluginLoadError)
        assert report.errors[0].plugin == "Wrong"

    async def test_duplicate_plugin_name(self, make_host):
        first = ScriptedPlugin("twin", commands=[cmd("one")])
        second = ScriptedPlugin("twin", commands=[cmd("two")])
        host = make_host()

        report = await host.load([first, second])

        assert isinstance(report.errors[0], DuplicatePluginName)
        assert "one" in host.registry
        assert "two" not in host.registry
        assert host.state("twin") is PluginState.ACTIVE

    @pytest.mark.parametrize("result", [42, {"commands": "yank"}, {"cmds": []}])
    async def test_malformed_initialize_result(self, make_host, result):
        plugin = ScriptedPlugin("odd", on_init=lambda editor: result)
        report = await make_host().load([plugin])
        assert isinstance(report.errors[0], InitializeFailed)

    async def test_handler_attribute_access_that_raises(self, make_host):
        class Booby:
            def __getattr__(self, attr):
                raise RuntimeError("boom from handler")

        class TrappedHandler(ScriptedPlugin):
            @hookimpl
            def quire_create_handler(self, editor):
                return Booby()

        trapped = TrappedHandler("trapped", commands=[cmd("t")])
        good = ScriptedPlugin("good", commands=[cmd("g")])
        host = make_host()

        report = await host.load([trapped, good])

        error = report.error_for("trapped")
        assert isinstance(error, InitializeFailed)
        assert "boom from handler" in error.reason
        assert host.state("trapped") is PluginState.FAILED
        assert "t" not in host.registry
        assert host.state("good") is PluginState.ACTIVE
        assert "g" in host.registry

    async def test_declaration_property_that_raises(self, make_host):
        class BoobyCommand:
            @property
            def name(self):
                raise RuntimeError("boom from declaration")

        odd = ScriptedPlugin("odd", commands=[BoobyCommand(), cmd("fine")])
        good = ScriptedPlugin("good", commands=[cmd("g")])
        host = make_host()

        report = await host.load([odd, good])

        assert report.ok
        [warning] = report.warnings
        assert isinstance(warning, InvalidCommand)
        assert warning.plugin == "odd"
        assert "fine" in host.registry
        assert host.state("good") is PluginState.ACTIVE

    async def test_declaration_mapping_that_raises(self, make_host):
        class BoobyDict(dict):
            def items(self):
                raise RuntimeError("boom from mapping")

        odd = ScriptedPlugin("odd", commands=[BoobyDict(name="x")])
        good = ScriptedPlugin("good")
        host = make_host()

        report = await host.load([odd, good])

        assert isinstance(report.error_for("odd"), InitializeFailed)
        assert host.state("odd") is PluginState.FAILED
        assert host.state("good") is PluginState.ACTIVE

    async def test_commands_without_handler(self, make_host):
        class NoHandler:
            @hookimpl
            def quire_schema_version(self):
                return SCHEMA_VERSION

            @hookimpl
            def quire_get_name(self):
                return "nohandler"

            @hookimpl
            def quire_initialize(self, editor):
                return InitializeResult(commands=[Command(name="x", arity=Arity.exact(0))])

        host = make_host()
        report = await host.load([NoHandler()])
        assert isinstance(report.errors[0], InitializeFailed)
        assert host.state("nohandler") is PluginState.FAILED
        assert "x" not in host.registry

    async def test_registration_problems_are_warnings(self, make_host):
        one = ScriptedPlugin("one", commands=[cmd("dup")])
        two = ScriptedPlugin("two", commands=[cmd("dup"), cmd("bad", 2, 1), cmd("fine")])
        host = make_host()

        report = await host.load([one, two])

        assert report.ok
        assert report.active == ["one", "two"]
        kinds = sorted(type(w).__name__ for w in report.warnings)
        assert kinds == [DuplicateCommandName.__name__, InvalidArity.__name__]
        assert [c.name for c in host.commands()] == ["dup", "fine"]


class TestShutdown:
    async def test_commands_gone_after_shutdown(self, make_host):
        plugin = ScriptedPlugin("p", commands=[cmd("hello")])
        host = make_host()
        await host.load([plugin])
        assert (await host.execute("hello")).is_ok()

        await host.shutdown()

        assert isinstance((await host.execute("hello")).error, CommandNotFound)
        assert host.commands() == []
        assert host.order == []

    async def test_handles_invalid_after_shutdown(self, make_host):
        kept = {}

        def grab(editor):
            kept["editor"] = editor
            kept["view"] = editor.get_active_view()

        plugin = ScriptedPlugin("p", on_init=grab)
        host = make_host()
        await host.load([plugin])
        await host.shutdown()

        session = kept["editor"]
        assert session.closed
        assert not session._views.contains(kept["view"].handle)

    async def test_shutdown_failure_is_best_effort(self, make_host):
        journal: list[tuple[str, str]] = []

        def explode(editor):
            raise RuntimeError("cleanup failed")

        first = ScriptedPlugin("first", journal=journal)
        second = ScriptedPlugin("second", on_shutdown=explode, journal=journal)
        host = make_host()
        await host.load([first, second])
        await host.shutdown()

        assert ("shutdown", "first") in journal
        assert host.state("first") is PluginState.UNLOADED

    async def test_faulted_plugin_is_still_shut_down(self, make_host):
        journal: list[tuple[str, str]] = []

        def boom(editor, c, a):
            raise RuntimeError("boom")

        plugin = ScriptedPlugin("p", commands=[cmd("x")], on_exec=boom, journal=journal)
        host = make_host()
        await host.load([plugin])
        await host.execute("x")
        assert host.state("p") is PluginState.FAULTED

        await host.shutdown()
        assert journal[-1] == ("shutdown", "p")

    async def test_shutdown_can_use_editor(self, make_host, editor):
        plugin = ScriptedPlugin("p", on_shutdown=lambda ed: ed.set_mode(Mode.insert()))
        host = make_host()
        await host.load([plugin])
        await host.shutdown()
        assert editor.mode == Mode.insert()

    async def test_shutdown_without_load(self, make_host):
        await make_host().shutdown()


class TestHostSurface:
    async def test_async_context_manager_uses_discovery(self, editor):
        async with PluginHost(editor, settings=make_settings()) as host:
            assert host.state("core") is PluginState.ACTIVE
            assert (await host.execute_line(":insert hi")).is_ok()
        assert editor.text().startswith("hi")
        assert host.state("core") is PluginState.UNLOADED

    async def test_state_events(self, make_host):
        host = make_host()
        seen: list[PluginStateChanged] = []

        async def listener(event: PluginStateChanged) -> None:
            seen.append(event)

        host.event_bus.subscribe(PluginStateChanged, listener)
        await host.load([ScriptedPlugin("p")])
        await host.shutdown()
        await asyncio.sleep(0.01)

        assert [(e.old, e.new) for e in seen] == [
            ("unloaded", "initializing"),
            ("initializing", "active"),
            ("active", "shutting-down"),
            ("shutting-down", "unloaded"),
        ]

    async def test_async_hooks(self, make_host, editor):
        class AsyncPlugin:
            @hookimpl
            def quire_schema_version(self):
                return SCHEMA_VERSION

            @hookimpl
            async def quire_get_name(self):
                return "async"

            @hookimpl
            async def quire_initialize(self, editor):
                await asyncio.sleep(0)
                return {"commands": [cmd("ping")]}

            @hookimpl
            def quire_create_handler(self, editor):
                self.editor = editor
                return self

            async def exec(self, command, args):
                await asyncio.sleep(0)
                self.editor.insert("pong")

        host = make_host()
        report = await host.load([AsyncPlugin()])
        assert report.active == ["async"]
        assert (await host.execute("ping")).is_ok()
        assert editor.text().startswith("pong")

    async def test_host_uses_global_settings_by_default(self):
        host = PluginHost(MemoryEditor())
        assert host.settings.commands.duplicate_policy == "first-wins"

    async def test_execute_script_stops_at_first_error(self, make_host, editor):
        plugin = ScriptedPlugin(
            "p",
            commands=[cmd("put", 1, 1)],
            on_exec=lambda ed, c, a: ed.insert(a[0]),
        )
        host = make_host()
        await host.load([plugin])

        results = await host.execute_script("put a; nope; put b")

        assert [r.is_ok() for r in results] == [True, False]
        assert editor.text().startswith("aalpha")
