"""Plugin loader: one sandbox per plugin plus its dependency descriptor."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import pluggy
from pydantic import TypeAdapter, ValidationError

from quire.broker import CapabilityBroker
from quire.config import SandboxConfig
from quire.contract import SCHEMA_VERSION
from quire.errors import (
    DuplicatePluginName,
    LoadError,
    PluginLoadError,
    SchemaVersionMismatch,
)
from quire.logger import logger
from quire.plugin.sandbox import PluginSandbox, SandboxFault

_DEPENDENCIES = TypeAdapter(list[str])


@dataclass(frozen=True)
class PluginDescriptor:
    """Name and dependency names; immutable once the plugin is loaded."""

    name: str
    dependencies: tuple[str, ...] = ()


@dataclass
class LoadedPlugin:
    descriptor: PluginDescriptor
    sandbox: PluginSandbox

    @property
    def name(self) -> str:
        return self.descriptor.name


class PluginLoader:
    """Instantiates sandboxes and queries the dependency interface."""

    def __init__(self, broker: CapabilityBroker, budget: SandboxConfig) -> None:
        self._broker = broker
        self._budget = budget

    async def load_all(
        self, candidates: Iterable[tuple[str, object]]
    ) -> tuple[list[LoadedPlugin], list[LoadError]]:
        """Load every candidate, keeping discovery order.

        A plugin that fails here is reported and left out; the rest load.
        The first plugin to claim a name keeps it.
        """
        loaded: list[LoadedPlugin] = []
        errors: list[LoadError] = []
        names: set[str] = set()

        for key, obj in candidates:
            try:
                plugin = await self.load(key, obj)
            except LoadError as exc:
                logger.error("Plugin not loaded", plugin=key, err=str(exc))
                errors.append(exc)
                continue

            if plugin.name in names:
                exc = DuplicatePluginName(plugin.name)
                logger.error("Plugin not loaded", plugin=key, err=str(exc))
                errors.append(exc)
                continue

            names.add(plugin.name)
            loaded.append(plugin)
            logger.info(
                "Plugin loaded",
                plugin=plugin.name,
                dependencies=list(plugin.descriptor.dependencies),
            )

        return loaded, errors

    async def load(self, key: str, obj: object) -> LoadedPlugin:
        try:
            sandbox = PluginSandbox(obj, key=key, broker=self._broker, budget=self._budget)
        except (pluggy.PluginValidationError, ValueError) as exc:
            raise PluginLoadError(key, str(exc)) from exc

        try:
            version = await sandbox.call_hook("quire_schema_version")
        except SandboxFault as exc:
            raise PluginLoadError(key, exc.reason) from exc
        if version != SCHEMA_VERSION or isinstance(version, bool):
            raise SchemaVersionMismatch(key, SCHEMA_VERSION, version)

        try:
            name = await sandbox.call_hook("quire_get_name")
            dependencies = await sandbox.call_hook("quire_dependencies")
        except SandboxFault as exc:
            raise PluginLoadError(key, exc.reason) from exc

        if not isinstance(name, str) or not name:
            raise PluginLoadError(key, f"plugin name must be a non-empty string, got {name!r}")
        try:
            deps = _DEPENDENCIES.validate_python(dependencies or [])
        except ValidationError as exc:
            raise PluginLoadError(name, f"invalid dependency list: {exc}") from exc

        sandbox.bind(name)
        return LoadedPlugin(
            descriptor=PluginDescriptor(name=name, dependencies=tuple(dict.fromkeys(deps))),
            sandbox=sandbox,
        )
