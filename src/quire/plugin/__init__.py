"""Plugin system for quire.

Plugins extend the editor with commands. Each plugin is a Python object
whose methods are pluggy hook implementations of ``QuireSpec``.

Usage:
    from quire.plugin import hookimpl

    class Greeter:
        @hookimpl
        def quire_get_name(self):
            return "greeter"
        ...

Discovery order (which is also the resolver's tie-break order):
built-in plugins, modules listed in ``[plugins] modules``, then
third-party entry points in the ``quire`` group.
"""

from __future__ import annotations

import importlib

import pluggy

from quire.config import Settings, get_settings
from quire.logger import logger
from quire.plugin.hookspecs import QuireSpec

__all__ = [
    "discover_plugins",
    "hookimpl",
    "load_plugin_spec",
]

hookimpl = pluggy.HookimplMarker("quire")

# Static registry of built-in plugins.
# Each entry: (module_path, class_name, config_key)
# config_key is checked against [plugins.overrides.<key>].enabled in quire.toml.
_BUILTIN_PLUGIN_SPECS: list[tuple[str, str, str]] = [
    ("quire.plugins.core", "CorePlugin", "core"),
]


def _instantiate(obj: object) -> object:
    # Entry points and config specs may name a class rather than an instance
    return obj() if isinstance(obj, type) else obj


def load_plugin_spec(spec: str) -> object:
    """Import ``"package.module:attr"`` (or a bare module) and return the plugin object."""
    module_path, _, attr = spec.partition(":")
    mod = importlib.import_module(module_path)
    if not attr:
        return mod
    obj: object = mod
    for part in attr.split("."):
        obj = getattr(obj, part)
    return _instantiate(obj)


def discover_plugins(settings: Settings | None = None) -> list[tuple[str, object]]:
    """Collect plugin objects in discovery order.

    Returns:
        ``(key, plugin)`` pairs. Keys identify where a plugin came from; the
        plugin's own name is only known after its sandbox is queried.
    """
    s = settings or get_settings()
    found: list[tuple[str, object]] = []

    if s.plugins.builtins:
        for module_path, class_name, config_key in _BUILTIN_PLUGIN_SPECS:
            if not s.plugins.is_enabled(config_key):
                logger.info("Plugin disabled via config", plugin=config_key)
                continue
            try:
                mod = importlib.import_module(module_path)
                found.append((f"builtin-{config_key}", getattr(mod, class_name)()))
            except Exception:
                logger.exception("Failed to load built-in plugin", plugin=config_key)

    for spec in s.plugins.modules:
        if not s.plugins.is_enabled(spec):
            logger.info("Plugin disabled via config", plugin=spec)
            continue
        try:
            found.append((spec, load_plugin_spec(spec)))
        except Exception:
            logger.exception("Failed to import plugin module", spec=spec)

    # Third-party plugins register via the "quire" entry point group in their
    # pyproject.toml. A scratch manager does the entry point walk; each plugin
    # is moved into its own sandbox later.
    pm = pluggy.PluginManager("quire")
    pm.add_hookspecs(QuireSpec)
    for key, cfg in s.plugins.overrides.items():
        if not cfg.enabled:
            pm.set_blocked(key)
    try:
        discovered = pm.load_setuptools_entrypoints(s.plugins.entry_point_group)
    except Exception:
        logger.exception("Entry point discovery failed", group=s.plugins.entry_point_group)
        discovered = 0
    if discovered:
        logger.info("Discovered third-party plugins", count=discovered)
    for name, plugin in pm.list_name_plugin():
        if plugin is None:
            continue
        pm.unregister(plugin=plugin)
        try:
            found.append((name, _instantiate(plugin)))
        except Exception:
            logger.exception("Failed to instantiate entry point plugin", plugin=name)

    logger.info("Plugin discovery finished", plugins=[key for key, _ in found])
    return found
