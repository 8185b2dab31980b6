"""Pluggy hook specifications for quire plugins.

These hooks are the guest side of the capability contract. Every plugin
runs inside its own sandbox with a private plugin manager, so each hook
has exactly one implementation and is declared ``firstresult``.
All hooks are validated by pluggy at registration time.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("quire")


class QuireSpec:
    """Hook specifications for quire plugins.

    Implementations may be plain functions or coroutines; the sandbox
    awaits whatever comes back.
    """

    # -- dependency --

    @hookspec(firstresult=True)
    def quire_schema_version(self) -> int:
        """Return the contract schema version this plugin was written against.

        The host refuses to load a plugin whose version differs from
        ``quire.contract.SCHEMA_VERSION``.
        """

    @hookspec(firstresult=True)
    def quire_get_name(self) -> str:
        """Return the plugin's unique name."""

    @hookspec(firstresult=True)
    def quire_dependencies(self) -> list[str]:
        """Return the names of plugins that must be initialized first."""

    # -- lifecycle --

    @hookspec(firstresult=True)
    def quire_initialize(self, editor: Any) -> Any:
        """Initialize the plugin.

        Args:
            editor: The plugin's ``EditorSession``, its only way to read or
                change editor state.

        Returns:
            ``InitializeResult`` (or an equivalent dict) listing the
            commands this plugin handles.
        """

    @hookspec(firstresult=True)
    def quire_shutdown(self, editor: Any) -> None:
        """Release plugin resources. Called once, in reverse load order."""

    # -- command --

    @hookspec(firstresult=True)
    def quire_create_handler(self, editor: Any) -> Any:
        """Construct the plugin's command handler.

        Called once per plugin after a successful initialize. The returned
        object must provide ``exec(cmd: str, args: list[str]) -> None``
        (optionally a coroutine). Return None when no commands are declared.
        """
