"""quire: plugin execution core for a modal text editor.

Loads sandboxed plugins, orders them by their declared dependencies,
mediates their access to editor state through a capability broker and
dispatches editor commands to the plugin that registered them.
"""

from quire.contract import SCHEMA_VERSION
from quire.lifecycle import LoadReport, PluginHost, PluginState

__all__ = [
    "SCHEMA_VERSION",
    "LoadReport",
    "PluginHost",
    "PluginState",
]
