"""Error taxonomy for the plugin host.

Every error carries structured fields so callers can match on them. The
same classes are raised inside the host and carried as values in
``LoadReport`` entries and ``Err`` dispatch results; none of them is ever
allowed to unwind out of plugin code into the host's control flow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from quire.contract import Arity


class QuireError(Exception):
    """Base for all host errors."""


# ---------------------------------------------------------------------------
# Load-time: scoped to the offending plugin and its transitive dependents
# ---------------------------------------------------------------------------


class LoadError(QuireError):
    """A plugin could not reach the Active state."""

    plugin: str


class PluginLoadError(LoadError):
    """The plugin object could not be imported or instantiated."""

    def __init__(self, plugin: str, reason: str) -> None:
        self.plugin = plugin
        self.reason = reason
        super().__init__(f"failed to load plugin {plugin!r}: {reason}")


class DuplicatePluginName(LoadError):
    def __init__(self, plugin: str) -> None:
        self.plugin = plugin
        super().__init__(f"a plugin named {plugin!r} is already loaded")


class SchemaVersionMismatch(LoadError):
    def __init__(self, plugin: str, expected: int, found: object) -> None:
        self.plugin = plugin
        self.expected = expected
        self.found = found
        super().__init__(
            f"plugin {plugin!r} targets schema version {found!r}, host speaks {expected}"
        )


class UnresolvedDependency(LoadError):
    def __init__(self, plugin: str, missing: str) -> None:
        self.plugin = plugin
        self.missing = missing
        super().__init__(f"plugin {plugin!r} depends on {missing!r}, which is not loaded")


class DependencyCycle(LoadError):
    """A cycle in the dependency graph. ``cycle`` starts and ends on the same name."""

    def __init__(self, plugin: str, cycle: list[str]) -> None:
        self.plugin = plugin
        self.cycle = cycle
        super().__init__(f"dependency cycle: {' -> '.join(cycle)}")


class DependencyFailed(LoadError):
    """A dependency of the plugin did not reach Active."""

    def __init__(self, plugin: str, dependency: str) -> None:
        self.plugin = plugin
        self.dependency = dependency
        super().__init__(f"plugin {plugin!r} excluded: dependency {dependency!r} failed")


class InitializeFailed(LoadError):
    def __init__(self, plugin: str, reason: str) -> None:
        self.plugin = plugin
        self.reason = reason
        super().__init__(f"plugin {plugin!r} failed to initialize: {reason}")


# ---------------------------------------------------------------------------
# Registration-time: offending command dropped, load continues
# ---------------------------------------------------------------------------


class RegistrationError(QuireError):
    plugin: str
    command: str


class DuplicateCommandName(RegistrationError):
    def __init__(self, command: str, plugin: str, holder: str, kept: str) -> None:
        self.command = command
        self.plugin = plugin
        self.holder = holder
        self.kept = kept
        super().__init__(
            f"command {command!r} from {plugin!r} clashes with {holder!r}; kept {kept!r}"
        )


class InvalidArity(RegistrationError):
    def __init__(self, command: str, plugin: str, min: int, max: int) -> None:
        self.command = command
        self.plugin = plugin
        self.min = min
        self.max = max
        super().__init__(f"command {command!r} from {plugin!r} has arity min {min} > max {max}")


class InvalidCommand(RegistrationError):
    def __init__(self, command: str, plugin: str, reason: str) -> None:
        self.command = command
        self.plugin = plugin
        self.reason = reason
        super().__init__(f"command {command!r} from {plugin!r} rejected: {reason}")


# ---------------------------------------------------------------------------
# Dispatch-time: returned to the caller as Err(...)
# ---------------------------------------------------------------------------


class DispatchError(QuireError):
    command: str


class InvalidCommandLine(DispatchError):
    """A command line could not be parsed or its range does not fit the buffer."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"invalid command line {command!r}: {reason}")


class CommandNotFound(DispatchError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"no such command: {command!r}")


class ArityViolation(DispatchError):
    def __init__(self, command: str, expected: Arity, got: int) -> None:
        self.command = command
        self.expected = expected
        self.got = got
        if expected.min == expected.max:
            msg = f"expected {expected.min} arguments, got {got}"
        else:
            msg = f"expected {expected.min} to {expected.max} arguments, got {got}"
        super().__init__(f"{command}: {msg}")


class RangeNotSupported(DispatchError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"{command}: range not allowed")


class RangeRequired(DispatchError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"{command}: a range is required")


class NestedDispatch(DispatchError):
    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"{command}: cannot dispatch from inside a running command")


class HandlerFault(DispatchError):
    def __init__(self, plugin: str, command: str, reason: str) -> None:
        self.plugin = plugin
        self.command = command
        self.reason = reason
        super().__init__(f"plugin {plugin!r} faulted while running {command!r}: {reason}")


# ---------------------------------------------------------------------------
# Capability-time: reported to the plugin
# ---------------------------------------------------------------------------


class CapabilityError(QuireError):
    pass


class HandleInvalid(CapabilityError):
    def __init__(self, kind: str, handle: object) -> None:
        self.kind = kind
        self.handle = handle
        super().__init__(f"stale or foreign {kind} handle: {handle!r}")


class PointOutOfBounds(CapabilityError):
    """Raised by the text-storage backend; surfaced to plugins as ``Err``."""

    def __init__(self, line: int, col: int) -> None:
        self.line = line
        self.col = col
        super().__init__(f"point {line}:{col} is outside the buffer")


class SessionClosed(CapabilityError):
    """The plugin called the editor outside its own in-flight call.

    This is a contract trap: it is raised into plugin code, and when it
    escapes the plugin the call faults.
    """

    def __init__(self, plugin: str) -> None:
        self.plugin = plugin
        super().__init__(f"editor session for {plugin!r} is not active")


class BudgetExceeded(CapabilityError):
    def __init__(self, plugin: str, limit: int) -> None:
        self.plugin = plugin
        self.limit = limit
        super().__init__(f"plugin {plugin!r} exceeded {limit} editor calls")


class EditRejected(CapabilityError):
    """Raised by the text-storage backend when an edit is refused."""

    def __init__(self, error: object) -> None:
        self.error = error
        super().__init__(f"edit rejected: {error}")
