"""Per-plugin execution context.

Every plugin gets a private pluggy ``PluginManager`` holding only that
plugin, so pluggy validates its hook signatures against ``QuireSpec`` at
registration and a hook call can never fan out to another plugin.

Each call across the boundary runs under a budget: a wall-clock timeout
and a cap on editor calls. Synchronous plugin code runs on a daemon
worker thread so it cannot block the event loop; coroutines are awaited
under the same timeout. Anything escaping plugin code comes back as
``SandboxFault`` and never as the plugin's own exception.
"""

from __future__ import annotations

import asyncio
import contextlib
import contextvars
import inspect
import threading
from collections.abc import Callable
from typing import Any

import pluggy

from quire.broker import CapabilityBroker, EditorSession
from quire.config import SandboxConfig
from quire.contract import LineRange
from quire.logger import logger
from quire.plugin.hookspecs import QuireSpec


class SandboxFault(Exception):
    """Plugin code trapped, raised, or ran out of budget."""

    def __init__(self, plugin: str, reason: str) -> None:
        self.plugin = plugin
        self.reason = reason
        super().__init__(f"{plugin}: {reason}")


def _resolve(future: asyncio.Future[Any], result: Any, exc: BaseException | None) -> None:
    if future.done():
        return
    if exc is not None:
        future.set_exception(exc)
    else:
        future.set_result(result)


def _describe(exc: BaseException) -> str:
    try:
        return f"{type(exc).__name__}: {exc}"
    except Exception:
        return type(exc).__name__


def _run_on_worker(fn: Callable[[], Any], name: str) -> asyncio.Future[Any]:
    """Run *fn* on a fresh daemon thread; the returned future resolves on the loop."""
    loop = asyncio.get_running_loop()
    future: asyncio.Future[Any] = loop.create_future()
    ctx = contextvars.copy_context()

    def _target() -> None:
        result: Any = None
        error: BaseException | None = None
        try:
            result = ctx.run(fn)
        except Exception as exc:
            error = exc
        except BaseException as exc:
            # SystemExit and friends must not reach the loop as themselves
            error = RuntimeError(f"plugin raised {type(exc).__name__}: {exc}")
        # Loop may already be gone if the host shut down under a runaway plugin
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(_resolve, future, result, error)

    threading.Thread(target=_target, name=name, daemon=True).start()
    return future


class PluginSandbox:
    """One isolated plugin instance plus its broker session."""

    def __init__(
        self,
        plugin: object,
        *,
        key: str,
        broker: CapabilityBroker,
        budget: SandboxConfig,
    ) -> None:
        self.key = key
        self.name = key
        self._broker = broker
        self._budget = budget
        self.session: EditorSession | None = None

        self._pm = pluggy.PluginManager("quire")
        self._pm.add_hookspecs(QuireSpec)
        # Raises PluginValidationError on signature mismatch or unknown hooks
        self._pm.register(plugin, name=key)
        self._pm.check_pending()
        self.plugin = plugin

    def __repr__(self) -> str:
        return f"PluginSandbox({self.name!r})"

    def implements(self, hook: str) -> bool:
        return bool(getattr(self._pm.hook, hook).get_hookimpls())

    def bind(self, name: str) -> EditorSession:
        """Attach the plugin's reported name and open its editor session."""
        self.name = name
        self.session = self._broker.open_session(name)
        return self.session

    def close(self) -> None:
        if self.session is not None:
            self.session.close()

    async def call_hook(
        self, hook: str, *, then: Callable[[Any], Any] | None = None, **kwargs: Any
    ) -> Any:
        """Call *hook*; *then* post-processes its result inside the same guard."""
        caller = getattr(self._pm.hook, hook)
        return await self._guard(lambda: caller(**kwargs), label=hook, then=then)

    async def exec(
        self,
        handler: Any,
        command: str,
        args: list[str],
        *,
        range: LineRange | None = None,
    ) -> None:
        await self._guard(lambda: handler.exec(command, list(args)), label=command, range=range)

    async def _guard(
        self,
        fn: Callable[[], Any],
        *,
        label: str,
        range: LineRange | None = None,
        then: Callable[[Any], Any] | None = None,
    ) -> Any:
        session = self.session
        timeout = self._budget.call_timeout
        invocation = (
            self._broker.invocation(
                session, max_calls=self._budget.max_broker_calls, range=range
            )
            if session is not None
            else contextlib.nullcontext()
        )
        # Entered outside the trap handler: a host serialization error is not a plugin fault
        with invocation:
            try:
                result = await asyncio.wait_for(self._run(fn, label, then), timeout)
            except TimeoutError as exc:
                logger.warning(
                    "Plugin call timed out", plugin=self.name, call=label, timeout=timeout
                )
                raise SandboxFault(self.name, f"exceeded {timeout}s time budget") from exc
            except asyncio.CancelledError:
                raise
            except BaseException as exc:  # any trap in plugin code stops at this boundary
                if session is not None and session.budget_exceeded:
                    raise SandboxFault(self.name, self._budget_reason()) from exc
                raise SandboxFault(self.name, _describe(exc)) from exc

        # The plugin may have swallowed the BudgetExceeded raised into it
        if session is not None and session.budget_exceeded:
            raise SandboxFault(self.name, self._budget_reason())
        return result

    def _budget_reason(self) -> str:
        return f"exceeded {self._budget.max_broker_calls} editor calls"

    async def _run(
        self, fn: Callable[[], Any], label: str, then: Callable[[Any], Any] | None
    ) -> Any:
        result = await _run_on_worker(fn, name=f"quire-{self.name}-{label}")
        if inspect.isawaitable(result):
            result = await result
        if then is None:
            return result
        # Plugin-built objects can run code on attribute access; inspect them off the loop
        return await _run_on_worker(lambda: then(result), name=f"quire-{self.name}-{label}")
