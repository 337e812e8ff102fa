"""
Per-call error capture.

Each call runs in its own task, so anything the operation raises, or that
an awaited continuation raises, comes back out of that task. Work the
operation schedules without awaiting it (``loop.call_soon``/``call_later``
callbacks, tasks it creates and drops) fails outside that task and would
normally only reach the loop's exception handler.

A CallSandbox tags everything the call schedules through a context
variable, which callbacks and tasks inherit from the code that created
them. While at least one sandbox is active on a loop, a loop exception
handler routes exceptions carrying a live tag to that sandbox, which then
fails the call with the first such error. Everything else goes on to the
previously installed handler.
"""

import asyncio
import logging
import weakref
from contextvars import ContextVar
from typing import Any, Dict, Optional

logger = logging.getLogger("chainbuilder")

_active_sandbox: ContextVar[Optional["CallSandbox"]] = ContextVar(
    "chainbuilder_active_sandbox", default=None
)

_guards: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, _LoopGuard]" = (
    weakref.WeakKeyDictionary()
)


def _run_context(source: Any):
    get_context = getattr(source, "get_context", None)
    if get_context is not None:
        return get_context()
    return getattr(source, "_context", None)


def _owning_sandbox(context: Dict[str, Any]) -> Optional["CallSandbox"]:
    for key in ("handle", "future", "task"):
        source = context.get(key)
        if source is None:
            continue
        run_context = _run_context(source)
        if run_context is not None:
            return run_context.get(_active_sandbox)
    return None


class _LoopGuard:
    """Loop exception handler shared by every sandbox active on one loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.previous = loop.get_exception_handler()
        self.active = 0

    def handle(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        error = context.get("exception")
        sandbox = _owning_sandbox(context)
        if sandbox is not None and isinstance(error, Exception) and sandbox.fail(error):
            return
        if self.previous is not None:
            self.previous(loop, context)
        else:
            loop.default_exception_handler(context)


class CallSandbox:
    """
    Captures the first error raised by work a single call schedules.

    Example:
        >>> sandbox = CallSandbox(loop, "fetch")
        >>> with sandbox:
        ...     task = loop.create_task(invoke(sandbox))  # calls sandbox.activate()
        ...     outcome = await sandbox.wait(task)
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, method_name: str):
        self.loop = loop
        self.method_name = method_name
        self._failure: asyncio.Future = loop.create_future()

    def activate(self) -> None:
        """Tag the current context; must run inside the call's own task."""
        _active_sandbox.set(self)

    def fail(self, error: Exception) -> bool:
        """Record ``error`` if the call is still running. Returns True if recorded."""
        if self._failure.done():
            return False
        logger.debug(
            "Operation %s failed in scheduled work: %s",
            self.method_name,
            type(error).__name__,
        )
        self._failure.set_result(error)
        return True

    async def wait(self, task: asyncio.Task) -> Any:
        """
        Wait for ``task`` or for a captured error, whichever comes first.

        A captured error cancels the task and is raised. If the waiting
        itself is cancelled, the task is cancelled too.
        """
        try:
            await asyncio.wait((task, self._failure), return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.done():
            self._failure.cancel()
            return task.result()

        task.cancel()
        raise self._failure.result()

    def __enter__(self) -> "CallSandbox":
        guard = _guards.get(self.loop)
        if guard is None:
            guard = _guards[self.loop] = _LoopGuard(self.loop)
            self.loop.set_exception_handler(guard.handle)
        guard.active += 1
        return self

    def __exit__(self, *exc_info) -> None:
        guard = _guards.get(self.loop)
        if guard is None:
            return
        guard.active -= 1
        if guard.active == 0:
            del _guards[self.loop]
            if self.loop.get_exception_handler() == guard.handle:
                self.loop.set_exception_handler(guard.previous)
        if not self._failure.done():
            self._failure.cancel()
