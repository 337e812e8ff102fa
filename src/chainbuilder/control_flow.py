"""
Built-in hooks available on every chain.

Hooks that intercept errors (``tap``, ``end``, ``recover`` and
``transform``) run even while the chain is erroring; they are how a chain
observes, converts or replaces errors. ``transform_result`` and ``inject``
are ordinary operations and are skipped on error.

Callbacks may be plain functions or coroutine functions.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Optional

from .base import Outcome
from .context import CallContext
from .operation import Operation, operation

logger = logging.getLogger("chainbuilder")


async def _maybe_await(value: Any) -> Any:
    while inspect.isawaitable(value):
        value = await value
    return value


@operation(intercept_errors=True)
async def tap(ctx: CallContext, callback: Optional[Callable[[Any, Any], Any]] = None) -> Outcome:
    """Call ``callback(error, result)`` and pass the state through."""
    if callback is not None:
        await _maybe_await(callback(ctx.previous_error(), ctx.previous_result()))
    return ctx.skip()


@operation(intercept_errors=True)
async def end(ctx: CallContext, callback: Optional[Callable[[Any, Any], Any]] = None) -> Outcome:
    """Mark the end of the chain and call ``callback(error, result)``."""
    return await ctx.get_method("tap")(callback)


@operation(intercept_errors=True, args=[{"type": "function", "required": True}])
async def recover(ctx: CallContext, callback: Callable[[Any], Any]) -> Any:
    """
    Convert an error into a result.

    While erroring, ``callback(error)`` is called and its return value
    becomes the new result, clearing the error. Raising, or returning an
    erroring Outcome, keeps the chain erroring. Without an error the state
    passes through untouched.
    """
    if not ctx.has_error():
        return ctx.skip()

    logger.debug("Recovering from %s", type(ctx.previous_error()).__name__)
    return await _maybe_await(callback(ctx.previous_error()))


@operation(intercept_errors=True, args=[{"type": "function", "required": True}])
async def transform(ctx: CallContext, callback: Callable[[Any, Any], Any]) -> Any:
    """Replace the state with the return value of ``callback(error, result)``."""
    return await _maybe_await(callback(ctx.previous_error(), ctx.previous_result()))


@operation(args=[{"type": "function", "required": True}])
async def transform_result(ctx: CallContext, callback: Callable[[Any], Any]) -> Any:
    """Replace the result with the return value of ``callback(result)``."""
    return await _maybe_await(callback(ctx.previous_result()))


@operation
def inject(ctx: CallContext, value: Any = None) -> Any:
    """Make ``value`` the result seen by the next call."""
    return value


BUILTIN_METHODS: Dict[str, Operation] = {
    "tap": tap,
    "end": end,
    "recover": recover,
    "transform": transform,
    "transform_result": transform_result,
    "inject": inject,
}
