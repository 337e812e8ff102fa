"""
The fluent Chain facade.

Every registered operation becomes a method on a Chain class generated for
the method table. Calling it queues a call and returns the same chain, so
calls can be strung together:

    >>> outcome = await my_chain().times(3).plus(2).run(5)
    >>> outcome.result
    17
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Callable, List, Mapping, Optional

from .base import MISSING
from .curry import curry
from .exceptions import ChainStateError, ConfigurationError, OperationNotFoundError
from .executor import CallQueue, ResultCallback
from .operation import Operation
from .stacks import clean_stack
from .tracing import EventTracer

logger = logging.getLogger("chainbuilder")


class Chain:
    """
    Fluent wrapper around one CallQueue.

    Don't instantiate this class directly; use the factory returned by
    ``chainbuilder()``, which builds a subclass carrying one method per
    registered operation.

    A chain created with an initial result starts executing right away and
    keeps executing calls as they are appended; observe it with ``tap`` or
    ``end``. A chain created without one is a reusable definition: every
    ``run()`` executes an independent copy.
    """

    _methods: Mapping[str, Operation] = MappingProxyType({})
    _context_methods: Mapping[str, Operation] = MappingProxyType({})
    _tracer: EventTracer = EventTracer()
    _enable_stack: bool = False

    def __init__(self, call_queue: Optional[CallQueue] = None, initial_result: Any = MISSING):
        self._call_queue = call_queue if call_queue is not None else self._new_call_queue()
        if initial_result is not MISSING:
            self._call_queue.start(initial_result, deliver=False)

    @classmethod
    def _new_call_queue(cls) -> CallQueue:
        return CallQueue(
            methods=cls._methods,
            tracer=cls._tracer,
            chain_class=cls,
            context_methods=cls._context_methods,
            enable_stack=cls._enable_stack,
        )

    @classmethod
    def method_names(cls) -> List[str]:
        return sorted(cls._methods)

    def call(self, method_name: str, *args: Any) -> "Chain":
        """
        Queue a call to ``method_name`` with ``args``.

        This is what every generated method does; use it directly for
        names computed at run time.

        Raises:
            OperationNotFoundError: If no such operation is registered
            BlockError: If the call closes a block that isn't open
        """
        operation = self._methods.get(method_name)
        if operation is None:
            raise OperationNotFoundError(method_name, list(self._methods))

        call_stack = clean_stack() if self._enable_stack else None
        self._call_queue.add(
            method_name,
            args,
            skip_on_error=not operation.intercept_errors,
            call_stack=call_stack,
        )
        return self

    def clone(self) -> "Chain":
        """Independent chain over a copy of the queued calls."""
        if self._call_queue.open_block_names:
            raise ChainStateError("Cannot clone while there are open blocks.")
        return type(self)(self._call_queue.clone())

    def run(
        self,
        initial_result: Any = None,
        callback: Optional[ResultCallback] = None,
    ) -> asyncio.Future:
        """
        Execute a copy of the queued calls.

        Args:
            initial_result: Value the first call sees as its previous result
            callback: Optional ``callback(error, result)``, sync or async,
                      called exactly once when the run completes

        Returns:
            Future resolving to the final Outcome. If ``callback`` raises,
            the future raises that exception instead.

        Raises:
            ChainStateError: If blocks are still open or no event loop runs
        """
        open_blocks = self._call_queue.open_block_names
        if open_blocks:
            raise ChainStateError(
                "Cannot run while there are open blocks: " + ",".join(open_blocks)
            )
        return self._call_queue.clone().start(initial_result, callback)

    def __len__(self):
        return len(self._call_queue)

    def __repr__(self):
        return f"Chain(links={len(self._call_queue)})"


def _link(name: str, operation: Operation) -> Callable[..., Chain]:
    link = curry(Chain.call, name)
    link.__name__ = name
    link.__qualname__ = f"Chain.{name}"
    link.__doc__ = operation.get_description()
    return link


def build_chain_class(
    methods: Mapping[str, Operation],
    context_methods: Optional[Mapping[str, Operation]] = None,
    tracer: Optional[EventTracer] = None,
    enable_stack: bool = False,
) -> type:
    """
    Generate a Chain subclass with one method per operation in ``methods``.

    Raises:
        ConfigurationError: If a name isn't a valid identifier or clashes
                            with a Chain attribute
    """
    namespace = {
        "_methods": MappingProxyType(dict(methods)),
        "_context_methods": MappingProxyType(dict(context_methods or {})),
        "_tracer": tracer or EventTracer(),
        "_enable_stack": enable_stack,
        "__module__": Chain.__module__,
    }

    for name, operation in methods.items():
        if not name.isidentifier():
            raise ConfigurationError("Method name must be a valid identifier", name)
        if hasattr(Chain, name):
            raise ConfigurationError(f"Method name already used: {name}", name)
        namespace[name] = _link(name, operation)

    logger.debug("Built chain class with %d methods", len(methods))
    return type("Chain", (Chain,), namespace)
