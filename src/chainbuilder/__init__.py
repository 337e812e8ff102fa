"""
chainbuilder - Fluent, asynchronous call chains built from plain functions.

Register a set of operations once and get a chain factory whose chains
expose one method per operation. Calls queue up and execute strictly in
order, each receiving a context with the previous result. Errors skip the
following calls until a hook intercepts them.

Basic Usage:
    >>> from chainbuilder import chainbuilder
    >>>
    >>> def plus(ctx, number):
    ...     return ctx.previous_result() + number
    >>>
    >>> async def times(ctx, factor):
    ...     return ctx.previous_result() * factor
    >>>
    >>> my_chain = chainbuilder(methods={"plus": plus, "times": times})
    >>> outcome = await my_chain().plus(2).times(3).run(1)
    >>> outcome.result
    9

Key Concepts:
    - **Operations**: Functions taking a CallContext first; sync or async
    - **Chain**: Fluent builder; ``run()`` executes an independent copy
    - **Hooks**: ``tap``, ``end``, ``recover``, ``transform`` see errors
    - **Blocks**: Operations marked ``begin_subchain``/``end_subchain``
      collect the calls between them into a sub-chain
    - **Tracing**: Trace handlers receive start/end/skip events with ids
      and nesting depth

Introspection:
    >>> my_chain.registry.list_operations()
    >>> my_chain.registry.describe_operation("plus")
"""

from .base import MISSING, CallDescriptor, Outcome
from .operation import ArgSpec, Operation, PreviousResultSpec, operation
from .context import CallContext, current_context
from .chain import Chain
from .builder import ChainFactory, chainbuilder
from .config import BuilderConfig
from .curry import curry
from .registry import MethodRegistry
from .tracing import (
    CallableTraceHandler,
    EventTracer,
    LoggingTraceHandler,
    TraceDetails,
    TraceEvent,
    TraceHandler,
    TraceRecorder,
)
from .exceptions import (
    BlockError,
    ChainError,
    ChainStateError,
    ConfigurationError,
    DuplicateMethodError,
    OperationNotFoundError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    # Core types
    "MISSING",
    "Outcome",
    "CallDescriptor",
    "CallContext",
    "current_context",
    "Chain",
    "curry",
    # Operations
    "Operation",
    "ArgSpec",
    "PreviousResultSpec",
    "operation",
    # Registration
    "chainbuilder",
    "ChainFactory",
    "MethodRegistry",
    "BuilderConfig",
    # Tracing
    "TraceEvent",
    "TraceDetails",
    "TraceHandler",
    "CallableTraceHandler",
    "LoggingTraceHandler",
    "TraceRecorder",
    "EventTracer",
    # Exceptions
    "ChainError",
    "ValidationError",
    "OperationNotFoundError",
    "DuplicateMethodError",
    "BlockError",
    "ChainStateError",
    "ConfigurationError",
]
