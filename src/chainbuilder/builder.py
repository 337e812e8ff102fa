"""
The registration entry point.

``chainbuilder()`` turns a set of operations into a chain factory:

    >>> def plus(ctx, number):
    ...     return ctx.previous_result() + number
    >>>
    >>> my_chain = chainbuilder(methods={"plus": plus})
    >>> outcome = await my_chain().plus(1).plus(2).run(3)
    >>> outcome.result
    6
"""

import logging
from typing import Any, Iterable, Mapping, Optional

from .base import MISSING
from .chain import Chain, build_chain_class
from .config import BuilderConfig
from .control_flow import BUILTIN_METHODS
from .exceptions import ConfigurationError
from .registry import MethodRegistry
from .tracing import EventTracer, LoggingTraceHandler, as_trace_handler

logger = logging.getLogger("chainbuilder")


class ChainFactory:
    """
    Creates chains of one generated Chain class.

    Attributes:
        registry: MethodRegistry with every registered operation
        chain_class: The generated Chain subclass
        tracer: EventTracer shared by all chains of this factory
    """

    def __init__(self, registry: MethodRegistry, tracer: EventTracer, enable_stack: bool = False):
        self.registry = registry
        self.tracer = tracer
        self.enable_stack = enable_stack
        self.chain_class = build_chain_class(
            registry.methods,
            registry.context_methods,
            tracer,
            enable_stack,
        )

    def __call__(self, initial_result: Any = MISSING) -> Chain:
        """
        Create a chain.

        Without an argument the chain is idle until ``run()``. With one
        (any value, None included) it starts executing immediately with
        that value as its initial result.
        """
        return self.chain_class(initial_result=initial_result)

    def __repr__(self):
        return f"<ChainFactory(methods={len(self.registry.methods)})>"


def chainbuilder(
    methods: Optional[Mapping[str, Any]] = None,
    mixins: Optional[Iterable[Any]] = None,
    trace_handlers: Optional[Iterable[Any]] = None,
    enable_stack: Optional[bool] = None,
    config: Optional[BuilderConfig] = None,
) -> ChainFactory:
    """
    Build a chain factory.

    Args:
        methods: Map of name to operation (callable or Operation)
        mixins: Further method sources (mappings, or modules/objects with
                Operation attributes), registered in order
        trace_handlers: TraceHandler instances or plain ``fn(event, details)``
        enable_stack: Capture call-site stacks; overrides ``config``
        config: BuilderConfig; defaults to ``BuilderConfig.from_env()``

    Returns:
        ChainFactory creating chains with one method per operation plus the
        built-in hooks

    Raises:
        ConfigurationError: If neither methods nor mixins is given, or a
                            name can't be used as a chain method
        DuplicateMethodError: If two sources provide the same name
    """
    if methods is None and mixins is None:
        raise ConfigurationError("Either methods or mixins must be provided")

    config = config or BuilderConfig.from_env()
    if enable_stack is None:
        enable_stack = config.enable_stack

    registry = MethodRegistry()
    registry.register_all(BUILTIN_METHODS, source="builtins")
    if methods is not None:
        registry.register_all(methods, source="methods")
    for i, mixin in enumerate(mixins or ()):
        registry.register_all(mixin, source=f"mixin #{i}")

    handlers = [as_trace_handler(handler) for handler in trace_handlers or ()]
    if config.log_traces:
        handlers.append(LoggingTraceHandler(level=config.trace_log_level))

    logger.debug(
        "Building chain factory: %d methods, %d context methods, %d trace handlers",
        len(registry.methods),
        len(registry.context_methods),
        len(handlers),
    )
    return ChainFactory(registry, EventTracer(handlers), enable_stack)
