"""
Execution tracing.

The EventTracer assigns correlation ids to chain runs and individual calls
and reports five kinds of events to trace handlers:

- CHAIN_START / CHAIN_END: a queue run began / delivered its final outcome
- CALL_START / CALL_END: an operation was invoked / completed
- CALL_SKIPPED: an operation was bypassed because the chain was erroring

Every event carries the depth of the chain (0 for the root, +1 for each
sub-chain or ``new_chain``) and enough ids to rebuild the whole call tree:
calls point at their chain through ``chain_instance_id``, nested chains
point at their parent chain and at the call that started them.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from itertools import count
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Tuple

if TYPE_CHECKING:
    from .base import CallDescriptor
    from .context import CallContext
    from .operation import Operation

logger = logging.getLogger("chainbuilder")
trace_logger = logging.getLogger("chainbuilder.trace")


class TraceEvent(str, Enum):
    """Kinds of trace events, in the order a simple run emits them."""

    CHAIN_START = "chain_start"
    CALL_START = "call_start"
    CALL_END = "call_end"
    CALL_SKIPPED = "call_skipped"
    CHAIN_END = "chain_end"


@dataclass
class TraceDetails:
    """
    Payload of a trace event.

    Fields that don't apply to an event are None: chain events carry no
    ``method_name``, start events carry no ``run_time_ms``, and so on.

    Attributes:
        instance_id: Id of the chain run (chain events) or call (call events)
        depth: Nesting depth of the owning chain
        chain_instance_id: Owning chain run (call events)
        parent_chain_instance_id: Enclosing chain run (chain events)
        parent_call_instance_id: Call that was in flight in the enclosing
                                 chain when this chain started (chain_start)
        method_name: Name of the operation (call events)
        args: Arguments as supplied to the chain method
        evaluated_args: Arguments actually passed after validation (call_start)
        operation: The Operation being invoked (call_start)
        initial_value: Initial result of the chain run (chain_start)
        run_time_ms: Wall-clock duration (end events)
        result: Result snapshot (end events)
        error: Error snapshot (end events)
        call_stack: Call-site stack when stack capture is enabled
        exec_stack: Stack where the call completed (call_end, when stack
                    capture is enabled); for a failed call, the frames the
                    error was raised through
    """

    instance_id: Optional[str] = None
    depth: int = 0
    chain_instance_id: Optional[str] = None
    parent_chain_instance_id: Optional[str] = None
    parent_call_instance_id: Optional[str] = None
    method_name: Optional[str] = None
    args: Optional[List[Any]] = None
    evaluated_args: Optional[List[Any]] = None
    operation: Optional["Operation"] = None
    initial_value: Any = None
    run_time_ms: Optional[float] = None
    result: Any = None
    error: Any = None
    call_stack: Optional[Tuple[str, ...]] = None
    exec_stack: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, leaving out fields that don't apply."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "operation":
                value = value.name
            data[f.name] = value
        return data


@dataclass(frozen=True)
class ChainStartMemo:
    """What the tracer remembers about a running chain."""

    instance_id: str
    depth: int
    parent_chain_instance_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CallStartMemo:
    """What the tracer remembers about a call in flight."""

    instance_id: str
    chain_instance_id: str
    depth: int
    timestamp: float = field(default_factory=time.time)


class TraceHandler(ABC):
    """
    Receiver of trace events.

    Implement ``handle`` to observe chains. Handlers are called in
    registration order, synchronously, while the chain runs; keep them fast.

    Example:
        >>> class PrintHandler(TraceHandler):
        ...     def handle(self, event, details):
        ...         print(event.value, details.method_name)
    """

    @abstractmethod
    def handle(self, event: TraceEvent, details: TraceDetails) -> None:
        pass


class CallableTraceHandler(TraceHandler):
    """Adapts a plain ``fn(event, details)`` function to the handler interface."""

    def __init__(self, fn: Callable[[TraceEvent, TraceDetails], Any]):
        self.fn = fn

    def handle(self, event: TraceEvent, details: TraceDetails) -> None:
        self.fn(event, details)

    def __repr__(self):
        return f"<CallableTraceHandler({getattr(self.fn, '__name__', self.fn)!r})>"


class LoggingTraceHandler(TraceHandler):
    """
    Emits one log record per trace event.

    Records go to the ``chainbuilder.trace`` logger by default. The event
    details are attached as ``record.trace`` (a dict) so structured
    formatters can pick them up.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.DEBUG):
        self.logger = logger or trace_logger
        self.level = level

    def handle(self, event: TraceEvent, details: TraceDetails) -> None:
        if not self.logger.isEnabledFor(self.level):
            return

        if event in (TraceEvent.CHAIN_START, TraceEvent.CHAIN_END):
            subject = f"chain {details.instance_id}"
        else:
            subject = f"{details.method_name} ({details.instance_id or 'skipped'})"

        if details.run_time_ms is not None:
            self.logger.log(
                self.level,
                "%s%s %s in %.2fms%s",
                "  " * details.depth,
                event.value,
                subject,
                details.run_time_ms,
                " with error" if details.error else "",
                extra={"trace": details.to_dict()},
            )
        else:
            self.logger.log(
                self.level,
                "%s%s %s",
                "  " * details.depth,
                event.value,
                subject,
                extra={"trace": details.to_dict()},
            )


class TraceRecorder(TraceHandler):
    """
    Keeps every event in order and can rebuild the call tree.

    Example:
        >>> recorder = TraceRecorder()
        >>> builder = chainbuilder(methods=..., trace_handlers=[recorder])
        >>> await builder().plus(1).run(2)
        >>> recorder.event_types()
        [TraceEvent.CHAIN_START, TraceEvent.CALL_START, TraceEvent.CALL_END, TraceEvent.CHAIN_END]
        >>> recorder.call_tree()[0]["calls"][0]["method_name"]
        'plus'
    """

    def __init__(self):
        self.events: List[Tuple[TraceEvent, TraceDetails]] = []

    def handle(self, event: TraceEvent, details: TraceDetails) -> None:
        self.events.append((event, details))

    def clear(self) -> None:
        self.events.clear()

    def event_types(self) -> List[TraceEvent]:
        return [event for event, _ in self.events]

    def payloads(self) -> List[TraceDetails]:
        return [details for _, details in self.events]

    def call_tree(self) -> List[Dict[str, Any]]:
        """
        Rebuild nested chain runs from the recorded events.

        Returns:
            List of root chain nodes. A chain node has ``instance_id``,
            ``depth``, ``initial_value``, ``result``, ``error``,
            ``run_time_ms``, ``calls`` and ``chains`` (nested chains not
            attributable to a call). A call node has ``instance_id``,
            ``method_name``, ``skipped``, ``args``, ``evaluated_args``,
            ``result``, ``error``, ``run_time_ms`` and ``chains``.
        """
        chains: Dict[str, Dict[str, Any]] = {}
        calls: Dict[str, Dict[str, Any]] = {}
        roots: List[Dict[str, Any]] = []

        for event, details in self.events:
            if event == TraceEvent.CHAIN_START:
                node = {
                    "instance_id": details.instance_id,
                    "depth": details.depth,
                    "initial_value": details.initial_value,
                    "result": None,
                    "error": None,
                    "run_time_ms": None,
                    "calls": [],
                    "chains": [],
                }
                chains[details.instance_id] = node
                parent_call = calls.get(details.parent_call_instance_id)
                parent_chain = chains.get(details.parent_chain_instance_id)
                if parent_call is not None:
                    parent_call["chains"].append(node)
                elif parent_chain is not None:
                    parent_chain["chains"].append(node)
                else:
                    roots.append(node)

            elif event == TraceEvent.CHAIN_END:
                node = chains.get(details.instance_id)
                if node is not None:
                    node["result"] = details.result
                    node["error"] = details.error
                    node["run_time_ms"] = details.run_time_ms

            elif event in (TraceEvent.CALL_START, TraceEvent.CALL_SKIPPED):
                node = {
                    "instance_id": details.instance_id,
                    "method_name": details.method_name,
                    "skipped": event == TraceEvent.CALL_SKIPPED,
                    "args": details.args,
                    "evaluated_args": details.evaluated_args,
                    "result": None,
                    "error": None,
                    "run_time_ms": None,
                    "chains": [],
                }
                if details.instance_id is not None:
                    calls[details.instance_id] = node
                chain = chains.get(details.chain_instance_id)
                if chain is not None:
                    chain["calls"].append(node)

            elif event == TraceEvent.CALL_END:
                node = calls.get(details.instance_id)
                if node is not None:
                    node["result"] = details.result
                    node["error"] = details.error
                    node["run_time_ms"] = details.run_time_ms

        return roots


def as_trace_handler(handler: Any) -> TraceHandler:
    if isinstance(handler, TraceHandler):
        return handler
    if hasattr(handler, "handle") and callable(handler.handle):
        return CallableTraceHandler(handler.handle)
    if callable(handler):
        return CallableTraceHandler(handler)
    raise TypeError(f"Not a trace handler: {handler!r}")


class EventTracer:
    """
    Assigns correlation ids and dispatches trace events.

    A tracer without handlers is disabled: every method returns
    immediately and start methods return None.

    Ids look like ``<tracer id>-chain-<n>`` and ``<tracer id>-call-<n>``
    and are unique per tracer.
    """

    def __init__(self, handlers: Optional[Iterable[Any]] = None):
        self.handlers: List[TraceHandler] = [
            as_trace_handler(handler) for handler in handlers or ()
        ]
        self.is_disabled = not self.handlers
        self.tracer_id = uuid.uuid4().hex[:12]
        self._counters = {"chain": count(), "call": count()}

    def _create_id(self, prefix: str) -> str:
        return f"{self.tracer_id}-{prefix}-{next(self._counters[prefix])}"

    def _emit(self, event: TraceEvent, details: TraceDetails) -> None:
        for handler in self.handlers:
            try:
                handler.handle(event, details)
            except Exception:
                logger.warning(
                    "Trace handler %r failed on %s", handler, event.value, exc_info=True
                )

    def chain_start(
        self,
        initial_value: Any,
        parent_memo: Optional[ChainStartMemo] = None,
        parent_call_memo: Optional[CallStartMemo] = None,
    ) -> Optional[ChainStartMemo]:
        if self.is_disabled:
            return None

        instance_id = self._create_id("chain")
        parent_chain_instance_id = parent_memo.instance_id if parent_memo else None
        depth = parent_memo.depth + 1 if parent_memo else 0

        self._emit(
            TraceEvent.CHAIN_START,
            TraceDetails(
                instance_id=instance_id,
                depth=depth,
                parent_chain_instance_id=parent_chain_instance_id,
                parent_call_instance_id=parent_call_memo.instance_id
                if parent_call_memo
                else None,
                initial_value=initial_value,
            ),
        )
        return ChainStartMemo(
            instance_id=instance_id,
            depth=depth,
            parent_chain_instance_id=parent_chain_instance_id,
        )

    def chain_end(self, memo: Optional[ChainStartMemo], context: "CallContext") -> None:
        if self.is_disabled or memo is None:
            return

        self._emit(
            TraceEvent.CHAIN_END,
            TraceDetails(
                instance_id=memo.instance_id,
                depth=memo.depth,
                parent_chain_instance_id=memo.parent_chain_instance_id,
                run_time_ms=(time.time() - memo.timestamp) * 1000,
                result=context.previous_result(),
                error=context.previous_error(),
            ),
        )

    def call_start(
        self,
        chain_memo: Optional[ChainStartMemo],
        descriptor: "CallDescriptor",
        evaluated_args: List[Any],
        operation: "Operation",
    ) -> Optional[CallStartMemo]:
        if self.is_disabled or chain_memo is None:
            return None

        instance_id = self._create_id("call")
        self._emit(
            TraceEvent.CALL_START,
            TraceDetails(
                instance_id=instance_id,
                depth=chain_memo.depth,
                chain_instance_id=chain_memo.instance_id,
                method_name=descriptor.method_name,
                args=list(descriptor.args),
                evaluated_args=list(evaluated_args),
                operation=operation,
                call_stack=descriptor.call_stack,
            ),
        )
        return CallStartMemo(
            instance_id=instance_id,
            chain_instance_id=chain_memo.instance_id,
            depth=chain_memo.depth,
        )

    def call_end(
        self,
        call_memo: Optional[CallStartMemo],
        descriptor: "CallDescriptor",
        error: Any,
        result: Any,
        exec_stack: Optional[Tuple[str, ...]] = None,
    ) -> None:
        if self.is_disabled or call_memo is None:
            return

        self._emit(
            TraceEvent.CALL_END,
            TraceDetails(
                instance_id=call_memo.instance_id,
                depth=call_memo.depth,
                chain_instance_id=call_memo.chain_instance_id,
                method_name=descriptor.method_name,
                run_time_ms=(time.time() - call_memo.timestamp) * 1000,
                result=result,
                error=error,
                call_stack=descriptor.call_stack,
                exec_stack=exec_stack,
            ),
        )

    def call_skipped(
        self, chain_memo: Optional[ChainStartMemo], descriptor: "CallDescriptor"
    ) -> None:
        if self.is_disabled or chain_memo is None:
            return

        self._emit(
            TraceEvent.CALL_SKIPPED,
            TraceDetails(
                depth=chain_memo.depth,
                chain_instance_id=chain_memo.instance_id,
                method_name=descriptor.method_name,
                args=list(descriptor.args),
                call_stack=descriptor.call_stack,
            ),
        )
