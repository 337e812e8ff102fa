"""
Sequential call queue executing a chain's operations.

The queue holds the ordered list of calls, routes calls into nested
sub-chain blocks while they are open, and drains the list one call at a
time once started:

- at most one call is in flight per queue; the next call never starts
  before the previous one completed
- while the context is erroring, calls flagged ``skip_on_error`` are
  bypassed (a skip event is traced and the state passes through)
- every other call runs in its own asyncio task inside a CallSandbox:
  anything it raises, synchronously, from an awaited continuation or from
  a callback or task it scheduled, becomes the call's error
- when the list is exhausted the terminal callback and future receive the
  final (error, result) exactly once
"""

import asyncio
import inspect
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from .base import MISSING, CallDescriptor, Outcome
from .context import CallContext, _current_context
from .exceptions import BlockError, ChainStateError, OperationNotFoundError
from .sandbox import CallSandbox
from .stacks import clean_stack, clean_traceback
from .tracing import CallStartMemo, ChainStartMemo, EventTracer

if TYPE_CHECKING:
    from .chain import Chain
    from .operation import Operation

logger = logging.getLogger("chainbuilder")

# The "end" hook reports the end of the chain instead of a call of its own.
END_METHOD = "end"

ResultCallback = Callable[[Any, Any], Any]


class CallQueue:
    """
    Ordered queue of calls plus its execution cursor.

    A queue is started at most once. To run the same list of calls again
    (possibly concurrently), ``clone()`` it: the clone shares the immutable
    descriptors and method table but has its own cursor and context.

    Example:
        >>> queue = CallQueue(methods, tracer, chain_class)
        >>> queue.add("plus", (2,), skip_on_error=True)
        >>> outcome = await queue.start(3)
        >>> outcome.result
        5
    """

    def __init__(
        self,
        methods: Mapping[str, "Operation"],
        tracer: EventTracer,
        chain_class: Callable[..., "Chain"],
        context_methods: Optional[Mapping[str, "Operation"]] = None,
        enable_stack: bool = False,
        queue: Optional[Sequence[CallDescriptor]] = None,
    ):
        self._methods = methods
        self._tracer = tracer
        self._chain_class = chain_class
        self._context_methods = context_methods or {}
        self._enable_stack = enable_stack
        self._queue: List[CallDescriptor] = list(queue or ())
        self._position = 0
        self._is_started = False
        self._is_processing = False
        self._drain_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._when_done: Optional[ResultCallback] = None
        self._done_future: Optional[asyncio.Future] = None
        self._delivered = False
        self._chain_ended = False
        self._parent_queue: Optional["CallQueue"] = None
        self._chain_start_memo: Optional[ChainStartMemo] = None
        self._current_call_memo: Optional[CallStartMemo] = None
        self._open_blocks: List[Tuple[str, "CallQueue"]] = []
        self._context = CallContext(
            methods=self._methods,
            context_methods=self._context_methods,
            create_chain=self._create_chain,
            enable_stack=enable_stack,
        )

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def clone(self) -> "CallQueue":
        """Create a fresh, unstarted queue over the same calls."""
        clone = CallQueue(
            methods=self._methods,
            tracer=self._tracer,
            chain_class=self._chain_class,
            context_methods=self._context_methods,
            enable_stack=self._enable_stack,
            queue=self._queue,
        )
        if self._parent_queue is not None:
            clone._set_parent(self._parent_queue)
        return clone

    def add(
        self,
        method_name: str,
        args: Sequence[Any] = (),
        skip_on_error: bool = True,
        call_stack: Optional[Tuple[str, ...]] = None,
    ) -> None:
        """
        Queue a call, routing it into the innermost open block.

        A method carrying a begin marker is queued where it is and then
        opens a new block; calls that follow go into that block until the
        matching end marker. The end-marker call closes the block, carries
        the block's queue as its ``subchain`` and is queued where the block
        was opened.

        Raises:
            OperationNotFoundError: If ``method_name`` isn't registered
            BlockError: If an end marker doesn't match the open block
        """
        operation = self._methods.get(method_name)
        if operation is None:
            raise OperationNotFoundError(method_name, list(self._methods))

        subchain = None
        if operation.end_subchain is not None:
            if not self._open_blocks:
                raise BlockError(operation.end_subchain)
            open_name, block_queue = self._open_blocks[-1]
            if open_name != operation.end_subchain:
                raise BlockError(operation.end_subchain, open_name)
            self._open_blocks.pop()
            subchain = block_queue
            logger.debug("Closed block %r (%d calls)", open_name, len(block_queue))

        target = self._open_blocks[-1][1] if self._open_blocks else self
        target._append(
            CallDescriptor(
                method_name=method_name,
                args=tuple(args),
                skip_on_error=skip_on_error,
                subchain=subchain,
                call_stack=call_stack,
            )
        )

        if operation.begin_subchain is not None:
            self._open_blocks.append(
                (operation.begin_subchain, target._new_child_queue())
            )
            logger.debug("Opened block %r", operation.begin_subchain)

    def _append(self, descriptor: CallDescriptor) -> None:
        self._queue.append(descriptor)
        self._maybe_process_next()

    @property
    def open_block_names(self) -> List[str]:
        return [name for name, _ in self._open_blocks]

    @property
    def descriptors(self) -> Tuple[CallDescriptor, ...]:
        return tuple(self._queue)

    @property
    def context(self) -> CallContext:
        return self._context

    # ------------------------------------------------------------------
    # Parent / child
    # ------------------------------------------------------------------

    def _set_parent(self, queue: "CallQueue") -> None:
        self._parent_queue = queue
        self._context.parent = queue._context

    def _new_child_queue(self) -> "CallQueue":
        child = CallQueue(
            methods=self._methods,
            tracer=self._tracer,
            chain_class=self._chain_class,
            context_methods=self._context_methods,
            enable_stack=self._enable_stack,
        )
        child._set_parent(self)
        return child

    def _create_chain(self, initial_result: Any = MISSING) -> "Chain":
        return self._chain_class(self._new_child_queue(), initial_result)

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def start(
        self,
        initial_result: Any = None,
        on_done: Optional[ResultCallback] = None,
        deliver: bool = True,
    ) -> Optional[asyncio.Future]:
        """
        Start draining the queue.

        Args:
            initial_result: Value the first call sees as previous result
            on_done: Called once with (error, result) when the queue is drained;
                     may be a coroutine function
            deliver: If False, nothing is delivered when the queue drains
                     (immediately-started chains report through ``end``)

        Returns:
            Future resolving to the final Outcome, or None if not delivering

        Raises:
            ChainStateError: If already started, blocks are open, or no
                             event loop is running
        """
        if self._is_started:
            raise ChainStateError("Call queue has already been started; clone() it to run again")
        if self._open_blocks:
            raise ChainStateError(
                "Cannot run while there are open blocks: "
                + ",".join(self.open_block_names)
            )
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            raise ChainStateError(
                "Chains must be started from inside a running event loop"
            ) from None

        parent = self._parent_queue
        self._chain_start_memo = self._tracer.chain_start(
            initial_result,
            parent._chain_start_memo if parent else None,
            parent._current_call_memo if parent else None,
        )
        self._is_started = True
        self._when_done = on_done
        if deliver:
            self._done_future = self._loop.create_future()
        self._context.set_result(initial_result)

        logger.debug(
            "Starting queue with %d calls, initial_result type: %s",
            len(self._queue),
            type(initial_result).__name__,
        )
        self._maybe_process_next()
        return self._done_future

    def _awaiting_delivery(self) -> bool:
        return self._done_future is not None and not self._delivered

    def _maybe_process_next(self) -> None:
        # Re-entered after every append and after every drain; a no-op while
        # a call is in flight or before start().
        if self._is_processing or not self._is_started:
            return
        if self._position < len(self._queue) or self._awaiting_delivery():
            self._is_processing = True
            self._drain_task = self._loop.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._position < len(self._queue):
                descriptor = self._queue[self._position]
                self._position += 1

                if self._context.has_error() and descriptor.skip_on_error:
                    self._tracer.call_skipped(self._chain_start_memo, descriptor)
                    outcome = self._context.skip()
                else:
                    outcome = await self._run_call(descriptor)

                self._call_done(outcome)

            if self._awaiting_delivery():
                await self._deliver()
        finally:
            self._is_processing = False
        self._maybe_process_next()

    async def _run_call(self, descriptor: CallDescriptor) -> Outcome:
        operation = self._methods[descriptor.method_name]
        exec_stack = None
        with CallSandbox(self._loop, descriptor.method_name) as sandbox:
            task = self._loop.create_task(self._invoke(operation, descriptor, sandbox))
            try:
                outcome = await sandbox.wait(task)
                if self._enable_stack:
                    exec_stack = clean_stack()
            except Exception as error:
                logger.debug(
                    "Operation %s raised %s", descriptor.method_name, type(error).__name__
                )
                outcome = Outcome(error, None)
                if self._enable_stack:
                    exec_stack = clean_traceback(error.__traceback__)

        call_memo, self._current_call_memo = self._current_call_memo, None
        self._tracer.call_end(
            call_memo, descriptor, outcome.error, outcome.result, exec_stack=exec_stack
        )
        return outcome

    async def _invoke(
        self, operation: "Operation", descriptor: CallDescriptor, sandbox: CallSandbox
    ) -> Outcome:
        # Runs in its own task: the context variables don't leak out of it.
        sandbox.activate()
        _current_context.set(self._context)
        self._context._current_call = descriptor

        args = list(descriptor.args)
        if descriptor.subchain is not None:
            subqueue = descriptor.subchain.clone()
            subqueue._set_parent(self)
            args.insert(0, self._chain_class(subqueue))

        args = self._context.validate_args(descriptor.method_name, args)

        if descriptor.method_name == END_METHOD:
            self._end_chain()
        else:
            self._current_call_memo = self._tracer.call_start(
                self._chain_start_memo, descriptor, args, operation
            )

        value = operation.func(self._context, *args)
        while inspect.isawaitable(value):
            value = await value

        if isinstance(value, Outcome):
            return value
        return Outcome(None, value)

    def _call_done(self, outcome: Outcome) -> None:
        self._context.set_error(outcome.error)
        self._context.set_result(None if self._context.has_error() else outcome.result)

    def _end_chain(self) -> None:
        if not self._chain_ended:
            self._chain_ended = True
            self._tracer.chain_end(self._chain_start_memo, self._context)

    async def _deliver(self) -> None:
        self._delivered = True
        self._end_chain()

        error = self._context.previous_error()
        result = self._context.previous_result()
        logger.debug(
            "Queue drained after %d calls, %s",
            self._position,
            "with error" if error else f"result type: {type(result).__name__}",
        )

        try:
            if self._when_done is not None:
                value = self._when_done(error, result)
                if inspect.isawaitable(value):
                    await value
        except Exception as callback_error:
            if not self._done_future.done():
                self._done_future.set_exception(callback_error)
            return

        if not self._done_future.done():
            self._done_future.set_result(Outcome(error, result))

    def __len__(self):
        return len(self._queue)

    def __repr__(self):
        return f"CallQueue(size={len(self._queue)})"
