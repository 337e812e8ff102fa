"""
The CallContext passed as first argument to every operation.

A context belongs to one queue run. It carries the running (error, result)
state, gives operations access to control primitives (skipping, calling
other operations, spawning chains) and links to the context of the
enclosing chain when it belongs to a sub-chain.
"""

import functools
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence

from .base import MISSING, CallDescriptor, Outcome
from .exceptions import ChainStateError, DuplicateMethodError, OperationNotFoundError
from .stacks import clean_stack
from .validations import ArgumentValidator

if TYPE_CHECKING:
    from .chain import Chain
    from .operation import Operation

_current_context: ContextVar[Optional["CallContext"]] = ContextVar(
    "chainbuilder_current_context", default=None
)


def current_context() -> Optional["CallContext"]:
    """
    Return the context of the operation running in the current task.

    Useful inside callbacks that don't receive the context explicitly, such
    as functions passed as arguments and derived during validation.
    """
    return _current_context.get()


class CallContext:
    """
    Per-run execution state visible to operations.

    Attributes:
        parent: Context of the enclosing chain run, or None at the root
        shared_data: Free-form dict operations may use to share data within
                     this run

    Example:
        >>> def plus(ctx, number):
        ...     return ctx.previous_result() + number
        >>>
        >>> def save(ctx, key):
        ...     ctx.shared_data[key] = ctx.previous_result()
        ...     return ctx.skip()
    """

    def __init__(
        self,
        methods: Mapping[str, "Operation"],
        context_methods: Optional[Mapping[str, "Operation"]] = None,
        create_chain: Optional[Callable[[Any], "Chain"]] = None,
        enable_stack: bool = False,
        parent: Optional["CallContext"] = None,
    ):
        self._methods = methods
        self._context_methods = context_methods or {}
        self._create_chain = create_chain
        self._enable_stack = enable_stack
        self._current_result: Any = None
        self._current_error: Any = None
        self._current_call: Optional[CallDescriptor] = None
        self.parent = parent
        self.shared_data: Dict[str, Any] = {}

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails: resolve context methods.
        context_methods = self.__dict__.get("_context_methods", {})
        if name in context_methods:
            return functools.partial(context_methods[name].func, self)
        raise AttributeError(
            f"'{type(self).__name__}' object has no attribute '{name}'"
        )

    # State
    def set_result(self, result: Any) -> None:
        self._current_result = result

    def set_error(self, error: Any) -> None:
        self._current_error = error

    def has_error(self) -> bool:
        return bool(self._current_error)

    def previous_result(self) -> Any:
        return self._current_result

    def previous_error(self) -> Any:
        return self._current_error

    def skip(self) -> Outcome:
        """Pass the current (error, result) through unchanged."""
        return Outcome(self._current_error, self._current_result)

    # Composition
    def _lookup(self, name: str) -> "Operation":
        try:
            return self._methods[name]
        except KeyError:
            raise OperationNotFoundError(name, list(self._methods)) from None

    def get_method(self, name: str) -> Callable[..., Any]:
        """Return another registered operation bound to this context."""
        return functools.partial(self._lookup(name).func, self)

    def new_chain(self, initial_result: Any = MISSING) -> "Chain":
        """
        Create a chain that traces as nested under the current one.

        Like the chain factory, passing an initial result starts it
        immediately; otherwise call ``run()`` on it.
        """
        if self._create_chain is None:
            raise ChainStateError("This context cannot create chains")
        return self._create_chain(initial_result)

    def validate_args(self, name: str, args: Sequence[Any]) -> List[Any]:
        """
        Validate ``args`` for operation ``name`` against this context.

        Checks the previous-result spec first, then the argument specs.
        Operations without specs get their arguments back unchanged.
        """
        operation = self._lookup(name)
        validator = ArgumentValidator(name, self)
        if operation.previous_result is not None:
            validator.validate_previous_result(operation.previous_result)
        if operation.args is not None:
            return validator.validate_args(args, operation.args)
        return list(args)

    # Diagnostics
    def clean_stacks(self) -> Dict[str, List[str]]:
        """
        Stacks of the current call, without engine frames.

        Returns:
            ``call_stack``: where the chain method was invoked
            ``exec_stack``: where this method is being called from
        """
        if not self._enable_stack:
            raise ChainStateError(
                "Stack capture is disabled; pass enable_stack=True to chainbuilder()"
            )
        call_stack = self._current_call.call_stack if self._current_call else None
        return {
            "call_stack": list(call_stack or ()),
            "exec_stack": list(clean_stack()),
        }

    def __repr__(self):
        return (
            f"<CallContext(error={self._current_error!r}, "
            f"result={self._current_result!r})>"
        )


def check_context_method_name(name: str) -> None:
    """Reject context-method names that would shadow core context attributes."""
    if name.startswith("_") or name in ("parent", "shared_data") or hasattr(
        CallContext, name
    ):
        raise DuplicateMethodError(
            name, message=f"Context method name already used: {name}"
        )
