"""
Core value types for the chain execution engine.

This module defines:
- MISSING: Sentinel for "no value supplied"
- Outcome: The (error, result) pair every call completes with
- CallDescriptor: One queued invocation of a registered operation
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Tuple

from .exceptions import ChainError

if TYPE_CHECKING:
    from .executor import CallQueue


class _Missing:
    """Sentinel type distinguishing "not provided" from ``None``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


@dataclass(frozen=True)
class Outcome:
    """
    Completion of a call or of a whole chain.

    An operation normally returns a plain value (the result) or raises (the
    error). Returning an Outcome lets it set both channels explicitly, which
    is how hooks such as `tap` pass the current state through untouched.

    The chain counts as erroring whenever ``error`` is truthy; in that case
    ``result`` is always ``None``.

    Attributes:
        error: The error, or None
        result: The result, or None

    Example:
        >>> outcome = await chain.run(3)
        >>> outcome.result
        5
        >>> outcome.unwrap()
        5
    """

    error: Any = None
    result: Any = None

    @property
    def failed(self) -> bool:
        return bool(self.error)

    def unwrap(self) -> Any:
        """Return the result, or raise the error."""
        if not self.error:
            return self.result
        if isinstance(self.error, BaseException):
            raise self.error
        raise ChainError(str(self.error))

    def __iter__(self):
        # Allows ``error, result = outcome``
        return iter((self.error, self.result))


@dataclass(frozen=True)
class CallDescriptor:
    """
    One queued operation instance.

    Created when a chain method is invoked and consumed exactly once per
    queue run. ``subchain`` is only set on block-closing calls and holds the
    fully-built queue of the block body.

    Attributes:
        method_name: Name of the registered operation
        args: Arguments as supplied by the caller (not yet validated)
        skip_on_error: Bypass this call while the queue is erroring
        subchain: Queue of the closed block, for end-marker calls
        call_stack: Call-site stack, when stack capture is enabled
    """

    method_name: str
    args: Tuple[Any, ...] = ()
    skip_on_error: bool = True
    subchain: Optional["CallQueue"] = None
    call_stack: Optional[Tuple[str, ...]] = None

    def to_dict(self):
        """Convert to dictionary for logging and debugging."""
        return {
            "method_name": self.method_name,
            "args": list(self.args),
            "skip_on_error": self.skip_on_error,
            "has_subchain": self.subchain is not None,
        }

    def __repr__(self):
        return f"CallDescriptor(method={self.method_name}, args={len(self.args)})"
