"""
Operation descriptor value objects.

An Operation wraps the callable a consumer registers together with the
metadata the engine needs: block markers, argument specs, a
previous-result spec, and flags for error interception and context
methods.
"""

import functools
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from .exceptions import ConfigurationError

TypeSpec = Union[str, type, None]


def _normalize_type(type_spec: TypeSpec) -> Optional[str]:
    if type_spec is None or isinstance(type_spec, str):
        return type_spec
    if isinstance(type_spec, type):
        return "none" if type_spec is type(None) else type_spec.__name__
    raise ConfigurationError(f"Unsupported type spec: {type_spec!r}")


@dataclass(frozen=True)
class ArgSpec:
    """
    Declared specification of one positional argument.

    Attributes:
        required: Fail if the argument is not supplied
        default: Value used when the argument is not supplied
        default_to_previous_result: Use the previous result instead of ``default``
        type: Expected type name ("str", "int", "dict", "function", ...) or a class
        instance_of: Class the value must be an instance of

    Example:
        >>> ArgSpec(type="str", default="a")
        >>> ArgSpec(type=dict, default_to_previous_result=True)
    """

    required: bool = False
    default: Any = None
    default_to_previous_result: bool = False
    type: TypeSpec = None
    instance_of: Optional[type] = None

    def __post_init__(self):
        object.__setattr__(self, "type", _normalize_type(self.type))

    @classmethod
    def coerce(cls, spec: Union["ArgSpec", Dict[str, Any]]) -> "ArgSpec":
        if isinstance(spec, cls):
            return spec
        if isinstance(spec, dict):
            return cls(**spec)
        raise ConfigurationError(f"Invalid argument spec: {spec!r}")


@dataclass(frozen=True)
class PreviousResultSpec:
    """Declared specification of the result an operation expects to receive."""

    type: TypeSpec = None
    instance_of: Optional[type] = None

    def __post_init__(self):
        object.__setattr__(self, "type", _normalize_type(self.type))

    @classmethod
    def coerce(
        cls, spec: Union["PreviousResultSpec", Dict[str, Any]]
    ) -> "PreviousResultSpec":
        if isinstance(spec, cls):
            return spec
        if isinstance(spec, dict):
            return cls(**spec)
        raise ConfigurationError(f"Invalid previous result spec: {spec!r}")


class Operation:
    """
    Value object representing one registered operation.

    The wrapped callable receives the CallContext as its first argument,
    followed by the (validated) chain arguments. It may be a plain function
    or a coroutine function; it completes by returning a result, raising an
    error, or returning an ``Outcome``.

    Attributes:
        func: The callable implementing the operation
        name: Name the operation is registered under
        begin_subchain: Opens a block with this name
        end_subchain: Closes the block with this name; receives the block as
                      a Chain in front of its arguments
        intercept_errors: Run even while the chain is erroring
        args: Tuple of ArgSpec, or None to skip argument validation
        previous_result: PreviousResultSpec, or None
        context_method: Expose on the CallContext instead of the Chain

    Example:
        >>> def plus(ctx, number):
        ...     return ctx.previous_result() + number
        >>> Operation(plus, args=[{"type": "int", "required": True}])
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        begin_subchain: Optional[str] = None,
        end_subchain: Optional[str] = None,
        intercept_errors: bool = False,
        args: Optional[Iterable[Union[ArgSpec, Dict[str, Any]]]] = None,
        previous_result: Optional[Union[PreviousResultSpec, Dict[str, Any]]] = None,
        context_method: bool = False,
        description: Optional[str] = None,
    ):
        """
        Initialize an operation.

        Args:
            func: Callable taking the context first.
            name: Registered name; filled in at registration when omitted.
            begin_subchain: Block name this operation opens.
            end_subchain: Block name this operation closes.
            intercept_errors: If True the operation is not skipped on error.
            args: Argument specs (ArgSpec or dicts of its fields).
            previous_result: Previous-result spec (or a dict of its fields).
            context_method: If True, attach to the context instead of the chain.
            description: Short description; defaults to the docstring's first line.
        """
        if not callable(func):
            raise ConfigurationError(f"Operation must be callable, got {func!r}", name)
        if begin_subchain is not None and end_subchain is not None:
            raise ConfigurationError(
                "An operation cannot both open and close a block", name
            )

        self._func = func
        self._name = name or getattr(func, "__name__", None)
        self._begin_subchain = begin_subchain
        self._end_subchain = end_subchain
        self._intercept_errors = intercept_errors
        self._args: Optional[Tuple[ArgSpec, ...]] = (
            tuple(ArgSpec.coerce(spec) for spec in args) if args is not None else None
        )
        self._previous_result = (
            PreviousResultSpec.coerce(previous_result)
            if previous_result is not None
            else None
        )
        self._context_method = context_method
        self._description = description
        functools.update_wrapper(self, func, updated=())

    @classmethod
    def from_callable(cls, obj: Any, name: Optional[str] = None) -> "Operation":
        """Wrap ``obj`` unless it already is an Operation; apply ``name``."""
        if isinstance(obj, cls):
            return obj if name is None or name == obj.name else obj.renamed(name)
        return cls(obj, name=name)

    def renamed(self, name: str) -> "Operation":
        """Return a copy of this operation registered under ``name``."""
        return Operation(
            self._func,
            name=name,
            begin_subchain=self._begin_subchain,
            end_subchain=self._end_subchain,
            intercept_errors=self._intercept_errors,
            args=self._args,
            previous_result=self._previous_result,
            context_method=self._context_method,
            description=self._description,
        )

    def __call__(self, ctx, *args):
        return self._func(ctx, *args)

    def get_description(self) -> str:
        if self._description:
            return self._description
        doc = getattr(self._func, "__doc__", None)
        if doc:
            return doc.strip().split("\n")[0]
        return f"{self._name} operation"

    def to_dict(self) -> Dict[str, Any]:
        """Describe the operation for introspection and logging."""
        return {
            "name": self._name,
            "description": self.get_description(),
            "begin_subchain": self._begin_subchain,
            "end_subchain": self._end_subchain,
            "intercept_errors": self._intercept_errors,
            "context_method": self._context_method,
            "args": [
                {
                    "required": spec.required,
                    "default": spec.default,
                    "default_to_previous_result": spec.default_to_previous_result,
                    "type": spec.type,
                    "instance_of": spec.instance_of.__name__
                    if spec.instance_of
                    else None,
                }
                for spec in self._args
            ]
            if self._args is not None
            else None,
            "previous_result": {
                "type": self._previous_result.type,
                "instance_of": self._previous_result.instance_of.__name__
                if self._previous_result.instance_of
                else None,
            }
            if self._previous_result
            else None,
        }

    def __repr__(self):
        return f"<Operation(name={self._name})>"

    # Properties (read-only)
    @property
    def func(self) -> Callable[..., Any]:
        return self._func

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def begin_subchain(self) -> Optional[str]:
        return self._begin_subchain

    @property
    def end_subchain(self) -> Optional[str]:
        return self._end_subchain

    @property
    def intercept_errors(self) -> bool:
        return self._intercept_errors

    @property
    def args(self) -> Optional[Tuple[ArgSpec, ...]]:
        return self._args

    @property
    def previous_result(self) -> Optional[PreviousResultSpec]:
        return self._previous_result

    @property
    def context_method(self) -> bool:
        return self._context_method


def operation(
    func: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    begin_subchain: Optional[str] = None,
    end_subchain: Optional[str] = None,
    intercept_errors: bool = False,
    args: Optional[Iterable[Union[ArgSpec, Dict[str, Any]]]] = None,
    previous_result: Optional[Union[PreviousResultSpec, Dict[str, Any]]] = None,
    context_method: bool = False,
    description: Optional[str] = None,
):
    """
    Decorator turning a function into an Operation.

    Usage:
        @operation
        def inject_one(ctx):
            return 1

        @operation(args=[ArgSpec(type="int", required=True)])
        async def plus(ctx, number):
            return ctx.previous_result() + number

        @operation(end_subchain="map")
        async def end_map(ctx, subchain):
            ...
    """

    def decorator(fn: Callable[..., Any]) -> Operation:
        return Operation(
            fn,
            name=name,
            begin_subchain=begin_subchain,
            end_subchain=end_subchain,
            intercept_errors=intercept_errors,
            args=args,
            previous_result=previous_result,
            context_method=context_method,
            description=description,
        )

    if func is not None:
        return decorator(func)
    return decorator


__all__ = [
    "ArgSpec",
    "PreviousResultSpec",
    "Operation",
    "operation",
]
