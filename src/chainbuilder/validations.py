"""
Run-time validation of operation arguments and previous results.

Validation runs inside the call sandbox right before an operation is
invoked. Failures raise ValidationError, which the queue turns into the
call's error like any other operation failure.

The order of the per-argument steps matters and is observable through the
error messages:
1. Fill in missing arguments (required check, default, previous result)
2. Derive the value when a function was supplied for a non-function spec
3. Check ``type``
4. Check ``instance_of``
"""

import logging
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from .exceptions import ValidationError
from .operation import ArgSpec, PreviousResultSpec

if TYPE_CHECKING:
    from .context import CallContext

logger = logging.getLogger("chainbuilder")

PREFIX = "Validation Error."

TYPE_MAP = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list,
    "dict": dict,
    "tuple": tuple,
    "none": type(None),
}


def is_function(value: Any) -> bool:
    """True for callables that aren't classes (functions, methods, partials, lambdas)."""
    return callable(value) and not isinstance(value, type)


def type_name(value: Any) -> str:
    """
    Name used for a value's runtime type in validation messages.

    ``None`` is "none" and callables are "function"; everything else is the
    class name.
    """
    if value is None:
        return "none"
    if is_function(value):
        return "function"
    return type(value).__name__


def matches_type(value: Any, expected: str) -> bool:
    if expected == "function":
        return is_function(value)
    expected_class = TYPE_MAP.get(expected)
    if expected_class is None:
        return type(value).__name__ == expected
    if expected_class is int and isinstance(value, bool):
        return False
    return isinstance(value, expected_class)


def _class_name(cls: type) -> str:
    return getattr(cls, "__name__", None) or "Unnamed Class"


class ArgumentValidator:
    """
    Validates and populates the arguments of one call.

    Example:
        >>> validator = ArgumentValidator("plus", context)
        >>> validator.validate_args((1,), [ArgSpec(type="int"), ArgSpec(default=2)])
        [1, 2]
    """

    def __init__(self, operation_name: str, context: "CallContext"):
        self.operation_name = operation_name
        self.context = context

    def _fail(self, message: str, path: Optional[str] = None):
        raise ValidationError(
            f"{PREFIX} {message}", operation_name=self.operation_name, path=path
        )

    def validate_previous_result(self, spec: PreviousResultSpec) -> None:
        """Check the context's previous result against ``spec``."""
        previous_result = self.context.previous_result()

        if spec.instance_of and not isinstance(previous_result, spec.instance_of):
            self._fail(
                "Expected previous result to be an instance of "
                f"<{_class_name(spec.instance_of)}>",
                path="previous_result",
            )

        if spec.type and not matches_type(previous_result, spec.type):
            self._fail(
                f'Expected previous result to be "{spec.type}" but was '
                f'"{type_name(previous_result)}": {previous_result}',
                path="previous_result",
            )

    def validate_args(self, args: Sequence[Any], specs: Sequence[ArgSpec]) -> List[Any]:
        """
        Produce the fully-populated argument list for ``specs``.

        Args:
            args: Arguments as supplied to the chain method
            specs: Declared argument specs

        Returns:
            One value per spec

        Raises:
            ValidationError: On too many arguments or any failing spec
        """
        if len(args) > len(specs):
            self._fail(f"Expected {len(specs)} arguments, but got {len(args)}")

        populated = []
        for i, spec in enumerate(specs):
            position = i + 1
            path = f"arg[{position}]"

            if i >= len(args):
                if spec.required:
                    self._fail(
                        f"Argument {position} is required but was not provided.",
                        path=path,
                    )
                if spec.default_to_previous_result:
                    arg = self.context.previous_result()
                else:
                    arg = spec.default
            else:
                arg = args[i]

            if is_function(arg) and (
                spec.instance_of or (spec.type and spec.type != "function")
            ):
                logger.debug(
                    "%s: deriving argument %d from previous result",
                    self.operation_name,
                    position,
                )
                arg = arg(self.context.previous_result())

            if spec.type and not matches_type(arg, spec.type):
                self._fail(
                    f'Expected "{type_name(arg)}" to be "{spec.type}" for: {arg}',
                    path=path,
                )

            if spec.instance_of and not isinstance(arg, spec.instance_of):
                self._fail(
                    f"Expected argument {position} to be an instance of "
                    f"<{_class_name(spec.instance_of)}>",
                    path=path,
                )

            populated.append(arg)

        return populated
