"""
Exception classes for chainbuilder.

All exceptions include:
- Descriptive messages with context
- `to_dict()` method for structured JSON output
- Fuzzy-matched suggestions where applicable

Two families live here. Validation failures (and any error an operation
raises) travel through the chain as ordinary errors and can be intercepted
by `tap`, `recover` or `transform`. Structural errors (`BlockError`,
`DuplicateMethodError`, `ChainStateError`, `ConfigurationError`) are
programming mistakes and are raised synchronously at the offending call.
"""

from difflib import get_close_matches
from typing import Any, Dict, List, Optional


class ChainError(Exception):
    """
    Base exception for all chainbuilder errors.

    Also used to wrap non-exception error values when an `Outcome` is
    unwrapped.

    Example:
        >>> try:
        ...     (await chain.run(3)).unwrap()
        ... except ChainError as e:
        ...     print(e.to_dict())
    """

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict."""
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class ValidationError(ChainError):
    """
    Raised when an operation's arguments or previous result fail validation.

    Attributes:
        message: Human-readable error message
        operation_name: Name of the operation being validated
        path: Which value failed (e.g. "arg[2]" or "previous_result")

    Example:
        >>> raise ValidationError(
        ...     "Validation Error. Argument 1 is required but was not provided.",
        ...     operation_name="plus",
        ...     path="arg[1]"
        ... )
    """

    def __init__(
        self,
        message: str,
        operation_name: Optional[str] = None,
        path: Optional[str] = None,
    ):
        self.message = message
        self.operation_name = operation_name
        self.path = path
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "VALIDATION_ERROR",
            "message": self.message,
            "operation": self.operation_name,
            "path": self.path,
        }


class OperationNotFoundError(ChainError):
    """
    Raised when an unknown method name is requested.

    Includes fuzzy-matched suggestions to help identify typos.

    Attributes:
        operation: The unknown method name that was requested
        valid_operations: List of all valid method names
        suggestions: Fuzzy-matched similar method names

    Example:
        >>> chain.call("trasnform", fn)
        OperationNotFoundError: Unknown operation: 'trasnform'.
        Did you mean: transform?
        Available operations: end, inject, recover, tap, transform, ...
    """

    def __init__(self, operation: str, valid_operations: List[str]):
        self.operation = operation
        self.valid_operations = valid_operations
        self.suggestions = get_close_matches(
            operation.lower(),
            [op.lower() for op in valid_operations],
            n=3,
            cutoff=0.5,
        )
        # Map back to original case
        self.suggestions = [
            op for op in valid_operations if op.lower() in self.suggestions
        ]

        message = f"Unknown operation: '{operation}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"

        sorted_ops = sorted(valid_operations)[:10]
        message += f"\nAvailable operations: {', '.join(sorted_ops)}"
        if len(valid_operations) > 10:
            message += f" ... ({len(valid_operations) - 10} more)"

        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "OPERATION_NOT_FOUND",
            "operation": self.operation,
            "suggestions": self.suggestions,
            "valid_operations": sorted(self.valid_operations),
        }


class DuplicateMethodError(ChainError):
    """
    Raised when two sources register the same method or context method name.

    Attributes:
        name: The clashing name
        first_source: Where the name was first registered (e.g. "methods")
        second_source: Where it was registered again (e.g. "mixin #1")
    """

    def __init__(
        self,
        name: str,
        first_source: Optional[str] = None,
        second_source: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.name = name
        self.first_source = first_source
        self.second_source = second_source
        if message is None:
            message = (
                f'Method "{name}" was provided by "{first_source}" '
                f'and "{second_source}".'
            )
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "DUPLICATE_METHOD",
            "message": str(self),
            "name": self.name,
            "sources": [self.first_source, self.second_source],
        }


class BlockError(ChainError):
    """
    Raised when sub-chain block markers don't pair up.

    Attributes:
        block_name: Name carried by the closing marker
        open_block: Name of the innermost open block, if any
    """

    def __init__(self, block_name: str, open_block: Optional[str] = None):
        self.block_name = block_name
        self.open_block = open_block
        if open_block is None:
            message = f"Closing a \"{block_name}\" block that wasn't opened."
        else:
            message = (
                f'Closing a "{block_name}" block when there\'s an open '
                f'"{open_block}" block.'
            )
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "BLOCK_MISMATCH",
            "message": str(self),
            "block": self.block_name,
            "open_block": self.open_block,
        }


class ChainStateError(ChainError):
    """
    Raised when a chain or queue is used in a state that doesn't allow it.

    Examples: starting a queue twice, running a chain with open blocks,
    asking for stacks when stack capture is disabled.
    """


class ConfigurationError(ChainError):
    """
    Raised when chainbuilder is given invalid registration arguments.

    Attributes:
        message: Error description
        operation_name: Name of the offending method, if any
    """

    def __init__(self, message: str, operation_name: Optional[str] = None):
        self.message = message
        self.operation_name = operation_name

        full_message = message
        if operation_name:
            full_message = f"[{operation_name}] {message}"

        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "CONFIGURATION_ERROR",
            "message": self.message,
            "operation": self.operation_name,
        }
