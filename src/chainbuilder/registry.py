"""
Method registry for one chain builder.

Collects operations from the built-ins, the consumer's methods and any
mixins, keeps chain methods and context methods apart, and offers
introspection over the result.
"""

import logging
from types import MappingProxyType, ModuleType
from typing import Any, Dict, List, Mapping, Optional

from .context import check_context_method_name
from .exceptions import ConfigurationError, DuplicateMethodError, OperationNotFoundError
from .operation import Operation

logger = logging.getLogger("chainbuilder")


def _source_items(source: Any) -> Mapping[str, Any]:
    # A mapping is taken as-is; a module or object contributes its public
    # Operation attributes.
    if isinstance(source, Mapping):
        return source
    if isinstance(source, ModuleType) or hasattr(source, "__dict__"):
        return {
            name: value
            for name, value in vars(source).items()
            if not name.startswith("_") and isinstance(value, Operation)
        }
    raise ConfigurationError(f"Unsupported method source: {source!r}")


class MethodRegistry:
    """
    Registry of the operations available to one chain class.

    Example:
        >>> registry = MethodRegistry()
        >>> registry.register_all({"plus": plus}, source="methods")
        >>> registry.has_operation("plus")
        True
        >>> registry.describe_operation("plus")["intercept_errors"]
        False
    """

    def __init__(self):
        self._methods: Dict[str, Operation] = {}
        self._context_methods: Dict[str, Operation] = {}
        self._sources: Dict[str, str] = {}

    def register(self, name: str, obj: Any, source: str = "methods") -> Operation:
        """
        Register ``obj`` (a callable or an Operation) under ``name``.

        Raises:
            DuplicateMethodError: If the name is already registered, or a
                                  context method would shadow the context
            ConfigurationError: If ``obj`` isn't callable
        """
        if name in self._sources:
            raise DuplicateMethodError(name, self._sources[name], source)

        op = Operation.from_callable(obj, name=name)
        if op.context_method:
            check_context_method_name(name)
            self._context_methods[name] = op
        else:
            self._methods[name] = op
        self._sources[name] = source

        logger.debug(
            "Registered %s: %s (from %s)",
            "context method" if op.context_method else "method",
            name,
            source,
        )
        return op

    def register_all(self, methods: Any, source: str = "methods") -> None:
        """Register every entry of a mapping, module or object of operations."""
        for name, obj in _source_items(methods).items():
            self.register(name, obj, source)

    @property
    def methods(self) -> Mapping[str, Operation]:
        return MappingProxyType(self._methods)

    @property
    def context_methods(self) -> Mapping[str, Operation]:
        return MappingProxyType(self._context_methods)

    def _all(self) -> Dict[str, Operation]:
        return {**self._methods, **self._context_methods}

    def has_operation(self, name: str) -> bool:
        return name in self._sources

    def get_operation(self, name: str) -> Operation:
        """
        Get a registered operation by name.

        Raises:
            OperationNotFoundError: If not registered (includes suggestions)
        """
        operations = self._all()
        if name not in operations:
            raise OperationNotFoundError(name, list(operations))
        return operations[name]

    def get_source(self, name: str) -> str:
        self.get_operation(name)
        return self._sources[name]

    def describe_operation(self, name: str) -> Dict[str, Any]:
        """
        Full description of an operation.

        Example:
            >>> registry.describe_operation("tap")
            {
                "name": "tap",
                "kind": "method",
                "source": "builtins",
                "description": "Call ``callback(error, result)`` ...",
                "intercept_errors": True,
                ...
            }
        """
        op = self.get_operation(name)
        description = op.to_dict()
        description["name"] = name
        description["kind"] = "context_method" if op.context_method else "method"
        description["source"] = self._sources[name]
        return description

    def list_operations(self, kind: Optional[str] = None) -> List[Dict[str, str]]:
        """
        List operations with brief descriptions.

        Args:
            kind: Optional filter, 'method' or 'context_method'

        Returns:
            List of dicts with name, kind, source and description, sorted
            by kind then name
        """
        if kind not in (None, "method", "context_method"):
            raise ConfigurationError(f"Unknown operation kind: {kind}")

        result = []
        for name, op in self._all().items():
            op_kind = "context_method" if op.context_method else "method"
            if kind and op_kind != kind:
                continue
            result.append(
                {
                    "name": name,
                    "kind": op_kind,
                    "source": self._sources[name],
                    "description": op.get_description(),
                }
            )

        return sorted(result, key=lambda x: (x["kind"], x["name"]))

    def __len__(self):
        return len(self._sources)

    def __contains__(self, name: str) -> bool:
        return name in self._sources
