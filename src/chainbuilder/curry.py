"""
Partial application that keeps the receiver late-bound.
"""

from typing import Any, Callable


def curry(fn: Callable[..., Any], *base_args: Any) -> Callable[..., Any]:
    """
    Curry ``fn`` with ``base_args`` placed after the receiver.

    Unlike ``functools.partial`` the result is a plain function, so when
    it's stored on a class it still binds as a method and ``self`` arrives
    first, followed by ``base_args`` and then the call's own arguments.

    Example:
        >>> class Greeter:
        ...     def say(self, greeting, name):
        ...         return f"{greeting}, {name}"
        ...     hello = curry(say, "Hello")
        >>> Greeter().hello("Ada")
        'Hello, Ada'
    """

    def curried(self, *args):
        return fn(self, *base_args, *args)

    return curried
