"""
Stack capture for diagnostics.

When stack capture is enabled each queued call remembers where the chain
method was invoked, and operations can ask for both that call site and the
current execution site via ``CallContext.clean_stacks()``. Frames from the
engine itself (and from asyncio's scheduling machinery) are filtered out so
the first entry points at user code.
"""

import asyncio
import os
import traceback
from types import TracebackType
from typing import Iterable, Optional, Tuple

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_ASYNCIO_DIR = os.path.dirname(os.path.abspath(asyncio.__file__))

# Modules whose frames are engine plumbing rather than user code.
_ENGINE_MODULES = frozenset(
    os.path.join(_PACKAGE_DIR, name)
    for name in (
        "chain.py",
        "context.py",
        "control_flow.py",
        "curry.py",
        "executor.py",
        "sandbox.py",
        "stacks.py",
        "tracing.py",
        "validations.py",
    )
)


def _is_engine_frame(filename: str) -> bool:
    path = os.path.abspath(filename)
    return path in _ENGINE_MODULES or path.startswith(_ASYNCIO_DIR)


def clean_stack() -> Tuple[str, ...]:
    """
    Return the current stack, most recent frame first, without engine frames.

    Each entry is formatted as ``"<file>:<line> in <function>"``.
    """
    return _format(reversed(traceback.extract_stack()))


def _format(frames: Iterable[traceback.FrameSummary]) -> Tuple[str, ...]:
    return tuple(
        f"{frame.filename}:{frame.lineno} in {frame.name}"
        for frame in frames
        if not _is_engine_frame(frame.filename)
    )


def clean_traceback(tb: Optional[TracebackType]) -> Tuple[str, ...]:
    """Like ``clean_stack()``, for the frames an exception passed through."""
    return _format(reversed(traceback.extract_tb(tb)))
