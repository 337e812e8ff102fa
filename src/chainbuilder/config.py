"""
Builder configuration.

Defaults come from the environment so stack capture and trace logging can
be switched on for a process without touching code:

- ``CHAINBUILDER_ENABLE_STACK``: capture call-site stacks ("1", "true", ...)
- ``CHAINBUILDER_LOG_TRACES``: log every trace event
- ``CHAINBUILDER_TRACE_LEVEL``: level for logged trace events (default DEBUG)
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import ConfigurationError

TRUTHY = ("1", "true", "yes", "on")


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in TRUTHY


def _level(value: Optional[str]) -> int:
    if not value:
        return logging.DEBUG
    value = value.strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown trace log level: {value}")
    return level


@dataclass(frozen=True)
class BuilderConfig:
    """
    Settings applied by ``chainbuilder()``.

    Attributes:
        enable_stack: Capture call-site stacks for traces and ``clean_stacks()``
        log_traces: Attach a LoggingTraceHandler
        trace_log_level: Level the LoggingTraceHandler logs at
    """

    enable_stack: bool = False
    log_traces: bool = False
    trace_log_level: int = logging.DEBUG

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BuilderConfig":
        environ = os.environ if environ is None else environ
        return cls(
            enable_stack=_flag(environ.get("CHAINBUILDER_ENABLE_STACK")),
            log_traces=_flag(environ.get("CHAINBUILDER_LOG_TRACES")),
            trace_log_level=_level(environ.get("CHAINBUILDER_TRACE_LEVEL")),
        )
