"""Exception hierarchy shared by the runtime components."""

from __future__ import annotations


class AgentRuntimeError(Exception):
    """Base class for every error raised by the runtime."""


class InvalidConfigError(AgentRuntimeError):
    """A configuration value is out of its allowed range."""


class InternalError(AgentRuntimeError):
    """An unexpected failure inside the runtime or its environment."""


class TransportClosedError(AgentRuntimeError):
    """The connection to the child process is gone."""

    def __init__(self, message: str = "transport closed") -> None:
        super().__init__(message)


class SinkError(AgentRuntimeError):
    """An event sink failed to serialize or persist an envelope."""