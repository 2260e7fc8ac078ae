"""Stdio JSON-RPC transport, state projection, schema guard, event sinks and reply policy."""

__version__ = "0.1.5"

__all__ = [
    "errors",
    "events",
    "state",
    "schema",
    "guard",
    "sink",
    "turn_output",
    "policy",
    "transport",
]