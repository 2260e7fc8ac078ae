"""Event sinks that persist or export envelopes."""

from __future__ import annotations

import abc
import asyncio
import json
import os
from typing import BinaryIO, Union

from agentwire.errors import SinkError
from agentwire.events import Envelope


class EventSink(abc.ABC):
    """Optional hook that receives every envelope; failures raise :class:`SinkError`."""

    @abc.abstractmethod
    async def on_envelope(self, envelope: Envelope) -> None:
        """Consume one envelope."""


class JsonlFileSink(EventSink):
    """Appends one JSON line per envelope to a file."""

    def __init__(self, handle: BinaryIO) -> None:
        self._handle = handle
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, path: Union[str, "os.PathLike[str]"]) -> "JsonlFileSink":
        """Open or create ``path`` in append mode."""
        try:
            handle = await asyncio.to_thread(open, os.fspath(path), "ab")
        except OSError as err:
            raise SinkError(str(err)) from err
        return cls(handle)

    async def on_envelope(self, envelope: Envelope) -> None:
        """Serialize the envelope, append it with a trailing newline and flush."""
        try:
            line = json.dumps(
                envelope.to_dict(), separators=(",", ":"), ensure_ascii=False, allow_nan=False
            )
            data = (line + "\n").encode("utf-8")
        except (TypeError, ValueError) as err:
            raise SinkError(f"failed to serialize envelope: {err}") from err

        async with self._lock:
            if self._handle.closed:
                raise SinkError("sink is closed")
            try:
                await asyncio.to_thread(self._write, data)
            except OSError as err:
                raise SinkError(str(err)) from err

    def close(self) -> None:
        """Close the underlying file."""
        self._handle.close()

    async def __aenter__(self) -> "JsonlFileSink":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def _write(self, data: bytes) -> None:
        self._handle.write(data)
        self._handle.flush()