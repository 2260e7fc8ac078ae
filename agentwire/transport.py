"""Newline-delimited JSON transport over a child process's stdin and stdout."""

from __future__ import annotations

import asyncio
import json
import os
from collections import deque
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, AsyncIterator, Optional, Union

from agentwire.errors import InternalError, InvalidConfigError, TransportClosedError

PathLike = Union[str, "os.PathLike[str]"]
Seconds = Union[timedelta, float]

_READ_CHUNK = 64 * 1024
_BROKEN_PIPE = (BrokenPipeError, ConnectionResetError)


@dataclass
class StdioProcessSpec:
    """How to start the child: program, arguments, extra environment and working directory."""

    program: PathLike
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: Optional[PathLike] = None


@dataclass(frozen=True)
class StdioTransportConfig:
    """Capacities of the inbound and outbound message queues."""

    read_channel_capacity: int = 1024
    write_channel_capacity: int = 1024


@dataclass(frozen=True)
class TransportJoinResult:
    """Outcome of shutting a transport down."""

    exit_status: int
    malformed_line_count: int

    @property
    def success(self) -> bool:
        """True when the child exited with status zero."""
        return self.exit_status == 0


class _Channel:
    """Bounded queue that closes once every sender or the receiver is gone."""

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self.items: deque[Any] = deque()
        self.senders = 0
        self.senders_closed = False
        self.receiver_closed = False
        self._waiters: list[asyncio.Future[None]] = []

    def wake(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    async def wait(self) -> None:
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def drop_sender(self) -> None:
        self.senders -= 1
        if self.senders == 0:
            self.senders_closed = True
            self.wake()

    async def send(self, message: Any) -> None:
        while True:
            if self.receiver_closed:
                raise TransportClosedError("channel receiver is closed")
            if len(self.items) < self.capacity:
                self.items.append(message)
                self.wake()
                return
            await self.wait()

    async def recv(self) -> Any:
        while True:
            if self.items:
                message = self.items.popleft()
                self.wake()
                return message
            if self.senders_closed or self.receiver_closed:
                return None
            await self.wait()

    def close_receiver(self) -> None:
        self.receiver_closed = True
        self.items.clear()
        self.wake()


class Sender:
    """Sending half of a message queue; the queue ends when every sender is closed."""

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel
        self._closed = False
        channel.senders += 1

    async def send(self, message: Any) -> None:
        """Queue one message, waiting for room; raises if the queue is closed."""
        if self._closed:
            raise TransportClosedError("sender is closed")
        await self._channel.send(message)

    def clone(self) -> "Sender":
        """Return another sender for the same queue."""
        if self._closed:
            raise TransportClosedError("sender is closed")
        return Sender(self._channel)

    def close(self) -> None:
        """Release this sender; idempotent."""
        if not self._closed:
            self._closed = True
            self._channel.drop_sender()


class Receiver:
    """Receiving half of a message queue."""

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel

    async def recv(self) -> Any:
        """Return the next message, or None once the queue is closed and empty."""
        return await self._channel.recv()

    def close(self) -> None:
        """Stop receiving; pending messages are dropped and senders start failing."""
        self._channel.close_receiver()

    def __aiter__(self) -> "Receiver":
        return self

    async def __anext__(self) -> Any:
        message = await self.recv()
        if message is None:
            raise StopAsyncIteration
        return message


@dataclass
class _LineStats:
    malformed: int = 0


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


async def _iter_lines(stream: asyncio.StreamReader) -> AsyncIterator[bytes]:
    pending = b""
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        *complete, tail = chunk.split(b"\n")
        if complete:
            complete[0] = pending + complete[0]
            pending = tail
            for line in complete:
                yield line
        else:
            pending += tail
    if pending:
        yield pending


async def _reader_loop(
    stdout: asyncio.StreamReader, inbound: Sender, stats: _LineStats
) -> None:
    """Parse one JSON value per line; count the lines that do not parse."""
    try:
        async with aclosing(_iter_lines(stdout)) as lines:
            async for raw in lines:
                text = raw.decode("utf-8").rstrip("\r\n")
                if not text:
                    continue
                try:
                    message = json.loads(text, parse_constant=_reject_constant)
                except ValueError:
                    stats.malformed += 1
                    continue
                try:
                    await inbound.send(message)
                except TransportClosedError:
                    break
        # Nobody listens any more: keep the pipe drained so the child never blocks on it.
        while await stdout.read(_READ_CHUNK):
            pass
    finally:
        inbound.close()


async def _writer_loop(outbound: Receiver, stdin: asyncio.StreamWriter) -> None:
    """Serialize each queued message as one line into the child's stdin."""
    try:
        async for message in outbound:
            try:
                line = json.dumps(
                    message, separators=(",", ":"), ensure_ascii=False, allow_nan=False
                )
            except (TypeError, ValueError) as err:
                raise OSError(f"failed to serialize outbound json: {err}") from err
            try:
                stdin.write(line.encode("utf-8") + b"\n")
                await stdin.drain()
            except _BROKEN_PIPE:
                return
        try:
            await stdin.drain()
        except _BROKEN_PIPE:
            return
    finally:
        outbound.close()
        stdin.close()


def _check_task(task: asyncio.Task[None], label: str) -> None:
    if task.cancelled():
        raise InternalError(f"{label} task join failed: cancelled")
    err = task.exception()
    if err is not None:
        raise InternalError(f"{label} task failed: {err}") from err


async def _await_io_task(task: Optional[asyncio.Task[None]], label: str) -> None:
    if task is None:
        raise InternalError(f"{label} task missing in transport")
    await asyncio.wait({task})
    _check_task(task, label)


def _to_seconds(value: Seconds) -> float:
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if seconds < 0:
        raise ValueError("durations must be non-negative")
    return seconds


class StdioTransport:
    """A child process exchanging newline-delimited JSON over its stdin and stdout."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        write_tx: Sender,
        read_rx: Receiver,
        stats: _LineStats,
        reader_task: asyncio.Task[None],
        writer_task: asyncio.Task[None],
    ) -> None:
        self._process: Optional[asyncio.subprocess.Process] = process
        self._write_tx: Optional[Sender] = write_tx
        self._read_rx: Optional[Receiver] = read_rx
        self._stats = stats
        self._reader_task: Optional[asyncio.Task[None]] = reader_task
        self._writer_task: Optional[asyncio.Task[None]] = writer_task
        self._exit_status: Optional[int] = None

    @classmethod
    async def spawn(
        cls, spec: StdioProcessSpec, config: Optional[StdioTransportConfig] = None
    ) -> "StdioTransport":
        """Start the child and the tasks that read from and write to it."""
        config = config if config is not None else StdioTransportConfig()
        if config.read_channel_capacity == 0:
            raise InvalidConfigError("read_channel_capacity must be > 0")
        if config.write_channel_capacity == 0:
            raise InvalidConfigError("write_channel_capacity must be > 0")

        env = {**os.environ, **spec.env} if spec.env else None
        try:
            process = await asyncio.create_subprocess_exec(
                os.fspath(spec.program),
                *spec.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=None if spec.cwd is None else os.fspath(spec.cwd),
                env=env,
            )
        except OSError as err:
            raise InternalError(f"failed to spawn child: {err}") from err

        if process.stdin is None:
            raise InternalError("failed to acquire child stdin pipe")
        if process.stdout is None:
            raise InternalError("failed to acquire child stdout pipe")

        write_channel = _Channel(config.write_channel_capacity)
        read_channel = _Channel(config.read_channel_capacity)
        stats = _LineStats()
        reader_task = asyncio.create_task(
            _reader_loop(process.stdout, Sender(read_channel), stats)
        )
        writer_task = asyncio.create_task(
            _writer_loop(Receiver(write_channel), process.stdin)
        )
        return cls(
            process,
            Sender(write_channel),
            Receiver(read_channel),
            stats,
            reader_task,
            writer_task,
        )

    def write_tx(self) -> Sender:
        """Return a new sender for outbound messages."""
        if self._write_tx is None:
            raise InternalError("write sender missing from transport")
        return self._write_tx.clone()

    def take_read_rx(self) -> Receiver:
        """Hand over the inbound receiver; only one caller may take it."""
        if self._read_rx is None:
            raise InternalError("read receiver already taken from transport")
        receiver, self._read_rx = self._read_rx, None
        return receiver

    def malformed_line_count(self) -> int:
        """Number of non-empty stdout lines that were not valid JSON."""
        return self._stats.malformed

    def try_wait_exit(self) -> Optional[int]:
        """Return the child's exit status if it has already exited, without waiting."""
        if self._exit_status is not None:
            return self._exit_status
        if self._process is None:
            return None
        status = self._process.returncode
        if status is not None:
            self._exit_status = status
        return status

    async def join(self) -> TransportJoinResult:
        """Close the queues, wait for both I/O tasks and for the child to exit."""
        malformed = self.malformed_line_count()
        self._drop_channels()

        writer, self._writer_task = self._writer_task, None
        await _await_io_task(writer, "writer")
        reader, self._reader_task = self._reader_task, None
        await _await_io_task(reader, "reader")
        exit_status = await self._wait_child_exit()
        return TransportJoinResult(exit_status, malformed)

    async def terminate_and_join(
        self, flush_timeout: Seconds, terminate_grace: Seconds
    ) -> TransportJoinResult:
        """Flush within ``flush_timeout``, let the child exit within ``terminate_grace``
        (killing it after that), then join the reader."""
        flush = _to_seconds(flush_timeout)
        grace = _to_seconds(terminate_grace)
        malformed = self.malformed_line_count()
        self._drop_channels()

        writer, self._writer_task = self._writer_task, None
        if writer is None:
            raise InternalError("writer task missing in transport")
        done, _ = await asyncio.wait({writer}, timeout=flush)
        if not done:
            # The flush stalled: end the child, then rejoin the writer so it is not left behind.
            await self._wait_child_exit_with_grace(grace)
            await asyncio.wait({writer})
        _check_task(writer, "writer")

        exit_status = await self._wait_child_exit_with_grace(grace)
        reader, self._reader_task = self._reader_task, None
        await _await_io_task(reader, "reader")
        return TransportJoinResult(exit_status, malformed)

    def _drop_channels(self) -> None:
        if self._read_rx is not None:
            self._read_rx.close()
            self._read_rx = None
        if self._write_tx is not None:
            self._write_tx.close()
            self._write_tx = None

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise InternalError("child handle missing in transport")
        return self._process

    async def _wait_child_exit(self) -> int:
        status = self.try_wait_exit()
        if status is not None:
            return status
        process = self._require_process()
        try:
            status = await process.wait()
        except OSError as err:
            raise InternalError(f"child wait failed: {err}") from err
        self._exit_status = status
        return status

    async def _wait_child_exit_with_grace(self, grace: float) -> int:
        status = self.try_wait_exit()
        if status is not None:
            return status
        process = self._require_process()
        try:
            status = await asyncio.wait_for(process.wait(), grace)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            except OSError as err:
                raise InternalError(f"child kill failed: {err}") from err
            try:
                status = await process.wait()
            except OSError as err:
                raise InternalError(f"child wait after kill failed: {err}") from err
        except OSError as err:
            raise InternalError(f"child wait failed: {err}") from err
        self._exit_status = status
        return status