# agentwire

Building blocks for working with an agent app server. The server is a child process
that speaks newline-delimited JSON-RPC over stdin and stdout. The package uses only
the Python standard library and asyncio.

## Modules

### `agentwire.transport`

- `StdioProcessSpec(program, args=[], env={}, cwd=None)` says how to start the child.
  Entries in `env` are added on top of the current environment. The child's stderr is
  discarded.
- `StdioTransportConfig(read_channel_capacity=1024, write_channel_capacity=1024)` sets
  the bounds of the inbound and outbound queues. `StdioTransport.spawn` raises
  `InvalidConfigError` if either bound is zero.
- `await StdioTransport.spawn(spec, config=None)` starts the child. It also starts a
  reader task and a writer task.
  - `write_tx()` returns a new `Sender`. `await sender.send(message)` queues one JSON
    value, and the writer writes each value as one line. `sender.clone()` makes another
    sender. `sender.close()` releases the sender. The outbound queue ends once every
    sender is closed.
  - `take_read_rx()` returns the one `Receiver` for inbound messages. Calling it a
    second time raises `InternalError`. `await receiver.recv()` returns the next parsed
    value, or `None` once the stream has ended. The receiver can also be used with
    `async for`. `receiver.close()` stops reception.
  - Blank lines are skipped. Non-empty lines that are not valid JSON are counted by
    `malformed_line_count()`.
  - `try_wait_exit()` returns the exit status without waiting. It returns `None` while
    the child is still running.
  - `await join()` closes the queues and waits for both tasks and for the child.
  - `await terminate_and_join(flush_timeout, terminate_grace)` waits up to
    `flush_timeout` for the writer to flush. It then gives the child `terminate_grace`
    to exit and kills it after that. Both durations are seconds or `timedelta`.
  - Both shutdown methods return a `TransportJoinResult` with `exit_status`,
    `malformed_line_count` and a `success` property.

### `agentwire.events`

- `Envelope` records one message: `seq`, `ts_millis`, `direction`, `kind`, `rpc_id`,
  `method`, `thread_id`, `turn_id`, `item_id` and the raw `json`.
- `Direction` and `MsgKind` are the enums used for `direction` and `kind`.
- `to_dict()` and `Envelope.from_dict(data)` convert to and from plain dicts with
  camelCase keys. `from_dict` raises `ValueError` on malformed input.

### `agentwire.state`

The reducer projects envelopes into a `RuntimeState` made of threads (`ThreadState`),
turns (`TurnState`) and items (`ItemState`). It handles these methods:

- `thread/started` and `turn/started`
- `turn/completed`, `turn/failed` and `turn/interrupted`
- `turn/diff/updated` and `turn/plan/updated`
- `item/started`, `item/agentMessage/delta`, `item/commandExecution/outputDelta` and
  `item/completed`

`StateProjectionLimits` caps the number of threads, turns and items. The oldest entries
are evicted by their last sequence number, and the active turn is never evicted. The
limits also cap the UTF-8 bytes of text, stdout and stderr kept per item. Truncation is
recorded in the `*_truncated` flags.

- `reduce(state, envelope)` returns a new state and leaves the input untouched.
- `reduce_in_place(state, envelope)` and `reduce_in_place_with_limits(state, envelope,
  limits)` update the state in place.

`ConnectionState` pairs a `ConnectionPhase` with a generation. The running and
restarting phases require a generation.

### `agentwire.turn_output`

- `AssistantTextCollector` builds the assistant's text for one turn.
  - It prefers streamed deltas over completed payloads.
  - It does not repeat text when `turn/completed` carries the same text again.
  - Feed it with `push_envelope(envelope)` and read the result with `text()`.
- `parse_thread_id(value)` and `parse_turn_id(value)` extract ids from common result
  shapes.

### `agentwire.schema`

- `validate_metadata_fields(contents)` parses a `metadata.json` document. It returns
  `MetadataFields` and raises `MetadataValidationError` for invalid JSON, a missing
  field or a blank field. The error's `kind` and `field` say which.
- `validate_schema_manifest(manifest, files)` compares manifest text with the SHA-256
  digests of a list of `ManifestFile(relative_path, content)`. It raises
  `ManifestMismatch` when they differ.

### `agentwire.guard`

- `validate_schema_guard(active_schema_dir)` checks `metadata.json` and
  `manifest.sha256` against the files under `json-schema/`. It raises `InternalError`
  on failure.
- `load_schema_files(schema_dir)` reads that tree in sorted order.
- `validate_runtime_capacities(...)` and `validate_state_projection_limits(limits)`
  raise `InvalidConfigError` for zero values.

### `agentwire.sink`

- `EventSink` is the abstract interface. It has one method, `async on_envelope(envelope)`.
- `await JsonlFileSink.open(path)` appends one JSON line per envelope and flushes after
  each line. Close it with `close()` or use it as an async context manager. Failures
  raise `SinkError`.

### `agentwire.policy`

- `compute_restart_delay(attempt, base_backoff_ms, max_backoff_ms)` returns an
  exponential backoff as a `timedelta`, capped at `max_backoff_ms`. Jitter of at most a
  tenth of the delay is added, and never more than one second.
- `validate_server_request_result_payload(method, result)` checks replies to approval,
  user-input, tool-call and auth-refresh requests. It raises `InternalError`.
- `timeout_result_payload(method, cancel)` and `timeout_error_payload(method)` build the
  replies sent when a server request times out.
- `jsonrpc_state_key(rpc_id)` returns `n:<id>` or `s:<id>`.

### `agentwire.errors`

`AgentRuntimeError` is the base class of the package's errors. The others are
`InvalidConfigError`, `InternalError`, `TransportClosedError` and `SinkError`.

## What the package does not do

There is no complete client. Nothing here does any of the following:

- match request ids to responses, or apply response timeouts
- run the `initialize` handshake
- route server requests to an approval queue
- restart a crashed child

The backoff and reply helpers in `agentwire.policy` give the rules for those tasks. The
caller writes the loop that uses them. The package provides no command-line tool.

## Example

```python
import asyncio

from agentwire.transport import StdioProcessSpec, StdioTransport, StdioTransportConfig


async def main():
    transport = await StdioTransport.spawn(StdioProcessSpec(program="cat"), StdioTransportConfig())
    rx = transport.take_read_rx()
    tx = transport.write_tx()

    await tx.send({"method": "ping", "params": {"n": 1}})
    tx.close()
    print(await rx.recv())

    rx.close()
    result = await transport.join()
    print(result.exit_status, result.malformed_line_count)


asyncio.run(main())
```

Reducing events into state:

```python
from agentwire.events import Direction, Envelope, MsgKind
from agentwire.state import RuntimeState, reduce

state = reduce(RuntimeState(), Envelope(
    seq=1, ts_millis=0, direction=Direction.INBOUND, kind=MsgKind.NOTIFICATION,
    method="turn/started", thread_id="thr", turn_id="turn",
    json={"method": "turn/started", "params": {}},
))
print(state.threads["thr"].active_turn)  # "turn"
```

## Running the tests

```
pip install -e .[test]
pytest
```