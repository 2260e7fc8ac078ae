"""Projected runtime state and the reducer that maintains it."""

from __future__ import annotations

import copy
import enum
import heapq
from dataclasses import dataclass, field
from functools import partial
from operator import itemgetter
from typing import Any, Callable, Optional

from agentwire.events import Envelope


class ConnectionPhase(enum.Enum):
    """Lifecycle phase of the connection to the child process."""

    STARTING = "starting"
    HANDSHAKING = "handshaking"
    RUNNING = "running"
    RESTARTING = "restarting"
    SHUTTING_DOWN = "shuttingDown"
    DEAD = "dead"


_PHASES_WITH_GENERATION = frozenset({ConnectionPhase.RUNNING, ConnectionPhase.RESTARTING})


@dataclass(frozen=True)
class ConnectionState:
    """Connection phase; running and restarting phases carry a generation."""

    phase: ConnectionPhase
    generation: Optional[int] = None

    def __post_init__(self) -> None:
        needs_generation = self.phase in _PHASES_WITH_GENERATION
        if needs_generation and self.generation is None:
            raise ValueError(f"{self.phase.value} connection state requires a generation")
        if not needs_generation and self.generation is not None:
            raise ValueError(f"{self.phase.value} connection state takes no generation")


class TurnStatus(enum.Enum):
    """Status of one turn."""

    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


@dataclass
class ItemState:
    """Accumulated output of one item inside a turn."""

    id: str
    item_type: str = "unknown"
    started: Any = None
    completed: Any = None
    text_accum: str = ""
    stdout_accum: str = ""
    stderr_accum: str = ""
    text_truncated: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    last_seq: int = 0


@dataclass
class TurnState:
    """One turn and its items."""

    id: str
    status: TurnStatus = TurnStatus.IN_PROGRESS
    items: dict[str, ItemState] = field(default_factory=dict)
    error: Any = None
    last_seq: int = 0


@dataclass
class ThreadState:
    """One thread, its turns and its latest diff and plan."""

    id: str
    active_turn: Optional[str] = None
    turns: dict[str, TurnState] = field(default_factory=dict)
    last_diff: Optional[str] = None
    plan: Any = None
    last_seq: int = 0


@dataclass(frozen=True)
class StateProjectionLimits:
    """Retention bounds that keep the projected state from growing without end."""

    max_threads: int = 256
    max_turns_per_thread: int = 256
    max_items_per_turn: int = 256
    max_text_bytes_per_item: int = 256 * 1024
    max_stdout_bytes_per_item: int = 256 * 1024
    max_stderr_bytes_per_item: int = 256 * 1024


@dataclass
class RuntimeState:
    """Full projected state of a runtime."""

    connection: ConnectionState = field(
        default_factory=lambda: ConnectionState(ConnectionPhase.STARTING)
    )
    threads: dict[str, ThreadState] = field(default_factory=dict)
    pending_server_requests: dict[str, Any] = field(default_factory=dict)


def reduce(state: RuntimeState, envelope: Envelope) -> RuntimeState:
    """Return the state that follows ``state`` after ``envelope``; ``state`` is left untouched."""
    next_state = copy.deepcopy(state)
    reduce_in_place_with_limits(next_state, envelope, StateProjectionLimits())
    return next_state


def reduce_in_place(state: RuntimeState, envelope: Envelope) -> None:
    """Apply ``envelope`` to ``state`` with the default retention limits."""
    reduce_in_place_with_limits(state, envelope, StateProjectionLimits())


def reduce_in_place_with_limits(
    state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits
) -> None:
    """Apply ``envelope`` to ``state`` and prune it down to ``limits``."""
    if envelope.method is None:
        return
    handler = _HANDLERS.get(envelope.method)
    if handler is not None:
        handler(state, envelope, limits)
    _prune_state(state, limits, envelope.thread_id)


def _lookup(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _lookup_str(value: Any, *keys: str) -> Optional[str]:
    found = _lookup(value, *keys)
    return found if isinstance(found, str) else None


def _thread(state: RuntimeState, thread_id: str, seq: int) -> ThreadState:
    thread = state.threads.get(thread_id)
    if thread is None:
        thread = ThreadState(id=thread_id, last_seq=seq)
        state.threads[thread_id] = thread
    thread.last_seq = seq
    return thread


def _turn(thread: ThreadState, turn_id: str, seq: int) -> TurnState:
    thread.last_seq = seq
    turn = thread.turns.get(turn_id)
    if turn is None:
        turn = TurnState(id=turn_id, last_seq=seq)
        thread.turns[turn_id] = turn
    turn.last_seq = seq
    return turn


def _item(turn: TurnState, item_id: str, seq: int) -> ItemState:
    turn.last_seq = seq
    item = turn.items.get(item_id)
    if item is None:
        item = ItemState(id=item_id, last_seq=seq)
        turn.items[item_id] = item
    item.last_seq = seq
    return item


def _item_from_envelope(state: RuntimeState, envelope: Envelope) -> Optional[ItemState]:
    if envelope.thread_id is None or envelope.turn_id is None or envelope.item_id is None:
        return None
    thread = _thread(state, envelope.thread_id, envelope.seq)
    turn = _turn(thread, envelope.turn_id, envelope.seq)
    return _item(turn, envelope.item_id, envelope.seq)


def _append_capped(out: str, delta: str, max_bytes: int) -> tuple[str, bool]:
    """Append ``delta`` without exceeding ``max_bytes`` of UTF-8; report truncation."""
    if not delta:
        return out, False
    used = len(out.encode("utf-8"))
    if used >= max_bytes:
        return out, True
    remain = max_bytes - used
    encoded = delta.encode("utf-8")
    if len(encoded) <= remain:
        return out + delta, False
    # Dropping the trailing partial sequence cuts on a character boundary.
    return out + encoded[:remain].decode("utf-8", errors="ignore"), True


def _on_thread_started(state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits) -> None:
    if envelope.thread_id is not None:
        _thread(state, envelope.thread_id, envelope.seq)


def _on_turn_started(state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits) -> None:
    if envelope.thread_id is None or envelope.turn_id is None:
        return
    thread = _thread(state, envelope.thread_id, envelope.seq)
    thread.active_turn = envelope.turn_id
    _turn(thread, envelope.turn_id, envelope.seq).status = TurnStatus.IN_PROGRESS


def _on_turn_terminal(
    status: TurnStatus,
    with_error: bool,
    state: RuntimeState,
    envelope: Envelope,
    limits: StateProjectionLimits,
) -> None:
    if envelope.thread_id is None or envelope.turn_id is None:
        return
    thread = _thread(state, envelope.thread_id, envelope.seq)
    if thread.active_turn == envelope.turn_id:
        thread.active_turn = None
    turn = _turn(thread, envelope.turn_id, envelope.seq)
    turn.status = status
    if with_error:
        turn.error = copy.deepcopy(_lookup(envelope.json, "params", "error"))


def _on_diff_updated(state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits) -> None:
    if envelope.thread_id is None:
        return
    thread = _thread(state, envelope.thread_id, envelope.seq)
    thread.last_diff = _lookup_str(envelope.json, "params", "diff")


def _on_plan_updated(state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits) -> None:
    if envelope.thread_id is None:
        return
    thread = _thread(state, envelope.thread_id, envelope.seq)
    thread.plan = copy.deepcopy(_lookup(envelope.json, "params", "plan"))


def _on_item_started(state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits) -> None:
    item = _item_from_envelope(state, envelope)
    if item is None:
        return
    item.started = copy.deepcopy(_lookup(envelope.json, "params"))
    item.item_type = _lookup_str(envelope.json, "params", "itemType") or "unknown"


def _on_agent_message_delta(
    state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits
) -> None:
    delta = _lookup_str(envelope.json, "params", "delta") or ""
    item = _item_from_envelope(state, envelope)
    if item is None:
        return
    item.text_accum, truncated = _append_capped(
        item.text_accum, delta, limits.max_text_bytes_per_item
    )
    item.text_truncated = item.text_truncated or truncated


def _on_command_output_delta(
    state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits
) -> None:
    stdout = _lookup_str(envelope.json, "params", "stdout") or ""
    stderr = _lookup_str(envelope.json, "params", "stderr") or ""
    item = _item_from_envelope(state, envelope)
    if item is None:
        return
    item.stdout_accum, truncated = _append_capped(
        item.stdout_accum, stdout, limits.max_stdout_bytes_per_item
    )
    item.stdout_truncated = item.stdout_truncated or truncated
    item.stderr_accum, truncated = _append_capped(
        item.stderr_accum, stderr, limits.max_stderr_bytes_per_item
    )
    item.stderr_truncated = item.stderr_truncated or truncated


def _on_item_completed(state: RuntimeState, envelope: Envelope, limits: StateProjectionLimits) -> None:
    item = _item_from_envelope(state, envelope)
    if item is not None:
        item.completed = copy.deepcopy(_lookup(envelope.json, "params"))


_Handler = Callable[[RuntimeState, Envelope, StateProjectionLimits], None]

_HANDLERS: dict[str, _Handler] = {
    "thread/started": _on_thread_started,
    "turn/started": _on_turn_started,
    "turn/completed": partial(_on_turn_terminal, TurnStatus.COMPLETED, False),
    "turn/failed": partial(_on_turn_terminal, TurnStatus.FAILED, True),
    "turn/interrupted": partial(_on_turn_terminal, TurnStatus.INTERRUPTED, False),
    "turn/diff/updated": _on_diff_updated,
    "turn/plan/updated": _on_plan_updated,
    "item/started": _on_item_started,
    "item/agentMessage/delta": _on_agent_message_delta,
    "item/commandExecution/outputDelta": _on_command_output_delta,
    "item/completed": _on_item_completed,
}


def _oldest(entries: dict[str, Any], count: int, exclude: Optional[str] = None) -> list[str]:
    candidates = [(key, value.last_seq) for key, value in entries.items() if key != exclude]
    return [key for key, _ in heapq.nsmallest(count, candidates, key=itemgetter(1))]


def _prune_state(
    state: RuntimeState, limits: StateProjectionLimits, touched_thread_id: Optional[str]
) -> None:
    excess = len(state.threads) - limits.max_threads
    if excess > 0:
        for thread_id in _oldest(state.threads, excess):
            del state.threads[thread_id]

    if touched_thread_id is None:
        return
    thread = state.threads.get(touched_thread_id)
    if thread is None:
        return

    excess = len(thread.turns) - limits.max_turns_per_thread
    if excess > 0:
        for turn_id in _oldest(thread.turns, excess, exclude=thread.active_turn):
            del thread.turns[turn_id]

    for turn in thread.turns.values():
        excess = len(turn.items) - limits.max_items_per_turn
        if excess > 0:
            for item_id in _oldest(turn.items, excess):
                del turn.items[item_id]