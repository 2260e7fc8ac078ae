"""Envelopes: the unit of traffic observed on the wire."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

JsonRpcId = Union[int, str]


class Direction(enum.Enum):
    """Which way a message travelled."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MsgKind(enum.Enum):
    """Classification of a JSON-RPC message."""

    RESPONSE = "response"
    SERVER_REQUEST = "serverRequest"
    NOTIFICATION = "notification"
    UNKNOWN = "unknown"


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"envelope field {key!r} must be a string or null")


def _non_negative_int(data: Mapping[str, Any], key: str) -> int:
    if key not in data:
        raise ValueError(f"envelope field {key!r} is missing")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"envelope field {key!r} must be an integer")
    return value


@dataclass(frozen=True)
class Envelope:
    """One observed message together with the ids extracted from it."""

    seq: int
    ts_millis: int
    direction: Direction
    kind: MsgKind
    rpc_id: Optional[JsonRpcId] = None
    method: Optional[str] = None
    thread_id: Optional[str] = None
    turn_id: Optional[str] = None
    item_id: Optional[str] = None
    json: Any = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable mapping of this envelope."""
        return {
            "seq": self.seq,
            "tsMillis": self.ts_millis,
            "direction": self.direction.value,
            "kind": self.kind.value,
            "rpcId": self.rpc_id,
            "method": self.method,
            "threadId": self.thread_id,
            "turnId": self.turn_id,
            "itemId": self.item_id,
            "json": self.json,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Envelope":
        """Build an envelope from the mapping produced by :meth:`to_dict`."""
        if not isinstance(data, Mapping):
            raise ValueError("envelope must be a JSON object")
        seq = _non_negative_int(data, "seq")
        if seq < 0:
            raise ValueError("envelope field 'seq' must be non-negative")
        ts_millis = _non_negative_int(data, "tsMillis")
        try:
            direction = Direction(data.get("direction"))
            kind = MsgKind(data.get("kind"))
        except ValueError as err:
            raise ValueError(f"invalid envelope: {err}") from err
        rpc_id = data.get("rpcId")
        if rpc_id is not None and (
            isinstance(rpc_id, bool) or not isinstance(rpc_id, (int, str))
        ):
            raise ValueError("envelope field 'rpcId' must be an integer or string")
        return cls(
            seq=seq,
            ts_millis=ts_millis,
            direction=direction,
            kind=kind,
            rpc_id=rpc_id,
            method=_optional_str(data, "method"),
            thread_id=_optional_str(data, "threadId"),
            turn_id=_optional_str(data, "turnId"),
            item_id=_optional_str(data, "itemId"),
            json=data.get("json"),
        )