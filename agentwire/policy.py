"""Restart backoff, server-request payload checks and timeout replies."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Union

from agentwire.errors import InternalError

JsonRpcId = Union[int, str]

_U64_MASK = (1 << 64) - 1
_MAX_EXPONENT = 20
_MAX_JITTER_MS = 1_000
_TIMEDELTA_MAX_MS = timedelta.max // timedelta(milliseconds=1)

AUTH_REFRESH_METHOD = "account/chatgptAuthTokens/refresh"
TIMEOUT_ERROR_CODE = -32000


def compute_restart_delay(attempt: int, base_backoff_ms: int, max_backoff_ms: int) -> timedelta:
    """Exponential restart backoff capped at ``max_backoff_ms``, plus bounded jitter."""
    if attempt < 0 or base_backoff_ms < 0 or max_backoff_ms < 0:
        raise ValueError("attempt and backoff bounds must be non-negative")
    exponent = min(attempt, _MAX_EXPONENT)
    scaled = min(base_backoff_ms << exponent, _U64_MASK)
    base_delay_ms = min(scaled, max_backoff_ms)
    jitter_cap_ms = min(base_delay_ms // 10, _MAX_JITTER_MS)
    jitter_ms = 0 if jitter_cap_ms == 0 else _pseudo_random_u64() % (jitter_cap_ms + 1)
    total_ms = min(base_delay_ms + jitter_ms, _U64_MASK, _TIMEDELTA_MAX_MS)
    return timedelta(milliseconds=total_ms)


def _pseudo_random_u64() -> int:
    """Cheap time-seeded value used only to spread restart attempts."""
    t = (time.time_ns() // 1_000_000) & _U64_MASK
    rotated = ((t << 13) | (t >> (64 - 13))) & _U64_MASK
    x = t ^ rotated ^ 0x9E37_79B9_7F4A_7C15
    x ^= (x << 7) & _U64_MASK
    x ^= x >> 9
    return x


def validate_server_request_result_payload(method: str, result: Any) -> None:
    """Raise :class:`InternalError` if ``result`` is not a valid reply to ``method``."""
    if method in ("item/commandExecution/requestApproval", "item/fileChange/requestApproval"):
        _validate_approval(method, result)
    elif method == "item/tool/requestUserInput":
        _validate_request_user_input(result)
    elif method == "item/tool/call":
        _validate_dynamic_tool_call(result)
    elif method == AUTH_REFRESH_METHOD:
        _validate_auth_refresh(result)


def _validate_approval(method: str, result: Any) -> None:
    decision = result.get("decision") if isinstance(result, dict) else None
    if isinstance(decision, str) or (isinstance(decision, dict) and decision):
        return
    raise InternalError(f"invalid approval payload for {method}: missing decision")


def _require_object(value: Any, message: str) -> dict:
    if not isinstance(value, dict):
        raise InternalError(message)
    return value


def _validate_request_user_input(result: Any) -> None:
    obj = _require_object(result, "invalid requestUserInput payload: expected object")
    if not isinstance(obj.get("answers"), dict):
        raise InternalError("invalid requestUserInput payload: missing answers object")


def _validate_dynamic_tool_call(result: Any) -> None:
    obj = _require_object(result, "invalid dynamic tool call payload: expected object")
    if not isinstance(obj.get("success"), bool):
        raise InternalError("invalid dynamic tool call payload: missing success boolean")
    if not isinstance(obj.get("contentItems"), list):
        raise InternalError("invalid dynamic tool call payload: missing contentItems array")


def _validate_auth_refresh(result: Any) -> None:
    obj = _require_object(result, "invalid auth refresh payload: expected object")
    if not isinstance(obj.get("accessToken"), str):
        raise InternalError("invalid auth refresh payload: missing accessToken")
    if not isinstance(obj.get("chatgptAccountId"), str):
        raise InternalError("invalid auth refresh payload: missing chatgptAccountId")
    plan_type = obj.get("chatgptPlanType")
    if plan_type is not None and not isinstance(plan_type, str):
        raise InternalError(
            "invalid auth refresh payload: chatgptPlanType must be string|null"
        )


def timeout_result_payload(method: str, cancel: bool) -> dict[str, Any]:
    """Result sent on behalf of the client when a server request times out."""
    if method == "item/tool/requestUserInput":
        return {"answers": {}}
    if method == "item/tool/call":
        return {"success": False, "contentItems": []}
    return {"decision": "cancel" if cancel else "decline"}


def timeout_error_payload(method: str) -> dict[str, Any]:
    """JSON-RPC error object sent when a server request times out."""
    return {
        "code": TIMEOUT_ERROR_CODE,
        "message": "server request timed out",
        "data": {"method": method},
    }


def jsonrpc_state_key(rpc_id: JsonRpcId) -> str:
    """Key under which a pending server request is indexed in the projected state."""
    if isinstance(rpc_id, bool) or not isinstance(rpc_id, (int, str)):
        raise TypeError("JSON-RPC id must be an integer or a string")
    if isinstance(rpc_id, int):
        return f"n:{rpc_id}"
    return f"s:{rpc_id}"