"""Assistant text collection and id extraction for one turn stream."""

from __future__ import annotations

from typing import Any, Optional

from agentwire.events import Envelope

_ASSISTANT_ITEM_TYPES = frozenset({"agentMessage", "agent_message"})


def _lookup(value: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _lookup_str(value: Any, *keys: str) -> Optional[str]:
    found = _lookup(value, *keys)
    return found if isinstance(found, str) else None


class AssistantTextCollector:
    """Collects assistant text from a turn without duplicating delta and completed payloads."""

    def __init__(self) -> None:
        self._assistant_item_ids: set[str] = set()
        self._items_with_delta: set[str] = set()
        self._text = ""

    def push_envelope(self, envelope: Envelope) -> None:
        """Consume one envelope and update the collected text."""
        self._track_assistant_item(envelope)
        self._append_text(envelope)

    def text(self) -> str:
        """Return the text collected so far."""
        return self._text

    def _track_assistant_item(self, envelope: Envelope) -> None:
        if envelope.method != "item/started":
            return
        item_type = _lookup_str(envelope.json, "params", "itemType")
        if item_type in _ASSISTANT_ITEM_TYPES and envelope.item_id is not None:
            self._assistant_item_ids.add(envelope.item_id)

    def _append_text(self, envelope: Envelope) -> None:
        params = _lookup(envelope.json, "params")
        item_id = envelope.item_id

        if envelope.method == "item/agentMessage/delta":
            delta = _lookup_str(params, "delta")
            if delta is not None:
                if item_id is not None:
                    self._items_with_delta.add(item_id)
                self._text += delta
        elif envelope.method == "item/completed":
            is_assistant = (
                item_id in self._assistant_item_ids
                or _lookup_str(params, "item", "type") in _ASSISTANT_ITEM_TYPES
            )
            if not is_assistant or item_id in self._items_with_delta:
                return
            text = _extract_text(params)
            if text:
                if self._text:
                    self._text += "\n"
                self._text += text
        elif envelope.method == "turn/completed":
            text = _extract_text(params)
            if text is not None:
                self._text = _merge_turn_completed_text(self._text, text)


def _merge_turn_completed_text(current: str, text: str) -> str:
    if not text or current == text or current.endswith(text):
        return current or text
    if not current:
        return text
    # A full final text that extends the streamed prefix replaces it.
    if text.startswith(current):
        return text
    return f"{current}\n{text}"


def _extract_text(params: Any) -> Optional[str]:
    for path in (("item", "text"), ("text",), ("outputText",), ("output", "text")):
        text = _lookup_str(params, *path)
        if text is not None:
            return text
    content = _lookup(params, "item", "content")
    if isinstance(content, list):
        joined = "".join(
            text for part in content if (text := _lookup_str(part, "text")) is not None
        )
        if joined:
            return joined
    return None


def _parse_id(value: Any, nested_key: str, flat_key: str) -> Optional[str]:
    for candidate in (
        _lookup(value, nested_key, "id"),
        _lookup(value, flat_key),
        _lookup(value, "id"),
        value,
    ):
        if isinstance(candidate, str):
            return candidate
    return None


def parse_thread_id(value: Any) -> Optional[str]:
    """Extract a thread id from the usual JSON-RPC result shapes."""
    return _parse_id(value, "thread", "threadId")


def parse_turn_id(value: Any) -> Optional[str]:
    """Extract a turn id from the usual JSON-RPC result shapes."""
    return _parse_id(value, "turn", "turnId")