import json

import pytest

from agentwire.events import Direction, Envelope, MsgKind


def make_envelope(**overrides):
    fields = dict(
        seq=1,
        ts_millis=0,
        direction=Direction.INBOUND,
        kind=MsgKind.NOTIFICATION,
        rpc_id=None,
        method="turn/started",
        thread_id="thr_1",
        turn_id="turn_1",
        item_id=None,
        json={"method": "turn/started", "params": {"threadId": "thr_1", "turnId": "turn_1"}},
    )
    fields.update(overrides)
    return Envelope(**fields)


def test_round_trip_through_json_text():
    envelope = make_envelope()
    text = json.dumps(envelope.to_dict())
    parsed = Envelope.from_dict(json.loads(text))
    assert parsed == envelope
    assert parsed.seq == 1
    assert parsed.method == "turn/started"


@pytest.mark.parametrize("rpc_id", [777, "req_str_1"])
def test_rpc_id_kind_is_preserved(rpc_id):
    envelope = make_envelope(kind=MsgKind.SERVER_REQUEST, rpc_id=rpc_id)
    parsed = Envelope.from_dict(envelope.to_dict())
    assert parsed.rpc_id == rpc_id
    assert type(parsed.rpc_id) is type(rpc_id)
    assert parsed.kind is MsgKind.SERVER_REQUEST


@pytest.mark.parametrize("kind", list(MsgKind))
def test_every_kind_round_trips(kind):
    envelope = make_envelope(kind=kind, direction=Direction.OUTBOUND)
    parsed = Envelope.from_dict(envelope.to_dict())
    assert parsed.kind is kind
    assert parsed.direction is Direction.OUTBOUND


def test_to_dict_carries_payload_unchanged():
    payload = {"id": 1, "result": {"ready": True}}
    envelope = make_envelope(kind=MsgKind.RESPONSE, json=payload)
    assert envelope.to_dict()["json"] == payload


def test_from_dict_rejects_unknown_direction():
    data = make_envelope().to_dict()
    data["direction"] = "sideways"
    with pytest.raises(ValueError):
        Envelope.from_dict(data)


def test_from_dict_rejects_unknown_kind():
    data = make_envelope().to_dict()
    data["kind"] = "gossip"
    with pytest.raises(ValueError):
        Envelope.from_dict(data)


def test_from_dict_rejects_missing_seq():
    data = make_envelope().to_dict()
    del data["seq"]
    with pytest.raises(ValueError):
        Envelope.from_dict(data)


def test_from_dict_rejects_non_string_method():
    data = make_envelope().to_dict()
    data["method"] = 5
    with pytest.raises(ValueError):
        Envelope.from_dict(data)


def test_from_dict_rejects_non_mapping():
    with pytest.raises(ValueError):
        Envelope.from_dict(["not", "an", "object"])