import json

import pytest

from agentwire.errors import SinkError
from agentwire.events import Direction, Envelope, MsgKind
from agentwire.sink import JsonlFileSink


def _envelope(seq=1, method="turn/started", payload=None):
    return Envelope(
        seq=seq,
        ts_millis=0,
        direction=Direction.INBOUND,
        kind=MsgKind.NOTIFICATION,
        method=method,
        thread_id="thr_1",
        turn_id="turn_1",
        json=payload
        if payload is not None
        else {"method": method, "params": {"threadId": "thr_1", "turnId": "turn_1"}},
    )


@pytest.mark.asyncio
async def test_jsonl_file_sink_writes_one_line_per_envelope(tmp_path):
    path = tmp_path / "events.jsonl"
    sink = await JsonlFileSink.open(path)
    await sink.on_envelope(_envelope())
    sink.close()

    line = path.read_text(encoding="utf-8").rstrip()
    assert line
    parsed = Envelope.from_dict(json.loads(line))
    assert parsed.seq == 1
    assert parsed.method == "turn/started"


@pytest.mark.asyncio
async def test_sink_appends_lines_across_reopen(tmp_path):
    path = tmp_path / "events.jsonl"
    async with await JsonlFileSink.open(path) as sink:
        await sink.on_envelope(_envelope(seq=1))
        await sink.on_envelope(_envelope(seq=2))
    async with await JsonlFileSink.open(path) as sink:
        await sink.on_envelope(_envelope(seq=3, method="turn/completed"))

    lines = path.read_text(encoding="utf-8").splitlines()
    seqs = [Envelope.from_dict(json.loads(line)).seq for line in lines]
    assert seqs == [1, 2, 3]
    assert json.loads(lines[2])["method"] == "turn/completed"


@pytest.mark.asyncio
async def test_sink_roundtrips_full_envelope(tmp_path):
    path = tmp_path / "events.jsonl"
    original = _envelope(payload={"params": {"text": "héllo"}})
    async with await JsonlFileSink.open(path) as sink:
        await sink.on_envelope(original)
    parsed = Envelope.from_dict(json.loads(path.read_text(encoding="utf-8")))
    assert parsed == original


@pytest.mark.asyncio
async def test_sink_rejects_unserializable_payload(tmp_path):
    async with await JsonlFileSink.open(tmp_path / "events.jsonl") as sink:
        with pytest.raises(SinkError, match="serialize"):
            await sink.on_envelope(_envelope(payload={"bad": {1, 2}}))
        with pytest.raises(SinkError, match="serialize"):
            await sink.on_envelope(_envelope(payload={"bad": float("nan")}))


@pytest.mark.asyncio
async def test_open_directory_fails(tmp_path):
    with pytest.raises(SinkError):
        await JsonlFileSink.open(tmp_path)


@pytest.mark.asyncio
async def test_write_after_close_fails(tmp_path):
    sink = await JsonlFileSink.open(tmp_path / "events.jsonl")
    sink.close()
    with pytest.raises(SinkError, match="closed"):
        await sink.on_envelope(_envelope())