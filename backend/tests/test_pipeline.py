import asyncio
import base64
import json
import logging
import sys
from pathlib import Path

import httpx
import msgpack
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dummies import DownlinkRecorder, DummyRedis  # noqa: E402
from hangar import envelope  # noqa: E402
from hangar import pipeline as pipeline_module  # noqa: E402
from hangar.errors import EncodeError  # noqa: E402
from hangar.payload import Command, decode_reply  # noqa: E402
from hangar.pipeline import FailureReason, Stage, UplinkPipeline, UplinkRejected  # noqa: E402
from hangar.schemas import ScheduleEntry  # noqa: E402
from hangar.store import DeviceStateStore  # noqa: E402

NOW = 1_000_000
DOWNLINK_URL = "http://ttn.example/downlink"


def _uplink(message, dev_id="dev-1", port=2, downlink_url=DOWNLINK_URL, **overrides) -> bytes:
    raw = msgpack.packb(message, use_bin_type=True) if isinstance(message, dict) else message
    body = {
        "app_id": "hangar-app",
        "dev_id": dev_id,
        "hardware_serial": "0004A30B001C0530",
        "port": port,
        "counter": 12,
        "isRetry": False,
        "confirmed": True,
        "payload_raw": base64.b64encode(raw).decode("ascii"),
        "downlink_url": downlink_url,
    }
    body.update(overrides)
    return json.dumps(body).encode("utf-8")


def _run(body: bytes, redis: DummyRedis, recorder: DownlinkRecorder):
    async def scenario():
        async with recorder.client() as http:
            pipeline = UplinkPipeline(DeviceStateStore(redis), http, clock=lambda: NOW)
            return await pipeline.process(body)

    return asyncio.run(scenario())


def test_status_uplink_is_persisted_under_receipt_time():
    redis = DummyRedis(now=NOW)
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "status", "my-time": 12345, "state": [True, False]}), redis, recorder)

    assert result.state is Stage.COMPLETE
    assert result.command is Command.STATUS
    assert result.raw_command == "status"
    assert Stage.STATUS_PERSISTED in result.trail
    stored = json.loads(redis.values["STAT:dev-1:1000000"])
    assert stored["MsgTime"] == NOW
    assert stored["MyTime"] == 12345
    assert stored["PowerState"] == [True, False]
    assert recorder.requests == []


def test_start_uplink_posts_init_reply_with_stored_schedule():
    redis = DummyRedis(now=NOW)
    redis.values["SCHED:dev-2"] = b'[{"st": true, "dow": "1", "tm": "0800"}]'
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "start", "my-time": 5}, dev_id="dev-2", port=4), redis, recorder)

    assert result.state is Stage.COMPLETE
    assert result.trail[-3:] == [Stage.REPLY_BUILT, Stage.REPLY_SENT, Stage.COMPLETE]
    assert len(recorder.requests) == 1
    request = recorder.requests[0]
    assert str(request.url) == DOWNLINK_URL
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"

    downlink = envelope.decode_downlink(request.content)
    assert downlink.dev_id == "dev-2"
    assert downlink.port == 4
    assert downlink.confirmed is False
    reply = decode_reply(downlink.payload_raw)
    assert reply.cmd == "init"
    assert reply.cur_time == NOW
    assert reply.schedule == [ScheduleEntry(st=True, dow="1", tm="0800")]
    assert redis.transactions == []


def test_start_uplink_without_schedule_replies_with_empty_schedule():
    redis = DummyRedis(now=NOW)
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "start", "my-time": 5}, dev_id="fresh"), redis, recorder)

    assert result.failure is None
    reply = decode_reply(envelope.decode_downlink(recorder.requests[0].content).payload_raw)
    assert reply.schedule == []


def test_start_uplink_skips_reply_when_schedule_read_fails():
    redis = DummyRedis(now=NOW)
    redis.fail = True
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "start"}), redis, recorder)

    assert result.state is Stage.FAILED
    assert result.failure is FailureReason.STORE_ERROR
    assert recorder.requests == []


def test_start_uplink_skips_reply_when_stored_schedule_is_malformed():
    redis = DummyRedis(now=NOW)
    redis.values["SCHED:dev-1"] = b"not json"
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "start"}), redis, recorder)

    assert result.failure is FailureReason.STORE_ERROR
    assert recorder.requests == []


def test_encode_failure_is_recorded_and_nothing_is_sent(monkeypatch):
    def broken_encode(reply):
        raise EncodeError("boom")

    monkeypatch.setattr(pipeline_module, "encode_reply", broken_encode)
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "start"}), DummyRedis(now=NOW), recorder)

    assert result.failure is FailureReason.ENCODE_ERROR
    assert recorder.requests == []


@pytest.mark.parametrize(
    "recorder",
    [DownlinkRecorder(status_code=500), DownlinkRecorder(error=httpx.ConnectError("connection refused"))],
)
def test_downlink_failure_is_logged_not_raised(recorder, caplog):
    with caplog.at_level(logging.ERROR, logger="hangar.pipeline"):
        result = _run(_uplink({"cmd": "start"}), DummyRedis(now=NOW), recorder)

    assert result.state is Stage.FAILED
    assert result.failure is FailureReason.DOWNLINK_POST_ERROR
    assert len(recorder.requests) == 1
    assert "Unable to send downlink" in caplog.text


def test_start_uplink_without_downlink_url_sends_nothing():
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "start"}, downlink_url=""), DummyRedis(now=NOW), recorder)

    assert result.failure is FailureReason.DOWNLINK_POST_ERROR
    assert Stage.REPLY_BUILT in result.trail
    assert recorder.requests == []


def test_status_store_failure_is_logged_not_raised(caplog):
    redis = DummyRedis(now=NOW)
    redis.fail = True

    with caplog.at_level(logging.ERROR, logger="hangar.pipeline"):
        result = _run(_uplink({"cmd": "status", "state": [True, True]}), redis, DownlinkRecorder())

    assert result.failure is FailureReason.STORE_ERROR
    assert "Unable to persist status message" in caplog.text


def test_unknown_command_has_no_side_effects():
    redis = DummyRedis(now=NOW)
    recorder = DownlinkRecorder()

    result = _run(_uplink({"cmd": "ping", "my-time": 1}), redis, recorder)

    assert result.state is Stage.COMPLETE
    assert result.command is Command.UNKNOWN
    assert result.raw_command == "ping"
    assert redis.values == {}
    assert redis.transactions == []
    assert recorder.requests == []


def test_bad_envelope_is_rejected():
    with pytest.raises(UplinkRejected) as excinfo:
        _run(b"{broken", DummyRedis(), DownlinkRecorder())

    assert excinfo.value.reason is FailureReason.BAD_ENVELOPE


def test_bad_payload_is_rejected_without_side_effects():
    redis = DummyRedis()
    recorder = DownlinkRecorder()

    with pytest.raises(UplinkRejected) as excinfo:
        _run(_uplink(b"\x93\x01\x02"), redis, recorder)

    assert excinfo.value.reason is FailureReason.BAD_PAYLOAD
    assert redis.transactions == []
    assert recorder.requests == []


def test_channel_states_logged_only_for_expected_length(caplog):
    with caplog.at_level(logging.INFO, logger="hangar.pipeline"):
        _run(_uplink({"cmd": "status", "state": [True, False]}), DummyRedis(now=NOW), DownlinkRecorder())
    assert "Power port 1 state: True" in caplog.text
    assert "Power port 2 state: False" in caplog.text

    caplog.clear()
    with caplog.at_level(logging.INFO, logger="hangar.pipeline"):
        result = _run(_uplink({"cmd": "status", "state": [True]}), DummyRedis(now=NOW), DownlinkRecorder())
    assert "Power port" not in caplog.text
    assert result.state is Stage.COMPLETE
