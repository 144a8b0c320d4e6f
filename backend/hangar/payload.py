"""MessagePack codec for the binary payload carried in ``payload_raw``.

Messages are field-tagged maps, so optional fields are simply left out:

    uplink  {"cmd": "start" | "status", "my-time": int, "state": [bool, ...]}
    reply   {"cmd": "init", "cur-time": int, "cmd-data": [{"st", "dow", "tm"}, ...]}

``state`` is only sent with status reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import msgpack
from msgpack.exceptions import UnpackException
from pydantic import ValidationError

from .errors import DecodeError, EncodeError
from .schemas import ScheduleEntry, StatusRecord

POWER_CHANNELS = 2
REPLY_INIT = "init"


class Command(str, Enum):
    START = "start"
    STATUS = "status"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: str) -> "Command":
        if value == cls.START.value:
            return cls.START
        if value == cls.STATUS.value:
            return cls.STATUS
        return cls.UNKNOWN


@dataclass
class DeviceMessage:
    """A decoded uplink payload.

    ``dev_id`` and ``msg_time`` are not on the wire; the pipeline fills them in
    from the envelope and the server clock.
    """

    cmd: str = ""
    my_time: int = 0
    power_state: list[bool] | None = None
    dev_id: str = ""
    msg_time: int = 0

    @property
    def command(self) -> Command:
        return Command.from_wire(self.cmd)

    def channel_states(self) -> tuple[bool, ...] | None:
        """Per-channel power states, or None when the vector has an unexpected length."""

        if self.power_state is None or len(self.power_state) != POWER_CHANNELS:
            return None
        return tuple(self.power_state)

    def to_status_record(self) -> StatusRecord:
        return StatusRecord(
            dev_id=self.dev_id,
            msg_time=self.msg_time,
            cmd=self.cmd,
            my_time=self.my_time,
            power_state=self.power_state,
        )


@dataclass
class ClientReply:
    cur_time: int
    schedule: list[ScheduleEntry] = field(default_factory=list)
    cmd: str = REPLY_INIT


def _unpack_map(data: bytes) -> dict[str, Any]:
    try:
        obj = msgpack.unpackb(data, raw=False)
    except (UnpackException, ValueError, TypeError) as exc:
        raise DecodeError(f"Unable to decode MessagePack: {exc}") from exc
    if not isinstance(obj, dict):
        raise DecodeError(f"MessagePack payload is not a map: {type(obj).__name__}")
    return obj


def _pack(body: dict[str, Any]) -> bytes:
    try:
        return msgpack.packb(body, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as exc:
        raise EncodeError(f"Unable to encode MessagePack: {exc}") from exc


def _str_field(obj: dict[str, Any], tag: str) -> str:
    value = obj.get(tag)
    if value is None:
        return ""
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Field {tag!r} is not valid UTF-8") from exc
    if not isinstance(value, str):
        raise DecodeError(f"Field {tag!r} must be a string, got {type(value).__name__}")
    return value


def _int_field(obj: dict[str, Any], tag: str) -> int:
    value = obj.get(tag)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"Field {tag!r} must be an integer, got {type(value).__name__}")
    return value


def _bool_list_field(obj: dict[str, Any], tag: str) -> list[bool] | None:
    value = obj.get(tag)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, bool) for item in value):
        raise DecodeError(f"Field {tag!r} must be an array of booleans")
    return list(value)


def decode_message(data: bytes) -> DeviceMessage:
    """Decode an uplink payload. An empty payload yields a message with no command."""

    if not data:
        return DeviceMessage()
    obj = _unpack_map(data)
    return DeviceMessage(
        cmd=_str_field(obj, "cmd"),
        my_time=_int_field(obj, "my-time"),
        power_state=_bool_list_field(obj, "state"),
    )


def encode_message(message: DeviceMessage) -> bytes:
    body: dict[str, Any] = {"cmd": message.cmd, "my-time": message.my_time}
    if message.power_state is not None:
        body["state"] = list(message.power_state)
    return _pack(body)


def encode_reply(reply: ClientReply) -> bytes:
    return _pack(
        {
            "cmd": reply.cmd,
            "cur-time": reply.cur_time,
            "cmd-data": [entry.model_dump() for entry in reply.schedule],
        }
    )


def decode_reply(data: bytes) -> ClientReply:
    obj = _unpack_map(data)
    entries = obj.get("cmd-data") or []
    if not isinstance(entries, list):
        raise DecodeError("Field 'cmd-data' must be an array")
    try:
        schedule = [ScheduleEntry.model_validate(entry) for entry in entries]
    except ValidationError as exc:
        raise DecodeError(f"Invalid schedule entry in reply: {exc}") from exc
    return ClientReply(
        cur_time=_int_field(obj, "cur-time"),
        schedule=schedule,
        cmd=_str_field(obj, "cmd"),
    )
