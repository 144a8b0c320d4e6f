import base64
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

# 0 = Monday ... 6 = Sunday
DayOfWeek = Literal["0", "1", "2", "3", "4", "5", "6"]


def _b64_to_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise ValueError("payload_raw must be a base64 string")
    return base64.b64decode(value, validate=True)


class UplinkEnvelope(BaseModel):
    """One uplink as posted by the network server's HTTP integration."""

    model_config = ConfigDict(populate_by_name=True, strict=True)

    app_id: str = ""
    dev_id: str = ""
    hardware_serial: str = ""
    port: int = 0
    counter: int = 0
    is_retry: bool = Field(default=False, alias="isRetry")
    confirmed: bool = False
    # base64 text is turned into bytes by _decode_payload
    payload_raw: bytes = Field(default=b"", strict=False)
    downlink_url: str = ""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # null behaves like a missing field
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    @field_validator("payload_raw", mode="before")
    @classmethod
    def _decode_payload(cls, value: Any) -> bytes:
        return _b64_to_bytes(value)


class DownlinkEnvelope(BaseModel):
    dev_id: str
    port: int
    confirmed: bool = False
    payload_raw: bytes = b""

    @field_validator("payload_raw", mode="before")
    @classmethod
    def _decode_payload(cls, value: Any) -> bytes:
        return _b64_to_bytes(value)

    @field_serializer("payload_raw")
    def _encode_payload(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class ScheduleEntry(BaseModel):
    st: bool
    dow: DayOfWeek
    tm: str = Field(pattern=r"^([01][0-9]|2[0-3])[0-5][0-9]$")


class StatusRecord(BaseModel):
    """Status snapshot as persisted in the device state store."""

    model_config = ConfigDict(populate_by_name=True)

    dev_id: str = Field(alias="DevID")
    msg_time: int = Field(alias="MsgTime")
    cmd: str = Field(default="status", alias="Cmd")
    my_time: int = Field(default=0, alias="MyTime")
    power_state: list[bool] | None = Field(default=None, alias="PowerState")
