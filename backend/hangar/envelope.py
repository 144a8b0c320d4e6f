"""JSON envelopes exchanged with the network server."""

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from .errors import DecodeError, EncodeError
from .schemas import DownlinkEnvelope, UplinkEnvelope


def decode_uplink(body: bytes) -> UplinkEnvelope:
    """Parse an uplink body; unknown fields are ignored, missing ones zero-valued."""

    try:
        return UplinkEnvelope.model_validate_json(body)
    except ValidationError as exc:
        raise DecodeError(f"Unable to parse uplink envelope: {exc}") from exc


def encode_downlink(envelope: DownlinkEnvelope) -> bytes:
    try:
        return envelope.model_dump_json().encode("utf-8")
    except PydanticSerializationError as exc:
        raise EncodeError(f"Unable to encode downlink envelope: {exc}") from exc


def decode_downlink(body: bytes) -> DownlinkEnvelope:
    try:
        return DownlinkEnvelope.model_validate_json(body)
    except ValidationError as exc:
        raise DecodeError(f"Unable to parse downlink envelope: {exc}") from exc
