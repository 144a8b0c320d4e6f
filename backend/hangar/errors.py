"""Error taxonomy shared by the codecs, the store and the pipeline."""


class GatewayError(Exception):
    """Base error for uplink processing failures."""


class DecodeError(GatewayError):
    """Raised when an envelope or binary payload cannot be decoded."""


class EncodeError(GatewayError):
    """Raised when a reply cannot be encoded."""


class StoreError(GatewayError):
    """Raised when the device state store is unreachable or holds bad data."""


class ScheduleNotFound(GatewayError):
    """Raised when no schedule has been stored for a device."""


class DownlinkError(GatewayError):
    """Raised when the downlink POST fails or is not accepted."""
