from .base import (
    BaseDecoder,
    BaseTransport,
    DecodeError,
    Part,
    PduType,
    PushHeaders,
    RawMessage,
    RecordGone,
    TransportError,
)

__all__ = [
    "BaseDecoder",
    "BaseTransport",
    "DecodeError",
    "Part",
    "PduType",
    "PushHeaders",
    "RawMessage",
    "RecordGone",
    "TransportError",
]
