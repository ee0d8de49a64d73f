from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any


class TransportError(Exception):
    """A modem operation failed."""


class RecordGone(TransportError):
    """The record a notification announced no longer exists on the modem."""


class DecodeError(Exception):
    """A push payload or multipart body could not be decoded."""


class PduType(IntEnum):
    """ModemManager's MMSmsPduType."""

    UNKNOWN = 0
    DELIVER = 1
    SUBMIT = 2
    STATUS_REPORT = 3


# ---------------------------------------------------------------------------
# Raw modem records
# ---------------------------------------------------------------------------


@dataclass
class RawMessage:
    """One message record as stored on the modem.

    Attributes:
        handle:    Transport-specific identifier (a D-Bus object path for
                   ModemManager) used to delete or send the record.
        number:    Remote party as reported by the modem.
        text:      Decoded text, empty for binary-only messages.
        timestamp: Service-centre time of the message.
        pdu_type:  DELIVER for received messages, SUBMIT for our own.
        data:      Raw binary user data (a WAP push for MMS notifications).
        received:  True if the modem stored this as an incoming message.
        raw:       The record exactly as the transport saw it, for caching.
    """

    handle: str
    number: str = ""
    text: str = ""
    timestamp: datetime | None = None
    pdu_type: PduType = PduType.UNKNOWN
    data: bytes = b""
    received: bool = True
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_submit(self) -> bool:
        return self.pdu_type == PduType.SUBMIT


# ---------------------------------------------------------------------------
# Decoded push / multipart structures
# ---------------------------------------------------------------------------


@dataclass
class PushHeaders:
    """Headers of a WAP-push MMS notification. ``to`` keeps every To value."""

    sender: str = ""
    to: list[str] = field(default_factory=list)
    content_location: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Part:
    """One part of a decoded multipart MMS body."""

    content_type: str
    data: bytes = b""
    filename: str = ""
    header_name: str = ""


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class BaseTransport(ABC):
    """Interface to one physical modem.

    One instance per modem. All methods raise ``TransportError`` on failure.
    """

    name: str = "base"

    @abstractmethod
    async def list_stored_messages(self) -> list[RawMessage]:
        """Return every message record currently stored on the modem."""
        ...

    @abstractmethod
    def subscribe_new_messages(self) -> AsyncIterator[Any]:
        """Yield one low-level notification per newly added record."""
        ...

    @abstractmethod
    async def parse_notification(self, notification: Any) -> RawMessage:
        """Resolve a notification into the record it announces.

        A notification that cannot be decoded at all raises ``TransportError``;
        one whose record was removed before it could be read raises
        ``RecordGone``.
        """
        ...

    @abstractmethod
    async def create_message(self, destination: str, body: str) -> str:
        """Create an outbound record and return its handle."""
        ...

    @abstractmethod
    async def send(self, handle: str) -> None:
        """Send a previously created record."""
        ...

    @abstractmethod
    async def delete(self, handle: str) -> None:
        """Remove a record from the modem's store."""
        ...

    @abstractmethod
    async def own_numbers(self) -> list[str]:
        """Return the subscriber number(s) of the SIM."""
        ...


class BaseDecoder(ABC):
    """Binary WAP-push and multipart MMS decoder."""

    @abstractmethod
    def decode_push(self, data: bytes) -> PushHeaders:
        """Decode a WAP-push payload. Raises ``DecodeError``."""
        ...

    @abstractmethod
    def decode_multipart(self, data: bytes) -> list[Part]:
        """Decode a fetched MMS body into its parts. Raises ``DecodeError``."""
        ...
