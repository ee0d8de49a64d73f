# canonical inbound messages and outbound send requests

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class Attachment:
    name: str
    content_type: str
    data: bytes = b""

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "content_type": self.content_type,
            "data": base64.b64encode(self.data).decode("ascii"),
        }


@dataclass(frozen=True)
class Message:
    """One inbound SMS/MMS, normalized. Never mutated after assembly.

    ``timestamp`` is the time reported by the modem, not the receipt time.
    ``body`` is the empty string when there is no text part.
    """

    sender: str
    timestamp: datetime
    body: str = ""
    recipients: tuple[str, ...] = ()
    attachments: tuple[Attachment, ...] = ()

    @property
    def to(self) -> str:
        return ", ".join(self.recipients)

    def to_payload(self) -> dict:
        """Webhook JSON document."""
        ts = self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return {
            "from": self.sender,
            "to": self.to,
            "tos": list(self.recipients),
            "ts": ts.isoformat(),
            "body": self.body,
            "attachment": [a.to_payload() for a in self.attachments],
        }


@dataclass
class OutboundRequest:
    """A send request plus the one-shot slot its caller waits on.

    Must be created inside a running event loop.
    """

    destination: str
    body: str
    result: asyncio.Future = field(
        default_factory=lambda: asyncio.get_running_loop().create_future(),
        repr=False,
    )

    @property
    def done(self) -> bool:
        return self.result.done()

    def succeed(self) -> None:
        self.result.set_result(None)

    def fail(self, exc: BaseException) -> None:
        self.result.set_exception(exc)

    async def wait(self) -> None:
        """Block until the engine has handled the request; re-raises its error."""
        await self.result
