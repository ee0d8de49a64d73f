"""Inbound assembly — turns one raw modem record into a canonical Message.

Plain SMS records map field for field. MMS arrives as a WAP-push whose
headers name the sender, the recipients and a Content-Location URL; the
body behind that URL is fetched and decoded, its text/plain parts are
appended to the text and every other part becomes an attachment.

Every decode or fetch failure degrades the result instead of aborting:
partial data is forwarded rather than nothing.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
from loguru import logger

from sillio.constants import DEFAULT_USER_AGENT, MMS_FETCH_TIMEOUT
from sillio.handler.messages import Attachment, Message
from sillio.modem.base import BaseDecoder, DecodeError, Part, RawMessage
from sillio.relay.cache import MessageCache

_HEADERS = {"User-Agent": DEFAULT_USER_AGENT}


def is_plain_text(content_type: str) -> bool:
    return content_type.split(";", 1)[0].strip().lower() == "text/plain"


class InboundAssembler:
    """Builds Messages from RawMessages.

    Args:
        decoder: Binary decoder for WAP-push payloads and MMS bodies.
        client:  Shared HTTP client for MMS fetches. When omitted a client
                 is opened per fetch.
        cache:   Optional cache receiving every fetched MMS body.
    """

    def __init__(
        self,
        decoder: BaseDecoder,
        client: httpx.AsyncClient | None = None,
        cache: MessageCache | None = None,
        fetch_timeout: float = MMS_FETCH_TIMEOUT,
    ) -> None:
        self._decoder = decoder
        self._client = client
        self._cache = cache
        self._fetch_timeout = fetch_timeout

    async def assemble(self, raw: RawMessage) -> Message:
        sender = raw.number
        text = raw.text or ""
        recipients: list[str] = []
        attachments: list[Attachment] = []

        timestamp = raw.timestamp
        if timestamp is None:
            logger.warning(f"Record {raw.handle} has no timestamp, using receipt time")
            timestamp = datetime.now(timezone.utc)

        if raw.data:
            try:
                push = self._decoder.decode_push(raw.data)
            except DecodeError as e:
                logger.error(f"Decode WAP push from {raw.handle} failed: {e}")
                push = None

            if push is not None:
                logger.debug("Parsed WAP push: {}", push)
                if push.sender:
                    sender = push.sender
                recipients.extend(push.to)

                if push.content_location:
                    for part in await self._fetch_parts(push.content_location):
                        if is_plain_text(part.content_type):
                            text += part.data.decode("utf-8", errors="replace")
                        else:
                            attachments.append(
                                Attachment(
                                    name=part.filename or part.header_name,
                                    content_type=part.content_type,
                                    data=part.data,
                                )
                            )

        return Message(
            sender=sender,
            timestamp=timestamp,
            body=text,
            recipients=tuple(recipients),
            attachments=tuple(attachments),
        )

    async def _fetch_parts(self, url: str) -> list[Part]:
        """Fetch and decode the MMS body at ``url``; [] on any failure."""
        try:
            body = await self._fetch(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Fetch MMS {url} failed: {e}")
            return []

        try:
            parts = self._decoder.decode_multipart(body)
        except DecodeError as e:
            logger.error(f"Decode MMS {url} failed: {e}")
            return []

        logger.debug("MMS {} has {} part(s)", url, len(parts))
        return parts

    async def _fetch(self, url: str) -> bytes:
        if self._client is not None:
            response = await self._client.get(url, timeout=self._fetch_timeout)
        else:
            async with httpx.AsyncClient(
                headers=_HEADERS,
                timeout=self._fetch_timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)

        if self._cache is not None:
            self._cache.write_mms(url, response.content)
        response.raise_for_status()
        return response.content
