"""Webhook forwarder — POSTs canonical messages as JSON with basic auth.

At-most-once: a failed POST is logged and the message is gone.
"""

from __future__ import annotations

import json

import httpx
from loguru import logger

from sillio.config import WebhookConfig
from sillio.constants import DEFAULT_USER_AGENT
from sillio.handler.messages import Message

_HEADERS = {"User-Agent": DEFAULT_USER_AGENT, "Content-Type": "application/json"}


class ForwardError(Exception):
    """The webhook did not accept a message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class WebhookForwarder:
    """Delivers Messages to the configured webhook endpoint."""

    def __init__(
        self,
        config: WebhookConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def _auth(self) -> httpx.BasicAuth | None:
        if self._config.username is None and self._config.password is None:
            return None
        return httpx.BasicAuth(self._config.username or "", self._config.password or "")

    async def forward(self, message: Message) -> None:
        """POST ``message``; raises ForwardError unless the status is exactly 200."""
        try:
            payload = json.dumps(message.to_payload())
        except (TypeError, ValueError) as e:
            raise ForwardError(f"Marshal message failed: {e}") from e

        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout) as client:
                    response = await self._post(client, payload)
        except httpx.HTTPError as e:
            raise ForwardError(f"POST {self._config.url} failed: {e}") from e

        if response.status_code != 200:
            raise ForwardError(
                f"POST {self._config.url} returned {response.status_code}",
                status_code=response.status_code,
            )

    async def _post(self, client: httpx.AsyncClient, payload: str) -> httpx.Response:
        return await client.post(
            self._config.url,
            content=payload,
            headers=_HEADERS,
            auth=self._auth(),
            timeout=self._config.timeout,
        )

    async def deliver(self, message: Message) -> bool:
        """Forward and log the outcome; never raises ForwardError."""
        try:
            await self.forward(message)
        except ForwardError as e:
            logger.error("Forward message from {} failed: {}", message.sender, e)
            return False
        logger.info("Forwarded message from {}", message.sender)
        return True
