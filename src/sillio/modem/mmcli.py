"""ModemManager transport driven through the ``mmcli`` command line tool.

Every operation is one ``mmcli`` invocation run as an asyncio subprocess,
with JSON output where mmcli offers it. New-message notifications are
produced by polling the modem's message list; a notification is the D-Bus
object path of the new SMS.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from loguru import logger

from sillio.config import ModemConfig
from sillio.modem.base import (
    BaseTransport,
    PduType,
    RawMessage,
    RecordGone,
    TransportError,
)

_CREATED_SMS = re.compile(r"(/org/freedesktop/ModemManager1/SMS/\d+)")
_SHORT_OFFSET = re.compile(r"([+-]\d{2})$")
_MISSING_SMS = re.compile(r"couldn't find SMS", re.IGNORECASE)

_PDU_TYPES = {
    "deliver": PduType.DELIVER,
    "submit": PduType.SUBMIT,
    "status-report": PduType.STATUS_REPORT,
}


async def run_mmcli(config: ModemConfig, *args: str) -> str:
    """Run mmcli with ``args`` and return its stdout."""
    try:
        proc = await asyncio.create_subprocess_exec(
            config.mmcli_path,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TransportError(f"cannot run {config.mmcli_path}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=config.command_timeout
        )
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise TransportError(f"mmcli {' '.join(args)} timed out")

    if proc.returncode != 0:
        raise TransportError(
            f"mmcli {' '.join(args)} exited {proc.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )
    return stdout.decode(errors="replace")


async def run_mmcli_json(config: ModemConfig, *args: str) -> dict[str, Any]:
    out = await run_mmcli(config, *args, "--output-json")
    try:
        return json.loads(out)
    except json.JSONDecodeError as e:
        raise TransportError(f"mmcli {' '.join(args)} returned invalid JSON: {e}") from e


async def list_modems(config: ModemConfig) -> list[str]:
    """Return the D-Bus paths of every modem ModemManager knows about."""
    data = await run_mmcli_json(config, "--list-modems")
    return list(data.get("modem-list", []))


def _parse_timestamp(value: str) -> datetime | None:
    if not value or value == "--":
        return None
    # ModemManager emits offsets as "+01"; fromisoformat wants "+01:00"
    value = _SHORT_OFFSET.sub(r"\1:00", value)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable SMS timestamp: {value!r}")
        return None


def _parse_data(value: str) -> bytes:
    if not value or value == "--":
        return b""
    try:
        return bytes.fromhex(value.replace(":", ""))
    except ValueError:
        logger.warning("Unparseable SMS data, ignoring binary payload")
        return b""


def _quote(value: str) -> str:
    # mmcli's key=value parser ends a quoted value at the next matching
    # quote and has no escape sequence
    for quote in ('"', "'"):
        if quote not in value:
            return f"{quote}{value}{quote}"
    raise TransportError(
        "text cannot contain both ' and \" (mmcli has no way to quote it), "
        "drop one kind of quote and retry"
    )


def parse_sms(path: str, data: dict[str, Any]) -> RawMessage:
    """Build a RawMessage from ``mmcli --sms=... --output-json`` output."""
    sms = data.get("sms")
    if not isinstance(sms, dict):
        raise TransportError(f"no sms record for {path}")

    content = sms.get("content", {})
    properties = sms.get("properties", {})
    text = content.get("text", "")
    return RawMessage(
        handle=sms.get("dbus-path", path),
        number=content.get("number", "") if content.get("number") != "--" else "",
        text="" if text == "--" else text,
        timestamp=_parse_timestamp(properties.get("timestamp", "")),
        pdu_type=_PDU_TYPES.get(properties.get("pdu-type", ""), PduType.UNKNOWN),
        data=_parse_data(content.get("data", "")),
        received=properties.get("state") == "received",
        raw=data,
    )


class MmcliTransport(BaseTransport):
    """One ModemManager modem, addressed by its D-Bus path."""

    name = "mmcli"

    def __init__(self, modem_path: str, config: ModemConfig):
        self.modem_path = modem_path
        self._config = config

    async def _mmcli(self, *args: str) -> str:
        return await run_mmcli(self._config, *args)

    async def _mmcli_json(self, *args: str) -> dict[str, Any]:
        return await run_mmcli_json(self._config, *args)

    async def _list_paths(self) -> list[str]:
        data = await self._mmcli_json(
            f"--modem={self.modem_path}", "--messaging-list-sms"
        )
        return list(data.get("modem.messaging.sms", []))

    async def _read(self, path: str) -> RawMessage:
        try:
            data = await self._mmcli_json(f"--sms={path}")
        except TransportError as e:
            if _MISSING_SMS.search(str(e)):
                raise RecordGone(f"{path} no longer exists") from e
            raise
        return parse_sms(path, data)

    async def _ready(self, path: str) -> bool:
        """False while ``path`` should not be reported yet.

        Received messages still in the ``receiving`` state (multipart SMS
        whose parts have not all arrived) are polled again until complete;
        records that vanished before they could be read are dropped.
        """
        try:
            raw = await self._read(path)
        except RecordGone:
            logger.debug(f"{path} vanished before it was read")
            return False
        except TransportError as e:
            # the engine reads it again and decides
            logger.warning(f"Reading {path} failed: {e}")
            return True
        if not raw.is_submit and not raw.received:
            logger.debug(f"{path} still arriving, checking again next poll")
            return False
        return True

    # ------------------------------------------------------------------
    # BaseTransport interface
    # ------------------------------------------------------------------

    async def list_stored_messages(self) -> list[RawMessage]:
        records = []
        for path in await self._list_paths():
            try:
                records.append(await self._read(path))
            except RecordGone:
                logger.debug(f"{path} vanished while listing")
        return records

    async def subscribe_new_messages(self) -> AsyncIterator[str]:
        # Starts empty so records stored after the initial drain still surface.
        seen: set[str] = set()
        while True:
            try:
                paths = await self._list_paths()
            except TransportError as e:
                logger.warning(f"Polling {self.modem_path} failed: {e}")
                paths = list(seen)
            current: set[str] = set()
            for path in paths:
                if path in seen:
                    current.add(path)
                elif await self._ready(path):
                    current.add(path)
                    yield path
            seen = current
            await asyncio.sleep(self._config.poll_interval)

    async def parse_notification(self, notification: str) -> RawMessage:
        if not isinstance(notification, str) or not notification:
            raise TransportError(f"malformed notification: {notification!r}")
        return await self._read(notification)

    async def create_message(self, destination: str, body: str) -> str:
        fields = f"number={_quote(destination)},text={_quote(body)}"
        out = await self._mmcli(
            f"--modem={self.modem_path}", f"--messaging-create-sms={fields}"
        )
        match = _CREATED_SMS.search(out)
        if not match:
            raise TransportError(f"mmcli did not report the created SMS: {out.strip()}")
        return match.group(1)

    async def send(self, handle: str) -> None:
        await self._mmcli(f"--sms={handle}", "--send")

    async def delete(self, handle: str) -> None:
        await self._mmcli(
            f"--modem={self.modem_path}", f"--messaging-delete-sms={handle}"
        )

    async def own_numbers(self) -> list[str]:
        data = await self._mmcli_json(f"--modem={self.modem_path}")
        return list(data.get("modem", {}).get("generic", {}).get("own-numbers", []))
