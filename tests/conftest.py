"""Shared in-memory fakes for the modem transports and binary decoder."""

import asyncio
import copy
from datetime import datetime, timezone

import pytest

from sillio.modem.base import (
    BaseDecoder,
    BaseTransport,
    DecodeError,
    Part,
    PduType,
    PushHeaders,
    RawMessage,
    TransportError,
)
from sillio.modem.mmcli import MmcliTransport

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_raw(
    handle: str = "/sms/1",
    number: str = "15551234567",
    text: str = "hello",
    pdu_type: PduType = PduType.DELIVER,
    received: bool = True,
    data: bytes = b"",
    timestamp: datetime | None = T0,
) -> RawMessage:
    return RawMessage(
        handle=handle,
        number=number,
        text=text,
        timestamp=timestamp,
        pdu_type=pdu_type,
        data=data,
        received=received,
    )


class FakeTransport(BaseTransport):
    """Records every call; notifications are pushed with ``push()``."""

    name = "fake"

    def __init__(self, stored=None, own_numbers=("15550000000",)):
        self.stored: list[RawMessage] = list(stored or [])
        self.records: dict[str, RawMessage] = {}
        self.own: list[str] = list(own_numbers)
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}
        self.notifications: asyncio.Queue = asyncio.Queue()
        self._created = 0

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise self.fail_on[op]

    def push(self, raw: RawMessage) -> None:
        self.records[raw.handle] = raw
        self.notifications.put_nowait(raw.handle)

    def end_stream(self) -> None:
        self.notifications.put_nowait(None)

    async def list_stored_messages(self):
        self.calls.append(("list",))
        self._maybe_fail("list")
        return list(self.stored)

    async def subscribe_new_messages(self):
        while True:
            notification = await self.notifications.get()
            if notification is None:
                return
            yield notification

    async def parse_notification(self, notification):
        self.calls.append(("parse", notification))
        if notification not in self.records:
            raise TransportError(f"unknown record {notification!r}")
        return self.records[notification]

    async def create_message(self, destination, body):
        self.calls.append(("create", destination, body))
        self._maybe_fail("create")
        self._created += 1
        return f"/sent/{self._created}"

    async def send(self, handle):
        self.calls.append(("send", handle))
        self._maybe_fail("send")

    async def delete(self, handle):
        self.calls.append(("delete", handle))
        self._maybe_fail("delete")

    async def own_numbers(self):
        self._maybe_fail("own_numbers")
        return list(self.own)

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]


class StoreMmcli(MmcliTransport):
    """MmcliTransport answering from an in-memory SMS store instead of mmcli.

    Mirrors what ModemManager does with our own messages: a created SMS is
    a ``submit`` record in the store until it is deleted, and reading a
    deleted path fails the way mmcli does.
    """

    MODEM = "/org/freedesktop/ModemManager1/Modem/0"

    def __init__(self, config, own_numbers=("15550000000",), send_delay=0.0):
        super().__init__(self.MODEM, config)
        self.store: dict[str, dict] = {}
        self.own = list(own_numbers)
        self.send_delay = send_delay
        self.calls: list[tuple] = []
        self._next = 0

    def add(self, pdu_type="deliver", state="received", number="+15551234567", text="hello"):
        path = f"/org/freedesktop/ModemManager1/SMS/{self._next}"
        self._next += 1
        self.store[path] = {
            "sms": {
                "dbus-path": path,
                "content": {"number": number, "text": text, "data": "--"},
                "properties": {
                    "pdu-type": pdu_type,
                    "state": state,
                    "timestamp": "2024-05-01T12:00:00+00",
                },
            }
        }
        return path

    def set_state(self, path, state):
        self.store[path]["sms"]["properties"]["state"] = state

    def reads(self, path) -> int:
        return self.calls.count((f"--sms={path}",))

    def _missing(self, path):
        return TransportError(
            f"mmcli --sms={path} exited 1: error: couldn't find SMS at '{path}'"
        )

    async def _mmcli_json(self, *args):
        self.calls.append(args)
        if args[-1] == "--messaging-list-sms":
            return {"modem.messaging.sms": list(self.store)}
        if args[0].startswith("--sms="):
            path = args[0].split("=", 1)[1]
            if path not in self.store:
                raise self._missing(path)
            return copy.deepcopy(self.store[path])
        return {"modem": {"generic": {"own-numbers": self.own}}}

    async def _mmcli(self, *args):
        self.calls.append(args)
        op = args[-1]
        if op.startswith("--messaging-create-sms="):
            path = self.add(pdu_type="submit", state="stored", number="", text="")
            return f"Successfully created new SMS: {path}\n"
        if op == "--send":
            await asyncio.sleep(self.send_delay)
            self.set_state(args[0].split("=", 1)[1], "sent")
            return ""
        if op.startswith("--messaging-delete-sms="):
            path = op.split("=", 1)[1]
            if self.store.pop(path, None) is None:
                raise self._missing(path)
            return ""
        raise TransportError(f"unexpected mmcli call: {args}")


class FakeDecoder(BaseDecoder):
    """Maps payload bytes to canned results; unknown payloads fail to decode."""

    def __init__(self, pushes=None, bodies=None):
        self.pushes: dict[bytes, PushHeaders] = dict(pushes or {})
        self.bodies: dict[bytes, list[Part]] = dict(bodies or {})

    def decode_push(self, data):
        if data not in self.pushes:
            raise DecodeError("not a push")
        return self.pushes[data]

    def decode_multipart(self, data):
        if data not in self.bodies:
            raise DecodeError("not an MMS")
        return self.bodies[data]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def decoder():
    return FakeDecoder()
