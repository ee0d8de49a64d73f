"""Tests for InboundAssembler (SMS passthrough and MMS reconstruction)."""

import httpx
import pytest

from conftest import T0, FakeDecoder, make_raw
from sillio.modem.base import Part, PushHeaders
from sillio.relay.assembler import InboundAssembler, is_plain_text
from sillio.relay.cache import MessageCache

MMS_URL = "http://mmsc.example/mms/abc"
PUSH = b"\x01\x06push"
BODY = b"multipart-body"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client(status: int = 200, content: bytes = BODY) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == MMS_URL
        return httpx.Response(status, content=content)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _failing_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("mmsc unreachable", request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _push(**kwargs) -> PushHeaders:
    defaults = {
        "sender": "+15559876543",
        "to": ["15550000000", "15551112222"],
        "content_location": MMS_URL,
    }
    defaults.update(kwargs)
    return PushHeaders(**defaults)


PARTS = [
    Part(content_type="application/smil", data=b"<smil/>", filename="smil.xml"),
    Part(content_type="text/plain", data=b"Hello "),
    Part(content_type="image/jpeg", data=b"\xff\xd8jpeg", header_name="cat.jpg"),
    Part(content_type="text/plain; charset=utf-8", data="wörld".encode()),
    Part(content_type="video/mp4", data=b"mp4"),
]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestPlainSms:
    @pytest.mark.asyncio
    async def test_fields_map_directly(self):
        assembler = InboundAssembler(FakeDecoder())

        message = await assembler.assemble(make_raw())

        assert message.sender == "15551234567"
        assert message.body == "hello"
        assert message.timestamp == T0
        assert message.recipients == ()
        assert message.attachments == ()

    @pytest.mark.asyncio
    async def test_empty_text_gives_empty_body(self):
        message = await InboundAssembler(FakeDecoder()).assemble(make_raw(text=""))
        assert message.body == ""

    @pytest.mark.asyncio
    async def test_missing_timestamp_falls_back_to_now(self):
        message = await InboundAssembler(FakeDecoder()).assemble(
            make_raw(timestamp=None)
        )
        assert message.timestamp.tzinfo is not None


class TestMms:
    @pytest.mark.asyncio
    async def test_parts_are_split_into_text_and_attachments(self):
        decoder = FakeDecoder(pushes={PUSH: _push()}, bodies={BODY: PARTS})
        async with _client() as client:
            assembler = InboundAssembler(decoder, client=client)
            message = await assembler.assemble(make_raw(text="", data=PUSH))

        assert message.sender == "+15559876543"
        assert message.recipients == ("15550000000", "15551112222")
        assert message.to == "15550000000, 15551112222"
        assert message.body == "Hello wörld"
        assert [a.name for a in message.attachments] == ["smil.xml", "cat.jpg", ""]
        assert [a.content_type for a in message.attachments] == [
            "application/smil",
            "image/jpeg",
            "video/mp4",
        ]
        assert message.attachments[1].data == b"\xff\xd8jpeg"

    @pytest.mark.asyncio
    async def test_sms_text_is_kept_before_mms_text(self):
        decoder = FakeDecoder(pushes={PUSH: _push()}, bodies={BODY: PARTS[1:2]})
        async with _client() as client:
            message = await InboundAssembler(decoder, client=client).assemble(
                make_raw(text="pre:", data=PUSH)
            )
        assert message.body == "pre:Hello "

    @pytest.mark.asyncio
    async def test_push_without_sender_keeps_modem_number(self):
        decoder = FakeDecoder(pushes={PUSH: _push(sender="", content_location="")})

        message = await InboundAssembler(decoder).assemble(make_raw(data=PUSH))

        assert message.sender == "15551234567"
        assert message.recipients == ("15550000000", "15551112222")

    @pytest.mark.asyncio
    async def test_push_decode_failure_keeps_plain_fields(self):
        message = await InboundAssembler(FakeDecoder()).assemble(
            make_raw(data=b"garbage")
        )

        assert message.sender == "15551234567"
        assert message.body == "hello"
        assert message.attachments == ()

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_text_only(self):
        decoder = FakeDecoder(pushes={PUSH: _push()}, bodies={BODY: PARTS})
        async with _failing_client() as client:
            message = await InboundAssembler(decoder, client=client).assemble(
                make_raw(data=PUSH)
            )

        assert message.sender == "+15559876543"
        assert message.body == "hello"
        assert message.attachments == ()

    @pytest.mark.asyncio
    async def test_http_error_status_keeps_text_only(self):
        decoder = FakeDecoder(pushes={PUSH: _push()}, bodies={BODY: PARTS})
        async with _client(status=404) as client:
            message = await InboundAssembler(decoder, client=client).assemble(
                make_raw(data=PUSH)
            )
        assert message.attachments == ()

    @pytest.mark.asyncio
    async def test_malformed_content_location_keeps_text_only(self):
        decoder = FakeDecoder(
            pushes={PUSH: _push(content_location="http://mmsc\x00.example/m1")},
            bodies={BODY: PARTS},
        )
        async with _client() as client:
            message = await InboundAssembler(decoder, client=client).assemble(
                make_raw(data=PUSH)
            )

        assert message.sender == "+15559876543"
        assert message.body == "hello"
        assert message.attachments == ()

    @pytest.mark.asyncio
    async def test_body_decode_failure_keeps_text_only(self):
        decoder = FakeDecoder(pushes={PUSH: _push()})
        async with _client() as client:
            message = await InboundAssembler(decoder, client=client).assemble(
                make_raw(data=PUSH)
            )
        assert message.body == "hello"
        assert message.attachments == ()

    @pytest.mark.asyncio
    async def test_fetched_body_is_cached(self, tmp_path):
        decoder = FakeDecoder(pushes={PUSH: _push()}, bodies={BODY: PARTS})
        cache = MessageCache(tmp_path)
        async with _client() as client:
            await InboundAssembler(decoder, client=client, cache=cache).assemble(
                make_raw(data=PUSH)
            )

        files = list(tmp_path.iterdir())
        assert len(files) == 1
        assert files[0].name.startswith("mms.")
        assert files[0].name.endswith(".http:__mmsc.example_mms_abc")
        assert files[0].read_bytes() == BODY


class TestIsPlainText:
    @pytest.mark.parametrize(
        "content_type, expected",
        [
            ("text/plain", True),
            ("TEXT/PLAIN; charset=us-ascii", True),
            ("text/html", False),
            ("application/smil", False),
        ],
    )
    def test_media_type_match(self, content_type, expected):
        assert is_plain_text(content_type) is expected
