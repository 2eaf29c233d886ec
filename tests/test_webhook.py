import base64
import hashlib
import hmac
import json

import httpx
import pytest
import pytest_asyncio
import respx

from booking_service.main import app
from booking_service.models import ManualItem, ManualItemTag
from booking_service.webhook import (
    FALLBACK_REPLY,
    find_manual_item,
    LineReplyClient,
    LineWebhookHandler,
    match_keyword,
    validate_signature,
)

LINE_URL = "https://line.test"


def sign(body: bytes, secret: str = "line-secret") -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def text_event(text, event_id="ev-1", reply_token="rt-1"):
    return {
        "type": "message",
        "webhookEventId": event_id,
        "replyToken": reply_token,
        "message": {"type": "text", "text": text},
    }


class FakeReplyClient:
    def __init__(self, ok=True):
        self.ok = ok
        self.replies = []

    async def reply(self, reply_token, text):
        self.replies.append((reply_token, text))
        return self.ok


async def add_item(db, category, answer, tags, is_public=True):
    item = ManualItem(category=category, answer=answer, is_public=is_public)
    db.add(item)
    await db.flush()
    db.add_all([ManualItemTag(item_id=item.id, tag=tag) for tag in tags])
    return item


@pytest_asyncio.fixture
async def manual(session_factory):
    async with session_factory() as db:
        async with db.begin():
            await add_item(db, "料金", "1人700円です", ["料金", "会計"])
            await add_item(db, "内部", "非公開", ["ルール"], is_public=False)
            await add_item(db, "延長", "30分ごとに延長できます", ["延長", "料金"])
    return session_factory


def test_signature_roundtrip():
    body = b'{"events":[]}'
    assert validate_signature("line-secret", body, sign(body))
    assert not validate_signature("line-secret", body, sign(body, "other"))
    assert not validate_signature("line-secret", body + b" ", sign(body))


def test_match_keyword_takes_first_listed():
    assert match_keyword("ダーツの料金は?") == "ダーツ"
    assert match_keyword("こんにちは") is None


@pytest.mark.asyncio
async def test_find_manual_item_matches_tags_exactly(manual):
    item = await find_manual_item(manual, "料金")
    assert item.answer == "1人700円です"

    assert (await find_manual_item(manual, "延長")).category == "延長"
    assert await find_manual_item(manual, "ルール") is None
    assert await find_manual_item(manual, "料") is None


@pytest.mark.asyncio
async def test_handler_replies_with_manual_answer(manual):
    reply_client = FakeReplyClient()
    handler = LineWebhookHandler(manual, reply_client)

    sent = await handler.handle([text_event("料金いくら?")])

    assert sent == 1
    assert reply_client.replies == [("rt-1", "【料金】\n1人700円です")]


@pytest.mark.asyncio
async def test_handler_falls_back_without_match(manual):
    reply_client = FakeReplyClient()
    handler = LineWebhookHandler(manual, reply_client)

    await handler.handle([text_event("こんにちは"), text_event("ルールは?", event_id="ev-2", reply_token="rt-2")])

    # private manual items are never served
    assert [text for _, text in reply_client.replies] == [FALLBACK_REPLY, FALLBACK_REPLY]


@pytest.mark.asyncio
async def test_handler_ignores_non_text_events(manual):
    reply_client = FakeReplyClient()
    handler = LineWebhookHandler(manual, reply_client)

    sent = await handler.handle([
        {"type": "follow", "replyToken": "rt-1"},
        {"type": "message", "replyToken": "rt-2", "message": {"type": "sticker"}},
    ])

    assert sent == 0
    assert reply_client.replies == []


@pytest.mark.asyncio
async def test_redelivered_event_replied_once(manual, fake_redis):
    reply_client = FakeReplyClient()
    handler = LineWebhookHandler(manual, reply_client, fake_redis)

    await handler.handle([text_event("料金")])
    sent = await handler.handle([text_event("料金")])

    assert sent == 0
    assert len(reply_client.replies) == 1


@pytest.mark.asyncio
async def test_failed_reply_not_counted(manual):
    handler = LineWebhookHandler(manual, FakeReplyClient(ok=False))
    assert await handler.handle([text_event("料金")]) == 0


@pytest.mark.asyncio
@respx.mock
async def test_reply_client_posts_message():
    route = respx.post(f"{LINE_URL}/v2/bot/message/reply").mock(return_value=httpx.Response(200, json={}))
    client = LineReplyClient("line-token", base_url=LINE_URL)

    assert await client.reply("rt-1", "hello")

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer line-token"
    assert json.loads(request.content) == {
        "replyToken": "rt-1",
        "messages": [{"type": "text", "text": "hello"}],
    }
    await client.aclose()


@pytest.mark.asyncio
@respx.mock
async def test_reply_client_errors_are_logged(caplog):
    respx.post(f"{LINE_URL}/v2/bot/message/reply").mock(return_value=httpx.Response(400, text="bad token"))
    client = LineReplyClient("line-token", base_url=LINE_URL)

    assert not await client.reply("rt-1", "hello")
    assert "line_reply_error" in caplog.text
    await client.aclose()


# -------- HTTP --------

class ExplodingHandler:
    async def handle(self, events):
        raise RuntimeError("boom")


@pytest_asyncio.fixture
async def http(manual):
    reply_client = FakeReplyClient()
    app.state.line_handler = LineWebhookHandler(manual, reply_client)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        client.replies = reply_client.replies
        yield client


@pytest.mark.asyncio
async def test_webhook_accepts_signed_body(http):
    body = json.dumps({"events": [text_event("料金")]}).encode()

    resp = await http.post("/webhooks/line", content=body, headers={"x-line-signature": sign(body)})

    assert resp.status_code == 200
    assert resp.text == "OK"
    assert len(http.replies) == 1


@pytest.mark.asyncio
async def test_webhook_missing_signature(http):
    resp = await http.post("/webhooks/line", content=b"{}")
    assert resp.status_code == 400
    assert resp.text == "Missing signature"


@pytest.mark.asyncio
async def test_webhook_bad_signature(http):
    body = b'{"events":[]}'
    resp = await http.post("/webhooks/line", content=body, headers={"x-line-signature": sign(body, "other")})
    assert resp.status_code == 401
    assert resp.text == "Invalid signature"


@pytest.mark.asyncio
async def test_webhook_handler_failure(http):
    app.state.line_handler = ExplodingHandler()
    body = b'{"events":[]}'

    resp = await http.post("/webhooks/line", content=body, headers={"x-line-signature": sign(body)})

    assert resp.status_code == 500
    assert resp.text == "Error"
