"""LINE chat webhook: keyword lookup in the staff manual, one reply per event."""

import base64
import hashlib
import hmac
import logging

import httpx
from sqlalchemy import select

from shared.idempotency import claim

from .models import ManualItem, ManualItemTag

logger = logging.getLogger(__name__)

KEYWORDS = [
    "ビアポン", "ダーツ", "料金", "延長", "会計",
    "泥酔", "トラブル", "ルール", "予約",
]

FALLBACK_REPLY = "該当するマニュアルが見つかりませんでした。店長に確認してください🙏"

REPLY_DEDUP_TTL = 86400


def validate_signature(secret: str, raw_body: bytes, signature: str) -> bool:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)


def match_keyword(text: str) -> str | None:
    for keyword in KEYWORDS:
        if keyword in text:
            return keyword
    return None


def format_answer(item: ManualItem) -> str:
    return f"【{item.category or 'マニュアル'}】\n{item.answer or ''}"


async def find_manual_item(session_factory, keyword: str) -> ManualItem | None:
    """First public manual item tagged with `keyword`."""
    async with session_factory() as db:
        res = await db.execute(
            select(ManualItem)
            .join(ManualItemTag, ManualItemTag.item_id == ManualItem.id)
            .where(ManualItemTag.tag == keyword, ManualItem.is_public.is_(True))
            .order_by(ManualItem.id)
            .limit(1)
        )
        return res.scalar_one_or_none()


class LineReplyClient:
    def __init__(self, token: str | None, base_url: str, timeout: float = 5.0, http: httpx.AsyncClient | None = None):
        self.token = token
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def reply(self, reply_token: str, text: str) -> bool:
        """Best effort: failures are logged and reported as False."""
        try:
            resp = await self.http.post(
                "/v2/bot/message/reply",
                json={"replyToken": reply_token, "messages": [{"type": "text", "text": text}]},
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.HTTPError as e:
            logger.error("line_reply_failed: %s", e)
            return False

        if resp.is_error:
            logger.error("line_reply_error: status=%s body=%s", resp.status_code, resp.text)
            return False
        return True

    async def aclose(self):
        await self.http.aclose()


class LineWebhookHandler:
    def __init__(self, session_factory, reply_client: LineReplyClient, redis_client=None):
        self.session_factory = session_factory
        self.reply_client = reply_client
        self.redis = redis_client

    async def answer_for(self, text: str) -> str:
        keyword = match_keyword(text)
        if not keyword:
            return FALLBACK_REPLY
        item = await find_manual_item(self.session_factory, keyword)
        if not item:
            return FALLBACK_REPLY
        return format_answer(item)

    async def _first_delivery(self, event: dict) -> bool:
        event_id = event.get("webhookEventId")
        if not self.redis or not event_id:
            return True
        return await claim(self.redis, f"line:{event_id}", ttl=REPLY_DEDUP_TTL)

    async def handle(self, events: list[dict]) -> int:
        """Reply to every text message event; returns the number of replies sent."""
        sent = 0
        for event in events:
            if event.get("type") != "message":
                continue
            message = event.get("message") or {}
            if message.get("type") != "text":
                continue

            if not await self._first_delivery(event):
                logger.info("line_event_redelivered: event_id=%s", event.get("webhookEventId"))
                continue

            text = (message.get("text") or "").strip()
            reply = await self.answer_for(text)
            if await self.reply_client.reply(event.get("replyToken"), reply):
                sent += 1
        return sent
