import base64
import hashlib
import hmac
from typing import Optional

import httpx

from casting_assistant.logging_config import get_logger

logger = get_logger("line_service")

LINE_MESSAGE_LIMIT = 5000

QUICK_REPLIES = [
    {"type": "action", "action": {"type": "message", "label": "🔍 Talent Check", "text": "タレント検索"}},
    {"type": "action", "action": {"type": "message", "label": "⚠️ Alerts", "text": "アラート"}},
    {"type": "action", "action": {"type": "message", "label": "⚡ Risk Check", "text": "リスクチェック"}},
    {"type": "action", "action": {"type": "message", "label": "👤 Expert", "text": "専門家を探す"}},
]


def verify_line_signature(raw_body: bytes, signature: Optional[str], channel_secret: str) -> bool:
    """Check X-Line-Signature: base64(HMAC-SHA256(channel_secret, body))."""
    if not signature or not channel_secret:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature.strip())


class LineClient:
    """Reply sender for the LINE Messaging API."""

    BASE_URL = "https://api.line.me"

    def __init__(self, channel_access_token: str, base_url: str = BASE_URL, timeout_seconds: float = 10.0):
        self.channel_access_token = channel_access_token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def is_configured(self) -> bool:
        return bool(self.channel_access_token)

    async def reply(self, reply_token: str, text: str, quick_replies: Optional[list[dict]] = None) -> bool:
        """Send a text reply. Returns False (never raises) when delivery fails."""
        if not self.is_configured() or not reply_token:
            return False

        message: dict = {"type": "text", "text": text[:LINE_MESSAGE_LIMIT]}
        if quick_replies:
            message["quickReply"] = {"items": quick_replies}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.base_url}/v2/bot/message/reply",
                    headers={
                        "Authorization": f"Bearer {self.channel_access_token}",
                        "Content-Type": "application/json",
                    },
                    json={"replyToken": reply_token, "messages": [message]},
                )
        except httpx.HTTPError as e:
            logger.error(f"LINE API error: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"LINE reply failed: {response.status_code} - {response.text[:200]}")
            return False
        return True
