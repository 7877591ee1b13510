"""
Telegram Bot API client.
"""

from typing import Any, Dict, List, Optional

import httpx

from shared.errors import UpstreamError
from shared.logging import get_logger


DELETE_CALLBACK = "delete_message"

DELETE_KEYBOARD = {
    "inline_keyboard": [
        [
            {
                "text": "Delete",
                "callback_data": DELETE_CALLBACK
            }
        ]
    ]
}


class TelegramClient:
    """Thin wrapper over the Bot API methods the bot uses.

    Sends are not routed through the request gateway: replies must go out
    even while price lookups are backing off.
    """

    def __init__(self, bot_token: str, api_url: str = "https://api.telegram.org", timeout: float = 10.0):
        self.bot_token = bot_token
        self.base_url = f"{api_url.rstrip('/')}/bot{bot_token}"
        self.timeout = timeout
        self.logger = get_logger("bot.telegram")

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            self.logger.error("Telegram request error", method=method, error=str(exc))
            raise UpstreamError(service="telegram", message=str(exc), details={"method": method}) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200 or not body.get("ok", False):
            description = body.get("description") or response.text
            self.logger.error(
                "Telegram request failed",
                method=method,
                status_code=response.status_code,
                description=description
            )
            raise UpstreamError(
                service="telegram",
                message=description or f"Unexpected status {response.status_code}",
                details={"method": method},
                status_code=response.status_code
            )

        return body.get("result")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        thread_id: Optional[int] = None,
        parse_mode: Optional[str] = "Markdown",
        with_delete_button: bool = True,
    ) -> Dict[str, Any]:
        """Send ``text`` to a chat, inside the forum topic when one is given."""
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if with_delete_button:
            payload["reply_markup"] = DELETE_KEYBOARD
        if thread_id:
            payload["message_thread_id"] = thread_id
        return await self._call("sendMessage", payload)

    async def send_photo(
        self,
        chat_id: int,
        photo_url: str,
        caption: Optional[str] = None,
        thread_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "photo": photo_url,
            "reply_markup": DELETE_KEYBOARD,
        }
        if caption:
            payload["caption"] = caption
            payload["parse_mode"] = "Markdown"
        if thread_id:
            payload["message_thread_id"] = thread_id
        return await self._call("sendPhoto", payload)

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        return bool(await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id}))

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> bool:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return bool(await self._call("answerCallbackQuery", payload))

    async def set_webhook(self, url: str, allowed_updates: Optional[List[str]] = None) -> bool:
        payload: Dict[str, Any] = {"url": url}
        if allowed_updates:
            payload["allowed_updates"] = allowed_updates
        return bool(await self._call("setWebhook", payload))

    async def get_webhook_info(self) -> Dict[str, Any]:
        return await self._call("getWebhookInfo", {})
