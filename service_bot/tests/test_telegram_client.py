"""
Unit tests for the Telegram Bot API client.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from service_bot.app.adapters.telegram_client import DELETE_KEYBOARD, TelegramClient
from shared.errors import UpstreamError


TOKEN = "123456:test-token"
API_URL = "https://api.telegram.org"


def response(status_code, body):
    return httpx.Response(
        status_code=status_code,
        json=body,
        request=httpx.Request("POST", f"{API_URL}/bot{TOKEN}/sendMessage"),
    )


class TestTelegramClient:
    """Test cases for TelegramClient."""

    @pytest.fixture
    def client(self):
        return TelegramClient(TOKEN, API_URL)

    @pytest.mark.asyncio
    async def test_send_message_payload(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_post = AsyncMock(return_value=response(200, {"ok": True, "result": {"message_id": 9}}))
            mock_client.return_value.__aenter__.return_value.post = mock_post

            result = await client.send_message(-100123, "`hi`", thread_id=5)

        assert result == {"message_id": 9}
        assert mock_post.call_args.args[0] == f"{API_URL}/bot{TOKEN}/sendMessage"
        assert mock_post.call_args.kwargs["json"] == {
            "chat_id": -100123,
            "text": "`hi`",
            "parse_mode": "Markdown",
            "reply_markup": DELETE_KEYBOARD,
            "message_thread_id": 5,
        }

    @pytest.mark.asyncio
    async def test_send_plain_message_without_button(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_post = AsyncMock(return_value=response(200, {"ok": True, "result": {}}))
            mock_client.return_value.__aenter__.return_value.post = mock_post

            await client.send_message(1, "plain", parse_mode=None, with_delete_button=False)

        assert mock_post.call_args.kwargs["json"] == {"chat_id": 1, "text": "plain"}

    @pytest.mark.asyncio
    async def test_api_error_description(self, client):
        body = {"ok": False, "error_code": 400, "description": "Bad Request: chat not found"}

        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=response(400, body))

            with pytest.raises(UpstreamError) as exc_info:
                await client.send_message(1, "hi")

        assert "chat not found" in exc_info.value.message
        assert exc_info.value.upstream_status == 400

    @pytest.mark.asyncio
    async def test_ok_false_with_200(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=response(200, {"ok": False, "description": "odd"})
            )

            with pytest.raises(UpstreamError):
                await client.delete_message(1, 2)

    @pytest.mark.asyncio
    async def test_network_error(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.ConnectTimeout("timed out")
            )

            with pytest.raises(UpstreamError) as exc_info:
                await client.send_message(1, "hi")

        assert exc_info.value.service == "telegram"

    @pytest.mark.asyncio
    async def test_set_webhook(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_post = AsyncMock(return_value=response(200, {"ok": True, "result": True}))
            mock_client.return_value.__aenter__.return_value.post = mock_post

            assert await client.set_webhook("https://bot.example.com/api/webhook", ["message"]) is True

        assert mock_post.call_args.kwargs["json"] == {
            "url": "https://bot.example.com/api/webhook",
            "allowed_updates": ["message"],
        }

    @pytest.mark.asyncio
    async def test_answer_callback_query_text(self, client):
        with patch('httpx.AsyncClient') as mock_client:
            mock_post = AsyncMock(return_value=response(200, {"ok": True, "result": True}))
            mock_client.return_value.__aenter__.return_value.post = mock_post

            await client.answer_callback_query("cb-1", text="Cannot delete this message")

        assert mock_post.call_args.args[0].endswith("/answerCallbackQuery")
        assert mock_post.call_args.kwargs["json"]["text"] == "Cannot delete this message"
