"""
Generative-AI client used by the /ask command.
"""

import hashlib
from typing import Any, Dict, Optional

import httpx

from shared.errors import RateLimitExceeded, UpstreamError
from shared.logging import get_logger

from service_bot.app.ratelimit.gateway import RateLimitedGateway


SYSTEM_PROMPT = (
    "You are a concise assistant in a cryptocurrency Telegram group. "
    "Answer in plain text, in at most a few short paragraphs."
)


class AIClient:
    """Client for the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        model: str,
        gateway: RateLimitedGateway,
        timeout: float = 30.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.gateway = gateway
        self.timeout = timeout
        self.logger = get_logger("bot.ai")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def ask(self, question: str) -> str:
        """Return the model's answer to ``question``."""
        if not self.enabled:
            raise UpstreamError(service="ai", message="AI API key not configured")

        url = f"{self.api_url}/models/{self.model}:generateContent"
        payload = {
            "contents": [
                {"parts": [{"text": f"{SYSTEM_PROMPT}\n\nQuestion: {question}"}]}
            ]
        }

        async def _request():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
            response.raise_for_status()
            return response.json()

        digest = hashlib.sha1(question.strip().lower().encode("utf-8")).hexdigest()
        try:
            data = await self.gateway.submit(_request, key=f"ai:{digest}")
        except RateLimitExceeded:
            raise
        except httpx.HTTPStatusError as exc:
            self.logger.error("AI request failed", status_code=exc.response.status_code)
            raise UpstreamError(
                service="ai",
                message=f"Unexpected status {exc.response.status_code}",
                status_code=exc.response.status_code
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error("AI request error", error=str(exc))
            raise UpstreamError(service="ai", message=str(exc)) from exc

        return self._extract_text(data)

    def _extract_text(self, data: Dict[str, Any]) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UpstreamError(service="ai", message="Malformed response", details={"body": data}) from exc

        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            raise UpstreamError(service="ai", message="Empty answer")
        return text
