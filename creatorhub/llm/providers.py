import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from ..config import get_settings
from ..exceptions import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)


class ChatProvider(Protocol):
    async def complete(self, payload: Dict[str, Any]) -> str: ...


class ImageProvider(Protocol):
    async def generate(self, payload: Dict[str, Any]) -> Any: ...


class EchoProvider:
    """Local stand-in used when no inference webhook is configured."""

    billable = False

    async def complete(self, payload: Dict[str, Any]) -> str:
        return f"[echo] {payload.get('message', '')}"


async def _post_json(service: str, url: str, payload: Dict[str, Any], timeout: float) -> Any:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload)
    except httpx.TimeoutException:
        raise ExternalServiceError(service, f"timed out after {timeout:g}s")
    except httpx.HTTPError as e:
        raise ExternalServiceError(service, f"unreachable: {e}")

    if response.status_code >= 400:
        raise ExternalServiceError(service, response.text[:500] or "request failed", response.status_code)
    try:
        return response.json()
    except ValueError:
        # n8n "respond with text" nodes return a bare body
        return response.text


class N8nChatProvider:
    billable = True

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout

    async def complete(self, payload: Dict[str, Any]) -> str:
        data = await _post_json("n8n-chat", self.url, payload, self.timeout)
        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, str):
            return data
        if isinstance(data, dict):
            reply = data.get("reply") or data.get("output") or data.get("text")
            if isinstance(reply, str) and reply:
                return reply
        raise ExternalServiceError("n8n-chat", "response carried no reply")


class N8nImageProvider:
    def __init__(self, url: Optional[str], timeout: float):
        self.url = url
        self.timeout = timeout

    async def generate(self, payload: Dict[str, Any]) -> Any:
        if not self.url:
            raise ConfigurationError("n8n_image_webhook_url", "image generation webhook is not configured")
        return await _post_json("n8n-image", self.url, payload, self.timeout)


def get_chat_provider() -> ChatProvider:
    settings = get_settings()
    if not settings.n8n_chat_webhook_url:
        logger.warning("N8N chat webhook URL not set; replies come from the echo provider")
        return EchoProvider()
    return N8nChatProvider(settings.n8n_chat_webhook_url, settings.chat_timeout_seconds)


def get_image_provider() -> ImageProvider:
    settings = get_settings()
    return N8nImageProvider(settings.n8n_image_webhook_url, settings.image_timeout_seconds)
