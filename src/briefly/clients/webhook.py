"""Chat webhook client (Discord-compatible) for Briefly."""

from typing import Any

import httpx

from briefly.errors import NonRetryableError
from briefly.utils.logging import get_logger

logger = get_logger(__name__)

MAX_EMBEDS_PER_MESSAGE = 10
# Delivers the message without a push notification
SUPPRESS_NOTIFICATIONS = 4096


class WebhookNotConfiguredError(NonRetryableError):
    """Raised when chat delivery is requested without a webhook URL."""


class WebhookError(Exception):
    """Raised when the webhook rejects a message."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"webhook failed ({status_code}): {body}")


class ChatWebhookClient:
    """Posts JSON messages to a chat webhook."""

    def __init__(self, webhook_url: str | None, timeout: float = 30.0) -> None:
        self._webhook_url = webhook_url
        self._client = httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self._webhook_url)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "ChatWebhookClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def post_message(self, content: str) -> None:
        """Post a plain text message.

        Raises:
            WebhookNotConfiguredError: If no webhook URL is set.
            WebhookError: If the webhook answers with a non-2xx status.
        """
        await self._post({"content": content})

    async def post_embeds(self, embeds: list[dict[str, Any]], silent: bool = True) -> None:
        """Post up to MAX_EMBEDS_PER_MESSAGE embeds in a single message.

        Raises:
            ValueError: If more embeds are given than one message may carry.
            WebhookNotConfiguredError: If no webhook URL is set.
            WebhookError: If the webhook answers with a non-2xx status.
        """
        if len(embeds) > MAX_EMBEDS_PER_MESSAGE:
            raise ValueError(
                f"at most {MAX_EMBEDS_PER_MESSAGE} embeds per message, got {len(embeds)}"
            )
        payload: dict[str, Any] = {"embeds": embeds}
        if silent:
            payload["flags"] = SUPPRESS_NOTIFICATIONS
        await self._post(payload)

    async def _post(self, payload: dict[str, Any]) -> None:
        if not self._webhook_url:
            raise WebhookNotConfiguredError(
                "BRIEFLY_CHAT_WEBHOOK_URL is not set. Configure it in your environment."
            )
        response = await self._client.post(self._webhook_url, json=payload)
        if not response.is_success:
            raise WebhookError(response.status_code, response.text)
        logger.debug("Webhook message posted", status=response.status_code)
