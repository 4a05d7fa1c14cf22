"""
Deliver booking notifications to an external webhook.
If NOTIFICATION_WEBHOOK_URL is not configured, send only logs and returns False.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from ..database import async_session
from ..domain.repositories import NotificationRepository
from .repositories import SqlAlchemyNotificationRepository

logger = logging.getLogger(__name__)


class WebhookNotificationDispatcher:
    def __init__(
        self,
        url: str | None,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(
        self,
        *,
        client_id: int,
        template_type: str,
        language: str,
        params: dict[str, Any],
    ) -> bool:
        """Returns True if the webhook accepted the message (2xx), False otherwise."""
        if not self.url:
            logger.info("notification webhook not configured; skipping %s for client %s", template_type, client_id)
            return False
        payload = {
            "client_id": client_id,
            "template_type": template_type,
            "language": language,
            "params": params,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("notification webhook request failed: %s", e, exc_info=True)
            return False
        if resp.is_success:
            return True
        logger.warning("notification webhook returned %s for %s: %s", resp.status_code, template_type, resp.text)
        return False


@asynccontextmanager
async def notification_outbox() -> AsyncIterator[NotificationRepository]:
    """Outbox writes made after the booking transaction has committed."""
    async with async_session() as session:
        async with session.begin():
            yield SqlAlchemyNotificationRepository(session)
