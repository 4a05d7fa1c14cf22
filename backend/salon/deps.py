from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.lifecycle import Actor, ActorRole
from .domain.repositories import NotificationDispatcher
from .infrastructure.notifications import WebhookNotificationDispatcher, notification_outbox
from .usecases.notifications import BookingNotifier
from .utils.auth import decode_access_token

_BEARER = {"WWW-Authenticate": "Bearer"}


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_current_actor(authorization: str | None = Header(default=None)) -> Actor:
    if authorization is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers=_BEARER,
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
            headers=_BEARER,
        )

    settings = get_settings()
    try:
        return decode_access_token(token.strip(), secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid or expired token",
            headers=_BEARER,
        ) from exc


async def get_staff_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.role == ActorRole.CLIENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="staff or admin role required")
    return actor


async def get_manager_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_manager:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin role required")
    return actor


def get_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    return WebhookNotificationDispatcher(
        settings.notification_webhook_url,
        timeout=settings.notification_timeout_seconds,
    )


def get_notifier(dispatcher: NotificationDispatcher = Depends(get_dispatcher)) -> BookingNotifier:
    return BookingNotifier(dispatcher, notification_outbox)
