import logging
import re
from abc import ABC, abstractmethod
from typing import Callable

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from auction_engine.config import settings
from auction_engine.db import crud
from auction_engine.services.events import NotificationEvent
from auction_engine.services.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

EXPO_TOKEN_RE = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
EXPO_CHUNK_SIZE = 100


class BaseNotifier(ABC):
    """Delivery channels the dispatcher drives. Each may fail on its own."""

    @abstractmethod
    async def persist(self, event: NotificationEvent) -> int | None:
        """Store the in-app notification; returns its id."""
        pass

    @abstractmethod
    async def push_live(self, event: NotificationEvent, notification_id: int | None = None) -> int:
        pass

    @abstractmethod
    async def push_mobile(self, event: NotificationEvent, notification_id: int | None = None) -> int:
        pass

    @abstractmethod
    async def send_external_message(self, event: NotificationEvent) -> bool:
        pass


def live_payload(event: NotificationEvent, notification_id: int | None) -> dict:
    return {
        "type": "notification",
        "notification": {
            "id": notification_id,
            "kind": event.kind.value,
            "variant": event.variant.value if event.variant else None,
            "title": event.title,
            "message": event.message,
            "auction_id": event.auction_id,
            "amount": event.amount,
            "is_read": False,
            "created_at": event.created_at.isoformat(),
        },
    }


class AppNotifier(BaseNotifier):
    """Database records, WebSocket push, Expo mobile push and the messaging webhook."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        connections: ConnectionRegistry,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        push_url: str = settings.EXPO_PUSH_URL,
        webhook_url: str = settings.NOTIFIER_WEBHOOK_URL,
    ):
        self.session_factory = session_factory
        self.connections = connections
        self.client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=settings.PUSH_TIMEOUT_SECONDS))
        self.push_url = push_url
        self.webhook_url = webhook_url

    async def persist(self, event: NotificationEvent) -> int | None:
        async with self.session_factory() as db:
            notification = await crud.add_notification(
                db,
                user_id=event.user_id,
                kind=event.kind.value,
                title=event.title,
                message=event.message,
                auction_id=event.auction_id,
            )
        logger.info(f"[Notify] Stored {event.kind.value} for user {event.user_id}: {event.title}")
        return notification.id

    async def push_live(self, event: NotificationEvent, notification_id: int | None = None) -> int:
        if not self.connections.is_connected(event.user_id):
            return 0
        return await self.connections.send(event.user_id, live_payload(event, notification_id))

    async def push_mobile(self, event: NotificationEvent, notification_id: int | None = None) -> int:
        async with self.session_factory() as db:
            tokens = await crud.get_device_tokens(db, event.user_id)
            valid = [t for t in tokens if EXPO_TOKEN_RE.match(t)]
            if not valid:
                return 0
            badge = await crud.count_unread(db, event.user_id)

        messages = [
            {
                "to": token,
                "sound": "default",
                "title": event.title,
                "body": event.message,
                "data": {
                    "notificationId": notification_id,
                    "type": event.kind.value,
                    "auctionId": event.auction_id,
                },
                "badge": badge,
            }
            for token in valid
        ]

        sent = 0
        unregistered = []
        errors = []
        async with self.client_factory() as client:
            for start in range(0, len(messages), EXPO_CHUNK_SIZE):
                chunk = messages[start:start + EXPO_CHUNK_SIZE]
                try:
                    resp = await client.post(self.push_url, json=chunk)
                    resp.raise_for_status()
                    tickets = resp.json().get("data", [])
                except (httpx.HTTPError, ValueError) as e:
                    logger.warning(f"[Push] Chunk for user {event.user_id} failed: {e}")
                    errors.append(e)
                    continue

                for message, ticket in zip(chunk, tickets):
                    if ticket.get("status") == "ok":
                        sent += 1
                        continue
                    details = ticket.get("details") or {}
                    if details.get("error") == "DeviceNotRegistered":
                        unregistered.append(details.get("expoPushToken") or message["to"])

        if unregistered:
            async with self.session_factory() as db:
                await crud.remove_device_tokens(db, unregistered)
            logger.info(f"[Push] Removed {len(unregistered)} unregistered tokens for user {event.user_id}")

        if errors and not sent:
            raise errors[0]
        return sent

    async def send_external_message(self, event: NotificationEvent) -> bool:
        if not self.webhook_url:
            logger.debug(f"[Notify] No webhook configured, skipping external {event.kind.value}")
            return False

        async with self.session_factory() as db:
            user = await crud.get_user(db, event.user_id)
        if not user or not (user.email or user.phone):
            logger.info(f"[Notify] User {event.user_id} has no email or phone, skipping external message")
            return False

        body = {
            "user_id": user.id,
            "name": user.display_name,
            "email": user.email,
            "phone": user.phone,
            "kind": event.kind.value,
            "auction_id": event.auction_id,
            "subject": event.title,
            "body": event.message,
        }
        async with self.client_factory() as client:
            resp = await client.post(self.webhook_url, json=body, timeout=settings.NOTIFIER_TIMEOUT_SECONDS)
            resp.raise_for_status()
        logger.info(f"[Notify] External {event.kind.value} sent to user {event.user_id}")
        return True
