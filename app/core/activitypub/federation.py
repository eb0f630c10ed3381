"""Delivery subsystem: POSTs outbound activities to remote inboxes.

Delivery runs in background tasks so inbox handling never waits on a remote
server. Retries are limited to httpx transport retries; a remote that stays
unreachable is logged and dropped.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from app.core.config import settings
from app.core.activitypub.emitter import OutboundActivity

logger = logging.getLogger(__name__)

ACTIVITY_JSON = "application/activity+json"


async def discover_actor(actor_id: str, client: httpx.AsyncClient) -> Optional[Dict[str, Any]]:
    """發現遠端 Actor"""
    try:
        response = await client.get(
            actor_id,
            headers={"Accept": ACTIVITY_JSON, "User-Agent": settings.USER_AGENT},
        )
    except httpx.HTTPError as e:
        logger.warning("Error discovering actor %s: %s", actor_id, e)
        return None

    if response.status_code == 200:
        return response.json()

    logger.warning("Failed to discover actor %s: %s", actor_id, response.status_code)
    return None


class ActivityDelivery:
    """Queue outbound activities for asynchronous delivery.

    Args:
        client: Optional httpx client; one with transport retries is created
            on first use otherwise.
        enabled: When False, activities are logged and dropped.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, enabled: Optional[bool] = None):
        self._client = client
        self._owns_client = client is None
        self.enabled = settings.FEDERATION_ENABLED if enabled is None else enabled
        self._tasks: Set[asyncio.Task] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            transport = httpx.AsyncHTTPTransport(retries=settings.DELIVERY_RETRIES)
            self._client = httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT, transport=transport)
        return self._client

    def enqueue(self, outbound: OutboundActivity) -> None:
        if not self.enabled:
            logger.info("Federation disabled; dropping %s for %s", outbound.activity.get("type"), outbound.recipient)
            return
        task = asyncio.get_running_loop().create_task(self.deliver(outbound))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def resolve_inbox(self, outbound: OutboundActivity) -> Optional[str]:
        if outbound.inbox:
            return outbound.inbox
        actor = await discover_actor(outbound.recipient, self.client)
        inbox = actor.get("inbox") if actor else None
        return inbox if isinstance(inbox, str) else None

    async def deliver(self, outbound: OutboundActivity) -> bool:
        """發送活動到遠端收件匣"""
        inbox = await self.resolve_inbox(outbound)
        if not inbox:
            logger.warning("No inbox known for %s; dropping %s", outbound.recipient, outbound.activity.get("id"))
            return False

        try:
            response = await self.client.post(
                inbox,
                content=outbound.body(),
                headers={"Content-Type": ACTIVITY_JSON, "User-Agent": settings.USER_AGENT},
            )
        except httpx.HTTPError as e:
            logger.warning("Error sending %s to %s: %s", outbound.activity.get("id"), inbox, e)
            return False

        if response.status_code in (200, 201, 202, 204):
            logger.info("Delivered %s to %s", outbound.activity.get("type"), inbox)
            return True

        logger.warning("Failed to send %s to %s: %s", outbound.activity.get("id"), inbox, response.status_code)
        return False

    async def aclose(self) -> None:
        """Wait for in-flight deliveries, then close the client we own."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
