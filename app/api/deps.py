"""Dependency providers for route handlers.

Shared services live on ``app.state`` and are created once by the
application lifespan (see ``app.main``). Tests may place their own store and
delivery on ``app.state`` before the app starts; those are kept.
"""

import logging
from typing import Annotated, Optional

import httpx
from fastapi import Depends, FastAPI, Request

from app.core.activitypub.emitter import ReplyEmitter
from app.core.activitypub.federation import ActivityDelivery
from app.core.activitypub.store import FollowStore, GraphQLFollowStore, MemoryFollowStore
from app.core.config import settings
from app.core.exceptions import AccountNotConfigured, StoreUnavailable
from app.core.graphql_client import GraphQLClient
from app.models.activitypub import LocalUser

logger = logging.getLogger(__name__)


def build_store() -> FollowStore:
    if settings.GRAPHQL_MOCK:
        logger.info("GRAPHQL_MOCK set; using the in-memory store")
        return MemoryFollowStore()
    return GraphQLFollowStore()


async def init_services(app: FastAPI) -> None:
    """Create the store, delivery and emitter, then load the local user."""
    state = app.state
    if getattr(state, "store", None) is None:
        if not settings.GRAPHQL_MOCK:
            # 建立共享 httpx AsyncClient（連線池、逾時）
            GraphQLClient.set_shared_client(
                httpx.AsyncClient(
                    timeout=httpx.Timeout(10.0, read=20.0),
                    limits=httpx.Limits(max_connections=100, max_keepalive_connections=100),
                    headers={"User-Agent": settings.USER_AGENT},
                )
            )
        state.store = build_store()
    if getattr(state, "delivery", None) is None:
        state.delivery = ActivityDelivery()
    state.emitter = ReplyEmitter(state.delivery)

    state.local_user = None
    try:
        state.local_user = await state.store.get_local_user()
    except StoreUnavailable as e:
        logger.error("Could not load the local user at startup: %s", e.message)

    if state.local_user is None:
        logger.warning("No local account yet; POST %s/account to create it", settings.API_V1_STR)
    else:
        logger.info("Serving %s", state.local_user.actor_id)


async def shutdown_services(app: FastAPI) -> None:
    delivery = getattr(app.state, "delivery", None)
    if isinstance(delivery, ActivityDelivery):
        await delivery.aclose()

    client = GraphQLClient.shared_client
    if client is not None:
        await client.aclose()
    GraphQLClient.set_shared_client(None)


def get_store(request: Request) -> FollowStore:
    return request.app.state.store


def get_emitter(request: Request) -> ReplyEmitter:
    return request.app.state.emitter


async def get_optional_local_user(request: Request) -> Optional[LocalUser]:
    """The local user, loaded on first use if startup could not load it."""
    state = request.app.state
    if state.local_user is None:
        state.local_user = await state.store.get_local_user()
    return state.local_user


async def get_local_user(
    user: Annotated[Optional[LocalUser], Depends(get_optional_local_user)],
) -> LocalUser:
    if user is None:
        raise AccountNotConfigured()
    return user


StoreDep = Annotated[FollowStore, Depends(get_store)]
EmitterDep = Annotated[ReplyEmitter, Depends(get_emitter)]
LocalUserDep = Annotated[LocalUser, Depends(get_local_user)]
OptionalLocalUserDep = Annotated[Optional[LocalUser], Depends(get_optional_local_user)]
