from fastapi import APIRouter, HTTPException
from fastapi.responses import ORJSONResponse

from app.api.deps import LocalUserDep, StoreDep
from app.core.config import settings
from app.core.activitypub.emitter import build_create_note
from app.core.activitypub.utils import create_actor_object, create_ordered_collection
from app.models.activitypub import Direction, FollowState, LocalUser

actor_router = APIRouter()

ACTIVITY_JSON = "application/activity+json"


def _check_username(username: str, user: LocalUser) -> None:
    if username != user.username:
        raise HTTPException(status_code=404, detail="Actor not found")


def _activity_response(data) -> ORJSONResponse:
    return ORJSONResponse(data, media_type=ACTIVITY_JSON)


@actor_router.get("/{username}")
async def get_actor(username: str, user: LocalUserDep):
    """Get Actor information"""
    _check_username(username, user)
    return _activity_response(create_actor_object(user))


@actor_router.get("/{username}/followers")
async def get_followers(username: str, user: LocalUserDep, store: StoreDep):
    """Get followers list"""
    _check_username(username, user)
    followers = await store.list_active(
        Direction.INCOMING, FollowState.ACCEPTED, limit=settings.MAX_COLLECTION_ITEMS
    )
    items = [r.remote_actor.id for r in followers]
    return _activity_response(create_ordered_collection(user.followers_url, items))


@actor_router.get("/{username}/following")
async def get_following(username: str, user: LocalUserDep, store: StoreDep):
    """Get following list"""
    _check_username(username, user)
    following = await store.list_active(
        Direction.OUTGOING, FollowState.ACCEPTED, limit=settings.MAX_COLLECTION_ITEMS
    )
    items = [r.remote_actor.id for r in following]
    return _activity_response(create_ordered_collection(user.following_url, items))


@actor_router.get("/{username}/outbox")
async def get_outbox(username: str, user: LocalUserDep, store: StoreDep):
    """Get outbox"""
    _check_username(username, user)
    posts = await store.list_posts(limit=settings.MAX_COLLECTION_ITEMS)
    items = [build_create_note(user, post) for post in posts]
    return _activity_response(create_ordered_collection(user.outbox_url, items))
