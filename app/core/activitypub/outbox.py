"""Actions the local user initiates: follow, unfollow and posting."""

import logging
from typing import List, Optional, Tuple

from app.core.activitypub.emitter import OutboundActivity, ReplyEmitter
from app.core.activitypub.store import FollowStore
from app.core.activitypub.utils import generate_activity_id, generate_post_id
from app.models.activitypub import (
    Direction,
    FollowRelationship,
    FollowState,
    LocalUser,
    Post,
    PostOrigin,
    RemoteActor,
)

logger = logging.getLogger(__name__)


async def follow_remote(
    actor: RemoteActor, user: LocalUser, store: FollowStore, emitter: ReplyEmitter
) -> Tuple[FollowRelationship, Optional[OutboundActivity]]:
    """追蹤遠端 Actor

    Creates a pending outgoing relationship and sends Follow. Following an
    actor we already follow (or are waiting on) returns the existing
    relationship; a still-pending one gets its Follow sent again.
    """
    if actor.id == user.actor_id:
        raise ValueError("The local user cannot follow itself")

    async with store.locked(Direction.OUTGOING, actor.id):
        relationship, created = await store.insert_or_fetch(
            Direction.OUTGOING,
            actor,
            FollowState.PENDING,
            generate_activity_id(user.actor_id, "Follow"),
        )
        if relationship.state != FollowState.PENDING:
            return relationship, None
        outbound = emitter.follow(user, relationship)

    if created:
        logger.info("Following %s (waiting for Accept)", actor.id)
    return relationship, outbound


async def unfollow_remote(
    actor_id: str, user: LocalUser, store: FollowStore, emitter: ReplyEmitter
) -> Tuple[Optional[FollowRelationship], Optional[OutboundActivity]]:
    """取消追蹤；未追蹤時不做任何事"""
    async with store.locked(Direction.OUTGOING, actor_id):
        existing = await store.get_active(Direction.OUTGOING, actor_id)
        if existing is None:
            return None, None

        removed = await store.transition(existing.id, existing.state, FollowState.REMOVED)
        if removed is None:
            return None, None
        outbound = emitter.undo_follow(user, removed)

    logger.info("Unfollowed %s", actor_id)
    return removed, outbound


async def publish_post(
    body: str, user: LocalUser, store: FollowStore, emitter: ReplyEmitter
) -> Tuple[Post, List[OutboundActivity]]:
    """發佈貼文並送給所有已接受的追蹤者"""
    post = await store.create_post(
        Post(id=generate_post_id(user.actor_id), author=user.actor_id, body=body, origin=PostOrigin.LOCAL)
    )
    followers = await store.list_active(Direction.INCOMING, FollowState.ACCEPTED)
    outbound = emitter.publish_post(user, post, followers)
    logger.info("Published %s to %d followers", post.id, len(outbound))
    return post, outbound
