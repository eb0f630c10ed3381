"""Reconciliation of inbox activities against the Follow State Store.

Every transition is a compare-and-set keyed by the expected prior state, and
all reads and writes for one remote actor run under that actor's key lock.
Replayed activities therefore fall through to a no-op instead of creating a
second edge or re-applying a stale transition.
"""

import logging
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel

from app.core.activitypub.emitter import OutboundActivity, ReplyEmitter
from app.core.activitypub.normalizer import normalize_activity
from app.core.activitypub.store import FollowStore
from app.core.exceptions import LateOrUnknownReply, MalformedActivity, WrongRecipient
from app.models.activitypub import (
    Direction,
    FollowAccepted,
    FollowRejected,
    FollowRelationship,
    FollowRequest,
    FollowState,
    InboxActivity,
    LocalUser,
    UnfollowRequest,
)

logger = logging.getLogger(__name__)


class InboxStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"  # recognized replay, absorbed
    IGNORED = "ignored"  # late or unknown reply


class InboxResult(BaseModel):
    status: InboxStatus
    relationship: Optional[FollowRelationship] = None
    outbound: List[OutboundActivity] = []


class FollowDecision(str, Enum):
    CREATE_AND_ACCEPT = "create_and_accept"
    REPLACE_AND_ACCEPT = "replace_and_accept"
    ACCEPT_PENDING = "accept_pending"
    REPLAY_ACCEPT = "replay_accept"


def _answers_other_follow(follow_activity_id: Optional[str], relationship: FollowRelationship) -> bool:
    """True when the activity names a Follow other than the one behind ``relationship``."""
    return bool(
        follow_activity_id
        and relationship.follow_activity_id
        and follow_activity_id != relationship.follow_activity_id
    )


def decide_follow(
    existing: Optional[FollowRelationship], follow_activity_id: Optional[str] = None
) -> FollowDecision:
    """Auto-accept policy for an incoming Follow.

    Every follower is accepted; the only question is whether this needs a new
    edge, a pending edge finished, or just the Accept sent again. A Follow
    with a new id replaces the active edge so a later Undo of it matches.
    """
    if existing is None or existing.state == FollowState.REMOVED:
        return FollowDecision.CREATE_AND_ACCEPT
    if _answers_other_follow(follow_activity_id, existing):
        return FollowDecision.REPLACE_AND_ACCEPT
    if existing.state == FollowState.PENDING:
        return FollowDecision.ACCEPT_PENDING
    return FollowDecision.REPLAY_ACCEPT


async def process_follow(
    activity: FollowRequest, user: LocalUser, store: FollowStore, emitter: ReplyEmitter
) -> InboxResult:
    """處理 Follow 活動"""
    actor = activity.actor
    async with store.locked(Direction.INCOMING, actor.id):
        relationship = await store.get_active(Direction.INCOMING, actor.id)
        status = InboxStatus.DUPLICATE

        decision = decide_follow(relationship, activity.activity_id)
        if decision == FollowDecision.REPLACE_AND_ACCEPT:
            await store.transition(relationship.id, relationship.state, FollowState.REMOVED)
            logger.info("Follow %s from %s replaces %s", activity.activity_id, actor.id, relationship.follow_activity_id)

        if decision in (FollowDecision.CREATE_AND_ACCEPT, FollowDecision.REPLACE_AND_ACCEPT):
            relationship, created = await store.insert_or_fetch(
                Direction.INCOMING, actor, FollowState.PENDING, activity.activity_id
            )
            if created:
                status = InboxStatus.PROCESSED

        if relationship.state == FollowState.PENDING:
            accepted = await store.transition(relationship.id, FollowState.PENDING, FollowState.ACCEPTED)
            if accepted is None:
                # Moved on elsewhere; go with whatever is active now.
                accepted = await store.get_active(Direction.INCOMING, actor.id)
                if accepted is None:
                    logger.info("Follow from %s was withdrawn while being accepted", actor.id)
                    return InboxResult(status=InboxStatus.IGNORED)
            relationship = accepted

        outbound = emitter.accept_follow(user, relationship, activity.activity_id)

    if status == InboxStatus.PROCESSED:
        logger.info("Accepted new follower %s", actor.id)
    else:
        logger.info("Duplicate Follow from %s; Accept sent again", actor.id)
    return InboxResult(status=status, relationship=relationship, outbound=[outbound])


async def process_unfollow(activity: UnfollowRequest, store: FollowStore) -> InboxResult:
    """處理 Undo(Follow) 活動"""
    actor = activity.actor
    async with store.locked(Direction.INCOMING, actor.id):
        existing = await store.get_active(Direction.INCOMING, actor.id)
        if existing is None:
            logger.debug("Undo(Follow) from non-follower %s ignored", actor.id)
            return InboxResult(status=InboxStatus.DUPLICATE)
        if _answers_other_follow(activity.follow_activity_id, existing):
            logger.info("Undo from %s names an earlier Follow %s; ignored", actor.id, activity.follow_activity_id)
            return InboxResult(status=InboxStatus.DUPLICATE, relationship=existing)

        removed = await store.transition(existing.id, existing.state, FollowState.REMOVED)

    if removed is None:
        return InboxResult(status=InboxStatus.DUPLICATE)
    logger.info("Follower %s removed", actor.id)
    return InboxResult(status=InboxStatus.PROCESSED, relationship=removed)


def _late_reply(kind: str, actor_id: str, follow_activity_id: Optional[str] = None) -> InboxResult:
    detail = f" for {follow_activity_id}" if follow_activity_id else ""
    reply = LateOrUnknownReply(f"{kind}{detail} from {actor_id} matches no pending outgoing follow")
    logger.warning(reply.message)
    return InboxResult(status=InboxStatus.IGNORED)


async def process_accept(activity: FollowAccepted, store: FollowStore) -> InboxResult:
    """處理 Accept 活動"""
    actor = activity.actor
    async with store.locked(Direction.OUTGOING, actor.id):
        existing = await store.get_active(Direction.OUTGOING, actor.id)
        if existing is None:
            return _late_reply("Accept", actor.id)
        if _answers_other_follow(activity.follow_activity_id, existing):
            return _late_reply("Accept", actor.id, activity.follow_activity_id)
        if existing.state == FollowState.ACCEPTED:
            return InboxResult(status=InboxStatus.DUPLICATE, relationship=existing)

        accepted = await store.transition(existing.id, FollowState.PENDING, FollowState.ACCEPTED)

    if accepted is None:
        return InboxResult(status=InboxStatus.DUPLICATE)
    logger.info("Follow of %s accepted", actor.id)
    return InboxResult(status=InboxStatus.PROCESSED, relationship=accepted)


async def process_reject(activity: FollowRejected, store: FollowStore) -> InboxResult:
    """處理 Reject 活動"""
    actor = activity.actor
    async with store.locked(Direction.OUTGOING, actor.id):
        existing = await store.get_active(Direction.OUTGOING, actor.id)
        if existing is None:
            return _late_reply("Reject", actor.id)
        if _answers_other_follow(activity.follow_activity_id, existing):
            return _late_reply("Reject", actor.id, activity.follow_activity_id)

        removed = await store.transition(existing.id, existing.state, FollowState.REMOVED)

    if removed is None:
        return InboxResult(status=InboxStatus.DUPLICATE)
    logger.info("Follow of %s rejected", actor.id)
    return InboxResult(status=InboxStatus.PROCESSED, relationship=removed)


async def process_activity(
    activity: InboxActivity, user: LocalUser, store: FollowStore, emitter: ReplyEmitter
) -> InboxResult:
    """Apply a normalized inbox activity to the store."""
    if isinstance(activity, FollowRequest):
        return await process_follow(activity, user, store, emitter)
    elif isinstance(activity, UnfollowRequest):
        return await process_unfollow(activity, store)
    elif isinstance(activity, FollowAccepted):
        return await process_accept(activity, store)
    elif isinstance(activity, FollowRejected):
        return await process_reject(activity, store)
    raise TypeError(f"Unhandled inbox activity: {type(activity).__name__}")


async def handle_inbox_activity(
    payload: Any, user: LocalUser, store: FollowStore, emitter: ReplyEmitter
) -> InboxResult:
    """接收並處理收件匣活動

    Raises:
        MalformedActivity: Invalid or unsupported payload; nothing was changed.
        WrongRecipient: The activity is not for the local user; nothing was changed.
        StoreUnavailable: The data service failed; the sender should retry.
    """
    try:
        activity = normalize_activity(payload, user.actor_id)
    except (MalformedActivity, WrongRecipient) as e:
        logger.info("Rejected inbox activity: %s", e.message)
        raise

    return await process_activity(activity, user, store, emitter)
