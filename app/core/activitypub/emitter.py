"""Outbound activity construction.

Builders here are pure: given the same identities they return the same
activity, which is what makes a re-sent Accept byte-identical to the first.
``ReplyEmitter`` wraps a builder result in an ``OutboundActivity`` and hands
it to the delivery subsystem.
"""

import logging
from typing import Any, Dict, List, Optional

import orjson
from pydantic import BaseModel

from app.core.activitypub.utils import (
    AS_CONTEXT,
    create_note_object,
    derive_activity_id,
    isoformat,
)
from app.models.activitypub import FollowRelationship, LocalUser, Post

logger = logging.getLogger(__name__)


class OutboundActivity(BaseModel):
    """An activity addressed to one remote actor, waiting for delivery."""

    recipient: str
    inbox: Optional[str] = None
    activity: Dict[str, Any]

    def body(self) -> bytes:
        return encode_activity(self.activity)


def encode_activity(activity: Dict[str, Any]) -> bytes:
    """Canonical JSON encoding used on the wire."""
    return orjson.dumps(activity, option=orjson.OPT_SORT_KEYS)


def _require(value: Optional[str], name: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    return value


def build_accept(
    local_actor_id: str,
    remote_actor_id: str,
    follow_activity_id: Optional[str] = None,
) -> Dict[str, Any]:
    """建立 Accept(Follow) 活動

    The id is derived from the three inputs and no timestamp is included.
    """
    _require(local_actor_id, "local_actor_id")
    _require(remote_actor_id, "remote_actor_id")

    follow: Dict[str, Any] = {
        "type": "Follow",
        "actor": remote_actor_id,
        "object": local_actor_id,
    }
    if follow_activity_id:
        follow["id"] = follow_activity_id

    return {
        "@context": AS_CONTEXT,
        "id": derive_activity_id(
            local_actor_id, "Accept", local_actor_id, remote_actor_id, follow_activity_id
        ),
        "type": "Accept",
        "actor": local_actor_id,
        "object": follow,
        "to": [remote_actor_id],
    }


def build_follow(local_actor_id: str, remote_actor_id: str, activity_id: str) -> Dict[str, Any]:
    """建立 Follow 活動"""
    return {
        "@context": AS_CONTEXT,
        "id": _require(activity_id, "activity_id"),
        "type": "Follow",
        "actor": _require(local_actor_id, "local_actor_id"),
        "object": _require(remote_actor_id, "remote_actor_id"),
        "to": [remote_actor_id],
    }


def build_undo(local_actor_id: str, follow: Dict[str, Any]) -> Dict[str, Any]:
    """建立 Undo(Follow) 活動"""
    embedded = {key: value for key, value in follow.items() if key != "@context"}
    return {
        "@context": AS_CONTEXT,
        "id": derive_activity_id(local_actor_id, "Undo", embedded.get("id"), embedded.get("object")),
        "type": "Undo",
        "actor": local_actor_id,
        "object": embedded,
        "to": [embedded.get("object")],
    }


def build_create_note(user: LocalUser, post: Post) -> Dict[str, Any]:
    """建立 Create(Note) 活動"""
    note = create_note_object(post, user)
    return {
        "@context": AS_CONTEXT,
        "id": f"{post.id}/activity",
        "type": "Create",
        "actor": user.actor_id,
        "published": isoformat(post.created_at),
        "to": note["to"],
        "cc": note["cc"],
        "object": note,
    }


class ReplyEmitter:
    """Builds outbound activities and queues them on the delivery subsystem.

    ``delivery`` only needs an ``enqueue(outbound)`` method; failures after
    that point are the delivery subsystem's concern.
    """

    def __init__(self, delivery):
        self.delivery = delivery

    def _send(self, relationship: FollowRelationship, activity: Dict[str, Any]) -> OutboundActivity:
        outbound = OutboundActivity(
            recipient=relationship.remote_actor.id,
            inbox=relationship.remote_actor.inbox,
            activity=activity,
        )
        self.delivery.enqueue(outbound)
        return outbound

    def accept_follow(
        self,
        user: LocalUser,
        relationship: FollowRelationship,
        follow_activity_id: Optional[str] = None,
    ) -> OutboundActivity:
        activity = build_accept(
            user.actor_id,
            relationship.remote_actor.id,
            follow_activity_id or relationship.follow_activity_id,
        )
        logger.debug("Queueing %s for %s", activity["id"], relationship.remote_actor.id)
        return self._send(relationship, activity)

    def follow(self, user: LocalUser, relationship: FollowRelationship) -> OutboundActivity:
        activity = build_follow(
            user.actor_id, relationship.remote_actor.id, relationship.follow_activity_id
        )
        return self._send(relationship, activity)

    def undo_follow(self, user: LocalUser, relationship: FollowRelationship) -> OutboundActivity:
        follow = build_follow(
            user.actor_id, relationship.remote_actor.id, relationship.follow_activity_id
        )
        return self._send(relationship, build_undo(user.actor_id, follow))

    def publish_post(self, user: LocalUser, post: Post, followers) -> List[OutboundActivity]:
        """Send Create(Note) to every follower in ``followers``."""
        activity = build_create_note(user, post)
        return [self._send(relationship, activity) for relationship in followers]
