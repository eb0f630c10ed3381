"""Inbox activity normalizer.

Turns a raw ActivityPub payload into one of the recognized inbox activity
kinds, or rejects it. Nothing here touches the store or the network.
"""

from typing import Any, Dict, Optional

from app.core.exceptions import MalformedActivity, WrongRecipient
from app.models.activitypub import (
    FollowAccepted,
    FollowRejected,
    FollowRequest,
    InboxActivity,
    RemoteActor,
    UnfollowRequest,
)


def _reference_id(value: Any, field: str) -> str:
    """取得參照 ID；可為字串或含 id 的物件"""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict) and isinstance(value.get("id"), str) and value["id"]:
        return value["id"]
    raise MalformedActivity(f"'{field}' must be a URI or an object with an 'id'")


def _remote_actor(value: Any) -> RemoteActor:
    actor_id = _reference_id(value, "actor")
    if not isinstance(value, dict):
        return RemoteActor(id=actor_id)

    inbox = value.get("inbox")
    name = value.get("name") or value.get("preferredUsername")
    return RemoteActor(
        id=actor_id,
        inbox=inbox if isinstance(inbox, str) else None,
        name=name if isinstance(name, str) else None,
    )


def _activity_id(activity: Dict[str, Any]) -> Optional[str]:
    activity_id = activity.get("id")
    if activity_id is None:
        return None
    if not isinstance(activity_id, str) or not activity_id:
        raise MalformedActivity("'id' must be a non-empty string")
    return activity_id


def _embedded_follow(activity: Dict[str, Any], kind: str) -> Dict[str, Any]:
    follow = activity.get("object")
    if not isinstance(follow, dict) or follow.get("type") != "Follow":
        raise MalformedActivity(f"{kind} must embed the Follow it refers to")
    return follow


def _check_recipient(target: str, local_actor_id: str) -> None:
    if target != local_actor_id:
        raise WrongRecipient(target, local_actor_id)


def _normalize_follow(activity, actor, local_actor_id) -> FollowRequest:
    target = _reference_id(activity.get("object"), "object")
    _check_recipient(target, local_actor_id)
    return FollowRequest(actor=actor, object=target, activity_id=_activity_id(activity))


def _normalize_undo(activity, actor, local_actor_id) -> UnfollowRequest:
    if isinstance(activity.get("object"), str):
        raise MalformedActivity("Undo must embed the Follow it withdraws, not only its id")
    follow = _embedded_follow(activity, "Undo")

    # Undo 必須由原 Follow 的發起者送出
    if _reference_id(follow.get("actor"), "object.actor") != actor.id:
        raise MalformedActivity("Undo actor does not match the actor of the undone Follow")

    target = _reference_id(follow.get("object"), "object.object")
    _check_recipient(target, local_actor_id)
    return UnfollowRequest(
        actor=actor,
        object=target,
        activity_id=_activity_id(activity),
        follow_activity_id=_activity_id(follow),
    )


def _normalize_reply(activity, actor, local_actor_id, model):
    """Accept and Reject share one shape: they answer a Follow we sent."""
    kind = activity["type"]
    reference = activity.get("object")

    if isinstance(reference, str) and reference:
        # Only the Follow id came back; ids we mint live under our actor URI.
        follow_id = reference
        target = local_actor_id if follow_id.startswith(f"{local_actor_id}/") else follow_id
    else:
        follow = _embedded_follow(activity, kind)
        follow_id = _activity_id(follow)
        target = _reference_id(follow.get("actor"), "object.actor")
        followed = follow.get("object")
        if followed is not None and _reference_id(followed, "object.object") != actor.id:
            raise MalformedActivity(f"{kind} answers a Follow of a different actor")

    _check_recipient(target, local_actor_id)
    return model(
        actor=actor,
        object=target,
        activity_id=_activity_id(activity),
        follow_activity_id=follow_id,
    )


def normalize_activity(activity: Any, local_actor_id: str) -> InboxActivity:
    """將收到的活動正規化為已知類型

    Args:
        activity: The decoded JSON payload posted to the inbox.
        local_actor_id: Actor URI of the local user the inbox belongs to.

    Returns:
        A FollowRequest, UnfollowRequest, FollowAccepted or FollowRejected.

    Raises:
        MalformedActivity: The payload is invalid or of an unsupported type.
        WrongRecipient: The activity targets some other actor.
    """
    if not isinstance(activity, dict):
        raise MalformedActivity("Activity must be a JSON object")

    activity_type = activity.get("type")
    if not isinstance(activity_type, str):
        raise MalformedActivity("Activity has no 'type'")

    actor = _remote_actor(activity.get("actor"))

    if activity_type == "Follow":
        return _normalize_follow(activity, actor, local_actor_id)
    elif activity_type == "Undo":
        return _normalize_undo(activity, actor, local_actor_id)
    elif activity_type == "Accept":
        return _normalize_reply(activity, actor, local_actor_id, FollowAccepted)
    elif activity_type == "Reject":
        return _normalize_reply(activity, actor, local_actor_id, FollowRejected)

    raise MalformedActivity(f"Unsupported activity type: {activity_type}")
