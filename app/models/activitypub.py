"""Domain models for the local account, follow relationships and posts.

Records are pydantic models so the same types flow through the store
backends, the reconciliation logic and the JSON API.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    """Direction of a follow edge, seen from the local user."""

    INCOMING = "incoming"  # remote follows local
    OUTGOING = "outgoing"  # local follows remote


class FollowState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REMOVED = "removed"


class PostOrigin(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class LocalUser(BaseModel):
    """The single account served by this instance."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    display_name: str
    summary: str = ""
    actor_id: str
    public_key_pem: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def inbox_url(self) -> str:
        return f"{self.actor_id}/inbox"

    @property
    def followers_url(self) -> str:
        return f"{self.actor_id}/followers"

    @property
    def following_url(self) -> str:
        return f"{self.actor_id}/following"

    @property
    def outbox_url(self) -> str:
        return f"{self.actor_id}/outbox"


class RemoteActor(BaseModel):
    """遠端 Actor 參照；快取欄位可能過期"""

    model_config = ConfigDict(frozen=True)

    id: str
    inbox: Optional[str] = None
    name: Optional[str] = None


class FollowRelationship(BaseModel):
    """A directed follow edge between the local user and a remote actor.

    Removed relationships are kept as tombstones and never revived; a
    re-follow creates a new relationship with a new id.
    """

    id: str
    direction: Direction
    remote_actor: RemoteActor
    state: FollowState
    follow_activity_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    state_changed_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.state != FollowState.REMOVED


class Post(BaseModel):
    id: str
    author: str
    body: str
    origin: PostOrigin = PostOrigin.LOCAL
    created_at: datetime = Field(default_factory=utcnow)


# Normalized inbox activities


class _InboxActivity(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor: RemoteActor
    object: str
    activity_id: Optional[str] = None


class FollowRequest(_InboxActivity):
    """Remote ``actor`` asks to follow the local actor ``object``."""


class UnfollowRequest(_InboxActivity):
    """Remote ``actor`` withdraws an earlier Follow of ``object``."""

    follow_activity_id: Optional[str] = None


class FollowAccepted(_InboxActivity):
    """Remote ``actor`` accepted a Follow sent by the local actor ``object``."""

    follow_activity_id: Optional[str] = None


class FollowRejected(_InboxActivity):
    """Remote ``actor`` refused (or revoked) a Follow sent by ``object``."""

    follow_activity_id: Optional[str] = None


InboxActivity = Union[FollowRequest, UnfollowRequest, FollowAccepted, FollowRejected]
