"""Follow State Store.

Authoritative record of who follows the local user and whom the local user
follows, keyed by ``(direction, remote actor URI)``. Two backends share one
contract:

- ``MemoryFollowStore`` keeps everything in process memory (tests and
  ``GRAPHQL_MOCK`` mode).
- ``GraphQLFollowStore`` talks to the data service through ``GraphQLClient``.

Callers that need read-then-write sequences for one key wrap them in
``store.locked(direction, actor_id)``; different keys never contend.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from app.core.exceptions import AccountAlreadyExists
from app.core.graphql_client import GraphQLClient, GraphQLResponseError
from app.models.activitypub import (
    Direction,
    FollowRelationship,
    FollowState,
    LocalUser,
    Post,
    PostOrigin,
    RemoteActor,
    utcnow,
)

logger = logging.getLogger(__name__)

ACTIVE_STATES = [FollowState.PENDING.value, FollowState.ACCEPTED.value]
PAGE_SIZE = 100


def active_key(direction: Direction, actor_id: str) -> str:
    return f"{Direction(direction).value} {actor_id}"


class KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)


class FollowStore(ABC):
    """Base class holding the per-key serialization shared by all backends."""

    def __init__(self):
        self.locks = KeyedLocks()
        self._setup_lock = asyncio.Lock()

    async def ping(self) -> None:
        """Raise StoreUnavailable if the backend cannot be reached."""

    def locked(self, direction: Direction, actor_id: str):
        """Serialize work on one ``(direction, actor)`` key."""
        return self.locks.hold(active_key(direction, actor_id))

    @abstractmethod
    async def get_active(self, direction: Direction, actor_id: str) -> Optional[FollowRelationship]:
        """The current non-removed relationship for the key, if any."""

    @abstractmethod
    async def insert_or_fetch(
        self,
        direction: Direction,
        actor: RemoteActor,
        state: FollowState = FollowState.PENDING,
        follow_activity_id: Optional[str] = None,
    ) -> Tuple[FollowRelationship, bool]:
        """Create an active relationship unless one exists.

        Returns:
            ``(relationship, created)``; ``created`` is False when an existing
            active relationship was returned instead.
        """

    @abstractmethod
    async def transition(
        self, relationship_id: str, expected: FollowState, state: FollowState
    ) -> Optional[FollowRelationship]:
        """Move a relationship from ``expected`` to ``state``.

        Returns None, changing nothing, if the relationship is not currently
        in ``expected``.
        """

    @abstractmethod
    async def list_active(
        self,
        direction: Direction,
        state: Optional[FollowState] = None,
        limit: Optional[int] = None,
    ) -> List[FollowRelationship]:
        """Active relationships for ``direction``, oldest first.

        With no ``limit`` every matching relationship is returned.
        """

    @abstractmethod
    async def get_local_user(self) -> Optional[LocalUser]:
        """The configured local user, or None before setup."""

    async def create_local_user(self, user: LocalUser, private_key_pem: str) -> LocalUser:
        """One-time account setup.

        Raises:
            AccountAlreadyExists: An account was already created.
        """
        async with self._setup_lock:
            if await self.get_local_user() is not None:
                raise AccountAlreadyExists()
            return await self._create_local_user(user, private_key_pem)

    @abstractmethod
    async def _create_local_user(self, user: LocalUser, private_key_pem: str) -> LocalUser:
        """Persist the account; called once under the setup lock."""

    @abstractmethod
    async def create_post(self, post: Post) -> Post:
        """Persist a post."""

    @abstractmethod
    async def list_posts(self, origin: PostOrigin = PostOrigin.LOCAL, limit: int = 20) -> List[Post]:
        """Posts of the given origin, newest first."""

    @abstractmethod
    async def count_posts(self, origin: PostOrigin = PostOrigin.LOCAL) -> int:
        """Number of posts of the given origin."""


class MemoryFollowStore(FollowStore):
    """In-process backend."""

    def __init__(self):
        super().__init__()
        self._relationships: Dict[str, FollowRelationship] = {}
        self._active: Dict[str, str] = {}
        self._local_user: Optional[LocalUser] = None
        self._private_key_pem: Optional[str] = None
        self._posts: List[Post] = []

    def all_relationships(self, direction: Optional[Direction] = None) -> List[FollowRelationship]:
        """Every relationship including tombstones, oldest first."""
        return [
            r.model_copy()
            for r in self._relationships.values()
            if direction is None or r.direction == direction
        ]

    async def get_active(self, direction, actor_id):
        relationship_id = self._active.get(active_key(direction, actor_id))
        if relationship_id is None:
            return None
        return self._relationships[relationship_id].model_copy()

    async def insert_or_fetch(self, direction, actor, state=FollowState.PENDING, follow_activity_id=None):
        if state == FollowState.REMOVED:
            raise ValueError("Cannot create a relationship in the removed state")

        key = active_key(direction, actor.id)
        existing = self._active.get(key)
        if existing is not None:
            return self._relationships[existing].model_copy(), False

        now = utcnow()
        relationship = FollowRelationship(
            id=uuid.uuid4().hex,
            direction=direction,
            remote_actor=actor,
            state=state,
            follow_activity_id=follow_activity_id,
            created_at=now,
            state_changed_at=now,
        )
        self._relationships[relationship.id] = relationship
        self._active[key] = relationship.id
        return relationship.model_copy(), True

    async def transition(self, relationship_id, expected, state):
        current = self._relationships.get(relationship_id)
        if current is None or current.state != expected:
            return None

        updated = current.model_copy(update={"state": state, "state_changed_at": utcnow()})
        self._relationships[relationship_id] = updated
        if state == FollowState.REMOVED:
            self._active.pop(active_key(updated.direction, updated.remote_actor.id), None)
        return updated.model_copy()

    async def list_active(self, direction, state=None, limit=None):
        items = [
            r for r in self._relationships.values()
            if r.direction == direction and r.is_active and (state is None or r.state == state)
        ]
        items.sort(key=lambda r: r.created_at)
        if limit is not None:
            items = items[:limit]
        return [r.model_copy() for r in items]

    async def get_local_user(self):
        return self._local_user

    async def _create_local_user(self, user, private_key_pem):
        self._local_user = user
        self._private_key_pem = private_key_pem
        return user

    async def create_post(self, post):
        self._posts.append(post)
        return post

    async def list_posts(self, origin=PostOrigin.LOCAL, limit=20):
        posts = [p for p in self._posts if p.origin == origin]
        posts.sort(key=lambda p: p.created_at, reverse=True)
        return posts[:limit]

    async def count_posts(self, origin=PostOrigin.LOCAL):
        return sum(1 for p in self._posts if p.origin == origin)


def _relationship_from_record(record: Dict) -> FollowRelationship:
    return FollowRelationship(
        id=record["id"],
        direction=record["direction"],
        remote_actor=RemoteActor(
            id=record["actor_id"],
            inbox=record.get("actor_inbox"),
            name=record.get("actor_name"),
        ),
        state=record["state"],
        follow_activity_id=record.get("follow_activity_id"),
        created_at=record["created_at"],
        state_changed_at=record.get("state_changed_at") or record["created_at"],
    )


def _local_user_from_record(record: Dict) -> LocalUser:
    return LocalUser(**{**record, "summary": record.get("summary") or ""})


def _post_from_record(record: Dict) -> Post:
    return Post(
        id=record["post_id"],
        author=record["author"],
        body=record["body"],
        origin=record["origin"],
        created_at=record["created_at"],
    )


class GraphQLFollowStore(FollowStore):
    """Backend on the GraphQL data service.

    The service enforces uniqueness of ``active_key`` (cleared when a
    relationship is removed) and implements ``transitionFollowRelationship``
    as a conditional update, so the guarantees hold across processes too.
    """

    def __init__(self, client: Optional[GraphQLClient] = None):
        super().__init__()
        self.gql = client or GraphQLClient()

    async def ping(self):
        await self.gql.query("query __Ping { __typename }")

    async def get_active(self, direction, actor_id):
        record = await self.gql.get_follow_by_active_key(active_key(direction, actor_id))
        return _relationship_from_record(record) if record else None

    async def insert_or_fetch(self, direction, actor, state=FollowState.PENDING, follow_activity_id=None):
        if state == FollowState.REMOVED:
            raise ValueError("Cannot create a relationship in the removed state")

        key = active_key(direction, actor.id)
        existing = await self.gql.get_follow_by_active_key(key)
        if existing:
            return _relationship_from_record(existing), False

        now = utcnow().isoformat()
        data = {
            "direction": Direction(direction).value,
            "actor_id": actor.id,
            "actor_inbox": actor.inbox,
            "actor_name": actor.name,
            "state": FollowState(state).value,
            "active_key": key,
            "follow_activity_id": follow_activity_id,
            "created_at": now,
            "state_changed_at": now,
        }
        try:
            record = await self.gql.create_follow(data)
        except GraphQLResponseError as e:
            if not e.is_unique_violation:
                raise
            # 其他程序剛建立了同一條關係
            logger.info("Concurrent insert for %s; returning the existing relationship", key)
            record = await self.gql.get_follow_by_active_key(key)
            if record is None:
                raise
            return _relationship_from_record(record), False
        return _relationship_from_record(record), True

    async def transition(self, relationship_id, expected, state):
        record = await self.gql.transition_follow(
            relationship_id, FollowState(expected).value, FollowState(state).value
        )
        return _relationship_from_record(record) if record else None

    async def list_active(self, direction, state=None, limit=None):
        states = [FollowState(state).value] if state is not None else ACTIVE_STATES
        if limit is not None:
            records = await self.gql.list_follows(Direction(direction).value, states, limit)
            return [_relationship_from_record(r) for r in records]

        # 分頁讀取直到取完
        relationships = []
        while True:
            records = await self.gql.list_follows(
                Direction(direction).value, states, PAGE_SIZE, skip=len(relationships)
            )
            relationships.extend(_relationship_from_record(r) for r in records)
            if len(records) < PAGE_SIZE:
                return relationships

    async def get_local_user(self):
        record = await self.gql.get_local_account()
        return _local_user_from_record(record) if record else None

    async def _create_local_user(self, user, private_key_pem):
        data = user.model_dump(mode="json")
        data.pop("id")
        data["private_key_pem"] = private_key_pem
        # 單一帳號：singleton 欄位在資料服務端為 unique
        data["singleton"] = "local"
        try:
            record = await self.gql.create_local_account(data)
        except GraphQLResponseError as e:
            if e.is_unique_violation:
                raise AccountAlreadyExists() from e
            raise
        return _local_user_from_record(record)

    async def create_post(self, post):
        data = post.model_dump(mode="json")
        data.pop("id")
        data["post_id"] = post.id
        return _post_from_record(await self.gql.create_post(data))

    async def list_posts(self, origin=PostOrigin.LOCAL, limit=20):
        records = await self.gql.list_posts(PostOrigin(origin).value, limit)
        return [_post_from_record(r) for r in records]

    async def count_posts(self, origin=PostOrigin.LOCAL):
        return await self.gql.count_posts(PostOrigin(origin).value)
