"""Tests for inbox reconciliation."""

import asyncio

import pytest

from app.core.activitypub.normalizer import normalize_activity
from app.core.activitypub.processor import (
    FollowDecision,
    InboxStatus,
    decide_follow,
    handle_inbox_activity,
    process_activity,
)
from app.core.activitypub.store import MemoryFollowStore
from app.core.exceptions import MalformedActivity, WrongRecipient
from app.models.activitypub import Direction, FollowRelationship, FollowState, RemoteActor
from test_config import (
    ALICE,
    BOB,
    LOCAL_ACTOR,
    accept_activity,
    follow_activity,
    reject_activity,
    undo_activity,
)


class YieldingStore(MemoryFollowStore):
    """Memory store that gives up the event loop inside every operation,
    the way a networked backend would."""

    async def get_active(self, direction, actor_id):
        await asyncio.sleep(0)
        return await super().get_active(direction, actor_id)

    async def insert_or_fetch(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().insert_or_fetch(*args, **kwargs)

    async def transition(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().transition(*args, **kwargs)


async def apply(payload, user, store, emitter):
    return await process_activity(normalize_activity(payload, user.actor_id), user, store, emitter)


def incoming(store):
    return store.all_relationships(Direction.INCOMING)


class TestDecideFollow:
    def _relationship(self, state):
        return FollowRelationship(
            id="r", direction=Direction.INCOMING, remote_actor=RemoteActor(id=ALICE), state=state
        )

    def test_new_follower(self):
        assert decide_follow(None) == FollowDecision.CREATE_AND_ACCEPT

    def test_tombstone_means_new_edge(self):
        assert decide_follow(self._relationship(FollowState.REMOVED)) == FollowDecision.CREATE_AND_ACCEPT

    def test_pending_is_finished(self):
        assert decide_follow(self._relationship(FollowState.PENDING)) == FollowDecision.ACCEPT_PENDING

    def test_accepted_is_replayed(self):
        assert decide_follow(self._relationship(FollowState.ACCEPTED)) == FollowDecision.REPLAY_ACCEPT

    def test_same_follow_id_is_replayed(self):
        existing = self._relationship(FollowState.ACCEPTED).model_copy(update={"follow_activity_id": "f1"})

        assert decide_follow(existing, "f1") == FollowDecision.REPLAY_ACCEPT
        assert decide_follow(existing, None) == FollowDecision.REPLAY_ACCEPT

    def test_new_follow_id_replaces(self):
        existing = self._relationship(FollowState.ACCEPTED).model_copy(update={"follow_activity_id": "f1"})

        assert decide_follow(existing, "f2") == FollowDecision.REPLACE_AND_ACCEPT


class TestFollow:
    @pytest.mark.asyncio
    async def test_new_follow_is_accepted_and_answered(self, local_user, store, emitter, delivery):
        result = await apply(follow_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.PROCESSED
        assert result.relationship.state == FollowState.ACCEPTED
        assert [r.state for r in incoming(store)] == [FollowState.ACCEPTED]
        assert len(delivery.sent) == 1
        accept = delivery.sent[0].activity
        assert accept["type"] == "Accept"
        assert accept["actor"] == LOCAL_ACTOR
        assert accept["object"]["actor"] == ALICE
        assert accept["object"]["id"] == f"{ALICE}#follows/1"

    @pytest.mark.asyncio
    async def test_duplicate_follow_makes_no_second_edge(self, local_user, store, emitter, delivery):
        first = await apply(follow_activity(), local_user, store, emitter)
        second = await apply(follow_activity(), local_user, store, emitter)

        assert second.status == InboxStatus.DUPLICATE
        assert second.relationship.id == first.relationship.id
        assert len(incoming(store)) == 1
        assert len(await store.list_active(Direction.INCOMING)) == 1
        assert len(delivery.of_type("Accept")) == 2
        assert delivery.sent[0].body() == delivery.sent[1].body()

    @pytest.mark.asyncio
    async def test_pending_follow_is_finished(self, local_user, store, emitter, delivery):
        await store.insert_or_fetch(
            Direction.INCOMING, RemoteActor(id=ALICE), FollowState.PENDING, f"{ALICE}#follows/1"
        )

        result = await apply(follow_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.DUPLICATE
        assert result.relationship.state == FollowState.ACCEPTED
        assert len(incoming(store)) == 1
        assert len(delivery.sent) == 1

    @pytest.mark.asyncio
    async def test_refollow_creates_fresh_relationship(self, local_user, store, emitter):
        first = await apply(follow_activity(), local_user, store, emitter)
        await apply(undo_activity(), local_user, store, emitter)
        again = await apply(follow_activity(activity_id=f"{ALICE}#follows/2"), local_user, store, emitter)

        assert again.status == InboxStatus.PROCESSED
        assert again.relationship.id != first.relationship.id
        assert [r.state for r in incoming(store)] == [FollowState.REMOVED, FollowState.ACCEPTED]
        active = await store.list_active(Direction.INCOMING)
        assert [r.id for r in active] == [again.relationship.id]
        assert active[0].follow_activity_id == f"{ALICE}#follows/2"

    @pytest.mark.asyncio
    async def test_follow_with_new_id_replaces_edge(self, local_user, store, emitter):
        first = await apply(follow_activity(), local_user, store, emitter)
        second = await apply(follow_activity(activity_id=f"{ALICE}#follows/2"), local_user, store, emitter)

        assert second.status == InboxStatus.PROCESSED
        assert second.relationship.id != first.relationship.id
        assert [r.state for r in incoming(store)] == [FollowState.REMOVED, FollowState.ACCEPTED]

        undone = await apply(undo_activity(follow_id=f"{ALICE}#follows/2"), local_user, store, emitter)

        assert undone.status == InboxStatus.PROCESSED
        assert await store.list_active(Direction.INCOMING) == []


class TestUnfollow:
    @pytest.mark.asyncio
    async def test_unfollow_removes_follower(self, local_user, store, emitter, delivery):
        await apply(follow_activity(), local_user, store, emitter)

        result = await apply(undo_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.PROCESSED
        assert result.relationship.state == FollowState.REMOVED
        assert await store.list_active(Direction.INCOMING) == []
        assert len(delivery.sent) == 1

    @pytest.mark.asyncio
    async def test_unfollow_of_non_follower_is_noop(self, local_user, store, emitter, delivery):
        result = await apply(undo_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.DUPLICATE
        assert store.all_relationships() == []
        assert delivery.sent == []

    @pytest.mark.asyncio
    async def test_undo_of_earlier_follow_keeps_refollow(self, local_user, store, emitter):
        await apply(follow_activity(), local_user, store, emitter)
        await apply(undo_activity(), local_user, store, emitter)
        refollow = await apply(follow_activity(activity_id=f"{ALICE}#follows/2"), local_user, store, emitter)
        before = store.all_relationships()

        result = await apply(undo_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.DUPLICATE
        assert store.all_relationships() == before
        active = await store.get_active(Direction.INCOMING, ALICE)
        assert active.id == refollow.relationship.id
        assert active.state == FollowState.ACCEPTED

    @pytest.mark.asyncio
    async def test_repeated_unfollow_is_noop(self, local_user, store, emitter):
        await apply(follow_activity(), local_user, store, emitter)
        await apply(undo_activity(), local_user, store, emitter)
        before = store.all_relationships()

        result = await apply(undo_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.DUPLICATE
        assert store.all_relationships() == before


class TestReplies:
    async def _pending_follow(self, store):
        relationship, _ = await store.insert_or_fetch(
            Direction.OUTGOING, RemoteActor(id=BOB), FollowState.PENDING, f"{LOCAL_ACTOR}/activities/follow/1"
        )
        return relationship

    @pytest.mark.asyncio
    async def test_accept_completes_pending_follow(self, local_user, store, emitter, delivery):
        await self._pending_follow(store)

        result = await apply(accept_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.PROCESSED
        assert (await store.get_active(Direction.OUTGOING, BOB)).state == FollowState.ACCEPTED
        assert delivery.sent == []

    @pytest.mark.asyncio
    async def test_duplicate_accept_is_noop(self, local_user, store, emitter):
        await self._pending_follow(store)
        await apply(accept_activity(), local_user, store, emitter)
        before = store.all_relationships()

        result = await apply(accept_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.DUPLICATE
        assert store.all_relationships() == before

    @pytest.mark.asyncio
    async def test_unexpected_accept_leaves_store_unchanged(self, local_user, store, emitter, caplog):
        result = await apply(accept_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.IGNORED
        assert store.all_relationships() == []
        assert any(r.levelname == "WARNING" and BOB in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_late_accept_after_unfollow_is_ignored(self, local_user, store, emitter):
        relationship = await self._pending_follow(store)
        await store.transition(relationship.id, FollowState.PENDING, FollowState.REMOVED)
        before = store.all_relationships()

        result = await apply(accept_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.IGNORED
        assert store.all_relationships() == before

    @pytest.mark.asyncio
    async def test_accept_of_earlier_follow_is_late(self, local_user, store, emitter):
        await self._pending_follow(store)
        before = store.all_relationships()

        result = await apply(
            accept_activity(follow_id=f"{LOCAL_ACTOR}/activities/follow/0"), local_user, store, emitter
        )

        assert result.status == InboxStatus.IGNORED
        assert store.all_relationships() == before

    @pytest.mark.asyncio
    async def test_accept_naming_current_follow(self, local_user, store, emitter):
        relationship = await self._pending_follow(store)

        result = await apply(
            accept_activity(follow_id=relationship.follow_activity_id), local_user, store, emitter
        )

        assert result.status == InboxStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_reject_of_earlier_follow_is_late(self, local_user, store, emitter):
        await self._pending_follow(store)

        result = await apply(
            reject_activity(follow_id=f"{LOCAL_ACTOR}/activities/follow/0"), local_user, store, emitter
        )

        assert result.status == InboxStatus.IGNORED
        assert (await store.get_active(Direction.OUTGOING, BOB)).state == FollowState.PENDING

    @pytest.mark.asyncio
    async def test_reject_removes_outgoing_follow(self, local_user, store, emitter):
        await self._pending_follow(store)

        result = await apply(reject_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.PROCESSED
        assert await store.get_active(Direction.OUTGOING, BOB) is None

    @pytest.mark.asyncio
    async def test_reject_without_follow_is_ignored(self, local_user, store, emitter):
        result = await apply(reject_activity(), local_user, store, emitter)

        assert result.status == InboxStatus.IGNORED


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_follow_then_undo_ends_removed(self, local_user, emitter):
        store = YieldingStore()

        follow, undo = await asyncio.gather(
            apply(follow_activity(), local_user, store, emitter),
            apply(undo_activity(), local_user, store, emitter),
        )

        assert follow.status == InboxStatus.PROCESSED
        assert undo.status == InboxStatus.PROCESSED
        assert await store.list_active(Direction.INCOMING) == []

    @pytest.mark.asyncio
    async def test_undo_then_follow_ends_accepted(self, local_user, emitter):
        store = YieldingStore()

        undo, follow = await asyncio.gather(
            apply(undo_activity(), local_user, store, emitter),
            apply(follow_activity(), local_user, store, emitter),
        )

        assert undo.status == InboxStatus.DUPLICATE
        assert follow.status == InboxStatus.PROCESSED
        active = await store.list_active(Direction.INCOMING)
        assert [r.state for r in active] == [FollowState.ACCEPTED]

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_follows_make_one_edge(self, local_user, emitter, delivery):
        store = YieldingStore()

        results = await asyncio.gather(*[apply(follow_activity(), local_user, store, emitter) for _ in range(10)])

        assert [r.status for r in results].count(InboxStatus.PROCESSED) == 1
        assert len(store.all_relationships()) == 1
        assert len(delivery.of_type("Accept")) == 10
        assert len(store.locks) == 0

    @pytest.mark.asyncio
    async def test_interleaved_actors_never_duplicate(self, local_user, emitter):
        store = YieldingStore()
        activities = []
        for actor_id in (ALICE, BOB):
            activities += [follow_activity(actor_id), undo_activity(actor_id), follow_activity(actor_id)]

        await asyncio.gather(*[apply(a, local_user, store, emitter) for a in activities])

        for actor_id in (ALICE, BOB):
            active = [
                r for r in store.all_relationships(Direction.INCOMING)
                if r.remote_actor.id == actor_id and r.is_active
            ]
            assert len(active) <= 1


class TestHandleInboxActivity:
    @pytest.mark.asyncio
    async def test_malformed_payload_changes_nothing(self, local_user, store, emitter, delivery):
        with pytest.raises(MalformedActivity):
            await handle_inbox_activity({"type": "Follow"}, local_user, store, emitter)

        assert store.all_relationships() == []
        assert delivery.sent == []

    @pytest.mark.asyncio
    async def test_wrong_recipient_changes_nothing(self, local_user, store, emitter, delivery):
        with pytest.raises(WrongRecipient):
            await handle_inbox_activity(follow_activity(target=BOB), local_user, store, emitter)

        assert store.all_relationships() == []
        assert delivery.sent == []

    @pytest.mark.asyncio
    async def test_alice_follows_then_unfollows(self, local_user, store, emitter, delivery):
        followed = await handle_inbox_activity(follow_activity(), local_user, store, emitter)

        assert followed.relationship.state == FollowState.ACCEPTED
        assert delivery.sent[0].activity["type"] == "Accept"
        assert delivery.sent[0].activity["actor"] == LOCAL_ACTOR
        assert delivery.sent[0].recipient == ALICE
        assert [r.remote_actor.id for r in await store.list_active(Direction.INCOMING)] == [ALICE]

        unfollowed = await handle_inbox_activity(undo_activity(), local_user, store, emitter)

        assert unfollowed.relationship.state == FollowState.REMOVED
        assert await store.list_active(Direction.INCOMING, FollowState.ACCEPTED) == []
