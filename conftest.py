"""Pytest configuration and shared fixtures."""

from test_config import LOCAL_ACTOR, setup_test_environment

# Settings are read at import time, so the environment goes first.
setup_test_environment()

import pytest

from app.core.activitypub.emitter import ReplyEmitter
from app.core.activitypub.store import MemoryFollowStore
from app.models.activitypub import LocalUser


class RecordingDelivery:
    """Delivery double that keeps every queued activity."""

    def __init__(self):
        self.sent = []

    def enqueue(self, outbound):
        self.sent.append(outbound)

    def of_type(self, activity_type):
        return [o for o in self.sent if o.activity.get("type") == activity_type]


@pytest.fixture
def local_user() -> LocalUser:
    return LocalUser(
        id="local-user",
        username="me",
        display_name="Me",
        summary="Posting from my own server",
        actor_id=LOCAL_ACTOR,
        public_key_pem="-----BEGIN PUBLIC KEY-----\nMIIBIjANBgkqhkiG9w0BAQEFAAOCAQ8A\n-----END PUBLIC KEY-----",
    )


@pytest.fixture
def store() -> MemoryFollowStore:
    return MemoryFollowStore()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def emitter(delivery) -> ReplyEmitter:
    return ReplyEmitter(delivery)
