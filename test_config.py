"""
測試環境配置
Environment variables and sample ActivityPub payloads shared by the tests
"""

import os
from typing import Dict, Any

LOCAL_ACTOR = "https://microblog.test/users/me"
ALICE = "https://remote.example/users/alice"
BOB = "https://other.example/users/bob"

# 測試環境變數
TEST_ENV_VARS = {
    "GRAPHQL_MOCK": "true",
    "ACTIVITYPUB_DOMAIN": "microblog.test",
    "ACTIVITYPUB_PROTOCOL": "https",
    "GRAPHQL_ENDPOINT": "http://data.test/api/graphql",
    "FEDERATION_ENABLED": "false",
    "LOG_LEVEL": "DEBUG",
}

def setup_test_environment():
    """設定測試環境變數"""
    for key, value in TEST_ENV_VARS.items():
        os.environ[key] = value

def follow_activity(actor: str = ALICE, target: str = LOCAL_ACTOR, activity_id: str = None) -> Dict[str, Any]:
    return {
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": activity_id or f"{actor}#follows/1",
        "type": "Follow",
        "actor": actor,
        "object": target,
    }

def undo_activity(actor: str = ALICE, target: str = LOCAL_ACTOR, follow_id: str = None) -> Dict[str, Any]:
    follow = follow_activity(actor, target, follow_id)
    follow.pop("@context")
    return {
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": f"{actor}#follows/1/undo",
        "type": "Undo",
        "actor": actor,
        "object": follow,
    }

def accept_activity(actor: str = BOB, local: str = LOCAL_ACTOR, follow_id: str = None) -> Dict[str, Any]:
    follow = {"type": "Follow", "actor": local, "object": actor}
    if follow_id:
        follow["id"] = follow_id
    return {
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": f"{actor}#accepts/1",
        "type": "Accept",
        "actor": actor,
        "object": follow,
    }

def reject_activity(actor: str = BOB, local: str = LOCAL_ACTOR, follow_id: str = None) -> Dict[str, Any]:
    activity = accept_activity(actor, local, follow_id)
    activity["id"] = f"{actor}#rejects/1"
    activity["type"] = "Reject"
    return activity
