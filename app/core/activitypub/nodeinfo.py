from fastapi import APIRouter
from typing import Dict, Any

from app.api.deps import OptionalLocalUserDep, StoreDep
from app.core.config import settings

nodeinfo_router = APIRouter()

NODEINFO_SCHEMA = "http://nodeinfo.diaspora.software/ns/schema/2.0"

@nodeinfo_router.get("")
def get_nodeinfo() -> Dict[str, Any]:
    """取得 NodeInfo 資訊"""
    return {
        "links": [
            {
                "rel": NODEINFO_SCHEMA,
                "href": f"{settings.base_url}/.well-known/nodeinfo/2.0"
            }
        ]
    }

@nodeinfo_router.get("/2.0")
async def get_nodeinfo_2_0(user: OptionalLocalUserDep, store: StoreDep) -> Dict[str, Any]:
    """取得 NodeInfo 2.0 資訊"""
    users = 1 if user is not None else 0
    local_posts = await store.count_posts() if user else 0
    return {
        "version": "2.0",
        "software": {
            "name": "solo-microblog",
            "version": "1.0.0"
        },
        "protocols": [
            "activitypub"
        ],
        "services": {
            "inbound": [],
            "outbound": []
        },
        "openRegistrations": False,
        "usage": {
            "users": {
                "total": users,
                "activeMonth": users,
                "activeHalfyear": users
            },
            "localPosts": local_posts
        },
        "metadata": {
            "nodeName": settings.PROJECT_NAME
        }
    }
