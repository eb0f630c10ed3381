from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import ORJSONResponse
from typing import Dict, Any
import re

from app.api.deps import LocalUserDep
from app.core.config import settings
from app.models.activitypub import LocalUser

webfinger_router = APIRouter()

def handle_webfinger(resource: str, user: LocalUser) -> Dict[str, Any]:
    """處理 WebFinger 請求"""
    # 格式: acct:username@domain 或 Actor URL
    if resource == user.actor_id:
        username, domain = user.username, settings.ACTIVITYPUB_DOMAIN
    else:
        match = re.match(r'^acct:([^@]+)@(.+)$', resource)
        if not match:
            raise HTTPException(status_code=400, detail="Invalid resource format")
        username, domain = match.groups()

    # 檢查域名是否匹配
    if domain != settings.ACTIVITYPUB_DOMAIN:
        raise HTTPException(status_code=404, detail="Domain not found")

    if username != user.username:
        raise HTTPException(status_code=404, detail="Actor not found")

    return {
        "subject": f"acct:{user.username}@{settings.ACTIVITYPUB_DOMAIN}",
        "aliases": [user.actor_id],
        "links": [
            {
                "rel": "self",
                "type": "application/activity+json",
                "href": user.actor_id
            },
            {
                "rel": "http://webfinger.net/rel/profile-page",
                "type": "text/html",
                "href": user.actor_id
            }
        ]
    }

@webfinger_router.get("/webfinger")
async def webfinger(user: LocalUserDep, resource: str = Query(...)):
    data = handle_webfinger(resource, user)
    return ORJSONResponse(
        data,
        media_type="application/jrd+json",
        headers={"Cache-Control": "public, max-age=300"},
    )
