from fastapi import APIRouter
from app.core.activitypub.actor import actor_router
from app.core.activitypub.inbox import inbox_router
from app.core.activitypub.webfinger import webfinger_router
from app.core.activitypub.nodeinfo import nodeinfo_router

# routers
users_router = APIRouter()
well_known_router = APIRouter()

# Actor 文件與收件匣置於站台根目錄（含 /inbox 共用收件匣）
users_router.include_router(actor_router, prefix="/users")
users_router.include_router(inbox_router)

# 僅在 .well-known 底下提供標準發現端點
well_known_router.include_router(webfinger_router)
well_known_router.include_router(nodeinfo_router, prefix="/nodeinfo")
