from fastapi import APIRouter
from app.api.v1.endpoints import account, follows, health, posts

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(account.router, prefix="/account", tags=["account"])
api_router.include_router(follows.router, prefix="/follows", tags=["follows"])
api_router.include_router(posts.router, prefix="/posts", tags=["posts"])
