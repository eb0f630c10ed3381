from datetime import datetime
from typing import List

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from app.api.deps import EmitterDep, LocalUserDep, StoreDep
from app.core.activitypub.outbox import publish_post
from app.models.activitypub import Post, PostOrigin

router = APIRouter()

class PostCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)

class PostResponse(BaseModel):
    id: str
    author: str
    body: str
    origin: PostOrigin
    created_at: datetime
    delivered_to: int = 0

    @classmethod
    def from_post(cls, post: Post, delivered_to: int = 0) -> "PostResponse":
        return cls(**post.model_dump(), delivered_to=delivered_to)

@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(data: PostCreate, user: LocalUserDep, store: StoreDep, emitter: EmitterDep):
    """發佈貼文"""
    post, outbound = await publish_post(data.body, user, store, emitter)
    return PostResponse.from_post(post, delivered_to=len(outbound))

@router.get("/", response_model=List[PostResponse])
async def list_posts(user: LocalUserDep, store: StoreDep, limit: int = Query(20, ge=1, le=100)):
    posts = await store.list_posts(PostOrigin.LOCAL, limit)
    return [PostResponse.from_post(post) for post in posts]
