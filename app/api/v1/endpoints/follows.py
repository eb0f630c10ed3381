from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Response, status
from pydantic import BaseModel

from app.api.deps import EmitterDep, LocalUserDep, StoreDep
from app.core.activitypub.outbox import follow_remote, unfollow_remote
from app.core.config import settings
from app.models.activitypub import Direction, FollowRelationship, FollowState, RemoteActor

router = APIRouter()

class FollowCreate(BaseModel):
    actor: str
    inbox: Optional[str] = None
    name: Optional[str] = None

class RelationshipResponse(BaseModel):
    id: str
    direction: Direction
    actor: str
    name: Optional[str] = None
    state: FollowState
    created_at: datetime
    state_changed_at: datetime

    @classmethod
    def from_relationship(cls, relationship: FollowRelationship) -> "RelationshipResponse":
        return cls(
            id=relationship.id,
            direction=relationship.direction,
            actor=relationship.remote_actor.id,
            name=relationship.remote_actor.name,
            state=relationship.state,
            created_at=relationship.created_at,
            state_changed_at=relationship.state_changed_at,
        )

class RelationshipStatus(BaseModel):
    """Profile badge data for one remote actor"""
    actor: str
    following: Optional[FollowState] = None
    followed_by: Optional[FollowState] = None

@router.post("/", response_model=RelationshipResponse, status_code=status.HTTP_202_ACCEPTED)
async def follow(data: FollowCreate, user: LocalUserDep, store: StoreDep, emitter: EmitterDep):
    """追蹤遠端 Actor（等待對方 Accept）"""
    if not data.actor.startswith(("https://", "http://")):
        raise HTTPException(status_code=400, detail="actor must be an http(s) URI")
    try:
        relationship, _ = await follow_remote(
            RemoteActor(id=data.actor, inbox=data.inbox, name=data.name), user, store, emitter
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RelationshipResponse.from_relationship(relationship)

@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow(user: LocalUserDep, store: StoreDep, emitter: EmitterDep, actor: str = Query(...)):
    """取消追蹤；未追蹤時同樣回傳 204"""
    await unfollow_remote(actor, user, store, emitter)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get("/followers", response_model=List[RelationshipResponse])
async def list_followers(user: LocalUserDep, store: StoreDep):
    relationships = await store.list_active(Direction.INCOMING, limit=settings.MAX_COLLECTION_ITEMS)
    return [RelationshipResponse.from_relationship(r) for r in relationships]

@router.get("/following", response_model=List[RelationshipResponse])
async def list_following(user: LocalUserDep, store: StoreDep):
    relationships = await store.list_active(Direction.OUTGOING, limit=settings.MAX_COLLECTION_ITEMS)
    return [RelationshipResponse.from_relationship(r) for r in relationships]

@router.get("/relationship", response_model=RelationshipStatus)
async def get_relationship(user: LocalUserDep, store: StoreDep, actor: str = Query(...)):
    """查詢與單一 Actor 的追蹤狀態"""
    following = await store.get_active(Direction.OUTGOING, actor)
    followed_by = await store.get_active(Direction.INCOMING, actor)
    return RelationshipStatus(
        actor=actor,
        following=following.state if following else None,
        followed_by=followed_by.state if followed_by else None,
    )
