import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from app.api.deps import LocalUserDep, StoreDep
from app.core.activitypub.store import FollowStore
from app.core.activitypub.utils import generate_actor_id, generate_key_pair
from app.models.activitypub import LocalUser

router = APIRouter()

class AccountCreate(BaseModel):
    username: str = Field(..., pattern=r"^[A-Za-z0-9_]{1,30}$")
    display_name: Optional[str] = None
    summary: Optional[str] = None

class AccountResponse(BaseModel):
    id: str
    username: str
    display_name: str
    summary: str
    actor_id: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: LocalUser) -> "AccountResponse":
        return cls(**user.model_dump(include=set(cls.model_fields)))

async def create_local_account(store: FollowStore, data: AccountCreate) -> LocalUser:
    """建立本站唯一帳號（僅能執行一次）"""
    # 生成金鑰對
    public_key, private_key = generate_key_pair()
    user = LocalUser(
        id=uuid.uuid4().hex,
        username=data.username,
        display_name=data.display_name or data.username,
        summary=data.summary or "",
        actor_id=generate_actor_id(data.username),
        public_key_pem=public_key,
    )
    return await store.create_local_user(user, private_key)

@router.post("/", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def setup_account(data: AccountCreate, request: Request, store: StoreDep):
    """One-time setup of the local account"""
    user = await create_local_account(store, data)
    request.app.state.local_user = user
    return AccountResponse.from_user(user)

@router.get("/", response_model=AccountResponse)
async def get_account(user: LocalUserDep):
    """取得本站帳號資訊"""
    return AccountResponse.from_user(user)
