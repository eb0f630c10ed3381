from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import ORJSONResponse

from app.api.deps import EmitterDep, LocalUserDep, StoreDep
from app.core.activitypub.processor import handle_inbox_activity
from app.core.exceptions import MalformedActivity

inbox_router = APIRouter()


async def _receive(request: Request, user, store, emitter) -> ORJSONResponse:
    # 讀取請求內容
    try:
        activity_data = await request.json()
    except ValueError as e:
        raise MalformedActivity("Invalid JSON") from e

    # 驗證簽名由外部聯邦層負責
    result = await handle_inbox_activity(activity_data, user, store, emitter)

    return ORJSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": result.status.value, "outbound": len(result.outbound)},
    )


@inbox_router.post("/users/{username}/inbox")
async def receive_activity(
    username: str, request: Request, user: LocalUserDep, store: StoreDep, emitter: EmitterDep
):
    """接收 ActivityPub 活動"""
    if username != user.username:
        raise HTTPException(status_code=404, detail="Actor not found")
    return await _receive(request, user, store, emitter)


@inbox_router.post("/inbox")
async def receive_shared_activity(
    request: Request, user: LocalUserDep, store: StoreDep, emitter: EmitterDep
):
    """Shared inbox; on a single-user instance every activity is for the local user."""
    return await _receive(request, user, store, emitter)
