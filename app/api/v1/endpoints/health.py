from fastapi import APIRouter
from fastapi.responses import ORJSONResponse

from app.api.deps import StoreDep
from app.core.config import settings
from app.core.exceptions import StoreUnavailable

router = APIRouter()

@router.get("/")
async def health_check(store: StoreDep):
    """Health check endpoint"""
    store_status = "healthy"
    try:
        await store.ping()
    except StoreUnavailable as e:
        store_status = f"unhealthy: {e.message}"

    # 直接回傳 ORJSONResponse 並加快取極短 TTL
    return ORJSONResponse({
        "status": "ok",
        "store": store_status,
        "service": settings.PROJECT_NAME
    }, headers={"Cache-Control": "public, max-age=5"})
