from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse
import uvicorn

from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.logging_config import configure_logging
from app.api.deps import init_services, shutdown_services
from app.api.v1.api import api_router
from app.core.activitypub import users_router, well_known_router

configure_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create shared services on startup and release them on shutdown"""
    await init_services(app)
    yield
    await shutdown_services(app)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Single-user ActivityPub microblog server",
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

# CORS settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Enable gzip compression for large responses
app.add_middleware(GZipMiddleware, minimum_size=500)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix=settings.API_V1_STR)

# Include ActivityPub routes
# /.well-known 只提供發現端點
app.include_router(well_known_router, prefix="/.well-known", tags=["activitypub"])
# 其餘 ActivityPub 端點掛在根目錄
app.include_router(users_router, tags=["activitypub"])

@app.get("/")
async def root():
    """Root path"""
    return {"message": settings.PROJECT_NAME}

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
