from fastapi import APIRouter, Request
from pydantic import BaseModel

from tollgate.core.errors import StoreUnavailable

router = APIRouter()

# Only mounted when no upstream is configured
landing_router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    mode: str
    store: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    guard = request.app.state.guard
    try:
        store = "up" if await guard.strategy.backend.ping() else "down"
    except StoreUnavailable:
        store = "down"

    return HealthResponse(
        status="healthy",
        mode=guard.mode,
        store=store,
    )


@landing_router.get("/")
async def root(request: Request):
    return {
        "service": request.app.title,
        "message": "Rate limiting service is running",
    }
