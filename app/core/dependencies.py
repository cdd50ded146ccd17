"""Dependencies for FastAPI routes."""
from typing import Optional

from fastapi import HTTPException, Request

from app.services.change_feed import ChangeFeed
from app.services.download_service import DownloadOrchestrator
from app.services.live_session import LiveSessionRegistry

USER_HEADER = "X-User-ID"


async def get_object_store(request: Request):
    """Object store configured at startup (S3 or local filesystem)."""
    return request.app.state.object_store


async def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


async def get_download_orchestrator(request: Request) -> DownloadOrchestrator:
    return request.app.state.download_orchestrator


async def get_user_id(request: Request) -> Optional[str]:
    """Acting user id as established by the auth layer in front of this service."""
    value = (request.headers.get(USER_HEADER) or "").strip()
    return value[:64] or None


async def require_user_id(request: Request) -> str:
    user_id = await get_user_id(request)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


async def get_live_sessions(request: Request) -> LiveSessionRegistry:
    return request.app.state.live_sessions
