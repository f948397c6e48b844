"""Admin API router for inspecting sessions and driving the poller."""

import logging
import secrets
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, status

from src.core.container import AppContainer, get_container


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


async def require_admin_key(
    container: Annotated[AppContainer, Depends(get_container)],
    x_admin_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check the X-Admin-Key header against ADMIN_API_KEY."""
    expected = container.settings.admin_api_key
    if not expected:
        logger.warning("admin_api_disabled")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Admin API is not configured")

    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        logger.warning("admin_auth_failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


@router.get("/sessions", dependencies=[Depends(require_admin_key)])
async def list_sessions(container: Annotated[AppContainer, Depends(get_container)]) -> dict[str, Any]:
    """List live onboarding sessions without their collected values."""
    sessions = [
        {
            "actor_id": session.actor_id,
            "surface_id": session.surface_id,
            "stage": session.stage.value,
            "collected_fields": sorted(session.collected_fields),
            "awaiting_upload": session.awaiting_upload,
            "updated_at": session.updated_at.isoformat(),
            "expires_at": session.expires_at.isoformat() if session.expires_at else None,
        }
        for session in container.registry.all()
    ]
    return {"count": len(sessions), "sessions": sessions}


@router.post("/poll", dependencies=[Depends(require_admin_key)])
async def trigger_poll(container: Annotated[AppContainer, Depends(get_container)]) -> dict[str, Any]:
    """Run a pending-queue poll now. Skipped if one is already running."""
    if container.poller.is_running_tick:
        return {"status": "skipped", "reports": 0}

    reports = await container.poller.tick()
    logger.info("admin_poll_triggered", extra={"reports": reports})
    return {
        "status": "error" if container.poller.last_error else "ok",
        "reports": reports,
        "digest": container.poller.last_digest,
        "error": container.poller.last_error,
    }


@router.post("/sessions/sweep", dependencies=[Depends(require_admin_key)])
async def sweep_sessions(container: Annotated[AppContainer, Depends(get_container)]) -> dict[str, int]:
    """Expire idle sessions now instead of waiting for the scheduled sweep."""
    expired = await container.onboarding.expire_stale_sessions()
    return {"expired": expired}
