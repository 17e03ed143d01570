"""Host-secret and viewer checks for session routes."""

from fastapi import Header, HTTPException, Request

from config import HOST_SECRET_HEADER
from engine.errors import ForbiddenError
from engine.service import SessionService
from models.session import Session


def get_service(request: Request) -> SessionService:
    """Get the session service from app state."""
    return request.app.state.sessions


async def require_host(
    session_id: str,
    request: Request,
    host_secret: str | None = Header(None, alias=HOST_SECRET_HEADER),
) -> str:
    """FastAPI dependency: the caller must hold the session's host secret.

    Usage:
        @router.post("/{session_id}/endpoint")
        async def endpoint(session_id: str = Depends(require_host)):
            ...

    A missing header, a wrong secret and an unknown session all answer the
    same 403 so the response does not reveal which check failed.

    Raises:
        HTTPException 403: If the secret does not match.
    """
    if not host_secret or not await get_service(request).validate_host(session_id, host_secret):
        raise HTTPException(status_code=403, detail="Forbidden")
    return session_id


def authorize_viewer(session: Session, host_secret: str | None, player_id: str | None) -> None:
    """Check optional viewer credentials against a loaded session.

    Raises:
        ForbiddenError: If a supplied credential does not match.
    """
    if not session.admits(host_secret, player_id):
        raise ForbiddenError("Forbidden")
