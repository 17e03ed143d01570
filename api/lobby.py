"""Session creation, joining, settings, reset, and scoreboard endpoints."""

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel

from auth import authorize_viewer, get_service, require_host
from config import HOST_SECRET_HEADER
from models.session import serialize_session

router = APIRouter()


class CreateSessionRequest(BaseModel):
    """Request body for opening a new room."""
    host_name: str


class JoinSessionRequest(BaseModel):
    """Request body for joining a room."""
    name: str


class SettingsRequest(BaseModel):
    """Host-editable session settings."""
    api_key: str


def _clean_name(name: str, field: str) -> str:
    name = name.strip()
    if not name:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    return name


@router.post("", status_code=201)
async def create_session(body: CreateSessionRequest, request: Request) -> dict:
    """Open a room. The host secret is only ever returned here."""
    session = await get_service(request).create_session(_clean_name(body.host_name, "host_name"))
    return {"session": serialize_session(session), "host_secret": session.host_secret}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    request: Request,
    player_id: str | None = Query(None),
    host_secret: str | None = Header(None, alias=HOST_SECRET_HEADER),
) -> dict:
    """Get a session snapshot.

    Anonymous reads are allowed; a supplied host secret or player id that
    does not match the session answers 403.
    """
    session = await get_service(request).get_session(session_id)
    authorize_viewer(session, host_secret, player_id)
    return {"session": serialize_session(session)}


@router.post("/{session_id}/join", status_code=201)
async def join_session(session_id: str, body: JoinSessionRequest, request: Request) -> dict:
    """Join a room as a player."""
    session, player = await get_service(request).join_session(session_id, _clean_name(body.name, "name"))
    return {"session": serialize_session(session), "player": player.model_dump(mode="json")}


@router.patch("/{session_id}/settings")
async def update_settings(
    body: SettingsRequest,
    request: Request,
    session_id: str = Depends(require_host),
) -> dict:
    """Set the session's image-provider credential."""
    session = await get_service(request).update_api_key(session_id, body.api_key.strip())
    return {"session": serialize_session(session)}


@router.post("/{session_id}/reset")
async def reset_session(request: Request, session_id: str = Depends(require_host)) -> dict:
    """Send the room back to the lobby and discard every round's results."""
    session = await get_service(request).reset_session(session_id)
    return {"session": serialize_session(session)}


@router.get("/{session_id}/scoreboard")
async def scoreboard(session_id: str, request: Request) -> dict:
    """Score totals per player, highest first."""
    return {"scores": await get_service(request).scoreboard(session_id)}
