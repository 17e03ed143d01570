"""Image generation endpoints (host only)."""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from auth import get_service, require_host
from models.session import serialize_session

router = APIRouter()


class GenerateRequest(BaseModel):
    """Generate one player's image."""
    player_id: str


class GenerateBatchRequest(BaseModel):
    """Generate images for several players at once."""
    player_ids: list[str]


@router.post("/{session_id}/rounds/{round_index}/generate")
async def generate(
    round_index: int,
    body: GenerateRequest,
    request: Request,
    session_id: str = Depends(require_host),
) -> dict:
    """Build the player's composite prompt and render it against the goal image.

    Provider failures answer 502; the player's entry stays generating and
    can be generated again.
    """
    session = await get_service(request).generate_player_image(session_id, round_index, body.player_id)
    return {"session": serialize_session(session)}


@router.post("/{session_id}/rounds/{round_index}/generate-batch")
async def generate_batch(
    round_index: int,
    body: GenerateBatchRequest,
    request: Request,
    session_id: str = Depends(require_host),
) -> dict:
    """Generate for each listed player; per-player failures are reported, not raised."""
    if not body.player_ids:
        raise HTTPException(status_code=400, detail="player_ids must not be empty")
    session, results = await get_service(request).generate_batch(session_id, round_index, body.player_ids)
    return {"session": serialize_session(session), "results": results}
