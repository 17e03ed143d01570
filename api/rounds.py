"""Round lifecycle endpoints: goal image, start, prompts, scoring, advance."""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from auth import get_service, require_host
from config import MAX_SCORE, MIN_SCORE
from engine.imaging import parse_data_url
from models.session import serialize_session

router = APIRouter()


class GoalImageRequest(BaseModel):
    """Reference image as a ``data:<mime>;base64,...`` URL."""
    data_url: str


class PromptRequest(BaseModel):
    """A player's next prompt; the role is decided by their cursor."""
    player_id: str
    prompt: str


class ScoreRequest(BaseModel):
    """Host's score for one player's result."""
    player_id: str
    score: int


@router.post("/{session_id}/rounds/advance")
async def advance_round(request: Request, session_id: str = Depends(require_host)) -> dict:
    """Move to the next round, or finish the game after the last one."""
    session = await get_service(request).advance_round(session_id)
    return {"session": serialize_session(session)}


@router.post("/{session_id}/rounds/{round_index}/goal-image")
async def upload_goal_image(
    round_index: int,
    body: GoalImageRequest,
    request: Request,
    session_id: str = Depends(require_host),
) -> dict:
    """Set the round's reference image (recompressed to JPEG)."""
    mime_type, data = parse_data_url(body.data_url)
    session = await get_service(request).update_round_goal_image(session_id, round_index, data, mime_type)
    return {"session": serialize_session(session)}


@router.post("/{session_id}/rounds/{round_index}/start")
async def start_round(
    round_index: int,
    request: Request,
    session_id: str = Depends(require_host),
) -> dict:
    """Start (or re-run) a round: every player begins collecting prompts."""
    session = await get_service(request).start_round(session_id, round_index)
    return {"session": serialize_session(session)}


@router.post("/{session_id}/rounds/{round_index}/prompts")
async def submit_prompt(session_id: str, round_index: int, body: PromptRequest, request: Request) -> dict:
    """Submit the player's next prompt in role order."""
    text = body.prompt.strip()
    if not text:
        raise HTTPException(status_code=400, detail="prompt is required")
    session = await get_service(request).submit_prompt(session_id, round_index, body.player_id, text)
    return {"session": serialize_session(session)}


@router.post("/{session_id}/rounds/{round_index}/score")
async def score_player(
    round_index: int,
    body: ScoreRequest,
    request: Request,
    session_id: str = Depends(require_host),
) -> dict:
    """Record the host's 1-5 score for a player."""
    if not MIN_SCORE <= body.score <= MAX_SCORE:
        raise HTTPException(
            status_code=400,
            detail=f"score must be between {MIN_SCORE} and {MAX_SCORE}",
        )
    session = await get_service(request).set_player_score(session_id, round_index, body.player_id, body.score)
    return {"session": serialize_session(session)}
