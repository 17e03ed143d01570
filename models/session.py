"""Session, round, and player models for DX Party Server."""

import secrets
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """The five prompt categories, collected in this order."""
    HEAD = "head"
    TORSO = "torso"
    LEGS = "legs"
    POSE = "pose"
    BACKGROUND = "background"


ROLE_ORDER: list[Role] = [Role.HEAD, Role.TORSO, Role.LEGS, Role.POSE, Role.BACKGROUND]

ROLE_LABELS: dict[Role, str] = {
    Role.HEAD: "1) Head",
    Role.TORSO: "2) Torso & Arms",
    Role.LEGS: "3) Legs & Lower Body",
    Role.POSE: "4) Pose",
    Role.BACKGROUND: "5) Background",
}


class SessionStatus(str, Enum):
    """Coarse status shared by sessions and rounds."""
    WAITING = "waiting"             # Lobby, no round running
    COLLECTING = "collecting"       # Players are entering prompts
    READY = "ready"                 # Every entry has all five prompts
    GENERATING = "generating"       # Host triggered image generation
    COMPLETED = "completed"         # Every entry has a result (or the game is over)


class PlayerStatus(str, Enum):
    """Progress of a single player within a round."""
    PENDING = "pending"
    COLLECTING = "collecting"
    READY = "ready"
    GENERATING = "generating"
    COMPLETED = "completed"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def empty_prompts() -> dict[Role, str | None]:
    """A prompt map with every role present and unset."""
    return {role: None for role in ROLE_ORDER}


class PlayerRoundState(BaseModel):
    """A player's progress record for one round (an "entry")."""
    prompts: dict[Role, str | None] = Field(default_factory=empty_prompts)
    current_role_index: int = 0         # Cursor into ROLE_ORDER, 5 when done
    status: PlayerStatus = PlayerStatus.PENDING
    final_prompt: str | None = None
    result_image: str | None = None     # Base64; persisted in the payload store
    score: int | None = None
    generated_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utcnow)


class Round(BaseModel):
    """One of the fixed rounds of a session."""
    id: str                             # Stable id used in storage keys
    index: int                          # 1-based display number
    goal_image_base64: str | None = None
    goal_image_mime_type: str | None = None
    status: SessionStatus = SessionStatus.WAITING
    entries: dict[str, PlayerRoundState] = {}  # player_id -> entry
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Player(BaseModel):
    """A participant in a session."""
    id: str
    name: str
    joined_at: datetime = Field(default_factory=utcnow)
    prompts: dict[Role, str | None] = Field(default_factory=empty_prompts)
    current_role_index: int = 0
    status: PlayerStatus = PlayerStatus.PENDING
    final_prompt: str | None = None
    generated_at: datetime | None = None


class Session(BaseModel):
    """A game room: the root aggregate persisted by the repository."""
    id: str                             # Room code
    host_secret: str
    host_name: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.WAITING
    api_key: str | None = None          # Per-session provider credential override
    current_round_index: int = -1
    players: list[Player] = []          # Join order is display order
    rounds: list[Round] = []

    def get_player(self, player_id: str) -> Player | None:
        """Find a player by id."""
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def admits(self, host_secret: str | None = None, player_id: str | None = None) -> bool:
        """Whether optional viewer credentials are acceptable.

        Anonymous viewers are admitted. A supplied host secret must match
        and a supplied player id must belong to this session.
        """
        if host_secret and not secrets.compare_digest(self.host_secret, host_secret):
            return False
        if player_id and self.get_player(player_id) is None:
            return False
        return True


def serialize_session(session: Session) -> dict:
    """Client-facing snapshot: secrets removed, credential reduced to a flag."""
    data = session.model_dump(mode="json", exclude={"host_secret", "api_key"})
    data["has_api_key"] = bool(session.api_key)
    return data
