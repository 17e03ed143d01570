"""Session state transitions: joining, rounds, prompts, generation, scoring.

Every function here mutates a Session in memory and raises a SessionError
when a precondition fails. Nothing here touches storage; the service in
``engine/service.py`` wraps these in load/save cycles.
"""

from __future__ import annotations

import random
import secrets
from collections.abc import Iterable
from uuid import uuid4

from config import MAX_PLAYERS_PER_SESSION, ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH, ROUND_COUNT
from engine.errors import CapacityExceededError, InvalidStateError, LogicError, NotFoundError
from models.session import (
    ROLE_ORDER,
    Player,
    PlayerRoundState,
    PlayerStatus,
    Round,
    Session,
    SessionStatus,
    empty_prompts,
    utcnow,
)


def generate_room_code(rng: random.Random | None = None) -> str:
    """Draw a room code from the unambiguous alphabet.

    Args:
        rng: Optional Random instance for seeded/testing codes. Defaults
            to the system CSPRNG.
    """
    rng = rng or secrets.SystemRandom()
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def create_session(session_id: str, host_name: str, host_secret: str) -> Session:
    """Build a new session with its fixed, empty rounds.

    Args:
        session_id: Room code (uniqueness is the caller's job).
        host_name: Display name of the host.
        host_secret: Capability token for host-only operations.

    Returns:
        A WAITING session with no players and no round started.
    """
    now = utcnow()
    return Session(
        id=session_id,
        host_secret=host_secret,
        host_name=host_name,
        created_at=now,
        updated_at=now,
        rounds=[
            Round(id=str(uuid4()), index=index + 1, created_at=now, updated_at=now)
            for index in range(ROUND_COUNT)
        ],
    )


def get_round(session: Session, round_index: int) -> Round:
    """Look up a round by 0-based index.

    Raises:
        NotFoundError: If the index is outside the session's rounds.
    """
    if round_index < 0 or round_index >= len(session.rounds):
        raise NotFoundError(f"Round {round_index + 1} not found")
    return session.rounds[round_index]


def get_entry(round_: Round, player_id: str) -> PlayerRoundState:
    """Look up a player's entry in a round.

    Raises:
        NotFoundError: If the player has no entry in this round.
    """
    entry = round_.entries.get(player_id)
    if entry is None:
        raise NotFoundError("Player not found in this round")
    return entry


def reset_entry(entry: PlayerRoundState, status: PlayerStatus) -> None:
    """Clear prompts, cursor, result and score, and set a new status."""
    entry.prompts = empty_prompts()
    entry.current_role_index = 0
    entry.status = status
    entry.final_prompt = None
    entry.result_image = None
    entry.score = None
    entry.generated_at = None
    entry.updated_at = utcnow()


def reduce_round_status(statuses: Iterable[PlayerStatus]) -> SessionStatus:
    """Derive a round's status from its entries' statuses.

    COMPLETED when every entry is completed, READY when every entry is
    ready or completed, COLLECTING otherwise (including a round with no
    entries at all).
    """
    statuses = list(statuses)
    if not statuses:
        return SessionStatus.COLLECTING
    if all(s == PlayerStatus.COMPLETED for s in statuses):
        return SessionStatus.COMPLETED
    if all(s in (PlayerStatus.READY, PlayerStatus.COMPLETED) for s in statuses):
        return SessionStatus.READY
    return SessionStatus.COLLECTING


def _round_reduction(round_: Round) -> SessionStatus:
    return reduce_round_status(entry.status for entry in round_.entries.values())


def add_player(session: Session, name: str, player_id: str | None = None) -> Player:
    """Append a player and give them an entry in every round.

    A player joining while a round is collecting starts collecting in that
    round straight away; every other round gets a pending entry.

    Raises:
        CapacityExceededError: If the session already has the maximum players.
    """
    if len(session.players) >= MAX_PLAYERS_PER_SESSION:
        raise CapacityExceededError(
            f"Session is full (maximum {MAX_PLAYERS_PER_SESSION} players)."
        )

    player = Player(id=player_id or str(uuid4()), name=name)
    session.players.append(player)

    now = utcnow()
    for round_ in session.rounds:
        status = (
            PlayerStatus.COLLECTING
            if round_.status == SessionStatus.COLLECTING
            else PlayerStatus.PENDING
        )
        round_.entries[player.id] = PlayerRoundState(status=status)
        round_.updated_at = now

    return player


def set_goal_image(session: Session, round_index: int, image_base64: str, mime_type: str) -> Round:
    """Attach the host's reference image to a round. Status is unchanged."""
    round_ = get_round(session, round_index)
    round_.goal_image_base64 = image_base64
    round_.goal_image_mime_type = mime_type
    round_.updated_at = utcnow()
    return round_


def _begin_collecting(session: Session, round_: Round) -> list[str]:
    """Force a round into COLLECTING with a fresh entry for every player.

    Returns:
        Ids of players whose stored result image must be discarded.
    """
    round_.status = SessionStatus.COLLECTING
    round_.updated_at = utcnow()
    for player in session.players:
        entry = round_.entries.get(player.id) or PlayerRoundState()
        reset_entry(entry, PlayerStatus.COLLECTING)
        round_.entries[player.id] = entry
    session.status = SessionStatus.COLLECTING
    return [player.id for player in session.players]


def start_round(session: Session, round_index: int) -> list[str]:
    """Make a round current and (re)start prompt collection from scratch.

    Allowed on any round that has a goal image, including one that is
    already ready or completed (an explicit re-run).

    Returns:
        Ids of players whose stored result image for this round must be discarded.

    Raises:
        NotFoundError: If the round index is out of range.
        InvalidStateError: If the round has no goal image.
    """
    round_ = get_round(session, round_index)
    if not round_.goal_image_base64:
        raise InvalidStateError("Round goal image is missing")

    session.current_round_index = round_index
    return _begin_collecting(session, round_)


def submit_prompt(session: Session, round_index: int, player_id: str, text: str) -> PlayerRoundState:
    """Fill the player's next role and advance their cursor.

    The fifth accepted prompt flips the entry to READY. Round and session
    status are then recomputed from every entry in the round.

    Raises:
        InvalidStateError: If the round is not collecting/ready, or the
            player's entry is not collecting.
        NotFoundError: If the round or the player's entry does not exist.
        LogicError: If the entry's cursor is already past the last role.
    """
    round_ = get_round(session, round_index)
    if round_.status not in (SessionStatus.COLLECTING, SessionStatus.READY):
        raise InvalidStateError("Round is not collecting prompts at the moment.")

    entry = get_entry(round_, player_id)
    if entry.status != PlayerStatus.COLLECTING:
        raise InvalidStateError("Player is not currently entering prompts.")
    if entry.current_role_index >= len(ROLE_ORDER):
        raise LogicError("All prompts already collected for this player.")

    role = ROLE_ORDER[entry.current_role_index]
    entry.prompts[role] = text
    entry.current_role_index += 1
    entry.updated_at = utcnow()
    if entry.current_role_index == len(ROLE_ORDER):
        entry.status = PlayerStatus.READY

    if _round_reduction(round_) in (SessionStatus.READY, SessionStatus.COMPLETED):
        status = SessionStatus.READY
    else:
        status = SessionStatus.COLLECTING
    round_.status = status
    session.status = status
    round_.updated_at = utcnow()
    return entry


def set_player_generating(session: Session, round_index: int, player_id: str) -> PlayerRoundState:
    """Mark a player's image as in progress.

    Round and session status are forced to GENERATING by the latest call,
    whatever the other entries are doing.

    Raises:
        NotFoundError: If the round or the player's entry does not exist.
    """
    round_ = get_round(session, round_index)
    entry = get_entry(round_, player_id)

    entry.status = PlayerStatus.GENERATING
    entry.updated_at = utcnow()
    round_.status = SessionStatus.GENERATING
    round_.updated_at = utcnow()
    session.status = SessionStatus.GENERATING
    return entry


def set_player_result(
    session: Session,
    round_index: int,
    player_id: str,
    final_prompt: str,
    image_base64: str,
) -> PlayerRoundState:
    """Record a generated image and mark the entry COMPLETED.

    Accepted whatever the entry's current status is. The round and session
    only move forward: to COMPLETED when every entry is completed, to
    READY when every entry is ready or completed, otherwise unchanged.

    Raises:
        NotFoundError: If the round or the player's entry does not exist.
    """
    round_ = get_round(session, round_index)
    entry = get_entry(round_, player_id)

    now = utcnow()
    entry.final_prompt = final_prompt
    entry.result_image = image_base64
    entry.generated_at = now
    entry.status = PlayerStatus.COMPLETED
    entry.updated_at = now

    status = _round_reduction(round_)
    if status != SessionStatus.COLLECTING:
        round_.status = status
        session.status = status
    round_.updated_at = now
    return entry


def set_player_score(session: Session, round_index: int, player_id: str, score: int) -> PlayerRoundState:
    """Record the host's score for an entry. Workflow status is unaffected.

    The score range is validated by the caller.

    Raises:
        NotFoundError: If the round or the player's entry does not exist.
    """
    round_ = get_round(session, round_index)
    entry = get_entry(round_, player_id)

    entry.score = score
    entry.updated_at = utcnow()
    round_.updated_at = utcnow()
    return entry


def advance_round(session: Session) -> list[str]:
    """Move to the next round, or finish the game after the last one.

    On the last round the session becomes COMPLETED and the index stays
    put, so repeated calls are harmless. The next round is not checked for
    a goal image; the host is expected to upload all of them up front.

    Returns:
        Ids of players whose stored result image in the new current round
        must be discarded (empty when the game just finished).

    Raises:
        InvalidStateError: If no round has been started yet.
    """
    if session.current_round_index < 0:
        raise InvalidStateError("No round has started yet")

    if session.current_round_index >= len(session.rounds) - 1:
        session.status = SessionStatus.COMPLETED
        return []

    session.current_round_index += 1
    round_ = get_round(session, session.current_round_index)
    return _begin_collecting(session, round_)


def reset_session(session: Session) -> list[tuple[str, str]]:
    """Return the whole session to the lobby, keeping the players.

    Returns:
        (round_id, player_id) pairs whose stored result image must be discarded.
    """
    session.status = SessionStatus.WAITING
    session.current_round_index = -1

    for player in session.players:
        player.prompts = empty_prompts()
        player.current_role_index = 0
        player.status = PlayerStatus.PENDING
        player.final_prompt = None
        player.generated_at = None

    cleared: list[tuple[str, str]] = []
    now = utcnow()
    for round_ in session.rounds:
        round_.status = SessionStatus.WAITING
        round_.updated_at = now
        for player_id, entry in round_.entries.items():
            reset_entry(entry, PlayerStatus.PENDING)
            cleared.append((round_.id, player_id))
    return cleared


def tally_scores(session: Session) -> list[dict]:
    """Total each player's scores across all rounds.

    Returns:
        One row per player, highest total first; ties keep join order.
    """
    rows = []
    for player in session.players:
        per_round = [
            round_.entries[player.id].score if player.id in round_.entries else None
            for round_ in session.rounds
        ]
        rows.append({
            "player_id": player.id,
            "name": player.name,
            "round_scores": per_round,
            "total": sum(score for score in per_round if score is not None),
        })
    rows.sort(key=lambda row: row["total"], reverse=True)
    return rows
