"""Session service: every state-changing operation as a load/mutate/save cycle.

Each public coroutine loads the session from the repository, applies one
transition from ``engine/rounds.py`` and saves the result. There is no
cross-request locking; two concurrent operations on the same session are
last-writer-wins at whole-session granularity.
"""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from config import GOAL_IMAGE_MAX_BYTES, RESULT_IMAGE_MAX_BYTES
from engine import rounds
from engine.errors import GenerationError, InvalidStateError, NotFoundError, SessionError
from engine.gemini import generate_composite_image
from engine.imaging import ImageDecodeError, compress_base64_image
from engine.prompt import build_five_stage_prompt
from models.session import ROLE_ORDER, Player, PlayerStatus, Session
from storage.payloads import PayloadKey
from storage.repository import SessionRepository

logger = logging.getLogger(__name__)

ImageGenerator = Callable[..., Awaitable[str]]

GENERATABLE_STATUSES = (PlayerStatus.READY, PlayerStatus.GENERATING, PlayerStatus.COMPLETED)


@dataclass
class GenerationJob:
    """Everything needed to render one player's image outside the session record."""
    player_id: str
    round_index: int
    final_prompt: str
    api_key: str
    goal_image_base64: str
    goal_image_mime_type: str


class SessionService:
    """The session state machine.

    Args:
        repository: Session storage.
        generator: Coroutine that renders an image; defaults to Gemini.
        default_api_key: Provider credential used when a session has no override.
        rng: Optional Random instance for seeded room codes.
    """

    def __init__(
        self,
        repository: SessionRepository,
        generator: ImageGenerator = generate_composite_image,
        default_api_key: str = "",
        rng: random.Random | None = None,
    ) -> None:
        self.repository = repository
        self.generator = generator
        self.default_api_key = default_api_key
        self._rng = rng

    async def _load(self, session_id: str, hydrate: bool = True) -> Session:
        session = await self.repository.load(session_id, hydrate=hydrate)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def _discard_results(self, session_id: str, pairs: list[tuple[str, str]]) -> None:
        """Delete stored result images for (round_id, player_id) pairs."""
        await asyncio.gather(*(
            self.repository.payloads.delete(PayloadKey(session_id, round_id, player_id))
            for round_id, player_id in pairs
        ))

    async def _unique_room_code(self) -> str:
        while True:
            code = rounds.generate_room_code(self._rng)
            if not await self.repository.exists(code):
                return code

    # ── Lobby ──

    async def create_session(self, host_name: str) -> Session:
        """Create a room with a fresh code and host secret.

        The returned session still carries ``host_secret``; it is the only
        time the API hands it out.
        """
        code = await self._unique_room_code()
        session = rounds.create_session(code, host_name, secrets.token_urlsafe(24))
        saved = await self.repository.save(session)
        logger.info("Session %s created by host %r", code, host_name)
        return saved

    async def get_session(self, session_id: str) -> Session:
        """Load a session with result images.

        Raises:
            NotFoundError: If the session does not exist (or has expired).
        """
        return await self._load(session_id)

    async def find_session(self, session_id: str, hydrate: bool = True) -> Session | None:
        """Like get_session, but None instead of NotFoundError."""
        return await self.repository.load(session_id, hydrate=hydrate)

    async def join_session(self, session_id: str, name: str) -> tuple[Session, Player]:
        """Add a player to a session.

        Raises:
            NotFoundError: If the session does not exist.
            CapacityExceededError: If the session is full.
        """
        session = await self._load(session_id)
        player = rounds.add_player(session, name)
        saved = await self.repository.save(session)
        logger.info("Player %s (%r) joined session %s", player.id, name, session_id)
        return saved, player

    async def update_round_goal_image(
        self,
        session_id: str,
        round_index: int,
        image_base64: str,
        mime_type: str,
        compress: bool = True,
    ) -> Session:
        """Set a round's reference image, compressed to the goal-image budget.

        Raises:
            NotFoundError: If the session or round does not exist.
            ImageDecodeError: If the image cannot be decoded.
        """
        session = await self._load(session_id)
        rounds.get_round(session, round_index)
        if compress:
            image_base64 = await asyncio.to_thread(
                compress_base64_image, image_base64, GOAL_IMAGE_MAX_BYTES,
            )
            mime_type = "image/jpeg"
        rounds.set_goal_image(session, round_index, image_base64, mime_type)
        return await self.repository.save(session)

    async def update_api_key(self, session_id: str, api_key: str) -> Session:
        """Set the session's provider credential override."""
        session = await self._load(session_id)
        session.api_key = api_key
        return await self.repository.save(session)

    async def reset_session(self, session_id: str) -> Session:
        """Return the session to the lobby and drop every stored result image."""
        session = await self._load(session_id)
        cleared = rounds.reset_session(session)
        await self._discard_results(session.id, cleared)
        saved = await self.repository.save(session)
        logger.info("Session %s reset", session_id)
        return saved

    async def validate_host(self, session_id: str, host_secret: str) -> bool:
        """Check a host secret. False for a wrong secret and for an unknown session alike."""
        session = await self.repository.load(session_id, hydrate=False)
        if session is None or not host_secret:
            return False
        return secrets.compare_digest(session.host_secret, host_secret)

    async def scoreboard(self, session_id: str) -> list[dict]:
        """Per-player score totals across all rounds."""
        session = await self._load(session_id, hydrate=False)
        return rounds.tally_scores(session)

    # ── Rounds ──

    async def start_round(self, session_id: str, round_index: int) -> Session:
        """Make a round current and collect prompts from scratch.

        Raises:
            NotFoundError: If the session or round does not exist.
            InvalidStateError: If the round has no goal image.
        """
        session = await self._load(session_id)
        player_ids = rounds.start_round(session, round_index)
        round_id = session.rounds[round_index].id
        await self._discard_results(session.id, [(round_id, pid) for pid in player_ids])
        saved = await self.repository.save(session)
        logger.info("Session %s started round %d", session_id, round_index + 1)
        return saved

    async def submit_prompt(self, session_id: str, round_index: int, player_id: str, text: str) -> Session:
        """Record the player's next prompt in role order.

        Raises:
            NotFoundError: If the session, round or entry does not exist.
            InvalidStateError: If the round or player is not collecting.
            LogicError: If the player already gave all five prompts.
        """
        session = await self._load(session_id)
        rounds.submit_prompt(session, round_index, player_id, text)
        return await self.repository.save(session)

    async def set_player_generating(self, session_id: str, round_index: int, player_id: str) -> Session:
        """Mark a player's image as being generated."""
        session = await self._load(session_id)
        rounds.set_player_generating(session, round_index, player_id)
        return await self.repository.save(session)

    async def set_player_result(
        self,
        session_id: str,
        round_index: int,
        player_id: str,
        final_prompt: str,
        image_base64: str,
    ) -> Session:
        """Store a generated image and complete the player's entry."""
        session = await self._load(session_id)
        rounds.set_player_result(session, round_index, player_id, final_prompt, image_base64)
        return await self.repository.save(session)

    async def set_player_score(self, session_id: str, round_index: int, player_id: str, score: int) -> Session:
        """Record the host's score (range already validated by the caller)."""
        session = await self._load(session_id)
        rounds.set_player_score(session, round_index, player_id, score)
        return await self.repository.save(session)

    async def advance_round(self, session_id: str) -> Session:
        """Move to the next round, or finish the game after the last one.

        Raises:
            NotFoundError: If the session does not exist.
            InvalidStateError: If no round has been started.
        """
        session = await self._load(session_id)
        player_ids = rounds.advance_round(session)
        if player_ids:
            round_id = session.rounds[session.current_round_index].id
            await self._discard_results(session.id, [(round_id, pid) for pid in player_ids])
            logger.info("Session %s advanced to round %d", session_id, session.current_round_index + 1)
        else:
            logger.info("Session %s completed", session_id)
        return await self.repository.save(session)

    # ── Generation ──

    async def _prepare_generation(self, session_id: str, round_index: int, player_id: str) -> GenerationJob:
        """Check a player can be generated, mark them generating, and build the job."""
        session = await self._load(session_id)
        round_ = rounds.get_round(session, round_index)
        entry = rounds.get_entry(round_, player_id)

        if entry.status not in GENERATABLE_STATUSES:
            raise InvalidStateError("Player prompts not ready")
        if not round_.goal_image_base64:
            raise InvalidStateError("Round goal image missing")
        api_key = session.api_key or self.default_api_key
        if not api_key:
            raise InvalidStateError("Gemini API key is not configured")
        for role in ROLE_ORDER:
            if not entry.prompts.get(role):
                raise InvalidStateError(f'Prompt section "{role.value}" is missing.')

        rounds.set_player_generating(session, round_index, player_id)
        await self.repository.save(session)

        return GenerationJob(
            player_id=player_id,
            round_index=round_index,
            final_prompt=build_five_stage_prompt(entry.prompts),
            api_key=api_key,
            goal_image_base64=round_.goal_image_base64,
            goal_image_mime_type=round_.goal_image_mime_type or "image/jpeg",
        )

    async def _render(self, job: GenerationJob) -> str:
        """Call the provider and shrink the result to the storage budget."""
        image = await self.generator(
            job.api_key,
            job.final_prompt,
            job.goal_image_base64,
            job.goal_image_mime_type,
        )
        try:
            return await asyncio.to_thread(compress_base64_image, image, RESULT_IMAGE_MAX_BYTES)
        except ImageDecodeError as exc:
            raise GenerationError("Gemini API returned an image that could not be decoded.") from exc

    async def generate_player_image(self, session_id: str, round_index: int, player_id: str) -> Session:
        """Generate and store one player's image for a round.

        The entry stays GENERATING if the provider fails, and can be
        generated again.

        Raises:
            NotFoundError: If the session, round or entry does not exist.
            InvalidStateError: If prompts, goal image or credential are missing.
            GenerationError: If the provider call failed.
        """
        job = await self._prepare_generation(session_id, round_index, player_id)
        try:
            image = await self._render(job)
        except GenerationError:
            logger.error(
                "Generation failed for player %s in session %s", player_id, session_id, exc_info=True,
            )
            raise
        return await self.set_player_result(session_id, round_index, player_id, job.final_prompt, image)

    async def generate_batch(
        self, session_id: str, round_index: int, player_ids: list[str],
    ) -> tuple[Session, list[dict]]:
        """Generate images for several players of one round.

        Status writes happen one at a time; only the provider calls run
        concurrently. A failure for one player is reported in their result
        row and does not stop the others.

        Returns:
            (session after all writes, one result row per distinct player id).

        Raises:
            NotFoundError: If the session or round does not exist.
        """
        session = await self._load(session_id, hydrate=False)
        rounds.get_round(session, round_index)

        results: dict[str, dict] = {}
        jobs: list[GenerationJob] = []
        for player_id in dict.fromkeys(player_ids):
            try:
                jobs.append(await self._prepare_generation(session_id, round_index, player_id))
            except SessionError as exc:
                results[player_id] = {"player_id": player_id, "success": False, "error": exc.message}

        outcomes = await asyncio.gather(*(self._render(job) for job in jobs), return_exceptions=True)

        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Generation failed for player %s in session %s: %s",
                    job.player_id, session_id, outcome,
                )
                message = outcome.message if isinstance(outcome, SessionError) else "Unknown error"
                results[job.player_id] = {"player_id": job.player_id, "success": False, "error": message}
                continue
            try:
                await self.set_player_result(
                    session_id, round_index, job.player_id, job.final_prompt, outcome,
                )
            except SessionError as exc:
                results[job.player_id] = {"player_id": job.player_id, "success": False, "error": exc.message}
            else:
                results[job.player_id] = {"player_id": job.player_id, "success": True, "error": None}

        session = await self._load(session_id)
        return session, [results[player_id] for player_id in dict.fromkeys(player_ids)]
