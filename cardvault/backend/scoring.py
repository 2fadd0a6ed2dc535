"""Score submission: proof checks, star ratings and pack rewards."""

from __future__ import annotations

import logging
import uuid

from . import audit
from .clock import Clock, utc_now
from .errors import AlreadyConsumed, ConfigurationError, IntegrityViolation, UnknownLootTable
from .models import GameType, MatchResult, RewardType, ScoreOutcome
from .rewards import RewardMinter
from .security import TokenSigner, canonical_message, verify
from .sessions import parse_game_type, session_message
from .store import EventLog, MatchStore, SessionStore

logger = logging.getLogger(__name__)

# (minimum or maximum score, stars), checked in order.
STAR_THRESHOLDS: dict[GameType, tuple[tuple[int, int], ...]] = {
    GameType.RUNNER: ((1000, 3), (500, 2), (200, 1)),
    GameType.MEMORY: ((20, 3), (35, 2), (50, 1)),
}
LOWER_IS_BETTER = frozenset({GameType.MEMORY})

PACK_REWARD_BY_STARS = {2: "common", 3: "rare"}


def star_rating(game_type: GameType, score: int) -> int:
    lower_is_better = game_type in LOWER_IS_BETTER
    for threshold, stars in STAR_THRESHOLDS[game_type]:
        if (score <= threshold) if lower_is_better else (score >= threshold):
            return stars
    return 0


def pack_reward_for(stars: int) -> str | None:
    return PACK_REWARD_BY_STARS.get(stars)


class ScoreVerifier:
    def __init__(
        self,
        signer: TokenSigner,
        matches: MatchStore,
        events: EventLog,
        minter: RewardMinter,
        sessions: SessionStore | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._signer = signer
        self._matches = matches
        self._events = events
        self._minter = minter
        self._sessions = sessions
        self._clock = clock

    def submit_score(
        self,
        user_id: str,
        game_type: str | GameType,
        score: int,
        seed: str,
        signature: str,
        proof: str,
    ) -> ScoreOutcome:
        now = self._clock()
        # Verify over the raw tag so a tampered game name is audited like any other byte.
        game_value = game_type.value if isinstance(game_type, GameType) else str(game_type)

        seed_ok = self._signer.verify(session_message(game_value, seed, user_id), signature)
        score_ok = seed_ok and verify(canonical_message(game_value, score, seed), proof, signature.lower())
        if not score_ok:
            audit.emit(
                self._events,
                user_id,
                "game_cheat_attempt",
                now,
                game=game_value,
                score=score,
                seed=seed,
                signature=signature,
                proof=proof,
            )
            logger.warning("Rejected %s score %s from %s: proof mismatch", game_value, score, user_id)
            raise IntegrityViolation(f"Score proof mismatch for seed {seed}")

        game = parse_game_type(game_value)
        stars = star_rating(game, score)
        pack_type = pack_reward_for(stars)
        if pack_type is not None:
            # Resolve the tier table before the seed or the match is written.
            try:
                self._minter.pack_table(pack_type)
            except UnknownLootTable as exc:
                raise ConfigurationError(f"No loot table configured for {pack_type!r} pack rewards") from exc

        if self._sessions is not None and not self._sessions.consume_session(seed, user_id, now):
            raise AlreadyConsumed(f"Session {seed} already used")

        match = MatchResult(
            id=str(uuid.uuid4()),
            user_id=user_id,
            game_type=game,
            score=score,
            seed=seed,
            proof=proof,
            stars=stars,
            created_at=now,
        )
        self._matches.record_match(match)

        reward = None
        try:
            if pack_type is not None:
                reward = self._minter.mint(RewardType.WEIGHTED_PACK, pack_type, user_id, match_id=match.id)
        finally:
            audit.emit(
                self._events,
                user_id,
                "game_complete",
                now,
                game=game.value,
                score=score,
                stars=stars,
                pack_reward=pack_type if reward is not None else None,
            )
        logger.info("%s scored %s in %s for %s stars", user_id, score, game.value, stars)
        return ScoreOutcome(match=match, stars=stars, reward=reward)
