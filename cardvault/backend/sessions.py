"""Game session tokens: a server-issued seed signed for one user and game."""

from __future__ import annotations

import logging

from .clock import Clock, utc_now
from .errors import UnsupportedGame
from .models import GameType, SessionToken
from .security import TokenSigner, canonical_message, generate_seed
from .store import SessionStore

logger = logging.getLogger(__name__)


def parse_game_type(value: str | GameType) -> GameType:
    try:
        return GameType(value)
    except ValueError as exc:
        raise UnsupportedGame(f"Unsupported game {value!r}") from exc


def session_message(game: str, seed: str, user_id: str) -> bytes:
    return canonical_message(game, seed, user_id)


class GameSessionIssuer:
    """Mints bearer session tokens.

    Tokens are stateless unless a ``sessions`` store is given, in which case
    every seed is recorded so the verifier can enforce single use.
    """

    def __init__(self, signer: TokenSigner, sessions: SessionStore | None = None, clock: Clock = utc_now) -> None:
        self._signer = signer
        self._sessions = sessions
        self._clock = clock

    def start_session(self, user_id: str, game_type: str | GameType) -> SessionToken:
        game = parse_game_type(game_type)
        seed = generate_seed()
        signature = self._signer.sign(session_message(game.value, seed, user_id))
        if self._sessions is not None:
            self._sessions.record_session(seed, user_id, game, self._clock())
        logger.debug("Issued %s session for %s", game.value, user_id)
        return SessionToken(game_type=game, seed=seed, signature=signature)
