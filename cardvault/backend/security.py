"""HMAC signing helpers for offer and game-session capabilities."""

from __future__ import annotations

import hashlib
import hmac
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .errors import ConfigurationError

MESSAGE_DELIMITER = "|"


def canonical_message(*fields: object) -> bytes:
    """Join fields in the given order into the signed message."""
    return MESSAGE_DELIMITER.join(str(value) for value in fields).encode("utf-8")


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp the same way at issuance and at verification."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def generate_seed() -> str:
    """Generate a fresh 122-bit random identifier."""
    return str(uuid.uuid4())


def sign(message: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify(message: bytes, signature: str, secret: str) -> bool:
    """Constant-time comparison of ``signature`` against the recomputed one."""
    if not isinstance(signature, str) or not signature:
        return False
    expected = sign(message, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.lower().encode("utf-8"))


@dataclass(frozen=True)
class TokenSigner:
    """Holds one signer role's secret. Signatures are lowercase hex."""

    secret: str = field(repr=False)
    role: str = "default"

    def __post_init__(self) -> None:
        if not self.secret:
            raise ConfigurationError(f"Missing signing secret for {self.role}")

    def sign(self, message: bytes) -> str:
        return sign(message, self.secret)

    def verify(self, message: bytes, signature: str) -> bool:
        return verify(message, signature, self.secret)


def score_proof(session_signature: str, game_type: object, score: int, seed: str) -> str:
    """Client-side proof binding a score to its session token."""
    game = getattr(game_type, "value", game_type)
    return sign(canonical_message(game, score, seed), session_signature)
