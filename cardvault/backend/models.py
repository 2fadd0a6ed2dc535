"""Domain records for trading, game sessions and rewards."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class GameType(str, Enum):
    RUNNER = "runner"
    MEMORY = "memory"


class RewardType(str, Enum):
    FLAT_XP = "xp"
    FIXED_ASSET = "card"
    WEIGHTED_PACK = "pack"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AssetInstance:
    id: str
    template_id: str
    owner_id: str
    acquired_at: datetime
    level: int = 1


@dataclass(frozen=True)
class ExchangeOffer:
    id: str
    issuer_id: str
    asset_id: str
    issued_at: datetime
    expires_at: datetime
    signature: str
    consumed_at: datetime | None = None
    consumer_id: str | None = None

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None


@dataclass(frozen=True)
class SessionToken:
    game_type: GameType
    seed: str
    signature: str


@dataclass(frozen=True)
class MatchResult:
    id: str
    user_id: str
    game_type: GameType
    score: int
    seed: str
    proof: str
    stars: int
    created_at: datetime


@dataclass(frozen=True)
class LootEntry:
    template_id: str
    weight: float


@dataclass(frozen=True)
class LootTable:
    pack_type: str
    entries: tuple[LootEntry, ...]


@dataclass(frozen=True)
class Profile:
    user_id: str
    xp: int = 0
    level: int = 1


@dataclass(frozen=True)
class RewardClaim:
    id: str
    user_id: str
    challenge_id: str
    status: ClaimStatus
    reward_type: RewardType
    reward_value: str
    consumed_at: datetime | None = None


@dataclass(frozen=True)
class AuditEvent:
    user_id: str
    event_type: str
    event_data: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class SwapReceipt:
    offer_id: str
    issuer_id: str
    redeemer_id: str
    issuer_received: str
    redeemer_received: str


@dataclass(frozen=True)
class MintOutcome:
    reward_type: RewardType
    assets: tuple[AssetInstance, ...] = ()
    xp_delta: int = 0
    xp: int | None = None
    level: int | None = None
    pack_type: str | None = None


@dataclass(frozen=True)
class ScoreOutcome:
    match: MatchResult
    stars: int
    reward: MintOutcome | None = field(default=None)
