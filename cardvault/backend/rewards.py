"""Reward minting: flat experience, fixed cards and weighted loot packs."""

from __future__ import annotations

import bisect
import itertools
import logging
import random
from typing import Protocol

from . import audit
from .clock import Clock, utc_now
from .errors import AlreadyConsumed, ClaimNotApproved, ConfigurationError, NotFound, UnknownLootTable
from .models import ClaimStatus, LootEntry, LootTable, MintOutcome, RewardType
from .store import AssetStore, ClaimStore, EventLog, LootTableStore, ProfileStore

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 100
MAX_LEVEL = 10


def level_for_xp(xp: int) -> int:
    return min(MAX_LEVEL, max(xp, 0) // XP_PER_LEVEL + 1)


def _weighted_entries(table: LootTable) -> list[LootEntry]:
    """Return the positive-weight entries, rejecting malformed tables."""
    if not table.entries:
        raise ConfigurationError(f"Loot table {table.pack_type!r} is empty")
    if any(entry.weight < 0 for entry in table.entries):
        raise ConfigurationError(f"Loot table {table.pack_type!r} has a negative weight")
    entries = [entry for entry in table.entries if entry.weight > 0]
    if not entries:
        raise ConfigurationError(f"Loot table {table.pack_type!r} has zero total weight")
    return entries


class LootSampler(Protocol):
    def draw(self, table: LootTable, rng: random.Random) -> LootEntry:
        """Pick one entry with probability proportional to its weight."""


class CumulativeWeightSampler:
    """Walks entries accumulating weight until it reaches the draw."""

    def draw(self, table: LootTable, rng: random.Random) -> LootEntry:
        entries = _weighted_entries(table)
        target = rng.random() * sum(entry.weight for entry in entries)
        cumulative = 0.0
        for entry in entries:
            cumulative += entry.weight
            if cumulative >= target:
                return entry
        # float rounding can leave target a hair above the final sum
        return entries[-1]


class BisectWeightSampler:
    """Binary search over the cumulative weights, for large tables."""

    def draw(self, table: LootTable, rng: random.Random) -> LootEntry:
        entries = _weighted_entries(table)
        cumulative = list(itertools.accumulate(entry.weight for entry in entries))
        target = rng.random() * cumulative[-1]
        index = bisect.bisect_left(cumulative, target)
        return entries[min(index, len(entries) - 1)]


class RewardMinter:
    """Turns a reward specification into state changes.

    Callers must hand in an already validated claim; no eligibility checks
    happen here.
    """

    def __init__(
        self,
        assets: AssetStore,
        profiles: ProfileStore,
        loot_tables: LootTableStore,
        events: EventLog,
        sampler: LootSampler | None = None,
        rng: random.Random | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._assets = assets
        self._profiles = profiles
        self._loot_tables = loot_tables
        self._events = events
        self._sampler = sampler or CumulativeWeightSampler()
        self._rng = rng or random.SystemRandom()
        self._clock = clock

    def mint(self, reward_type: RewardType | str, reward_value: str, user_id: str, **context: object) -> MintOutcome:
        outcome = self.apply(reward_type, reward_value, user_id)
        self.record(outcome, user_id, **context)
        return outcome

    def apply(self, reward_type: RewardType | str, reward_value: str, user_id: str) -> MintOutcome:
        """Perform the state change only. Pair with ``record``."""
        try:
            reward_type = RewardType(reward_type)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown reward type {reward_type!r}") from exc
        if reward_type is RewardType.FLAT_XP:
            outcome = self._mint_xp(reward_value, user_id)
        elif reward_type is RewardType.FIXED_ASSET:
            asset = self._assets.create_asset(reward_value, user_id, self._clock())
            outcome = MintOutcome(reward_type=reward_type, assets=(asset,))
        else:
            outcome = self._mint_pack(reward_value, user_id)
        logger.info("Minted %s reward %r for %s", reward_type.value, reward_value, user_id)
        return outcome

    def record(self, outcome: MintOutcome, user_id: str, **context: object) -> None:
        if outcome.reward_type is RewardType.FLAT_XP:
            detail: dict[str, object] = {"xp_delta": outcome.xp_delta, "level": outcome.level}
        else:
            detail = {"cards": [asset.id for asset in outcome.assets]}
            if outcome.pack_type is not None:
                detail["pack_type"] = outcome.pack_type
        audit.emit(self._events, user_id, "mint", self._clock(), reward_type=outcome.reward_type.value, **detail, **context)

    def pack_table(self, pack_type: str) -> LootTable:
        """Return a drawable loot table or raise before anything is minted."""
        table = self._loot_tables.get_loot_table(pack_type)
        if table is None:
            raise UnknownLootTable(f"No loot table for pack {pack_type!r}")
        _weighted_entries(table)
        return table

    def _mint_xp(self, reward_value: str, user_id: str) -> MintOutcome:
        try:
            amount = int(reward_value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"XP reward value {reward_value!r} is not an integer") from exc
        if amount < 0:
            raise ConfigurationError(f"XP reward value {amount} is negative")
        xp = self._profiles.add_experience(user_id, amount)
        level = self._profiles.raise_level(user_id, level_for_xp(xp))
        return MintOutcome(reward_type=RewardType.FLAT_XP, xp_delta=amount, xp=xp, level=level)

    def _mint_pack(self, pack_type: str, user_id: str) -> MintOutcome:
        table = self.pack_table(pack_type)
        entry = self._sampler.draw(table, self._rng)
        asset = self._assets.create_asset(entry.template_id, user_id, self._clock())
        return MintOutcome(reward_type=RewardType.WEIGHTED_PACK, assets=(asset,), pack_type=pack_type)


class ClaimRedeemer:
    """Validates an approved claim, consumes it and delegates to the minter."""

    def __init__(self, claims: ClaimStore, minter: RewardMinter, clock: Clock = utc_now) -> None:
        self._claims = claims
        self._minter = minter
        self._clock = clock

    def redeem(self, claim_id: str, user_id: str) -> MintOutcome:
        claim = self._claims.get_claim(claim_id)
        if claim is None or claim.user_id != user_id:
            raise NotFound(f"Claim {claim_id} not found for {user_id}")
        if claim.status is not ClaimStatus.APPROVED:
            raise ClaimNotApproved(f"Claim {claim_id} is {claim.status.value}")
        if not self._claims.mark_claim_consumed(claim_id, self._clock()):
            raise AlreadyConsumed(f"Claim {claim_id} already redeemed")

        try:
            outcome = self._minter.apply(claim.reward_type, claim.reward_value, user_id)
        except Exception:
            if not self._claims.release_claim(claim_id):
                logger.error("Claim %s could not be released after a failed mint", claim_id)
            raise

        # The reward exists from here on, so the claim stays consumed even if auditing fails.
        self._minter.record(outcome, user_id, challenge_id=claim.challenge_id, claim_id=claim_id)
        return outcome
