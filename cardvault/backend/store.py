"""Persistence interfaces and implementations for cards, offers and rewards."""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Protocol

from .errors import ConfigurationError, Conflict, NotFound
from .models import (
    AssetInstance,
    AuditEvent,
    ClaimStatus,
    ExchangeOffer,
    GameType,
    LootEntry,
    LootTable,
    MatchResult,
    Profile,
    RewardClaim,
    RewardType,
)


class OfferStore(Protocol):
    def create_offer(self, offer: ExchangeOffer) -> None:
        """Persist a new offer. Raises Conflict if the id already exists."""

    def get_offer(self, offer_id: str) -> ExchangeOffer:
        """Return the offer. Raises NotFound if absent."""

    def mark_offer_consumed(self, offer_id: str, consumer_id: str, now: datetime) -> bool:
        """Set consumed_at/consumer_id only if consumed_at is still null."""


class AssetStore(Protocol):
    def get_asset(self, asset_id: str) -> AssetInstance | None:
        """Return the asset instance or None."""

    def create_asset(self, template_id: str, owner_id: str, now: datetime) -> AssetInstance:
        """Create a new asset instance owned by ``owner_id``."""

    def transfer_asset(self, asset_id: str, from_owner: str, to_owner: str) -> bool:
        """Move ownership only if ``from_owner`` is the current owner."""


class ProfileStore(Protocol):
    def get_profile(self, user_id: str) -> Profile | None:
        """Return the profile or None."""

    def add_experience(self, user_id: str, amount: int) -> int:
        """Atomically add experience and return the new total."""

    def raise_level(self, user_id: str, level: int) -> int:
        """Set the level to max(current, level) and return the stored level."""


class MatchStore(Protocol):
    def record_match(self, match: MatchResult) -> None:
        """Persist an immutable match result."""


class LootTableStore(Protocol):
    def get_loot_table(self, pack_type: str) -> LootTable | None:
        """Return the loot table for a pack or None."""


class ClaimStore(Protocol):
    def get_claim(self, claim_id: str) -> RewardClaim | None:
        """Return the reward claim or None."""

    def mark_claim_consumed(self, claim_id: str, now: datetime) -> bool:
        """Consume an approved claim only if it has not been consumed yet."""

    def release_claim(self, claim_id: str) -> bool:
        """Undo a consumption after a failed mint."""


class SessionStore(Protocol):
    def record_session(self, seed: str, user_id: str, game_type: GameType, now: datetime) -> None:
        """Remember an issued seed for single-use sessions."""

    def consume_session(self, seed: str, user_id: str, now: datetime) -> bool:
        """Consume an issued seed only if it is unused and belongs to ``user_id``."""


class EventLog(Protocol):
    def record_event(self, event: AuditEvent) -> None:
        """Append an audit event."""


class CardVaultStore(
    OfferStore,
    AssetStore,
    ProfileStore,
    MatchStore,
    LootTableStore,
    ClaimStore,
    SessionStore,
    EventLog,
    Protocol,
):
    """Everything the services need from storage."""


class InMemoryCardVaultStore:
    """Process-local store. A single lock makes every conditional update atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._offers: dict[str, ExchangeOffer] = {}
        self._assets: dict[str, AssetInstance] = {}
        self._profiles: dict[str, Profile] = {}
        self._matches: list[MatchResult] = []
        self._loot_tables: dict[str, LootTable] = {}
        self._claims: dict[str, RewardClaim] = {}
        self._sessions: dict[str, dict[str, Any]] = {}
        self.events: list[AuditEvent] = []

    # offers

    def create_offer(self, offer: ExchangeOffer) -> None:
        with self._lock:
            if offer.id in self._offers:
                raise Conflict(f"Offer {offer.id} already exists")
            self._offers[offer.id] = offer

    def get_offer(self, offer_id: str) -> ExchangeOffer:
        offer = self._offers.get(offer_id)
        if offer is None:
            raise NotFound(f"Offer {offer_id} not found")
        return offer

    def mark_offer_consumed(self, offer_id: str, consumer_id: str, now: datetime) -> bool:
        with self._lock:
            offer = self._offers.get(offer_id)
            if offer is None or offer.consumed_at is not None:
                return False
            self._offers[offer_id] = replace(offer, consumed_at=now, consumer_id=consumer_id)
            return True

    # assets

    def get_asset(self, asset_id: str) -> AssetInstance | None:
        return self._assets.get(asset_id)

    def create_asset(self, template_id: str, owner_id: str, now: datetime) -> AssetInstance:
        asset = AssetInstance(id=str(uuid.uuid4()), template_id=template_id, owner_id=owner_id, acquired_at=now)
        with self._lock:
            self._assets[asset.id] = asset
        return asset

    def transfer_asset(self, asset_id: str, from_owner: str, to_owner: str) -> bool:
        with self._lock:
            asset = self._assets.get(asset_id)
            if asset is None or asset.owner_id != from_owner:
                return False
            self._assets[asset_id] = replace(asset, owner_id=to_owner)
            return True

    # profiles

    def get_profile(self, user_id: str) -> Profile | None:
        return self._profiles.get(user_id)

    def add_experience(self, user_id: str, amount: int) -> int:
        with self._lock:
            profile = self._profiles.get(user_id, Profile(user_id=user_id))
            profile = replace(profile, xp=profile.xp + amount)
            self._profiles[user_id] = profile
            return profile.xp

    def raise_level(self, user_id: str, level: int) -> int:
        with self._lock:
            profile = self._profiles.get(user_id, Profile(user_id=user_id))
            profile = replace(profile, level=max(profile.level, level))
            self._profiles[user_id] = profile
            return profile.level

    # matches

    def record_match(self, match: MatchResult) -> None:
        with self._lock:
            self._matches.append(match)

    def list_matches(self, user_id: str) -> list[MatchResult]:
        return [match for match in self._matches if match.user_id == user_id]

    # loot tables

    def put_loot_table(self, table: LootTable) -> None:
        self._loot_tables[table.pack_type] = table

    def get_loot_table(self, pack_type: str) -> LootTable | None:
        return self._loot_tables.get(pack_type)

    # claims

    def put_claim(self, claim: RewardClaim) -> None:
        self._claims[claim.id] = claim

    def get_claim(self, claim_id: str) -> RewardClaim | None:
        return self._claims.get(claim_id)

    def mark_claim_consumed(self, claim_id: str, now: datetime) -> bool:
        with self._lock:
            claim = self._claims.get(claim_id)
            if claim is None or claim.status != ClaimStatus.APPROVED or claim.consumed_at is not None:
                return False
            self._claims[claim_id] = replace(claim, consumed_at=now)
            return True

    def release_claim(self, claim_id: str) -> bool:
        with self._lock:
            claim = self._claims.get(claim_id)
            if claim is None or claim.consumed_at is None:
                return False
            self._claims[claim_id] = replace(claim, consumed_at=None)
            return True

    # game sessions

    def record_session(self, seed: str, user_id: str, game_type: GameType, now: datetime) -> None:
        with self._lock:
            if seed in self._sessions:
                raise Conflict(f"Session seed {seed} already issued")
            self._sessions[seed] = {"user_id": user_id, "game_type": game_type, "issued_at": now, "used_at": None}

    def consume_session(self, seed: str, user_id: str, now: datetime) -> bool:
        with self._lock:
            session = self._sessions.get(seed)
            if session is None or session["user_id"] != user_id or session["used_at"] is not None:
                return False
            session["used_at"] = now
            return True

    # audit

    def record_event(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)


def _loot_entries(pack_type: str, table_json: Any) -> tuple[LootEntry, ...]:
    try:
        payload = table_json if isinstance(table_json, dict) else json.loads(table_json)
        entries = []
        for card in payload.get("cards", []):
            if card.get("card_id") is None:
                raise KeyError("card_id")
            entries.append(LootEntry(template_id=str(card["card_id"]), weight=float(card["weight"])))
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Loot table {pack_type!r} is malformed") from exc
    return tuple(entries)


@dataclass
class PostgresCardVaultStore:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def create_offer(self, offer: ExchangeOffer) -> None:
        from psycopg import errors as pg_errors

        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO exchange_offers (id, issuer_id, asset_id, issued_at, expires_at, signature)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        """,
                        (
                            offer.id,
                            offer.issuer_id,
                            offer.asset_id,
                            offer.issued_at,
                            offer.expires_at,
                            offer.signature,
                        ),
                    )
                conn.commit()
        except pg_errors.UniqueViolation as exc:
            raise Conflict(f"Offer {offer.id} already exists") from exc

    def get_offer(self, offer_id: str) -> ExchangeOffer:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, issuer_id, asset_id, issued_at, expires_at, signature, consumed_at, consumer_id
                    FROM exchange_offers
                    WHERE id = %s
                    """,
                    (offer_id,),
                )
                row = cur.fetchone()

        if row is None:
            raise NotFound(f"Offer {offer_id} not found")
        return ExchangeOffer(*row)

    def mark_offer_consumed(self, offer_id: str, consumer_id: str, now: datetime) -> bool:
        return self._conditional_update(
            """
            UPDATE exchange_offers
            SET consumed_at = %s, consumer_id = %s
            WHERE id = %s AND consumed_at IS NULL
            """,
            (now, consumer_id, offer_id),
        )

    def get_asset(self, asset_id: str) -> AssetInstance | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, template_id, owner_id, acquired_at, level
                    FROM asset_instances
                    WHERE id = %s
                    """,
                    (asset_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None
        return AssetInstance(*row)

    def create_asset(self, template_id: str, owner_id: str, now: datetime) -> AssetInstance:
        asset = AssetInstance(id=str(uuid.uuid4()), template_id=template_id, owner_id=owner_id, acquired_at=now)
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO asset_instances (id, template_id, owner_id, acquired_at, level)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (asset.id, asset.template_id, asset.owner_id, asset.acquired_at, asset.level),
                )
            conn.commit()
        return asset

    def transfer_asset(self, asset_id: str, from_owner: str, to_owner: str) -> bool:
        return self._conditional_update(
            "UPDATE asset_instances SET owner_id = %s WHERE id = %s AND owner_id = %s",
            (to_owner, asset_id, from_owner),
        )

    def get_profile(self, user_id: str) -> Profile | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT user_id, xp, level FROM profiles WHERE user_id = %s", (user_id,))
                row = cur.fetchone()
        return Profile(*row) if row is not None else None

    def add_experience(self, user_id: str, amount: int) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO profiles (user_id, xp, level)
                    VALUES (%s, %s, 1)
                    ON CONFLICT (user_id) DO UPDATE SET xp = profiles.xp + EXCLUDED.xp
                    RETURNING xp
                    """,
                    (user_id, amount),
                )
                (xp,) = cur.fetchone()
            conn.commit()
        return int(xp)

    def raise_level(self, user_id: str, level: int) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE profiles SET level = GREATEST(level, %s)
                    WHERE user_id = %s
                    RETURNING level
                    """,
                    (level, user_id),
                )
                row = cur.fetchone()
            conn.commit()
        return int(row[0]) if row is not None else level

    def record_match(self, match: MatchResult) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO match_results (id, user_id, game, score, seed, proof, stars, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        match.id,
                        match.user_id,
                        match.game_type.value,
                        match.score,
                        match.seed,
                        match.proof,
                        match.stars,
                        match.created_at,
                    ),
                )
            conn.commit()

    def get_loot_table(self, pack_type: str) -> LootTable | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT pack_type, table_json FROM loot_tables WHERE pack_type = %s", (pack_type,))
                row = cur.fetchone()

        if row is None:
            return None
        return LootTable(pack_type=row[0], entries=_loot_entries(row[0], row[1]))

    def get_claim(self, claim_id: str) -> RewardClaim | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT cc.id, cc.user_id, cc.challenge_id, cc.status, c.reward_type, c.reward_value, cc.consumed_at
                    FROM challenge_claims cc
                    JOIN challenges c ON c.id = cc.challenge_id
                    WHERE cc.id = %s
                    """,
                    (claim_id,),
                )
                row = cur.fetchone()

        if row is None:
            return None
        claim_id, user_id, challenge_id, status, reward_type, reward_value, consumed_at = row
        return RewardClaim(
            id=claim_id,
            user_id=user_id,
            challenge_id=challenge_id,
            status=ClaimStatus(status),
            reward_type=RewardType(reward_type),
            reward_value=reward_value,
            consumed_at=consumed_at,
        )

    def mark_claim_consumed(self, claim_id: str, now: datetime) -> bool:
        return self._conditional_update(
            """
            UPDATE challenge_claims SET consumed_at = %s
            WHERE id = %s AND status = 'approved' AND consumed_at IS NULL
            """,
            (now, claim_id),
        )

    def release_claim(self, claim_id: str) -> bool:
        return self._conditional_update(
            "UPDATE challenge_claims SET consumed_at = NULL WHERE id = %s AND consumed_at IS NOT NULL",
            (claim_id,),
        )

    def record_session(self, seed: str, user_id: str, game_type: GameType, now: datetime) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO game_sessions (seed, user_id, game, issued_at, used_at)
                    VALUES (%s, %s, %s, %s, NULL)
                    """,
                    (seed, user_id, game_type.value, now),
                )
            conn.commit()

    def consume_session(self, seed: str, user_id: str, now: datetime) -> bool:
        return self._conditional_update(
            "UPDATE game_sessions SET used_at = %s WHERE seed = %s AND user_id = %s AND used_at IS NULL",
            (now, seed, user_id),
        )

    def record_event(self, event: AuditEvent) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO events (id, user_id, event_type, event_data, created_at)
                    VALUES (%s, %s, %s, %s::jsonb, %s)
                    """,
                    (str(uuid.uuid4()), event.user_id, event.event_type, json.dumps(event.event_data), event.created_at),
                )
            conn.commit()

    def _conditional_update(self, sql: str, params: tuple) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                updated = cur.rowcount == 1
            conn.commit()
        return updated


def create_store(database_url: str | None) -> CardVaultStore:
    if database_url:
        return PostgresCardVaultStore(database_url=database_url)
    return InMemoryCardVaultStore()
