import json
from datetime import datetime, timedelta, timezone

import pytest

fastapi = pytest.importorskip("fastapi")
pytest.importorskip("httpx")
from fastapi.testclient import TestClient

from cardvault.backend.api import create_app
from cardvault.backend.config import BackendSettings
from cardvault.backend.identity import StaticTokenIdentity
from cardvault.backend.models import ClaimStatus, LootEntry, LootTable, RewardClaim, RewardType
from cardvault.backend.security import score_proof
from cardvault.backend.store import InMemoryCardVaultStore

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


class FakeClock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now


def _settings(single_use_sessions: bool = False) -> BackendSettings:
    return BackendSettings(
        offer_secret="offer-secret",
        game_secret="game-secret",
        database_url=None,
        host="127.0.0.1",
        port=8000,
        single_use_sessions=single_use_sessions,
    )


def _client(store: InMemoryCardVaultStore, clock: FakeClock | None = None, **kwargs) -> TestClient:
    app = create_app(store=store, settings=_settings(**kwargs), clock=clock or FakeClock())
    return TestClient(app)


def test_health_needs_no_identity() -> None:
    client = _client(InMemoryCardVaultStore())

    assert client.get("/api/health").json() == {"status": "ok"}


def test_create_app_without_secrets_fails_at_startup(monkeypatch) -> None:
    from cardvault.backend.errors import ConfigurationError

    monkeypatch.delenv("CARDVAULT_OFFER_SECRET", raising=False)
    monkeypatch.setenv("CARDVAULT_GAME_SECRET", "game-secret")

    with pytest.raises(ConfigurationError):
        create_app(store=InMemoryCardVaultStore())


def test_create_offer_requires_identity() -> None:
    store = InMemoryCardVaultStore()
    card = store.create_asset("robo-paczek", "alice", START)
    client = _client(store)

    response = client.post("/api/offers", json={"assetInstanceId": card.id})

    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}


def test_create_offer_returns_qr_payload() -> None:
    store = InMemoryCardVaultStore()
    card = store.create_asset("robo-paczek", "alice", START)
    client = _client(store)

    response = client.post("/api/offers", json={"assetInstanceId": card.id}, headers=ALICE)

    assert response.status_code == 200
    data = response.json()
    assert data["ttlSeconds"] == 120
    payload = json.loads(data["signedPayload"])
    assert payload["offerId"] == data["offerId"]
    assert len(payload["sig"]) == 64
    assert datetime.fromisoformat(data["expiresAt"].replace("Z", "+00:00")) == START + timedelta(seconds=120)


def test_create_offer_for_foreign_card_returns_404() -> None:
    store = InMemoryCardVaultStore()
    card = store.create_asset("robo-paczek", "bob", START)
    client = _client(store)

    response = client.post("/api/offers", json={"assetInstanceId": card.id}, headers=ALICE)

    assert response.status_code == 404


def test_full_trade_over_http() -> None:
    store = InMemoryCardVaultStore()
    card_a = store.create_asset("robo-paczek", "alice", START)
    card_b = store.create_asset("ninja-kot", "bob", START)
    client = _client(store)

    qr = json.loads(client.post("/api/offers", json={"assetInstanceId": card_a.id}, headers=ALICE).json()["signedPayload"])
    response = client.post(
        "/api/offers/redeem",
        json={"offerId": qr["offerId"], "counterAssetInstanceId": card_b.id, "signature": qr["sig"]},
        headers=BOB,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["issuerReceived"] == card_b.id
    assert data["redeemerReceived"] == card_a.id
    assert store.get_asset(card_a.id).owner_id == "bob"
    assert store.get_asset(card_b.id).owner_id == "alice"

    again = client.post(
        "/api/offers/redeem",
        json={"offerId": qr["offerId"], "counterAssetInstanceId": card_b.id, "signature": qr["sig"]},
        headers=BOB,
    )
    assert again.status_code == 400


def test_redeem_error_statuses_are_generic() -> None:
    store = InMemoryCardVaultStore()
    card_a = store.create_asset("robo-paczek", "alice", START)
    card_b = store.create_asset("ninja-kot", "bob", START)
    clock = FakeClock()
    client = _client(store, clock=clock)
    qr = json.loads(client.post("/api/offers", json={"assetInstanceId": card_a.id}, headers=ALICE).json()["signedPayload"])

    missing = client.post(
        "/api/offers/redeem",
        json={"offerId": "nope", "counterAssetInstanceId": card_b.id, "signature": qr["sig"]},
        headers=BOB,
    )
    forged = client.post(
        "/api/offers/redeem",
        json={"offerId": qr["offerId"], "counterAssetInstanceId": card_b.id, "signature": "f" * 64},
        headers=BOB,
    )
    clock.now = START + timedelta(minutes=5)
    expired = client.post(
        "/api/offers/redeem",
        json={"offerId": qr["offerId"], "counterAssetInstanceId": card_b.id, "signature": qr["sig"]},
        headers=BOB,
    )

    assert missing.status_code == 404
    assert forged.status_code == 400
    assert forged.json() == {"detail": "Signature verification failed"}
    assert qr["sig"] not in forged.text
    assert expired.status_code == 400
    assert expired.json() == {"detail": "Offer expired"}


def test_redeem_after_issuer_gave_card_away_is_bad_request() -> None:
    store = InMemoryCardVaultStore()
    card_a = store.create_asset("robo-paczek", "alice", START)
    card_b = store.create_asset("ninja-kot", "bob", START)
    client = _client(store)
    qr = json.loads(client.post("/api/offers", json={"assetInstanceId": card_a.id}, headers=ALICE).json()["signedPayload"])
    assert store.transfer_asset(card_a.id, "alice", "dave")

    response = client.post(
        "/api/offers/redeem",
        json={"offerId": qr["offerId"], "counterAssetInstanceId": card_b.id, "signature": qr["sig"]},
        headers=BOB,
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Trade could not be completed"}
    assert store.get_asset(card_b.id).owner_id == "bob"


def test_game_session_and_score_flow() -> None:
    store = InMemoryCardVaultStore()
    store.put_loot_table(LootTable("common", (LootEntry("robo-paczek", 1),)))
    store.put_loot_table(LootTable("rare", (LootEntry("grizzlytron", 1),)))
    client = _client(store)

    session = client.post("/api/games/sessions", json={"gameType": "memory"}, headers=ALICE).json()
    proof = score_proof(session["signature"], "memory", 30, session["seed"])
    response = client.post(
        "/api/games/scores",
        json={
            "gameType": "memory",
            "score": 30,
            "seed": session["seed"],
            "signature": session["signature"],
            "proof": proof,
        },
        headers=ALICE,
    )

    assert session["gameType"] == "memory"
    assert response.status_code == 200
    data = response.json()
    assert data["starRating"] == 2
    assert data["reward"]["packType"] == "common"
    assert data["reward"]["assets"][0]["templateId"] == "robo-paczek"
    assert data["reward"]["assets"][0]["ownerId"] == "alice"


def test_start_session_rejects_unsupported_game() -> None:
    client = _client(InMemoryCardVaultStore())

    response = client.post("/api/games/sessions", json={"gameType": "chess"}, headers=ALICE)

    assert response.status_code == 400
    assert response.json() == {"detail": "Unsupported game"}


def test_tampered_score_returns_400_and_is_audited() -> None:
    store = InMemoryCardVaultStore()
    client = _client(store)
    session = client.post("/api/games/sessions", json={"gameType": "runner"}, headers=ALICE).json()
    proof = score_proof(session["signature"], "runner", 150, session["seed"])

    response = client.post(
        "/api/games/scores",
        json={
            "gameType": "runner",
            "score": 1500,
            "seed": session["seed"],
            "signature": session["signature"],
            "proof": proof,
        },
        headers=ALICE,
    )

    assert response.status_code == 400
    assert store.events[-1].event_type == "game_cheat_attempt"


def test_single_use_sessions_enabled_by_settings() -> None:
    store = InMemoryCardVaultStore()
    client = _client(store, single_use_sessions=True)
    session = client.post("/api/games/sessions", json={"gameType": "runner"}, headers=ALICE).json()
    body = {
        "gameType": "runner",
        "score": 10,
        "seed": session["seed"],
        "signature": session["signature"],
        "proof": score_proof(session["signature"], "runner", 10, session["seed"]),
    }

    first = client.post("/api/games/scores", json=body, headers=ALICE)
    second = client.post("/api/games/scores", json=body, headers=ALICE)

    assert first.status_code == 200
    assert first.json()["reward"] is None
    assert second.status_code == 400


def test_mint_reward_for_approved_claim() -> None:
    store = InMemoryCardVaultStore()
    store.put_claim(
        RewardClaim(
            id="claim-1",
            user_id="alice",
            challenge_id="weekly-runner",
            status=ClaimStatus.APPROVED,
            reward_type=RewardType.FIXED_ASSET,
            reward_value="ninja-kot",
        )
    )
    client = _client(store)

    response = client.post("/api/rewards/mint", json={"approvedClaimId": "claim-1"}, headers=ALICE)
    repeat = client.post("/api/rewards/mint", json={"approvedClaimId": "claim-1"}, headers=ALICE)
    foreign = client.post("/api/rewards/mint", json={"approvedClaimId": "claim-1"}, headers=BOB)

    assert response.status_code == 200
    assert response.json()["rewardType"] == "card"
    assert response.json()["assets"][0]["templateId"] == "ninja-kot"
    assert repeat.status_code == 400
    assert foreign.status_code == 404


def test_unexpected_errors_are_hidden_behind_generic_500() -> None:
    class BrokenStore(InMemoryCardVaultStore):
        def get_asset(self, asset_id):
            raise RuntimeError("db password is hunter2")

    app = create_app(store=BrokenStore(), settings=_settings(), clock=FakeClock())
    client = TestClient(app, raise_server_exceptions=False)

    response = client.post("/api/offers", json={"assetInstanceId": "card"}, headers=ALICE)

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_static_token_identity_resolves_bearer_tokens() -> None:
    store = InMemoryCardVaultStore()
    card = store.create_asset("robo-paczek", "alice", START)
    identity = StaticTokenIdentity({"token-a": "alice"})
    client = TestClient(create_app(store=store, settings=_settings(), identity=identity, clock=FakeClock()))

    ok = client.post("/api/offers", json={"assetInstanceId": card.id}, headers={"Authorization": "Bearer token-a"})
    spoofed = client.post("/api/offers", json={"assetInstanceId": card.id}, headers=ALICE)

    assert ok.status_code == 200
    assert spoofed.status_code == 401
