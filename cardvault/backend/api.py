"""FastAPI endpoints for card trading, game sessions and reward minting."""

from __future__ import annotations

import logging
import random
from datetime import datetime

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .clock import Clock, utc_now
from .config import OFFER_TTL_SECONDS, BackendSettings, load_settings
from .errors import CardVaultError, Unauthenticated
from .identity import GatewayHeaderIdentity, IdentityVerifier
from .models import AssetInstance, MintOutcome
from .rewards import ClaimRedeemer, LootSampler, RewardMinter
from .scoring import ScoreVerifier
from .security import TokenSigner
from .sessions import GameSessionIssuer
from .store import CardVaultStore, create_store
from .swap import SwapExecutor, qr_payload

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateOfferRequest(CamelModel):
    asset_instance_id: str = Field(min_length=1)


class CreateOfferResponse(CamelModel):
    offer_id: str
    signed_payload: str
    ttl_seconds: int
    expires_at: datetime


class RedeemOfferRequest(CamelModel):
    offer_id: str = Field(min_length=1)
    counter_asset_instance_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class RedeemOfferResponse(CamelModel):
    success: bool = True
    offer_id: str
    issuer_id: str
    redeemer_id: str
    issuer_received: str
    redeemer_received: str


class StartSessionRequest(CamelModel):
    game_type: str = Field(min_length=1, max_length=32)


class StartSessionResponse(CamelModel):
    seed: str
    signature: str
    game_type: str


class SubmitScoreRequest(CamelModel):
    game_type: str = Field(min_length=1, max_length=32)
    score: int = Field(ge=0)
    seed: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    proof: str = Field(min_length=1)


class AssetPayload(CamelModel):
    id: str
    template_id: str
    owner_id: str
    acquired_at: datetime
    level: int

    @classmethod
    def from_asset(cls, asset: AssetInstance) -> "AssetPayload":
        return cls(
            id=asset.id,
            template_id=asset.template_id,
            owner_id=asset.owner_id,
            acquired_at=asset.acquired_at,
            level=asset.level,
        )


class RewardPayload(CamelModel):
    reward_type: str
    pack_type: str | None = None
    assets: list[AssetPayload] = Field(default_factory=list)
    xp_delta: int = 0
    xp: int | None = None
    level: int | None = None

    @classmethod
    def from_outcome(cls, outcome: MintOutcome) -> "RewardPayload":
        return cls(
            reward_type=outcome.reward_type.value,
            pack_type=outcome.pack_type,
            assets=[AssetPayload.from_asset(asset) for asset in outcome.assets],
            xp_delta=outcome.xp_delta,
            xp=outcome.xp,
            level=outcome.level,
        )


class SubmitScoreResponse(CamelModel):
    match_id: str
    star_rating: int
    reward: RewardPayload | None = None


class MintRewardRequest(CamelModel):
    approved_claim_id: str = Field(min_length=1)


def create_app(
    store: CardVaultStore | None = None,
    settings: BackendSettings | None = None,
    identity: IdentityVerifier | None = None,
    clock: Clock = utc_now,
    rng: random.Random | None = None,
    sampler: LootSampler | None = None,
) -> FastAPI:
    settings = settings if settings is not None else load_settings()
    card_store = store if store is not None else create_store(settings.database_url)
    identity_verifier = identity if identity is not None else GatewayHeaderIdentity()

    offer_signer = TokenSigner(settings.offer_secret, role="offer")
    game_signer = TokenSigner(settings.game_secret, role="game")
    session_store = card_store if settings.single_use_sessions else None

    minter = RewardMinter(card_store, card_store, card_store, card_store, sampler=sampler, rng=rng, clock=clock)
    swaps = SwapExecutor(card_store, card_store, card_store, offer_signer, clock=clock)
    issuer = GameSessionIssuer(game_signer, sessions=session_store, clock=clock)
    verifier = ScoreVerifier(game_signer, card_store, card_store, minter, sessions=session_store, clock=clock)
    claims = ClaimRedeemer(card_store, minter, clock=clock)

    app = FastAPI(title="CardVault API", version="0.1.0")
    app.state.store = card_store

    @app.exception_handler(CardVaultError)
    async def handle_domain_error(request: Request, exc: CardVaultError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    def current_user(request: Request) -> str:
        user_id = identity_verifier.resolve(request)
        if user_id is None:
            raise Unauthenticated("No authenticated caller")
        return user_id

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/offers", response_model=CreateOfferResponse)
    def create_offer(payload: CreateOfferRequest, user_id: str = Depends(current_user)) -> CreateOfferResponse:
        offer = swaps.create_offer(issuer_id=user_id, asset_id=payload.asset_instance_id)
        return CreateOfferResponse(
            offer_id=offer.id,
            signed_payload=qr_payload(offer),
            ttl_seconds=OFFER_TTL_SECONDS,
            expires_at=offer.expires_at,
        )

    @app.post("/api/offers/redeem", response_model=RedeemOfferResponse)
    def redeem_offer(payload: RedeemOfferRequest, user_id: str = Depends(current_user)) -> RedeemOfferResponse:
        receipt = swaps.redeem(
            offer_id=payload.offer_id,
            redeemer_id=user_id,
            counter_asset_id=payload.counter_asset_instance_id,
            signature=payload.signature,
        )
        return RedeemOfferResponse(
            offer_id=receipt.offer_id,
            issuer_id=receipt.issuer_id,
            redeemer_id=receipt.redeemer_id,
            issuer_received=receipt.issuer_received,
            redeemer_received=receipt.redeemer_received,
        )

    @app.post("/api/games/sessions", response_model=StartSessionResponse)
    def start_session(payload: StartSessionRequest, user_id: str = Depends(current_user)) -> StartSessionResponse:
        token = issuer.start_session(user_id=user_id, game_type=payload.game_type)
        return StartSessionResponse(seed=token.seed, signature=token.signature, game_type=token.game_type.value)

    @app.post("/api/games/scores", response_model=SubmitScoreResponse)
    def submit_score(payload: SubmitScoreRequest, user_id: str = Depends(current_user)) -> SubmitScoreResponse:
        outcome = verifier.submit_score(
            user_id=user_id,
            game_type=payload.game_type,
            score=payload.score,
            seed=payload.seed,
            signature=payload.signature,
            proof=payload.proof,
        )
        return SubmitScoreResponse(
            match_id=outcome.match.id,
            star_rating=outcome.stars,
            reward=RewardPayload.from_outcome(outcome.reward) if outcome.reward is not None else None,
        )

    @app.post("/api/rewards/mint", response_model=RewardPayload)
    def mint_reward(payload: MintRewardRequest, user_id: str = Depends(current_user)) -> RewardPayload:
        outcome = claims.redeem(claim_id=payload.approved_claim_id, user_id=user_id)
        return RewardPayload.from_outcome(outcome)

    return app
