"""Backend package for CardVault."""

from .config import OFFER_TTL_SECONDS, BackendSettings, load_settings
from .errors import CardVaultError
from .rewards import ClaimRedeemer, RewardMinter
from .scoring import ScoreVerifier, star_rating
from .security import TokenSigner, score_proof
from .sessions import GameSessionIssuer
from .store import CardVaultStore, InMemoryCardVaultStore, PostgresCardVaultStore, create_store
from .swap import SwapExecutor

__all__ = [
    "BackendSettings",
    "CardVaultError",
    "CardVaultStore",
    "ClaimRedeemer",
    "create_store",
    "GameSessionIssuer",
    "InMemoryCardVaultStore",
    "load_settings",
    "OFFER_TTL_SECONDS",
    "PostgresCardVaultStore",
    "RewardMinter",
    "score_proof",
    "ScoreVerifier",
    "star_rating",
    "SwapExecutor",
    "TokenSigner",
]
