"""Offer issuance and the two-sided card swap.

A redemption walks Validated -> TransferInitiated -> BothTransferred -> Committed.
Each ownership move is a conditional single-row update on the expected owner, so
two redeemers racing the same offer cannot both move the offered card. If the
second move fails the first is reverted before the error surfaces.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta

from . import audit
from .clock import Clock, utc_now
from .config import OFFER_TTL_SECONDS
from .errors import (
    AlreadyConsumed,
    Expired,
    IntegrityViolation,
    NotOwned,
    SelfTrade,
    TransferFault,
    TransferRejected,
)
from .models import ExchangeOffer, SwapReceipt
from .security import TokenSigner, canonical_message, format_timestamp
from .store import AssetStore, EventLog, OfferStore

logger = logging.getLogger(__name__)


def offer_message(offer_id: str, issuer_id: str, asset_id: str, issued_at: datetime) -> bytes:
    return canonical_message(offer_id, issuer_id, asset_id, format_timestamp(issued_at))


def qr_payload(offer: ExchangeOffer) -> str:
    """Compact JSON carried by the visual code."""
    return json.dumps({"offerId": offer.id, "sig": offer.signature}, separators=(",", ":"))


class SwapExecutor:
    def __init__(
        self,
        offers: OfferStore,
        assets: AssetStore,
        events: EventLog,
        signer: TokenSigner,
        clock: Clock = utc_now,
    ) -> None:
        self._offers = offers
        self._assets = assets
        self._events = events
        self._signer = signer
        self._clock = clock

    def create_offer(self, issuer_id: str, asset_id: str) -> ExchangeOffer:
        asset = self._assets.get_asset(asset_id)
        if asset is None or asset.owner_id != issuer_id:
            raise NotOwned(f"Asset {asset_id} is not owned by {issuer_id}")

        offer_id = str(uuid.uuid4())
        issued_at = self._clock()
        offer = ExchangeOffer(
            id=offer_id,
            issuer_id=issuer_id,
            asset_id=asset_id,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=OFFER_TTL_SECONDS),
            signature=self._signer.sign(offer_message(offer_id, issuer_id, asset_id, issued_at)),
        )
        self._offers.create_offer(offer)
        audit.emit(self._events, issuer_id, "qr_create", issued_at, offer_id=offer_id, card_instance_id=asset_id)
        logger.info("Offer %s created by %s for asset %s", offer_id, issuer_id, asset_id)
        return offer

    def redeem(self, offer_id: str, redeemer_id: str, counter_asset_id: str, signature: str) -> SwapReceipt:
        now = self._clock()
        offer = self._offers.get_offer(offer_id)
        if offer.is_consumed:
            raise AlreadyConsumed(f"Offer {offer_id} already consumed")
        if now > offer.expires_at:
            raise Expired(f"Offer {offer_id} expired at {offer.expires_at.isoformat()}")
        if offer.issuer_id == redeemer_id:
            raise SelfTrade(f"User {redeemer_id} attempted to redeem own offer {offer_id}")

        message = offer_message(offer.id, offer.issuer_id, offer.asset_id, offer.issued_at)
        if not self._signer.verify(message, signature) or not self._signer.verify(message, offer.signature):
            audit.emit(
                self._events,
                redeemer_id,
                "offer_tamper_attempt",
                now,
                offer_id=offer_id,
                submitted_signature=signature,
            )
            logger.warning("Offer %s signature mismatch on redemption by %s", offer_id, redeemer_id)
            raise IntegrityViolation(f"Invalid signature for offer {offer_id}")

        counter_asset = self._assets.get_asset(counter_asset_id)
        if counter_asset is None or counter_asset.owner_id != redeemer_id:
            raise NotOwned(f"Asset {counter_asset_id} is not owned by {redeemer_id}")

        self._transfer(offer, redeemer_id, counter_asset_id)

        try:
            consumed = self._offers.mark_offer_consumed(offer_id, redeemer_id, now)
        except Exception:
            logger.exception("Marking offer %s consumed raised", offer_id)
            consumed = False
        if not consumed:
            logger.error("Offer %s swapped but could not be marked consumed", offer_id)
            audit.emit(self._events, redeemer_id, "offer_consume_anomaly", now, offer_id=offer_id)

        audit.emit(
            self._events,
            offer.issuer_id,
            "trade_complete",
            now,
            offer_id=offer_id,
            gave=offer.asset_id,
            received=counter_asset_id,
            partner=redeemer_id,
        )
        audit.emit(
            self._events,
            redeemer_id,
            "trade_complete",
            now,
            offer_id=offer_id,
            gave=counter_asset_id,
            received=offer.asset_id,
            partner=offer.issuer_id,
        )
        logger.info("Offer %s redeemed by %s", offer_id, redeemer_id)
        return SwapReceipt(
            offer_id=offer_id,
            issuer_id=offer.issuer_id,
            redeemer_id=redeemer_id,
            issuer_received=counter_asset_id,
            redeemer_received=offer.asset_id,
        )

    def _transfer(self, offer: ExchangeOffer, redeemer_id: str, counter_asset_id: str) -> None:
        if not self._assets.transfer_asset(offer.asset_id, offer.issuer_id, redeemer_id):
            raise TransferRejected(f"Asset {offer.asset_id} is no longer held by {offer.issuer_id}")

        cause: Exception | None = None
        try:
            moved = self._assets.transfer_asset(counter_asset_id, redeemer_id, offer.issuer_id)
        except Exception as exc:
            logger.error("Second transfer of offer %s raised: %s", offer.id, exc)
            moved, cause = False, exc
        if moved:
            return

        reconciled = self._compensate(offer, redeemer_id)
        raise TransferFault(
            f"Transfer of asset {counter_asset_id} for offer {offer.id} failed",
            reconciled=reconciled,
        ) from cause

    def _compensate(self, offer: ExchangeOffer, redeemer_id: str) -> bool:
        try:
            reverted = self._assets.transfer_asset(offer.asset_id, redeemer_id, offer.issuer_id)
        except Exception:
            logger.exception("Compensation for offer %s raised", offer.id)
            reverted = False
        if reverted:
            logger.warning("Offer %s: second transfer failed, asset %s returned to %s", offer.id, offer.asset_id, offer.issuer_id)
            return True

        logger.critical(
            "Offer %s: asset %s stuck with %s after failed swap, manual reconciliation required",
            offer.id,
            offer.asset_id,
            redeemer_id,
        )
        try:
            audit.emit(
                self._events,
                offer.issuer_id,
                "trade_reconciliation_required",
                self._clock(),
                offer_id=offer.id,
                asset_id=offer.asset_id,
                holder=redeemer_id,
            )
        except Exception:
            logger.exception("Could not record reconciliation event for offer %s", offer.id)
        return False
