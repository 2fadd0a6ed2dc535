"""Error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations


class CardVaultError(Exception):
    """Base error. ``public_message`` is the only text a client ever sees."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class Unauthenticated(CardVaultError):
    status_code = 401
    public_message = "Unauthorized"


class NotFound(CardVaultError):
    status_code = 404
    public_message = "Not found"


class NotOwned(CardVaultError):
    status_code = 404
    public_message = "Card not found or not owned by user"


class Expired(CardVaultError):
    status_code = 400
    public_message = "Offer expired"


class AlreadyConsumed(CardVaultError):
    status_code = 400
    public_message = "Already consumed"


class SelfTrade(CardVaultError):
    status_code = 400
    public_message = "Cannot trade with yourself"


class IntegrityViolation(CardVaultError):
    status_code = 400
    public_message = "Signature verification failed"


class UnsupportedGame(CardVaultError):
    status_code = 400
    public_message = "Unsupported game"


class ClaimNotApproved(CardVaultError):
    status_code = 400
    public_message = "Invalid or unapproved reward claim"


class UnknownLootTable(CardVaultError):
    status_code = 400
    public_message = "Loot table not found"


class Conflict(CardVaultError):
    status_code = 409
    public_message = "Already exists"


class TransferRejected(CardVaultError):
    status_code = 400
    public_message = "Trade could not be completed"


class ConfigurationError(CardVaultError):
    status_code = 500
    public_message = "Server misconfiguration"


class TransferFault(CardVaultError):
    """Second leg of a swap failed. ``reconciled`` tells whether the first leg was undone."""

    status_code = 500
    public_message = "Trade could not be completed"

    def __init__(self, message: str | None = None, reconciled: bool = True) -> None:
        super().__init__(message)
        self.reconciled = reconciled
