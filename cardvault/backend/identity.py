"""Caller identity, resolved by an external authentication collaborator."""

from __future__ import annotations

from typing import Protocol

from fastapi import Request

USER_HEADER = "X-User-Id"


class IdentityVerifier(Protocol):
    def resolve(self, request: Request) -> str | None:
        """Return the authenticated user id, or None."""


class GatewayHeaderIdentity:
    """Trusts the user id header injected by the upstream auth gateway."""

    def __init__(self, header: str = USER_HEADER) -> None:
        self.header = header

    def resolve(self, request: Request) -> str | None:
        user_id = request.headers.get(self.header, "").strip()
        return user_id or None


class StaticTokenIdentity:
    """Maps bearer tokens to user ids. Useful for local runs and tests."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    def resolve(self, request: Request) -> str | None:
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return self._tokens.get(token.strip())
