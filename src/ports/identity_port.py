"""Identity port: abstract interface for the OAuth identity provider.

Credential bundles are opaque JSON strings owned by the provider.
"""

from __future__ import annotations

from typing import Protocol


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects an exchange, refresh or revoke."""


class IdentityProvider(Protocol):

    def build_auth_url(self, state: str) -> str: ...

    async def exchange(self, code: str) -> str: ...

    async def refresh(self, credentials_json: str) -> str: ...

    async def revoke(self, credentials_json: str) -> None: ...

    def needs_refresh(self, credentials_json: str) -> bool: ...
