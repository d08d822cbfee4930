"""Token persistence interface.

The session writes through to a TokenStore on every token mutation, keyed by
an opaque user id supplied by the caller. Backends are expected to provide at
least last-write-wins consistency per user id.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from dpop_oauth.models.tokens import TokenRecord


class TokenStore(ABC):
    """Durable per-identity token storage.

    All methods may raise StorageError; the session propagates it unchanged.
    """

    @abstractmethod
    async def save_tokens(self, user_id: str, record: TokenRecord) -> None:
        """Persist the complete token record for a user, replacing any prior one."""
        ...

    @abstractmethod
    async def load_tokens(self, user_id: str) -> TokenRecord | None:
        """Return the stored record for a user, or None if absent."""
        ...

    @abstractmethod
    async def delete_tokens(self, user_id: str) -> None:
        """Remove the stored record for a user. Missing records are ignored."""
        ...
