"""
In-memory token storage for testing and ephemeral use.

Records are lost when the process exits.
"""

from __future__ import annotations

from dataclasses import replace

from dpop_oauth.models.tokens import TokenRecord
from dpop_oauth.storage.base import TokenStore


class InMemoryTokenStore(TokenStore):
    """Dictionary-backed token store.

    Stores copies so callers mutating a record after saving it cannot change
    the stored state.
    """

    def __init__(self) -> None:
        self._records: dict[str, TokenRecord] = {}

    async def save_tokens(self, user_id: str, record: TokenRecord) -> None:
        self._records[user_id] = replace(record)

    async def load_tokens(self, user_id: str) -> TokenRecord | None:
        record = self._records.get(user_id)
        return replace(record) if record is not None else None

    async def delete_tokens(self, user_id: str) -> None:
        self._records.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"InMemoryTokenStore(users={len(self._records)})"
