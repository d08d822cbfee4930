"""Token storage backends."""

from dpop_oauth.storage.base import TokenStore
from dpop_oauth.storage.file import FileTokenStore
from dpop_oauth.storage.memory import InMemoryTokenStore

__all__ = ["FileTokenStore", "InMemoryTokenStore", "TokenStore"]
