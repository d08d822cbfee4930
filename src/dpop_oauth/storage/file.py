"""
Filesystem-based token storage.

Stores one JSON file per user under a directory, with owner-only permissions.
File names are derived from a SHA-256 hash of the user id, so arbitrary ids
are safe to use as keys.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import os
from pathlib import Path

from dpop_oauth.models.errors import StorageError
from dpop_oauth.models.tokens import TokenRecord
from dpop_oauth.storage.base import TokenStore

logger = logging.getLogger(__name__)

FILE_PERMISSIONS = 0o600


class FileTokenStore(TokenStore):
    """File-based token storage.

    Blocking file I/O runs in a worker thread so the event loop is not held.
    Writes go to a temporary file that is renamed over the target, so readers
    never observe a partially written record.

    Args:
        directory: Directory for token files; created on first write
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory).expanduser()

    def path_for(self, user_id: str) -> Path:
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    async def save_tokens(self, user_id: str, record: TokenRecord) -> None:
        await asyncio.to_thread(self._write, self.path_for(user_id), record)

    async def load_tokens(self, user_id: str) -> TokenRecord | None:
        return await asyncio.to_thread(self._read, self.path_for(user_id))

    async def delete_tokens(self, user_id: str) -> None:
        await asyncio.to_thread(self._remove, self.path_for(user_id))

    def _read(self, path: Path) -> TokenRecord | None:
        """Read a token record from file.

        Raises:
            StorageError: If the file exists but cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                return TokenRecord.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.error(f"Corrupted token file {path}: {e}")
            raise StorageError(f"Invalid token data in {path}: {e}") from e
        except OSError as e:
            logger.error(f"Failed to read token file {path}: {e}")
            raise StorageError(f"Cannot read token file: {e}") from e

    def _write(self, path: Path, record: TokenRecord) -> None:
        tmp_path = path.with_suffix(".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)

            with open(tmp_path, "w", encoding="utf-8") as f:
                if hasattr(os, "fchmod"):
                    os.fchmod(f.fileno(), FILE_PERMISSIONS)
                json.dump(record.to_dict(), f)
            os.replace(tmp_path, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            logger.error(f"Failed to write token file {path}: {e}")
            raise StorageError(f"Cannot write token file: {e}") from e

    def _remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove token file {path}: {e}")
            raise StorageError(f"Cannot remove token file: {e}") from e
