"""
Verse Library — Durable Cache Storage
=======================================

What:  A tiny key-value store for named cache records ("library-store",
       "verse-store", "background-refresh-config"), one JSON file per record.
How:   Writes go to a uniquely named temp file in the same directory, then
       os.replace() swaps it over the record. A reader therefore sees either
       the previous record or the new one, never a partial write.
Who:   Catalog Cache, Progress Service and Background Refresh persist through it.

Directory Structure:
    storage/
    ├── library-store.json
    ├── verse-store.json
    └── background-refresh-config.json
"""

import logging
import re
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from verse_library.config import settings
from verse_library.exceptions import StorageError

logger = logging.getLogger(__name__)

# Record names become file names: keep them to a safe alphabet
_RECORD_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,99}$")


class CacheStorage:
    """
    Durable storage for named text records.

    Lifecycle of a write:
        1. Record name is validated (no path separators)
        2. Content is written to <name>.json.<uuid>.tmp
        3. The temp file is atomically renamed over <name>.json
        4. On failure the temp file is removed and StorageError is raised
    """

    def __init__(self, storage_root: Optional[str] = None):
        """
        Args:
            storage_root: Override the default storage path (used in tests).
                          If None, uses settings.storage_root.
        """
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("CacheStorage initialized with storage_root=%s", self.storage_root)

    def path_for(self, name: str) -> Path:
        """Absolute path of a record, validating the name."""
        if not _RECORD_NAME.match(name) or ".." in name:
            raise ValueError(f"Invalid record name: {name!r}")
        return self.storage_root / f"{name}.json"

    async def read(self, name: str) -> Optional[str]:
        """
        Return the record's text, or None if it was never written.

        Raises:
            StorageError if the file exists but cannot be read.
        """
        path = self.path_for(name)
        if not await aiofiles.os.path.exists(path):
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read record %s: %s", name, str(e))
            raise StorageError(
                message="Could not read the saved library cache.",
                context={"record": name, "error": str(e)},
            )

    async def write(self, name: str, content: str) -> None:
        """
        Atomically replace the record with `content`.

        Raises:
            StorageError if the temp write or the rename fails.
        """
        path = self.path_for(name)
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
            await aiofiles.os.replace(tmp_path, path)
            logger.debug("Record stored: %s (%d chars)", name, len(content))

        except OSError as e:
            logger.error("Failed to store record %s: %s", name, str(e))
            await self._discard(tmp_path)
            raise StorageError(
                message="Failed to save the library cache.",
                context={"record": name, "os_error": str(e)},
            )

    async def delete(self, name: str) -> None:
        """Remove a record; missing records are ignored."""
        await self._discard(self.path_for(name))

    async def _discard(self, path: Path) -> None:
        # Best-effort: a leftover temp file is harmless
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            logger.warning("Failed to remove %s: %s", path.name, str(e))
