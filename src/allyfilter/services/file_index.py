"""Per-pass index of the files known to exist in each storage area."""

import logging

from allyfilter.models.files import FileReference, StoredFileInfo
from allyfilter.services.errors import FileNotFound
from allyfilter.services.pathhash import area_key, path_hash, pathname_hash
from allyfilter.services.storage import FileStorage

logger = logging.getLogger("allyfilter.file_index")


def file_identities(file: StoredFileInfo) -> set[str]:
    """Return every identity a listed file is known by (storage's and computed)."""
    computed = pathname_hash(
        file.context_id,
        file.component,
        file.file_area,
        file.item_id,
        file.filepath,
        file.filename,
    )
    if file.pathnamehash and file.pathnamehash != computed:
        return {file.pathnamehash, computed}
    return {computed}


class AreaFileIndex:
    """
    Lazily lists each storage area once and answers existence checks from memory.

    One instance lives for exactly one filter pass.
    """

    def __init__(self, storage: FileStorage) -> None:
        self.storage = storage
        self._hashes_by_area: dict[str, set[str]] = {}
        self.queries = 0

    async def _load_area(self, key: str, ref: FileReference) -> set[str]:
        files = await self.storage.get_area_files(
            ref.context_id,
            ref.component,
            ref.file_area,
            ref.item_id,
        )
        self.queries += 1

        hashes: set[str] = set()
        for file in files:
            if file.is_directory:
                continue
            hashes |= file_identities(file)

        logger.debug("Listed %d file identities for area %s", len(hashes), ref.area_path)
        self._hashes_by_area[key] = hashes
        return hashes

    async def resolve(self, key: str, ref: FileReference) -> bool:
        """Check if the referenced file exists in the area identified by key."""
        hashes = self._hashes_by_area.get(key)
        if hashes is None:
            hashes = await self._load_area(key, ref)
        return path_hash(ref) in hashes

    async def contains(self, ref: FileReference) -> bool:
        """Check if the referenced file exists, computing its area key."""
        return await self.resolve(area_key(ref), ref)

    async def require(self, ref: FileReference) -> str:
        """Return the file's path hash, raising FileNotFound if it does not exist."""
        if not await self.contains(ref):
            raise FileNotFound(ref)
        return path_hash(ref)

    @property
    def size(self) -> int:
        """Return the number of areas loaded so far."""
        return len(self._hashes_by_area)
