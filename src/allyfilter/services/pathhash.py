"""Stable identities for storage areas and files.

SHA-1 is used because the storage layer assigns ``pathnamehash`` with it; the
hashes computed here must converge with that identity.
"""

import hashlib

from allyfilter.models.files import FileReference


def _sha1(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def area_key(ref: FileReference) -> str:
    """Hash of "/{context_id}/{component}/{file_area}/{item_id}"."""
    return _sha1(ref.area_path)


def path_hash(ref: FileReference) -> str:
    """Hash of the file's full path, its identity for client-side tooling."""
    return _sha1(ref.file_path)


def pathname_hash(
    context_id: int,
    component: str,
    file_area: str,
    item_id: int,
    filepath: str,
    filename: str,
) -> str:
    """
    Hash of a stored file's full path, as the storage layer computes it.

    For files at filepath "/" this equals path_hash() of the matching reference.
    """
    return _sha1(f"/{context_id}/{component}/{file_area}/{item_id}{filepath}{filename}")
