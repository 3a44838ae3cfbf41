"""Directory entries built from remote listings."""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, Iterator, Optional

from s3mount.paths import REMOTE_SEPARATOR


@dataclass(frozen=True)
class DirEntry:
    """A file or folder returned by a listing.

    Folders do not exist in an object store. An entry is a folder only when an
    object's key ends in '/', so listings are not guaranteed to find every
    logical folder.

    Attributes:
        key: Key of the object in the bucket
        size: Size in bytes. Folders are always 0 bytes.
        folder: Whether the key is a folder marker
    """

    key: str
    size: int
    folder: bool

    @property
    def path(self) -> PurePosixPath:
        """Key as a slash separated path."""
        return PurePosixPath(self.key)

    @classmethod
    def from_object(cls, s3_object: Dict[str, Any]) -> Optional["DirEntry"]:
        """Build an entry from one item of a list_objects_v2 'Contents' array.

        Returns:
            DirEntry, or None if the object has no key
        """
        key = s3_object.get("Key")
        if not key:
            return None

        folder = key.endswith(REMOTE_SEPARATOR)
        size = 0 if folder else int(s3_object.get("Size") or 0)
        return cls(key=key, size=size, folder=folder)


def entries_from_page(page: Dict[str, Any]) -> Iterator[DirEntry]:
    """Yield entries for one listing page, in listing order."""
    contents: Iterable[Dict[str, Any]] = page.get("Contents") or []
    for s3_object in contents:
        entry = DirEntry.from_object(s3_object)
        if entry is not None:
            yield entry
