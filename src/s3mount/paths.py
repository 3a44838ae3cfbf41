"""Key normalization and mirror path helpers.

Remote keys always use forward slashes. Local keys may arrive with the
platform separator (or backslashes) and are rewritten before they are sent to
the remote store, so both spellings resolve to the same mirror path.
"""

import hashlib
import os
from pathlib import Path
from typing import List, Union

from s3mount.errors import InvalidKeyError

KeyLike = Union[str, bytes, "os.PathLike[str]", "os.PathLike[bytes]"]

REMOTE_SEPARATOR = "/"
LOCKS_DIR = ".locks"


def _to_text(key: KeyLike) -> str:
    """Coerce a key to text, rejecting anything that is not valid UTF-8."""
    try:
        raw = os.fspath(key)
    except TypeError as e:
        raise InvalidKeyError(f"Invalid key type: {type(key).__name__}") from e

    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidKeyError(f"Key is not valid UTF-8: {raw!r}") from e

    try:
        raw.encode("utf-8")
    except UnicodeEncodeError as e:
        # Lone surrogates from os.fsdecode() of undecodable bytes
        raise InvalidKeyError(f"Key is not valid UTF-8: {raw!r}") from e
    return raw


def _to_remote_separators(text: str) -> str:
    text = text.replace("\\", REMOTE_SEPARATOR)
    if os.sep != REMOTE_SEPARATOR:
        text = text.replace(os.sep, REMOTE_SEPARATOR)
    return text


def normalize_prefix(prefix: KeyLike) -> str:
    """Normalize a listing prefix to its remote form.

    Args:
        prefix: Prefix to list under. Empty means the whole bucket.

    Returns:
        Prefix with forward slash separators

    Raises:
        InvalidKeyError: If the prefix is not valid UTF-8

    Examples:
        >>> normalize_prefix("data\\\\2024")
        'data/2024'
    """
    return _to_remote_separators(_to_text(prefix))


def normalize_key(key: KeyLike) -> str:
    """Normalize an object key to its remote form.

    Besides the checks done for prefixes, object keys must name a file that
    lives inside the bucket's mirror directory.

    Args:
        key: Logical object key, e.g. 'folder/file.csv'

    Returns:
        Key with forward slash separators

    Raises:
        InvalidKeyError: If the key is empty, absolute, a folder marker,
            contains an empty, '.' or '..' segment, or is not valid UTF-8

    Examples:
        >>> normalize_key("a\\\\b.txt")
        'a/b.txt'
    """
    remote_key = normalize_prefix(key)

    if not remote_key:
        raise InvalidKeyError("Key must not be empty")
    if remote_key.startswith(REMOTE_SEPARATOR):
        raise InvalidKeyError(f"Key must be relative to the bucket: {remote_key!r}")
    if remote_key.endswith(REMOTE_SEPARATOR):
        raise InvalidKeyError(f"Folder marker keys cannot be opened: {remote_key!r}")
    segments = key_segments(remote_key)
    if "" in segments:
        raise InvalidKeyError(f"Key must not contain empty segments: {remote_key!r}")
    if "." in segments or ".." in segments:
        raise InvalidKeyError(f"Key must not contain '.' or '..' segments: {remote_key!r}")
    if "\x00" in remote_key:
        raise InvalidKeyError(f"Key must not contain NUL bytes: {remote_key!r}")

    return remote_key


def key_segments(remote_key: str) -> List[str]:
    """Split a remote key into its path segments."""
    return remote_key.split(REMOTE_SEPARATOR)


def mirror_path(mount_root: Path, bucket: str, remote_key: str) -> Path:
    """Get the local mirror path for a normalized key.

    Args:
        mount_root: Root directory of the local mirror
        bucket: Bucket identifier, used as a namespace under the root
        remote_key: Key as returned by normalize_key()

    Returns:
        Path of the form mount_root/bucket/<key segments>

    Examples:
        >>> mirror_path(Path("m"), "b", "a/b.txt")
        PosixPath('m/b/a/b.txt')
    """
    return Path(mount_root, bucket, *key_segments(remote_key))


def bucket_root(mount_root: Path, bucket: str) -> Path:
    return Path(mount_root, bucket)


def lock_path(mount_root: Path, bucket: str, remote_key: str) -> Path:
    """Get the advisory lock file path for a normalized key.

    Lock files are kept out of the bucket's mirror tree; bucket names cannot
    start with a dot, so the locks directory never collides with a bucket.
    """
    digest = hashlib.sha1(remote_key.encode("utf-8")).hexdigest()
    return Path(mount_root, LOCKS_DIR, bucket, f"{digest}.lock")
