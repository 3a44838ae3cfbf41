"""Mount configuration for syncing a bucket to local disk."""

import asyncio
import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, List, Optional, Union

from typing_extensions import Self

from s3mount import sync as _sync
from s3mount.clients import discover_client
from s3mount.listing import DirEntry
from s3mount.paths import KeyLike, mirror_path, normalize_key

# Default local directory that buckets are mirrored into
DEFAULT_MOUNT_ROOT = Path(".s3mount")

DEFAULT_LOCK_TIMEOUT = 30.0
DEFAULT_CHUNK_SIZE = 64 * 1024


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if not value:
        return None
    return value.lower() == "true"


@dataclass(frozen=True)
class MountConfig:
    """Configuration for mirroring one bucket onto local disk.

    Objects from `bucket` are downloaded to `mount_root/bucket/<key>`, keeping
    the folder structure of their keys. If force_refresh is True every open()
    downloads the object again; otherwise a file found on disk is trusted.

    Instances are immutable. The with_* methods return new configurations, so a
    configuration can be shared without callers seeing each other's changes.
    The client is shared by reference, never copied.

    Attributes:
        client: Remote client with the boto3 S3 client interface
        bucket: Bucket (or container) identifier
        mount_root: Local directory that the bucket is mirrored under
        force_refresh: Always download on open() instead of trusting local files
        use_locks: Serialize operations on the same key with a file lock
        lock_timeout: Seconds to wait for a key's lock
        chunk_size: Bytes per chunk when streaming downloads to disk

    Examples:
        >>> config = (await MountConfig.create("my-bucket")).with_mount_root("data/")
        >>> with await config.open("folder/manifest.txt") as f:
        ...     text = f.read().decode()
    """

    client: Any = field(repr=False, compare=False)
    bucket: str
    mount_root: Path = DEFAULT_MOUNT_ROOT
    force_refresh: bool = False
    use_locks: bool = False
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self):
        """Ensure mount_root is a Path object."""
        if not isinstance(self.mount_root, Path):
            object.__setattr__(self, "mount_root", Path(self.mount_root))

    @classmethod
    async def create(cls, bucket: str, client: Optional[Any] = None) -> "MountConfig":
        """Create a configuration for a bucket.

        Create a new configuration for every bucket you need data from.

        Args:
            bucket: Bucket to mount
            client: Client to use. If None, an S3 client is created from the
                environment (same credentials as the AWS CLI).

        Returns:
            MountConfig with the default mount root that trusts local files
        """
        if client is None:
            client = await asyncio.to_thread(discover_client)
        return cls(client=client, bucket=bucket)

    @classmethod
    async def from_env(
        cls, bucket: Optional[str] = None, client: Optional[Any] = None
    ) -> "MountConfig":
        """Create a configuration with overrides from environment variables.

        Environment variables:
            S3MOUNT_BUCKET: Bucket to mount when `bucket` is not given
            S3MOUNT_ROOT: Mount root directory
            S3MOUNT_FORCE_REFRESH: Always download on open (true/false)
            S3MOUNT_LOCKS: Enable per-key locking (true/false)
            S3MOUNT_LOCK_TIMEOUT: Lock timeout in seconds

        Raises:
            ValueError: If no bucket is given and S3MOUNT_BUCKET is unset
        """
        bucket = bucket or os.getenv("S3MOUNT_BUCKET")
        if not bucket:
            raise ValueError("No bucket given and S3MOUNT_BUCKET is not set")

        config = await cls.create(bucket, client)

        if os.getenv("S3MOUNT_ROOT"):
            config = config.with_mount_root(os.getenv("S3MOUNT_ROOT"))

        force_refresh = _env_flag("S3MOUNT_FORCE_REFRESH")
        if force_refresh is not None:
            config = config.with_force_refresh(force_refresh)

        use_locks = _env_flag("S3MOUNT_LOCKS")
        timeout = os.getenv("S3MOUNT_LOCK_TIMEOUT")
        if use_locks is not None or timeout:
            config = config.with_locking(
                config.use_locks if use_locks is None else use_locks,
                float(timeout) if timeout else None,
            )

        return config

    def with_mount_root(self, path: Union[str, Path]) -> Self:
        """Return a copy that mirrors into a different local directory."""
        return dataclasses.replace(self, mount_root=Path(path))

    def with_force_refresh(self, refresh: bool) -> Self:
        """Return a copy that always downloads on open() when `refresh` is True.

        By default a file already on disk is read instead of downloading it.
        """
        return dataclasses.replace(self, force_refresh=bool(refresh))

    def with_locking(self, enabled: bool, timeout: Optional[float] = None) -> Self:
        """Return a copy that serializes operations on the same key.

        Args:
            enabled: Take a per-key file lock around open(), write() and evict()
            timeout: Seconds to wait for a lock (keeps the current value if None)
        """
        if timeout is None:
            timeout = self.lock_timeout
        return dataclasses.replace(self, use_locks=bool(enabled), lock_timeout=timeout)

    def with_chunk_size(self, chunk_size: int) -> Self:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        return dataclasses.replace(self, chunk_size=chunk_size)

    def mirror_path(self, key: KeyLike) -> Path:
        """Get the local path that `key` is mirrored to.

        Raises:
            InvalidKeyError: If the key cannot be mirrored
        """
        return mirror_path(self.mount_root, self.bucket, normalize_key(key))

    async def open(self, key: KeyLike) -> BinaryIO:
        """Open an object, downloading it unless a local copy can be used.

        See s3mount.sync.open_object().
        """
        return await _sync.open_object(self, key)

    async def write(self, key: KeyLike, data: bytes) -> BinaryIO:
        """Write an object to local disk and upload it.

        See s3mount.sync.write_object().
        """
        return await _sync.write_object(self, key, data)

    async def list(self, prefix: KeyLike = "") -> List[DirEntry]:
        """List the objects under a prefix ("" for the whole bucket).

        See s3mount.sync.list_objects().
        """
        return await _sync.list_objects(self, prefix)

    async def is_cached(self, key: KeyLike) -> bool:
        return await _sync.is_cached(self, key)

    async def evict(self, key: KeyLike) -> bool:
        return await _sync.evict(self, key)

    async def clear(self) -> None:
        """Remove every mirrored file for this bucket."""
        await _sync.clear(self)

    async def sync(self, prefix: KeyLike = "", concurrency: int = 4) -> List[Path]:
        """Download every file under a prefix. See s3mount.sync.sync_prefix()."""
        return await _sync.sync_prefix(self, prefix, concurrency=concurrency)
