"""s3mount: mirror object store buckets onto local disk as a file cache."""

__version__ = "0.1.0"

from s3mount.clients import CloudFilesClient, discover_client
from s3mount.config import DEFAULT_MOUNT_ROOT, MountConfig
from s3mount.errors import (
    FetchError,
    InvalidKeyError,
    ListError,
    MountLockError,
    RemoteError,
    S3MountError,
    TransferError,
    UploadError,
)
from s3mount.listing import DirEntry

__all__ = [
    "MountConfig",
    "DirEntry",
    "DEFAULT_MOUNT_ROOT",
    "CloudFilesClient",
    "discover_client",
    "S3MountError",
    "InvalidKeyError",
    "RemoteError",
    "FetchError",
    "TransferError",
    "UploadError",
    "ListError",
    "MountLockError",
    "__version__",
]
