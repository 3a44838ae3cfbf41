"""Exceptions raised by s3mount."""

from typing import Optional


class S3MountError(Exception):
    """Base exception for s3mount errors."""

    pass


class InvalidKeyError(S3MountError, ValueError):
    """Raised when a key or prefix cannot be represented as UTF-8 text or a mirror path."""

    pass


class MountLockError(S3MountError):
    """Raised when unable to acquire the advisory lock for a key."""

    pass


class RemoteError(S3MountError):
    """Raised when the remote client fails.

    Attributes:
        operation: Remote operation that failed ('fetch', 'upload' or 'list')
        bucket: Bucket the request was made against
        key: Object key or listing prefix
        original: Exception raised by the client
    """

    operation = "remote"

    def __init__(self, bucket: str, key: str, original: Optional[BaseException] = None):
        self.bucket = bucket
        self.key = key
        self.original = original
        detail = f": {original}" if original is not None else ""
        super().__init__(f"Remote {self.operation} failed for {bucket}/{key}{detail}")


class FetchError(RemoteError):
    """Raised when an object cannot be downloaded."""

    operation = "fetch"


class TransferError(FetchError):
    """Raised when the body of a downloaded object cannot be read to the end."""

    pass


class UploadError(RemoteError):
    """Raised when an object cannot be uploaded."""

    operation = "upload"


class ListError(RemoteError):
    """Raised when a prefix listing fails."""

    operation = "list"
