"""Sync engine for mirroring bucket objects on local disk.

Every operation is a coroutine. Calls into the remote client and the local
filesystem run in worker threads via asyncio.to_thread, so the event loop is
only suspended at those points.

Failure handling follows one rule: if a download or upload fails after the
mirror file was created, the file is removed before the error is raised.
Nothing is retried here; retries are the remote client's concern.
"""

import asyncio
import contextlib
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, BinaryIO, Iterator, List, Optional

from filelock import FileLock, Timeout

from s3mount.errors import (
    FetchError,
    ListError,
    MountLockError,
    TransferError,
    UploadError,
)
from s3mount.listing import DirEntry, entries_from_page
from s3mount.paths import (
    KeyLike,
    bucket_root,
    lock_path,
    mirror_path,
    normalize_key,
    normalize_prefix,
)

if TYPE_CHECKING:
    from s3mount.config import MountConfig

logger = logging.getLogger(__name__)


# =========================================================================
# Cleanup and locking
# =========================================================================


def _discard(path: Path, handle: Optional[BinaryIO] = None) -> None:
    """Close and delete a mirror file. Failures are logged, not raised."""
    if handle is not None:
        try:
            handle.close()
        except OSError as e:
            logger.warning(f"Failed to close {path}: {e}")
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to clean up mirror file {path}: {e}")


@contextlib.asynccontextmanager
async def discard_on_failure(path: Path, handle: BinaryIO) -> AsyncIterator[BinaryIO]:
    """Delete the mirror file at `path` if the block raises.

    The handle is closed and the file removed (best effort), then the original
    exception is re-raised. Cancellation is not an Exception and leaves the
    file in whatever state the block reached.

    Args:
        path: Mirror file created for this operation
        handle: Open handle on `path`

    Examples:
        >>> async with discard_on_failure(path, handle):
        ...     await download_into(handle)
    """
    try:
        yield handle
    except Exception:
        await asyncio.to_thread(_discard, path, handle)
        raise


class _LockWaiter:
    """Acquires a FileLock from a worker thread on behalf of a coroutine.

    If the coroutine is cancelled while the thread is still waiting, the
    thread keeps going; abandon() makes sure the lock is released once it is
    taken, so the key does not stay locked with no owner.
    """

    def __init__(self, lock: FileLock):
        self.lock = lock
        self._guard = threading.Lock()
        self._acquired = False
        self._abandoned = False

    def acquire(self) -> None:
        self.lock.acquire()
        with self._guard:
            if self._abandoned:
                self.lock.release()
                return
            self._acquired = True

    def abandon(self) -> None:
        with self._guard:
            self._abandoned = True
            if self._acquired:
                self.lock.release()


@contextlib.asynccontextmanager
async def _key_lock(config: "MountConfig", remote_key: str) -> AsyncIterator[None]:
    """Hold the advisory lock for a key when the configuration asks for it."""
    if not config.use_locks:
        yield
        return

    path = lock_path(config.mount_root, config.bucket, remote_key)
    await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)

    # Acquired and released from different worker threads
    lock = FileLock(path, timeout=config.lock_timeout, thread_local=False)
    waiter = _LockWaiter(lock)
    try:
        await asyncio.to_thread(waiter.acquire)
    except Timeout as e:
        raise MountLockError(
            f"Timeout acquiring lock for {config.bucket}/{remote_key} "
            f"after {config.lock_timeout} seconds"
        ) from e
    except asyncio.CancelledError:
        waiter.abandon()
        raise

    try:
        yield
    finally:
        await asyncio.to_thread(lock.release)


# =========================================================================
# Blocking helpers (run in worker threads)
# =========================================================================


def _iter_body(body: Any, chunk_size: int, bucket: str, remote_key: str) -> Iterator[bytes]:
    """Yield body chunks, turning read failures into TransferError."""
    try:
        chunks = iter(body.iter_chunks(chunk_size=chunk_size))
    except Exception as e:
        raise TransferError(bucket, remote_key, e) from e

    while True:
        try:
            chunk = next(chunks)
        except StopIteration:
            return
        except Exception as e:
            raise TransferError(bucket, remote_key, e) from e
        if chunk:
            yield chunk


def _copy_body(
    body: Any, handle: BinaryIO, chunk_size: int, bucket: str, remote_key: str
) -> int:
    """Append the body to the handle chunk by chunk, in arrival order.

    Returns:
        Number of bytes written
    """
    written = 0
    try:
        for chunk in _iter_body(body, chunk_size, bucket, remote_key):
            handle.write(chunk)
            written += len(chunk)
        handle.flush()
    finally:
        body.close()
    return written


def _write_all(handle: BinaryIO, data: bytes) -> None:
    handle.write(data)
    handle.flush()
    os.fsync(handle.fileno())


def _upload_from_disk(client: Any, bucket: str, remote_key: str, path: Path) -> None:
    """Upload the mirror file, streaming it from disk."""
    with open(path, "rb") as body:
        try:
            client.put_object(Bucket=bucket, Key=remote_key, Body=body)
        except Exception as e:
            raise UploadError(bucket, remote_key, e) from e


# =========================================================================
# Operations
# =========================================================================


async def open_object(config: "MountConfig", key: KeyLike) -> BinaryIO:
    """Open an object from the bucket, downloading it if needed.

    If the mirror file exists and force_refresh is off, it is opened
    read-only without contacting the remote store. Otherwise the object is
    streamed to the mirror path in chunks, so large objects never have to fit
    in memory. Parent folders are created as needed.

    Args:
        config: Mount configuration
        key: Key of the object, including the filename

    Returns:
        Binary file handle positioned at the start. The caller closes it.

    Raises:
        InvalidKeyError: If the key cannot be mirrored
        FetchError: If the remote request fails (mirror file removed)
        TransferError: If the body cannot be read (mirror file removed)
        MountLockError: If locking is enabled and the lock times out
        OSError: On local I/O failures

    Examples:
        >>> config = await MountConfig.create("my-bucket")
        >>> with await open_object(config, "folder/manifest.txt") as f:
        ...     print(f.read())
    """
    remote_key = normalize_key(key)
    path = mirror_path(config.mount_root, config.bucket, remote_key)

    async with _key_lock(config, remote_key):
        if not config.force_refresh and await asyncio.to_thread(path.exists):
            logger.debug(f"Cache hit for {config.bucket}/{remote_key}")
            return await asyncio.to_thread(open, path, "rb")

        logger.debug(f"Fetching {config.bucket}/{remote_key} into {path}")
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        handle = await asyncio.to_thread(open, path, "w+b")

        async with discard_on_failure(path, handle):
            try:
                response = await asyncio.to_thread(
                    config.client.get_object, Bucket=config.bucket, Key=remote_key
                )
            except Exception as e:
                raise FetchError(config.bucket, remote_key, e) from e

            size = await asyncio.to_thread(
                _copy_body,
                response["Body"],
                handle,
                config.chunk_size,
                config.bucket,
                remote_key,
            )
            await asyncio.to_thread(handle.seek, 0)

    logger.info(f"Downloaded {config.bucket}/{remote_key} ({size} bytes) to {path}")
    return handle


async def write_object(config: "MountConfig", key: KeyLike, data: bytes) -> BinaryIO:
    """Write an object to the mirror and upload it to the bucket.

    The data is written and synced to the mirror file first; the upload then
    streams that file, so the bytes on disk are exactly the bytes shipped. Any
    existing object with the same key is overwritten, locally and remotely.

    Args:
        config: Mount configuration
        key: Key to store the data under, including the filename
        data: Bytes to store

    Returns:
        Handle on the mirror file, positioned at the start. The caller closes it.

    Raises:
        InvalidKeyError: If the key cannot be mirrored
        UploadError: If the upload fails (mirror file removed)
        MountLockError: If locking is enabled and the lock times out
        OSError: On local I/O failures
    """
    remote_key = normalize_key(key)
    path = mirror_path(config.mount_root, config.bucket, remote_key)

    async with _key_lock(config, remote_key):
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        handle = await asyncio.to_thread(open, path, "w+b")

        async with discard_on_failure(path, handle):
            await asyncio.to_thread(_write_all, handle, data)
            logger.debug(f"Uploading {path} to {config.bucket}/{remote_key}")
            await asyncio.to_thread(
                _upload_from_disk, config.client, config.bucket, remote_key, path
            )
            await asyncio.to_thread(handle.seek, 0)

    logger.info(f"Uploaded {len(data)} bytes to {config.bucket}/{remote_key}")
    return handle


async def list_objects(config: "MountConfig", prefix: KeyLike = "") -> List[DirEntry]:
    """List the objects in the bucket under a prefix.

    Returns files and folders (objects) with their key, size and whether they
    are a folder. Folders do not exist in an object store: only objects whose
    key ends in '/' are reported as folders, so not every logical folder is
    guaranteed to show up.

    Paginated listings are followed until the last page. Nothing is returned
    if any page fails.

    Args:
        config: Mount configuration
        prefix: Prefix to search under. Use "" for the whole bucket.

    Returns:
        Entries in the order the remote store lists them

    Raises:
        InvalidKeyError: If the prefix is not valid UTF-8 (no request is made)
        ListError: If a listing request fails
    """
    remote_prefix = normalize_prefix(prefix)

    entries: List[DirEntry] = []
    token: Optional[str] = None
    while True:
        request = {"Bucket": config.bucket, "Prefix": remote_prefix}
        if token:
            request["ContinuationToken"] = token

        try:
            page = await asyncio.to_thread(config.client.list_objects_v2, **request)
        except Exception as e:
            raise ListError(config.bucket, remote_prefix, e) from e

        entries.extend(entries_from_page(page))

        token = page.get("NextContinuationToken")
        if not page.get("IsTruncated") or not token:
            break

    logger.debug(
        f"Listed {len(entries)} entries under {config.bucket}/{remote_prefix}"
    )
    return entries


async def is_cached(config: "MountConfig", key: KeyLike) -> bool:
    """Check whether a mirror file exists for a key. Never contacts the remote."""
    path = config.mirror_path(key)
    return await asyncio.to_thread(path.is_file)


async def evict(config: "MountConfig", key: KeyLike) -> bool:
    """Delete the mirror file for a key, leaving the remote object alone.

    Returns:
        True if a file was removed
    """
    remote_key = normalize_key(key)
    path = mirror_path(config.mount_root, config.bucket, remote_key)

    async with _key_lock(config, remote_key):
        if not await asyncio.to_thread(path.is_file):
            return False
        await asyncio.to_thread(path.unlink)

    logger.debug(f"Evicted {path}")
    return True


async def clear(config: "MountConfig") -> None:
    """Remove the whole mirror tree of the configuration's bucket."""
    root = bucket_root(config.mount_root, config.bucket)
    if await asyncio.to_thread(root.exists):
        await asyncio.to_thread(shutil.rmtree, root)
        logger.info(f"Cleared mirror {root}")


async def sync_prefix(
    config: "MountConfig", prefix: KeyLike = "", concurrency: int = 4
) -> List[Path]:
    """Download every file under a prefix into the mirror.

    Folder markers are skipped. Each object goes through open_object(), so
    files already on disk are only downloaded again when force_refresh is set.

    Args:
        config: Mount configuration
        prefix: Prefix to sync. Use "" for the whole bucket.
        concurrency: Maximum number of downloads in flight

    Returns:
        Mirror paths in listing order

    Raises:
        ValueError: If concurrency < 1
        S3MountError: The first failure; remaining downloads are cancelled
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    entries = await list_objects(config, prefix)
    files = [entry for entry in entries if not entry.folder]
    semaphore = asyncio.Semaphore(concurrency)

    async def fetch(entry: DirEntry) -> Path:
        async with semaphore:
            handle = await open_object(config, entry.key)
            await asyncio.to_thread(handle.close)
            return config.mirror_path(entry.key)

    tasks = [asyncio.ensure_future(fetch(entry)) for entry in files]
    try:
        paths = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    logger.info(f"Synced {len(paths)} files under {config.bucket}/{prefix}")
    return list(paths)
