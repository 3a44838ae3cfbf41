"""Remote clients for mounting buckets.

The sync engine talks to any object with the boto3 S3 client shape
(get_object, put_object, list_objects_v2). By default a boto3 client is
discovered from the environment; CloudFilesClient adapts cloudfiles so that
GCS buckets and file:// paths can be mounted the same way.
"""

import logging
import os
from typing import Any, BinaryIO, Dict, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError

logger = logging.getLogger(__name__)


def discover_client(endpoint_url: Optional[str] = None) -> Any:
    """Create an S3 client from the environment.

    Credentials, region and profile (AWS_PROFILE) are resolved by boto3 the
    same way the AWS CLI does. Discovery never raises: if the session cannot
    be built (unknown profile, broken config file), the returned client
    raises that error on its first request instead. Missing credentials also
    surface on the first request, since boto3 looks them up lazily.

    Args:
        endpoint_url: Custom S3-compatible endpoint (MinIO, SeaweedFS).
            Defaults to the S3MOUNT_ENDPOINT_URL environment variable.

    Returns:
        boto3 S3 client, or a client that fails every request
    """
    endpoint_url = endpoint_url or os.getenv("S3MOUNT_ENDPOINT_URL")

    kwargs: Dict[str, Any] = {
        "config": Config(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        ),
    }
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url

    try:
        session = boto3.session.Session()
        client = session.client("s3", **kwargs)
    except BotoCoreError as e:
        logger.warning(f"Could not create S3 client from the environment: {e}")
        return UnavailableClient(e)

    logger.debug(f"Discovered S3 client (endpoint={endpoint_url})")
    return client


class UnavailableClient:
    """Stand-in for a client that could not be created.

    Every request raises the error that stopped discovery, so it is reported
    by the operation that made the request.
    """

    def __init__(self, error: Exception):
        self.error = error

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        raise self.error

    def put_object(self, Bucket: str, Key: str, Body: BinaryIO) -> Dict[str, Any]:
        raise self.error

    def list_objects_v2(self, Bucket: str, Prefix: str = "", **kwargs: Any) -> Dict[str, Any]:
        raise self.error


class _ContentBody:
    """Response body over an in-memory payload, delivered in chunks."""

    def __init__(self, content: bytes):
        self._content = content

    def iter_chunks(self, chunk_size: int = 1024) -> Iterator[bytes]:
        for start in range(0, len(self._content), chunk_size):
            yield self._content[start : start + chunk_size]

    def close(self) -> None:
        self._content = b""


class CloudFilesClient:
    """Object store client backed by cloudfiles.

    Exposes the subset of the boto3 S3 client interface used by the sync
    engine, so any protocol supported by cloudfiles ('gs', 's3', 'file', ...)
    can be mounted.

    cloudfiles downloads whole objects, so bodies are buffered in memory and
    then written to disk in chunks.

    Examples:
        >>> client = CloudFilesClient("gs")
        >>> config = await MountConfig.create("my-bucket", client)
    """

    def __init__(self, protocol: str = "gs", **cloudfiles_kwargs: Any):
        """Initialize the client.

        Args:
            protocol: cloudfiles protocol, e.g. 'gs', 's3' or 'file'
            **cloudfiles_kwargs: Passed through to cloudfiles.CloudFiles
        """
        self.protocol = protocol
        self._cloudfiles_kwargs = cloudfiles_kwargs

    def _bucket(self, bucket: str):
        from cloudfiles import CloudFiles

        return CloudFiles(f"{self.protocol}://{bucket}", **self._cloudfiles_kwargs)

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        content = self._bucket(Bucket).get(Key)
        if content is None:
            raise FileNotFoundError(f"{self.protocol}://{Bucket}/{Key} does not exist")
        return {"Body": _ContentBody(content), "ContentLength": len(content)}

    def put_object(self, Bucket: str, Key: str, Body: BinaryIO) -> Dict[str, Any]:
        content = Body.read() if hasattr(Body, "read") else bytes(Body)
        self._bucket(Bucket).put(Key, content)
        return {}

    def list_objects_v2(self, Bucket: str, Prefix: str = "", **kwargs: Any) -> Dict[str, Any]:
        """List every key under the prefix as a single, untruncated page."""
        cf = self._bucket(Bucket)
        keys = list(cf.list(prefix=Prefix))
        sizes = cf.size(keys) if keys else {}
        return {
            "Contents": [{"Key": key, "Size": sizes.get(key) or 0} for key in keys],
            "KeyCount": len(keys),
            "IsTruncated": False,
        }
