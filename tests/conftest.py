"""Shared fixtures: an in-memory, call-counting client with the boto3 S3 interface."""

import io
from collections import Counter
from typing import Dict, List, Optional

import pytest
from botocore.exceptions import ClientError
from botocore.response import StreamingBody

from s3mount.config import MountConfig

BUCKET = "test-bucket"


def client_error(code: str = "NoSuchKey", operation: str = "GetObject") -> ClientError:
    """Create a botocore ClientError like the ones boto3 raises."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class StubClient:
    """Object store held in a dict, counting every request made to it.

    Attributes:
        objects: Key to content mapping, in listing order
        calls: Counter of requests per client method
        uploads: Content of each put_object body, in order
        fail_get / fail_put / fail_list: Exception to raise instead of answering
        page_size: If set, list_objects_v2 returns pages of this many keys
    """

    def __init__(self, objects: Optional[Dict[str, bytes]] = None):
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.calls: Counter = Counter()
        self.requested_keys: List[str] = []
        self.uploads: List[bytes] = []
        self.fail_get: Optional[Exception] = None
        self.fail_put: Optional[Exception] = None
        self.fail_list: Optional[Exception] = None
        self.page_size: Optional[int] = None

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def get_object(self, Bucket: str, Key: str):
        self.calls["get_object"] += 1
        self.requested_keys.append(Key)
        if self.fail_get is not None:
            raise self.fail_get
        if Key not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        data = self.objects[Key]
        return {
            "Body": StreamingBody(io.BytesIO(data), len(data)),
            "ContentLength": len(data),
        }

    def put_object(self, Bucket: str, Key: str, Body):
        self.calls["put_object"] += 1
        self.requested_keys.append(Key)
        data = Body.read()
        self.uploads.append(data)
        if self.fail_put is not None:
            raise self.fail_put
        self.objects[Key] = data
        return {"ETag": '"etag"'}

    def list_objects_v2(self, Bucket: str, Prefix: str = "", ContinuationToken=None):
        self.calls["list_objects_v2"] += 1
        if self.fail_list is not None:
            raise self.fail_list

        keys = [key for key in self.objects if key.startswith(Prefix)]
        start = int(ContinuationToken or 0)
        end = len(keys) if self.page_size is None else start + self.page_size
        page = {
            "Contents": [
                {"Key": key, "Size": len(self.objects[key])} for key in keys[start:end]
            ],
            "KeyCount": len(keys[start:end]),
            "IsTruncated": end < len(keys),
        }
        if end < len(keys):
            page["NextContinuationToken"] = str(end)
        return page


@pytest.fixture
def stub_client():
    """Create an empty stub client."""
    return StubClient()


@pytest.fixture
def mount_root(tmp_path):
    """Temporary mount root."""
    return tmp_path / "mount"


@pytest.fixture
def config(stub_client, mount_root):
    """Create a mount configuration bound to the stub client."""
    return MountConfig(client=stub_client, bucket=BUCKET, mount_root=mount_root)
