# tests/conftest.py
"""
Pytest configuration and fixtures shared by the treesync test suites.

This module provides:
- An in-memory, async stand-in for the aiobotocore S3 client, implementing
  the calls treesync makes (put, get, head, list via paginator, bulk delete).
- Fixtures wiring that stand-in into the coordinator and accessor.
- Factories that write a local directory tree and read one back.
"""

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Tuple

import pytest
from botocore.exceptions import ClientError

from treesync.accessor import SingleObjectAccessor
from treesync.config import AppConfig
from treesync.coordinator import BulkTransferCoordinator

# --- Constants ---
BUCKET_NAME: str = "test-bucket"


def client_error(code: str, operation: str) -> ClientError:
    """
    Build a botocore `ClientError` the way the S3 service would raise it.

    Args:
        code (str): The S3 error code, e.g. `NoSuchKey` or `404`.
        operation (str): The API operation name.

    Returns:
        ClientError: The error instance.
    """
    return ClientError({"Error": {"Code": code, "Message": f"{code} error"}}, operation)


class FakeStreamingBody:
    """Mimics `aiobotocore.response.StreamingBody`."""

    def __init__(self, data: bytes) -> None:
        self._data: bytes = data
        self.closed: bool = False

    async def __aenter__(self) -> "FakeStreamingBody":
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.closed = True

    async def read(self) -> bytes:
        return self._data

    async def iter_lines(
        self, chunk_size: int = 1024, keepends: bool = False
    ) -> AsyncIterator[bytes]:
        for line in self._data.splitlines(keepends):
            yield line


class FakePaginator:
    """Mimics the `list_objects_v2` paginator, yielding fixed-size pages."""

    def __init__(self, client: "FakeS3Client") -> None:
        self._client: FakeS3Client = client

    def paginate(self, Bucket: str, Prefix: str = "") -> AsyncIterator[Dict[str, Any]]:
        return self._pages(Bucket, Prefix)

    async def _pages(self, bucket: str, prefix: str) -> AsyncIterator[Dict[str, Any]]:
        objects: Dict[str, bytes] = self._client.bucket(bucket, "ListObjectsV2")
        keys: List[str] = sorted(key for key in objects if key.startswith(prefix))
        if not keys:
            yield {"KeyCount": 0}
            return
        size: int = self._client.page_size
        for start in range(0, len(keys), size):
            yield {
                "Contents": [
                    {"Key": key, "Size": len(objects[key])}
                    for key in keys[start : start + size]
                ]
            }


class FakeS3Client:
    """
    An in-memory S3 client with knobs for injecting latency and failures.

    Attributes:
        buckets (Dict[str, Dict[str, bytes]]): Bucket name to key to content.
        acls (Dict[Tuple[str, str], str]): Canned ACL per (bucket, key).
        put_delay_s (float): Seconds every `put_object` sleeps before storing.
        get_delay_s (float): Seconds every `get_object` sleeps before answering.
        fail_put_keys (Set[str]): Keys whose upload raises `AccessDenied`.
        fail_head_keys (Set[str]): Keys whose `head_object` raises `403`.
        fail_delete_keys (Set[str]): Keys reported in `delete_objects` errors.
        delete_requests (List[List[str]]): Keys named by each delete request.
        bodies (List[FakeStreamingBody]): Every body handed out by `get_object`.
        page_size (int): Keys per listing page.
    """

    def __init__(self) -> None:
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.acls: Dict[Tuple[str, str], str] = {}
        self.put_delay_s: float = 0.0
        self.get_delay_s: float = 0.0
        self.fail_put_keys: Set[str] = set()
        self.fail_head_keys: Set[str] = set()
        self.fail_delete_keys: Set[str] = set()
        self.delete_requests: List[List[str]] = []
        self.bodies: List[FakeStreamingBody] = []
        self.page_size: int = 1000

    def create_bucket(self, name: str) -> None:
        self.buckets[name] = {}

    def bucket(self, name: str, operation: str) -> Dict[str, bytes]:
        if name not in self.buckets:
            raise client_error("NoSuchBucket", operation)
        return self.buckets[name]

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes,
        ContentLength: Optional[int] = None,
        ACL: Optional[str] = None,
    ) -> Dict[str, Any]:
        if self.put_delay_s:
            await asyncio.sleep(self.put_delay_s)
        if Key in self.fail_put_keys:
            raise client_error("AccessDenied", "PutObject")
        objects: Dict[str, bytes] = self.bucket(Bucket, "PutObject")
        data: bytes = bytes(Body)
        assert ContentLength is None or ContentLength == len(data)
        objects[Key] = data
        if ACL:
            self.acls[(Bucket, Key)] = ACL
        return {"ETag": f'"{hash(data)}"'}

    async def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        if self.get_delay_s:
            await asyncio.sleep(self.get_delay_s)
        objects: Dict[str, bytes] = self.bucket(Bucket, "GetObject")
        if Key not in objects:
            raise client_error("NoSuchKey", "GetObject")
        body: FakeStreamingBody = FakeStreamingBody(objects[Key])
        self.bodies.append(body)
        return {"Body": body, "ContentLength": len(objects[Key])}

    async def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        if Key in self.fail_head_keys:
            raise client_error("403", "HeadObject")
        objects: Dict[str, bytes] = self.bucket(Bucket, "HeadObject")
        if Key not in objects:
            raise client_error("404", "HeadObject")
        return {"ContentLength": len(objects[Key])}

    async def delete_objects(self, Bucket: str, Delete: Dict[str, Any]) -> Dict[str, Any]:
        objects: Dict[str, bytes] = self.bucket(Bucket, "DeleteObjects")
        keys: List[str] = [entry["Key"] for entry in Delete["Objects"]]
        self.delete_requests.append(keys)
        errors: List[Dict[str, str]] = []
        for key in keys:
            if key in self.fail_delete_keys:
                errors.append(
                    {"Key": key, "Code": "AccessDenied", "Message": "Access Denied"}
                )
            else:
                objects.pop(key, None)
        return {"Errors": errors} if errors else {}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)


# --- Application Fixtures ---
@pytest.fixture(scope="function")
def bucket() -> str:
    """
    Provide the name of the bucket created in `fake_s3`.

    Returns:
        str: The bucket name.
    """
    return BUCKET_NAME


@pytest.fixture(scope="function")
def fake_s3(bucket: str) -> FakeS3Client:
    """
    Provide an in-memory S3 client with one empty bucket.

    Args:
        bucket (str): The name of the bucket to create.

    Returns:
        FakeS3Client: The client stand-in.
    """
    client: FakeS3Client = FakeS3Client()
    client.create_bucket(bucket)
    return client


@pytest.fixture(scope="function")
def make_client_error() -> Callable[[str, str], ClientError]:
    """Provide the `ClientError` builder to tests."""
    return client_error


@pytest.fixture(scope="function")
def app_config() -> AppConfig:
    """
    Provide an AppConfig with a small worker pool.

    Returns:
        AppConfig: The settings used by the components under test.
    """
    return AppConfig(max_concurrency=4)


@pytest.fixture(scope="function")
def coordinator(fake_s3: FakeS3Client, app_config: AppConfig) -> BulkTransferCoordinator:
    """Provide a coordinator bound to the in-memory client."""
    return BulkTransferCoordinator(fake_s3, app_config)


@pytest.fixture(scope="function")
def accessor(fake_s3: FakeS3Client) -> SingleObjectAccessor:
    """Provide an accessor bound to the in-memory client."""
    return SingleObjectAccessor(fake_s3)


@pytest.fixture(scope="function")
def tree_factory() -> Callable[[Path, Dict[str, str]], Path]:
    """
    Provide a factory that writes a directory tree.

    Yields:
        A function taking a root directory and a mapping of relative POSIX
        paths to text content, returning the root.
    """

    def _creator(root: Path, files: Dict[str, str]) -> Path:
        root.mkdir(parents=True, exist_ok=True)
        for relative, content in files.items():
            path: Path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return root

    return _creator


@pytest.fixture(scope="function")
def read_tree() -> Callable[[Path], Dict[str, str]]:
    """
    Provide a reader that maps every regular file under a root to its content.

    Returns:
        A function taking a root directory and returning relative POSIX path
        to text content.
    """

    def _reader(root: Path) -> Dict[str, str]:
        return {
            path.relative_to(root).as_posix(): path.read_text()
            for path in sorted(root.rglob("*"))
            if path.is_file()
        }

    return _reader
