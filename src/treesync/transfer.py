# src/treesync/transfer.py
"""
Bulk transfer engine.

A `TransferHandle` represents one in-flight directory upload or download. The
work items are queued up front and drained by a pool of worker tasks that
share the injected S3 client. Callers await `wait_for_completion()` and then
read the progress counters.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Tuple

from treesync.paths import ReconcileResult, folder_prefix, key_for, local_path_for

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.paginator import ListObjectsV2Paginator
    from types_aiobotocore_s3.type_defs import ListObjectsV2OutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)


class TransferDirection(Enum):
    """Which way a bulk transfer moves data."""

    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferStatus(Enum):
    """Completion state of a bulk transfer that did not raise."""

    COMPLETED = "completed"
    PARTIAL = "partial"


@dataclass(frozen=True)
class TransferRequest:
    """
    An immutable description of one bulk transfer.

    Attributes:
        bucket (str): The bucket name.
        remote_prefix (str): The key prefix acting as the remote folder.
        local_path (Path): The local directory.
        direction (TransferDirection): Upload or download.
    """

    bucket: str
    remote_prefix: str
    local_path: Path
    direction: TransferDirection


@dataclass(frozen=True)
class TransferItem:
    """A single object to move as part of a bulk transfer."""

    key: str
    path: Path
    size: int
    is_folder_marker: bool = False


@dataclass(frozen=True)
class TransferOutcome:
    """
    What a finished bulk transfer achieved.

    Attributes:
        request (TransferRequest): The request this outcome answers.
        completed (bool): True only if 100% of the bytes were transferred.
        percent_transferred (float): Transferred bytes as a share of the total.
        objects_transferred (int): Number of objects moved.
        bytes_transferred (int): Number of bytes moved.
        failure_reason (str, optional): Why the transfer is not complete.
        reconciliation (ReconcileResult, optional): Result of the post-download
            path collapse. Always None for uploads.
    """

    request: TransferRequest
    completed: bool
    percent_transferred: float
    objects_transferred: int
    bytes_transferred: int
    failure_reason: Optional[str] = None
    reconciliation: Optional[ReconcileResult] = None

    @property
    def status(self) -> TransferStatus:
        return TransferStatus.COMPLETED if self.completed else TransferStatus.PARTIAL


def _write_file(path: Path, body: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(body)


class TransferHandle:
    """
    An in-flight bulk transfer driven by a pool of worker tasks.

    Per-object failures do not stop the other workers. They are logged and the
    first one is re-raised by `wait_for_completion()` once the queue is drained.
    """

    def __init__(
        self,
        client: "S3Client",
        request: TransferRequest,
        items: List[TransferItem],
        max_concurrency: int,
        acl: Optional[str] = None,
    ) -> None:
        """
        Initializes the handle and queues every item.

        Args:
            client (S3Client): The shared aiobotocore S3 client.
            request (TransferRequest): The transfer being executed.
            items (List[TransferItem]): The objects to move.
            max_concurrency (int): Upper bound on the number of workers.
            acl (str, optional): Canned ACL applied to uploaded objects.
        """
        self._client: "S3Client" = client
        self.request: TransferRequest = request
        self._acl: Optional[str] = acl
        self._queue: asyncio.Queue[TransferItem] = asyncio.Queue()
        for item in items:
            self._queue.put_nowait(item)
        self._num_workers: int = max(1, min(max_concurrency, len(items)))
        self._workers: List[asyncio.Task[None]] = []
        self._failures: List[Tuple[str, Exception]] = []
        self.total_objects: int = len(items)
        self.total_bytes: int = sum(item.size for item in items)
        self.objects_transferred: int = 0
        self.bytes_transferred: int = 0

    @property
    def percent_transferred(self) -> float:
        """
        Transferred bytes as a percentage of the expected total, capped at 100.

        Returns:
            float: 100.0 for an empty transfer once it has finished.
        """
        if self.total_bytes == 0:
            return 100.0 if self.objects_transferred == self.total_objects else 0.0
        return min(100.0, self.bytes_transferred * 100.0 / self.total_bytes)

    def start(self) -> "TransferHandle":
        """Spawns the worker tasks. Must be called from a running event loop."""
        self._workers = [
            asyncio.create_task(self._worker(i)) for i in range(self._num_workers)
        ]
        return self

    async def wait_for_completion(self) -> None:
        """
        Waits until every queued item has been processed.

        Workers are stopped on every exit path, including cancellation of the
        waiting task.

        Raises:
            Exception: The first per-object failure, once all items are done.
        """
        try:
            await self._queue.join()
        finally:
            await self._stop_workers()

        if self._failures:
            if len(self._failures) > 1:
                logger.error(
                    f"{len(self._failures)} of {self.total_objects} objects failed "
                    f"to {self.request.direction.value}."
                )
            raise self._failures[0][1]

    async def _stop_workers(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

    async def _worker(self, worker_id: int) -> None:
        """
        A worker task that processes items until it is cancelled.

        Args:
            worker_id (int): A unique identifier for this worker.
        """
        logger.debug(f"Worker {worker_id} started.")
        while True:
            try:
                item: TransferItem = await self._queue.get()
            except asyncio.CancelledError:
                logger.debug(f"Worker {worker_id} shutting down.")
                break
            try:
                transferred: int = await self._transfer(item)
                self.objects_transferred += 1
                self.bytes_transferred += transferred
            except asyncio.CancelledError:
                logger.debug(f"Worker {worker_id} cancelled during '{item.key}'.")
                raise
            except Exception as e:
                self._failures.append((item.key, e))
                logger.error(
                    f"Failed to {self.request.direction.value} '{item.key}': "
                    f"{type(e).__name__} - {e}"
                )
            finally:
                self._queue.task_done()

    async def _transfer(self, item: TransferItem) -> int:
        if self.request.direction is TransferDirection.UPLOAD:
            return await self._upload(item)
        return await self._download(item)

    async def _upload(self, item: TransferItem) -> int:
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        body: bytes = await loop.run_in_executor(None, item.path.read_bytes)
        params: Dict[str, Any] = {
            "Bucket": self.request.bucket,
            "Key": item.key,
            "Body": body,
            "ContentLength": len(body),
        }
        if self._acl:
            params["ACL"] = self._acl
        await self._client.put_object(**params)
        logger.debug(f"Uploaded '{item.path}' to 's3://{self.request.bucket}/{item.key}'")
        return len(body)

    async def _download(self, item: TransferItem) -> int:
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        if item.is_folder_marker:
            await loop.run_in_executor(
                None, lambda: item.path.mkdir(parents=True, exist_ok=True)
            )
            return 0
        response: Dict[str, Any] = await self._client.get_object(
            Bucket=self.request.bucket, Key=item.key
        )
        async with response["Body"] as stream:
            body: bytes = await stream.read()
        await loop.run_in_executor(None, _write_file, item.path, body)
        logger.debug(f"Downloaded 's3://{self.request.bucket}/{item.key}' to '{item.path}'")
        return len(body)


def _scan_local_tree(request: TransferRequest) -> List[TransferItem]:
    """
    Collects every regular file beneath the request's local directory.

    Args:
        request (TransferRequest): An upload request.

    Returns:
        List[TransferItem]: One item per file, in sorted path order.

    Raises:
        NotADirectoryError: If the local path is not an existing directory.
    """
    root: Path = request.local_path
    if not root.is_dir():
        raise NotADirectoryError(f"'{root}' is not an existing directory")
    items: List[TransferItem] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        items.append(
            TransferItem(
                key=key_for(request.remote_prefix, root, path),
                path=path,
                size=path.stat().st_size,
            )
        )
    return items


async def _list_remote_tree(
    client: "S3Client", request: TransferRequest
) -> List[TransferItem]:
    """
    Lists every object under the request's prefix and maps it to a local path.

    Args:
        client (S3Client): The aiobotocore S3 client.
        request (TransferRequest): A download request.

    Returns:
        List[TransferItem]: One item per object, in listing order.
    """
    paginator: "ListObjectsV2Paginator" = client.get_paginator("list_objects_v2")
    pages: AsyncIterator["ListObjectsV2OutputTypeDef"] = paginator.paginate(
        Bucket=request.bucket, Prefix=folder_prefix(request.remote_prefix)
    )
    items: List[TransferItem] = []
    async for page in pages:
        for summary in page.get("Contents", []):
            key: str = summary["Key"]
            try:
                path: Path = local_path_for(request.local_path, key)
            except ValueError:
                logger.warning(f"Skipping unsafe key '{key}'")
                continue
            items.append(
                TransferItem(
                    key=key,
                    path=path,
                    size=summary.get("Size", 0),
                    is_folder_marker=key.endswith("/"),
                )
            )
    return items


async def start_directory_upload(
    client: "S3Client",
    request: TransferRequest,
    max_concurrency: int,
    acl: Optional[str] = None,
) -> TransferHandle:
    """
    Scans a local directory and starts uploading it.

    Args:
        client (S3Client): The aiobotocore S3 client.
        request (TransferRequest): An upload request.
        max_concurrency (int): Maximum number of concurrent object uploads.
        acl (str, optional): Canned ACL for every uploaded object.

    Returns:
        TransferHandle: The running transfer.
    """
    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    items: List[TransferItem] = await loop.run_in_executor(
        None, _scan_local_tree, request
    )
    logger.info(
        f"Uploading {len(items)} files from '{request.local_path}' to "
        f"'s3://{request.bucket}/{folder_prefix(request.remote_prefix)}'"
    )
    return TransferHandle(client, request, items, max_concurrency, acl).start()


async def start_directory_download(
    client: "S3Client",
    request: TransferRequest,
    max_concurrency: int,
) -> TransferHandle:
    """
    Lists a remote prefix and starts downloading it.

    Args:
        client (S3Client): The aiobotocore S3 client.
        request (TransferRequest): A download request.
        max_concurrency (int): Maximum number of concurrent object downloads.

    Returns:
        TransferHandle: The running transfer.
    """
    items: List[TransferItem] = await _list_remote_tree(client, request)
    logger.info(
        f"Downloading {len(items)} objects from "
        f"'s3://{request.bucket}/{folder_prefix(request.remote_prefix)}' "
        f"to '{request.local_path}'"
    )
    return TransferHandle(client, request, items, max_concurrency).start()
