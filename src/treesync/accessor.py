# src/treesync/accessor.py
"""Single-object operations: listing, existence checks, retrieval and deletion."""

import logging
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Sequence, TextIO, Union

from botocore.exceptions import ClientError

from treesync.exceptions import DataTransferError, DocumentNotFoundError
from treesync.paths import folder_prefix

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.paginator import ListObjectsV2Paginator
    from types_aiobotocore_s3.type_defs import ListObjectsV2OutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)

# S3 rejects DeleteObjects requests naming more keys than this.
MAX_DELETE_BATCH: int = 1000

_NOT_FOUND_CODES: frozenset = frozenset({"404", "NoSuchKey", "NotFound"})


def _describe(e: Exception) -> str:
    return f"Exception: {type(e).__name__}, Error: {e}"


class SingleObjectAccessor:
    """Object-level access to a bucket, independent of bulk transfers."""

    def __init__(self, client: "S3Client") -> None:
        """
        Initializes the accessor.

        Args:
            client (S3Client): The provisioned aiobotocore S3 client.
        """
        self._client: "S3Client" = client

    async def list_keys(self, bucket: str, path_prefix: str) -> List[str]:
        """
        Lists every key under `path_prefix/`, in the order the store returns them.

        Args:
            bucket (str): The bucket name.
            path_prefix (str): The folder prefix, without the trailing separator.

        Returns:
            List[str]: All matching object keys.

        Raises:
            DataTransferError: If listing fails.
        """
        try:
            paginator: "ListObjectsV2Paginator" = self._client.get_paginator(
                "list_objects_v2"
            )
            pages: AsyncIterator["ListObjectsV2OutputTypeDef"] = paginator.paginate(
                Bucket=bucket, Prefix=folder_prefix(path_prefix)
            )
            return [
                summary["Key"]
                async for page in pages
                for summary in page.get("Contents", [])
            ]
        except Exception as e:
            raise DataTransferError(f"List S3 paths error. {_describe(e)}") from e

    async def object_exists(self, bucket: str, key: str) -> bool:
        """
        Checks whether an object exists.

        Args:
            bucket (str): The bucket name.
            key (str): The object key.

        Returns:
            bool: False if the store answers "not found", True otherwise.

        Raises:
            ClientError: For any error other than "not found".
        """
        try:
            await self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return False
            raise
        return True

    async def download_file(
        self, local_file_path: Union[str, Path], bucket: str
    ) -> None:
        """
        Fetches one object, named after the last segment of the local path.

        The content is copied line by line as UTF-8 text: line contents are
        preserved, line endings are rewritten to `\\n`.

        Args:
            local_file_path (Union[str, Path]): Where to write the file. Its
                name is also the object key.
            bucket (str): The bucket name.

        Raises:
            DocumentNotFoundError: If the object does not exist. Nothing is
                written locally in that case.
            DataTransferError: If the existence check or the download fails.
        """
        target: Path = Path(local_file_path)
        key: str = PurePosixPath(target.as_posix()).name
        try:
            exists: bool = await self.object_exists(bucket, key)
        except Exception as e:
            raise DataTransferError(
                f"S3 check object exist error. {_describe(e)}"
            ) from e

        if not exists:
            raise DocumentNotFoundError(f"Document '{key}' not found in '{bucket}'")

        try:
            response: Dict[str, Any] = await self._client.get_object(
                Bucket=bucket, Key=key
            )
            async with response["Body"] as stream:
                with target.open("w", encoding="utf-8") as output:
                    await self._copy_lines(stream, output)
        except Exception as e:
            raise DataTransferError(f"S3 download file error. {_describe(e)}") from e
        logger.debug(f"Downloaded 's3://{bucket}/{key}' to '{target}'")

    @staticmethod
    async def _copy_lines(stream: Any, output: TextIO) -> None:
        async for line in stream.iter_lines():
            output.write(line.decode("utf-8"))
            output.write("\n")

    async def delete_keys(self, bucket: str, keys: Sequence[str]) -> None:
        """
        Deletes the given keys in bulk.

        Failure is reported for the whole call. There is no record of which
        keys, if any, were deleted before the error.

        Args:
            bucket (str): The bucket name.
            keys (Sequence[str]): The object keys to delete.

        Raises:
            DataTransferError: If any request fails or the store reports
                per-key errors.
        """
        if not keys:
            return
        try:
            for start in range(0, len(keys), MAX_DELETE_BATCH):
                batch: Sequence[str] = keys[start : start + MAX_DELETE_BATCH]
                response: Dict[str, Any] = await self._client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
                errors: List[Dict[str, Any]] = response.get("Errors", [])
                if errors:
                    first: Dict[str, Any] = errors[0]
                    raise DataTransferError(
                        f"{len(errors)} key(s) could not be deleted, first "
                        f"'{first.get('Key')}': {first.get('Code')} - "
                        f"{first.get('Message')}"
                    )
        except Exception as e:
            raise DataTransferError(
                f"Delete folder and contents from S3 error. {_describe(e)}"
            ) from e
        logger.debug(f"Deleted {len(keys)} object(s) from '{bucket}'")
