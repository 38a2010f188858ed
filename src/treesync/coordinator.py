# src/treesync/coordinator.py
"""Directory-wide upload and download orchestration."""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from treesync.config import AppConfig
from treesync.exceptions import DataTransferError
from treesync.paths import (
    SEPARATOR,
    ReconcileResult,
    collapse_downloaded_path,
    local_path_for,
    prefix_depth,
)
from treesync.transfer import (
    TransferDirection,
    TransferHandle,
    TransferOutcome,
    TransferRequest,
    start_directory_download,
    start_directory_upload,
)

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)

PUBLIC_READ_ACL: str = "public-read"


class BulkTransferCoordinator:
    """
    Uploads and downloads whole directory trees against one bucket-scoped client.

    Every bulk call awaits its transfer to the end and reports the result as a
    `TransferOutcome`. Failures are raised as `DataTransferError`; nothing
    already transferred is rolled back.
    """

    def __init__(self, client: "S3Client", config: AppConfig) -> None:
        """
        Initializes the coordinator.

        Args:
            client (S3Client): The provisioned aiobotocore S3 client.
            config (AppConfig): The application settings.
        """
        self._client: "S3Client" = client
        self._config: AppConfig = config

    async def create_folder_marker(self, bucket: str, folder_path: str) -> None:
        """
        Writes a zero-byte object at `folder_path/` to represent an empty folder.

        Args:
            bucket (str): The bucket name.
            folder_path (str): The folder key, without the trailing separator.
        """
        await self._client.put_object(
            Bucket=bucket,
            Key=folder_path + SEPARATOR,
            Body=b"",
            ContentLength=0,
        )
        logger.debug(f"Created folder marker 's3://{bucket}/{folder_path}/'")

    async def upload_directory(
        self, bucket: str, remote_prefix: str, local_dir: Union[str, Path]
    ) -> TransferOutcome:
        """
        Uploads every file beneath `local_dir` to `remote_prefix/`.

        Args:
            bucket (str): The destination bucket.
            remote_prefix (str): The key prefix acting as the remote folder.
            local_dir (Union[str, Path]): The directory to upload.

        Returns:
            TransferOutcome: How much of the tree was transferred.

        Raises:
            DataTransferError: If the upload failed or the waiting task was
                cancelled.
        """
        request: TransferRequest = TransferRequest(
            bucket=bucket,
            remote_prefix=remote_prefix,
            local_path=Path(local_dir),
            direction=TransferDirection.UPLOAD,
        )
        acl: Optional[str] = PUBLIC_READ_ACL if self._config.public_read else None
        try:
            handle: TransferHandle = await start_directory_upload(
                self._client, request, self._config.max_concurrency, acl
            )
            await handle.wait_for_completion()
        except asyncio.CancelledError:
            # The task's cancellation request stays pending for the caller.
            logger.error("Upload of folder and contents was cancelled.")
            raise DataTransferError(
                "Unable to upload folder and contents to S3. The task was cancelled"
            )
        except Exception as e:
            logger.error(str(e))
            raise DataTransferError(
                "Unable to upload folder and contents to S3. "
                f"Exception: {type(e).__name__}, Error: {e}"
            ) from e
        return self._check_completion(handle, "uploading")

    async def download_directory(
        self, bucket: str, remote_prefix: str, local_dir: Union[str, Path]
    ) -> TransferOutcome:
        """
        Downloads every object under `remote_prefix/` into `local_dir`.

        Keys are first mirrored in full beneath `local_dir`, then the
        directories introduced by the prefix itself are collapsed so that the
        files end up directly in `local_dir`. A failed collapse is reported on
        the outcome's `reconciliation`, not raised.

        Args:
            bucket (str): The source bucket.
            remote_prefix (str): The key prefix acting as the remote folder.
            local_dir (Union[str, Path]): The destination directory.

        Returns:
            TransferOutcome: How much of the prefix was transferred, with the
                reconciliation result attached.

        Raises:
            DataTransferError: If the download failed or the waiting task was
                cancelled.
        """
        destination: Path = Path(local_dir)
        request: TransferRequest = TransferRequest(
            bucket=bucket,
            remote_prefix=remote_prefix,
            local_path=destination,
            direction=TransferDirection.DOWNLOAD,
        )
        try:
            handle: TransferHandle = await start_directory_download(
                self._client, request, self._config.max_concurrency
            )
            await handle.wait_for_completion()
            outcome: TransferOutcome = self._check_completion(handle, "downloading")
            depth: int = prefix_depth(remote_prefix)
            downloaded_root: Path = local_path_for(
                destination, remote_prefix.strip(SEPARATOR)
            )
            reconciliation: ReconcileResult = collapse_downloaded_path(
                downloaded_root, destination, expected_depth=depth
            )
        except asyncio.CancelledError:
            logger.error("Download of folder and contents was cancelled.")
            raise DataTransferError(
                "Unable to download folder and contents from S3. The task was cancelled"
            )
        except DataTransferError:
            raise
        except Exception as e:
            logger.error(str(e))
            raise DataTransferError(
                "Unable to download folder and contents from S3. "
                f"Exception: {type(e).__name__}, Error: {e}"
            ) from e

        if not reconciliation.ok:
            logger.warning(
                f"Downloaded files under '{downloaded_root}' could not be moved "
                f"into '{destination}': {reconciliation.reason}"
            )
        return TransferOutcome(
            request=outcome.request,
            completed=outcome.completed,
            percent_transferred=outcome.percent_transferred,
            objects_transferred=outcome.objects_transferred,
            bytes_transferred=outcome.bytes_transferred,
            failure_reason=outcome.failure_reason,
            reconciliation=reconciliation,
        )

    def _check_completion(self, handle: TransferHandle, verb: str) -> TransferOutcome:
        """
        Turns the handle's final progress into an outcome.

        Args:
            handle (TransferHandle): A transfer that finished without raising.
            verb (str): `uploading` or `downloading`, for log messages.

        Returns:
            TransferOutcome: The outcome of the transfer.

        Raises:
            DataTransferError: If the transfer is incomplete and
                `fail_on_incomplete` is set.
        """
        percent: float = handle.percent_transferred
        failure_reason: Optional[str] = None
        if percent == 100.0:
            logger.debug(f"Finished {verb} files")
        else:
            failure_reason = (
                f"Only {percent:.1f}% of {handle.total_bytes} bytes were "
                f"transferred while {verb} files"
            )
            if self._config.fail_on_incomplete:
                raise DataTransferError(failure_reason)
            logger.warning(failure_reason)
        return TransferOutcome(
            request=handle.request,
            completed=failure_reason is None,
            percent_transferred=percent,
            objects_transferred=handle.objects_transferred,
            bytes_transferred=handle.bytes_transferred,
            failure_reason=failure_reason,
        )
