# src/treesync/provisioner.py
"""
Construction of the process-wide S3 client.

The client is built once at startup by the entry point, optionally after
validating an explicit credentials profile against IAM, and then handed to the
components that need it.
"""

import logging
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from aiobotocore.session import AioSession
from botocore.config import Config as BotoConfig

from treesync.config import AppConfig, S3Config
from treesync.exceptions import ProvisioningError

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)


class ClientProvisioner:
    """
    Builds, owns and closes the aiobotocore S3 client.

    Use it as an async context manager at the process entry point:

        async with ClientProvisioner(config.s3, config.app) as client:
            coordinator = BulkTransferCoordinator(client, config.app)
    """

    def __init__(
        self,
        s3_config: S3Config,
        app_config: Optional[AppConfig] = None,
        session_factory: Optional[Callable[..., AioSession]] = None,
    ) -> None:
        """
        Initializes the provisioner without touching the network.

        Args:
            s3_config (S3Config): Region, endpoint and credential settings.
            app_config (AppConfig, optional): Settings used to tune the botocore
                client (pool size, retry attempts).
            session_factory (Callable, optional): Builds the aiobotocore session.
                Defaults to `AioSession`.
        """
        self._s3_config: S3Config = s3_config
        self._app_config: AppConfig = app_config or AppConfig()
        self._session_factory: Callable[..., AioSession] = session_factory or AioSession
        self._exit_stack: AsyncExitStack = AsyncExitStack()
        self._client: Optional["S3Client"] = None
        self._closed: bool = False

    @property
    def built_with_credentials(self) -> bool:
        """Whether the client is built from an explicit credentials profile."""
        return self._s3_config.use_credentials

    @property
    def client(self) -> "S3Client":
        """
        The provisioned client.

        Raises:
            ProvisioningError: If `init()` has not completed.
        """
        if self._client is None:
            raise ProvisioningError("S3 client has not been initialized.")
        return self._client

    async def init(self) -> "S3Client":
        """
        Builds and caches the client.

        Returns:
            S3Client: The provisioned client.

        Raises:
            ProvisioningError: If the client cannot be built, was already built,
                or the provisioner has been closed.
        """
        if self._closed:
            raise ProvisioningError("S3 client provisioner has been closed.")
        if self._client is not None:
            raise ProvisioningError("S3 client has already been initialized.")
        self._client = await self.build_client(
            self._s3_config.use_credentials, self._s3_config.region
        )
        return self._client

    async def build_client(self, use_credentials: bool, region: str) -> "S3Client":
        """
        Builds an S3 client, validating explicit credentials first if requested.

        With `use_credentials`, the configured profile must resolve to
        credentials accepted by IAM `GetUser`. Otherwise the default credential
        and region chain is used as-is.

        Args:
            use_credentials (bool): Read credentials from the configured profile.
            region (str): The region for the IAM and S3 clients.

        Returns:
            S3Client: An entered client, closed by `close()`.

        Raises:
            ProvisioningError: On any failure. There is no fallback.
        """
        boto_config: BotoConfig = BotoConfig(
            max_pool_connections=self._app_config.max_concurrency + 10,
            retries={"max_attempts": self._app_config.transfer_max_attempts},
        )
        client_kwargs: Dict[str, Any] = {
            **self._s3_config.as_boto_dict(),
            "region_name": region,
            "config": boto_config,
        }
        try:
            if use_credentials:
                session: AioSession = self._session_factory(
                    profile=self._s3_config.profile_name
                )
                if await session.get_credentials() is None:
                    raise ProvisioningError(
                        f"No credentials found for profile "
                        f"'{self._s3_config.profile_name}'"
                    )
                async with session.create_client("iam", region_name=region) as iam:
                    user: Dict[str, Any] = await iam.get_user()
                logger.info(
                    f"Valid credentials for AWS username {user['User']['UserName']}"
                )
            else:
                session = self._session_factory()
            return await self._exit_stack.enter_async_context(
                session.create_client("s3", **client_kwargs)
            )
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningError(
                f"Get S3 client error. Exception: {type(e).__name__}, Error: {e}"
            ) from e

    async def close(self) -> None:
        """Closes the client, if one was built. The provisioner cannot be reused."""
        await self._exit_stack.aclose()
        self._closed = True
        self._client = None

    async def __aenter__(self) -> "S3Client":
        return await self.init()

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
