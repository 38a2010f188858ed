# src/treesync/config.py
"""
Configuration for treesync.

This module centralizes all configuration, loading values from environment
variables and providing typed dataclasses for use throughout the application.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from treesync.exceptions import ConfigError

_TRUTHY: frozenset = frozenset({"1", "true", "yes", "on"})


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_env_flag(name: str, default: bool = False) -> bool:
    """
    Reads a boolean environment variable.

    Args:
        name (str): The name of the environment variable.
        default (bool): The value to use if the variable is not set.

    Returns:
        bool: True if the variable holds a truthy string, else False.
    """
    value: Optional[str] = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class S3Config:
    """
    Represents how the S3 client is provisioned.

    Attributes:
        region (str): The AWS region the clients are scoped to.
        use_credentials (bool): Build the client from an explicit credentials
            profile and validate it against IAM first.
        profile_name (str): The shared-credentials profile to read.
        endpoint_url (str, optional): An S3-compatible endpoint, e.g. MinIO.
    """

    region: str = field(
        default_factory=lambda: _get_env_var("TREESYNC_REGION", "us-east-1")
    )
    use_credentials: bool = field(
        default_factory=lambda: _get_env_flag("TREESYNC_USE_CREDENTIALS")
    )
    profile_name: str = field(
        default_factory=lambda: _get_env_var("TREESYNC_PROFILE", "default")
    )
    endpoint_url: Optional[str] = field(
        default_factory=lambda: os.environ.get("TREESYNC_ENDPOINT_URL") or None
    )

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configuration as keyword arguments for `create_client`.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        params: Dict[str, str] = {"region_name": self.region}
        if self.endpoint_url:
            params["endpoint_url"] = self.endpoint_url
        return params


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        max_concurrency (int): Number of concurrent object transfers per bulk call.
        transfer_max_attempts (int): Max attempts botocore makes for one request.
        public_read (bool): Upload objects with the `public-read` canned ACL.
        fail_on_incomplete (bool): Raise instead of returning a partial outcome
            when a bulk transfer finishes below 100% without an error.
    """

    max_concurrency: int = 16
    transfer_max_attempts: int = 5
    public_read: bool = True
    fail_on_incomplete: bool = False


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        s3 (S3Config): How to provision the S3 client.
        app (AppConfig): General application settings.
    """

    s3: S3Config = field(default_factory=S3Config)
    app: AppConfig = field(default_factory=AppConfig)
