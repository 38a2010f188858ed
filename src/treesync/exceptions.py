# src/treesync/exceptions.py
"""Custom exceptions for the treesync application."""


class TreeSyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(TreeSyncError):
    """Raised for configuration-related issues."""

    pass


class ProvisioningError(TreeSyncError):
    """Raised when the S3 client cannot be built or its credentials are invalid."""

    pass


class DataTransferError(TreeSyncError):
    """Raised when an upload, download, listing or deletion fails."""

    pass


class DocumentNotFoundError(TreeSyncError):
    """Raised when a requested single object does not exist in the bucket."""

    pass
