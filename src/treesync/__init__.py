# src/treesync/__init__.py
"""
treesync: directory-tree synchronization between a local filesystem and S3.

This package uploads and downloads whole directory trees to and from an
S3-compatible bucket, lists and deletes objects under a prefix, fetches single
files, and normalizes the local layout after a prefix download.

The entry points for programmatic use are `ClientProvisioner`, which owns the
S3 client, and the `BulkTransferCoordinator` and `SingleObjectAccessor`
components built on top of it.
"""

from typing import List

from treesync.accessor import SingleObjectAccessor
from treesync.coordinator import BulkTransferCoordinator
from treesync.provisioner import ClientProvisioner

__all__: List[str] = [
    "BulkTransferCoordinator",
    "ClientProvisioner",
    "SingleObjectAccessor",
]
