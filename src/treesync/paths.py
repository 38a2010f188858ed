# src/treesync/paths.py
"""
Mapping between local directory trees and object-store key prefixes.

Object stores have a flat key namespace. A "folder" is only a shared key
prefix ending in `/`. Downloading a prefix mirrors the whole key, so
`backups/node1/a.txt` fetched into `dest` lands at `dest/backups/node1/a.txt`.
`collapse_downloaded_path` lifts that content back up into `dest`.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

logger: logging.Logger = logging.getLogger(__name__)

SEPARATOR: str = "/"

PathLike = Union[str, Path]


class ReconcileStatus(Enum):
    """Result of a post-download path collapse."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of `collapse_downloaded_path`.

    Attributes:
        status (ReconcileStatus): What happened.
        reason (str, optional): Human-readable detail for anything but SUCCESS.
    """

    status: ReconcileStatus
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (ReconcileStatus.SUCCESS, ReconcileStatus.SKIPPED)


def _segments(prefix: str) -> List[str]:
    return [segment for segment in prefix.split(SEPARATOR) if segment]


def folder_prefix(prefix: str) -> str:
    """
    Normalizes a prefix into a folder marker form with one trailing separator.

    Args:
        prefix (str): A key prefix such as `reports`, `reports/` or `a/b`.

    Returns:
        str: The prefix ending in exactly one `/`, or an empty string for the
            bucket root.
    """
    segments: List[str] = _segments(prefix)
    if not segments:
        return ""
    return SEPARATOR.join(segments) + SEPARATOR


def prefix_depth(prefix: str) -> int:
    """Returns the number of non-empty segments in a key prefix."""
    return len(_segments(prefix))


def key_for(prefix: str, local_root: PathLike, file_path: PathLike) -> str:
    """
    Builds the object key under which a local file is uploaded.

    Args:
        prefix (str): The remote folder prefix.
        local_root (PathLike): The directory being uploaded.
        file_path (PathLike): A file somewhere beneath `local_root`.

    Returns:
        str: `prefix/` followed by the file's path relative to `local_root`.
    """
    relative: Path = Path(file_path).relative_to(Path(local_root))
    return folder_prefix(prefix) + relative.as_posix()


def local_path_for(local_root: PathLike, key: str) -> Path:
    """
    Builds the local path an object key is mirrored to.

    Args:
        local_root (PathLike): The download destination.
        key (str): The full object key.

    Returns:
        Path: `local_root` joined with every segment of the key.

    Raises:
        ValueError: If the key is absolute or escapes `local_root` via `..`.
    """
    pure: PurePosixPath = PurePosixPath(key)
    if pure.is_absolute() or ".." in pure.parts:
        raise ValueError(f"Refusing unsafe object key '{key}'")
    return Path(local_root).joinpath(*pure.parts)


def collapse_downloaded_path(
    downloaded_root: PathLike,
    final_root: PathLike,
    expected_depth: Optional[int] = None,
) -> ReconcileResult:
    """
    Moves the content of a mirrored prefix directory up into `final_root`.

    The intermediate directories between `final_root` and `downloaded_root`
    are removed when they are left empty. Files that were already there are
    never touched, so a level that still holds them is kept and the result is
    PARTIAL. I/O failures are logged and reported through the returned result
    rather than raised.

    Args:
        downloaded_root (PathLike): The deepest mirrored directory, e.g.
            `dest/backups/node1`.
        final_root (PathLike): Where the files should end up, e.g. `dest`.
        expected_depth (int, optional): The number of prefix segments the
            caller expects between the two paths.

    Returns:
        ReconcileResult: SUCCESS, SKIPPED, PARTIAL (copied, some level kept) or
            FAILED (nothing moved into place).

    Raises:
        ValueError: If `downloaded_root` is not beneath `final_root`, or the
            depth between them differs from `expected_depth`.
    """
    downloaded: Path = Path(downloaded_root)
    final: Path = Path(final_root)
    try:
        relative: Path = downloaded.relative_to(final)
    except ValueError as e:
        raise ValueError(f"'{downloaded}' is not located under '{final}'") from e

    depth: int = len(relative.parts)
    if expected_depth is not None and depth != expected_depth:
        raise ValueError(
            f"Expected '{downloaded}' to be {expected_depth} level(s) below "
            f"'{final}', found {depth}"
        )
    if depth == 0:
        return ReconcileResult(ReconcileStatus.SKIPPED, "No prefix levels to collapse")
    if not downloaded.is_dir():
        return ReconcileResult(
            ReconcileStatus.SKIPPED, f"Nothing was downloaded to '{downloaded}'"
        )

    # Stage only the downloaded directory aside, so downloaded entries that
    # share a prefix segment's name are not copied into their own source.
    try:
        staging: Path = Path(tempfile.mkdtemp(prefix=".treesync-", dir=final))
        staged: Path = staging / "content"
        downloaded.rename(staged)
    except OSError as e:
        logger.error(f"Failed to stage '{downloaded}' for collapsing: {e}")
        return ReconcileResult(ReconcileStatus.FAILED, str(e))

    problems: List[str] = []
    # Deepest first. A kept level keeps every level above it.
    for level in relative.parents[:-1]:
        directory: Path = final / level
        if any(directory.iterdir()):
            logger.warning(f"Keeping '{directory}': it holds other files")
            problems.append(f"'{directory}' holds other files and was kept")
            break
        try:
            directory.rmdir()
        except OSError as e:
            logger.error(f"Failed to remove intermediate directory '{directory}': {e}")
            problems.append(str(e))
            break

    try:
        shutil.copytree(staged, final, dirs_exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to copy '{downloaded}' into '{final}': {e}")
        return ReconcileResult(
            ReconcileStatus.FAILED,
            f"{e}. Downloaded files remain under '{staged}'",
        )

    try:
        shutil.rmtree(staging)
    except OSError as e:
        logger.error(f"Failed to remove staging directory '{staging}': {e}")
        problems.append(str(e))

    if problems:
        return ReconcileResult(ReconcileStatus.PARTIAL, "; ".join(problems))
    logger.debug(f"Collapsed {depth} prefix level(s) of '{downloaded}' into '{final}'")
    return ReconcileResult(ReconcileStatus.SUCCESS)
