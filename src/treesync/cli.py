# src/treesync/cli.py
"""Command-line interface for the treesync tool."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Tuple

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from treesync.accessor import SingleObjectAccessor
from treesync.config import AppConfig, Config, S3Config, _get_env_var
from treesync.coordinator import BulkTransferCoordinator
from treesync.exceptions import DocumentNotFoundError, TreeSyncError
from treesync.provisioner import ClientProvisioner
from treesync.signals import GracefulShutdown
from treesync.transfer import TransferOutcome

logger: logging.Logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


@dataclass(frozen=True)
class Operations:
    """The components a command works with, bound to one bucket."""

    bucket: str
    coordinator: BulkTransferCoordinator
    accessor: SingleObjectAccessor


Command = Callable[[Operations], Awaitable[Any]]


async def main_async(config: Config, bucket: str, command: Command) -> Any:
    """
    Provision the client and run one command against it.

    Args:
        config (Config): The application configuration.
        bucket (str): The bucket every operation targets.
        command (Command): The coroutine function implementing the command.

    Returns:
        Any: Whatever the command returns.
    """
    async with GracefulShutdown():
        async with ClientProvisioner(config.s3, config.app) as client:
            operations: Operations = Operations(
                bucket=bucket,
                coordinator=BulkTransferCoordinator(client, config.app),
                accessor=SingleObjectAccessor(client),
            )
            return await command(operations)


def _run(ctx: click.Context, command: Command) -> Any:
    """
    Execute a command, translating application errors into exit codes.

    Args:
        ctx (click.Context): The click context holding the group options.
        command (Command): The coroutine function implementing the command.

    Returns:
        Any: Whatever the command returns.
    """
    options: dict = ctx.obj
    try:
        bucket: str = options["bucket"] or _get_env_var("TREESYNC_BUCKET")
        config: Config = Config(
            s3=S3Config(),
            app=AppConfig(
                max_concurrency=options["max_concurrency"],
                public_read=options["public_read"],
                fail_on_incomplete=options["strict"],
            ),
        )
        return asyncio.run(main_async(config, bucket, command))
    except asyncio.CancelledError:
        logger.warning("Shutdown signal received. Exiting.")
        sys.exit(130)
    except DocumentNotFoundError as e:
        logger.error(str(e))
        sys.exit(2)
    except TreeSyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)


def _report(outcome: TransferOutcome) -> None:
    request = outcome.request
    logger.info(
        f"{request.direction.value.capitalize()} finished: "
        f"{outcome.objects_transferred} objects, {outcome.bytes_transferred} bytes "
        f"({outcome.percent_transferred:.1f}%)."
    )
    if outcome.reconciliation is not None and not outcome.reconciliation.ok:
        logger.warning(
            f"Local layout may be inconsistent: {outcome.reconciliation.reason}"
        )


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--bucket",
    default=None,
    help="Target bucket. Defaults to $TREESYNC_BUCKET.",
)
@click.option(
    "--max-concurrency",
    type=int,
    default=16,
    help="Maximum number of concurrent object transfers.",
    show_default=True,
)
@click.option(
    "--private",
    is_flag=True,
    default=False,
    help="Upload objects without the public-read ACL.",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Fail when a bulk transfer finishes below 100% without an error.",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    bucket: Optional[str],
    max_concurrency: int,
    private: bool,
    strict: bool,
    log_level: str,
) -> None:
    """
    Synchronize local directory trees with an S3 bucket.

    Region and credentials are read from environment variables
    (TREESYNC_REGION, TREESYNC_USE_CREDENTIALS, TREESYNC_PROFILE,
    TREESYNC_ENDPOINT_URL). See the .env.example file.
    """
    load_dotenv()
    setup_logging(log_level)
    ctx.obj = {
        "bucket": bucket,
        "max_concurrency": max_concurrency,
        "public_read": not private,
        "strict": strict,
    }


@cli.command()
@click.argument("folder")
@click.pass_context
def mkdir(ctx: click.Context, folder: str) -> None:
    """Create an empty FOLDER marker object."""

    async def command(ops: Operations) -> None:
        await ops.coordinator.create_folder_marker(ops.bucket, folder)

    _run(ctx, command)
    logger.info(f"✅ Created folder '{folder}/'.")


@cli.command()
@click.argument(
    "local_dir", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.argument("prefix")
@click.pass_context
def upload(ctx: click.Context, local_dir: Path, prefix: str) -> None:
    """Upload LOCAL_DIR recursively under PREFIX."""

    async def command(ops: Operations) -> TransferOutcome:
        return await ops.coordinator.upload_directory(ops.bucket, prefix, local_dir)

    _report(_run(ctx, command))


@cli.command()
@click.argument("prefix")
@click.argument("local_dir", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def download(ctx: click.Context, prefix: str, local_dir: Path) -> None:
    """Download everything under PREFIX into LOCAL_DIR."""

    async def command(ops: Operations) -> TransferOutcome:
        return await ops.coordinator.download_directory(ops.bucket, prefix, local_dir)

    _report(_run(ctx, command))


@cli.command(name="ls")
@click.argument("prefix")
@click.pass_context
def list_keys(ctx: click.Context, prefix: str) -> None:
    """List every key under PREFIX."""

    async def command(ops: Operations) -> List[str]:
        return await ops.accessor.list_keys(ops.bucket, prefix)

    for key in _run(ctx, command):
        click.echo(key)


@cli.command(name="rm")
@click.argument("keys", nargs=-1, required=True)
@click.pass_context
def delete_keys(ctx: click.Context, keys: Tuple[str, ...]) -> None:
    """Delete KEYS in one bulk request."""

    async def command(ops: Operations) -> None:
        await ops.accessor.delete_keys(ops.bucket, list(keys))

    _run(ctx, command)
    logger.info(f"✅ Deleted {len(keys)} object(s).")


@cli.command()
@click.argument("local_file", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def fetch(ctx: click.Context, local_file: Path) -> None:
    """Fetch the object named like LOCAL_FILE's last segment into LOCAL_FILE."""

    async def command(ops: Operations) -> None:
        await ops.accessor.download_file(local_file, ops.bucket)

    _run(ctx, command)
    logger.info(f"✅ Fetched '{local_file}'.")


if __name__ == "__main__":
    cli()
