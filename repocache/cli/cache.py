"""CLI commands operating on cached repositories"""

import sys
from functools import wraps
from pathlib import Path

import click
import humanfriendly

from repocache.cli.utils.logging import logger
from repocache.exceptions import RepositoryError
from repocache.services import build_services


def exit_on_error(func):
    """Print cache errors as ``CODE: message`` and exit with status 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RepositoryError as e:
            click.echo(f"{e.code}: {e.message}", err=True)
            sys.exit(1)

    return wrapper


def get_services(ctx: click.Context):
    root = ctx.find_root()
    if "SERVICES" not in root.obj:
        root.obj["SERVICES"] = build_services(root.obj["CONFIG"])
    return root.obj["SERVICES"]


def echo_info(info) -> None:
    click.echo(f"Path:   {info.local_path}")
    click.echo(f"Branch: {info.branch}")
    click.echo(f"Commit: {info.commit_hash or 'unknown'}")


@click.command("ensure")
@click.argument("url")
@click.option("--branch", "-b", default=None, help="Branch to check out.")
@click.pass_context
@exit_on_error
def ensure(ctx, url: str, branch: str):
    """Make sure a repository is cached and up to date, cloning it if needed.

    Example:

      repocache ensure https://github.com/acme/widgets --branch main
    """
    info = get_services(ctx).manager.ensure_repository(url, branch)
    echo_info(info)


@click.command("reclone")
@click.argument("url")
@click.option("--branch", "-b", default=None, help="Branch to check out.")
@click.pass_context
@exit_on_error
def reclone(ctx, url: str, branch: str):
    """Delete a cached repository and clone it again."""
    info = get_services(ctx).manager.clone_repository(url, branch, force=True)
    echo_info(info)


@click.command("update")
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
@exit_on_error
def update(ctx, path: Path):
    """Fetch and pull a cached repository, even if it was updated recently."""
    result = get_services(ctx).manager.update_repository(path, force=True)
    if result.updated:
        click.echo(
            f"Updated {result.previous_hash[:8]} -> {result.current_hash[:8]} "
            f"({result.changes} files changed)"
        )
    else:
        click.echo(f"Already up to date at {result.current_hash[:8]}")


@click.command("stats")
@click.argument(
    "path", required=False, type=click.Path(file_okay=False, path_type=Path)
)
@click.pass_context
@exit_on_error
def stats(ctx, path: Path):
    """Show statistics of the whole cache, or of one cached repository."""
    manager = get_services(ctx).manager
    if path is not None:
        s = manager.get_single_repository_stats(path)
        click.echo(f"Files:        {s.file_count}")
        click.echo(f"Code files:   {s.code_file_count}")
        click.echo(f"Total size:   {s.total_size_mb} MB")
        click.echo(f"Largest file: {s.largest_file_size_mb} MB")
        return

    s = manager.get_repository_stats()
    click.echo(f"Storage:       {manager.storage_root}")
    click.echo(f"Repositories:  {s.total_repositories}")
    click.echo(f"Disk usage:    {humanfriendly.format_size(s.disk_usage)}")
    if s.oldest_access is not None:
        click.echo(f"Oldest access: {s.oldest_access.isoformat()}")
        click.echo(f"Newest access: {s.newest_access.isoformat()}")


def parse_size(ctx, param, value):
    if value is None:
        return None
    try:
        return humanfriendly.parse_size(value)
    except humanfriendly.InvalidSize as e:
        raise click.BadParameter(str(e))


@click.command("evict")
@click.option(
    "--retention-days",
    type=float,
    default=None,
    help="Delete repositories not accessed for this many days.",
)
@click.option(
    "--max-storage",
    callback=parse_size,
    default=None,
    help="Cap on the total cache size, e.g. 5GB.",
)
@click.pass_context
@exit_on_error
def evict(ctx, retention_days: float, max_storage: int):
    """Delete old repositories, then the oldest ones until the cache fits."""
    services = get_services(ctx)
    cleanup = ctx.find_root().obj["CONFIG"].cleanup
    if retention_days is None:
        retention_days = cleanup.retention_days
    if max_storage is None:
        max_storage = cleanup.max_storage_bytes

    report = services.manager.cleanup_repositories(retention_days, max_storage)
    for path in report.deleted:
        logger.debug(f"Deleted {path}")
    for path in report.skipped:
        click.echo(f"Skipped (in use): {path}")
    for path in report.failed:
        click.echo(f"Failed: {path}")
    click.echo(
        f"Deleted {len(report.deleted)} repositories, "
        f"freed {humanfriendly.format_size(report.freed_bytes)}, "
        f"remaining {humanfriendly.format_size(report.remaining_bytes)}"
    )
