"""repocache CLI"""

import sys
from pathlib import Path

import click

from repocache import __version__
from repocache.cli.cache import ensure, evict, reclone, stats, update
from repocache.cli.scheduler import scheduler
from repocache.config import load_config
from repocache.exceptions import ConfigError

from .debug import add_debug_option
from .utils.logging import configure_logging


@click.group()
@click.version_option(__version__, prog_name="repocache")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file. Defaults to $REPOCACHE_CONFIG or the user config file.",
)
@click.pass_context
def cli(ctx, config_path: Path):
    """
    Local cache of git repositories (repocache).
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"CONFIG_ERROR: {e}", err=True)
        sys.exit(1)
    ctx.obj["CONFIG"] = config
    configure_logging(ctx.obj.get("DEBUG", False), config.logging)


cli.add_command(add_debug_option(ensure))
cli.add_command(add_debug_option(reclone))
cli.add_command(add_debug_option(update))
cli.add_command(add_debug_option(stats))
cli.add_command(add_debug_option(evict))
cli.add_command(add_debug_option(scheduler))

add_debug_option(cli)

if __name__ == "__main__":
    cli(obj={})
