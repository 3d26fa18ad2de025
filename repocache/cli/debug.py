"""--debug flag shared by the repocache commands."""

import click

from .utils.logging import configure_logging


def _debug_callback(ctx: click.Context, param: click.Parameter, enabled: bool):
    state = ctx.find_root().ensure_object(dict)
    # Subcommands can switch debug output on, only the root can switch it off
    if enabled or ctx.parent is None:
        state["DEBUG"] = enabled
    else:
        state.setdefault("DEBUG", False)

    # Before the root group has loaded the config, it configures logging itself
    config = state.get("CONFIG")
    if config is not None:
        configure_logging(state["DEBUG"], config.logging)
    return state["DEBUG"]


def add_debug_option(cmd: click.Command) -> click.Command:
    """Attach --debug/--no-debug to a command or group, once."""
    if any(p.name == "debug" for p in cmd.params):
        return cmd
    cmd.params.insert(
        0,
        click.Option(
            ["--debug/--no-debug"],
            default=False,
            is_eager=True,
            expose_value=False,
            callback=_debug_callback,
            help="Show debug output.",
        ),
    )
    return cmd
