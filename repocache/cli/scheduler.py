"""CLI commands for the cleanup scheduler"""

import time

import click
import humanfriendly

from .cache import exit_on_error, get_services

IDLE_SLEEP_SECONDS = 1.0


def wait_forever() -> None:
    while True:
        time.sleep(IDLE_SLEEP_SECONDS)


@click.group(name="scheduler")
@click.pass_context
def scheduler(ctx):
    """Inspect, trigger or serve the periodic cleanup."""
    ctx.ensure_object(dict)


@scheduler.command("status")
@click.pass_context
@exit_on_error
def status(ctx):
    """Show whether cleanup is enabled, scheduled or running.

    The scheduler state is per process: a plain ``status`` call reports the
    configuration and whether a cleanup pass holds the cache, not the state
    of a ``scheduler serve`` process running elsewhere.
    """
    s = get_services(ctx).scheduler.status()
    click.echo(f"Enabled:   {s.enabled}")
    click.echo(f"Scheduled: {s.scheduled}")
    click.echo(f"Running:   {s.running}")
    if s.next_run is not None:
        click.echo(f"Next run:  {s.next_run.isoformat()}")


@scheduler.command("run")
@click.pass_context
@exit_on_error
def run(ctx):
    """Run one cleanup pass now."""
    report = get_services(ctx).scheduler.trigger_manually()
    click.echo(
        f"Deleted {len(report.deleted)} repositories, "
        f"freed {humanfriendly.format_size(report.freed_bytes)}"
    )


@scheduler.command("serve")
@click.pass_context
@exit_on_error
def serve(ctx):
    """Run the periodic cleanup in the foreground until interrupted."""
    cleanup = get_services(ctx).scheduler
    if not cleanup.config.enabled:
        click.echo("Cleanup is disabled in the configuration", err=True)
        ctx.exit(1)

    cleanup.start()
    next_run = cleanup.status().next_run
    click.echo(
        f"Cleanup scheduled every {cleanup.config.interval_hours} hours, "
        f"next run: {next_run.isoformat() if next_run else 'unknown'}"
    )
    try:
        wait_forever()
    except KeyboardInterrupt:
        click.echo("Stopping cleanup scheduler")
    finally:
        cleanup.stop()
