#!/usr/bin/env python3
"""
Main CLI Entry Point for bookmatch

Provides the command-line interface for running and inspecting the matcher.
"""

import logging
import os

import click

from ..core.config import get_config
from ..core.json_utils import format_json


@click.group()
@click.option(
    "--config-env",
    type=click.Choice(["development", "test", "production"]),
    help="Override environment configuration",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_env: str | None, verbose: bool, debug: bool) -> None:
    """
    bookmatch - Bank Transaction to Document Reconciliation

    Matches bank transactions against invoices and receipts and classifies
    whatever stays unmatched.
    """
    ctx.ensure_object(dict)

    if config_env:
        os.environ["BOOKMATCH_ENV"] = config_env

    if debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("bookmatch").setLevel(logging.DEBUG)

    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["config"] = get_config()

    if verbose:
        click.echo(f"Environment: {ctx.obj['config'].environment.value}")
        click.echo(f"Data directory: {ctx.obj['config'].data_dir}")

    if debug:
        click.echo("Debug logging enabled")


@main.command()
def version() -> None:
    """Show version information."""
    from bookmatch import __author__, __version__

    click.echo(f"bookmatch v{__version__}")
    click.echo(f"Author: {__author__}")


@main.command()
@click.option("--matching", "show_matching", is_flag=True, help="Also print all matching tunables")
@click.pass_context
def config(ctx: click.Context, show_matching: bool) -> None:
    """Show current configuration."""
    config_obj = ctx.obj["config"]
    matching = config_obj.matching

    click.echo("Current Configuration:")
    click.echo(f"  Environment: {config_obj.environment.value}")
    click.echo(f"  Data Directory: {config_obj.data_dir}")
    click.echo(f"  Output Directory: {config_obj.output_dir}")
    click.echo(f"  Debug Mode: {config_obj.debug}")
    click.echo(f"  Log Level: {config_obj.log_level}")
    click.echo(f"  Amount Tolerance: {matching.amount_tolerance_cents} cents / {matching.amount_tolerance_bps} bps")
    click.echo(f"  Date Window: {matching.date_window_days} days (+{matching.grace_days} grace)")

    if show_matching:
        click.echo(format_json(config_obj.to_dict()["matching"]))


from .run import run  # noqa: E402

main.add_command(run)


if __name__ == "__main__":
    main()
