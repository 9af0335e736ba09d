"""
Main CLI entry point for CreativeTracker
"""

import logging

import click

from .. import __version__
from ..core.config import Config
from ..core.observability import setup_logfire
from .analyze import analyze_group
from .pipeline import pipeline_group


@click.group()
@click.version_option(version=__version__)
def cli():
    """
    CreativeTracker - Competitor creative intelligence

    Run the lifecycle, velocity, convergence and gap analyzers over every
    client brand, or over a single brand.
    """
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    setup_logfire()


# Register command groups
cli.add_command(pipeline_group)
cli.add_command(analyze_group)


if __name__ == '__main__':
    cli()
