"""
Single-Brand Analysis CLI Commands

Run one analyzer for one brand and print its full result as JSON.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import click

from .pipeline import ANALYZERS, CONFIG_OPTION, DATE_OPTION, build_pipeline


logger = logging.getLogger(__name__)


@click.group(name="analyze")
def analyze_group():
    """Analyze a single brand"""
    pass


@analyze_group.command(name="brand")
@click.argument('analyzer', type=click.Choice(ANALYZERS))
@click.argument('brand_id')
@DATE_OPTION
@CONFIG_OPTION
@click.option('--skip-client-sync', is_flag=True, help='Gap only: do not sync client ads before analysis')
def analyze_brand(
    analyzer: str,
    brand_id: str,
    analysis_date: Optional[datetime],
    config_path: Optional[str],
    skip_client_sync: bool,
):
    """
    Run one analyzer for BRAND_ID.

    Prints "null" when the brand does not have enough data.

    Examples:
        creativetracker analyze brand velocity 3f1c...
        creativetracker analyze brand gap 3f1c... --skip-client-sync
    """
    pipeline = build_pipeline(config_path)
    anchor = analysis_date.date() if analysis_date else None

    if analyzer == "lifecycle":
        coro = pipeline.lifecycle.analyze_ad_lifecycle(brand_id, anchor)
    elif analyzer == "velocity":
        coro = pipeline.velocity.analyze_creative_velocity(brand_id, anchor)
    elif analyzer == "convergence":
        coro = pipeline.convergence.analyze_creative_convergence(brand_id, anchor)
    else:
        coro = pipeline.gap.analyze_creative_gap(brand_id, anchor, sync_client_ads=not skip_client_sync)

    result = asyncio.run(coro)

    if result is None:
        logger.info(f"Not enough data to run {analyzer} analysis for brand {brand_id}")
        click.echo("null")
        return

    click.echo(result.model_dump_json(indent=2))
