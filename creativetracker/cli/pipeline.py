"""
Pipeline CLI Commands

Batch runs of one analyzer family across every client brand. Meant to be
invoked by a scheduler; prints the run statistics as JSON.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import click

from ..core.config import Config, load_engine_config
from ..core.database import get_supabase_client
from ..services.creative_intelligence.pipeline import CreativeIntelligencePipeline


logger = logging.getLogger(__name__)

ANALYZERS = ("lifecycle", "velocity", "convergence", "gap")

DATE_OPTION = click.option(
    '--date', 'analysis_date',
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help='Analysis anchor date (YYYY-MM-DD, default: today UTC)',
)
CONFIG_OPTION = click.option(
    '--config', 'config_path',
    type=click.Path(dir_okay=False),
    default=None,
    help=f'Engine thresholds YAML (default: {Config.ENGINE_CONFIG_PATH})',
)


def build_pipeline(config_path: Optional[str] = None) -> CreativeIntelligencePipeline:
    """Validate settings and wire the Supabase client and thresholds into a pipeline."""
    try:
        Config.validate()
        engine_config = load_engine_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    return CreativeIntelligencePipeline(get_supabase_client(), engine_config)


@click.group(name="pipeline")
def pipeline_group():
    """Run an analyzer across every brand"""
    pass


@pipeline_group.command(name="run")
@click.argument('analyzer', type=click.Choice(ANALYZERS))
@DATE_OPTION
@CONFIG_OPTION
def run_pipeline(analyzer: str, analysis_date: Optional[datetime], config_path: Optional[str]):
    """
    Run one analyzer pipeline over all brands.

    Examples:
        creativetracker pipeline run lifecycle
        creativetracker pipeline run gap --date 2026-01-31
    """
    pipeline = build_pipeline(config_path)
    anchor = analysis_date.date() if analysis_date else None

    runners = {
        "lifecycle": pipeline.run_lifecycle_pipeline,
        "velocity": pipeline.run_velocity_pipeline,
        "convergence": pipeline.run_convergence_pipeline,
        "gap": pipeline.run_gap_analysis_pipeline,
    }

    logger.info(f"Running {analyzer} pipeline")
    stats = asyncio.run(runners[analyzer](analysis_date=anchor))
    click.echo(stats.model_dump_json(indent=2))
