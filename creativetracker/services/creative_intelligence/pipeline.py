"""CreativeIntelligencePipeline: Runs one analyzer family across every brand.

Each run is a fold over brands: every brand yields a BrandOutcome (result,
None for not-enough-data, or the error it raised) which is merged into the
run's statistics. A failing brand is logged and counted, never fatal to the
batch. Brands are processed sequentially.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import logfire

from .convergence_detector import ConvergenceDetector
from .gap_analyzer import GapAnalyzer
from .helpers import list_brand_ids
from .lifecycle_analyzer import LifecycleAnalyzer
from .models import (
    ConvergenceAnalysis,
    ConvergencePipelineStats,
    EngineConfig,
    GapAnalysis,
    GapPipelineStats,
    LifecycleAnalysis,
    LifecyclePipelineStats,
    PipelineStats,
    VelocityAnalysis,
    VelocityPipelineStats,
)
from .velocity_tracker import VelocityTracker

logger = logging.getLogger(__name__)

StatsT = TypeVar("StatsT", bound=PipelineStats)


@dataclass
class BrandOutcome:
    """Result of analyzing one brand: a result, nothing (not enough data), or an error."""

    brand_id: str
    result: Optional[Any] = None
    error: Optional[Exception] = None


class CreativeIntelligencePipeline:
    """Batch runner for the lifecycle, velocity, convergence and gap analyzers."""

    def __init__(self, supabase_client, config: Optional[EngineConfig] = None):
        """Initialize with Supabase client.

        Args:
            supabase_client: Supabase client instance.
            config: Engine thresholds shared by every analyzer.
        """
        self.supabase = supabase_client
        self.config = config or EngineConfig()
        self.lifecycle = LifecycleAnalyzer(supabase_client, self.config)
        self.velocity = VelocityTracker(supabase_client, self.config)
        self.convergence = ConvergenceDetector(supabase_client, self.config)
        self.gap = GapAnalyzer(supabase_client, self.config)

    # =========================================================================
    # Fold
    # =========================================================================

    async def _analyze_brand(
        self,
        pipeline_name: str,
        brand_id: str,
        analyze: Callable[[str], Awaitable[Any]],
    ) -> BrandOutcome:
        with logfire.span(f"{pipeline_name} brand", brand_id=brand_id):
            try:
                return BrandOutcome(brand_id=brand_id, result=await analyze(brand_id))
            except Exception as e:
                logger.exception(f"[{pipeline_name.upper()}] Error analyzing brand {brand_id}: {e}")
                return BrandOutcome(brand_id=brand_id, error=e)

    async def _run(
        self,
        pipeline_name: str,
        stats: StatsT,
        analyze: Callable[[str], Awaitable[Any]],
        merge: Callable[[StatsT, Any], None],
        brand_ids: Optional[List[str]] = None,
    ) -> StatsT:
        start = time.perf_counter()

        with logfire.span(f"{pipeline_name}_pipeline"):
            if brand_ids is None:
                brand_ids = await list_brand_ids(self.supabase)

            logger.info(f"[{pipeline_name.upper()}] Starting run over {len(brand_ids)} brands")

            for brand_id in brand_ids:
                outcome = await self._analyze_brand(pipeline_name, brand_id, analyze)
                if outcome.error is not None:
                    stats.failed += 1
                elif outcome.result is not None:
                    stats.brands_analyzed += 1
                    merge(stats, outcome.result)

        stats.duration_ms = max(0, int((time.perf_counter() - start) * 1000))
        logger.info(f"[{pipeline_name.upper()}] Finished: {stats.model_dump()}")
        return stats

    # =========================================================================
    # Pipelines
    # =========================================================================

    async def run_lifecycle_pipeline(
        self, analysis_date: Optional[date] = None, brand_ids: Optional[List[str]] = None
    ) -> LifecyclePipelineStats:
        """Breakout / cash-cow detection for every brand."""

        def merge(stats: LifecyclePipelineStats, result: LifecycleAnalysis) -> None:
            stats.breakout_events_found += len(result.breakout_events)
            stats.breakout_ads_flagged += result.newly_flagged_breakout_ads
            stats.cash_cows_detected += result.total_cash_cows
            stats.snapshots_saved += 1

        return await self._run(
            "lifecycle",
            LifecyclePipelineStats(),
            lambda brand_id: self.lifecycle.analyze_ad_lifecycle(brand_id, analysis_date),
            merge,
            brand_ids,
        )

    async def run_velocity_pipeline(
        self, analysis_date: Optional[date] = None, brand_ids: Optional[List[str]] = None
    ) -> VelocityPipelineStats:
        def merge(stats: VelocityPipelineStats, result: VelocityAnalysis) -> None:
            stats.snapshots_saved += result.snapshots_saved

        return await self._run(
            "velocity",
            VelocityPipelineStats(),
            lambda brand_id: self.velocity.analyze_creative_velocity(brand_id, analysis_date),
            merge,
            brand_ids,
        )

    async def run_convergence_pipeline(
        self, analysis_date: Optional[date] = None, brand_ids: Optional[List[str]] = None
    ) -> ConvergencePipelineStats:
        def merge(stats: ConvergencePipelineStats, result: ConvergenceAnalysis) -> None:
            stats.snapshots_saved += result.snapshots_saved
            stats.alerts_generated += len(result.market_shift_alerts)

        return await self._run(
            "convergence",
            ConvergencePipelineStats(),
            lambda brand_id: self.convergence.analyze_creative_convergence(brand_id, analysis_date),
            merge,
            brand_ids,
        )

    async def run_gap_analysis_pipeline(
        self, analysis_date: Optional[date] = None, brand_ids: Optional[List[str]] = None
    ) -> GapPipelineStats:
        """Gap analysis (including client ad sync) for every brand."""

        def merge(stats: GapPipelineStats, result: GapAnalysis) -> None:
            stats.snapshots_saved += 1
            if result.client_sync:
                stats.client_ads_synced += result.client_sync.synced

        return await self._run(
            "gap_analysis",
            GapPipelineStats(),
            lambda brand_id: self.gap.analyze_creative_gap(brand_id, analysis_date),
            merge,
            brand_ids,
        )
