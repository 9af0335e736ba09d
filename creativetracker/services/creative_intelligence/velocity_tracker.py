"""VelocityTracker: Prevalence-over-time differencing for creative attributes.

Compares signal-weighted prevalence in the current window (last 30 days)
against the prior window (30-60 days back) to rank accelerating and
declining attribute values, and compares the two competitor tracks to find
where velocity testers and consolidators diverge.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Optional, Union

from .helpers import days_before, execute_query, fetch_tagged_ads, round2, round4, safe_divide, utc_today
from .models import (
    ElementVelocity,
    EngineConfig,
    TagProfile,
    TaggedAd,
    TrackDivergence,
    TrackFilter,
    VelocityAnalysis,
    VelocityBreakdownEntry,
    VelocityDirection,
)
from .prevalence import FLOAT_TOLERANCE, ad_weight, calculate_tag_prevalence, filter_by_track

logger = logging.getLogger(__name__)


def _value_union(current: TagProfile, previous: TagProfile):
    """Yield (dimension, value) for every pair in either profile, current first."""
    seen = set()
    for profile in (current, previous):
        for dimension, values in profile.items():
            for value in values:
                if (dimension, value) not in seen:
                    seen.add((dimension, value))
                    yield dimension, value


class VelocityTracker:
    """Ranks attribute values by how fast competitors are adopting them.

    Thresholds (EngineConfig.velocity):
    - accelerating_threshold: +0.3 (30% growth)
    - declining_threshold: -0.3
    - divergence_threshold: 0.15 (track A vs track B prevalence)
    """

    def __init__(self, supabase_client, config: Optional[EngineConfig] = None):
        self.supabase = supabase_client
        self.config = config or EngineConfig()
        self.thresholds = self.config.velocity

    # =========================================================================
    # Pure Computation
    # =========================================================================

    def calculate_weighted_prevalence(
        self, ads: List[TaggedAd], track_filter: Union[TrackFilter, str] = TrackFilter.ALL
    ) -> TagProfile:
        """Signal-weighted prevalence for one track (or all ads)."""
        return calculate_tag_prevalence(ads, track_filter=track_filter, weighted=True)

    def classify_direction(
        self, velocity: float, current: float = 0.0, previous: float = 0.0
    ) -> VelocityDirection:
        """Accelerating above +threshold; declining below -threshold or when
        a previously visible value has dropped under the noise floor."""
        floor = self.config.prevalence.noise_floor
        if velocity > self.thresholds.accelerating_threshold:
            return VelocityDirection.ACCELERATING
        if velocity < self.thresholds.declining_threshold:
            return VelocityDirection.DECLINING
        if previous > floor and current < floor:
            return VelocityDirection.DECLINING
        return VelocityDirection.STABLE

    def calculate_velocity(self, current: TagProfile, previous: TagProfile) -> List[ElementVelocity]:
        """Velocity for every (dimension, value) in either profile.

        velocity = (current - previous) / previous when previous > 0;
        a value appearing from nothing (previous == 0, current > 0) is 1.0.

        Args:
            current: Current-window prevalence profile.
            previous: Prior-window prevalence profile.

        Returns:
            ElementVelocity list (ad_count left at 0 for the caller to fill).
        """
        velocities: List[ElementVelocity] = []

        for dimension, value in _value_union(current, previous):
            current_prev = current.get(dimension, {}).get(value, 0.0)
            previous_prev = previous.get(dimension, {}).get(value, 0.0)

            if previous_prev > 0:
                velocity = safe_divide(current_prev - previous_prev, previous_prev)
            elif current_prev > 0:
                velocity = 1.0
            else:
                velocity = 0.0

            velocities.append(ElementVelocity(
                dimension=dimension,
                value=value,
                current_prevalence=round4(current_prev),
                previous_prevalence=round4(previous_prev),
                velocity_percent=round2(velocity),
                direction=self.classify_direction(velocity, current_prev, previous_prev),
            ))

        return velocities

    def detect_track_divergences(
        self,
        consolidator_profile: TagProfile,
        velocity_tester_profile: TagProfile,
        threshold: Optional[float] = None,
    ) -> List[TrackDivergence]:
        """Values whose prevalence differs between the two tracks by >= threshold.

        divergence_percent is signed: positive when velocity testers lead.

        Returns:
            Divergences sorted by absolute divergence descending, then
            dimension and value.
        """
        if threshold is None:
            threshold = self.thresholds.divergence_threshold

        divergences: List[TrackDivergence] = []
        for dimension, value in _value_union(consolidator_profile, velocity_tester_profile):
            cons = consolidator_profile.get(dimension, {}).get(value, 0.0)
            vt = velocity_tester_profile.get(dimension, {}).get(value, 0.0)
            diff = vt - cons

            if abs(diff) < threshold - FLOAT_TOLERANCE:
                continue

            divergences.append(TrackDivergence(
                dimension=dimension,
                value=value,
                consolidator_prevalence=round4(cons),
                velocity_tester_prevalence=round4(vt),
                divergence_percent=round2(diff),
                direction="velocity_testers_leading" if diff > 0 else "consolidators_leading",
            ))

        divergences.sort(key=lambda d: (-abs(d.divergence_percent), d.dimension, d.value))
        return divergences

    # =========================================================================
    # Main Analysis
    # =========================================================================

    async def analyze_creative_velocity(
        self, brand_id: str, analysis_date: Optional[date] = None
    ) -> Optional[VelocityAnalysis]:
        """Run velocity analysis for one brand and save prevalence snapshots.

        Args:
            brand_id: Client brand id.
            analysis_date: Anchor date (default: today UTC).

        Returns:
            VelocityAnalysis, or None when the brand, its competitors, or
            their tagged ads are missing.
        """
        analysis_date = analysis_date or utc_today()

        competitive_set = await fetch_tagged_ads(
            self.supabase, brand_id, self.thresholds.lookback_days, analysis_date
        )
        if not competitive_set or not competitive_set.tagged_ads:
            logger.info(f"Velocity: not enough data for brand {brand_id}")
            return None

        ads = competitive_set.tagged_ads
        current_start = days_before(analysis_date, self.thresholds.window_days)
        previous_start = days_before(analysis_date, self.thresholds.window_days * 2)

        current_ads = [ad for ad in ads if ad.launch_date >= current_start]
        previous_ads = [ad for ad in ads if previous_start <= ad.launch_date < current_start]

        current_profiles = {
            track: self.calculate_weighted_prevalence(current_ads, track) for track in TrackFilter
        }
        previous_all = self.calculate_weighted_prevalence(previous_ads, TrackFilter.ALL)

        velocities = self.calculate_velocity(current_profiles[TrackFilter.ALL], previous_all)
        for v in velocities:
            v.ad_count = sum(1 for ad in current_ads if ad.tag_value(v.dimension) == v.value)

        floor = self.config.prevalence.noise_floor
        ranked = sorted(
            (v for v in velocities if v.current_prevalence > floor or v.previous_prevalence > floor),
            key=lambda v: (-abs(v.velocity_percent), v.dimension, v.value),
        )
        top_n = self.thresholds.top_n
        top_accelerating = [v for v in ranked if v.direction == VelocityDirection.ACCELERATING][:top_n]
        top_declining = [v for v in ranked if v.direction == VelocityDirection.DECLINING][:top_n]

        breakdown: Dict[str, Dict[str, VelocityBreakdownEntry]] = {}
        for v in velocities:
            breakdown.setdefault(v.dimension, {})[v.value] = VelocityBreakdownEntry(
                current=v.current_prevalence,
                previous=v.previous_prevalence,
                velocity=v.velocity_percent,
                direction=v.direction,
            )

        divergences = self.detect_track_divergences(
            current_profiles[TrackFilter.CONSOLIDATOR],
            current_profiles[TrackFilter.VELOCITY_TESTER],
        )

        snapshots_saved = await self._save_snapshots(
            brand_id, analysis_date, current_start, current_ads, current_profiles
        )

        logger.info(
            f"Velocity analysis for brand {brand_id}: {len(current_ads)} current / "
            f"{len(previous_ads)} previous ads, {len(top_accelerating)} accelerating, "
            f"{len(top_declining)} declining, {len(divergences)} divergences"
        )

        return VelocityAnalysis(
            competitive_set=f"{competitive_set.brand_name} Competitors",
            brand_id=brand_id,
            analysis_date=analysis_date,
            period=f"{self.thresholds.lookback_days}d",
            top_accelerating=top_accelerating,
            top_declining=top_declining,
            full_dimension_breakdown=breakdown,
            track_divergences=divergences,
            snapshots_saved=snapshots_saved,
        )

    async def _save_snapshots(
        self,
        brand_id: str,
        analysis_date: date,
        period_start: date,
        current_ads: List[TaggedAd],
        profiles: Dict[TrackFilter, TagProfile],
    ) -> int:
        """Upsert one velocity_snapshots row per (track, dimension, value) with positive prevalence."""
        rows = []
        for track, profile in profiles.items():
            track_ads = filter_by_track(current_ads, track)
            total_signal = sum(ad_weight(ad, True) for ad in track_ads)

            for dimension, values in profile.items():
                for value, prevalence in values.items():
                    if prevalence <= 0:
                        continue
                    rows.append({
                        "brand_id": brand_id,
                        "snapshot_date": analysis_date.isoformat(),
                        "period_start": period_start.isoformat(),
                        "period_end": analysis_date.isoformat(),
                        "track_filter": track.value,
                        "dimension": dimension,
                        "value": value,
                        "weighted_prevalence": round4(prevalence),
                        "ad_count": sum(1 for ad in track_ads if ad.tag_value(dimension) == value),
                        "total_signal_strength": round2(total_signal),
                    })

        if rows:
            execute_query(
                self.supabase.table("velocity_snapshots").upsert(
                    rows, on_conflict="brand_id,snapshot_date,track_filter,dimension,value"
                ),
                "velocity_snapshots",
                "upsert",
            )
        return len(rows)
