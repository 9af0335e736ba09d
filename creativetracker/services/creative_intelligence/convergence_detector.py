"""ConvergenceDetector: Cross-competitor adoption analysis.

For each taxonomy value, measures what fraction of a brand's competitors
increased their usage of it between the prior window (30-60 days back) and
the current window (last 30 days). Adoption spreading across both
competitor tracks is a stronger market signal than adoption within one.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from .helpers import (
    days_before,
    execute_query,
    fetch_rows,
    fetch_tagged_ads,
    round2,
    round4,
    safe_divide,
    utc_today,
)
from .models import (
    CompetitorAdoption,
    CompetitorInfo,
    ConvergenceAnalysis,
    ConvergenceClassification,
    ConvergenceElement,
    EngineConfig,
    TaggedAd,
)
from .taxonomy import ALL_DIMENSIONS, TRACK_CONSOLIDATOR, TRACK_VELOCITY_TESTER

logger = logging.getLogger(__name__)

# Classifications that raise a market-shift alert the first time they appear
ALERT_CLASSIFICATIONS = (
    ConvergenceClassification.STRONG_CONVERGENCE,
    ConvergenceClassification.MODERATE_CONVERGENCE,
)


class ConvergenceDetector:
    """Detects creative attributes that several competitors adopt at once.

    Classification (EngineConfig.convergence), inclusive lower bounds:
    - ratio >= 0.6 and cross-track: STRONG_CONVERGENCE
    - ratio >= 0.6: MODERATE_CONVERGENCE
    - ratio >= 0.4: EMERGING_PATTERN
    - otherwise: NO_CONVERGENCE
    """

    def __init__(self, supabase_client, config: Optional[EngineConfig] = None):
        """Initialize with Supabase client.

        Args:
            supabase_client: Supabase client instance.
            config: Engine thresholds (defaults when omitted).
        """
        self.supabase = supabase_client
        self.config = config or EngineConfig()
        self.thresholds = self.config.convergence

    # =========================================================================
    # Scoring
    # =========================================================================

    def calculate_confidence(self, competitor_count: int) -> float:
        """min(1, sqrt(n / saturation)): 3 -> ~0.55, 5 -> ~0.71, 10+ -> 1.0."""
        if competitor_count <= 0:
            return 0.0
        return round4(min(1.0, math.sqrt(competitor_count / self.thresholds.confidence_saturation)))

    def classify_convergence(self, ratio: float, cross_track: bool) -> ConvergenceClassification:
        if ratio >= self.thresholds.strong_ratio and cross_track:
            return ConvergenceClassification.STRONG_CONVERGENCE
        if ratio >= self.thresholds.strong_ratio:
            return ConvergenceClassification.MODERATE_CONVERGENCE
        if ratio >= self.thresholds.emerging_ratio:
            return ConvergenceClassification.EMERGING_PATTERN
        return ConvergenceClassification.NO_CONVERGENCE

    def calculate_convergence(
        self,
        ads: List[TaggedAd],
        competitors: List[CompetitorInfo],
        dimension: str,
        value: str,
        current_window_start: date,
        prior_window_start: date,
    ) -> ConvergenceElement:
        """Measure how many competitors increased usage of one value.

        A competitor with no ads in the current window is left out of the
        denominator entirely; there is no current signal to compare.

        Args:
            ads: Competitor ads (tagged).
            competitors: The competitive set.
            dimension: Taxonomy dimension.
            value: Value within the dimension.
            current_window_start: First day of the current window.
            prior_window_start: First day of the prior window.

        Returns:
            ConvergenceElement (is_new_alert always False here).
        """
        adoptions: List[CompetitorAdoption] = []
        increasing_tracks: Set[str] = set()
        track_a = 0
        track_b = 0
        increasing_count = 0

        for competitor in competitors:
            competitor_ads = [ad for ad in ads if ad.competitor_id == competitor.id]
            current_ads = [ad for ad in competitor_ads if ad.launch_date >= current_window_start]
            prior_ads = [
                ad for ad in competitor_ads
                if prior_window_start <= ad.launch_date < current_window_start
            ]

            if not current_ads:
                continue

            current_with_value = [ad for ad in current_ads if ad.tag_value(dimension) == value]
            prior_with_value = [ad for ad in prior_ads if ad.tag_value(dimension) == value]

            current_prev = safe_divide(len(current_with_value), len(current_ads))
            prior_prev = safe_divide(len(prior_with_value), len(prior_ads))
            increasing = current_prev > prior_prev

            if prior_prev > 0:
                velocity = safe_divide(current_prev - prior_prev, prior_prev)
            elif current_prev > 0:
                velocity = 1.0
            else:
                velocity = 0.0

            if increasing:
                increasing_count += 1
                if competitor.track:
                    increasing_tracks.add(competitor.track)
                if competitor.track == TRACK_CONSOLIDATOR:
                    track_a += 1
                elif competitor.track == TRACK_VELOCITY_TESTER:
                    track_b += 1

            adoptions.append(CompetitorAdoption(
                competitor_id=competitor.id,
                competitor_name=competitor.name or "Unknown",
                track=competitor.track or "unclassified",
                current_prevalence=round4(current_prev),
                previous_prevalence=round4(prior_prev),
                velocity_percent=round2(velocity),
                increasing=increasing,
                example_ad_ids=[ad.id for ad in current_with_value[:self.thresholds.max_example_ads]],
            ))

        eligible = len(adoptions)
        if eligible == 0:
            return ConvergenceElement(
                dimension=dimension, value=value, convergence_ratio=0.0, adjusted_score=0.0,
            )

        ratio = increasing_count / eligible
        cross_track = len(increasing_tracks) >= 2
        multiplier = self.thresholds.cross_track_multiplier if cross_track else 1.0
        adjusted = min(1.0, ratio * multiplier)

        return ConvergenceElement(
            dimension=dimension,
            value=value,
            convergence_ratio=round4(ratio),
            adjusted_score=round4(adjusted),
            cross_track=cross_track,
            classification=self.classify_convergence(ratio, cross_track),
            confidence=self.calculate_confidence(eligible),
            competitors_increasing=increasing_count,
            total_competitors=eligible,
            track_a_increasing=track_a,
            track_b_increasing=track_b,
            competitors=adoptions,
        )

    # =========================================================================
    # Main Analysis
    # =========================================================================

    async def analyze_creative_convergence(
        self, brand_id: str, analysis_date: Optional[date] = None
    ) -> Optional[ConvergenceAnalysis]:
        """Run convergence analysis across the full taxonomy for one brand.

        A strong convergence not recorded as strong in any earlier snapshot,
        or a moderate one with no earlier strong or moderate record, becomes a
        market-shift alert (is_new_alert=True). Escalation from moderate to
        strong therefore alerts.

        Args:
            brand_id: Client brand id.
            analysis_date: Anchor date (default: today UTC).

        Returns:
            ConvergenceAnalysis, or None when the brand, its competitors, or
            their tagged ads are missing.
        """
        analysis_date = analysis_date or utc_today()

        competitive_set = await fetch_tagged_ads(
            self.supabase, brand_id, self.thresholds.lookback_days, analysis_date
        )
        if not competitive_set or not competitive_set.tagged_ads:
            logger.info(f"Convergence: not enough data for brand {brand_id}")
            return None

        competitors = competitive_set.competitors
        current_start = days_before(analysis_date, self.thresholds.window_days)
        prior_start = days_before(analysis_date, self.thresholds.window_days * 2)

        elements: List[ConvergenceElement] = []
        for dimension, values in ALL_DIMENSIONS.items():
            for value in values:
                element = self.calculate_convergence(
                    competitive_set.tagged_ads, competitors, dimension, value,
                    current_start, prior_start,
                )
                if element.competitors_increasing > 0:
                    elements.append(element)

        known = await self._load_known_convergences(brand_id, analysis_date)
        alerts: List[ConvergenceElement] = []
        for element in elements:
            if element.classification not in ALERT_CLASSIFICATIONS:
                continue
            if not self._is_known(element, known):
                element.is_new_alert = True
                alerts.append(element)

        elements.sort(key=lambda e: (-e.adjusted_score, e.dimension, e.value))
        alerts.sort(key=lambda e: (-e.adjusted_score, e.dimension, e.value))

        snapshots_saved = await self._save_snapshots(brand_id, analysis_date, elements)

        def _bucket(classification: ConvergenceClassification) -> List[ConvergenceElement]:
            return [e for e in elements if e.classification == classification]

        analysis = ConvergenceAnalysis(
            competitive_set=f"{competitive_set.brand_name} Competitors",
            brand_id=brand_id,
            analysis_date=analysis_date,
            total_competitors=len(competitors),
            confidence=self.calculate_confidence(len(competitors)),
            strong_convergences=_bucket(ConvergenceClassification.STRONG_CONVERGENCE),
            moderate_convergences=_bucket(ConvergenceClassification.MODERATE_CONVERGENCE),
            emerging_patterns=_bucket(ConvergenceClassification.EMERGING_PATTERN),
            market_shift_alerts=alerts,
            snapshots_saved=snapshots_saved,
        )

        logger.info(
            f"Convergence analysis for brand {brand_id}: "
            f"{len(analysis.strong_convergences)} strong, "
            f"{len(analysis.moderate_convergences)} moderate, "
            f"{len(analysis.emerging_patterns)} emerging, {len(alerts)} new alerts"
        )
        return analysis

    async def _load_known_convergences(
        self, brand_id: str, analysis_date: date
    ) -> Dict[Tuple[str, str], Set[ConvergenceClassification]]:
        """Alert-level classifications recorded per (dimension, value) before analysis_date."""
        rows = fetch_rows(
            self.supabase.table("convergence_snapshots")
            .select("dimension, value, classification")
            .eq("brand_id", brand_id)
            .in_("classification", [c.value for c in ALERT_CLASSIFICATIONS])
            .lt("snapshot_date", analysis_date.isoformat()),
            "convergence_snapshots",
        )
        known: Dict[Tuple[str, str], Set[ConvergenceClassification]] = {}
        for row in rows:
            known.setdefault((row["dimension"], row["value"]), set()).add(
                ConvergenceClassification(row["classification"])
            )
        return known

    @staticmethod
    def _is_known(
        element: ConvergenceElement,
        known: Dict[Tuple[str, str], Set[ConvergenceClassification]],
    ) -> bool:
        """A strong convergence is known only if it was strong before; moderate if it was either."""
        recorded = known.get((element.dimension, element.value), set())
        if element.classification == ConvergenceClassification.STRONG_CONVERGENCE:
            return ConvergenceClassification.STRONG_CONVERGENCE in recorded
        return bool(recorded)

    async def _save_snapshots(
        self, brand_id: str, analysis_date: date, elements: List[ConvergenceElement]
    ) -> int:
        rows = [
            {
                "brand_id": brand_id,
                "snapshot_date": analysis_date.isoformat(),
                "dimension": e.dimension,
                "value": e.value,
                "convergence_ratio": e.convergence_ratio,
                "adjusted_score": e.adjusted_score,
                "classification": e.classification.value,
                "cross_track": e.cross_track,
                "confidence": e.confidence,
                "competitors_increasing": e.competitors_increasing,
                "total_competitors": e.total_competitors,
                "track_a_increasing": e.track_a_increasing,
                "track_b_increasing": e.track_b_increasing,
                "competitor_details": [c.model_dump(mode="json") for c in e.competitors if c.increasing],
                "is_new_alert": e.is_new_alert,
            }
            for e in elements
            if e.classification != ConvergenceClassification.NO_CONVERGENCE
        ]

        if rows:
            execute_query(
                self.supabase.table("convergence_snapshots").upsert(
                    rows, on_conflict="brand_id,snapshot_date,dimension,value"
                ),
                "convergence_snapshots",
                "upsert",
            )
        return len(rows)
