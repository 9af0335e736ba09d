"""LifecycleAnalyzer: Breakout and cash-cow detection from ad survival cohorts.

Groups a competitor's ads into Monday-aligned launch weeks, waits until each
cohort has matured, then compares the ads that survived against the ones
that were killed. Cohorts with low survival but at least one survivor
("breakouts") reveal which creative traits the competitor kept paying for.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from .helpers import (
    chunked,
    execute_query,
    fetch_competitors,
    fetch_lifecycle_ads,
    fetch_rows,
    get_cohort_end_date,
    get_cohort_week,
    parse_timestamp,
    round2,
    round4,
    safe_divide,
    utc_today,
)
from .models import (
    BreakoutEvent,
    CashCowTransition,
    Cohort,
    DifferentialDirection,
    EngineConfig,
    LifecycleAnalysis,
    TaggedAd,
    WinningPattern,
)
from .prevalence import calculate_tag_prevalence, find_differentiating_elements
from .taxonomy import clean_tag_row, format_trait

logger = logging.getLogger(__name__)

# Tag columns used to describe a cash cow
CASH_COW_TRAIT_COLUMNS = ("format_type", "hook_type_visual", "human_presence", "emotion_energy_level")


class LifecycleAnalyzer:
    """Detects breakout cohorts, winning patterns and cash-cow transitions.

    Thresholds (EngineConfig.lifecycle):
    - breakout_threshold_days: 14 (survivor age and cohort maturation)
    - breakout_survival_rate_threshold: 0.30
    - cash_cow_threshold_days: 60
    - min_cohort_size: 3
    """

    def __init__(self, supabase_client, config: Optional[EngineConfig] = None):
        """Initialize with Supabase client.

        Args:
            supabase_client: Supabase client instance.
            config: Engine thresholds (defaults when omitted).
        """
        self.supabase = supabase_client
        self.config = config or EngineConfig()
        self.thresholds = self.config.lifecycle

    # =========================================================================
    # Classification
    # =========================================================================

    def is_survivor(self, ad: TaggedAd) -> bool:
        return ad.is_active and ad.days_active >= self.thresholds.breakout_threshold_days

    def is_cash_cow(self, ad: TaggedAd) -> bool:
        return ad.is_active and ad.days_active >= self.thresholds.cash_cow_threshold_days

    def is_cohort_ready(self, cohort_end: date, analysis_date: date) -> bool:
        """A cohort is mature once its last launch day is breakout_threshold_days old."""
        return (analysis_date - cohort_end).days >= self.thresholds.breakout_threshold_days

    # =========================================================================
    # Cohorts
    # =========================================================================

    def build_cohorts(
        self, ads: List[TaggedAd], analysis_date: Optional[date] = None
    ) -> List[Cohort]:
        """Group ads into mature (competitor, launch week) cohorts.

        Cohorts smaller than min_cohort_size, or whose end date is not yet
        breakout_threshold_days in the past, are dropped. A cohort is a
        breakout when survival is below the threshold and at least one ad
        survived.

        Args:
            ads: Competitor ads (tagged or not).
            analysis_date: Anchor date for maturity (default: today UTC).

        Returns:
            Cohorts ordered by competitor id, then cohort start.
        """
        analysis_date = analysis_date or utc_today()
        groups: Dict[Tuple[str, date], List[TaggedAd]] = defaultdict(list)

        for ad in ads:
            if not ad.competitor_id:
                continue
            week = ad.cohort_week or get_cohort_week(ad.launch_date)
            groups[(ad.competitor_id, week)].append(ad)

        cohorts: List[Cohort] = []
        for (competitor_id, cohort_start), cohort_ads in sorted(groups.items()):
            if len(cohort_ads) < self.thresholds.min_cohort_size:
                continue

            cohort_end = get_cohort_end_date(cohort_start, self.thresholds.cohort_window_days)
            if not self.is_cohort_ready(cohort_end, analysis_date):
                continue

            survivors = [ad for ad in cohort_ads if self.is_survivor(ad)]
            killed = [ad for ad in cohort_ads if not self.is_survivor(ad)]
            survival_rate = safe_divide(len(survivors), len(cohort_ads))

            cohorts.append(Cohort(
                competitor_id=competitor_id,
                competitor_name=cohort_ads[0].competitor_name or "Unknown",
                cohort_start=cohort_start,
                cohort_end=cohort_end,
                ads=cohort_ads,
                survivors=survivors,
                killed=killed,
                survival_rate=survival_rate,
                is_breakout_cohort=(
                    survival_rate < self.thresholds.breakout_survival_rate_threshold
                    and len(survivors) > 0
                ),
            ))

        return cohorts

    def analyze_breakout_cohort(
        self,
        cohort: Cohort,
        brand_id: str,
        analysis_date: Optional[date] = None,
    ) -> Optional[BreakoutEvent]:
        """Compare survivors against killed ads in a breakout cohort.

        Only tagged ads feed the tag profiles; differentiating elements need
        tagged ads on both sides.

        Returns:
            BreakoutEvent, or None when the cohort is not a breakout.
        """
        if not cohort.is_breakout_cohort:
            return None

        tagged_survivors = [ad for ad in cohort.survivors if ad.is_tagged]
        tagged_killed = [ad for ad in cohort.killed if ad.is_tagged]

        survivor_profile = _round_profile(calculate_tag_prevalence(tagged_survivors))
        killed_profile = _round_profile(calculate_tag_prevalence(tagged_killed))

        differentiating = []
        if tagged_survivors and tagged_killed:
            differentiating = find_differentiating_elements(
                survivor_profile, killed_profile, self.config.prevalence
            )

        top_traits = [
            format_trait(e.dimension, e.value)
            for e in differentiating
            if e.direction == DifferentialDirection.SURVIVOR_HIGHER
        ][:self.thresholds.max_survivor_traits]

        event = BreakoutEvent(
            brand_id=brand_id,
            competitor_id=cohort.competitor_id,
            competitor_name=cohort.competitor_name,
            cohort_start=cohort.cohort_start,
            cohort_end=cohort.cohort_end,
            analysis_date=analysis_date or utc_today(),
            total_in_cohort=len(cohort.ads),
            survivors_count=len(cohort.survivors),
            killed_count=len(cohort.killed),
            survival_rate=round4(cohort.survival_rate),
            survivor_ad_ids=[ad.id for ad in cohort.survivors],
            killed_ad_ids=[ad.id for ad in cohort.killed],
            survivor_tag_profile=survivor_profile,
            killed_tag_profile=killed_profile,
            differentiating_elements=differentiating,
            top_survivor_traits=top_traits,
        )
        event.analysis_summary = self.generate_breakout_summary(event)
        return event

    def generate_breakout_summary(self, event: BreakoutEvent) -> str:
        """One-line summary, e.g. 'Acme cohort (2026-01-05): 2/10 survived (20%). Survivor traits: ...'"""
        survival_pct = int(event.survival_rate * 100 + 0.5)
        traits = ", ".join(event.top_survivor_traits[:self.thresholds.summary_traits])
        trait_note = f" Survivor traits: {traits}." if traits else ""
        return (
            f"{event.competitor_name} cohort ({event.cohort_start.isoformat()}): "
            f"{event.survivors_count}/{event.total_in_cohort} survived ({survival_pct}%).{trait_note}"
        )

    # =========================================================================
    # Winning Patterns
    # =========================================================================

    def aggregate_winning_patterns(self, events: List[BreakoutEvent]) -> List[WinningPattern]:
        """Aggregate survivor-favoring traits across all breakout events.

        confidence = min(1, sqrt(occurrences / total_events)) so a trait
        seen in several independent cohorts outranks a one-off extreme lift.
        Ranked by confidence * avg_lift, capped at max_winning_patterns.
        """
        if not events:
            return []

        lifts: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        for event in events:
            for element in event.differentiating_elements:
                if element.direction != DifferentialDirection.SURVIVOR_HIGHER:
                    continue
                lifts[(element.dimension, element.value)].append(element.lift)

        patterns: List[WinningPattern] = []
        for (dimension, value), element_lifts in lifts.items():
            avg_lift = sum(element_lifts) / len(element_lifts)
            confidence = min(1.0, math.sqrt(len(element_lifts) / len(events)))
            patterns.append(WinningPattern(
                dimension=dimension,
                value=value,
                frequency=len(element_lifts),
                avg_lift=round2(avg_lift),
                confidence=round4(confidence),
            ))

        patterns.sort(key=lambda p: (-(p.confidence * p.avg_lift), p.dimension, p.value))
        return patterns[:self.thresholds.max_winning_patterns]

    # =========================================================================
    # Cash Cows
    # =========================================================================

    async def detect_cash_cow_transitions(
        self,
        brand_id: str,
        competitor_ids: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> List[CashCowTransition]:
        """Find breakout ads that are still active past cash_cow_threshold_days.

        Ads already flagged as cash cows are skipped.

        Args:
            brand_id: Client brand id.
            competitor_ids: Competitors to scope to (default: the brand's
                competitors in the lifecycle track).
            now: Transition timestamp (default: now UTC).

        Returns:
            One CashCowTransition per newly qualifying ad.
        """
        now = now or datetime.now(timezone.utc)

        if competitor_ids is None:
            competitors = await fetch_competitors(
                self.supabase, brand_id, track=self.thresholds.required_track
            )
            competitor_ids = [c.id for c in competitors]

        candidates = []
        for chunk in chunked(competitor_ids):
            candidates.extend(fetch_rows(
                self.supabase.table("ads")
                .select("id, competitor_name, days_active, breakout_detected_at")
                .in_("competitor_id", chunk)
                .eq("is_breakout", True)
                .eq("is_cash_cow", False)
                .eq("is_active", True)
                .gte("days_active", self.thresholds.cash_cow_threshold_days),
                "ads",
            ))

        if not candidates:
            return []

        ad_ids = [str(ad["id"]) for ad in candidates]
        tags_by_ad: Dict[str, Dict] = {}
        for chunk in chunked(ad_ids):
            rows = fetch_rows(
                self.supabase.table("creative_tags")
                .select("ad_id, " + ", ".join(CASH_COW_TRAIT_COLUMNS))
                .in_("ad_id", chunk),
                "creative_tags",
            )
            for row in rows:
                tags_by_ad[str(row["ad_id"])] = clean_tag_row(row)

        transitions = []
        for ad in candidates:
            tags = tags_by_ad.get(str(ad["id"]), {})
            traits = [
                format_trait(column, tags[column])
                for column in CASH_COW_TRAIT_COLUMNS
                if tags.get(column)
            ]
            transitions.append(CashCowTransition(
                ad_id=str(ad["id"]),
                competitor_name=ad.get("competitor_name") or "Unknown",
                days_active=int(ad.get("days_active") or 0),
                breakout_date=parse_timestamp(ad.get("breakout_detected_at")) or now,
                cash_cow_date=now,
                traits=traits,
            ))

        return transitions

    # =========================================================================
    # Main Analysis
    # =========================================================================

    async def analyze_ad_lifecycle(
        self, brand_id: str, analysis_date: Optional[date] = None
    ) -> Optional[LifecycleAnalysis]:
        """Run lifecycle analysis for one brand and persist the results.

        Write order within the brand: breakout events, breakout flags,
        cash-cow flags, cohort_week backfill, then the snapshot, so the
        snapshot reflects the rows just written.

        Args:
            brand_id: Client brand id.
            analysis_date: Anchor date (default: today UTC).

        Returns:
            LifecycleAnalysis, or None when the brand has no competitors in
            the lifecycle track or no ads inside the lookback window.
        """
        analysis_date = analysis_date or utc_today()

        fetched = await fetch_lifecycle_ads(
            self.supabase,
            brand_id,
            self.thresholds.required_track,
            self.thresholds.lookback_days,
            analysis_date,
        )
        if not fetched:
            logger.info(f"Lifecycle: not enough data for brand {brand_id}")
            return None

        competitors, ads = fetched

        cohorts = self.build_cohorts(ads, analysis_date)
        breakout_events = [
            event
            for event in (self.analyze_breakout_cohort(c, brand_id, analysis_date) for c in cohorts)
            if event is not None
        ]
        winning_patterns = self.aggregate_winning_patterns(breakout_events)

        breakout_ad_ids = [ad_id for event in breakout_events for ad_id in event.survivor_ad_ids]
        already_flagged = {ad.id for ad in ads if ad.is_breakout}
        newly_flagged = [ad_id for ad_id in breakout_ad_ids if ad_id not in already_flagged]

        now = datetime.now(timezone.utc)

        await self._save_breakout_events(breakout_events)
        await self._flag_breakout_ads(newly_flagged, now)

        cash_cows = await self.detect_cash_cow_transitions(
            brand_id, [c.id for c in competitors], now
        )
        await self._flag_cash_cows(cash_cows, now)

        backfilled = await self._backfill_cohort_weeks(ads)

        analysis = LifecycleAnalysis(
            brand_id=brand_id,
            analysis_date=analysis_date,
            breakout_events=breakout_events,
            cash_cow_transitions=cash_cows,
            winning_patterns=winning_patterns,
            total_breakout_ads=len(breakout_ad_ids),
            newly_flagged_breakout_ads=len(newly_flagged),
            total_cash_cows=len(cash_cows),
            cohort_weeks_backfilled=backfilled,
        )
        analysis.market_signals = self._market_signals(analysis)

        await self._save_snapshot(analysis)

        logger.info(
            f"Lifecycle analysis for brand {brand_id}: {len(cohorts)} mature cohorts, "
            f"{len(breakout_events)} breakouts, {len(newly_flagged)} ads flagged, "
            f"{len(cash_cows)} cash cows"
        )
        return analysis

    def _market_signals(self, analysis: LifecycleAnalysis) -> str:
        if not analysis.breakout_events:
            return "No breakout cohorts detected in current analysis window."

        top = ", ".join(format_trait(p.dimension, p.value) for p in analysis.winning_patterns[:3])
        return (
            f"Found {len(analysis.breakout_events)} breakout cohort(s) with "
            f"{analysis.total_breakout_ads} surviving ad(s). "
            f"{analysis.total_cash_cows} cash cow transition(s) detected. "
            f"Top winning patterns: {top or 'none yet'}."
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _save_breakout_events(self, events: List[BreakoutEvent]) -> None:
        for event in events:
            execute_query(
                self.supabase.table("breakout_events").upsert(
                    event.model_dump(mode="json"),
                    on_conflict="brand_id,competitor_id,cohort_start,cohort_end",
                ),
                "breakout_events",
                "upsert",
            )

    async def _flag_breakout_ads(self, ad_ids: List[str], now: datetime) -> None:
        for chunk in chunked(ad_ids):
            execute_query(
                self.supabase.table("ads")
                .update({"is_breakout": True, "breakout_detected_at": now.isoformat()})
                .in_("id", chunk)
                .eq("is_breakout", False),
                "ads",
                "update",
            )

    async def _flag_cash_cows(self, transitions: List[CashCowTransition], now: datetime) -> None:
        for cow in transitions:
            execute_query(
                self.supabase.table("ads")
                .update({"is_cash_cow": True, "cash_cow_detected_at": now.isoformat()})
                .eq("id", cow.ad_id)
                .eq("is_cash_cow", False),
                "ads",
                "update",
            )

    async def _backfill_cohort_weeks(self, ads: List[TaggedAd]) -> int:
        missing = [ad for ad in ads if ad.cohort_week is None]
        for ad in missing:
            execute_query(
                self.supabase.table("ads")
                .update({"cohort_week": get_cohort_week(ad.launch_date).isoformat()})
                .eq("id", ad.id)
                .is_("cohort_week", "null"),
                "ads",
                "update",
            )
        return len(missing)

    async def _save_snapshot(self, analysis: LifecycleAnalysis) -> None:
        payload = analysis.model_dump(mode="json")
        execute_query(
            self.supabase.table("lifecycle_analysis_snapshots").upsert(
                {
                    "brand_id": analysis.brand_id,
                    "snapshot_date": analysis.analysis_date.isoformat(),
                    "total_breakout_events": len(analysis.breakout_events),
                    "total_breakout_ads": analysis.total_breakout_ads,
                    "total_cash_cows": analysis.total_cash_cows,
                    "winning_patterns": payload["winning_patterns"],
                    "cash_cow_transitions": payload["cash_cow_transitions"],
                    "analysis_json": payload,
                },
                on_conflict="brand_id,snapshot_date",
            ),
            "lifecycle_analysis_snapshots",
            "upsert",
        )


def _round_profile(profile: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
    return {
        dimension: {value: round4(p) for value, p in values.items()}
        for dimension, values in profile.items()
    }
