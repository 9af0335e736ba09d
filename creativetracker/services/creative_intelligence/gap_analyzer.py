"""GapAnalyzer: Client-vs-competitor creative gap analysis.

Compares the prevalence of every taxonomy value in a brand's own tagged ads
against its competitive set, then amplifies each gap by the value's recent
velocity and convergence (both read from the latest snapshots), so the
brand sees which missing attributes the market is actively moving toward.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .helpers import (
    StoreError,
    chunked,
    days_before,
    execute_query,
    fetch_client_tagged_ads,
    fetch_rows,
    fetch_tagged_ads,
    get_brand,
    parse_timestamp,
    round4,
    utc_today,
)
from .models import (
    ClientSyncResult,
    CompetitorExample,
    ConvergenceClassification,
    EngineConfig,
    GapAnalysis,
    GapElement,
    GapSummary,
    TagProfile,
    TrackFilter,
    VelocityDirection,
)
from .prevalence import calculate_tag_prevalence
from .taxonomy import ALL_DIMENSIONS, format_trait
from .velocity_tracker import VelocityTracker

logger = logging.getLogger(__name__)

CLIENT_AD_ID_PREFIX = "client-"


class GapAnalyzer:
    """Finds creative attributes competitors use that the brand does not.

    Thresholds (EngineConfig.gap):
    - min_prevalence: 0.001 (values below this on both sides are skipped)
    - min_gap: 0.01 (smallest positive gap reported as an opportunity)
    - watch_list_max_gap: 0.1 (small gaps still worth watching when accelerating)
    """

    def __init__(self, supabase_client, config: Optional[EngineConfig] = None):
        """Initialize with Supabase client.

        Args:
            supabase_client: Supabase client instance.
            config: Engine thresholds (defaults when omitted).
        """
        self.supabase = supabase_client
        self.config = config or EngineConfig()
        self.thresholds = self.config.gap
        self.velocity_tracker = VelocityTracker(supabase_client, self.config)

    # =========================================================================
    # Scoring
    # =========================================================================

    @staticmethod
    def calculate_priority_score(gap_size: float, velocity: float, convergence_score: float) -> float:
        """|gap| * (1 + velocity) * (1 + convergence).

        Velocity and convergence only amplify an existing gap: a zero gap
        scores zero, and a fully collapsed value (velocity -1) scores zero.
        """
        return abs(gap_size) * max(0.0, 1.0 + velocity) * (1.0 + max(0.0, convergence_score))

    @staticmethod
    def generate_recommendation(element: GapElement) -> str:
        """Rule-ordered recommendation text; never empty."""
        pct_gap = int(abs(element.gap_size) * 100 + 0.5)
        dim = element.dimension.replace("_", " ")
        val = element.value.replace("_", " ")

        if element.gap_size <= 0:
            return f"Strength: Your use of {val} ({dim}) matches or exceeds competitors by {pct_gap}%."

        if element.velocity_direction == VelocityDirection.ACCELERATING and element.convergence_score > 0:
            return (
                f"Critical opportunity: Competitors are converging on {val} ({dim}). "
                f"You are {pct_gap}% behind and the trend is accelerating."
            )

        if element.velocity_direction == VelocityDirection.ACCELERATING:
            return (
                f"High priority: {val} ({dim}) is gaining traction among competitors. "
                f"Consider testing this approach."
            )

        if element.velocity_direction == VelocityDirection.DECLINING:
            return f"Low priority: {val} ({dim}) shows a {pct_gap}% gap but is declining in popularity."

        return f"Opportunity: Competitors use {val} ({dim}) {pct_gap}% more than you. Worth testing."

    # =========================================================================
    # Client Ad Sync
    # =========================================================================

    async def sync_client_ads_for_tagging(
        self, brand_id: str, now: Optional[datetime] = None
    ) -> ClientSyncResult:
        """Copy the brand's active client_ads into ads so upstream tagging picks them up.

        Ads already present (id 'client-<meta_ad_id>') are skipped. A failed
        bulk write falls back to one write per ad; individual failures are
        logged and counted.

        Args:
            brand_id: Client brand id.
            now: Sync timestamp (default: now UTC).

        Returns:
            ClientSyncResult with synced / already_synced / failed counts.
        """
        now = now or datetime.now(timezone.utc)

        brand = await get_brand(self.supabase, brand_id)
        if not brand:
            return ClientSyncResult()

        client_ads = fetch_rows(
            self.supabase.table("client_ads")
            .select("meta_ad_id, thumbnail_url, image_url, created_at")
            .eq("client_brand_id", brand_id)
            .eq("effective_status", "ACTIVE"),
            "client_ads",
        )
        if not client_ads:
            return ClientSyncResult()

        ad_ids = [f"{CLIENT_AD_ID_PREFIX}{row['meta_ad_id']}" for row in client_ads]
        existing_ids = set()
        for chunk in chunked(ad_ids):
            rows = fetch_rows(self.supabase.table("ads").select("id").in_("id", chunk), "ads")
            existing_ids.update(str(row["id"]) for row in rows)

        to_insert = [
            self._client_ad_row(row, brand, now)
            for row in client_ads
            if f"{CLIENT_AD_ID_PREFIX}{row['meta_ad_id']}" not in existing_ids
        ]
        result = ClientSyncResult(already_synced=len(existing_ids))
        if not to_insert:
            return result

        try:
            execute_query(
                self.supabase.table("ads").upsert(to_insert, on_conflict="id", ignore_duplicates=True),
                "ads",
                "upsert",
            )
            result.synced = len(to_insert)
        except StoreError as e:
            logger.warning(
                f"Bulk client ad sync failed for brand {brand_id}, falling back to single writes: {e}"
            )
            for row in to_insert:
                try:
                    execute_query(
                        self.supabase.table("ads").upsert(row, on_conflict="id", ignore_duplicates=True),
                        "ads",
                        "upsert",
                    )
                    result.synced += 1
                except StoreError as single_error:
                    logger.error(f"Skipping client ad {row['id']}: {single_error}")
                    result.failed += 1

        logger.info(
            f"Client ad sync for brand {brand_id}: {result.synced} synced, "
            f"{result.already_synced} already synced, {result.failed} failed"
        )
        return result

    def _client_ad_row(self, client_ad: Dict[str, Any], brand: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        created_at = parse_timestamp(client_ad.get("created_at")) or now
        days_active = max(1, (now - created_at).days)
        return {
            "id": f"{CLIENT_AD_ID_PREFIX}{client_ad['meta_ad_id']}",
            "user_id": brand.get("user_id"),
            "client_brand_id": brand["id"],
            "competitor_id": None,
            "competitor_name": None,
            "is_client_ad": True,
            "thumbnail_url": client_ad.get("thumbnail_url") or client_ad.get("image_url"),
            "tagging_status": "pending",
            "format": "image",
            "is_video": False,
            "launch_date": created_at.date().isoformat(),
            "days_active": days_active,
            "last_seen_at": now.isoformat(),
        }

    # =========================================================================
    # Snapshot Lookups
    # =========================================================================

    async def _load_velocity_map(
        self, brand_id: str, analysis_date: date
    ) -> Dict[Tuple[str, str], Tuple[float, VelocityDirection]]:
        """Velocity per (dimension, value) from the two latest 'all' velocity snapshot dates."""
        rows = fetch_rows(
            self.supabase.table("velocity_snapshots")
            .select("snapshot_date, dimension, value, weighted_prevalence")
            .eq("brand_id", brand_id)
            .eq("track_filter", TrackFilter.ALL.value)
            .lte("snapshot_date", analysis_date.isoformat())
            .order("snapshot_date", desc=True)
            .limit(self.thresholds.snapshot_history_limit),
            "velocity_snapshots",
        )

        profiles: Dict[str, TagProfile] = {}
        for row in rows:
            snapshot_date = str(row["snapshot_date"])[:10]
            if snapshot_date not in profiles and len(profiles) == 2:
                continue
            profile = profiles.setdefault(snapshot_date, {})
            profile.setdefault(row["dimension"], {})[row["value"]] = float(row.get("weighted_prevalence") or 0)

        if len(profiles) < 2:
            return {}

        latest, prior = sorted(profiles, reverse=True)
        velocities = self.velocity_tracker.calculate_velocity(profiles[latest], profiles[prior])
        return {(v.dimension, v.value): (v.velocity_percent, v.direction) for v in velocities}

    async def _load_convergence_map(
        self, brand_id: str, analysis_date: date
    ) -> Dict[Tuple[str, str], Tuple[float, ConvergenceClassification]]:
        """Adjusted score and classification per (dimension, value) from the latest snapshot.

        Only the most recent snapshot date inside the convergence window counts;
        a value missing from that snapshot is no longer converging.
        """
        window_start = days_before(analysis_date, self.config.convergence.window_days)
        rows = fetch_rows(
            self.supabase.table("convergence_snapshots")
            .select("snapshot_date, dimension, value, adjusted_score, classification")
            .eq("brand_id", brand_id)
            .gte("snapshot_date", window_start.isoformat())
            .lte("snapshot_date", analysis_date.isoformat())
            .order("snapshot_date", desc=True)
            .limit(self.thresholds.snapshot_history_limit),
            "convergence_snapshots",
        )

        convergence: Dict[Tuple[str, str], Tuple[float, ConvergenceClassification]] = {}
        for row in rows:
            if row["snapshot_date"] != rows[0]["snapshot_date"]:
                break
            key = (row["dimension"], row["value"])
            if key in convergence:
                continue
            try:
                classification = ConvergenceClassification(row.get("classification"))
            except ValueError:
                classification = ConvergenceClassification.NO_CONVERGENCE
            convergence[key] = (float(row.get("adjusted_score") or 0), classification)
        return convergence

    # =========================================================================
    # Main Analysis
    # =========================================================================

    async def analyze_creative_gap(
        self,
        brand_id: str,
        analysis_date: Optional[date] = None,
        sync_client_ads: bool = True,
    ) -> Optional[GapAnalysis]:
        """Run gap analysis for one brand and save a snapshot.

        Client prevalence is unweighted (the brand's own ads have no signal
        score); competitor prevalence is signal-weighted.

        Args:
            brand_id: Client brand id.
            analysis_date: Anchor date (default: today UTC).
            sync_client_ads: Sync client_ads into ads before analysis.

        Returns:
            GapAnalysis, or None when the brand has no tagged client ads or
            no tagged competitor ads.
        """
        analysis_date = analysis_date or utc_today()

        client_sync = await self.sync_client_ads_for_tagging(brand_id) if sync_client_ads else None

        client_ads = await fetch_client_tagged_ads(self.supabase, brand_id, analysis_date)
        if not client_ads:
            logger.info(f"Gap: no tagged client ads for brand {brand_id}")
            return None

        competitive_set = await fetch_tagged_ads(
            self.supabase, brand_id, self.thresholds.lookback_days, analysis_date
        )
        if not competitive_set or not competitive_set.tagged_ads:
            logger.info(f"Gap: no tagged competitor ads for brand {brand_id}")
            return None

        competitor_ads = competitive_set.tagged_ads
        competitor_names = {c.id: c.name for c in competitive_set.competitors}

        client_profile = calculate_tag_prevalence(client_ads)
        competitor_profile = calculate_tag_prevalence(competitor_ads, weighted=True)

        velocity_map = await self._load_velocity_map(brand_id, analysis_date)
        convergence_map = await self._load_convergence_map(brand_id, analysis_date)

        elements: List[GapElement] = []
        for dimension, values in ALL_DIMENSIONS.items():
            for value in values:
                client_prev = client_profile.get(dimension, {}).get(value, 0.0)
                competitor_prev = competitor_profile.get(dimension, {}).get(value, 0.0)

                if client_prev < self.thresholds.min_prevalence and competitor_prev < self.thresholds.min_prevalence:
                    continue

                gap_size = competitor_prev - client_prev
                velocity, direction = velocity_map.get((dimension, value), (0.0, VelocityDirection.STABLE))
                convergence_score, classification = convergence_map.get(
                    (dimension, value), (0.0, ConvergenceClassification.NO_CONVERGENCE)
                )

                examples = [
                    CompetitorExample(
                        ad_id=ad.id,
                        competitor_name=ad.competitor_name or competitor_names.get(ad.competitor_id or "", "Unknown"),
                    )
                    for ad in competitor_ads
                    if ad.tag_value(dimension) == value
                ][:self.thresholds.max_examples]

                element = GapElement(
                    dimension=dimension,
                    value=value,
                    client_prevalence=round4(client_prev),
                    competitor_prevalence=round4(competitor_prev),
                    gap_size=round4(gap_size),
                    velocity=round4(velocity),
                    velocity_direction=direction,
                    convergence_score=round4(convergence_score),
                    convergence_classification=classification,
                    priority_score=round4(self.calculate_priority_score(gap_size, velocity, convergence_score)),
                    competitor_examples=examples,
                )
                element.recommendation = self.generate_recommendation(element)
                elements.append(element)

        positive_gaps = sorted(
            (e for e in elements if e.gap_size > self.thresholds.min_gap),
            key=lambda e: (-e.priority_score, -e.gap_size, e.dimension, e.value),
        )
        priority_gaps = positive_gaps[:self.thresholds.priority_gap_limit]

        strengths = sorted(
            (
                e for e in elements
                if e.client_prevalence >= e.competitor_prevalence
                and e.client_prevalence > self.thresholds.strength_min_prevalence
            ),
            key=lambda e: (-e.client_prevalence, e.dimension, e.value),
        )

        watch_list = sorted(
            (
                e for e in elements
                if abs(e.gap_size) < self.thresholds.watch_list_max_gap
                and e.velocity_direction == VelocityDirection.ACCELERATING
            ),
            key=lambda e: (-e.velocity, e.dimension, e.value),
        )

        summary = GapSummary(
            biggest_opportunity=(
                format_trait(priority_gaps[0].dimension, priority_gaps[0].value)
                if priority_gaps else "None identified"
            ),
            strongest_match=(
                format_trait(strengths[0].dimension, strengths[0].value)
                if strengths else "None identified"
            ),
            total_gaps_identified=len(positive_gaps),
        )

        analysis = GapAnalysis(
            brand_id=brand_id,
            analysis_date=analysis_date,
            total_client_ads=len(client_ads),
            total_competitor_ads=len(competitor_ads),
            priority_gaps=priority_gaps,
            strengths=strengths,
            watch_list=watch_list,
            summary=summary,
            client_sync=client_sync,
        )

        execute_query(
            self.supabase.table("gap_analysis_snapshots").upsert(
                {
                    "brand_id": brand_id,
                    "snapshot_date": analysis_date.isoformat(),
                    "total_client_ads": len(client_ads),
                    "total_competitor_ads": len(competitor_ads),
                    "analysis_json": analysis.model_dump(mode="json"),
                },
                on_conflict="brand_id,snapshot_date",
            ),
            "gap_analysis_snapshots",
            "upsert",
        )

        logger.info(
            f"Gap analysis for brand {brand_id}: {len(client_ads)} client vs "
            f"{len(competitor_ads)} competitor ads, {len(positive_gaps)} gaps, "
            f"{len(strengths)} strengths, {len(watch_list)} on watch list"
        )
        return analysis
