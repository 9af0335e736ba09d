"""Shared helpers for the Creative Intelligence service layer.

Cross-cutting utilities used by the lifecycle, velocity, convergence and gap
analyzers. Includes:
- Store access (execute_query / StoreError) so every failed read or write
  surfaces as one typed error
- Tagged-ad fetchers (competitive set, lifecycle set, client set)
- Date anchoring (windows are relative to the analysis date, NOT today)
- Safe numeric helpers (no NaN / Infinity reaches a snapshot)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import CompetitorInfo, TaggedAd
from .taxonomy import CREATIVE_TAG_COLUMNS, VIDEO_TAG_COLUMNS, clean_tag_row, get_duration_bucket

logger = logging.getLogger(__name__)

# PostgREST URL length limits how many ids fit into one in_() filter
IN_FILTER_CHUNK_SIZE = 200

AD_COLUMNS = (
    "id, competitor_id, competitor_name, competitor_track, launch_date, days_active, "
    "is_active, is_video, video_duration, signal_strength, cohort_week, is_breakout, is_cash_cow"
)


# =============================================================================
# Store Access
# =============================================================================

class StoreError(Exception):
    """A read or write against the backing store failed."""

    def __init__(self, table: str, operation: str, cause: Optional[BaseException] = None):
        self.table = table
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} on {table} failed: {cause}")


def execute_query(query, table: str, operation: str = "select"):
    """Execute a Supabase query builder, converting any failure to StoreError.

    Args:
        query: A postgrest request builder (anything with .execute()).
        table: Table name, for error reporting.
        operation: select | upsert | update | insert.

    Returns:
        The postgrest APIResponse.

    Raises:
        StoreError: If the call raised.
    """
    try:
        return query.execute()
    except Exception as e:
        logger.error(f"Store {operation} on {table} failed: {e}")
        raise StoreError(table, operation, e) from e


def fetch_rows(query, table: str) -> List[Dict[str, Any]]:
    """Execute a select and return its rows (empty list when none)."""
    result = execute_query(query, table, "select")
    return list(result.data or [])


def chunked(items: List[str], size: int = IN_FILTER_CHUNK_SIZE) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# =============================================================================
# Safe Numeric Helpers
# =============================================================================

def safe_divide(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is zero or the result is not finite."""
    if not denominator:
        return 0.0
    result = numerator / denominator
    return result if math.isfinite(result) else 0.0


def round4(value: float) -> float:
    return round(value, 4) if math.isfinite(value) else 0.0


def round2(value: float) -> float:
    return round(value, 2) if math.isfinite(value) else 0.0


# =============================================================================
# Date Helpers
# =============================================================================

def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_date(value: Any) -> Optional[date]:
    """Parse a store date/timestamp value ('2026-01-05' or ISO timestamp) to a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a store timestamp; naive values are taken as UTC. None when unparseable."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable timestamp {value!r}")
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_before(anchor: date, days: int) -> date:
    return anchor - timedelta(days=days)


def get_cohort_week(launch_date: date) -> date:
    """Monday of the week containing launch_date."""
    return launch_date - timedelta(days=launch_date.weekday())


def get_cohort_end_date(cohort_start: date, window_days: int = 7) -> date:
    """Last day (Sunday for 7-day windows) of the cohort starting at cohort_start."""
    return cohort_start + timedelta(days=window_days - 1)


# =============================================================================
# Brand / Competitor Queries
# =============================================================================

async def list_brand_ids(supabase) -> List[str]:
    """Return every client brand id."""
    rows = fetch_rows(supabase.table("client_brands").select("id"), "client_brands")
    return [str(row["id"]) for row in rows if row.get("id")]


async def get_brand(supabase, brand_id: str) -> Optional[Dict[str, Any]]:
    """Fetch a client_brands row, or None if it does not exist."""
    rows = fetch_rows(
        supabase.table("client_brands").select("id, name, user_id").eq("id", brand_id).limit(1),
        "client_brands",
    )
    return rows[0] if rows else None


async def fetch_competitors(
    supabase, brand_id: str, track: Optional[str] = None
) -> List[CompetitorInfo]:
    """Fetch a brand's competitors, optionally restricted to one track."""
    query = supabase.table("competitors").select("id, name, track").eq("brand_id", brand_id)
    if track:
        query = query.eq("track", track)
    rows = fetch_rows(query, "competitors")
    return [
        CompetitorInfo(id=str(row["id"]), name=row.get("name") or "Unknown", track=row.get("track"))
        for row in rows
    ]


# =============================================================================
# Tag Loading
# =============================================================================

async def fetch_tag_maps(
    supabase,
    ad_ids: List[str],
    video_ad_ids: List[str],
) -> Tuple[Dict[str, Dict[str, Optional[str]]], Dict[str, Dict[str, Optional[str]]]]:
    """Load creative_tags for ad_ids and video_tags for video_ad_ids.

    Returns:
        (tags_by_ad_id, video_tags_by_ad_id); ads without a tag row are absent.
    """
    tags_by_ad: Dict[str, Dict[str, Optional[str]]] = {}
    for chunk in chunked(ad_ids):
        rows = fetch_rows(
            supabase.table("creative_tags").select(CREATIVE_TAG_COLUMNS).in_("ad_id", chunk),
            "creative_tags",
        )
        for row in rows:
            tags_by_ad[str(row["ad_id"])] = clean_tag_row(row)

    video_tags_by_ad: Dict[str, Dict[str, Optional[str]]] = {}
    for chunk in chunked(video_ad_ids):
        rows = fetch_rows(
            supabase.table("video_tags").select(VIDEO_TAG_COLUMNS).in_("ad_id", chunk),
            "video_tags",
        )
        for row in rows:
            video_tags_by_ad[str(row["ad_id"])] = clean_tag_row(row, video=True)

    return tags_by_ad, video_tags_by_ad


def build_tagged_ad(
    row: Dict[str, Any],
    tags: Optional[Dict[str, Optional[str]]],
    video_tags: Optional[Dict[str, Optional[str]]],
    competitors_by_id: Optional[Dict[str, CompetitorInfo]] = None,
    default_launch_date: Optional[date] = None,
) -> TaggedAd:
    """Assemble a TaggedAd from an ads row plus its sanitized tag maps.

    A video ad whose video tags lack a duration bucket gets one from the
    measured video_duration (seconds) when the ads row carries it.
    """
    competitor_id = row.get("competitor_id")
    competitor = (competitors_by_id or {}).get(str(competitor_id)) if competitor_id else None

    video_tags = dict(video_tags or {})
    duration = row.get("video_duration")
    if row.get("is_video") and duration is not None and not video_tags.get("video_duration_bucket"):
        video_tags["video_duration_bucket"] = get_duration_bucket(float(duration))

    return TaggedAd(
        id=str(row["id"]),
        competitor_id=str(competitor_id) if competitor_id else None,
        competitor_name=row.get("competitor_name") or (competitor.name if competitor else None),
        competitor_track=row.get("competitor_track") or (competitor.track if competitor else None),
        launch_date=parse_date(row.get("launch_date")) or default_launch_date or utc_today(),
        days_active=int(row.get("days_active") or 0),
        is_active=bool(row.get("is_active")),
        is_video=bool(row.get("is_video")),
        signal_strength=row.get("signal_strength"),
        cohort_week=parse_date(row.get("cohort_week")),
        is_breakout=bool(row.get("is_breakout")),
        is_cash_cow=bool(row.get("is_cash_cow")),
        tags=tags or {},
        video_tags=video_tags,
    )


# =============================================================================
# Tagged-Ad Fetchers
# =============================================================================

@dataclass
class CompetitiveSet:
    """A brand's competitors and their tagged ads inside a lookback window."""

    brand_name: str
    competitors: List[CompetitorInfo] = field(default_factory=list)
    tagged_ads: List[TaggedAd] = field(default_factory=list)


async def fetch_tagged_ads(
    supabase,
    brand_id: str,
    lookback_days: int,
    analysis_date: date,
) -> Optional[CompetitiveSet]:
    """Fetch tagged, signal-scored competitor ads for a brand's competitive set.

    Shared by the velocity, convergence and gap analyzers. Only ads with a
    creative_tags row and a non-null signal_strength are returned.

    Args:
        supabase: Supabase client instance.
        brand_id: Client brand id.
        lookback_days: Window size, counted back from analysis_date.
        analysis_date: Anchor date for the window.

    Returns:
        CompetitiveSet, or None when the brand, its competitors, or their
        recent ads are missing.
    """
    brand = await get_brand(supabase, brand_id)
    if not brand:
        return None

    competitors = await fetch_competitors(supabase, brand_id)
    if not competitors:
        return None

    competitors_by_id = {c.id: c for c in competitors}
    cutoff = days_before(analysis_date, lookback_days).isoformat()

    ad_rows: List[Dict[str, Any]] = []
    for chunk in chunked(list(competitors_by_id)):
        ad_rows.extend(fetch_rows(
            supabase.table("ads")
            .select(AD_COLUMNS)
            .in_("competitor_id", chunk)
            .gte("launch_date", cutoff)
            .not_.is_("signal_strength", "null"),
            "ads",
        ))

    if not ad_rows:
        return None

    ad_ids = [str(row["id"]) for row in ad_rows]
    video_ids = [str(row["id"]) for row in ad_rows if row.get("is_video")]
    tags_by_ad, video_tags_by_ad = await fetch_tag_maps(supabase, ad_ids, video_ids)

    tagged_ads = [
        build_tagged_ad(row, tags_by_ad[str(row["id"])], video_tags_by_ad.get(str(row["id"])), competitors_by_id)
        for row in ad_rows
        if str(row["id"]) in tags_by_ad
    ]

    logger.info(
        f"Fetched {len(tagged_ads)} tagged ads ({len(ad_rows)} total) "
        f"across {len(competitors)} competitors for brand {brand_id}"
    )

    return CompetitiveSet(
        brand_name=brand.get("name") or "Unknown",
        competitors=competitors,
        tagged_ads=tagged_ads,
    )


async def fetch_lifecycle_ads(
    supabase,
    brand_id: str,
    track: str,
    lookback_days: int,
    analysis_date: date,
) -> Optional[Tuple[List[CompetitorInfo], List[TaggedAd]]]:
    """Fetch every recent ad (tagged or not) from a brand's competitors in one track.

    Returns:
        (competitors, ads), or None when the brand has no competitors in the
        track or they launched nothing inside the window.
    """
    brand = await get_brand(supabase, brand_id)
    if not brand:
        return None

    competitors = await fetch_competitors(supabase, brand_id, track=track)
    if not competitors:
        return None

    competitors_by_id = {c.id: c for c in competitors}
    cutoff = days_before(analysis_date, lookback_days).isoformat()

    ad_rows: List[Dict[str, Any]] = []
    for chunk in chunked(list(competitors_by_id)):
        ad_rows.extend(fetch_rows(
            supabase.table("ads")
            .select(AD_COLUMNS)
            .in_("competitor_id", chunk)
            .gte("launch_date", cutoff),
            "ads",
        ))

    if not ad_rows:
        return None

    ad_ids = [str(row["id"]) for row in ad_rows]
    video_ids = [str(row["id"]) for row in ad_rows if row.get("is_video")]
    tags_by_ad, video_tags_by_ad = await fetch_tag_maps(supabase, ad_ids, video_ids)

    ads = [
        build_tagged_ad(
            row,
            tags_by_ad.get(str(row["id"])),
            video_tags_by_ad.get(str(row["id"])),
            competitors_by_id,
        )
        for row in ad_rows
    ]
    return competitors, ads


async def fetch_client_tagged_ads(
    supabase, brand_id: str, analysis_date: date
) -> List[TaggedAd]:
    """Fetch the brand's own ads that finished tagging."""
    ad_rows = fetch_rows(
        supabase.table("ads")
        .select("id, is_video, video_duration, launch_date")
        .eq("client_brand_id", brand_id)
        .eq("is_client_ad", True)
        .eq("tagging_status", "tagged"),
        "ads",
    )
    if not ad_rows:
        return []

    ad_ids = [str(row["id"]) for row in ad_rows]
    video_ids = [str(row["id"]) for row in ad_rows if row.get("is_video")]
    tags_by_ad, video_tags_by_ad = await fetch_tag_maps(supabase, ad_ids, video_ids)

    return [
        build_tagged_ad(
            row,
            tags_by_ad[str(row["id"])],
            video_tags_by_ad.get(str(row["id"])),
            default_launch_date=analysis_date,
        )
        for row in ad_rows
        if str(row["id"]) in tags_by_ad
    ]
