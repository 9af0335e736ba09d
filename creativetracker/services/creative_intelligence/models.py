"""Pydantic models for the Creative Intelligence analytics engine.

Enums, engine thresholds, input records, analyzer outputs, and pipeline
run statistics. No database access in this file -- pure type definitions.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .taxonomy import TAXONOMY_DIMENSIONS, VIDEO_TAXONOMY_DIMENSIONS, get_tag_value

# dimension -> value -> prevalence fraction
TagProfile = Dict[str, Dict[str, float]]


# =============================================================================
# Enums
# =============================================================================

class TrackFilter(str, Enum):
    ALL = "all"
    CONSOLIDATOR = "consolidator"
    VELOCITY_TESTER = "velocity_tester"


class VelocityDirection(str, Enum):
    ACCELERATING = "accelerating"
    DECLINING = "declining"
    STABLE = "stable"


class DifferentialDirection(str, Enum):
    SURVIVOR_HIGHER = "survivor_higher"
    KILLED_HIGHER = "killed_higher"


class ConvergenceClassification(str, Enum):
    STRONG_CONVERGENCE = "STRONG_CONVERGENCE"
    MODERATE_CONVERGENCE = "MODERATE_CONVERGENCE"
    EMERGING_PATTERN = "EMERGING_PATTERN"
    NO_CONVERGENCE = "NO_CONVERGENCE"


# =============================================================================
# Engine Config
# =============================================================================

class _Thresholds(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PrevalenceThresholds(_Thresholds):
    noise_floor: float = Field(0.01, ge=0, lt=1)
    min_lift: float = Field(1.5, ge=1)
    max_lift: float = Field(10.0, ge=1)


class LifecycleThresholds(_Thresholds):
    cohort_window_days: int = Field(7, gt=0)
    breakout_threshold_days: int = Field(14, gt=0)
    cash_cow_threshold_days: int = Field(60, gt=0)
    breakout_survival_rate_threshold: float = Field(0.30, gt=0, le=1)
    min_cohort_size: int = Field(3, gt=0)
    lookback_days: int = Field(90, gt=0)
    max_survivor_traits: int = 5
    summary_traits: int = 3
    max_winning_patterns: int = 20
    required_track: str = "velocity_tester"


class VelocityThresholds(_Thresholds):
    lookback_days: int = Field(90, gt=0)
    window_days: int = Field(30, gt=0)
    accelerating_threshold: float = 0.3
    declining_threshold: float = -0.3
    divergence_threshold: float = Field(0.15, ge=0)
    top_n: int = 10


class ConvergenceThresholds(_Thresholds):
    lookback_days: int = Field(60, gt=0)
    window_days: int = Field(30, gt=0)
    strong_ratio: float = Field(0.6, ge=0, le=1)
    emerging_ratio: float = Field(0.4, ge=0, le=1)
    cross_track_multiplier: float = Field(1.5, ge=1)
    confidence_saturation: int = Field(10, gt=0)
    max_example_ads: int = 3


class GapThresholds(_Thresholds):
    lookback_days: int = Field(90, gt=0)
    min_prevalence: float = Field(0.001, ge=0)
    min_gap: float = Field(0.01, ge=0)
    strength_min_prevalence: float = Field(0.01, ge=0)
    watch_list_max_gap: float = Field(0.1, ge=0)
    priority_gap_limit: int = 5
    max_examples: int = 3
    snapshot_history_limit: int = 1000


class EngineConfig(_Thresholds):
    """Every analyzer threshold in one injectable structure."""

    prevalence: PrevalenceThresholds = Field(default_factory=PrevalenceThresholds)
    lifecycle: LifecycleThresholds = Field(default_factory=LifecycleThresholds)
    velocity: VelocityThresholds = Field(default_factory=VelocityThresholds)
    convergence: ConvergenceThresholds = Field(default_factory=ConvergenceThresholds)
    gap: GapThresholds = Field(default_factory=GapThresholds)


# =============================================================================
# Input Records
# =============================================================================

class CompetitorInfo(BaseModel):
    """Represents a competitors row."""

    id: str
    name: str = "Unknown"
    track: Optional[str] = None


class TaggedAd(BaseModel):
    """An ad joined with its creative_tags (and video_tags) rows.

    Tag maps are keyed by taxonomy dimension; None means untagged for that
    dimension. Values are checked against the taxonomy here, so rows must be
    passed through taxonomy.clean_tag_row first.
    """

    id: str
    competitor_id: Optional[str] = None
    competitor_name: Optional[str] = None
    competitor_track: Optional[str] = None
    launch_date: date
    days_active: int = 0
    is_active: bool = False
    is_video: bool = False
    signal_strength: Optional[float] = Field(None, ge=0, le=100)
    cohort_week: Optional[date] = None
    is_breakout: bool = False
    is_cash_cow: bool = False
    tags: Dict[str, Optional[str]] = Field(default_factory=dict)
    video_tags: Dict[str, Optional[str]] = Field(default_factory=dict)

    @field_validator("tags")
    @classmethod
    def _check_tags(cls, v: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        return _check_tag_map(v, TAXONOMY_DIMENSIONS)

    @field_validator("video_tags")
    @classmethod
    def _check_video_tags(cls, v: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        return _check_tag_map(v, VIDEO_TAXONOMY_DIMENSIONS)

    @property
    def is_tagged(self) -> bool:
        """Whether any visual dimension carries a value."""
        return any(value is not None for value in self.tags.values())

    def tag_value(self, dimension: str) -> Optional[str]:
        """Value for a dimension; video dimensions only count for video ads."""
        return get_tag_value(self, dimension)


def _check_tag_map(tags: Dict[str, Optional[str]], taxonomy: Dict) -> Dict[str, Optional[str]]:
    for dimension, value in tags.items():
        if dimension not in taxonomy:
            raise ValueError(f"Unknown taxonomy dimension: {dimension}")
        if value is not None and value not in taxonomy[dimension]:
            raise ValueError(f"Invalid value for {dimension}: {value}")
    return tags


# =============================================================================
# Lifecycle / Cohorts
# =============================================================================

class Cohort(BaseModel):
    """Ads from one competitor launched in the same Monday-aligned week."""

    competitor_id: str
    competitor_name: str
    cohort_start: date
    cohort_end: date
    ads: List[TaggedAd] = Field(default_factory=list)
    survivors: List[TaggedAd] = Field(default_factory=list)
    killed: List[TaggedAd] = Field(default_factory=list)
    survival_rate: float = 0.0
    is_breakout_cohort: bool = False


class DifferentiatingElement(BaseModel):
    dimension: str
    value: str
    survivor_prevalence: float
    killed_prevalence: float
    lift: float
    direction: DifferentialDirection


class BreakoutEvent(BaseModel):
    """Represents a breakout_events row."""

    brand_id: str
    competitor_id: str
    competitor_name: str
    cohort_start: date
    cohort_end: date
    analysis_date: date
    total_in_cohort: int
    survivors_count: int
    killed_count: int
    survival_rate: float
    survivor_ad_ids: List[str] = Field(default_factory=list)
    killed_ad_ids: List[str] = Field(default_factory=list)
    survivor_tag_profile: TagProfile = Field(default_factory=dict)
    killed_tag_profile: TagProfile = Field(default_factory=dict)
    differentiating_elements: List[DifferentiatingElement] = Field(default_factory=list)
    top_survivor_traits: List[str] = Field(default_factory=list)
    analysis_summary: str = ""


class WinningPattern(BaseModel):
    dimension: str
    value: str
    frequency: int
    avg_lift: float
    confidence: float = Field(ge=0, le=1)


class CashCowTransition(BaseModel):
    ad_id: str
    competitor_name: str
    days_active: int
    breakout_date: Optional[datetime] = None
    cash_cow_date: datetime
    traits: List[str] = Field(default_factory=list)


class LifecycleAnalysis(BaseModel):
    brand_id: str
    analysis_date: date
    breakout_events: List[BreakoutEvent] = Field(default_factory=list)
    cash_cow_transitions: List[CashCowTransition] = Field(default_factory=list)
    winning_patterns: List[WinningPattern] = Field(default_factory=list)
    total_breakout_ads: int = 0
    newly_flagged_breakout_ads: int = 0
    total_cash_cows: int = 0
    cohort_weeks_backfilled: int = 0
    market_signals: str = ""


# =============================================================================
# Velocity
# =============================================================================

class ElementVelocity(BaseModel):
    dimension: str
    value: str
    current_prevalence: float
    previous_prevalence: float
    velocity_percent: float
    direction: VelocityDirection
    ad_count: int = 0


class TrackDivergence(BaseModel):
    dimension: str
    value: str
    consolidator_prevalence: float
    velocity_tester_prevalence: float
    # Signed: positive when velocity testers lead
    divergence_percent: float
    direction: str


class VelocityBreakdownEntry(BaseModel):
    current: float
    previous: float
    velocity: float
    direction: VelocityDirection


class VelocityAnalysis(BaseModel):
    competitive_set: str
    brand_id: str
    analysis_date: date
    period: str
    top_accelerating: List[ElementVelocity] = Field(default_factory=list)
    top_declining: List[ElementVelocity] = Field(default_factory=list)
    full_dimension_breakdown: Dict[str, Dict[str, VelocityBreakdownEntry]] = Field(default_factory=dict)
    track_divergences: List[TrackDivergence] = Field(default_factory=list)
    snapshots_saved: int = 0


# =============================================================================
# Convergence
# =============================================================================

class CompetitorAdoption(BaseModel):
    competitor_id: str
    competitor_name: str
    track: str
    current_prevalence: float
    previous_prevalence: float
    velocity_percent: float
    increasing: bool
    example_ad_ids: List[str] = Field(default_factory=list)


class ConvergenceElement(BaseModel):
    dimension: str
    value: str
    convergence_ratio: float = Field(ge=0, le=1)
    adjusted_score: float = Field(ge=0, le=1)
    cross_track: bool = False
    classification: ConvergenceClassification = ConvergenceClassification.NO_CONVERGENCE
    confidence: float = 0.0
    competitors_increasing: int = 0
    total_competitors: int = 0
    track_a_increasing: int = 0
    track_b_increasing: int = 0
    competitors: List[CompetitorAdoption] = Field(default_factory=list)
    is_new_alert: bool = False


class ConvergenceAnalysis(BaseModel):
    competitive_set: str
    brand_id: str
    analysis_date: date
    total_competitors: int
    confidence: float
    strong_convergences: List[ConvergenceElement] = Field(default_factory=list)
    moderate_convergences: List[ConvergenceElement] = Field(default_factory=list)
    emerging_patterns: List[ConvergenceElement] = Field(default_factory=list)
    market_shift_alerts: List[ConvergenceElement] = Field(default_factory=list)
    snapshots_saved: int = 0


# =============================================================================
# Gap Analysis
# =============================================================================

class CompetitorExample(BaseModel):
    ad_id: str
    competitor_name: str


class GapElement(BaseModel):
    dimension: str
    value: str
    client_prevalence: float
    competitor_prevalence: float
    # competitor - client; positive means the brand is behind
    gap_size: float
    velocity: float = 0.0
    velocity_direction: VelocityDirection = VelocityDirection.STABLE
    convergence_score: float = 0.0
    convergence_classification: ConvergenceClassification = ConvergenceClassification.NO_CONVERGENCE
    priority_score: float = 0.0
    competitor_examples: List[CompetitorExample] = Field(default_factory=list)
    recommendation: str = ""


class GapSummary(BaseModel):
    biggest_opportunity: str
    strongest_match: str
    total_gaps_identified: int


class ClientSyncResult(BaseModel):
    synced: int = 0
    already_synced: int = 0
    failed: int = 0


class GapAnalysis(BaseModel):
    brand_id: str
    analysis_date: date
    total_client_ads: int
    total_competitor_ads: int
    priority_gaps: List[GapElement] = Field(default_factory=list)
    strengths: List[GapElement] = Field(default_factory=list)
    watch_list: List[GapElement] = Field(default_factory=list)
    summary: GapSummary
    client_sync: Optional[ClientSyncResult] = None


# =============================================================================
# Pipeline Run Statistics
# =============================================================================

class PipelineStats(BaseModel):
    brands_analyzed: int = 0
    snapshots_saved: int = 0
    failed: int = 0
    duration_ms: int = Field(0, ge=0)


class LifecyclePipelineStats(PipelineStats):
    breakout_events_found: int = 0
    breakout_ads_flagged: int = 0
    cash_cows_detected: int = 0


class VelocityPipelineStats(PipelineStats):
    pass


class ConvergencePipelineStats(PipelineStats):
    alerts_generated: int = 0


class GapPipelineStats(PipelineStats):
    client_ads_synced: int = 0

