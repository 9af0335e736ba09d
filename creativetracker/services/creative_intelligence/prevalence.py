"""Tag prevalence and differential lift primitives.

Pure functions over in-memory ads; every analyzer builds on these two:
- calculate_tag_prevalence: normalized (optionally signal-weighted)
  frequency of each taxonomy value, per dimension
- find_differentiating_elements: values whose prevalence differs between
  two profiles by at least a lift ratio
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Union

from .helpers import round2, round4, safe_divide
from .models import (
    DifferentialDirection,
    DifferentiatingElement,
    PrevalenceThresholds,
    TagProfile,
    TaggedAd,
    TrackFilter,
)
from .taxonomy import ALL_DIMENSIONS, TAXONOMY_DIMENSIONS, VIDEO_TAXONOMY_DIMENSIONS

# Ratios such as 0.3 / 0.2 land a hair under 1.5 in floating point
FLOAT_TOLERANCE = 1e-9


def _matches_track(ad: TaggedAd, track_filter: Optional[Union[TrackFilter, str]]) -> bool:
    if track_filter is None:
        return True
    track = TrackFilter(track_filter)
    return track is TrackFilter.ALL or ad.competitor_track == track.value


def ad_weight(ad: TaggedAd, weighted: bool) -> float:
    """1 per ad, or its signal strength (unscored ads count as 1)."""
    if not weighted or ad.signal_strength is None:
        return 1.0
    return float(ad.signal_strength)


def filter_by_track(
    ads: Iterable[TaggedAd], track_filter: Optional[Union[TrackFilter, str]]
) -> List[TaggedAd]:
    return [ad for ad in ads if _matches_track(ad, track_filter)]


def calculate_tag_prevalence(
    ads: Iterable[TaggedAd],
    track_filter: Optional[Union[TrackFilter, str]] = None,
    weighted: bool = False,
) -> TagProfile:
    """Compute per-dimension prevalence of every taxonomy value.

    Untagged dimensions (None) are skipped, so each dimension is normalized
    by the weight of ads that actually carry a value for it. Video-only
    dimensions are read from video ads only.

    Args:
        ads: Tagged ads.
        track_filter: Restrict to one competitor track (None / "all" keeps all).
        weighted: Weight each ad by its signal strength instead of 1.

    Returns:
        dimension -> value -> prevalence. A dimension with any weight lists
        every taxonomy value (zeros included) and sums to 1; a dimension
        with zero weight maps to an empty dict. No matching ads -> {}.
    """
    filtered = filter_by_track(ads, track_filter)
    if not filtered:
        return {}

    counts = {dimension: dict.fromkeys(values, 0.0) for dimension, values in ALL_DIMENSIONS.items()}
    totals = dict.fromkeys(ALL_DIMENSIONS, 0.0)

    for ad in filtered:
        weight = ad_weight(ad, weighted)

        for dimension in TAXONOMY_DIMENSIONS:
            value = ad.tags.get(dimension)
            if value is not None and value in counts[dimension]:
                counts[dimension][value] += weight
                totals[dimension] += weight

        if ad.is_video:
            for dimension in VIDEO_TAXONOMY_DIMENSIONS:
                value = ad.video_tags.get(dimension)
                if value is not None and value in counts[dimension]:
                    counts[dimension][value] += weight
                    totals[dimension] += weight

    profile: TagProfile = {}
    for dimension, value_counts in counts.items():
        total = totals[dimension]
        if total <= 0:
            profile[dimension] = {}
            continue
        profile[dimension] = {
            value: safe_divide(count, total) for value, count in value_counts.items()
        }

    return profile


def find_differentiating_elements(
    profile_a: TagProfile,
    profile_b: TagProfile,
    thresholds: Optional[PrevalenceThresholds] = None,
) -> List[DifferentiatingElement]:
    """Surface values whose prevalence differs between two profiles.

    profile_a is the "survivor" side (or current / client), profile_b the
    "killed" side (or prior / competitor). For each (dimension, value) in
    either profile: skip when both sides are under the noise floor, take
    larger / smaller as the lift (max_lift when the smaller side is under
    the noise floor), and keep it when lift >= min_lift.

    Returns:
        Elements sorted by lift descending, then dimension and value.
    """
    thresholds = thresholds or PrevalenceThresholds()
    floor = thresholds.noise_floor
    elements: List[DifferentiatingElement] = []

    dimensions = sorted(set(profile_a) | set(profile_b))
    for dimension in dimensions:
        values_a = profile_a.get(dimension, {})
        values_b = profile_b.get(dimension, {})

        for value in sorted(set(values_a) | set(values_b)):
            prev_a = values_a.get(value, 0.0)
            prev_b = values_b.get(value, 0.0)

            if prev_a < floor and prev_b < floor:
                continue

            if prev_a >= prev_b:
                larger, smaller = prev_a, prev_b
                direction = DifferentialDirection.SURVIVOR_HIGHER
            else:
                larger, smaller = prev_b, prev_a
                direction = DifferentialDirection.KILLED_HIGHER

            if smaller <= floor:
                lift = thresholds.max_lift
            else:
                lift = safe_divide(larger, smaller)

            if lift < thresholds.min_lift - FLOAT_TOLERANCE:
                continue

            elements.append(DifferentiatingElement(
                dimension=dimension,
                value=value,
                survivor_prevalence=round4(prev_a),
                killed_prevalence=round4(prev_b),
                lift=round2(lift),
                direction=direction,
            ))

    elements.sort(key=lambda e: (-e.lift, e.dimension, e.value))
    return elements
