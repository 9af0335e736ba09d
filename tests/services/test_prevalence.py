"""
Tests for the tag prevalence and differential lift primitives.
"""

import math
from datetime import date

import pytest

from creativetracker.services.creative_intelligence.models import (
    DifferentialDirection,
    PrevalenceThresholds,
    TaggedAd,
    TrackFilter,
)
from creativetracker.services.creative_intelligence.prevalence import (
    ad_weight,
    calculate_tag_prevalence,
    find_differentiating_elements,
)


def _ad(ad_id, tags=None, video_tags=None, is_video=False, signal=None, track=None):
    return TaggedAd(
        id=ad_id,
        competitor_id="comp-1",
        competitor_track=track,
        launch_date=date(2026, 1, 5),
        is_video=is_video,
        signal_strength=signal,
        tags=tags or {},
        video_tags=video_tags or {},
    )


# ============================================================================
# calculate_tag_prevalence
# ============================================================================

class TestCalculateTagPrevalence:
    def test_empty_input_returns_empty_profile(self):
        assert calculate_tag_prevalence([]) == {}

    def test_unweighted_fractions(self):
        ads = [
            _ad("a", {"format_type": "ugc_talking_head"}),
            _ad("b", {"format_type": "ugc_talking_head"}),
            _ad("c", {"format_type": "static_image"}),
            _ad("d", {"format_type": "product_demo"}),
        ]
        profile = calculate_tag_prevalence(ads)
        assert profile["format_type"]["ugc_talking_head"] == pytest.approx(0.5)
        assert profile["format_type"]["static_image"] == pytest.approx(0.25)
        assert profile["format_type"]["motion_graphics"] == 0.0

    def test_each_populated_dimension_sums_to_one(self):
        ads = [
            _ad("a", {"format_type": "ugc_talking_head", "color_temperature": "warm"}, signal=30),
            _ad("b", {"format_type": "static_image", "color_temperature": "cool"}, signal=55),
            _ad("c", {"format_type": "static_image"}, signal=15),
        ]
        profile = calculate_tag_prevalence(ads, weighted=True)
        for dimension, values in profile.items():
            if values:
                assert math.isclose(sum(values.values()), 1.0, abs_tol=1e-9), dimension

    def test_untagged_dimension_is_empty_not_nan(self):
        profile = calculate_tag_prevalence([_ad("a", {"format_type": "static_image"})])
        assert profile["human_presence"] == {}

    def test_signal_weighting(self):
        ads = [
            _ad("a", {"format_type": "ugc_talking_head"}, signal=80),
            _ad("b", {"format_type": "static_image"}, signal=20),
        ]
        profile = calculate_tag_prevalence(ads, weighted=True)
        assert profile["format_type"]["ugc_talking_head"] == pytest.approx(0.8)
        assert profile["format_type"]["static_image"] == pytest.approx(0.2)

    def test_unscored_ads_weigh_one(self):
        ads = [
            _ad("a", {"format_type": "ugc_talking_head"}, signal=None),
            _ad("b", {"format_type": "static_image"}, signal=3),
        ]
        profile = calculate_tag_prevalence(ads, weighted=True)
        assert profile["format_type"]["ugc_talking_head"] == pytest.approx(0.25)

    def test_zero_total_weight_guarded(self):
        ads = [_ad("a", {"format_type": "static_image"}, signal=0)]
        profile = calculate_tag_prevalence(ads, weighted=True)
        assert profile["format_type"] == {}

    def test_video_dimensions_only_from_video_ads(self):
        ads = [
            _ad("a", {"format_type": "static_image"}, {"pacing": "mixed"}, is_video=False),
        ]
        assert calculate_tag_prevalence(ads)["pacing"] == {}

        ads.append(_ad("b", {"format_type": "static_image"}, {"pacing": "fast_cut_under_3s"}, is_video=True))
        profile = calculate_tag_prevalence(ads)
        assert profile["pacing"]["fast_cut_under_3s"] == pytest.approx(1.0)
        assert profile["pacing"]["mixed"] == 0.0

    def test_track_filter(self):
        ads = [
            _ad("a", {"format_type": "static_image"}, track="consolidator"),
            _ad("b", {"format_type": "product_demo"}, track="velocity_tester"),
        ]
        profile = calculate_tag_prevalence(ads, track_filter=TrackFilter.VELOCITY_TESTER)
        assert profile["format_type"]["product_demo"] == pytest.approx(1.0)
        assert calculate_tag_prevalence(ads, track_filter="all")["format_type"]["static_image"] == pytest.approx(0.5)

    def test_track_filter_with_no_matches(self):
        ads = [_ad("a", {"format_type": "static_image"}, track=None)]
        assert calculate_tag_prevalence(ads, track_filter="consolidator") == {}


class TestAdWeight:
    def test_unweighted_is_one(self):
        assert ad_weight(_ad("a", signal=75), weighted=False) == 1.0

    def test_weighted_uses_signal(self):
        assert ad_weight(_ad("a", signal=75), weighted=True) == 75.0


# ============================================================================
# find_differentiating_elements
# ============================================================================

class TestFindDifferentiatingElements:
    def test_opposite_directions_with_lift_four(self):
        survivors = {"format_type": {"ugc_talking_head": 0.8, "static_image": 0.2}}
        killed = {"format_type": {"ugc_talking_head": 0.2, "static_image": 0.8}}

        elements = find_differentiating_elements(survivors, killed)

        assert len(elements) == 2
        assert all(e.lift == pytest.approx(4.0) for e in elements)
        directions = {e.value: e.direction for e in elements}
        assert directions["ugc_talking_head"] == DifferentialDirection.SURVIVOR_HIGHER
        assert directions["static_image"] == DifferentialDirection.KILLED_HIGHER

    def test_lift_capped_when_smaller_side_is_zero(self):
        elements = find_differentiating_elements(
            {"format_type": {"ugc_talking_head": 0.5}},
            {"format_type": {"ugc_talking_head": 0.0}},
        )
        assert len(elements) == 1
        assert elements[0].lift == 10.0

    def test_lift_capped_when_value_missing_on_one_side(self):
        elements = find_differentiating_elements({}, {"human_presence": {"full_face": 0.4}})
        assert elements[0].lift == 10.0
        assert elements[0].direction == DifferentialDirection.KILLED_HIGHER

    def test_both_under_noise_floor_skipped(self):
        assert find_differentiating_elements(
            {"format_type": {"static_image": 0.005}},
            {"format_type": {"static_image": 0.0}},
        ) == []

    def test_below_min_lift_dropped(self):
        assert find_differentiating_elements(
            {"format_type": {"static_image": 0.28}},
            {"format_type": {"static_image": 0.2}},
        ) == []

    def test_exact_min_lift_kept(self):
        elements = find_differentiating_elements(
            {"format_type": {"static_image": 0.3}},
            {"format_type": {"static_image": 0.2}},
        )
        assert len(elements) == 1
        assert elements[0].lift == 1.5

    def test_never_returns_lift_below_threshold(self):
        survivors = {"format_type": {"a": 0.3, "b": 0.25, "c": 0.45}}
        killed = {"format_type": {"a": 0.25, "b": 0.45, "c": 0.3}}
        for element in find_differentiating_elements(survivors, killed):
            assert element.lift >= 1.5

    def test_sorted_by_lift_then_dimension(self):
        survivors = {
            "format_type": {"ugc_talking_head": 0.6},
            "color_temperature": {"warm": 0.6},
            "human_presence": {"full_face": 0.9},
        }
        killed = {
            "format_type": {"ugc_talking_head": 0.2},
            "color_temperature": {"warm": 0.2},
            "human_presence": {"full_face": 0.1},
        }
        elements = find_differentiating_elements(survivors, killed)
        assert [(e.dimension, e.lift) for e in elements] == [
            ("human_presence", 9.0),
            ("color_temperature", 3.0),
            ("format_type", 3.0),
        ]

    def test_custom_thresholds(self):
        thresholds = PrevalenceThresholds(noise_floor=0.01, min_lift=3.0, max_lift=5.0)
        elements = find_differentiating_elements(
            {"format_type": {"static_image": 0.5, "product_demo": 0.4}},
            {"format_type": {"static_image": 0.25, "product_demo": 0.0}},
            thresholds,
        )
        assert [(e.value, e.lift) for e in elements] == [("product_demo", 5.0)]
