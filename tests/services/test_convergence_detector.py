"""
Tests for ConvergenceDetector: confidence curve, classification bands,
per-value convergence, and alert detection against earlier snapshots.
"""

from datetime import date, timedelta

import pytest

from conftest import FakeSupabase, make_ad_row, make_tag_row
from creativetracker.services.creative_intelligence.convergence_detector import ConvergenceDetector
from creativetracker.services.creative_intelligence.models import (
    CompetitorInfo,
    ConvergenceClassification,
    TaggedAd,
)

BRAND_ID = "brand-1"
CURRENT_START = date(2026, 2, 1)
PRIOR_START = date(2026, 1, 2)
ANALYSIS_DATE = date(2026, 3, 3)  # current window starts 2026-02-01

COMPETITORS = [
    CompetitorInfo(id="comp-1", name="Bigco", track="consolidator"),
    CompetitorInfo(id="comp-2", name="Megacorp", track="consolidator"),
    CompetitorInfo(id="comp-3", name="Acme", track="velocity_tester"),
]


def _ad(ad_id, competitor_id, launch, format_type=None):
    return TaggedAd(
        id=ad_id,
        competitor_id=competitor_id,
        launch_date=launch,
        tags={"format_type": format_type} if format_type else {},
    )


def _shifting_ads(competitor_ids=("comp-1", "comp-2", "comp-3")):
    """Each competitor moves from static_image (prior) to ugc_talking_head (current)."""
    ads = []
    for cid in competitor_ids:
        ads.append(_ad(f"{cid}-old", cid, date(2026, 1, 10), "static_image"))
        ads.append(_ad(f"{cid}-new", cid, date(2026, 2, 10), "ugc_talking_head"))
    return ads


@pytest.fixture
def detector():
    return ConvergenceDetector(FakeSupabase())


# ============================================================================
# calculate_confidence / classify_convergence
# ============================================================================

class TestCalculateConfidence:
    def test_zero_and_negative(self, detector):
        assert detector.calculate_confidence(0) == 0
        assert detector.calculate_confidence(-3) == 0

    def test_strictly_increasing_mid_range(self, detector):
        assert detector.calculate_confidence(3) < detector.calculate_confidence(5) < detector.calculate_confidence(8)

    def test_known_values(self, detector):
        assert detector.calculate_confidence(3) == pytest.approx(0.5477, abs=1e-4)
        assert detector.calculate_confidence(5) == pytest.approx(0.7071, abs=1e-4)

    def test_saturates(self, detector):
        assert detector.calculate_confidence(10) == 1.0
        assert detector.calculate_confidence(40) == 1.0

    def test_bounded_and_monotonic(self, detector):
        values = [detector.calculate_confidence(n) for n in range(0, 30)]
        assert all(0 <= v <= 1 for v in values)
        assert values == sorted(values)


class TestClassifyConvergence:
    @pytest.mark.parametrize("ratio,cross_track,expected", [
        (0.6, True, ConvergenceClassification.STRONG_CONVERGENCE),
        (1.0, True, ConvergenceClassification.STRONG_CONVERGENCE),
        (0.6, False, ConvergenceClassification.MODERATE_CONVERGENCE),
        (0.59, False, ConvergenceClassification.EMERGING_PATTERN),
        (0.59, True, ConvergenceClassification.EMERGING_PATTERN),
        (0.4, False, ConvergenceClassification.EMERGING_PATTERN),
        (0.39, False, ConvergenceClassification.NO_CONVERGENCE),
        (0.39, True, ConvergenceClassification.NO_CONVERGENCE),
        (0.0, False, ConvergenceClassification.NO_CONVERGENCE),
    ])
    def test_bands(self, detector, ratio, cross_track, expected):
        assert detector.classify_convergence(ratio, cross_track) == expected


# ============================================================================
# calculate_convergence
# ============================================================================

class TestCalculateConvergence:
    def test_cross_track_strong_convergence(self, detector):
        element = detector.calculate_convergence(
            _shifting_ads(), COMPETITORS, "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START
        )

        assert element.convergence_ratio == 1.0
        assert element.cross_track is True
        assert element.classification == ConvergenceClassification.STRONG_CONVERGENCE
        assert element.adjusted_score == 1.0
        assert element.competitors_increasing == 3
        assert element.total_competitors == 3
        assert element.track_a_increasing == 2
        assert element.track_b_increasing == 1
        assert element.confidence == pytest.approx(0.5477, abs=1e-4)
        assert element.is_new_alert is False

    def test_single_track_is_moderate(self, detector):
        element = detector.calculate_convergence(
            _shifting_ads(("comp-1", "comp-2")), COMPETITORS[:2],
            "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START,
        )
        assert element.cross_track is False
        assert element.classification == ConvergenceClassification.MODERATE_CONVERGENCE
        assert element.adjusted_score == element.convergence_ratio == 1.0

    def test_adjusted_score_rewards_cross_track(self, detector):
        ads = _shifting_ads(("comp-1", "comp-3"))
        # comp-2 active but not adopting
        ads.append(_ad("comp-2-new", "comp-2", date(2026, 2, 12), "static_image"))
        ads.append(_ad("comp-4-new", "comp-4", date(2026, 2, 12), "static_image"))
        competitors = COMPETITORS + [CompetitorInfo(id="comp-4", name="Tiny", track="velocity_tester")]

        element = detector.calculate_convergence(
            ads, competitors, "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START
        )

        assert element.convergence_ratio == 0.5
        assert element.cross_track is True
        assert element.adjusted_score == 0.75
        assert element.classification == ConvergenceClassification.EMERGING_PATTERN

    def test_competitor_without_current_ads_excluded(self, detector):
        ads = _shifting_ads(("comp-1", "comp-3"))
        ads.append(_ad("comp-2-old", "comp-2", date(2026, 1, 10), "static_image"))

        element = detector.calculate_convergence(
            ads, COMPETITORS, "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START
        )

        assert element.total_competitors == 2
        assert element.convergence_ratio == 1.0
        assert {c.competitor_id for c in element.competitors} == {"comp-1", "comp-3"}

    def test_no_current_activity(self, detector):
        ads = [_ad("old", "comp-1", date(2026, 1, 10), "static_image")]
        element = detector.calculate_convergence(
            ads, COMPETITORS, "format_type", "static_image", CURRENT_START, PRIOR_START
        )
        assert element.total_competitors == 0
        assert element.convergence_ratio == 0.0
        assert element.classification == ConvergenceClassification.NO_CONVERGENCE

    def test_new_usage_without_prior_ads_counts_as_increasing(self, detector):
        ads = [_ad("new", "comp-1", date(2026, 2, 10), "product_demo")]
        element = detector.calculate_convergence(
            ads, COMPETITORS[:1], "format_type", "product_demo", CURRENT_START, PRIOR_START
        )
        adoption = element.competitors[0]
        assert adoption.increasing is True
        assert adoption.previous_prevalence == 0.0
        assert adoption.velocity_percent == 1.0

    def test_unclassified_track_never_makes_cross_track(self, detector):
        competitors = [
            CompetitorInfo(id="comp-1", name="Bigco", track="consolidator"),
            CompetitorInfo(id="comp-2", name="Nameless", track=None),
        ]
        element = detector.calculate_convergence(
            _shifting_ads(("comp-1", "comp-2")), competitors,
            "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START,
        )
        assert element.cross_track is False
        assert element.competitors[1].track == "unclassified"

    def test_example_ads_capped(self, detector):
        ads = [_ad(f"new-{i}", "comp-1", date(2026, 2, 10), "ugc_talking_head") for i in range(5)]
        element = detector.calculate_convergence(
            ads, COMPETITORS[:1], "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START
        )
        assert element.competitors[0].example_ad_ids == ["new-0", "new-1", "new-2"]

    def test_prior_window_bounds(self, detector):
        # launched before the prior window: ignored entirely
        ads = [
            _ad("ancient", "comp-1", PRIOR_START - timedelta(days=1), "ugc_talking_head"),
            _ad("new", "comp-1", date(2026, 2, 10), "ugc_talking_head"),
        ]
        element = detector.calculate_convergence(
            ads, COMPETITORS[:1], "format_type", "ugc_talking_head", CURRENT_START, PRIOR_START
        )
        assert element.competitors[0].previous_prevalence == 0.0
        assert element.competitors_increasing == 1


# ============================================================================
# analyze_creative_convergence
# ============================================================================

def _convergence_tables(extra_snapshots=None, competitors=COMPETITORS):
    ads, tags = [], []
    for competitor in competitors:
        for suffix, launch, format_type in (("old", "2026-01-10", "static_image"), ("new", "2026-02-10", "ugc_talking_head")):
            ad_id = f"{competitor.id}-{suffix}"
            ads.append(make_ad_row(ad_id, competitor.id, launch, competitor_track=competitor.track))
            tags.append(make_tag_row(ad_id, format_type=format_type))

    return {
        "client_brands": [{"id": BRAND_ID, "name": "Brand", "user_id": "user-1"}],
        "competitors": [
            {"id": c.id, "name": c.name, "track": c.track, "brand_id": BRAND_ID} for c in competitors
        ],
        "ads": ads,
        "creative_tags": tags,
        "convergence_snapshots": list(extra_snapshots or []),
    }


def _snapshot_row(snapshot_date, classification):
    return {
        "brand_id": BRAND_ID,
        "snapshot_date": snapshot_date,
        "dimension": "format_type",
        "value": "ugc_talking_head",
        "classification": classification,
    }


class TestAnalyzeCreativeConvergence:
    @pytest.mark.asyncio
    async def test_returns_none_for_unknown_brand(self):
        detector = ConvergenceDetector(FakeSupabase(_convergence_tables()))
        assert await detector.analyze_creative_convergence("missing", ANALYSIS_DATE) is None

    @pytest.mark.asyncio
    async def test_first_run_raises_alert(self):
        db = FakeSupabase(_convergence_tables())
        detector = ConvergenceDetector(db)

        result = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)

        assert result.competitive_set == "Brand Competitors"
        assert result.total_competitors == 3
        assert result.confidence == pytest.approx(0.5477, abs=1e-4)
        assert [(e.dimension, e.value) for e in result.strong_convergences] == [("format_type", "ugc_talking_head")]
        assert result.moderate_convergences == []
        assert result.emerging_patterns == []
        assert len(result.market_shift_alerts) == 1
        assert result.market_shift_alerts[0].is_new_alert is True

        rows = db.rows("convergence_snapshots")
        assert result.snapshots_saved == 1
        assert len(rows) == 1
        assert rows[0]["classification"] == "STRONG_CONVERGENCE"
        assert rows[0]["is_new_alert"] is True
        assert rows[0]["track_a_increasing"] == 2
        assert rows[0]["track_b_increasing"] == 1
        assert len(rows[0]["competitor_details"]) == 3

    @pytest.mark.asyncio
    async def test_same_day_rerun_keeps_alert(self):
        db = FakeSupabase(_convergence_tables())
        detector = ConvergenceDetector(db)

        await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)
        second = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)

        assert len(db.rows("convergence_snapshots")) == 1
        assert len(second.market_shift_alerts) == 1

    @pytest.mark.asyncio
    async def test_known_convergence_not_realerted(self):
        db = FakeSupabase(_convergence_tables())
        detector = ConvergenceDetector(db)

        await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)
        next_day = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE + timedelta(days=1))

        assert len(next_day.strong_convergences) == 1
        assert next_day.market_shift_alerts == []
        assert next_day.strong_convergences[0].is_new_alert is False
        assert len(db.rows("convergence_snapshots")) == 2

    @pytest.mark.asyncio
    async def test_earlier_emerging_pattern_still_alerts(self):
        earlier = {
            "brand_id": BRAND_ID,
            "snapshot_date": "2026-02-20",
            "dimension": "format_type",
            "value": "ugc_talking_head",
            "classification": "EMERGING_PATTERN",
        }
        detector = ConvergenceDetector(FakeSupabase(_convergence_tables([earlier])))
        result = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)
        assert len(result.market_shift_alerts) == 1

    @pytest.mark.asyncio
    async def test_escalation_from_moderate_to_strong_alerts(self):
        earlier = _snapshot_row("2026-02-20", "MODERATE_CONVERGENCE")
        detector = ConvergenceDetector(FakeSupabase(_convergence_tables([earlier])))

        result = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)

        assert [(e.value, e.is_new_alert) for e in result.strong_convergences] == [("ugc_talking_head", True)]
        assert len(result.market_shift_alerts) == 1

    @pytest.mark.asyncio
    async def test_steady_moderate_not_realerted(self):
        earlier = _snapshot_row("2026-02-20", "MODERATE_CONVERGENCE")
        detector = ConvergenceDetector(FakeSupabase(_convergence_tables([earlier], COMPETITORS[:2])))

        result = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)

        assert [e.value for e in result.moderate_convergences] == ["ugc_talking_head"]
        assert result.market_shift_alerts == []

    @pytest.mark.asyncio
    async def test_moderate_after_strong_not_alerted(self):
        earlier = _snapshot_row("2026-02-20", "STRONG_CONVERGENCE")
        detector = ConvergenceDetector(FakeSupabase(_convergence_tables([earlier], COMPETITORS[:2])))

        result = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)

        assert len(result.moderate_convergences) == 1
        assert result.market_shift_alerts == []

    @pytest.mark.asyncio
    async def test_first_moderate_alerts(self):
        detector = ConvergenceDetector(FakeSupabase(_convergence_tables(competitors=COMPETITORS[:2])))
        result = await detector.analyze_creative_convergence(BRAND_ID, ANALYSIS_DATE)
        assert [e.value for e in result.market_shift_alerts] == ["ugc_talking_head"]
