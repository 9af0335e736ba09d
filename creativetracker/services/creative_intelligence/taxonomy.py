"""Creative attribute taxonomy shared by every analyzer.

Two closed taxonomies:
- Visual dimensions (creative_tags table) apply to every tagged ad.
- Video dimensions (video_tags table) apply only to video ads.

Tag rows coming out of the store are sanitized here (clean_tag_row) so the
analyzers can assume every value belongs to its dimension's value set.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


# =============================================================================
# Visual Taxonomy
# =============================================================================

TAXONOMY_DIMENSIONS: Dict[str, Tuple[str, ...]] = {
    "format_type": (
        "static_image", "ugc_talking_head", "product_demo", "motion_graphics",
        "lifestyle_photo", "before_after", "carousel_card", "screenshot_testimonial",
    ),
    "hook_type_visual": (
        "problem_agitation", "bold_claim", "question", "statistic",
        "curiosity_gap", "social_proof", "none",
    ),
    "human_presence": ("full_face", "partial_body", "hands_only", "no_human", "crowd_multiple"),
    "text_overlay_density": ("none", "minimal_headline_only", "moderate", "heavy_text_dominant"),
    "text_overlay_position": ("top", "center", "bottom", "split_top_bottom", "none"),
    "color_temperature": ("warm", "cool", "neutral", "high_contrast", "muted"),
    "background_style": ("solid_color", "gradient", "real_environment", "studio", "blurred"),
    "product_visibility": ("hero_center", "in_use", "secondary", "not_visible"),
    "cta_visual_style": ("button", "text_only", "overlay_banner", "end_card", "none"),
    "visual_composition": ("centered_single", "split_screen", "grid_collage", "full_bleed", "framed"),
    "brand_element_presence": ("logo_visible", "brand_colors_dominant", "neither", "both"),
    "emotion_energy_level": (
        "calm_aspirational", "urgent_high_energy", "educational_neutral",
        "emotional_storytelling", "humorous",
    ),
}

# =============================================================================
# Video Taxonomy
# =============================================================================

VIDEO_TAXONOMY_DIMENSIONS: Dict[str, Tuple[str, ...]] = {
    "script_structure": (
        "problem_solution", "testimonial_narrative", "listicle_tips",
        "demonstration", "story_arc", "no_script_music_only",
    ),
    "verbal_hook_type": (
        "question", "bold_claim", "statistic", "direct_address", "pain_point", "none_no_speech",
    ),
    "pacing": ("fast_cut_under_3s", "moderate_3_5s", "slow_single_shot", "mixed"),
    "audio_style": ("voiceover", "direct_to_camera", "music_only", "mixed_voice_and_music", "silent"),
    "video_duration_bucket": ("under_15s", "15_to_30s", "30_to_60s", "over_60s"),
    "narrative_arc": (
        "single_scene", "face_to_product", "product_to_result",
        "problem_to_solution", "testimonial_to_cta", "multi_scene_montage",
    ),
    "opening_frame": ("human_face", "text_hook", "product_closeup", "environment_scene", "brand_logo"),
}

ALL_DIMENSIONS: Dict[str, Tuple[str, ...]] = {**TAXONOMY_DIMENSIONS, **VIDEO_TAXONOMY_DIMENSIONS}

DIMENSION_KEYS: List[str] = list(TAXONOMY_DIMENSIONS)
VIDEO_DIMENSION_KEYS: List[str] = list(VIDEO_TAXONOMY_DIMENSIONS)

# Column lists for store selects
CREATIVE_TAG_COLUMNS = "ad_id, " + ", ".join(DIMENSION_KEYS)
VIDEO_TAG_COLUMNS = "ad_id, " + ", ".join(VIDEO_DIMENSION_KEYS)

# Competitor segmentation
TRACK_CONSOLIDATOR = "consolidator"
TRACK_VELOCITY_TESTER = "velocity_tester"
TRACKS = (TRACK_CONSOLIDATOR, TRACK_VELOCITY_TESTER)


def _dimensions_for(video: bool) -> Dict[str, Tuple[str, ...]]:
    return VIDEO_TAXONOMY_DIMENSIONS if video else TAXONOMY_DIMENSIONS


def validate_tag_set(tags: Any, video: bool = False) -> Tuple[bool, List[str]]:
    """Check that a tag set has every dimension with an allowed value.

    Args:
        tags: Candidate tag mapping.
        video: Validate against the video taxonomy instead of the visual one.

    Returns:
        (valid, errors) tuple.
    """
    if not isinstance(tags, Mapping):
        return False, ["Tags must be a non-null object"]

    errors: List[str] = []
    for key, allowed in _dimensions_for(video).items():
        if key not in tags:
            errors.append(f"Missing dimension: {key}")
            continue
        value = tags[key]
        if not isinstance(value, str) or value not in allowed:
            errors.append(
                f'Invalid value for {key}: "{value}". Must be one of: {", ".join(allowed)}'
            )

    return len(errors) == 0, errors


def clean_tag_row(row: Mapping[str, Any], video: bool = False) -> Dict[str, Optional[str]]:
    """Sanitize a raw creative_tags / video_tags row into a typed tag map.

    Keeps only the taxonomy's dimensions. A value outside its dimension's
    value set is replaced with None (untagged) and logged.

    Args:
        row: Raw store row (may include ad_id and other columns).
        video: Row comes from video_tags.

    Returns:
        Dict of dimension -> value or None, one entry per taxonomy dimension.
    """
    valid, _ = validate_tag_set(row, video)
    if valid:
        return {key: row[key] for key in _dimensions_for(video)}

    cleaned: Dict[str, Optional[str]] = {}
    for key, allowed in _dimensions_for(video).items():
        value = row.get(key)
        if value is not None and value not in allowed:
            logger.warning(
                f"Dropping invalid tag value {value!r} for {key} on ad {row.get('ad_id')}"
            )
            value = None
        cleaned[key] = value
    return cleaned


def get_duration_bucket(seconds: float) -> str:
    """Map a video duration to its video_duration_bucket value."""
    if seconds < 15:
        return "under_15s"
    if seconds < 30:
        return "15_to_30s"
    if seconds < 60:
        return "30_to_60s"
    return "over_60s"


def get_tag_value(ad: Any, dimension: str) -> Optional[str]:
    """Visual value for a dimension, else the video value when the ad is a video."""
    value = ad.tags.get(dimension)
    if value is None and ad.is_video:
        value = ad.video_tags.get(dimension)
    return value


def format_trait(dimension: str, value: str) -> str:
    """Human-readable trait label, e.g. 'ugc_talking_head (format_type)'."""
    return f"{value} ({dimension})"
