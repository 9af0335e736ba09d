"""Creative Intelligence Service Package

Competitor creative analytics over taxonomy-tagged ads:
- Primitives: tag prevalence profiles and differential lift
- Lifecycle: breakout cohorts, winning patterns, cash-cow transitions
- Velocity: accelerating / declining attributes and track divergence
- Convergence: attributes several competitors adopt at once
- Gap: what competitors use that the brand does not
- Pipeline: runs one analyzer family across every brand
"""

from .convergence_detector import ConvergenceDetector
from .gap_analyzer import GapAnalyzer
from .helpers import StoreError
from .lifecycle_analyzer import LifecycleAnalyzer
from .models import EngineConfig
from .pipeline import CreativeIntelligencePipeline
from .velocity_tracker import VelocityTracker

__all__ = [
    "ConvergenceDetector",
    "CreativeIntelligencePipeline",
    "EngineConfig",
    "GapAnalyzer",
    "LifecycleAnalyzer",
    "StoreError",
    "VelocityTracker",
]
