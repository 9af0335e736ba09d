"""
CreativeTracker - Competitor Creative Intelligence Analytics

Turns periodically-synced, taxonomy-tagged competitor ads into signals:
trending attributes, cross-competitor convergence, brand gaps, and
validated winners from ad survival cohorts.
"""

__version__ = "1.0.0"
__author__ = "CreativeTracker Team"
