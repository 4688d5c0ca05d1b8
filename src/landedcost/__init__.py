"""Landed-cost quote engine.

Effective-dated trade-rate store, import pipeline, rate resolution and
quote computation for cross-border shipments.
"""

__version__ = "0.1.0"
