"""
Utility modules for the live insight engine.
"""

from live_insight.utils.latency import LatencyTracker, latency_tracked, track_latency
from live_insight.utils.logging import LogContext, setup_logging

__all__ = [
    "LatencyTracker",
    "LogContext",
    "latency_tracked",
    "track_latency",
    "setup_logging",
]
