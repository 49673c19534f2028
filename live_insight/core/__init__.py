"""
Capture and semantic pipeline components.
"""

from live_insight.core.capture import CapturePipeline
from live_insight.core.clock import SegmentClock
from live_insight.core.dependencies import DependencyInferenceEngine
from live_insight.core.ingestion_queue import IngestionQueue, QueuedSegment
from live_insight.core.model import LiveModel
from live_insight.core.readiness import RevealLatch, evaluate_readiness
from live_insight.core.reconciler import RealtimeReconciler
from live_insight.core.snapshot import Snapshot, decode_snapshot, encode_snapshot
from live_insight.core.themes import ThemeClusteringEngine

__all__ = [
    "CapturePipeline",
    "DependencyInferenceEngine",
    "IngestionQueue",
    "LiveModel",
    "QueuedSegment",
    "RealtimeReconciler",
    "RevealLatch",
    "SegmentClock",
    "Snapshot",
    "ThemeClusteringEngine",
    "decode_snapshot",
    "encode_snapshot",
    "evaluate_readiness",
]
