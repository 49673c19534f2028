"""
External service integrations for the live insight engine.
"""

from live_insight.services.embeddings import EmbeddingService
from live_insight.services.feed import FeedSubscription
from live_insight.services.transcription import (
    DeepgramProvider,
    TranscriptionFallbackChain,
    WhisperProvider,
)
from live_insight.services.workshop_api import WorkshopApiClient

__all__ = [
    "DeepgramProvider",
    "EmbeddingService",
    "FeedSubscription",
    "TranscriptionFallbackChain",
    "WhisperProvider",
    "WorkshopApiClient",
]
