"""
Live session registry.

Each workshop session gets exactly one device, model, reconciler and
capture pipeline. The registry builds them on first use and tears them
all down on application shutdown.
"""

import asyncio
from dataclasses import dataclass, field

import structlog

from live_insight.config import Settings, get_settings
from live_insight.core.capture import CapturePipeline
from live_insight.core.model import LiveModel
from live_insight.core.reconciler import RealtimeReconciler
from live_insight.core.themes import Embedder
from live_insight.errors import SessionNotFound
from live_insight.models.domain import CaptureState
from live_insight.models.schemas import WSStatusMessage
from live_insight.services.devices import MicrophoneCheck, NoWakeLock, WebSocketAudioDevice
from live_insight.services.embeddings import EmbeddingService
from live_insight.services.feed import FeedSubscription
from live_insight.services.transcription import TranscriptionFallbackChain, TranscriptionProvider
from live_insight.services.workshop_api import WorkshopApiClient

logger = structlog.get_logger(__name__)

# Messages held for a client that has not connected yet
OUTBOX_SIZE = 32


def _new_outbox() -> asyncio.Queue:
    return asyncio.Queue(maxsize=OUTBOX_SIZE)


def offer(outbox: asyncio.Queue, message: WSStatusMessage) -> bool:
    """Queue a message for the client; dropped when the outbox is full."""
    try:
        outbox.put_nowait(message)
    except asyncio.QueueFull:
        logger.debug("outbox_full", message_type=message.type)
        return False
    return True


@dataclass
class LiveSession:
    """Everything owned by one live workshop session."""

    session_id: str
    model: LiveModel
    reconciler: RealtimeReconciler
    device: WebSocketAudioDevice
    microphone: MicrophoneCheck
    pipeline: CapturePipeline
    outbox: asyncio.Queue = field(default_factory=_new_outbox)


class SessionRegistry:
    """Builds and tracks LiveSession instances by workshop id."""

    def __init__(
        self,
        workshop_api: WorkshopApiClient,
        primary: TranscriptionProvider,
        secondary: TranscriptionProvider,
        embedding_service: EmbeddingService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.workshop_api = workshop_api
        self.primary = primary
        self.secondary = secondary
        self.embedding_service = embedding_service
        self.settings = settings or get_settings()
        self._sessions: dict[str, LiveSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.pipeline.capturing)

    def _embedder(self, session_id: str) -> Embedder:
        if self.settings.embedding_provider == "openai" and self.embedding_service is not None:
            return self.embedding_service.embed_text

        async def embed(text: str) -> list[float] | None:
            return await self.workshop_api.embed(session_id, text)

        return embed

    def _build_pipeline(
        self,
        session_id: str,
        device: WebSocketAudioDevice,
        microphone: MicrophoneCheck,
        reconciler: RealtimeReconciler,
        outbox: asyncio.Queue,
    ) -> CapturePipeline:
        def prompt_permission() -> None:
            offer(
                outbox,
                WSStatusMessage(
                    type="error",
                    error="Microphone permission required",
                    data={"action": "mic_check"},
                ),
            )

        feed = FeedSubscription(
            self.workshop_api.http,
            session_id,
            reconciler.handle,
            reconnect_delay_s=self.settings.feed_reconnect_delay_s,
        )
        return CapturePipeline(
            session_id=session_id,
            device=device,
            chain=TranscriptionFallbackChain(self.primary, self.secondary),
            forwarder=self.workshop_api.forward_transcript,
            permission=microphone,
            feed=feed,
            reconciler=reconciler,
            wake_lock=NoWakeLock(),
            on_permission_prompt=prompt_permission,
            settings=self.settings,
        )

    def get_or_create(self, session_id: str) -> LiveSession:
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        model = LiveModel(session_id, settings=self.settings, embed=self._embedder(session_id))
        reconciler = RealtimeReconciler(model, pending_cap=self.settings.pending_phase_cap)
        device = WebSocketAudioDevice()
        microphone = MicrophoneCheck()
        outbox = _new_outbox()
        session = LiveSession(
            session_id=session_id,
            model=model,
            reconciler=reconciler,
            device=device,
            microphone=microphone,
            pipeline=self._build_pipeline(session_id, device, microphone, reconciler, outbox),
            outbox=outbox,
        )
        self._sessions[session_id] = session
        logger.info("live_session_created", session_id=session_id)
        return session

    def get(self, session_id: str) -> LiveSession:
        """
        Raises:
            SessionNotFound: If no session is registered under the id
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"No live session for workshop {session_id}")
        return session

    def reset_pipeline(self, session_id: str) -> CapturePipeline:
        """Replace a pipeline stuck in the error state; the model is kept."""
        session = self.get(session_id)
        if session.pipeline.state is not CaptureState.ERROR:
            return session.pipeline

        phase = session.pipeline.dialogue_phase
        session.pipeline.stop()
        session.device = WebSocketAudioDevice(mime_type=session.device.mime_type)
        session.pipeline = self._build_pipeline(
            session_id, session.device, session.microphone, session.reconciler, session.outbox
        )
        session.pipeline.dialogue_phase = phase
        logger.info("capture_pipeline_reset", session_id=session_id)
        return session.pipeline

    def stop_all(self) -> None:
        """Stop every pipeline. Used as the shutdown hook."""
        for session in self._sessions.values():
            try:
                session.pipeline.stop()
            except Exception as e:
                logger.error("session_stop_failed", session_id=session.session_id, error=str(e))
        logger.info("live_sessions_stopped", count=len(self._sessions))
