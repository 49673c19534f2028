"""
Capture supervisor.

One CapturePipeline per live session owns the audio device, the
recorder, the segment clock, the ingestion queue and the event feed
subscription. Recorder callbacks carry the generation they were created
under and are ignored once a restart has moved the generation on.
"""

import asyncio
from collections import deque
from typing import Awaitable, Callable

import structlog

from live_insight.config import Settings, get_settings
from live_insight.core.clock import SegmentClock, monotonic_ms
from live_insight.core.ingestion_queue import IngestionQueue, QueuedSegment
from live_insight.core.reconciler import RealtimeReconciler
from live_insight.errors import (
    ConsentRequired,
    DeviceError,
    IngestionForwardFailed,
    PermissionRequired,
    TranscriptionUnavailable,
)
from live_insight.models.domain import CaptureState, DialoguePhase, TranscriptChunk
from live_insight.models.schemas import CaptureStatusResponse
from live_insight.services.devices import AudioDevice, AudioStream, PermissionProbe, Recorder, WakeLock
from live_insight.services.feed import FeedSubscription
from live_insight.services.transcription import TranscriptionFallbackChain
from live_insight.utils.latency import CHUNKS_DROPPED, CHUNKS_FORWARDED, RECORDER_RESTARTS
from live_insight.utils.logging import LogContext

logger = structlog.get_logger(__name__)

Forwarder = Callable[[str, TranscriptChunk, DialoguePhase], Awaitable[None]]


class CapturePipeline:
    """
    Capture lifecycle for one session: idle -> capturing -> stopped.

    `error` is reachable from any state on an unrecoverable device failure
    and is only left by building a new pipeline.
    """

    def __init__(
        self,
        session_id: str,
        device: AudioDevice,
        chain: TranscriptionFallbackChain,
        forwarder: Forwarder,
        permission: PermissionProbe,
        feed: FeedSubscription | None = None,
        reconciler: RealtimeReconciler | None = None,
        wake_lock: WakeLock | None = None,
        on_permission_prompt: Callable[[], None] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.session_id = session_id
        self.device = device
        self.chain = chain
        self.forwarder = forwarder
        self.permission = permission
        self.feed = feed
        self.reconciler = reconciler
        self.wake_lock = wake_lock
        self.on_permission_prompt = on_permission_prompt
        self.settings = settings or get_settings()
        self.clock = clock

        self.state = CaptureState.IDLE
        self.dialogue_phase = DialoguePhase.REIMAGINE
        self.segment_clock = SegmentClock(chunk_ms=self.settings.segment_interval_ms, clock=clock)
        self.queue = IngestionQueue(self._process)

        self.last_chunk_at = 0
        self.last_healthy_at = 0
        self.forwarded_count = 0
        self.dropped_count = 0
        self.restart_count = 0
        self.debug_trace: deque[str] = deque(maxlen=self.settings.debug_trace_size)

        self._stream: AudioStream | None = None
        self._recorder: Recorder | None = None
        self._clock_task: asyncio.Task | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._wake_lock_held = False

    @property
    def generation(self) -> int:
        return self.segment_clock.generation

    @property
    def capturing(self) -> bool:
        return self.state is CaptureState.CAPTURING

    def trace(self, message: str) -> None:
        """Append to the bounded debug trace, skipping consecutive repeats."""
        if self.debug_trace and self.debug_trace[-1] == message:
            return
        self.debug_trace.append(message)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, consent: bool) -> None:
        """
        Begin capturing.

        Raises:
            ConsentRequired: If consent has not been given
            PermissionRequired: If the microphone check has not passed
            DeviceError: If the audio device cannot be opened
        """
        if self.state is CaptureState.CAPTURING:
            return
        if self.state is CaptureState.ERROR:
            raise DeviceError("Capture is in an error state and needs a manual restart")
        if not consent:
            raise ConsentRequired()
        if not await self.permission.check():
            if self.on_permission_prompt is not None:
                self.on_permission_prompt()
            raise PermissionRequired()

        # Fresh run: empty queue, fallback provider re-armed
        self.queue.reset()
        self.chain.secondary_disabled = False
        now = self.clock()
        self.last_chunk_at = now
        self.last_healthy_at = now

        if self.feed is not None:
            self.feed.open()
            self.trace("Event feed opened")
        if self.reconciler is not None:
            # Embeddings cancelled by a previous stop
            self.reconciler.model.resume_enrichment()

        await self._acquire_wake_lock()

        # Open the device, then the first recorder generation
        try:
            self._stream = await self.device.open()
            self.segment_clock.begin()
            self._start_recorder()
        except DeviceError as e:
            self.fail(str(e))
            raise
        except Exception as e:
            self.fail(f"Audio device failed to open: {e}")
            raise DeviceError(str(e)) from e

        self.state = CaptureState.CAPTURING
        loop = asyncio.get_running_loop()
        self._clock_task = loop.create_task(self.segment_clock.run(self._tick))
        self._watchdog_task = loop.create_task(self._watchdog_loop())

        self.trace(f"Capture started ({self.device.mime_type or 'default'})")
        logger.info(
            "capture_started",
            session_id=self.session_id,
            generation=self.generation,
            dialogue_phase=self.dialogue_phase.value,
        )

    async def _acquire_wake_lock(self) -> None:
        if self.wake_lock is None:
            return
        try:
            self._wake_lock_held = await self.wake_lock.acquire()
        except Exception as e:
            self._wake_lock_held = False
            logger.warning("wake_lock_failed", session_id=self.session_id, error=str(e))
        if not self._wake_lock_held:
            self.trace("Wake lock unavailable")

    def stop(self) -> None:
        """
        Stop capturing.

        Synchronous and idempotent: cancels the segment clock and watchdog,
        drops queued chunks, closes the recorder, device and feed. Safe to
        call from a shutdown hook.
        """
        was_capturing = self.state is CaptureState.CAPTURING

        for task in (self._clock_task, self._watchdog_task):
            if task is not None and not task.done():
                task.cancel()
        self._clock_task = None
        self._watchdog_task = None

        self.queue.stop()
        self._close_recorder()
        self._stream = None
        self.device.close()
        if self.feed is not None:
            self.feed.close()
        if self.reconciler is not None:
            self.reconciler.model.cancel_enrichment()
        self._release_wake_lock()

        if self.state is not CaptureState.ERROR:
            self.state = CaptureState.STOPPED
        if was_capturing:
            self.trace("Capture stopped")
            logger.info(
                "capture_stopped",
                session_id=self.session_id,
                forwarded=self.forwarded_count,
                dropped=self.dropped_count,
                restarts=self.restart_count,
            )

    def _release_wake_lock(self) -> None:
        if not self._wake_lock_held or self.wake_lock is None:
            return
        self._wake_lock_held = False
        try:
            self.wake_lock.release()
        except Exception as e:
            logger.warning("wake_lock_release_failed", session_id=self.session_id, error=str(e))

    def fail(self, reason: str) -> None:
        """Move to the error state after an unrecoverable device failure."""
        logger.error("capture_failed", session_id=self.session_id, reason=reason)
        self.trace(f"Device error: {reason}")
        self.state = CaptureState.ERROR
        self.stop()

    # -------------------------------------------------------------------------
    # Recorder
    # -------------------------------------------------------------------------

    def _close_recorder(self) -> None:
        recorder, self._recorder = self._recorder, None
        if recorder is None:
            return
        try:
            recorder.close()
        except Exception as e:
            logger.warning("recorder_close_failed", session_id=self.session_id, error=str(e))

    def _start_recorder(self) -> int:
        """Replace the recorder on the current stream under a new generation."""
        if self._stream is None:
            raise DeviceError("No capture stream")
        generation = self.segment_clock.next_generation()
        self._close_recorder()
        recorder = self._stream.create_recorder(self.device.mime_type)
        recorder.start()
        self._recorder = recorder
        return generation

    def restart_recorder(self, cause: str = "manual") -> bool:
        """Tear down and recreate the recorder. Failures are logged, not raised."""
        try:
            generation = self._start_recorder()
        except Exception as e:
            self.trace("Recorder restart failed")
            logger.error("recorder_restart_failed", session_id=self.session_id, error=str(e))
            return False

        self.restart_count += 1
        RECORDER_RESTARTS.labels(cause=cause).inc()
        self.trace(f"Recorder restarted ({cause})")
        logger.info(
            "recorder_restarted", session_id=self.session_id, generation=generation, cause=cause
        )
        return True

    async def _tick(self) -> None:
        recorder = self._recorder
        if recorder is None or not self.capturing:
            return
        generation = self.generation
        audio = await recorder.flush()
        self.on_segment(generation, audio, recorder.mime_type)

    def on_segment(self, generation: int, audio: bytes, mime_type: str) -> bool:
        """
        Recorder completion callback.

        Returns True if the chunk was enqueued. Chunks from a stale
        generation, after stop, or below the size floor are discarded.
        """
        if not self.capturing or not self.segment_clock.is_current(generation):
            logger.debug(
                "stale_segment_dropped",
                session_id=self.session_id,
                generation=generation,
                current=self.generation,
            )
            return False
        if len(audio) < self.settings.min_chunk_bytes:
            return False

        now = self.clock()
        self.last_chunk_at = now
        window = self.segment_clock.window(now)
        self.queue.enqueue(
            QueuedSegment(
                audio=audio,
                mime_type=mime_type,
                start_ms=window.start_ms,
                end_ms=window.end_ms,
                generation=generation,
            )
        )
        return True

    # -------------------------------------------------------------------------
    # Watchdog
    # -------------------------------------------------------------------------

    async def _watchdog_loop(self) -> None:
        interval = self.settings.watchdog_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.watchdog_tick()
            except Exception as e:
                logger.error("watchdog_tick_failed", session_id=self.session_id, error=str(e))

    def watchdog_tick(self, now: int | None = None) -> bool:
        """
        Compare liveness counters against their thresholds.

        Forces one recorder restart and resets both counters when either
        is stale. Returns True if a restart was forced.
        """
        if not self.capturing:
            return False
        now = self.clock() if now is None else now

        stalled_chunks = bool(self.last_chunk_at) and now - self.last_chunk_at > self.settings.chunk_stall_ms
        stalled_health = (
            bool(self.last_healthy_at) and now - self.last_healthy_at > self.settings.health_stall_ms
        )
        if not (stalled_chunks or stalled_health):
            return False

        self.restart_recorder("chunk_stall" if stalled_chunks else "health_stall")
        self.last_chunk_at = now
        self.last_healthy_at = now
        return True

    # -------------------------------------------------------------------------
    # Queue processor
    # -------------------------------------------------------------------------

    async def _process(self, segment: QueuedSegment) -> None:
        with LogContext(session_id=self.session_id, generation=segment.generation):
            await self._transcribe_and_forward(segment)

    async def _transcribe_and_forward(self, segment: QueuedSegment) -> None:
        """Transcribe one queued chunk and forward it for ingestion."""
        # Transcribe
        try:
            chunk = await self.chain.transcribe(
                segment.audio, segment.mime_type, segment.start_ms, segment.end_ms
            )
        except TranscriptionUnavailable as e:
            self.dropped_count += 1
            CHUNKS_DROPPED.labels(reason="transcription_unavailable").inc()
            self.trace(str(e))
            logger.warning(
                "chunk_dropped",
                session_id=self.session_id,
                start_ms=segment.start_ms,
                reasons=e.reasons,
            )
            return

        if chunk is None:
            CHUNKS_DROPPED.labels(reason="silence").inc()
            self.trace("Primary provider returned an empty transcript (likely silence)")
            return

        # Stamp the phase now; the feed echo may come back without it
        phase = self.dialogue_phase
        if self.reconciler is not None:
            self.reconciler.remember_phase(
                chunk.start_time_ms, chunk.end_time_ms, chunk.source.value, chunk.text, phase
            )
        self.last_healthy_at = self.clock()

        # Forward for ingestion
        try:
            await self.forwarder(self.session_id, chunk, phase)
        except IngestionForwardFailed as e:
            logger.warning("forward_failed", session_id=self.session_id, error=str(e))
            return

        self.forwarded_count += 1
        self.last_healthy_at = self.clock()
        CHUNKS_FORWARDED.labels(source=chunk.source.value).inc()
        logger.info(
            "chunk_forwarded",
            session_id=self.session_id,
            source=chunk.source.value,
            start_ms=chunk.start_time_ms,
            end_ms=chunk.end_time_ms,
            chars=len(chunk.text),
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> CaptureStatusResponse:
        return CaptureStatusResponse(
            session_id=self.session_id,
            state=self.state,
            generation=self.generation,
            dialogue_phase=self.dialogue_phase,
            forwarded_count=self.forwarded_count,
            dropped_count=self.dropped_count,
            restart_count=self.restart_count,
            secondary_disabled=self.chain.secondary_disabled,
            debug_trace=list(self.debug_trace)[-20:],
        )
