"""
Audio device seam.

The capturing client streams encoded audio frames over a WebSocket;
this module turns those frames into the device, stream and recorder
objects the capture pipeline drives. The permission check and screen
wake lock are client-side concerns reported back to the server.
"""

import asyncio
from typing import Protocol

import structlog

from live_insight.errors import DeviceError

logger = structlog.get_logger(__name__)

DEFAULT_MIME_TYPE = "audio/webm;codecs=opus"


class Recorder(Protocol):
    """Collects audio from a live stream into chunk-sized buffers."""

    mime_type: str

    def start(self) -> None: ...

    async def flush(self) -> bytes: ...

    def close(self) -> None: ...


class AudioStream(Protocol):
    def create_recorder(self, mime_type: str) -> Recorder: ...


class AudioDevice(Protocol):
    """A microphone that can be opened once per capture."""

    mime_type: str

    async def open(self) -> AudioStream: ...

    def close(self) -> None: ...


class PermissionProbe(Protocol):
    async def check(self) -> bool: ...


class WakeLock(Protocol):
    async def acquire(self) -> bool: ...

    def release(self) -> None: ...


class BufferRecorder:
    """
    Recorder over a frame-fed stream.

    `flush()` hands back everything received since the previous flush and
    keeps recording, so there is no gap between chunks. Containers such as
    WebM only carry their header in the first frame, which is prepended
    to every later chunk so each one decodes on its own.
    """

    def __init__(self, stream: "FrameAudioStream", mime_type: str) -> None:
        self.stream = stream
        self.mime_type = mime_type
        self._buffer = bytearray()
        self._recording = False

    @property
    def recording(self) -> bool:
        return self._recording

    def start(self) -> None:
        self._recording = True
        self.stream.attach(self)

    def write(self, frame: bytes) -> None:
        if self._recording:
            self._buffer.extend(frame)

    async def flush(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        header = self.stream.header
        if data and header and not data.startswith(header):
            data = header + data
        return data

    def close(self) -> None:
        self._recording = False
        self._buffer.clear()
        self.stream.detach(self)


class FrameAudioStream:
    """Fan-out of incoming frames to every attached recorder."""

    def __init__(self) -> None:
        self.header: bytes = b""
        self._recorders: list[BufferRecorder] = []
        self.frames = 0

    def attach(self, recorder: BufferRecorder) -> None:
        if recorder not in self._recorders:
            self._recorders.append(recorder)

    def detach(self, recorder: BufferRecorder) -> None:
        if recorder in self._recorders:
            self._recorders.remove(recorder)

    def push(self, frame: bytes) -> None:
        if not frame:
            return
        if not self.header:
            self.header = bytes(frame)
        self.frames += 1
        for recorder in list(self._recorders):
            recorder.write(frame)

    def create_recorder(self, mime_type: str) -> BufferRecorder:
        return BufferRecorder(self, mime_type)


class WebSocketAudioDevice:
    """
    Audio device fed by a client WebSocket.

    Frames pushed before `open()` are discarded. A client-reported device
    failure makes the device unusable until a new one is created.
    """

    def __init__(self, mime_type: str = DEFAULT_MIME_TYPE) -> None:
        self.mime_type = mime_type
        self._stream: FrameAudioStream | None = None
        self._error: str | None = None
        self._connected = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def error(self) -> str | None:
        return self._error

    def client_connected(self, mime_type: str | None = None) -> None:
        if mime_type:
            self.mime_type = mime_type
        self._connected.set()

    def client_disconnected(self) -> None:
        self._connected.clear()

    async def open(self) -> FrameAudioStream:
        if self._error:
            raise DeviceError(self._error)
        if self._stream is None:
            self._stream = FrameAudioStream()
            logger.info("audio_device_opened", mime_type=self.mime_type)
        return self._stream

    def push(self, frame: bytes) -> None:
        if self._stream is not None and self._error is None:
            self._stream.push(frame)

    def fail(self, reason: str) -> None:
        self._error = reason or "Audio device error"
        logger.error("audio_device_failed", reason=self._error)

    def close(self) -> None:
        if self._stream is not None:
            logger.info("audio_device_closed", frames=self._stream.frames)
        self._stream = None


class MicrophoneCheck:
    """Result of the client's side-channel microphone test."""

    def __init__(self) -> None:
        self._passed = False

    def record(self, ok: bool) -> None:
        self._passed = bool(ok)
        logger.info("microphone_check_recorded", ok=self._passed)

    async def check(self) -> bool:
        return self._passed


class NoWakeLock:
    """Wake lock for hosts without one; acquiring always reports unsupported."""

    async def acquire(self) -> bool:
        return False

    def release(self) -> None:
        return None
