"""
Transcription providers and the fallback chain.

Deepgram's prerecorded REST endpoint is the primary provider, OpenAI
Whisper the secondary. The chain tries them in order for each chunk,
accepts silence from the primary without falling back, and stops
calling the secondary for the rest of the session once it rejects our
credentials.
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import aiohttp
import openai
import structlog
from openai import AsyncOpenAI

from live_insight.config import Settings, get_settings
from live_insight.errors import ProviderAuthError, ProviderError, TranscriptionUnavailable
from live_insight.models.domain import TranscriptChunk, TranscriptSource
from live_insight.utils.latency import track_latency

logger = structlog.get_logger(__name__)

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"

MIME_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mp4": "mp4",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
}


def normalize_content_type(value: str | None) -> str:
    """`audio/webm;codecs=opus` -> `audio/webm`."""
    raw = (value or "").strip()
    if not raw:
        return "application/octet-stream"
    return raw.split(";", 1)[0].strip()


@dataclass(frozen=True)
class ProviderResult:
    """
    Outcome of one provider call.

    `silent` means the provider answered successfully with an empty
    transcript, i.e. the chunk held no speech.
    """

    text: str
    confidence: float | None = None
    silent: bool = False


class TranscriptionProvider(Protocol):
    """A speech-to-text backend for one audio chunk."""

    source: TranscriptSource

    async def transcribe(self, audio: bytes, mime_type: str) -> ProviderResult: ...

    async def close(self) -> None: ...


class DeepgramProvider:
    """Deepgram prerecorded transcription over aiohttp."""

    source = TranscriptSource.DEEPGRAM

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _params(self) -> dict[str, str]:
        s = self.settings
        return {
            "model": s.stt_model,
            "language": s.stt_language,
            "punctuate": str(s.stt_punctuate).lower(),
            "smart_format": str(s.stt_smart_format).lower(),
            "diarize": "false",
        }

    async def transcribe(self, audio: bytes, mime_type: str) -> ProviderResult:
        api_key = self.settings.deepgram_api_key.get_secret_value()
        if not api_key:
            raise ProviderError("deepgram", "DEEPGRAM_API_KEY is not set")

        session = self._get_session()
        try:
            async with session.post(
                DEEPGRAM_LISTEN_URL,
                params=self._params(),
                data=audio,
                headers={
                    "Authorization": f"Token {api_key}",
                    "Content-Type": normalize_content_type(mime_type),
                },
            ) as response:
                if response.status in (401, 403):
                    raise ProviderAuthError("deepgram", "credentials rejected", status=response.status)
                if response.status >= 400:
                    detail = (await response.text())[:200]
                    raise ProviderError(
                        "deepgram", f"HTTP {response.status}: {detail}", status=response.status
                    )
                payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ProviderError("deepgram", f"request failed: {e}") from e

        try:
            alt = payload["results"]["channels"][0]["alternatives"][0]
        except (KeyError, IndexError, TypeError):
            return ProviderResult(text="", silent=True)

        text = str(alt.get("transcript") or "").strip()
        confidence = alt.get("confidence")
        return ProviderResult(
            text=text,
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            silent=not text,
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class WhisperProvider:
    """OpenAI Whisper transcription."""

    source = TranscriptSource.WHISPER

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key.get_secret_value())
        return self._client

    async def transcribe(self, audio: bytes, mime_type: str) -> ProviderResult:
        content_type = normalize_content_type(mime_type)
        filename = f"chunk.{MIME_EXTENSIONS.get(content_type, 'webm')}"
        try:
            response = await self._get_client().audio.transcriptions.create(
                model=self.settings.whisper_model,
                file=(filename, audio, content_type),
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ProviderAuthError("whisper", "credentials rejected", status=e.status_code) from e
        except openai.APIStatusError as e:
            raise ProviderError("whisper", f"HTTP {e.status_code}", status=e.status_code) from e
        except openai.APIError as e:
            raise ProviderError("whisper", str(e)) from e

        # Whisper reports no confidence
        return ProviderResult(text=(response.text or "").strip())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None


class TranscriptionFallbackChain:
    """
    Primary then secondary provider, at most one fallback per chunk.

    The chain never retries a chunk. An auth failure from the secondary
    trips a breaker that lasts for the lifetime of the chain, which is
    one capture session.
    """

    def __init__(self, primary: TranscriptionProvider, secondary: TranscriptionProvider) -> None:
        self.primary = primary
        self.secondary = secondary
        self.secondary_disabled = False

    async def transcribe(
        self, audio: bytes, mime_type: str, start_ms: int, end_ms: int
    ) -> TranscriptChunk | None:
        """
        Transcribe one chunk.

        Returns None when the primary reports silence.

        Raises:
            TranscriptionUnavailable: If no provider produced text
        """
        reasons: dict[str, str] = {}
        primary_name = self.primary.source.value
        secondary_name = self.secondary.source.value

        # Primary first; silence ends the chunk without a fallback
        try:
            async with track_latency(f"transcribe_{primary_name}"):
                result = await self.primary.transcribe(audio, mime_type)
            if result.text:
                return self._chunk(result, self.primary.source, start_ms, end_ms)
            if result.silent:
                return None
            reasons[primary_name] = "no transcript"
        except asyncio.CancelledError:
            raise
        except ProviderError as e:
            reasons[primary_name] = str(e)
        except Exception as e:
            logger.warning("primary_provider_crashed", provider=primary_name, error=str(e))
            reasons[primary_name] = f"request failed: {e}"

        # One fallback attempt unless the breaker has tripped
        if self.secondary_disabled:
            reasons[secondary_name] = "disabled after authentication failure"
            raise TranscriptionUnavailable(reasons)

        try:
            async with track_latency(f"transcribe_{secondary_name}"):
                result = await self.secondary.transcribe(audio, mime_type)
            if result.text:
                return self._chunk(result, self.secondary.source, start_ms, end_ms)
            reasons[secondary_name] = "no transcript"
        except asyncio.CancelledError:
            raise
        except ProviderAuthError as e:
            self.secondary_disabled = True
            reasons[secondary_name] = str(e)
            # Stays off until the chain is rebuilt
            logger.warning("secondary_provider_disabled", provider=secondary_name, status=e.status)
        except ProviderError as e:
            reasons[secondary_name] = str(e)
        except Exception as e:
            logger.warning("secondary_provider_crashed", provider=secondary_name, error=str(e))
            reasons[secondary_name] = f"request failed: {e}"

        raise TranscriptionUnavailable(reasons)

    @staticmethod
    def _chunk(
        result: ProviderResult, source: TranscriptSource, start_ms: int, end_ms: int
    ) -> TranscriptChunk:
        return TranscriptChunk(
            start_time_ms=start_ms,
            end_time_ms=max(start_ms, end_ms),
            text=result.text,
            confidence=result.confidence,
            source=source,
        )

    async def close(self) -> None:
        await self.primary.close()
        await self.secondary.close()
