"""
HTTP client for the upstream workshop server.

Covers the narrow contracts the live pipeline relies on: forwarding
transcript chunks for ingestion, the embedding endpoint and the
snapshot store. The realtime event feed lives in `services.feed`.
"""

from typing import Any

import httpx
import structlog

from live_insight.config import Settings, get_settings
from live_insight.errors import IngestionForwardFailed, SnapshotLoadInvalid
from live_insight.models.domain import DialoguePhase, TranscriptChunk
from live_insight.models.schemas import SnapshotSummary
from live_insight.utils.latency import latency_tracked

logger = structlog.get_logger(__name__)


class WorkshopApiClient:
    """
    Async client for the workshop server.

    One instance is shared by every live session; the underlying
    httpx.AsyncClient pools connections.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.workshop_api_url.rstrip("/"),
                timeout=self.settings.workshop_api_timeout_s,
            )
        return self._client

    @property
    def http(self) -> httpx.AsyncClient:
        return self._get_client()

    # =========================================================================
    # Ingestion
    # =========================================================================

    @latency_tracked("workshop_forward")
    async def forward_transcript(
        self,
        session_id: str,
        chunk: TranscriptChunk,
        dialogue_phase: DialoguePhase,
    ) -> None:
        """
        Forward a transcribed chunk for persistence.

        Raises:
            IngestionForwardFailed: On any transport error or non-2xx status
        """
        body = {
            "speakerId": None,
            "startTime": chunk.start_time_ms,
            "endTime": chunk.end_time_ms,
            "text": chunk.text,
            "confidence": chunk.confidence,
            "source": chunk.source.value,
            "dialoguePhase": dialogue_phase.value,
        }
        try:
            response = await self._get_client().post(f"/workshops/{session_id}/transcript", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise IngestionForwardFailed(f"ingestion returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise IngestionForwardFailed(f"ingestion request failed: {e}") from e

    # =========================================================================
    # Embeddings
    # =========================================================================

    @latency_tracked("workshop_embedding")
    async def embed(self, session_id: str, text: str) -> list[float] | None:
        """Embedding vector for text, or None if the server could not provide one."""
        t = (text or "").strip()
        if not t:
            return None
        try:
            response = await self._get_client().post(
                f"/admin/workshops/{session_id}/live/embedding",
                json={"text": t[: self.settings.embedding_max_chars]},
            )
            response.raise_for_status()
            embedding = response.json().get("embedding")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("workshop_embedding_failed", session_id=session_id, error=str(e))
            return None

        if not isinstance(embedding, list) or not embedding:
            return None
        return [float(x) for x in embedding]

    # =========================================================================
    # Snapshot store
    # =========================================================================

    def _snapshots_path(self, session_id: str) -> str:
        return f"/admin/workshops/{session_id}/live/snapshots"

    async def list_snapshots(self, session_id: str) -> list[SnapshotSummary]:
        response = await self._get_client().get(self._snapshots_path(session_id))
        response.raise_for_status()
        rows = response.json().get("snapshots") or []
        return [
            SnapshotSummary(
                id=str(r.get("id")),
                name=str(r.get("name") or ""),
                dialogue_phase=r.get("dialoguePhase"),
                created_at=r.get("createdAt"),
            )
            for r in rows
            if isinstance(r, dict) and r.get("id")
        ]

    async def save_snapshot(
        self,
        session_id: str,
        name: str,
        dialogue_phase: DialoguePhase,
        payload: dict[str, Any],
    ) -> SnapshotSummary:
        response = await self._get_client().post(
            self._snapshots_path(session_id),
            json={"name": name, "dialoguePhase": dialogue_phase.value, "payload": payload},
        )
        response.raise_for_status()
        row = response.json().get("snapshot") or {}
        logger.info("snapshot_saved", session_id=session_id, snapshot_id=row.get("id"), name=name)
        return SnapshotSummary(
            id=str(row.get("id") or ""),
            name=str(row.get("name") or name),
            dialogue_phase=row.get("dialoguePhase") or dialogue_phase.value,
            created_at=row.get("createdAt"),
        )

    async def get_snapshot_payload(self, session_id: str, snapshot_id: str) -> Any:
        """
        Fetch the opaque payload of a stored snapshot.

        Raises:
            SnapshotLoadInvalid: If the response carries no snapshot
            httpx.HTTPStatusError: On a non-2xx status
        """
        response = await self._get_client().get(f"{self._snapshots_path(session_id)}/{snapshot_id}")
        response.raise_for_status()
        snapshot = response.json().get("snapshot")
        if not isinstance(snapshot, dict):
            raise SnapshotLoadInvalid("Snapshot response is missing its payload")
        return snapshot.get("payload")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None
