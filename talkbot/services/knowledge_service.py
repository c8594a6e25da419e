import time
from typing import List

import httpx

from talkbot.config import Settings
from talkbot.logging_config import get_logger
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.errors import UpstreamError
from talkbot.services.llm.base import LLMProvider

logger = get_logger("knowledge_service")

SEARCH_ENDPOINT = "qdrant/search"


class KnowledgeSearch:
    """Persona-scoped nearest-neighbour search over the Qdrant collection."""

    def __init__(self, settings: Settings, provider: LLMProvider):
        self.settings = settings
        self.provider = provider

    def _headers(self) -> dict:
        if self.settings.qdrant_api_key:
            return {"api-key": self.settings.qdrant_api_key}
        return {}

    def search(self, query: str, persona: PersonaProfile) -> List[dict]:
        """Embed the query and search the collection. Raises UpstreamError on any failure."""
        embedding = self.provider.embed(query, persona.embedding_model)

        url = f"{self.settings.qdrant_url.rstrip('/')}/collections/{self.settings.qdrant_collection}/points/search"
        started = time.monotonic()
        try:
            with httpx.Client(timeout=self.settings.search_timeout_seconds) as client:
                response = client.post(
                    url,
                    headers=self._headers(),
                    json={
                        "vector": embedding.vector,
                        "limit": persona.rag_top_k,
                        "score_threshold": self.settings.rag_min_similarity,
                        "filter": {"must": [{"key": "metadata.persona_id", "match": {"value": persona.id}}]},
                        "with_payload": True,
                    },
                )
        except httpx.HTTPError as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            raise UpstreamError(f"Qdrant search failed: {exc}", endpoint=SEARCH_ENDPOINT, latency_ms=latency_ms) from exc

        latency_ms = int((time.monotonic() - started) * 1000)
        if response.status_code != 200:
            raise UpstreamError(
                f"Qdrant search error: {response.status_code} - {response.text[:200]}",
                endpoint=SEARCH_ENDPOINT,
                latency_ms=latency_ms,
                status=response.status_code,
            )

        data = response.json()
        results = []
        dropped = 0
        for point in data.get("result", []):
            payload = point.get("payload") or {}
            metadata = payload.get("metadata") or {}
            # Server-side filter is not trusted alone
            if str(metadata.get("persona_id")) != str(persona.id):
                dropped += 1
                continue
            content = payload.get("content")
            if not content:
                continue
            results.append(
                {
                    "score": point.get("score"),
                    "text": content,
                    "document_id": metadata.get("document_id"),
                    "metadata": metadata,
                }
            )

        if dropped:
            logger.warning(
                "Dropped knowledge points of another persona",
                extra={"context": {"persona_id": persona.id, "dropped": dropped}},
            )
        logger.info(
            f"Knowledge search: found {len(results)} results",
            extra={"context": {"persona_id": persona.id, "latency_ms": latency_ms}},
        )
        return results


def format_knowledge_context(results: List[dict]) -> str:
    """Format knowledge search results for LLM context."""
    if not results:
        return ""

    texts = [r.get("text") for r in results if r.get("text")]
    return "\n\n".join(f"{i}. {text}" for i, text in enumerate(texts, 1))
