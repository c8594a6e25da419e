import time
from typing import List, Optional

import httpx

from talkbot.logging_config import get_logger
from talkbot.services.errors import UpstreamError
from talkbot.services.llm.base import EmbeddingResponse, LLMProvider, LLMResponse
from talkbot.services.usage_service import UsageRecorder

logger = get_logger("llm.openai")

CHAT_ENDPOINT = "chat/completions"
EMBEDDINGS_ENDPOINT = "embeddings"


class OpenAICompatibleProvider(LLMProvider):
    """Client for any OpenAI-compatible API (chat completions and embeddings)."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        default_model: str,
        default_embedding_model: str,
        completion_timeout: float = 60.0,
        embedding_timeout: float = 20.0,
        usage_recorder: Optional[UsageRecorder] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.default_embedding_model = default_embedding_model
        self.completion_timeout = completion_timeout
        self.embedding_timeout = embedding_timeout
        self.usage_recorder = usage_recorder

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _record(self, endpoint, model, tokens, latency_ms, success, error=None) -> None:
        if self.usage_recorder is None:
            return
        self.usage_recorder.record(endpoint, model, tokens, latency_ms, success, error)

    def _post(self, endpoint: str, payload: dict, timeout: float, model: str) -> tuple[dict, int]:
        """POST to the API; every outcome is recorded as usage, every failure raises UpstreamError."""
        started = time.monotonic()
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(f"{self.base_url}/{endpoint}", headers=self._headers(), json=payload)
        except httpx.TimeoutException as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            self._record(endpoint, model, None, latency_ms, False, f"timeout: {exc}")
            raise UpstreamError(f"{endpoint} timed out", endpoint=endpoint, latency_ms=latency_ms) from exc
        except httpx.HTTPError as exc:
            latency_ms = int((time.monotonic() - started) * 1000)
            self._record(endpoint, model, None, latency_ms, False, str(exc))
            raise UpstreamError(f"{endpoint} transport error: {exc}", endpoint=endpoint, latency_ms=latency_ms) from exc

        latency_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"{endpoint} response status: {response.status_code}")

        if response.status_code < 200 or response.status_code >= 300:
            error = f"HTTP {response.status_code}: {response.text[:500]}"
            self._record(endpoint, model, None, latency_ms, False, error)
            raise UpstreamError(
                f"{endpoint} error: {error}",
                endpoint=endpoint,
                latency_ms=latency_ms,
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            self._record(endpoint, model, None, latency_ms, False, "invalid JSON")
            raise UpstreamError(f"{endpoint} returned invalid JSON", endpoint=endpoint, latency_ms=latency_ms) from exc

        if not isinstance(data, dict):
            self._record(endpoint, model, None, latency_ms, False, "unexpected response shape")
            raise UpstreamError(
                f"{endpoint} returned {type(data).__name__}, expected an object",
                endpoint=endpoint,
                latency_ms=latency_ms,
            )

        return data, latency_ms

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 512,
        top_p: float = 0.9,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": top_p,
        }
        logger.debug(f"Completion request: model={model}, messages_count={len(messages)}")

        data, latency_ms = self._post(CHAT_ENDPOINT, payload, self.completion_timeout, model)

        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else None
        message = choice.get("message") if isinstance(choice, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        content = content.strip() if isinstance(content, str) else ""

        usage = _usage(data)
        tokens = _tokens(usage, "total_tokens")
        if not content:
            self._record(CHAT_ENDPOINT, model, tokens, latency_ms, False, "empty content")
            raise UpstreamError("Completion returned no content", endpoint=CHAT_ENDPOINT, latency_ms=latency_ms)

        self._record(CHAT_ENDPOINT, model, tokens, latency_ms, True)
        response_model = data.get("model")
        return LLMResponse(
            content=content,
            model=response_model if isinstance(response_model, str) else model,
            usage=usage,
            latency_ms=latency_ms,
        )

    def embed(self, text: str, model: Optional[str] = None) -> EmbeddingResponse:
        model = model or self.default_embedding_model
        payload = {"input": text, "model": model, "encoding_format": "float"}

        data, latency_ms = self._post(EMBEDDINGS_ENDPOINT, payload, self.embedding_timeout, model)

        items = data.get("data")
        item = items[0] if isinstance(items, list) and items else None
        vector = item.get("embedding") if isinstance(item, dict) else None
        usage = _usage(data)
        tokens = _tokens(usage, "total_tokens", "prompt_tokens")
        if not _is_vector(vector):
            self._record(EMBEDDINGS_ENDPOINT, model, tokens, latency_ms, False, "missing embedding")
            raise UpstreamError("Embedding response has no vector", endpoint=EMBEDDINGS_ENDPOINT, latency_ms=latency_ms)

        self._record(EMBEDDINGS_ENDPOINT, model, tokens, latency_ms, True)
        return EmbeddingResponse(vector=vector, model=model, usage=usage, latency_ms=latency_ms)


def _usage(data: dict) -> Optional[dict]:
    usage = data.get("usage")
    return usage if isinstance(usage, dict) else None


def _tokens(usage: Optional[dict], *keys: str) -> Optional[int]:
    if not usage:
        return None
    for key in keys:
        value = usage.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _is_vector(value) -> bool:
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
    )
