from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None
    latency_ms: int = 0

    @property
    def total_tokens(self) -> Optional[int]:
        if not self.usage:
            return None
        return self.usage.get("total_tokens")


@dataclass
class EmbeddingResponse:
    vector: List[float]
    model: str
    usage: Optional[dict] = None
    latency_ms: int = 0


class LLMProvider(ABC):
    """Chat completion and embedding backend."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 512,
        top_p: float = 0.9,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass

    @abstractmethod
    def embed(self, text: str, model: Optional[str] = None) -> EmbeddingResponse:
        """Embed a single text."""
        pass
