from talkbot.services.llm.base import EmbeddingResponse, LLMProvider, LLMResponse
from talkbot.services.llm.openai_provider import OpenAICompatibleProvider

__all__ = ["LLMProvider", "LLMResponse", "EmbeddingResponse", "OpenAICompatibleProvider"]
