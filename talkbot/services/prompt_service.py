"""Prompt assembly and the completion call.

The system message carries the persona prompt, the room's onboarding answers
and any retrieved knowledge, each block fenced by delimiter lines. History
follows in chronological order and already contains the current user turn.
"""

from typing import List, Optional, Sequence

from talkbot.logging_config import get_logger
from talkbot.schemas.onboarding import MENTION_ALWAYS, QuestionAnswer
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.errors import UpstreamError
from talkbot.services.llm.base import LLMProvider, LLMResponse
from talkbot.services.result import Result

logger = get_logger("prompt_service")

ONBOARDING_BLOCK_START = "--- Room Onboarding Context ---"
ONBOARDING_BLOCK_END = "--- End of Onboarding Context ---"
KNOWLEDGE_BLOCK_START = "--- Retrieved Knowledge ---"
KNOWLEDGE_BLOCK_END = "--- End of Retrieved Knowledge ---"


def onboarding_block(
    persona: PersonaProfile,
    is_group: bool,
    mention_mode: str,
    answers: Sequence[QuestionAnswer],
) -> str:
    lines = [ONBOARDING_BLOCK_START]
    lines.append(f"Chat type: {'group chat' if is_group else 'direct message'}")
    if not is_group or mention_mode == MENTION_ALWAYS:
        lines.append("Interaction style: respond to every message")
    else:
        lines.append(f"Interaction style: respond only when mentioned with {persona.mention_name}")
    for qa in answers:
        lines.append(f"Q: {qa.question}")
        lines.append(f"A: {qa.answer}")
    lines.append(ONBOARDING_BLOCK_END)
    return "\n".join(lines)


def knowledge_block(knowledge_context: str) -> str:
    return "\n".join([KNOWLEDGE_BLOCK_START, knowledge_context.strip(), KNOWLEDGE_BLOCK_END])


def history_messages(turns: Sequence) -> List[dict]:
    """Chronological user/assistant messages; system turns are left out."""
    messages = []
    for turn in turns:
        if turn.role == "system":
            continue
        role = "assistant" if turn.role == "assistant" else "user"
        messages.append({"role": role, "content": turn.content})
    return messages


class PromptComposer:
    def compose(
        self,
        persona: PersonaProfile,
        *,
        is_group: bool,
        mention_mode: str,
        answers: Sequence[QuestionAnswer],
        knowledge_context: str,
        history: Sequence,
    ) -> List[dict]:
        sections = [persona.system_prompt.strip()]
        sections.append(onboarding_block(persona, is_group, mention_mode, answers))
        if knowledge_context and knowledge_context.strip():
            sections.append(knowledge_block(knowledge_context))

        messages = [{"role": "system", "content": "\n\n".join(sections)}]
        messages.extend(history_messages(history))
        return messages


class CompletionClient:
    """Sends the composed prompt with the persona's generation parameters."""

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    def complete(self, persona: PersonaProfile, messages: List[dict], model: Optional[str] = None) -> Result[LLMResponse]:
        try:
            response = self.provider.generate(
                messages=messages,
                model=model or persona.default_model,
                temperature=persona.temperature,
                max_tokens=persona.max_tokens,
                top_p=persona.top_p,
            )
        except UpstreamError as exc:
            logger.error(
                "Completion failed",
                extra={
                    "context": {
                        "persona_id": persona.id,
                        "endpoint": exc.endpoint,
                        "latency_ms": exc.latency_ms,
                        "status": exc.status,
                    }
                },
            )
            return Result.from_error(exc)
        return Result.success(response)
