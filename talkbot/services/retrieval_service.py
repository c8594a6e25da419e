from typing import List, Sequence

from talkbot.logging_config import get_logger
from talkbot.schemas.onboarding import QuestionAnswer
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.knowledge_service import KnowledgeSearch, format_knowledge_context

logger = get_logger("retrieval")

QUERY_SEPARATOR = "\n\n---\n\n"
HISTORY_TURNS_IN_QUERY = 2


def build_query_text(answers: Sequence[QuestionAnswer], prior_turns: Sequence, current_text: str) -> str:
    """Search query: onboarding Q&A, the last prior turns and the current message.

    ``prior_turns`` must not contain the current turn. Turns repeating the
    current text are skipped.
    """
    parts = []

    if answers:
        qa_lines = [f"Q: {qa.question}\nA: {qa.answer}" for qa in answers]
        parts.append("Onboarding context:\n" + "\n".join(qa_lines))

    current = current_text.strip()
    recent = [turn for turn in prior_turns if turn.content.strip() != current][-HISTORY_TURNS_IN_QUERY:]
    if recent:
        history_lines = [f"{turn.role}: {turn.content}" for turn in recent]
        parts.append("Recent conversation history:\n" + "\n".join(history_lines))

    parts.append(f"Current user message:\nuser: {current}")
    return QUERY_SEPARATOR.join(parts)


class RetrievalEngine:
    """Builds RAG context for a turn. Never raises; failures mean no context."""

    def __init__(self, knowledge: KnowledgeSearch):
        self.knowledge = knowledge

    def retrieve(
        self,
        persona: PersonaProfile,
        answers: Sequence[QuestionAnswer],
        prior_turns: Sequence,
        current_text: str,
    ) -> List[dict]:
        query = build_query_text(answers, prior_turns, current_text)
        try:
            return self.knowledge.search(query, persona)
        except Exception as exc:
            logger.warning(
                "Knowledge retrieval failed, continuing without context",
                extra={
                    "context": {
                        "persona_id": persona.id,
                        "error_type": type(exc).__name__,
                        "endpoint": getattr(exc, "endpoint", None),
                        "latency_ms": getattr(exc, "latency_ms", None),
                    }
                },
            )
            return []

    def context_for(self, persona, answers, prior_turns, current_text) -> str:
        return format_knowledge_context(self.retrieve(persona, answers, prior_turns, current_text))
