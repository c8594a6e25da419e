from types import SimpleNamespace

from talkbot.schemas.onboarding import QuestionAnswer
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.prompt_service import (
    KNOWLEDGE_BLOCK_END,
    KNOWLEDGE_BLOCK_START,
    ONBOARDING_BLOCK_END,
    ONBOARDING_BLOCK_START,
    PromptComposer,
)


def _persona() -> PersonaProfile:
    return PersonaProfile(
        id=1,
        name="Edu",
        mention_name="@edu",
        system_prompt="You are Edu, a study assistant.",
        default_model="model",
        embedding_model="embed",
        rag_top_k=5,
        max_tokens=512,
        temperature=0.7,
        top_p=0.9,
    )


def _turn(role, content):
    return SimpleNamespace(role=role, content=content)


class TestPromptComposer:
    def test_system_message_blocks_in_order(self):
        messages = PromptComposer().compose(
            _persona(),
            is_group=True,
            mention_mode="on_mention",
            answers=[QuestionAnswer(question="Course?", answer="Databases")],
            knowledge_context="1. SQL is a query language.",
            history=[_turn("user", "What is SQL?")],
        )

        system = messages[0]["content"]
        assert messages[0]["role"] == "system"
        assert system.startswith("You are Edu, a study assistant.")
        assert system.index(ONBOARDING_BLOCK_START) < system.index(ONBOARDING_BLOCK_END)
        assert system.index(ONBOARDING_BLOCK_END) < system.index(KNOWLEDGE_BLOCK_START)
        assert system.index(KNOWLEDGE_BLOCK_START) < system.index(KNOWLEDGE_BLOCK_END)
        assert "Chat type: group chat" in system
        assert "respond only when mentioned with @edu" in system
        assert "Q: Course?\nA: Databases" in system
        assert "1. SQL is a query language." in system

    def test_knowledge_block_omitted_without_context(self):
        messages = PromptComposer().compose(
            _persona(),
            is_group=False,
            mention_mode="always",
            answers=[],
            knowledge_context="",
            history=[],
        )

        system = messages[0]["content"]
        assert KNOWLEDGE_BLOCK_START not in system
        assert "Chat type: direct message" in system
        assert "respond to every message" in system

    def test_history_follows_in_order_without_system_turns(self):
        messages = PromptComposer().compose(
            _persona(),
            is_group=False,
            mention_mode="always",
            answers=[],
            knowledge_context="",
            history=[
                _turn("user", "hi"),
                _turn("system", "internal"),
                _turn("assistant", "hello"),
                _turn("user", "what now?"),
            ],
        )

        assert messages[1:] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "what now?"},
        ]
