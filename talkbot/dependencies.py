"""Composition root: every component gets its collaborators here."""

from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from talkbot.config import Settings, get_settings
from talkbot.database import SessionLocal, get_db
from talkbot.services.bot_resolver import BotResolver
from talkbot.services.conversation_log import ConversationLog
from talkbot.services.knowledge_service import KnowledgeSearch
from talkbot.services.llm import OpenAICompatibleProvider
from talkbot.services.message_pipeline import MessagePipeline
from talkbot.services.onboarding_service import OnboardingService
from talkbot.services.persona_service import PersonaRepository
from talkbot.services.prompt_service import CompletionClient, PromptComposer
from talkbot.services.reply_dispatcher import ReplyDispatcher
from talkbot.services.retrieval_service import RetrievalEngine
from talkbot.services.session_store import RoomSessionStore
from talkbot.services.usage_service import UsageRecorder


def build_provider(settings: Settings, usage_recorder: Optional[UsageRecorder] = None) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        api_key=settings.ai_api_key,
        base_url=settings.ai_api_endpoint,
        default_model=settings.default_model,
        default_embedding_model=settings.default_embedding_model,
        completion_timeout=settings.completion_timeout_seconds,
        embedding_timeout=settings.embedding_timeout_seconds,
        usage_recorder=usage_recorder,
    )


def build_pipeline(db: Session, settings: Optional[Settings] = None) -> MessagePipeline:
    settings = settings or get_settings()
    provider = build_provider(settings, UsageRecorder(SessionLocal))

    store = RoomSessionStore(db)
    personas = PersonaRepository(db, settings)
    conversation_log = ConversationLog(db)

    return MessagePipeline(
        db=db,
        settings=settings,
        store=store,
        personas=personas,
        resolver=BotResolver(store, personas, conversation_log, settings),
        onboarding=OnboardingService(store),
        conversation_log=conversation_log,
        retrieval=RetrievalEngine(KnowledgeSearch(settings, provider)),
        composer=PromptComposer(),
        completion=CompletionClient(provider),
        dispatcher=ReplyDispatcher(settings),
    )


def get_pipeline(db: Session = Depends(get_db)) -> MessagePipeline:
    return build_pipeline(db)
