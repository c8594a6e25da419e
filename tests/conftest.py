import os

# Settings and the engine are built at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BOT_SECRET", "test-secret")

from datetime import datetime, timedelta, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import talkbot.models  # noqa: E402,F401
from talkbot.config import Settings  # noqa: E402
from talkbot.database import Base  # noqa: E402
from talkbot.models import BotPersona  # noqa: E402
from talkbot.services.bot_resolver import BotResolver  # noqa: E402
from talkbot.services.conversation_log import ConversationLog  # noqa: E402
from talkbot.services.llm.base import LLMResponse  # noqa: E402
from talkbot.services.message_pipeline import MessagePipeline  # noqa: E402
from talkbot.services.onboarding_service import OnboardingService  # noqa: E402
from talkbot.services.persona_service import PersonaRepository  # noqa: E402
from talkbot.services.prompt_service import CompletionClient, PromptComposer  # noqa: E402
from talkbot.services.retrieval_service import RetrievalEngine  # noqa: E402
from talkbot.services.session_store import RoomSessionStore  # noqa: E402

TEST_SECRET = "test-secret"


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        bot_secret=TEST_SECRET,
        platform_base_url="https://cloud.test",
        ai_api_key="test-key",
        ai_api_endpoint="https://llm.test/v1",
        qdrant_url="http://qdrant.test:6333",
        qdrant_collection="talkbot_knowledge",
        completion_mode="inline",
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    """Real SQLite session for store, log and queue tests."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("AI_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("QDRANT_API_KEY", "test-key")
    monkeypatch.setenv("BOT_SECRET", TEST_SECRET)


@pytest.fixture
def make_persona(db):
    """Insert a BotPersona row; creation order follows call order."""
    counter = {"n": 0}
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _make(name="Edu", mention_name="@edu", group_questions=None, dm_questions=None, **fields):
        counter["n"] += 1
        persona = BotPersona(
            name=name,
            mention_name=mention_name,
            system_prompt=fields.pop("system_prompt", f"You are {name}."),
            onboarding_group_questions=group_questions or [],
            onboarding_dm_questions=dm_questions or [],
            created_at=base + timedelta(minutes=counter["n"]),
            **fields,
        )
        db.add(persona)
        db.commit()
        return persona

    return _make


@pytest.fixture
def provider():
    """LLM provider double: completions answer, embeddings are unused by default."""
    provider = Mock()
    provider.generate.return_value = LLMResponse(
        content="EDUC is the education portal.",
        model="meta-llama-3.1-8b-instruct",
        usage={"total_tokens": 42},
    )
    return provider


@pytest.fixture
def knowledge():
    knowledge = Mock()
    knowledge.search.return_value = [{"text": "EDUC stands for the campus education portal.", "score": 0.9}]
    return knowledge


@pytest.fixture
def dispatcher():
    dispatcher = Mock()
    dispatcher.send.return_value = True
    return dispatcher


@pytest.fixture
def make_pipeline(db, settings, provider, knowledge, dispatcher):
    def _make(**overrides):
        pipeline_settings = settings.model_copy(update=overrides)
        store = RoomSessionStore(db)
        personas = PersonaRepository(db, pipeline_settings)
        conversation_log = ConversationLog(db)
        return MessagePipeline(
            db=db,
            settings=pipeline_settings,
            store=store,
            personas=personas,
            resolver=BotResolver(store, personas, conversation_log, pipeline_settings),
            onboarding=OnboardingService(store),
            conversation_log=conversation_log,
            retrieval=RetrievalEngine(knowledge),
            composer=PromptComposer(),
            completion=CompletionClient(provider),
            dispatcher=dispatcher,
        )

    return _make
