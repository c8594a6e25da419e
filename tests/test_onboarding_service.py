from talkbot.schemas.onboarding import AskingCustomQuestion, Completed, QuestionAnswer
from talkbot.services.onboarding_service import OnboardingService
from talkbot.services.persona_service import PersonaRepository
from talkbot.services.session_store import RoomSessionStore


def _bound_session(db, persona_id, room_token="room-1"):
    store = RoomSessionStore(db)
    session = store.get_or_create(room_token)
    store.bind_persona(session, persona_id)
    store.commit()
    return store, session


class TestOnboardingService:
    def test_group_flow_persists_each_step(self, db, settings, make_persona):
        row = make_persona(group_questions=["What course is this?"])
        persona = PersonaRepository(db, settings).get(row.id)
        store, session = _bound_session(db, row.id)
        service = OnboardingService(store)

        first = service.step(session, persona, "alice", "hi")
        assert "Is this a group chat?" in first.reply
        assert session.onboarding_stage == 1

        service.step(session, persona, "alice", "yes")
        assert session.is_group is True
        assert session.onboarding_stage == 2

        service.step(session, persona, "alice", "on_mention")
        assert session.mention_mode == "on_mention"
        assert session.onboarding_stage == 10

        last = service.step(session, persona, "alice", "Databases")
        assert last.completed is True
        assert session.onboarding_done is True
        assert session.onboarded_by == "alice"
        state = store.load_state(session)
        assert state.answers == [QuestionAnswer(question="What course is this?", answer="Databases")]

    def test_unparsable_answer_keeps_stage(self, db, settings, make_persona):
        row = make_persona()
        persona = PersonaRepository(db, settings).get(row.id)
        store, session = _bound_session(db, row.id)
        service = OnboardingService(store)
        service.step(session, persona, "alice", "hi")
        version = session.version

        outcome = service.step(session, persona, "alice", "perhaps")

        assert outcome.advanced is False
        assert session.onboarding_stage == 1
        assert session.version == version

    def test_dm_offers_reuse_of_previous_onboarding(self, db, settings, make_persona):
        row = make_persona(dm_questions=["What do you study?"])
        persona = PersonaRepository(db, settings).get(row.id)

        store, old = _bound_session(db, row.id, "old-dm")
        store.save_state(
            old,
            Completed(answers=[QuestionAnswer(question="What do you study?", answer="Physics")]),
            is_group=False,
            mention_mode="always",
            onboarded_by="alice",
        )
        store.commit()

        _, session = _bound_session(db, row.id, "new-dm")
        service = OnboardingService(store)
        service.step(session, persona, "alice", "hi")

        offer = service.step(session, persona, "alice", "no")
        assert offer.stage == "reuse_prompt"
        assert "Physics" in offer.reply

        done = service.step(session, persona, "alice", "use")
        assert done.completed is True
        state = store.load_state(session)
        assert state.reused_from == "old-dm"
        assert state.answers[0].answer == "Physics"

    def test_dm_without_previous_onboarding_asks_questions(self, db, settings, make_persona):
        row = make_persona(dm_questions=["What do you study?"])
        persona = PersonaRepository(db, settings).get(row.id)
        store, session = _bound_session(db, row.id)
        service = OnboardingService(store)
        service.step(session, persona, "bob", "hi")

        outcome = service.step(session, persona, "bob", "no")

        assert outcome.reply == "What do you study?"
        assert isinstance(store.load_state(session), AskingCustomQuestion)
        assert session.mention_mode == "always"

    def test_progress(self, db, settings, make_persona):
        row = make_persona(group_questions=["Q1", "Q2"])
        persona = PersonaRepository(db, settings).get(row.id)
        store, session = _bound_session(db, row.id)
        service = OnboardingService(store)
        service.step(session, persona, "alice", "hi")
        service.step(session, persona, "alice", "group")

        progress = service.progress(session, persona)

        assert progress["stage"] == "asking_mention"
        assert progress["total_steps"] == 4
        assert progress["completed"] is False
