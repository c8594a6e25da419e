"""Onboarding dialogue as a pure finite-state machine.

``advance(state, text, context)`` returns the next state and the text to send.
Nothing here touches the database; see onboarding_service for persistence.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from talkbot.schemas.onboarding import (
    MENTION_ALWAYS,
    MENTION_ON_MENTION,
    AskingCustomQuestion,
    AskingGroupOrDM,
    AskingMentionPolicy,
    Completed,
    NotStarted,
    QuestionAnswer,
    ReusePrompt,
)
from talkbot.schemas.persona import PersonaProfile
from talkbot.services.mentions import remove_mention, strip_mention


class OnboardingStage(str, Enum):
    NOT_STARTED = "not_started"
    ASKING_GROUP = "asking_group"
    ASKING_MENTION = "asking_mention"
    REUSE_PROMPT = "reuse_prompt"
    ASKING_QUESTION = "asking_question"
    COMPLETED = "completed"


VALID_TRANSITIONS = {
    OnboardingStage.NOT_STARTED: [OnboardingStage.ASKING_GROUP],
    OnboardingStage.ASKING_GROUP: [
        OnboardingStage.ASKING_MENTION,
        OnboardingStage.REUSE_PROMPT,
        OnboardingStage.ASKING_QUESTION,
        OnboardingStage.COMPLETED,
    ],
    OnboardingStage.ASKING_MENTION: [OnboardingStage.ASKING_QUESTION, OnboardingStage.COMPLETED],
    OnboardingStage.REUSE_PROMPT: [OnboardingStage.ASKING_QUESTION, OnboardingStage.COMPLETED],
    OnboardingStage.ASKING_QUESTION: [OnboardingStage.ASKING_QUESTION, OnboardingStage.COMPLETED],
    OnboardingStage.COMPLETED: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Invalid onboarding transition: {detail}")


def can_transition(from_stage: OnboardingStage, to_stage: OnboardingStage) -> bool:
    """Check if transition is valid."""
    return to_stage in VALID_TRANSITIONS.get(from_stage, [])


def transition(from_stage: OnboardingStage, to_stage: OnboardingStage) -> OnboardingStage:
    """Validate a stage change. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_stage, to_stage):
        raise InvalidTransitionError(f"{from_stage.value} -> {to_stage.value}")
    return to_stage


YES_TOKENS = frozenset({"yes", "y", "yeah", "yep", "yup", "true", "1", "group", "group chat"})
NO_TOKENS = frozenset({"no", "n", "nope", "false", "0", "dm", "direct", "direct message", "private"})
ALWAYS_TOKENS = frozenset({"always", "a", "every", "every message", "all", "all messages"})
ON_MENTION_TOKENS = frozenset(
    {"on_mention", "on mention", "mention", "m", "mention only", "only when mentioned", "when mentioned"}
)
REUSE_ACCEPT_TOKENS = frozenset({"use"})
REUSE_DECLINE_TOKENS = frozenset({"reset"})

GROUP_QUESTION = (
    "Hi! I'm {name}. Before we start, let me configure myself for this conversation.\n\n"
    "Is this a group chat? Please answer 'yes' for a group chat or 'no' for a direct message."
)
GROUP_CLARIFICATION = (
    "I need to know if this is a group chat or a direct message to configure myself properly. "
    "Please answer with 'yes' if this is a group chat, or 'no' if it's a direct message."
)
MENTION_QUESTION = (
    "Great, this is a group chat.\n\n"
    "Should I respond to every message in this group, or only when someone mentions me with {mention}?\n\n"
    "Please answer with:\n"
    "- 'always' to respond to all messages\n"
    "- 'on_mention' to respond only when mentioned"
)
MENTION_CLARIFICATION = (
    "I didn't quite understand your preference. Please answer with:\n\n"
    "- 'always' if you want me to respond to all messages\n"
    "- 'on_mention' if you want me to respond only when mentioned with {mention}"
)
REUSE_QUESTION = (
    "Welcome back! You already set me up in another direct chat with these answers:\n"
    "{summary}\n\n"
    "Reply 'use' to reuse them, or 'reset' to answer the questions again."
)
REUSE_CLARIFICATION = "Please reply 'use' to reuse your previous answers, or 'reset' to answer the questions again."
QUESTION_CLARIFICATION = "I need an answer to continue the setup.\n\n{question}"


@dataclass
class OnboardingContext:
    persona: PersonaProfile
    is_group: bool
    # Looks up a previous DM onboarding of the same user; only called on the DM branch
    find_reuse: Callable[[], Optional[ReusePrompt]] = lambda: None


@dataclass
class Transition:
    state: object
    reply: str
    advanced: bool = True
    is_group: Optional[bool] = None
    mention_mode: Optional[str] = None

    @property
    def completed(self) -> bool:
        return isinstance(self.state, Completed)


def normalize_answer(text: str, mention_name: str = "") -> str:
    cleaned = strip_mention(text or "", mention_name) if mention_name else (text or "")
    cleaned = cleaned.strip().strip("\"'`").strip()
    cleaned = re.sub(r"[.!?]+$", "", cleaned)
    return re.sub(r"\s+", " ", cleaned).lower()


def parse_yes_no(text: str, mention_name: str = "") -> Optional[bool]:
    """Exact tokens and known synonyms only; anything else is unparsed (None)."""
    answer = normalize_answer(text, mention_name)
    if answer in YES_TOKENS:
        return True
    if answer in NO_TOKENS:
        return False
    return None


def parse_mention_policy(text: str, mention_name: str = "") -> Optional[str]:
    answer = normalize_answer(text, mention_name)
    if answer in ALWAYS_TOKENS:
        return MENTION_ALWAYS
    if answer in ON_MENTION_TOKENS:
        return MENTION_ON_MENTION
    return None


def first_prompt(persona: PersonaProfile) -> str:
    return GROUP_QUESTION.format(name=persona.name)


def summarize_answers(answers: list[QuestionAnswer]) -> str:
    return "\n".join(f"- {qa.question}: {qa.answer}" for qa in answers)


def welcome_message(persona: PersonaProfile, is_group: bool, mention_mode: str, answers: list[QuestionAnswer]) -> str:
    lines = [f"Welcome to {persona.name}!", ""]
    if is_group:
        if mention_mode == MENTION_ALWAYS:
            lines.append("I'm now active in this group chat and will respond to every message.")
        else:
            lines.append(f"I'm now active in this group chat and will respond when you mention me with {persona.mention_name}.")
    else:
        lines.append("I'm ready to help you with your questions.")

    if answers:
        lines.extend(["", "Based on our setup, I understand:", summarize_answers(answers)])

    lines.extend(["", "Feel free to ask me anything!"])
    return "\n".join(lines)


def _stage(state) -> OnboardingStage:
    return OnboardingStage(state.stage)


def _next_question_or_complete(
    current,
    context: OnboardingContext,
    index: int,
    answers: list[QuestionAnswer],
    mention_mode: str,
    prefix: str = "",
) -> Transition:
    questions = context.persona.questions_for(context.is_group)
    if index < len(questions):
        next_state = AskingCustomQuestion(index=index, answers=answers)
        transition(_stage(current), _stage(next_state))
        return Transition(state=next_state, reply=prefix + questions[index], mention_mode=mention_mode)

    completed = Completed(answers=answers)
    transition(_stage(current), OnboardingStage.COMPLETED)
    return Transition(
        state=completed,
        reply=prefix + welcome_message(context.persona, context.is_group, mention_mode, answers),
        mention_mode=mention_mode,
    )


def advance(state, text: str, context: OnboardingContext, current_mention_mode: str = MENTION_ON_MENTION) -> Transition:
    """Compute the next onboarding state for an inbound message."""
    persona = context.persona

    if isinstance(state, NotStarted):
        next_state = AskingGroupOrDM()
        transition(_stage(state), _stage(next_state))
        return Transition(state=next_state, reply=first_prompt(persona))

    if isinstance(state, AskingGroupOrDM):
        is_group = parse_yes_no(text, persona.mention_name)
        if is_group is None:
            return Transition(state=state, reply=GROUP_CLARIFICATION, advanced=False)

        if is_group:
            next_state = AskingMentionPolicy()
            transition(_stage(state), _stage(next_state))
            return Transition(
                state=next_state,
                reply=MENTION_QUESTION.format(mention=persona.mention_name),
                is_group=True,
            )

        dm_context = OnboardingContext(persona=persona, is_group=False, find_reuse=context.find_reuse)
        offer = context.find_reuse()
        if offer is not None:
            transition(_stage(state), _stage(offer))
            return Transition(
                state=offer,
                reply=REUSE_QUESTION.format(summary=summarize_answers(offer.answers) or "- (no answers)"),
                is_group=False,
            )
        result = _next_question_or_complete(state, dm_context, 0, [], MENTION_ALWAYS)
        result.is_group = False
        return result

    if isinstance(state, AskingMentionPolicy):
        mention_mode = parse_mention_policy(text, persona.mention_name)
        if mention_mode is None:
            return Transition(
                state=state,
                reply=MENTION_CLARIFICATION.format(mention=persona.mention_name),
                advanced=False,
            )
        described = "every message" if mention_mode == MENTION_ALWAYS else "only when mentioned"
        return _next_question_or_complete(
            state,
            context,
            0,
            [],
            mention_mode,
            prefix=f"Perfect! I'll respond to {described} in this group.\n\n",
        )

    if isinstance(state, ReusePrompt):
        answer = normalize_answer(text, persona.mention_name)
        if answer in REUSE_ACCEPT_TOKENS:
            completed = Completed(answers=list(state.answers), reused_from=state.source_room_token)
            transition(_stage(state), OnboardingStage.COMPLETED)
            return Transition(
                state=completed,
                reply=welcome_message(persona, False, state.mention_mode, completed.answers),
                mention_mode=state.mention_mode,
            )
        if answer in REUSE_DECLINE_TOKENS:
            return _next_question_or_complete(state, context, 0, [], MENTION_ALWAYS)
        return Transition(state=state, reply=REUSE_CLARIFICATION, advanced=False)

    if isinstance(state, AskingCustomQuestion):
        questions = persona.questions_for(context.is_group)
        if state.index >= len(questions):
            # Questions were removed by the admin meanwhile; finish with what we have
            return _next_question_or_complete(state, context, state.index, list(state.answers), current_mention_mode)

        question = questions[state.index]
        answer = remove_mention(text or "", persona.mention_name)
        if not answer.strip():
            return Transition(state=state, reply=QUESTION_CLARIFICATION.format(question=question), advanced=False)

        answers = list(state.answers) + [QuestionAnswer(question=question, answer=answer)]
        mention_mode = MENTION_ALWAYS if not context.is_group else current_mention_mode
        return _next_question_or_complete(state, context, state.index + 1, answers, mention_mode)

    if isinstance(state, Completed):
        raise InvalidTransitionError("onboarding already completed")

    raise InvalidTransitionError(f"unknown state {type(state).__name__}")


def onboarding_progress(state, persona: PersonaProfile, is_group: bool) -> dict:
    """Completed flag, current step, total steps and percentage for the room."""
    questions = persona.questions_for(is_group)
    # group/DM question, mention policy for groups, then the persona questions
    total = 1 + (1 if is_group else 0) + len(questions)

    if isinstance(state, Completed):
        step = total
    elif isinstance(state, (NotStarted, AskingGroupOrDM)):
        step = 0
    elif isinstance(state, (AskingMentionPolicy, ReusePrompt)):
        step = 1
    elif isinstance(state, AskingCustomQuestion):
        step = 1 + (1 if is_group else 0) + min(state.index, len(questions))
    else:
        raise InvalidTransitionError(f"unknown state {type(state).__name__}")

    return {
        "completed": isinstance(state, Completed),
        "stage": state.stage,
        "step": step,
        "total_steps": total,
        "percentage": round(step * 100 / total) if total else 100,
    }
