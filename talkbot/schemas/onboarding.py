"""Onboarding state stored in RoomSession.state.

Each sub-state is its own model; the ``stage`` field is the tag. Loading an
unknown or malformed blob fails instead of guessing.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

MENTION_ALWAYS = "always"
MENTION_ON_MENTION = "on_mention"

MentionMode = Literal["always", "on_mention"]


class QuestionAnswer(BaseModel):
    question: str
    answer: str


class NotStarted(BaseModel):
    stage: Literal["not_started"] = "not_started"


class AskingGroupOrDM(BaseModel):
    stage: Literal["asking_group"] = "asking_group"


class AskingMentionPolicy(BaseModel):
    stage: Literal["asking_mention"] = "asking_mention"


class ReusePrompt(BaseModel):
    stage: Literal["reuse_prompt"] = "reuse_prompt"
    source_room_token: str
    mention_mode: MentionMode
    answers: list[QuestionAnswer] = Field(default_factory=list)


class AskingCustomQuestion(BaseModel):
    stage: Literal["asking_question"] = "asking_question"
    index: int = Field(ge=0)
    answers: list[QuestionAnswer] = Field(default_factory=list)


class Completed(BaseModel):
    stage: Literal["completed"] = "completed"
    answers: list[QuestionAnswer] = Field(default_factory=list)
    reused_from: Optional[str] = None


OnboardingState = Annotated[
    Union[NotStarted, AskingGroupOrDM, AskingMentionPolicy, ReusePrompt, AskingCustomQuestion, Completed],
    Field(discriminator="stage"),
]

onboarding_state_adapter = TypeAdapter(OnboardingState)

COMPLETED_STAGE_NUMBER = 1000
_CUSTOM_QUESTION_BASE = 10


def stage_number(state) -> int:
    """Numeric stage; it only goes up until the room is reset."""
    if isinstance(state, NotStarted):
        return 0
    if isinstance(state, AskingGroupOrDM):
        return 1
    if isinstance(state, AskingMentionPolicy):
        return 2
    if isinstance(state, ReusePrompt):
        return 3
    if isinstance(state, AskingCustomQuestion):
        return _CUSTOM_QUESTION_BASE + state.index
    if isinstance(state, Completed):
        return COMPLETED_STAGE_NUMBER
    raise TypeError(f"Unknown onboarding state: {type(state).__name__}")
