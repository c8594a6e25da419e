from typing import Optional

from pydantic import BaseModel, Field, field_validator


class PersonaProfile(BaseModel):
    """Typed view of a BotPersona row with global defaults resolved."""

    id: int
    name: str
    mention_name: str
    system_prompt: str
    default_model: str
    embedding_model: str
    rag_top_k: int = Field(ge=1)
    max_tokens: int = Field(ge=1)
    temperature: float = Field(ge=0.0, le=2.0)
    top_p: float = Field(gt=0.0, le=1.0)
    group_questions: list[str] = Field(default_factory=list)
    dm_questions: list[str] = Field(default_factory=list)

    @field_validator("group_questions", "dm_questions", mode="before")
    @classmethod
    def _drop_blank_questions(cls, value: Optional[list]) -> list[str]:
        if not value:
            return []
        return [str(question).strip() for question in value if question and str(question).strip()]

    @field_validator("mention_name")
    @classmethod
    def _mention_needs_text(cls, value: str) -> str:
        value = value.strip()
        if not value.lstrip("@"):
            raise ValueError("mention_name must not be empty")
        return value

    def questions_for(self, is_group: bool) -> list[str]:
        return self.group_questions if is_group else self.dm_questions
