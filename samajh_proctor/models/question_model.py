from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config import DEFAULT_TEST_DURATION


class Question(BaseModel):
    """
    Multiple-choice interview question.
    Pydantic v2.
    """
    id: str = Field(
        ...,
        min_length=1,
        description="Question identifier (unique within an assessment)"
    )
    text: str = Field(
        ...,
        min_length=1,
        description="Question body"
    )
    options: List[str] = Field(
        ...,
        description="Answer options, in display order"
    )
    correct_answer: int = Field(
        ...,
        description="Index of the correct option"
    )
    explanation: str = Field(
        "",
        description="Why the correct option is correct"
    )
    difficulty: Literal["easy", "intermediate", "hard"] = "intermediate"
    type: Literal[
        "multiple_choice", "code_snippet", "output_prediction", "error_identification"
    ] = "multiple_choice"
    code_snippet: Optional[str] = None

    @field_validator('options')
    @classmethod
    def validate_options_length(cls, v: List[str]) -> List[str]:
        """Options need at least two entries."""
        if len(v) < 2:
            raise ValueError("options must contain at least two entries")
        return v

    @model_validator(mode='after')
    def validate_answer_index(self) -> 'Question':
        """The correct answer must point into the options list."""
        if not 0 <= self.correct_answer < len(self.options):
            raise ValueError(
                f"correct_answer {self.correct_answer} is outside options (0..{len(self.options) - 1})"
            )
        return self


class Assessment(BaseModel):
    """A test as returned by the test loader: questions plus a duration in minutes."""
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    topic: str = ""
    description: Optional[str] = None
    duration_minutes: int = Field(default=DEFAULT_TEST_DURATION, gt=0)
    status: Literal["draft", "published", "archived"] = "published"
    questions: List[Question] = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_unique_ids(self) -> 'Assessment':
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("question ids must be unique within an assessment")
        return self


def public_question(q: Question) -> dict:
    """Question as shown to the test taker (no answer key)."""
    return {
        "id": q.id,
        "text": q.text,
        "options": q.options,
        "difficulty": q.difficulty,
        "type": q.type,
        "code_snippet": q.code_snippet,
    }
