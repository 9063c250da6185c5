"""
Pydantic models for the Sheet Grader system.

These models define the schemas for:
- Chat messages sent to the completion service
- The graded answer sheet returned by the model
- Stored task definitions and grading records
- Totals and marksheet rows produced from stored records
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal
from uuid import uuid4

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    computed_field,
    field_validator,
    model_validator,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


_URL_ADAPTER = TypeAdapter(AnyUrl)


def validate_uri(value: str) -> str:
    """Check that ``value`` is an absolute URI and return it unchanged."""
    _URL_ADAPTER.validate_python(value)
    return value


# ==============================================================================
# Message Models
# ==============================================================================


class TextBlock(BaseModel):
    """A plain-text content block."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str

    def to_openai(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


class ImageBlock(BaseModel):
    """
    An image reference content block.

    The URI is passed through opaquely; the completion service fetches it.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["image_url"] = "image_url"
    url: str = Field(..., min_length=1)

    def to_openai(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


ContentBlock = TextBlock | ImageBlock


class ChatMessage(BaseModel):
    """A role-tagged message carrying either a string or a list of content blocks."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str | tuple[ContentBlock, ...]

    def to_openai(self) -> dict[str, Any]:
        """Render the message in the OpenAI chat-completions wire format."""
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [block.to_openai() for block in self.content]}


# ==============================================================================
# Graded Sheet Models
# ==============================================================================


class AnsweredQuestion(BaseModel):
    """
    The model's verdict on a single question of an answer sheet.

    ``score`` is the pair (awarded points, maximum points).
    """

    model_config = ConfigDict(frozen=True)

    question_no: str = Field(
        ...,
        description="Question identifier as printed on the question paper",
    )

    score: tuple[Decimal, Decimal] = Field(
        ...,
        description="(awarded, maximum) points",
    )

    remarks: str = Field(
        default="",
        description="Per-question remarks from the grader",
    )

    @field_validator("question_no", mode="before")
    @classmethod
    def coerce_question_no(cls, v: Any) -> str:
        """Models sometimes number questions with integers."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("remarks", mode="before")
    @classmethod
    def coerce_remarks(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> tuple[Decimal, Decimal]:
        """Convert numeric values to Decimal for precision."""
        if not isinstance(v, (list, tuple)) or len(v) != 2:
            raise ValueError("score must be a pair [awarded, maximum]")
        pair = []
        for item in v:
            if isinstance(item, bool) or not isinstance(item, (int, float, Decimal)):
                raise ValueError(f"score values must be numeric, got {item!r}")
            pair.append(item if isinstance(item, Decimal) else Decimal(str(item)))
        return pair[0], pair[1]

    @model_validator(mode="after")
    def validate_points_range(self) -> "AnsweredQuestion":
        """Ensure awarded points lie between zero and the maximum."""
        awarded, maximum = self.score
        if awarded < 0:
            raise ValueError(f"Negative points for question {self.question_no}: {awarded}")
        if awarded > maximum:
            raise ValueError(
                f"Points for question {self.question_no} ({awarded}) exceed max ({maximum})"
            )
        return self


class GradedSheet(BaseModel):
    """
    Structured grading output for one answer sheet.

    Validated at the parse boundary so that everything persisted
    can be aggregated later.
    """

    model_config = ConfigDict(frozen=True)

    student_name: str
    roll_no: str
    answers: tuple[AnsweredQuestion, ...]

    @field_validator("roll_no", mode="before")
    @classmethod
    def coerce_roll_no(cls, v: Any) -> str:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_awarded(self) -> Decimal:
        """Calculate total awarded points."""
        return sum((a.score[0] for a in self.answers), Decimal(0))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_max(self) -> Decimal:
        """Calculate total maximum points."""
        return sum((a.score[1] for a in self.answers), Decimal(0))


# ==============================================================================
# Storage Records
# ==============================================================================


class TaskDefinition(BaseModel):
    """
    A question paper and answer key pairing that answer sheets are graded against.

    Organisational links are optional and opaque to the grading pipeline.
    """

    id: str = Field(default_factory=_new_id)
    title: str = Field(..., min_length=1, max_length=500)
    question_paper_ref: str
    answer_key_ref: str
    owner_id: str | None = None
    school_id: str | None = None
    grade_id: str | None = None
    class_id: str | None = None
    subject_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @field_validator("question_paper_ref", "answer_key_ref")
    @classmethod
    def validate_refs(cls, v: str) -> str:
        return validate_uri(v)


class TaskSummary(BaseModel):
    """A task definition together with the number of grading records under it."""

    task: TaskDefinition
    result_count: int = 0


class GradingRecord(BaseModel):
    """
    One persisted outcome of grading a single answer sheet.

    ``data`` holds the model's JSON as returned; it is validated before it is
    written, but stored verbatim so that extra fields survive.
    """

    id: str = Field(default_factory=_new_id)
    task_definition_id: str
    data: dict[str, Any]
    answer_sheet_ref: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ==============================================================================
# Aggregation Models
# ==============================================================================


class TotalMarks(BaseModel):
    """Summed score of one grading record."""

    model_config = ConfigDict(frozen=True)

    title: str
    total_score: Decimal
    max_score: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percentage(self) -> float:
        """Calculate percentage score."""
        if self.max_score == 0:
            return 0.0
        return float(self.total_score / self.max_score * 100)


class MarksheetRow(BaseModel):
    """One student's line on a marksheet."""

    model_config = ConfigDict(frozen=True)

    student_name: str | None
    roll_no: str | None
    total_marks: Decimal
    is_checked: bool = True
