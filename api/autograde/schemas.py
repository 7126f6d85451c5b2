"""
Data Schemas for AutoGrade
Pydantic models for type-safe data validation across the application.
"""
import base64
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from autograde.config import (
    ALLOWED_OPTION_COUNTS,
    DEFAULT_MAX_SCORE,
    DEFAULT_OPTION_COUNT,
    DEFAULT_QUESTION_COUNT,
    MAX_QUESTION_COUNT,
    MAX_SCORE_LIMIT,
)

# An option letter ("A".."E") or None when unset
Option = Optional[str]


def option_labels(option_count: int) -> List[str]:
    """Generate option labels A, B, C... for the given count."""
    return [chr(ord("A") + index) for index in range(option_count)]


def normalize_option(value: Optional[str]) -> Option:
    """Trim and uppercase an option letter; blank values become None."""
    if value is None:
        return None
    cleaned = value.strip().upper()
    return cleaned or None


class ExamConfig(BaseModel):
    """Exam shape shared by every exam code."""
    question_count: int = Field(
        DEFAULT_QUESTION_COUNT,
        ge=1,
        le=MAX_QUESTION_COUNT,
        description="Number of questions on the sheet",
    )
    option_count: int = Field(
        DEFAULT_OPTION_COUNT,
        description="Options per question: 4 for A-D, 5 for A-E",
    )
    max_score: float = Field(
        DEFAULT_MAX_SCORE,
        gt=0,
        le=MAX_SCORE_LIMIT,
        description="Score scale, e.g. 10 or 100",
    )

    @field_validator("option_count")
    @classmethod
    def _check_option_count(cls, value: int) -> int:
        if value not in ALLOWED_OPTION_COUNTS:
            raise ValueError(f"option_count must be one of {ALLOWED_OPTION_COUNTS}")
        return value

    @property
    def option_labels(self) -> List[str]:
        return option_labels(self.option_count)


class DetectedAnswer(BaseModel):
    """A single answer the vision model found on a student sheet."""
    question_number: int = Field(
        ...,
        validation_alias=AliasChoices("question_number", "questionNumber"),
        description="Question number starting at 1",
    )
    answer: Optional[str] = Field(None, description="Marked option letter, null if blank or ambiguous")
    box_2d: Optional[List[int]] = Field(
        None,
        validation_alias=AliasChoices("box_2d", "boundingBox", "box2d"),
        description="Bounding box [ymin, xmin, ymax, xmax] on a 0-1000 scale",
    )

    @field_validator("box_2d", mode="before")
    @classmethod
    def drop_malformed_box(cls, value: Any) -> Optional[List[int]]:
        # Malformed boxes become None; the entry itself stays valid.
        if isinstance(value, list) and all(
            isinstance(item, int) and not isinstance(item, bool) for item in value
        ):
            return value
        return None


class SheetAnalysis(BaseModel):
    """Response schema for the student sheet call."""
    answers: List[DetectedAnswer] = Field(default_factory=list)


class KeyScanAnswer(BaseModel):
    question_number: int = Field(
        ...,
        validation_alias=AliasChoices("question_number", "questionNumber"),
    )
    answer: Optional[str] = None


class KeyScanResponse(BaseModel):
    """Response schema for the answer key auto-detection call."""
    total_questions: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("total_questions", "totalQuestions"),
        description="The total number of questions found in the answer key",
    )
    option_count: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("option_count", "optionCount"),
        description="Number of options per question, e.g. 4 for A-D",
    )
    answers: List[KeyScanAnswer] = Field(default_factory=list)


class ScannedKey(BaseModel):
    """Reconciled answer key detected from an image."""
    answers: Dict[int, str]
    question_count: int
    option_count: int


class StudentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: int
    student_answer: Option = None
    correct_answer: Option = None
    is_correct: bool = False
    box_2d: Optional[List[int]] = None


class GradingSummary(BaseModel):
    """One grading or scan attempt. Corrections replace it, never mutate it."""
    model_config = ConfigDict(frozen=True)

    total_questions: int
    results: List[StudentResult]
    correct_count: Optional[int] = None
    score: Optional[float] = None
    max_score: Optional[float] = None
    image_url: Optional[str] = None

    @property
    def is_graded(self) -> bool:
        return self.score is not None and self.correct_count is not None


class SheetImage(BaseModel):
    """An uploaded exam photo."""
    data: bytes
    mime_type: str
    filename: str = "exam.png"

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    @classmethod
    def from_data_url(cls, data_url: str, filename: str = "restored_exam.png") -> "SheetImage":
        """Rebuild an image from a `data:<mime>;base64,<payload>` URL."""
        header, _, payload = data_url.partition(",")
        if not header.startswith("data:") or ";base64" not in header or not payload:
            raise ValueError("Not a base64 data URL")
        mime_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
        return cls(data=base64.b64decode(payload), mime_type=mime_type, filename=filename)


# --- Request bodies ---

class CodeRequest(BaseModel):
    code: str = Field(..., description="Exam code, e.g. 102")


class RenameCodeRequest(BaseModel):
    new_code: str = Field(..., description="New name for the exam code")


class AnswerRequest(BaseModel):
    option: Option = Field(None, description="Option letter, or null to clear")


class ConfigUpdate(BaseModel):
    question_count: Optional[int] = None
    option_count: Optional[int] = None
    max_score: Optional[float] = None


class PreferencesUpdate(BaseModel):
    auto_grade: Optional[bool] = None
    show_overlay: Optional[bool] = None
    show_overlay_details: Optional[bool] = None
