"""
Data Models
===========
Pydantic models for the question extraction pipeline.
All result models serialize to JSON for the review UI.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

OPTION_LABELS = ("a", "b", "c", "d")


# ─── Enums ────────────────────────────────────────────────────────────────────


class ExtractionSource(str, Enum):
    """Strategy that produced a candidate question."""
    LINE = "line"
    PATTERN = "pattern"
    BLOCK = "block"


class DetectionMethod(str, Enum):
    """How a correct answer was assigned."""
    PATTERN = "pattern"
    VISUAL = "visual"
    BOLD = "bold"
    MANUAL = "manual"


class RejectionReason(str, Enum):
    """Why a candidate failed the final validation gate."""
    STEM_TOO_SHORT = "stem_too_short"
    STEM_TOO_LONG = "stem_too_long"
    WRONG_OPTION_COUNT = "wrong_option_count"
    EMPTY_OPTION = "empty_option"
    OPTION_TOO_LONG = "option_too_long"
    LEAKED_QUESTION_NUMBER = "leaked_question_number"
    ATTEMPT_MARKER = "attempt_marker"
    EMBEDDED_DATE = "embedded_date"


class ExtractionStatus(str, Enum):
    """Outcome of an extraction run."""
    COMPLETED = "completed"
    NO_QUESTIONS = "no_questions"
    CANCELLED = "cancelled"
    FAILED = "failed"


STATUS_MESSAGES = {
    ExtractionStatus.COMPLETED: "Questions extracted. Review detected answers before saving.",
    ExtractionStatus.NO_QUESTIONS: (
        "No questions found. Try reformatting the document or enter the "
        "questions manually."
    ),
    ExtractionStatus.CANCELLED: "Extraction cancelled. No questions were kept.",
    ExtractionStatus.FAILED: (
        "Extraction error. The document could not be read; check that it is "
        "a valid, unprotected PDF."
    ),
}


# ─── Page Input Models ────────────────────────────────────────────────────────


class TextItem(BaseModel):
    """
    A positioned text fragment from a page text layer.
    Coordinates use a top-left origin in page units.
    """
    model_config = ConfigDict(frozen=True)

    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    bold: bool = False


class PageText(BaseModel):
    """One page's reconstructed text plus the fragments it came from."""
    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    text: str = ""
    items: tuple[TextItem, ...] = ()


class PageRaster(BaseModel):
    """
    Rendered RGBA pixels for a page.
    `scale` maps page units to raster pixels.
    """
    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    width: int = Field(ge=0)
    height: int = Field(ge=0)
    pixels: bytes = b""
    scale: float = Field(default=1.0, gt=0)


# ─── Question Models ──────────────────────────────────────────────────────────


class CandidateQuestion(BaseModel):
    """
    A question proposed by a single extraction strategy.
    Text and options are copies; nothing refers back to the page text.
    """
    number: Optional[int] = None
    text: str
    options: list[str] = Field(default_factory=list, max_length=4)
    source: ExtractionSource
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class ValidatedQuestion(BaseModel):
    """
    A candidate that passed the final validation gate.
    `correct_answer` stays None until the correlator runs.
    """
    id: str
    question_number: Optional[int] = None
    text: str
    options: list[str] = Field(min_length=4, max_length=4)
    extraction_source: ExtractionSource
    extraction_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    set_number: Optional[int] = None
    correct_answer: Optional[int] = Field(default=None, ge=0, le=3)
    detection_confidence: Optional[float] = None
    detection_method: Optional[DetectionMethod] = None

    @computed_field
    @property
    def needs_review(self) -> bool:
        return self.correct_answer is None

    @property
    def option_labels(self) -> list[str]:
        return list(OPTION_LABELS[:len(self.options)])

    def to_review_dict(self) -> dict:
        """Shape consumed by the review UI."""
        return {
            "id": self.id,
            "text": self.text,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "detectionConfidence": self.detection_confidence,
            "detectionMethod": (
                self.detection_method.value if self.detection_method else None
            ),
            "questionNumber": self.question_number,
            "extractionSource": self.extraction_source.value,
        }


class PracticeSet(BaseModel):
    """
    A "Practice Set N" segment of a multi-test document.
    [start_offset, end_offset) spans of all sets partition the document;
    the set's own content begins at content_start (after its header).
    """
    set_number: int
    title: str = ""
    start_offset: int = Field(ge=0)
    content_start: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    questions: list[ValidatedQuestion] = Field(default_factory=list)

    @computed_field
    @property
    def question_count(self) -> int:
        return len(self.questions)


# ─── Answer Models ────────────────────────────────────────────────────────────


class AnswerKeyEntry(BaseModel):
    """A detected answer for one question."""
    question_number: Optional[int] = None
    question_id: Optional[str] = None
    answer_letter: str = Field(pattern=r"^[a-d]$")
    confidence: float = Field(ge=0.0, le=1.0)
    method: DetectionMethod
    source: str = Field(
        default="",
        description="Matched text or pattern name, for diagnostics"
    )

    @property
    def answer_index(self) -> int:
        return OPTION_LABELS.index(self.answer_letter)


class ManualAnswer(BaseModel):
    """A user-supplied answer that overrides every detector."""
    question_id: str
    answer: Union[int, str]
    method: DetectionMethod = DetectionMethod.MANUAL

    def letter(self) -> Optional[str]:
        if isinstance(self.answer, int):
            if 0 <= self.answer < len(OPTION_LABELS):
                return OPTION_LABELS[self.answer]
            return None
        letter = self.answer.strip().lower()
        return letter if letter in OPTION_LABELS else None


# ─── Report Models ────────────────────────────────────────────────────────────


class Rejection(BaseModel):
    """A candidate dropped by the validator, kept for diagnostics."""
    reason: RejectionReason
    source: ExtractionSource
    question_number: Optional[int] = None
    excerpt: str = ""


class ExtractionStats(BaseModel):
    """Counters describing one extraction run."""
    page_count: int = 0
    strategy_counts: dict[str, int] = Field(default_factory=dict)
    duplicates_removed: int = 0
    validation_rejections: dict[str, int] = Field(default_factory=dict)
    strategy_errors: list[str] = Field(default_factory=list)


class CorrelationReport(BaseModel):
    """Summary of answer detection over a question list."""
    total_questions: int = 0
    answers_detected: int = 0
    entries: list[AnswerKeyEntry] = Field(default_factory=list)
    method_breakdown: dict[str, int] = Field(default_factory=dict)
    needs_review: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def detection_rate(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return round(self.answers_detected / self.total_questions * 100, 2)


class ExtractionResult(BaseModel):
    """
    Complete output of an extraction run.
    This is the top-level structure handed to the review UI.
    """
    status: ExtractionStatus
    questions: list[ValidatedQuestion] = Field(default_factory=list)
    practice_sets: Optional[list[PracticeSet]] = None
    stats: ExtractionStats = Field(default_factory=ExtractionStats)
    rejections: list[Rejection] = Field(default_factory=list)
    correlation: Optional[CorrelationReport] = None
    error: Optional[str] = None
    parser_version: str = "1.0.0"
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @computed_field
    @property
    def message(self) -> str:
        return STATUS_MESSAGES[self.status]

    @computed_field
    @property
    def needs_review(self) -> list[str]:
        return [q.id for q in self.questions if q.correct_answer is None]

    def to_review_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "questions": [q.to_review_dict() for q in self.questions],
            "practiceSets": (
                [
                    {
                        "setNumber": s.set_number,
                        "title": s.title,
                        "startOffset": s.start_offset,
                        "endOffset": s.end_offset,
                        "questionIds": [q.id for q in s.questions],
                    }
                    for s in self.practice_sets
                ]
                if self.practice_sets is not None
                else None
            ),
            "stats": {
                "strategyCounts": dict(self.stats.strategy_counts),
                "duplicatesRemoved": self.stats.duplicates_removed,
                "validationRejections": dict(self.stats.validation_rejections),
            },
        }
