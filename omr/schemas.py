"""
Pydantic schemas for OMR answer-sheet extraction.

AnswerRecord.detected encoding:
  tf → "V" | "F" | None
  mc → "A".."D" | None   (None also means an invalidated multi-mark)
  ms → "A,C" style, sorted and comma-joined | None
"""

from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EvidenceLabel(str, Enum):
    STRONG_X = "STRONG_X"
    CHECK = "CHECK"
    CIRCLE = "CIRCLE"
    FILL = "FILL"
    EMPTY = "EMPTY"
    WEAK_MARK = "WEAK_MARK"


# Marks that count as an answer; EMPTY / WEAK_MARK force detected = None
VALID_MARKS = {EvidenceLabel.STRONG_X, EvidenceLabel.CHECK, EvidenceLabel.CIRCLE, EvidenceLabel.FILL}

QuestionKind = Literal["tf", "mc", "ms"]


class AnswerRecord(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    question_num: int = Field(..., ge=1)
    question_type: QuestionKind
    evidence_label: EvidenceLabel
    evidence: str = ""
    detected: Optional[str] = None
    points: Optional[float] = None


class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class OMRAnalysis(_CamelModel):
    student_name: Optional[str] = None
    rut: Optional[str] = None
    questions_found: int = 0
    answers: List[AnswerRecord] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW


# ─── Requests ──────────────────────────────────────────────────────────────────

class PageImage(_CamelModel):
    page_num: int = 1
    data_url: str = Field(..., description="data:<mime>;base64,<data> or raw base64")


class ExpectedQuestion(_CamelModel):
    """Expected answer-sheet structure, used as a location guide in the prompt."""
    type: str = "mc"
    text: str = ""
    options: List[str] = Field(default_factory=list)


class AnalyzeRequest(_CamelModel):
    """POST /omr/analyze body."""
    images: List[PageImage] = Field(default_factory=list)
    expected_questions: Optional[int] = Field(None, ge=0)
    focus_question_nums: List[Any] = Field(default_factory=list)
    title: Optional[str] = None
    subject: Optional[str] = None
    topic: Optional[str] = None
    questions: List[ExpectedQuestion] = Field(default_factory=list)


class AnalyzeResponse(_CamelModel):
    success: bool
    analysis: Optional[OMRAnalysis] = None
    error: Optional[str] = None
    fallback: Optional[bool] = None
    raw_response: Optional[str] = None
