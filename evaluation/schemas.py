"""
Pydantic schemas for the evaluation generation pipeline.

Wire format is camelCase (questionText, correctAnswerIndex, ...); Python code
uses snake_case attribute names. Questions form a discriminated union on `type`.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_QUESTION_COUNT = 15


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Classification ────────────────────────────────────────────────────────────

class Domain(str, Enum):
    MATH_PHYSICS = "MATH_PHYSICS"
    SCIENCE = "SCIENCE"
    HISTORY = "HISTORY"
    LANGUAGE = "LANGUAGE"
    GENERIC = "GENERIC"


class ClassificationResult(_CamelModel):
    """Grade band (1 = 1°–2° básico ... 5 = enseñanza media) and subject domain."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    level: int = Field(..., ge=1, le=5)
    domain: Domain


# ─── Questions ─────────────────────────────────────────────────────────────────

class QuestionType(str, Enum):
    TRUE_FALSE = "TRUE_FALSE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    MULTIPLE_SELECTION = "MULTIPLE_SELECTION"
    FREE_RESPONSE = "FREE_RESPONSE"


# Output order of an assembled evaluation
QUESTION_TYPE_ORDER = [
    QuestionType.TRUE_FALSE,
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.MULTIPLE_SELECTION,
    QuestionType.FREE_RESPONSE,
]

OBJECTIVE_TYPES = QUESTION_TYPE_ORDER[:3]

# Short prefixes used in question ids and count keys
TYPE_PREFIX = {
    QuestionType.TRUE_FALSE: "tf",
    QuestionType.MULTIPLE_CHOICE: "mc",
    QuestionType.MULTIPLE_SELECTION: "ms",
    QuestionType.FREE_RESPONSE: "des",
}


class QuestionBase(_CamelModel):
    id: str
    question_text: str = Field(..., min_length=1)
    explanation: str = ""

    @field_validator("question_text")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("question text must not be blank")
        return v


class TrueFalseQuestion(QuestionBase):
    type: Literal["TRUE_FALSE"] = "TRUE_FALSE"
    correct_answer: bool


class MultipleChoiceQuestion(QuestionBase):
    type: Literal["MULTIPLE_CHOICE"] = "MULTIPLE_CHOICE"
    options: List[str]
    correct_answer_index: int = Field(..., ge=0, le=3)

    @field_validator("options")
    @classmethod
    def _four_distinct_options(cls, v: List[str]) -> List[str]:
        options = [str(o).strip() for o in v]
        if len(options) != 4:
            raise ValueError(f"multiple choice needs exactly 4 options, got {len(options)}")
        if any(not o for o in options):
            raise ValueError("options must not be empty")
        if len({o.lower() for o in options}) != 4:
            raise ValueError("options must be pairwise distinct")
        return options


class MultipleSelectionQuestion(QuestionBase):
    type: Literal["MULTIPLE_SELECTION"] = "MULTIPLE_SELECTION"
    options: List[str]
    correct_answer_indices: List[int]

    @field_validator("options")
    @classmethod
    def _four_options(cls, v: List[str]) -> List[str]:
        options = [str(o).strip() for o in v]
        if len(options) != 4 or any(not o for o in options):
            raise ValueError("multiple selection needs exactly 4 non-empty options")
        return options

    @field_validator("correct_answer_indices")
    @classmethod
    def _two_or_three_indices(cls, v: List[int]) -> List[int]:
        indices = sorted(set(v))
        if any(i < 0 or i > 3 for i in indices):
            raise ValueError("correct indices must be within 0..3")
        if not 2 <= len(indices) <= 3:
            raise ValueError(f"multiple selection needs 2 or 3 correct options, got {len(indices)}")
        return indices


class FreeResponseQuestion(QuestionBase):
    """Open question; questionText mirrors prompt so every question has a text."""
    type: Literal["FREE_RESPONSE"] = "FREE_RESPONSE"
    prompt: str = Field(..., min_length=1)
    sample_answer: str = ""

    @model_validator(mode="before")
    @classmethod
    def _mirror_prompt(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        prompt = data.get("prompt")
        text = data.get("questionText") or data.get("question_text")
        if prompt and not text:
            data = {**data, "questionText": prompt}
        elif text and not prompt:
            data = {**data, "prompt": text}
        return data


Question = Annotated[
    Union[TrueFalseQuestion, MultipleChoiceQuestion, MultipleSelectionQuestion, FreeResponseQuestion],
    Field(discriminator="type"),
]


# ─── Counts ────────────────────────────────────────────────────────────────────

class QuestionCounts(BaseModel):
    """Requested number of questions per type."""
    tf: int = Field(0, ge=0)
    mc: int = Field(0, ge=0)
    ms: int = Field(0, ge=0)
    des: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.tf + self.mc + self.ms + self.des

    @property
    def objective_total(self) -> int:
        """Questions the AI is asked for (free response is always local)."""
        return self.tf + self.mc + self.ms

    def for_type(self, qtype: QuestionType) -> int:
        return getattr(self, TYPE_PREFIX[QuestionType(qtype)])

    @classmethod
    def from_total(cls, n: int = DEFAULT_QUESTION_COUNT) -> "QuestionCounts":
        """Split a flat total: a third true/false, the rest halved between MC and MS."""
        n = max(0, int(n))
        tf = (n + 1) // 3 if n % 3 == 2 else n // 3
        rest = n - tf
        mc = (rest + 1) // 2
        return cls(tf=tf, mc=mc, ms=rest - mc, des=0)


# ─── Evaluation ────────────────────────────────────────────────────────────────

class Evaluation(_CamelModel):
    """An assembled evaluation, ordered TF → MC → MS → FREE_RESPONSE."""
    evaluation_title: str
    questions: List[Question]
    generation_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.questions)

    def count_by_type(self) -> Dict[str, int]:
        counts = {TYPE_PREFIX[t]: 0 for t in QUESTION_TYPE_ORDER}
        for q in self.questions:
            counts[TYPE_PREFIX[QuestionType(q.type)]] += 1
        return counts


# ─── HTTP requests ─────────────────────────────────────────────────────────────

class GenerateEvaluationRequest(_CamelModel):
    """POST /evaluations/generate body."""
    topic: str = Field(..., description="Topic the evaluation is about")
    subject: Optional[str] = Field(None, description="Subject name")
    book_title: Optional[str] = Field(None, description="Alias of subject")
    course: str = Field("", description="Course label, e.g. '5to Básico A'")
    language: Literal["es", "en"] = "es"
    counts: Optional[QuestionCounts] = None
    question_count: Optional[int] = Field(None, ge=0, description="Flat total, split by type")
    source_text: Optional[str] = Field(None, description="Reference material for the AI prompt and local templates")
    use_ai: bool = True

    @property
    def subject_label(self) -> str:
        return (self.subject or self.book_title or "").strip()

    def resolved_counts(self) -> QuestionCounts:
        if self.counts is not None:
            return self.counts
        if self.question_count is not None:
            return QuestionCounts.from_total(self.question_count)
        return QuestionCounts.from_total(DEFAULT_QUESTION_COUNT)


class ClassifyRequest(_CamelModel):
    topic: str
    subject: Optional[str] = None
    course: str = ""
