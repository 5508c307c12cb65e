"""
Question Template Bank — Step 2 of the evaluation pipeline

Static template tables loaded from evaluation/data/<language>.json and validated
once on load. The bank is read-only after loading and shared across requests.

Lookup for (type, domain, level, topic):
  0. templates built from the request's reference text, if any
     (see source_concepts.py; rules under "source" in the data file)
  1. topic banks whose pattern matches the topic (and whose domains include
     the classified domain) are placed first in the rotation pool
  2. domain tables: exact level → "any" → nearest populated level
  3. the same level chain on GENERIC

MATH_PHYSICS free-response comes from keyword-matched problem sets instead,
with a generic open problem for unmatched math topics.
"""

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from evaluation.normalizer import normalize
from evaluation.schemas import Domain, QuestionType

log = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_LANGUAGE = "es"
ANY_LEVEL = "any"

TYPE_KEYS = {
    QuestionType.TRUE_FALSE: "true_false",
    QuestionType.MULTIPLE_CHOICE: "multiple_choice",
    QuestionType.MULTIPLE_SELECTION: "multiple_selection",
    QuestionType.FREE_RESPONSE: "free_response",
}


# ─── Template shapes ───────────────────────────────────────────────────────────

class TrueFalseTemplate(BaseModel):
    text: str = Field(..., min_length=1)
    answer: bool
    explanation: str = ""


class MultipleChoiceTemplate(BaseModel):
    text: str = Field(..., min_length=1)
    options: List[str]
    correct: int = Field(..., ge=0, le=3)
    explanation: str = ""

    @field_validator("options")
    @classmethod
    def _four_distinct(cls, v: List[str]) -> List[str]:
        if len(v) != 4 or len({o.strip().lower() for o in v}) != 4:
            raise ValueError(f"needs 4 distinct options: {v}")
        return v


class MultipleSelectionTemplate(BaseModel):
    text: str = Field(..., min_length=1)
    options: List[str]
    correct: List[int]
    explanation: str = ""

    @field_validator("options")
    @classmethod
    def _four_options(cls, v: List[str]) -> List[str]:
        if len(v) != 4 or any(not o.strip() for o in v):
            raise ValueError(f"needs 4 non-empty options: {v}")
        return v

    @field_validator("correct")
    @classmethod
    def _two_or_three(cls, v: List[int]) -> List[int]:
        indices = sorted(set(v))
        if not 2 <= len(indices) <= 3 or any(i < 0 or i > 3 for i in indices):
            raise ValueError(f"needs 2..3 correct indices within 0..3: {v}")
        return indices


class FreeResponseTemplate(BaseModel):
    kind: Literal["essay", "problem", "open_problem"] = "essay"
    prompt: str = Field(..., min_length=1)
    expected: List[str] = Field(..., min_length=1)
    rubric: List[str] = Field(..., min_length=4, max_length=4)


Template = Union[TrueFalseTemplate, MultipleChoiceTemplate, MultipleSelectionTemplate, FreeResponseTemplate]


class TemplateSet(BaseModel):
    true_false: List[TrueFalseTemplate] = Field(default_factory=list)
    multiple_choice: List[MultipleChoiceTemplate] = Field(default_factory=list)
    multiple_selection: List[MultipleSelectionTemplate] = Field(default_factory=list)
    free_response: List[FreeResponseTemplate] = Field(default_factory=list)

    def get(self, qtype: QuestionType) -> List[Template]:
        return getattr(self, TYPE_KEYS[QuestionType(qtype)])


class DomainBank(BaseModel):
    levels: Dict[str, TemplateSet]

    def lookup(self, qtype: QuestionType, level: int) -> List[Template]:
        """First non-empty pool along exact level → any → nearest level."""
        for key in _level_chain(self.levels, level):
            pool = self.levels[key].get(qtype)
            if pool:
                return pool
        return []


def _level_chain(levels: Dict[str, object], level: int) -> List[str]:
    chain = []
    if str(level) in levels:
        chain.append(str(level))
    if ANY_LEVEL in levels:
        chain.append(ANY_LEVEL)
    numeric = sorted(
        (int(k) for k in levels if k.isdigit() and k != str(level)),
        key=lambda n: (abs(n - level), n),
    )
    chain.extend(str(n) for n in numeric)
    return chain


class TopicBank(BaseModel):
    name: str
    pattern: str
    domains: List[Domain]
    match_subject: bool = False
    templates: TemplateSet

    def matches(self, topic: str, subject: str, domain: Domain) -> bool:
        if domain not in self.domains:
            return False
        text = normalize(topic)
        if self.match_subject:
            text = f"{text} {normalize(subject)}"
        return re.search(self.pattern, text) is not None


class ProblemSet(BaseModel):
    name: str
    pattern: str
    levels: Dict[str, List[FreeResponseTemplate]]

    def lookup(self, level: int) -> List[FreeResponseTemplate]:
        for key in _level_chain(self.levels, level):
            if self.levels[key]:
                return self.levels[key]
        return []


class RubricLayout(BaseModel):
    expected_header: str
    rubric_header: str
    tiers: List[str] = Field(..., min_length=4, max_length=4)


class SourceTopicRule(BaseModel):
    """Wrong options and false statements for one topic, used with source text."""
    pattern: str
    distractors: List[str] = Field(default_factory=list)
    false_statements: List[str] = Field(default_factory=list)


class SourceRules(BaseModel):
    """Language-specific rules for turning reference text into templates."""
    min_lines: int = 6
    ignored_values: List[str] = Field(default_factory=list)
    ignored_phrases: List[str] = Field(default_factory=list)
    header_words: List[str] = Field(default_factory=list)
    definition_markers: List[str] = Field(default_factory=list)
    process_verbs: List[str] = Field(default_factory=list)
    topics: List[SourceTopicRule] = Field(default_factory=list)
    default_distractors: List[str] = Field(..., min_length=3)
    tf_true_explanation: str
    tf_false_explanation: str
    mc_question: str
    mc_explanation: str
    ms_questions: List[str] = Field(..., min_length=1)
    ms_explanation: str

    def rule_for(self, topic: str) -> Optional[SourceTopicRule]:
        text = normalize(topic)
        for rule in self.topics:
            if re.search(rule.pattern, text):
                return rule
        return None


class BankLabels(BaseModel):
    default_topic: str
    variant_suffix: str
    numbered_variant_suffix: str
    tf_true_explanation: str
    tf_false_explanation: str
    mc_explanation: str
    ms_explanation: str
    layouts: Dict[str, RubricLayout]


# ─── Bank ──────────────────────────────────────────────────────────────────────

class TemplateBank(BaseModel):
    language: str
    labels: BankLabels
    domains: Dict[Domain, DomainBank]
    topics: List[TopicBank] = Field(default_factory=list)
    problem_sets: List[ProblemSet] = Field(default_factory=list)
    generic_problems: List[FreeResponseTemplate] = Field(default_factory=list)
    source: SourceRules

    @model_validator(mode="after")
    def _generic_covers_every_type(self) -> "TemplateBank":
        generic = self.domains.get(Domain.GENERIC)
        if generic is None or ANY_LEVEL not in generic.levels:
            raise ValueError("bank needs a GENERIC 'any' level")
        for qtype in QuestionType:
            if not generic.levels[ANY_LEVEL].get(qtype):
                raise ValueError(f"GENERIC 'any' level has no {qtype.value} templates")
        if not self.generic_problems:
            raise ValueError("bank needs at least one generic problem")
        for kind in ("essay", "problem", "open_problem"):
            if kind not in self.labels.layouts:
                raise ValueError(f"missing rubric layout '{kind}'")
        return self

    def templates_for(
        self,
        qtype: QuestionType,
        domain: Domain,
        level: int,
        topic: str = "",
        subject: str = "",
        extra: Optional[TemplateSet] = None,
    ) -> List[Template]:
        """
        Rotation pool for one (type, domain, level, topic). Never empty.

        `extra` templates (built from reference text) come first, then
        topic-bank templates, then the domain pool (or GENERIC).
        """
        qtype = QuestionType(qtype)
        pool: List[Template] = list(extra.get(qtype)) if extra is not None else []
        for topic_bank in self.topics:
            if topic_bank.matches(topic, subject, domain):
                pool.extend(topic_bank.templates.get(qtype))

        if domain == Domain.MATH_PHYSICS and qtype == QuestionType.FREE_RESPONSE:
            pool.extend(self._problems_for(topic, level))
            return pool

        domain_bank = self.domains.get(domain)
        base = domain_bank.lookup(qtype, level) if domain_bank else []
        if not base:
            base = self.domains[Domain.GENERIC].lookup(qtype, level)
        pool.extend(base)
        return pool

    def _problems_for(self, topic: str, level: int) -> List[FreeResponseTemplate]:
        text = normalize(topic)
        for problem_set in self.problem_sets:
            if re.search(problem_set.pattern, text):
                problems = problem_set.lookup(level)
                if problems:
                    return problems
        return self.generic_problems

    def layout(self, kind: str) -> RubricLayout:
        return self.labels.layouts[kind]


def load_bank(path: Path) -> TemplateBank:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return TemplateBank.model_validate(data)


def resolve_language(language: Optional[str]) -> str:
    """Bank language for a requested one: case-insensitive, unknown → 'es'."""
    lang = (language or DEFAULT_LANGUAGE).strip().lower()
    if not (DATA_DIR / f"{lang}.json").exists():
        log.info(f"[BANK] No template bank for language '{language}', using '{DEFAULT_LANGUAGE}'")
        return DEFAULT_LANGUAGE
    return lang


def get_bank(language: Optional[str] = DEFAULT_LANGUAGE) -> TemplateBank:
    """Return the shared bank for a language. Unknown → 'es'."""
    return _load_bank(resolve_language(language))


@lru_cache(maxsize=None)
def _load_bank(lang: str) -> TemplateBank:
    bank = load_bank(DATA_DIR / f"{lang}.json")
    log.info(
        f"[BANK] Loaded '{lang}' bank: {len(bank.domains)} domains, "
        f"{len(bank.topics)} topic banks, {len(bank.problem_sets)} problem sets"
    )
    return bank
