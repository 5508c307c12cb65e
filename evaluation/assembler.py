"""
Evaluation Assembler — Step 7 of the evaluation pipeline

  1. classify (level, domain)
  2. optional AI call for the objective questions (any failure → empty)
  3. splice AI + local questions to the exact per-type counts; local ones
     draw first on templates built from the reference text, if any
  4. title "<PREFIX> - <TOPIC_UPPERCASE>", fresh ids "<prefix>_<timestamp>_<position>"
  5. count check (mismatch is logged, never raised)

A blank topic is the only error surfaced to callers. Anything unexpected
inside the pipeline returns the single-question fallback evaluation.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from evaluation.ai_generator import CompleteFn, request_ai_questions
from evaluation.bank import get_bank
from evaluation.classifier import classify
from evaluation.errors import EvaluationError, InvariantViolation
from evaluation.schemas import (
    ClassificationResult,
    Evaluation,
    Question,
    QuestionCounts,
    QuestionType,
    TrueFalseQuestion,
    TYPE_PREFIX,
)
from evaluation.source_concepts import build_source_templates
from evaluation.splicer import splice
from evaluation.synthesizer import new_stamp

log = logging.getLogger(__name__)

AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))

TITLE_PREFIX = {"es": "EVALUACIÓN", "en": "EVALUATION"}

FALLBACK_TEXT = {
    "es": '¿El tema "{topic}" está relacionado con "{subject}"?',
    "en": 'Is the topic "{topic}" related to "{subject}"?',
}
FALLBACK_SUBJECT = {"es": "la asignatura", "en": "the subject"}
FALLBACK_EXPLANATION = {
    "es": "Pregunta de respaldo: no fue posible generar la evaluación completa.",
    "en": "Fallback question: the full evaluation could not be generated.",
}


def _lang(language: Optional[str]) -> str:
    return "en" if (language or "").lower() == "en" else "es"


def format_title(topic: str, language: str = "es") -> str:
    return f"{TITLE_PREFIX[_lang(language)]} - {topic.strip().upper()}"


def _require_topic(topic: Optional[str]) -> str:
    if topic is None or not str(topic).strip():
        raise EvaluationError("topic must not be empty")
    return str(topic).strip()


def restamp_ids(questions: List[Question], stamp: Optional[int] = None) -> List[Question]:
    """Give every question a fresh id unique within the evaluation."""
    stamp = new_stamp() if stamp is None else stamp
    return [
        q.model_copy(update={"id": f"{TYPE_PREFIX[QuestionType(q.type)]}_{stamp}_{pos}"})
        for pos, q in enumerate(questions)
    ]


def fallback_evaluation(
    topic: str,
    subject: str = "",
    language: str = "es",
    reason: str = "",
) -> Evaluation:
    """Single TRUE_FALSE question returned when the pipeline cannot complete."""
    lang = _lang(language)
    text = FALLBACK_TEXT[lang].format(
        topic=topic.strip(),
        subject=(subject or "").strip() or FALLBACK_SUBJECT[lang],
    )
    question = TrueFalseQuestion(
        id=f"tf_{new_stamp()}_0",
        question_text=text,
        correct_answer=True,
        explanation=FALLBACK_EXPLANATION[lang],
    )
    warnings = [reason] if reason else []
    return Evaluation(
        evaluation_title=format_title(topic, lang),
        questions=[question],
        generation_metadata={"source": "fallback", "warnings": warnings},
    )


def _source_label(ai_total: int, total: int) -> str:
    if ai_total == 0:
        return "local"
    if ai_total == total:
        return "ai"
    return "mixed"


def assemble_evaluation(
    topic: str,
    subject: str = "",
    course: str = "",
    language: str = "es",
    counts: Optional[QuestionCounts] = None,
    ai_items: Optional[List[Any]] = None,
    classification: Optional[ClassificationResult] = None,
    metadata: Optional[Dict[str, Any]] = None,
    source_text: Optional[str] = None,
) -> Evaluation:
    """
    Synchronous core: classify, splice the given AI items, title and check.

    Raises:
        EvaluationError: topic is empty
    """
    topic = _require_topic(topic)
    lang = _lang(language)
    counts = counts if counts is not None else QuestionCounts.from_total()
    metadata = metadata if metadata is not None else {}
    metadata.setdefault("warnings", [])

    if counts.total == 0:
        return fallback_evaluation(topic, subject, lang, reason="no questions requested")

    try:
        result = classification or classify(topic, subject, course)
        log.info(f"[STEP] Classified: level={result.level} domain={result.domain.value}")
        bank = get_bank(lang)
        source = build_source_templates(source_text, topic, bank)
        if source is not None:
            metadata["source_templates"] = {
                TYPE_PREFIX[t]: len(source.get(t)) for t in QuestionType if t != QuestionType.FREE_RESPONSE
            }
        stamp = new_stamp()
        questions = splice(
            ai_items, counts, result.domain, result.level, topic,
            language=lang, subject=subject or "", bank=bank,
            stamp=stamp, source=source, metadata=metadata,
        )
        questions = restamp_ids(questions, stamp)
    except Exception as e:
        log.error(f"[ASSEMBLE] Pipeline failed, returning fallback evaluation: {e}")
        return fallback_evaluation(topic, subject, lang, reason=f"pipeline error: {e}")

    if len(questions) != counts.total:
        violation = InvariantViolation(
            f"expected {counts.total} questions, assembled {len(questions)}"
        )
        log.error(f"[ASSEMBLE] {violation}")
        metadata["warnings"].append(str(violation))

    ai_total = sum(metadata.get("ai_counts", {}).values())
    metadata.update({
        "classification": result.model_dump(by_alias=True, mode="json"),
        "source": _source_label(ai_total, len(questions)),
        "counts": counts.model_dump(),
        "language": lang,
    })
    return Evaluation(
        evaluation_title=format_title(topic, lang),
        questions=questions,
        generation_metadata=metadata,
    )


async def generate_evaluation(
    topic: str,
    subject: str = "",
    course: str = "",
    language: str = "es",
    counts: Optional[QuestionCounts] = None,
    ai: Optional[CompleteFn] = None,
    source_text: Optional[str] = None,
    timeout: float = AI_TIMEOUT_SECONDS,
) -> Evaluation:
    """
    Full pipeline. `ai` is the text-completion capability (None → local only).

    Raises:
        EvaluationError: topic is empty
    """
    topic = _require_topic(topic)
    lang = _lang(language)
    counts = counts if counts is not None else QuestionCounts.from_total()
    metadata: Dict[str, Any] = {"warnings": []}

    log.info(
        f"[STEP] Generate evaluation: topic='{topic[:80]}' subject='{subject}' "
        f"course='{course}' lang={lang} counts={counts.model_dump()}"
    )

    ai_items: List[Any] = []
    classification = None
    if counts.total > 0:
        try:
            classification = classify(topic, subject, course)
            if ai is not None:
                ai_items = await request_ai_questions(
                    ai, topic, subject or "", course or "", classification.domain, counts,
                    language=lang, source_text=source_text, timeout=timeout,
                    metadata=metadata,
                )
        except Exception as e:
            log.error(f"[ASSEMBLE] AI stage failed unexpectedly: {e}")
            metadata["warnings"].append(f"AI stage error: {e}")
            ai_items = []

    evaluation = assemble_evaluation(
        topic, subject, course, lang, counts,
        ai_items=ai_items, classification=classification, metadata=metadata,
        source_text=source_text,
    )
    log.info(
        f"[STEP] Evaluation ready: {evaluation.total} questions "
        f"source={evaluation.generation_metadata.get('source')}"
    )
    return evaluation
