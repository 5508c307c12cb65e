"""
AI Response Splicer — Step 6 of the evaluation pipeline

Merges whatever the AI returned with locally synthesized questions so the
result has exactly the requested count per type:

  1. map raw AI items to typed questions (unknown type / invalid shape → dropped)
  2. keep the first N per type in AI order, skipping duplicate signatures
  3. fill each shortfall through the deduplication guard, seeded with the
     AI signatures (reference-text templates lead the pool when given)
  4. concatenate TF → MC → MS → FREE_RESPONSE

Empty AI input means 100% local synthesis. Never raises for bad AI content.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from evaluation.bank import TemplateBank, TemplateSet, get_bank
from evaluation.dedup import Signature, question_signature, synthesize_unique
from evaluation.schemas import (
    Domain,
    FreeResponseQuestion,
    MultipleChoiceQuestion,
    MultipleSelectionQuestion,
    Question,
    QuestionCounts,
    QuestionType,
    QUESTION_TYPE_ORDER,
    TrueFalseQuestion,
    TYPE_PREFIX,
)

log = logging.getLogger(__name__)

TYPE_ALIASES = {
    "TRUE_FALSE": QuestionType.TRUE_FALSE,
    "TF": QuestionType.TRUE_FALSE,
    "MULTIPLE_CHOICE": QuestionType.MULTIPLE_CHOICE,
    "MC": QuestionType.MULTIPLE_CHOICE,
    "MULTIPLE_SELECTION": QuestionType.MULTIPLE_SELECTION,
    "MS": QuestionType.MULTIPLE_SELECTION,
    "FREE_RESPONSE": QuestionType.FREE_RESPONSE,
    "DES": QuestionType.FREE_RESPONSE,
}

_TRUE_STRINGS = {"true", "verdadero", "v", "t", "1", "yes", "si", "sí"}


# ─── Raw item mapping ──────────────────────────────────────────────────────────

def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _question_text(raw: Dict[str, Any]) -> str:
    for key in ("questionText", "question_text", "text", "prompt"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _options_and_flags(raw: Dict[str, Any]):
    """Options as plain strings, plus per-option correct flags when given as objects."""
    options, flags = [], []
    raw_options = raw.get("options")
    if not isinstance(raw_options, (list, tuple)):
        return options, flags
    for opt in raw_options:
        if isinstance(opt, dict):
            options.append(str(opt.get("text", "")).strip())
            flags.append(_as_bool(opt.get("correct", False)))
        else:
            options.append(str(opt).strip())
            flags.append(False)
    return options, flags


def coerce_ai_question(raw: Any, position: int) -> Optional[Question]:
    """
    Map one raw AI item to a typed question, or None when it cannot be used.

    Accepts camelCase and snake_case keys and the short tags tf/mc/ms/des.
    """
    if not isinstance(raw, dict):
        return None
    qtype = TYPE_ALIASES.get(str(raw.get("type", "")).strip().upper())
    if qtype is None:
        log.info(f"[SPLICE] Dropping AI item {position}: unknown type {raw.get('type')!r}")
        return None

    qid = f"{TYPE_PREFIX[qtype]}_ai_{position}"
    text = _question_text(raw)
    explanation = str(raw.get("explanation") or "")

    try:
        if qtype == QuestionType.TRUE_FALSE:
            return TrueFalseQuestion(
                id=qid,
                question_text=text,
                correct_answer=_as_bool(raw.get("correctAnswer", raw.get("correct_answer", False))),
                explanation=explanation,
            )

        if qtype == QuestionType.MULTIPLE_CHOICE:
            options, _ = _options_and_flags(raw)
            index = raw.get("correctAnswerIndex", raw.get("correct_answer_index", raw.get("correctIndex", 0)))
            return MultipleChoiceQuestion(
                id=qid,
                question_text=text,
                options=options,
                correct_answer_index=_as_int(index),
                explanation=explanation,
            )

        if qtype == QuestionType.MULTIPLE_SELECTION:
            options, flags = _options_and_flags(raw)
            indices = raw.get("correctAnswerIndices", raw.get("correct_answer_indices"))
            if indices is None:
                indices = [i for i, flag in enumerate(flags) if flag]
            if not isinstance(indices, (list, tuple)):
                log.info(f"[SPLICE] Dropping AI item {position} (MULTIPLE_SELECTION): indices {indices!r} is not a list")
                return None
            return MultipleSelectionQuestion(
                id=qid,
                question_text=text,
                options=options,
                correct_answer_indices=[_as_int(i, -1) for i in indices],
                explanation=explanation,
            )

        prompt = str(raw.get("prompt") or text)
        return FreeResponseQuestion(
            id=qid,
            question_text=prompt,
            prompt=prompt,
            sample_answer=str(raw.get("sampleAnswer") or raw.get("sample_answer") or ""),
            explanation=explanation,
        )
    except ValidationError as e:
        log.info(f"[SPLICE] Dropping AI item {position} ({qtype.value}): {e.error_count()} validation error(s)")
        return None
    except (TypeError, ValueError) as e:
        log.info(f"[SPLICE] Dropping AI item {position} ({qtype.value}): {e}")
        return None


# ─── Splice ────────────────────────────────────────────────────────────────────

def splice(
    ai_questions: Optional[List[Any]],
    counts: QuestionCounts,
    domain: Domain,
    level: int,
    topic: str,
    *,
    language: str = "es",
    subject: str = "",
    bank: Optional[TemplateBank] = None,
    stamp: Optional[int] = None,
    source: Optional[TemplateSet] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Question]:
    """Return exactly counts.for_type(t) questions per type, ordered TF → MC → MS → FR."""
    bank = bank or get_bank(language)
    warnings: List[str] = []
    used: Set[Signature] = set()

    kept: Dict[QuestionType, List[Question]] = {t: [] for t in QUESTION_TYPE_ORDER}
    for position, raw in enumerate(ai_questions or []):
        question = coerce_ai_question(raw, position)
        if question is None:
            continue
        qtype = QuestionType(question.type)
        if len(kept[qtype]) >= counts.for_type(qtype):
            continue  # over-production beyond the requested count
        signature = question_signature(question)
        if signature in used:
            log.info(f"[SPLICE] Dropping duplicate AI item {position}: '{question.question_text[:60]}'")
            continue
        used.add(signature)
        kept[qtype].append(question)

    result: List[Question] = []
    ai_counts: Dict[str, int] = {}
    local_counts: Dict[str, int] = {}
    for qtype in QUESTION_TYPE_ORDER:
        wanted = counts.for_type(qtype)
        questions = list(kept[qtype])
        for base_index in range(wanted - len(questions)):
            questions.append(
                synthesize_unique(
                    qtype, domain, level, topic, base_index, used,
                    language=language, subject=subject, bank=bank,
                    stamp=stamp, source=source, warnings=warnings,
                )
            )
        prefix = TYPE_PREFIX[qtype]
        ai_counts[prefix] = len(kept[qtype])
        local_counts[prefix] = wanted - len(kept[qtype])
        result.extend(questions)

    log.info(f"[SPLICE] ai={ai_counts} local={local_counts}")
    if metadata is not None:
        metadata["ai_counts"] = ai_counts
        metadata["local_counts"] = local_counts
        metadata.setdefault("warnings", []).extend(warnings)
    return result
