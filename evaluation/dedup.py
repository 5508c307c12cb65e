"""
Deduplication Guard — Step 4 of the evaluation pipeline

Wraps the synthesizer so no two questions in one evaluation share a
(type, normalized text) signature. The caller owns `used_signatures`; one set
per evaluation, never shared between requests.

Candidate indices: base, base+7, base+14, ... (25 attempts), each bumped past
templates already tried in this call until the pool is covered. When every
candidate collides the last one gets a variant suffix and is accepted, which
is logged and recorded as a TemplateExhaustionWarning.
"""

import logging
from typing import List, Optional, Set, Tuple

from evaluation.bank import TemplateBank, TemplateSet, get_bank
from evaluation.errors import TemplateExhaustionWarning
from evaluation.normalizer import normalize_signature_text
from evaluation.schemas import Domain, FreeResponseQuestion, Question, QuestionType
from evaluation.synthesizer import synthesize

log = logging.getLogger(__name__)

MAX_ATTEMPTS = 25
ATTEMPT_STRIDE = 7

Signature = Tuple[str, str]


def question_signature(question: Question) -> Signature:
    return (question.type, normalize_signature_text(question.question_text))


def _with_text(question: Question, text: str) -> Question:
    update = {"question_text": text}
    if isinstance(question, FreeResponseQuestion):
        update["prompt"] = text
    return question.model_copy(update=update)


def synthesize_unique(
    qtype: QuestionType,
    domain: Domain,
    level: int,
    topic: str,
    base_index: int,
    used_signatures: Set[Signature],
    *,
    language: str = "es",
    subject: str = "",
    bank: Optional[TemplateBank] = None,
    stamp: Optional[int] = None,
    source: Optional[TemplateSet] = None,
    warnings: Optional[List[str]] = None,
) -> Question:
    """
    Synthesize a question whose signature is not yet in used_signatures.

    The accepted signature is added to used_signatures. Always terminates.
    """
    bank = bank or get_bank(language)
    pool_size = len(bank.templates_for(qtype, domain, level, topic, subject, extra=source))
    tried: Set[int] = set()
    candidate = None
    for attempt in range(MAX_ATTEMPTS):
        index = base_index + attempt * ATTEMPT_STRIDE
        # Step past templates already tried in this call
        if len(tried) == pool_size:
            tried.clear()
        while index % pool_size in tried:
            index += 1
        tried.add(index % pool_size)

        candidate = synthesize(
            qtype, domain, level, topic, index,
            language=language, subject=subject, bank=bank, stamp=stamp, source=source,
        )
        signature = question_signature(candidate)
        if signature not in used_signatures:
            used_signatures.add(signature)
            return candidate

    # Pool exhausted: force a distinguishing suffix onto the last candidate
    labels = bank.labels
    base_text = candidate.question_text
    forced = _with_text(candidate, base_text + labels.variant_suffix)
    n = 2
    while question_signature(forced) in used_signatures:
        suffix = labels.numbered_variant_suffix.replace("{n}", str(n))
        forced = _with_text(candidate, base_text + suffix)
        n += 1

    used_signatures.add(question_signature(forced))
    warning = TemplateExhaustionWarning(
        f"{QuestionType(qtype).value}: template pool exhausted, forced '{forced.question_text}'"
    )
    log.warning(f"[DEDUP] {warning}")
    if warnings is not None:
        warnings.append(str(warning))
    return forced
