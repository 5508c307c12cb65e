"""
Deterministic Question Synthesizer — Step 3 of the evaluation pipeline

Builds one Question from the template bank. Template choice is a plain rotation,
templates[index % len(templates)], so increasing indices walk the whole pool
before any template repeats. No randomness: same inputs, same question.
"""

import time
from typing import Optional

from evaluation.bank import (
    FreeResponseTemplate,
    MultipleChoiceTemplate,
    MultipleSelectionTemplate,
    RubricLayout,
    TemplateBank,
    TemplateSet,
    TrueFalseTemplate,
    get_bank,
)
from evaluation.schemas import (
    Domain,
    FreeResponseQuestion,
    MultipleChoiceQuestion,
    MultipleSelectionQuestion,
    Question,
    QuestionType,
    TrueFalseQuestion,
    TYPE_PREFIX,
)


def _fill(text: str, topic: str, num: int) -> str:
    """Substitute {topic}, {Topic} and {num}; other braces are left alone."""
    capitalized = topic[:1].upper() + topic[1:]
    return (
        text.replace("{Topic}", capitalized)
        .replace("{topic}", topic)
        .replace("{num}", str(num))
    )


def render_sample_answer(
    template: FreeResponseTemplate,
    layout: RubricLayout,
    topic: str,
    num: int,
) -> str:
    """
    Combined expected-answer + rubric text:

        RESPUESTA ESPERADA:
        • item
        ...

        RÚBRICA DE PUNTAJE:
        • Puntaje completo (100%): ...
    """
    lines = [layout.expected_header]
    lines.extend(f"• {_fill(item, topic, num)}" for item in template.expected)
    lines.append("")
    lines.append(layout.rubric_header)
    lines.extend(
        f"• {tier}: {_fill(text, topic, num)}"
        for tier, text in zip(layout.tiers, template.rubric)
    )
    return "\n".join(lines)


def new_stamp() -> int:
    """Millisecond timestamp used in question ids."""
    return int(time.time() * 1000)


def synthesize(
    qtype: QuestionType,
    domain: Domain,
    level: int,
    topic: str,
    index: int,
    *,
    language: str = "es",
    subject: str = "",
    bank: Optional[TemplateBank] = None,
    stamp: Optional[int] = None,
    source: Optional[TemplateSet] = None,
) -> Question:
    """
    Instantiate templates[index % len(templates)] for (type, domain, level, topic).

    Always succeeds: the bank guarantees a non-empty pool for every combination.
    `source` templates (built from reference text) lead the rotation pool.
    """
    qtype = QuestionType(qtype)
    bank = bank or get_bank(language)
    labels = bank.labels
    pool = bank.templates_for(qtype, domain, level, topic, subject, extra=source)
    template = pool[index % len(pool)]

    topic_text = (topic or "").strip() or labels.default_topic
    num = index + 1
    stamp = new_stamp() if stamp is None else stamp
    qid = f"{TYPE_PREFIX[qtype]}_{stamp}_{index}"

    if isinstance(template, TrueFalseTemplate):
        explanation = template.explanation or (
            labels.tf_true_explanation if template.answer else labels.tf_false_explanation
        )
        return TrueFalseQuestion(
            id=qid,
            question_text=_fill(template.text, topic_text, num),
            correct_answer=template.answer,
            explanation=_fill(explanation, topic_text, num),
        )

    if isinstance(template, MultipleChoiceTemplate):
        options = [_fill(o, topic_text, num) for o in template.options]
        explanation = template.explanation or labels.mc_explanation.replace(
            "{answer}", options[template.correct]
        )
        return MultipleChoiceQuestion(
            id=qid,
            question_text=_fill(template.text, topic_text, num),
            options=options,
            correct_answer_index=template.correct,
            explanation=_fill(explanation, topic_text, num),
        )

    if isinstance(template, MultipleSelectionTemplate):
        options = [_fill(o, topic_text, num) for o in template.options]
        explanation = template.explanation or labels.ms_explanation.replace(
            "{answers}", ", ".join(options[i] for i in template.correct)
        )
        return MultipleSelectionQuestion(
            id=qid,
            question_text=_fill(template.text, topic_text, num),
            options=options,
            correct_answer_indices=list(template.correct),
            explanation=_fill(explanation, topic_text, num),
        )

    prompt = _fill(template.prompt, topic_text, num)
    return FreeResponseQuestion(
        id=qid,
        question_text=prompt,
        prompt=prompt,
        sample_answer=render_sample_answer(template, bank.layout(template.kind), topic_text, num),
    )
