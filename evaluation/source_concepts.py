"""
Source Concepts — templates from reference text (e.g. extracted PDF content)

When a request carries reference material, statements and component names are
pulled out of it and turned into TF / MC / MS templates. The synthesizer puts
these ahead of the bank pool, so a local-only evaluation still reflects the
material. The AI prompt receives the same text separately.

Line classification (after stripping bullets, skipping metadata and headers):
  - component:  "Name: description"   (20 < len < 150, name < 50 chars)
  - definition: capitalized line with " es " / " son " / " significa "
  - process:    line using one of the process verbs
  - fact:       plain line, 30 < len < 100, no ":"

Fewer than `min_lines` usable lines (longer than 10 characters) → no templates.
"""

import logging
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from evaluation.bank import (
    MultipleChoiceTemplate,
    MultipleSelectionTemplate,
    SourceRules,
    TemplateBank,
    TemplateSet,
    TrueFalseTemplate,
)
from evaluation.normalizer import normalize, normalize_signature_text

log = logging.getLogger(__name__)

MAX_TEMPLATES_PER_TYPE = 12
MC_DESCRIPTION_LIMIT = 80
STATEMENT_LIMIT = 150
SNIPPET_LIMIT = 120

_BULLET = re.compile(r"^[-•*]\s*")
_HEADER = re.compile(r"^[A-ZÁÉÍÓÚÑ\s\-]+:?$")
_DEFINITION_START = re.compile(r"^[A-ZÁÉÍÓÚÑ][a-záéíóúñ]")


class SourceConcepts(BaseModel):
    components: List[Tuple[str, str]] = Field(default_factory=list)
    definitions: List[str] = Field(default_factory=list)
    processes: List[str] = Field(default_factory=list)
    facts: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.components or self.definitions or self.processes or self.facts)


# ─── Line filters ──────────────────────────────────────────────────────────────

def is_section_header(line: str, rules: SourceRules) -> bool:
    """All-caps heading such as 'ÓRGANOS DEL SISTEMA RESPIRATORIO:'."""
    trimmed = line.strip()
    if len(trimmed) < 6 or len(trimmed) > 90 or not _HEADER.match(trimmed):
        return False
    text = normalize(trimmed)
    return any(word in text for word in rules.header_words)


def should_ignore_line(line: str, rules: SourceRules) -> bool:
    text = normalize(line).rstrip(":").strip()
    if not text or is_section_header(line, rules):
        return True
    if text in rules.ignored_values:
        return True
    return any(phrase in text for phrase in rules.ignored_phrases)


# ─── Extraction ────────────────────────────────────────────────────────────────

def extract_concepts(source_text: Optional[str], rules: SourceRules) -> SourceConcepts:
    lines = [l.strip() for l in (source_text or "").splitlines() if len(l.strip()) > 10]
    concepts = SourceConcepts()
    if len(lines) < rules.min_lines:
        return concepts

    verbs = re.compile(r"\b(?:" + "|".join(map(re.escape, rules.process_verbs)) + r")\b", re.IGNORECASE) \
        if rules.process_verbs else None
    seen_names = set()

    for line in lines:
        clean = _BULLET.sub("", line)
        if should_ignore_line(clean, rules):
            continue

        if ":" in clean and 20 < len(clean) < 150:
            name, _, description = clean.partition(":")
            name, description = name.strip(), description.strip()
            key = normalize(name)
            if (3 < len(name) < 50 and description and key not in seen_names
                    and not should_ignore_line(name, rules)):
                seen_names.add(key)
                concepts.components.append((name, description))

        if _DEFINITION_START.match(clean) and any(m in clean for m in rules.definition_markers):
            concepts.definitions.append(clean[:SNIPPET_LIMIT])

        if verbs is not None and verbs.search(clean):
            concepts.processes.append(clean[:SNIPPET_LIMIT])

        if 30 < len(clean) < 100 and ":" not in clean:
            concepts.facts.append(clean)

    return concepts


# ─── Templates ─────────────────────────────────────────────────────────────────

def _statement(text: str) -> str:
    text = text.strip().rstrip(".").strip()[:STATEMENT_LIMIT]
    return text[:1].upper() + text[1:] + "."


def _true_statements(concepts: SourceConcepts) -> List[str]:
    candidates = list(concepts.definitions)
    candidates += [description for _, description in concepts.components[:10]]
    candidates += concepts.processes + concepts.facts
    statements, seen = [], set()
    for candidate in candidates:
        if len(candidate) <= 15:
            continue
        statement = _statement(candidate)
        key = normalize_signature_text(statement)
        if key not in seen:
            seen.add(key)
            statements.append(statement)
    return statements


def _distractors(rules: SourceRules, topic: str, exclude: List[str]) -> List[str]:
    rule = rules.rule_for(topic)
    pool = (rule.distractors if rule else []) + rules.default_distractors
    taken = {normalize(e) for e in exclude}
    result = []
    for option in pool:
        if normalize(option) not in taken:
            taken.add(normalize(option))
            result.append(option)
    return result


def _true_false(concepts: SourceConcepts, rules: SourceRules, topic: str) -> List[TrueFalseTemplate]:
    rule = rules.rule_for(topic)
    trues = _true_statements(concepts)
    falses = [_statement(s) for s in (rule.false_statements if rule else [])]
    templates: List[TrueFalseTemplate] = []
    for i in range(max(len(trues), len(falses))):
        if i < len(trues):
            templates.append(TrueFalseTemplate(text=trues[i], answer=True, explanation=rules.tf_true_explanation))
        if i < len(falses):
            templates.append(TrueFalseTemplate(text=falses[i], answer=False, explanation=rules.tf_false_explanation))
    return templates[:MAX_TEMPLATES_PER_TYPE]


def _multiple_choice(concepts: SourceConcepts, rules: SourceRules, topic: str) -> List[MultipleChoiceTemplate]:
    components = concepts.components
    if len(components) < 2:
        return []
    names = [name for name, _ in components]
    templates = []
    for i, (name, description) in enumerate(components[:MAX_TEMPLATES_PER_TYPE]):
        others = names[i + 1:] + names[:i]
        wrong = (others + _distractors(rules, topic, names))[:3]
        correct = i % 4
        options = list(wrong)
        options.insert(correct, name)
        snippet = description[:MC_DESCRIPTION_LIMIT].rstrip(".")
        try:
            templates.append(MultipleChoiceTemplate(
                text=rules.mc_question.replace("{description}", snippet),
                options=options,
                correct=correct,
                explanation=rules.mc_explanation.replace("{answer}", name).replace("{description}", snippet),
            ))
        except ValidationError:
            log.debug(f"[SOURCE] Skipping MC template for component '{name}'")
    return templates


def _multiple_selection(concepts: SourceConcepts, rules: SourceRules, topic: str) -> List[MultipleSelectionTemplate]:
    names = [name for name, _ in concepts.components if len(name) < 40]
    if len(names) < 3:
        return []
    wrong = _distractors(rules, topic, names)
    templates = []
    for k, question in enumerate(rules.ms_questions):
        first, second = names[k % len(names)], names[(k + 1) % len(names)]
        w0, w1 = wrong[(2 * k) % len(wrong)], wrong[(2 * k + 1) % len(wrong)]
        try:
            templates.append(MultipleSelectionTemplate(
                text=question,
                options=[first, w0, second, w1],
                correct=[0, 2],
                explanation=rules.ms_explanation.replace("{answers}", f"{first}, {second}"),
            ))
        except ValidationError:
            log.debug(f"[SOURCE] Skipping MS template {k}")
    return templates


def build_source_templates(
    source_text: Optional[str],
    topic: str,
    bank: TemplateBank,
) -> Optional[TemplateSet]:
    """
    TF / MC / MS templates drawn from reference text, or None when the text
    is too short or yields nothing usable.
    """
    if not source_text or not source_text.strip():
        return None
    rules = bank.source
    concepts = extract_concepts(source_text, rules)
    if concepts.is_empty:
        log.info("[SOURCE] Reference text has no usable content, using the template bank only")
        return None

    templates = TemplateSet(
        true_false=_true_false(concepts, rules, topic),
        multiple_choice=_multiple_choice(concepts, rules, topic),
        multiple_selection=_multiple_selection(concepts, rules, topic),
    )
    log.info(
        f"[SOURCE] {len(concepts.components)} components, {len(concepts.definitions)} definitions → "
        f"templates tf={len(templates.true_false)} mc={len(templates.multiple_choice)} "
        f"ms={len(templates.multiple_selection)}"
    )
    return templates
