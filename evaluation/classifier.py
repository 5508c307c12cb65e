"""
Level / Domain Classifier — Step 1 of the evaluation pipeline

Rule-based, no LLM call: keyword and grade-label regexes on normalized text.

  - level:  1–5 grade band from the course label
              1 → 1°–2° básico     2 → 3°–4° básico     3 → 5°–6° básico
              4 → 7°–8° básico     5 → enseñanza media (any "medio" grade)
            Default 3 when no band matches.
  - domain: first match wins, in this order
              MATH_PHYSICS → SCIENCE → HISTORY → LANGUAGE → GENERIC
            Matched on topic + subject together.
"""

import logging
import re
from typing import List, Optional, Tuple

from evaluation.normalizer import normalize
from evaluation.schemas import ClassificationResult, Domain

log = logging.getLogger(__name__)

DEFAULT_LEVEL = 3

# ── Grade bands (patterns run on normalized text: no accents, lowercase) ──────
LEVEL_PATTERNS: List[Tuple[int, re.Pattern]] = [
    (1, re.compile(
        r"\b[12](?:r[oa]|d[oa]|[°º])?\s*basic|primero\s*b|segundo\s*b"
        r"|\b(?:1st|2nd|first|second)\s*grade|\bgrade\s*[12]\b"
    )),
    (2, re.compile(
        r"\b[34](?:r[oa]|t[oa]|[°º])?\s*basic|tercero\s*b|cuarto\s*b"
        r"|\b(?:3rd|4th|third|fourth)\s*grade|\bgrade\s*[34]\b"
    )),
    (3, re.compile(
        r"\b[56](?:t[oa]|[°º])?\s*basic|quinto\s*b|sexto\s*b"
        r"|\b(?:5th|6th|fifth|sixth)\s*grade|\bgrade\s*[56]\b"
    )),
    (4, re.compile(
        r"\b[78](?:m[oa]|v[oa]|[°º])?\s*basic|septimo|octavo"
        r"|\b(?:7th|8th|seventh|eighth)\s*grade|\bgrade\s*[78]\b"
    )),
    (5, re.compile(
        r"\b[1-4](?:r[oa]|d[oa]|t[oa]|[°º])?\s*medi|primero\s*m|segundo\s*m|tercero\s*m|cuarto\s*m"
        r"|\b(?:i{1,3}|iv)\s*medi|\bmedi[oa]\b|ensenanza\s*media"
        r"|\b(?:9th|10th|11th|12th|ninth|tenth|eleventh|twelfth)\s*grade"
        r"|\bgrade\s*(?:9|1[0-2])\b|high\s*school"
    )),
]

# ── Domain keywords ───────────────────────────────────────────────────────────
MATH_KEYWORDS = re.compile(
    r"matem|math|algebra|geometr|aritmet|calculo|trigonometr|ecuacion|fraccion|decimal"
    r"|porcentaje|multiplic|divisi|sumas?|restas?|numero|potencias\b|exponen"
    r"|arithmetic|equation|fraction|percent|number"
)
PHYSICS_KEYWORDS = re.compile(
    r"fisica|physics|mecanica|mechanics|cinetica|kinetic|dinamica|dynamics|fuerza|force"
    r"|velocidad|velocity|speed|aceleracion|acceleration|energia|energy"
    r"|trabajo\s*mecanico|potencia\s*(?:mecanica|electrica)"
)
SCIENCE_KEYWORDS = re.compile(
    r"ciencia|science|biolog|quimic|chemi|naturaleza|nature|ambiente|environment|ecolog"
    r"|ecosystem|sistema|celula|\bcells?\b|planeta|planet|respirat|fotosintesis|photosynth"
)
HISTORY_KEYWORDS = re.compile(
    r"historia|history|geografia|geograph|social|civica|civics|ciudadan|citizen|gobierno"
    r"|government|pais|country|cultura|culture|civilizaci|civiliz"
)
LANGUAGE_KEYWORDS = re.compile(
    r"lenguaje|language|literatura|literature|espanol|spanish|english|gramatica|grammar"
    r"|ortograf|spelling|lectura|reading|escritura|writing|comunicaci|communicat"
)

DOMAIN_RULES: List[Tuple[Domain, Tuple[re.Pattern, ...]]] = [
    (Domain.MATH_PHYSICS, (MATH_KEYWORDS, PHYSICS_KEYWORDS)),
    (Domain.SCIENCE, (SCIENCE_KEYWORDS,)),
    (Domain.HISTORY, (HISTORY_KEYWORDS,)),
    (Domain.LANGUAGE, (LANGUAGE_KEYWORDS,)),
]


def detect_level(course_label: Optional[str]) -> int:
    """Grade band for a course label such as '5to Básico A'. Unknown → 3."""
    text = normalize(course_label)
    for level, pattern in LEVEL_PATTERNS:
        if pattern.search(text):
            return level
    return DEFAULT_LEVEL


def detect_domain(topic: Optional[str], subject: Optional[str] = None) -> Domain:
    """Subject domain from topic and subject keywords. Unknown → GENERIC."""
    text = f"{normalize(topic)} {normalize(subject)}"
    for domain, patterns in DOMAIN_RULES:
        if any(p.search(text) for p in patterns):
            return domain
    return Domain.GENERIC


def classify(
    topic: Optional[str],
    subject: Optional[str] = None,
    course_label: Optional[str] = None,
) -> ClassificationResult:
    """
    Step 1: classify a request into (level, domain).

    Pure and total: every input, empty strings included, yields a result.
    """
    result = ClassificationResult(
        level=detect_level(course_label),
        domain=detect_domain(topic, subject),
    )
    log.debug(
        "[CLASSIFY] topic=%r subject=%r course=%r -> level=%s domain=%s",
        topic, subject, course_label, result.level, result.domain.value,
    )
    return result
