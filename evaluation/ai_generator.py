"""
AI Question Generation — Step 5 of the evaluation pipeline

Builds a domain-aware prompt, calls the text-completion capability and parses
its JSON answer. Only objective types (TF / MC / MS) are requested; free
response is always synthesized locally.

Prompt families:
  math    — literal computable problems, numeric options   (MATH_PHYSICS)
  general — topic-specific knowledge questions            (every other domain)

Any failure (no provider, timeout, transport error, bad JSON, wrong count)
returns an empty list so the splicer fills 100% locally.
"""

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from evaluation.errors import ConfigurationError, UpstreamParseError
from evaluation.schemas import Domain, QuestionCounts

log = logging.getLogger(__name__)

CompleteFn = Callable[..., Awaitable[str]]

MATH_SOURCE_LIMIT = 2000
GENERAL_SOURCE_LIMIT = 4000


# ─── Prompts ───────────────────────────────────────────────────────────────────

MATH_PROMPT_ES = """Eres un profesor experto en MATEMÁTICAS. Genera una evaluación con PROBLEMAS MATEMÁTICOS REALES sobre el tema "{topic}" para el curso "{course}".

IMPORTANTE: Las preguntas deben ser PROBLEMAS MATEMÁTICOS con OPERACIONES Y CÁLCULOS que el estudiante debe resolver para encontrar la respuesta correcta.

Tipos de preguntas matemáticas que DEBES generar:
- Operaciones aritméticas (sumas, restas, multiplicaciones, divisiones)
- Problemas de razonamiento matemático
- Cálculos con fracciones, decimales o porcentajes según el tema
- Ecuaciones simples o complejas según el nivel
- Problemas de geometría con cálculos de área, perímetro, etc.
{source_block}
Genera exactamente {total} preguntas en este formato JSON:
{{
  "evaluationTitle": "Evaluación - {topic}",
  "questions": [
    // {tf} preguntas de Verdadero/Falso sobre resultados de operaciones:
    {{"type": "TRUE_FALSE", "questionText": "El resultado de 25 × 4 es igual a 100", "correctAnswer": true, "explanation": "25 × 4 = 100."}},
    // {mc} preguntas de alternativas (4 opciones, una correcta):
    {{"type": "MULTIPLE_CHOICE", "questionText": "María reparte 24 manzanas entre 6 amigos. ¿Cuántas recibe cada uno?", "options": ["4 manzanas", "3 manzanas", "5 manzanas", "6 manzanas"], "correctAnswerIndex": 0, "explanation": "24 ÷ 6 = 4."}},
    // {ms} preguntas de Selección Múltiple (2 o 3 correctas):
    {{"type": "MULTIPLE_SELECTION", "questionText": "¿Cuáles de las siguientes operaciones dan como resultado 12?", "options": ["3 × 4", "24 ÷ 3", "6 + 6", "15 - 2"], "correctAnswerIndices": [0, 2], "explanation": "3 × 4 = 12 y 6 + 6 = 12."}}
  ]
}}

Reglas IMPORTANTES para matemáticas:
1. TODAS las preguntas deben requerir CÁLCULOS MATEMÁTICOS
2. Las opciones de respuesta deben ser RESULTADOS NUMÉRICOS o expresiones matemáticas
3. La dificultad debe ser apropiada para el tema "{topic}" y el curso "{course}"
4. Las preguntas TRUE_FALSE deben afirmar resultados de operaciones (correctos o incorrectos)
5. Exactamente {tf} TRUE_FALSE, {mc} MULTIPLE_CHOICE y {ms} MULTIPLE_SELECTION

Responde SOLO con el JSON, sin texto adicional."""

MATH_PROMPT_EN = """You are an expert MATHEMATICS teacher. Generate an evaluation with REAL MATH PROBLEMS about "{topic}" for the "{course}" course.

IMPORTANT: Questions must be MATH PROBLEMS with OPERATIONS AND CALCULATIONS that students must solve to find the correct answer.

Types of math questions you MUST generate:
- Arithmetic operations (addition, subtraction, multiplication, division)
- Mathematical reasoning problems
- Calculations with fractions, decimals or percentages according to the topic
- Simple or complex equations according to the level
- Geometry problems with area, perimeter calculations, etc.
{source_block}
Generate exactly {total} questions in this JSON format:
{{
  "evaluationTitle": "Evaluation - {topic}",
  "questions": [
    // {tf} True/False questions about operation results:
    {{"type": "TRUE_FALSE", "questionText": "The result of 25 × 4 equals 100", "correctAnswer": true, "explanation": "25 × 4 = 100."}},
    // {mc} Multiple Choice questions (4 options, one correct):
    {{"type": "MULTIPLE_CHOICE", "questionText": "Maria shares 24 apples among 6 friends. How many does each get?", "options": ["4 apples", "3 apples", "5 apples", "6 apples"], "correctAnswerIndex": 0, "explanation": "24 ÷ 6 = 4."}},
    // {ms} Multiple Selection questions (2 or 3 correct):
    {{"type": "MULTIPLE_SELECTION", "questionText": "Which of the following operations result in 12?", "options": ["3 × 4", "24 ÷ 3", "6 + 6", "15 - 2"], "correctAnswerIndices": [0, 2], "explanation": "3 × 4 = 12 and 6 + 6 = 12."}}
  ]
}}

IMPORTANT rules for math:
1. ALL questions must require MATHEMATICAL CALCULATIONS
2. Answer options must be NUMERICAL RESULTS or mathematical expressions
3. Difficulty should be appropriate for "{topic}" and the "{course}" level
4. TRUE_FALSE questions must state operation results (correct or incorrect)
5. Exactly {tf} TRUE_FALSE, {mc} MULTIPLE_CHOICE and {ms} MULTIPLE_SELECTION

Respond ONLY with JSON, no additional text."""

GENERAL_PROMPT_ES = """Eres un profesor experto en educación. Genera una evaluación educativa sobre el tema "{topic}" para el curso "{course}" en la asignatura "{subject}".

IMPORTANTE: Las preguntas deben ser sobre el CONTENIDO REAL del tema "{topic}". NO generes preguntas sobre "qué es una asignatura" o "qué son objetivos de aprendizaje". Las preguntas deben evaluar CONOCIMIENTO ESPECÍFICO del tema.
{source_block}
Genera exactamente {total} preguntas en este formato JSON:
{{
  "evaluationTitle": "Evaluación - {topic}",
  "questions": [
    // {tf} preguntas de Verdadero/Falso:
    {{"type": "TRUE_FALSE", "questionText": "Afirmación específica sobre {topic}...", "correctAnswer": true, "explanation": "Explicación..."}},
    // {mc} preguntas de alternativas (4 opciones, una correcta):
    {{"type": "MULTIPLE_CHOICE", "questionText": "Pregunta sobre {topic}...", "options": ["Opción A", "Opción B", "Opción C", "Opción D"], "correctAnswerIndex": 0, "explanation": "Explicación..."}},
    // {ms} preguntas de Selección Múltiple (2 o 3 correctas):
    {{"type": "MULTIPLE_SELECTION", "questionText": "¿Cuáles de los siguientes...?", "options": ["Opción A", "Opción B", "Opción C", "Opción D"], "correctAnswerIndices": [0, 2], "explanation": "Explicación..."}}
  ]
}}

Reglas:
1. TODAS las preguntas deben ser sobre el contenido específico de "{topic}"
2. Las preguntas TRUE_FALSE deben tener correctAnswer (boolean)
3. Las preguntas MULTIPLE_CHOICE deben tener 4 opciones distintas y correctAnswerIndex (número 0-3)
4. Las preguntas MULTIPLE_SELECTION deben tener 4 opciones y correctAnswerIndices (2 o 3 números)
5. NO incluyas preguntas genéricas sobre "asignaturas" o "objetivos de aprendizaje"
6. Exactamente {tf} TRUE_FALSE, {mc} MULTIPLE_CHOICE y {ms} MULTIPLE_SELECTION

Responde SOLO con el JSON, sin texto adicional."""

GENERAL_PROMPT_EN = """You are an expert teacher. Generate an educational evaluation about "{topic}" for the "{course}" course in the "{subject}" subject.

IMPORTANT: Questions must be about the REAL CONTENT of "{topic}". Do NOT generate questions about "what is a subject" or "what are learning objectives". Questions must evaluate SPECIFIC KNOWLEDGE of the topic.
{source_block}
Generate exactly {total} questions in this JSON format:
{{
  "evaluationTitle": "Evaluation - {topic}",
  "questions": [
    // {tf} True/False questions:
    {{"type": "TRUE_FALSE", "questionText": "Specific statement about {topic}...", "correctAnswer": true, "explanation": "Explanation..."}},
    // {mc} Multiple Choice questions (4 options, one correct):
    {{"type": "MULTIPLE_CHOICE", "questionText": "Question about {topic}...", "options": ["Option A", "Option B", "Option C", "Option D"], "correctAnswerIndex": 0, "explanation": "Explanation..."}},
    // {ms} Multiple Selection questions (2 or 3 correct):
    {{"type": "MULTIPLE_SELECTION", "questionText": "Which of the following...?", "options": ["Option A", "Option B", "Option C", "Option D"], "correctAnswerIndices": [0, 2], "explanation": "Explanation..."}}
  ]
}}

Rules:
1. ALL questions must be about specific content of "{topic}"
2. TRUE_FALSE questions must have correctAnswer (boolean)
3. MULTIPLE_CHOICE questions must have 4 distinct options and correctAnswerIndex (number 0-3)
4. MULTIPLE_SELECTION questions must have 4 options and correctAnswerIndices (2 or 3 numbers)
5. Do NOT include generic questions about "subjects" or "learning objectives"
6. Exactly {tf} TRUE_FALSE, {mc} MULTIPLE_CHOICE and {ms} MULTIPLE_SELECTION

Respond ONLY with JSON, no additional text."""

PROMPTS = {
    ("math", "es"): MATH_PROMPT_ES,
    ("math", "en"): MATH_PROMPT_EN,
    ("general", "es"): GENERAL_PROMPT_ES,
    ("general", "en"): GENERAL_PROMPT_EN,
}

SOURCE_HEADERS = {
    ("math", "es"): "Contenido del libro para adaptar la dificultad:",
    ("math", "en"): "Book content to adapt difficulty:",
    ("general", "es"): "Contenido del libro para basar las preguntas:",
    ("general", "en"): "Book content to base questions on:",
}


def build_prompt(
    topic: str,
    subject: str,
    course: str,
    domain: Domain,
    counts: QuestionCounts,
    language: str = "es",
    source_text: Optional[str] = None,
) -> str:
    """Fill the math or general prompt for the requested objective counts."""
    family = "math" if domain == Domain.MATH_PHYSICS else "general"
    lang = "en" if language == "en" else "es"
    limit = MATH_SOURCE_LIMIT if family == "math" else GENERAL_SOURCE_LIMIT

    source_block = ""
    if source_text and source_text.strip():
        source_block = f"\n{SOURCE_HEADERS[(family, lang)]}\n{source_text.strip()[:limit]}\n"

    return PROMPTS[(family, lang)].format(
        topic=topic.strip(),
        course=(course or "").strip() or "General",
        subject=(subject or "").strip() or "General",
        total=counts.objective_total,
        tf=counts.tf,
        mc=counts.mc,
        ms=counts.ms,
        source_block=source_block,
    )


# ─── Parsing ───────────────────────────────────────────────────────────────────

def _extract_json_obj(raw: str) -> dict:
    raw = raw.strip()
    raw = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.MULTILINE)
    raw = re.sub(r"\s*```$", "", raw, flags=re.MULTILINE)
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError(f"No JSON object found: {raw[:200]}")
    return json.loads(raw[start:end])


def parse_ai_questions(raw: str, expected: int) -> List[Dict[str, Any]]:
    """
    Raw questions list from the model response.

    Raises:
        UpstreamParseError: not JSON, no "questions" list, or wrong length
    """
    try:
        data = _extract_json_obj(raw or "")
    except ValueError as e:
        raise UpstreamParseError(f"AI response is not valid JSON: {e}", raw=raw or "") from e

    questions = data.get("questions") if isinstance(data, dict) else None
    if not isinstance(questions, list):
        raise UpstreamParseError("AI response has no 'questions' list", raw=raw)
    if len(questions) != expected:
        raise UpstreamParseError(
            f"AI returned {len(questions)} questions, expected {expected}", raw=raw
        )
    return questions


# ─── Request ───────────────────────────────────────────────────────────────────

async def request_ai_questions(
    complete: CompleteFn,
    topic: str,
    subject: str,
    course: str,
    domain: Domain,
    counts: QuestionCounts,
    *,
    language: str = "es",
    source_text: Optional[str] = None,
    timeout: float = 60.0,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Ask the AI for the objective questions. Never raises: failures return [].

    Cancellation of the AI sub-call (timeout) does not cancel the caller.
    """
    warnings = metadata.setdefault("warnings", []) if metadata is not None else []
    expected = counts.objective_total
    if expected == 0:
        return []

    prompt = build_prompt(topic, subject, course, domain, counts, language, source_text)
    log.info(f"[STEP] AI generation: domain={domain.value} expected={expected} lang={language}")

    try:
        raw = await asyncio.wait_for(
            complete(prompt, temperature=0.7, max_tokens=4000, json_mode=True),
            timeout=timeout,
        )
    except ConfigurationError as e:
        log.info(f"[AI] Not configured, using local synthesis: {e}")
        return []
    except asyncio.TimeoutError:
        log.warning(f"[AI] Timed out after {timeout}s, using local synthesis")
        warnings.append(f"AI call timed out after {timeout}s")
        return []
    except asyncio.CancelledError:
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            raise
        log.warning("[AI] Call was cancelled, using local synthesis")
        warnings.append("AI call was cancelled")
        return []
    except Exception as e:
        log.warning(f"[AI] Call failed, using local synthesis: {e}")
        warnings.append(f"AI call failed: {e}")
        return []

    try:
        questions = parse_ai_questions(raw, expected)
    except UpstreamParseError as e:
        log.warning(f"[AI] {e}. Raw response: {e.raw[:500]}")
        warnings.append(str(e))
        return []

    log.info(f"[AI] Received {len(questions)} questions")
    return questions
