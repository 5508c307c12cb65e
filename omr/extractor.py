"""
OMR Vision Extraction

Sends scanned answer-sheet pages to a vision model and normalizes what comes
back into AnswerRecords.

Workflow:
1. Build the forensic-auditor prompt (expected structure, focus re-check block)
2. Post prompt + one image_url part per page to the chat-completions endpoint
3. Parse the JSON answer (single-sheet or paged shape)
4. Re-encode `detected` per question type and classify the evidence label
5. In focus mode, return exactly one record per requested question number
"""

import base64
import json
import logging
import os
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from evaluation import llm_client
from omr.schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    AnswerRecord,
    Confidence,
    EvidenceLabel,
    ExpectedQuestion,
    OMRAnalysis,
    VALID_MARKS,
)

log = logging.getLogger(__name__)

VISION_TIMEOUT_SECONDS = float(os.getenv("VISION_TIMEOUT_SECONDS", "90"))

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
_EVIDENCE = re.compile(r"\b(STRONG_X|CHECK|CIRCLE|FILL|EMPTY|WEAK_MARK)\b")
_TOKEN_SPLIT = re.compile(r"[\s,;/|]+")
_LETTERS = "ABCD"

_TF_TRUE = {"V", "T", "TRUE", "VERDADERO"}
_TF_FALSE = {"F", "FALSE", "FALSO"}


# ─── Prompt ────────────────────────────────────────────────────────────────────

def _structure_block(questions: List[ExpectedQuestion]) -> str:
    if not questions:
        return "Estructura genérica: busca preguntas numeradas."
    lines = ["ESTRUCTURA ESPERADA DE LA PRUEBA (úsala como guía de ubicación):"]
    for i, q in enumerate(questions, start=1):
        text = (q.text or "")[:50]
        if q.type == "tf":
            lines.append(f'P{i}: [Verdadero/Falso] - "{text}..."')
        elif q.type in ("mc", "ms"):
            opts = ", ".join(f"{chr(65 + j)}) {o[:15]}" for j, o in enumerate(q.options[:4]))
            label = "Opción Múltiple" if q.type == "mc" else "Selección Múltiple"
            lines.append(f'P{i}: [{label}: {opts}] - "{text[:40]}..."')
        else:
            lines.append(f"P{i}: [Otro tipo]")
    return "\n".join(lines)


def build_omr_prompt(
    expected_questions: Optional[int] = None,
    questions: Optional[List[ExpectedQuestion]] = None,
    focus_nums: Optional[List[int]] = None,
    title: Optional[str] = None,
    subject: Optional[str] = None,
    topic: Optional[str] = None,
) -> str:
    questions = questions or []
    total = expected_questions or len(questions)
    last = str(total) if total else "ÚLTIMO NÚMERO VISIBLE"

    context_parts = [p.strip() for p in (title, subject, topic) if p and p.strip()]
    context_line = f"CONTEXTO: {' | '.join(context_parts)}\n" if context_parts else ""

    focus_block = ""
    if focus_nums:
        nums = ", ".join(str(n) for n in focus_nums)
        focus_block = (
            f"\nMODO RE-CHEQUEO (FOCO): Analiza SOLO estas preguntas: {nums}.\n"
            "- Ignora el resto del documento.\n"
            "- NO devuelvas preguntas fuera del foco.\n"
            '- Devuelve exactamente esas preguntas en "answers" (una entrada por cada número solicitado).\n'
        )

    return f"""ROL: Auditor Forense de Exámenes Escolares (Visión Artificial OMR).

TAREA: Analizar las imágenes y extraer TODAS las preguntas visibles.
CRÍTICO: DEBES REPORTAR CADA PREGUNTA DEL 1 AL {last}.
{context_line}{focus_block}
{_structure_block(questions)}

## TIPOS DE PREGUNTAS
- VERDADERO/FALSO: "V ( ) F ( )". Marca en V → val = "V"; marca en F → val = "F"; type = "tf".
- ALTERNATIVAS (A, B, C, D), una correcta: val = "A".."D"; type = "mc".
  Más de una marcada en una pregunta de opción simple → val = null (invalidada).
- SELECCIÓN MÚLTIPLE (varias correctas): val = "A,C" (letras en mayúscula, ordenadas, separadas por coma); type = "ms".

## CLASIFICACIÓN DE LA MARCA (campo "evidence", empieza con la etiqueta)
- "STRONG_X": X clara → VÁLIDA
- "CHECK": check ✓ → VÁLIDA
- "CIRCLE": círculo alrededor → VÁLIDA
- "FILL": rellenado / sombreado → VÁLIDA
- "EMPTY": sin marca → val = null
- "WEAK_MARK": marca dudosa, borrada o accidental → val = null

## ESTUDIANTE
- Busca "Nombre:" o "Estudiante:" seguido de texto
- Busca "RUT:" seguido de números

## FORMATO DE SALIDA (JSON PURO)
{{
  "studentName": "Nombre detectado o null",
  "rut": "RUT detectado o null",
  "questionsFound": 6,
  "answers": [
    {{ "q": 1, "type": "tf", "evidence": "STRONG_X en V", "val": "V" }},
    {{ "q": 2, "type": "mc", "evidence": "CIRCLE en opción B", "val": "B" }},
    {{ "q": 3, "type": "ms", "evidence": "STRONG_X en A y C", "val": "A,C" }},
    {{ "q": 4, "type": "mc", "evidence": "EMPTY - sin marca", "val": null }}
  ],
  "confidence": "High"
}}

## CHECKLIST ANTES DE RESPONDER
1. ¿Incluí TODAS las preguntas del 1 al {last}?
2. ¿Identifiqué el TIPO correcto (tf/mc/ms)?
3. ¿Las alternativas están en MAYÚSCULA (A, B, C, D)?
4. ¿Las preguntas sin marca o con marca dudosa tienen val = null?

Devuelve SOLO JSON válido."""


# ─── Images ────────────────────────────────────────────────────────────────────

def strip_data_url(image: Union[str, bytes]) -> Tuple[str, str]:
    """(mime, base64 data) from a data URL, raw base64 (PNG assumed) or raw bytes."""
    if isinstance(image, (bytes, bytearray)):
        return "image/png", base64.b64encode(bytes(image)).decode("utf-8")
    text = image.strip()
    match = _DATA_URL.match(text)
    if match:
        return match.group(1), match.group(2)
    return "image/png", text


# ─── Response parsing ──────────────────────────────────────────────────────────

def safe_json_parse(text: str) -> Dict[str, Any]:
    """
    Parse a model answer that should be a JSON object.

    Raises:
        ValueError: no JSON object could be recovered
    """
    cleaned = re.sub(r"```(?:json)?", "", text or "").strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        start = cleaned.find("{")
        end = cleaned.rfind("}") + 1
        if start == -1 or end == 0:
            raise ValueError(f"No JSON object found: {cleaned[:200]}")
        data = json.loads(cleaned[start:end])
    if not isinstance(data, dict):
        raise ValueError("Vision response is not a JSON object")
    return data


def normalize_focus(nums: Optional[Iterable[Any]]) -> List[int]:
    """Positive integers only, de-duplicated, request order kept."""
    result: List[int] = []
    for n in nums or []:
        if isinstance(n, bool):
            continue
        try:
            value = float(n)
        except (TypeError, ValueError):
            continue
        if value != value or not value.is_integer() or value < 1:
            continue
        if int(value) not in result:
            result.append(int(value))
    return result


def _tokens(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        value = ",".join(str(v) for v in value)
    raw = _TOKEN_SPLIT.split(str(value).upper())
    return [t for t in (re.sub(r"[^A-Z]", "", r) for r in raw) if t]


def normalize_detected(question_type: str, value: Any) -> Optional[str]:
    """Re-encode a detected answer for its question type; unreadable → None."""
    if value is None:
        return None
    if question_type == "tf":
        if isinstance(value, bool):
            return "V" if value else "F"
        token = str(value).strip().upper()
        if token in _TF_TRUE:
            return "V"
        if token in _TF_FALSE:
            return "F"
        return None

    tokens = _tokens(value)
    if question_type == "mc":
        if len(tokens) == 1 and len(tokens[0]) == 1 and tokens[0] in _LETTERS:
            return tokens[0]
        return None

    letters = set()
    for token in tokens:
        if all(c in _LETTERS for c in token):
            letters.update(token)
    return ",".join(sorted(letters)) or None


def evidence_label_of(evidence: Any) -> EvidenceLabel:
    match = _EVIDENCE.search(str(evidence or "").upper())
    return EvidenceLabel(match.group(1)) if match else EvidenceLabel.WEAK_MARK


def _question_type(value: Any, num: int, questions: List[ExpectedQuestion]) -> str:
    text = str(value or "").strip().lower()
    if text in ("tf", "true_false", "v/f"):
        return "tf"
    if text in ("mc", "multiple_choice"):
        return "mc"
    if text in ("ms", "multiple_selection"):
        return "ms"
    if 1 <= num <= len(questions) and questions[num - 1].type in ("tf", "mc", "ms"):
        return questions[num - 1].type
    return "mc"


def _confidence(value: Any) -> Confidence:
    for level in Confidence:
        if str(value or "").strip().lower() == level.value.lower():
            return level
    return Confidence.LOW


def _points(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _raw_answers(data: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Optional[str], Optional[str]]:
    """Flatten both response shapes into (answers, student name, rut)."""
    name, rut = data.get("studentName"), data.get("rut")
    answers = [a for a in _as_list(data.get("answers")) if isinstance(a, dict)]
    for page in _as_list(data.get("pages")):
        if not isinstance(page, dict):
            continue
        student = page.get("student") or {}
        if isinstance(student, dict):
            name = name or student.get("name")
            rut = rut or student.get("rut")
        answers.extend(a for a in _as_list(page.get("answers")) if isinstance(a, dict))
    return answers, name, rut


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _record(raw: Dict[str, Any], questions: List[ExpectedQuestion]) -> Optional[AnswerRecord]:
    try:
        num = int(raw.get("questionNum", raw.get("q")))
    except (TypeError, ValueError):
        return None
    if num < 1:
        return None

    qtype = _question_type(raw.get("questionType", raw.get("type")), num, questions)
    evidence = str(raw.get("evidence") or "")
    label = evidence_label_of(evidence)
    detected = normalize_detected(qtype, raw.get("detected", raw.get("val")))
    if label not in VALID_MARKS:
        detected = None

    return AnswerRecord(
        question_num=num,
        question_type=qtype,
        evidence_label=label,
        evidence=evidence,
        detected=detected,
        points=_points(raw.get("points")),
    )


def parse_analysis(
    data: Union[str, Dict[str, Any]],
    focus_nums: Optional[List[int]] = None,
    questions: Optional[List[ExpectedQuestion]] = None,
) -> OMRAnalysis:
    """
    Normalize a vision-model answer into an OMRAnalysis.

    Raises:
        ValueError: text answer with no recoverable JSON object
    """
    if isinstance(data, str):
        data = safe_json_parse(data)
    questions = questions or []
    raw_answers, name, rut = _raw_answers(data)

    by_num: Dict[int, AnswerRecord] = {}
    for raw in raw_answers:
        record = _record(raw, questions)
        if record is not None and record.question_num not in by_num:
            by_num[record.question_num] = record

    if focus_nums:
        answers = []
        for num in focus_nums:
            record = by_num.get(num)
            if record is None:
                record = AnswerRecord(
                    question_num=num,
                    question_type=_question_type(None, num, questions),
                    evidence_label=EvidenceLabel.EMPTY,
                    evidence="EMPTY - not reported",
                    detected=None,
                )
            answers.append(record)
        found = len(answers)
    else:
        answers = sorted(by_num.values(), key=lambda r: r.question_num)
        found = data.get("questionsFound", data.get("questionsFoundInDocument"))
        try:
            found = int(found)
        except (TypeError, ValueError):
            found = len(answers)

    return OMRAnalysis(
        student_name=(str(name).strip() or None) if name else None,
        rut=(str(rut).strip() or None) if rut else None,
        questions_found=found,
        answers=answers,
        confidence=_confidence(data.get("confidence")),
    )


# ─── Vision client ─────────────────────────────────────────────────────────────

class VisionExtractor:
    """
    Answer-sheet extraction through an OpenAI-compatible vision endpoint.

    Disabled (every call returns a fallback response) when no key is configured.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = VISION_TIMEOUT_SECONDS,
    ):
        """
        Args:
            api_key:   Provider key (defaults to OPENROUTER_API_KEY, then OPENAI_API_KEY)
            model:     Vision model (defaults to VISION_MODEL)
            base_url:  OpenAI-compatible base URL
            transport: httpx transport override (tests)
            timeout:   Request timeout in seconds
        """
        headers: Dict[str, str] = {}
        if api_key:
            provider = "openai"
        else:
            provider = llm_client.resolve_provider()
            if provider is not None:
                settings = llm_client.provider_settings(provider)
                api_key = settings["api_key"]
                base_url = base_url or settings["base_url"]
                headers = dict(settings["headers"])

        self.api_key = api_key
        self.enabled = bool(api_key)
        if not self.enabled:
            log.warning("No vision API key configured. OMR analysis disabled.")

        self.api_url = f"{(base_url or llm_client.OPENAI_BASE_URL).rstrip('/')}/chat/completions"
        self.model = model or llm_client.vision_model(provider) or "gpt-4o"
        self.extra_headers = headers
        self.transport = transport
        self.timeout = timeout

    async def analyze(self, request: AnalyzeRequest) -> AnalyzeResponse:
        if not self.enabled:
            return AnalyzeResponse(success=False, error="API key not configured", fallback=True)

        focus = normalize_focus(request.focus_question_nums)
        prompt = build_omr_prompt(
            expected_questions=request.expected_questions,
            questions=request.questions,
            focus_nums=focus,
            title=request.title,
            subject=request.subject,
            topic=request.topic,
        )

        content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for page in sorted(request.images, key=lambda p: p.page_num):
            mime, data = strip_data_url(page.data_url)
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{mime};base64,{data}"},
            })

        log.info(f"[OMR] Analyzing {len(request.images)} page(s), focus={focus or 'all'}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                        **self.extra_headers,
                    },
                    json={
                        "model": self.model,
                        "messages": [{"role": "user", "content": content}],
                        "max_tokens": 4000,
                        "temperature": 0.1,
                    },
                )
        except httpx.HTTPError as e:
            log.error(f"[OMR] Vision request failed: {e}")
            return AnalyzeResponse(success=False, error=str(e) or type(e).__name__, fallback=True)

        if response.status_code != 200:
            log.error(f"[OMR] Vision error: {response.status_code} - {response.text[:200]}")
            return AnalyzeResponse(
                success=False,
                error=f"Vision API error: {response.status_code}",
                fallback=True,
            )

        try:
            text = response.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            log.error(f"[OMR] Unexpected vision payload: {e}")
            return AnalyzeResponse(success=False, error="Unexpected vision response", fallback=True)

        log.info(f"[OMR] Raw response: {text[:500]}")
        try:
            analysis = parse_analysis(text, focus_nums=focus, questions=request.questions)
        except ValueError as e:
            log.error(f"[OMR] Could not parse vision response: {e}")
            return AnalyzeResponse(
                success=False,
                error="Could not parse AI response",
                raw_response=text,
            )

        answered = sum(1 for a in analysis.answers if a.detected is not None)
        log.info(f"[OMR] {analysis.questions_found} questions, {answered} answered")
        return AnalyzeResponse(success=True, analysis=analysis)
