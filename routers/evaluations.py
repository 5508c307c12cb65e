"""
Evaluations Router — /evaluations

Runs the 7-step evaluation generation pipeline.
Endpoints:
  POST /evaluations/generate  — generate an evaluation (AI + local synthesis)
  POST /evaluations/classify  — dry run: level / domain for a topic
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from evaluation import llm_client
from evaluation.ai_generator import CompleteFn
from evaluation.assembler import generate_evaluation
from evaluation.classifier import classify
from evaluation.errors import EvaluationError
from evaluation.schemas import ClassificationResult, ClassifyRequest, GenerateEvaluationRequest

router = APIRouter(prefix="/evaluations", tags=["evaluations"])

# Use Python's standard logger so output appears in the uvicorn console
log = logging.getLogger("evaluation.pipeline")
logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(message)s")


def get_ai_capability() -> Optional[CompleteFn]:
    """Text-completion capability, or None when no provider is configured."""
    return llm_client.complete if llm_client.is_configured() else None


# ─── Classify (dry-run) ────────────────────────────────────────────────────────

@router.post("/classify", response_model=ClassificationResult, response_model_by_alias=True)
async def classify_topic(request: ClassifyRequest):
    """
    **Dry-run: see how a topic is classified without generating questions.**

    - `"fracciones"`, `"Matemáticas"`, `"5to Básico"` → level 3, MATH_PHYSICS
    - `"sistema respiratorio"`, `"Ciencias Naturales"`, `"1ro Medio"` → level 5, SCIENCE
    """
    result = classify(request.topic, request.subject, request.course)
    log.info(f"[CLASSIFY] '{request.topic[:80]}' → level={result.level} domain={result.domain.value}")
    return result


# ─── Generate ──────────────────────────────────────────────────────────────────

@router.post("/generate")
async def generate(
    request: GenerateEvaluationRequest,
    ai: Optional[CompleteFn] = Depends(get_ai_capability),
):
    """
    **Generate an evaluation with exact per-type question counts.**

    Objective questions come from the AI when a provider is configured and
    `useAi` is true; anything missing or invalid is synthesized locally.
    Free-response questions are always synthesized locally.
    """
    counts = request.resolved_counts()
    log.info(
        f"[STEP] /evaluations/generate topic='{request.topic[:80]}' "
        f"counts={counts.model_dump()} ai={'on' if ai and request.use_ai else 'off'}"
    )

    try:
        evaluation = await generate_evaluation(
            topic=request.topic,
            subject=request.subject_label,
            course=request.course,
            language=request.language,
            counts=counts,
            ai=ai if request.use_ai else None,
            source_text=request.source_text,
        )
    except EvaluationError as e:
        log.warning(f"[STEP] Rejected request: {e}")
        return JSONResponse(status_code=422, content={"error": str(e)})

    return evaluation.model_dump(by_alias=True, mode="json")
