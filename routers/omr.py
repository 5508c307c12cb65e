"""
OMR Router — /omr

Endpoints:
  POST /omr/analyze  — extract detected answers from scanned answer-sheet pages
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from omr.extractor import VisionExtractor
from omr.schemas import AnalyzeRequest

router = APIRouter(prefix="/omr", tags=["omr"])

log = logging.getLogger("evaluation.pipeline")


def get_extractor() -> VisionExtractor:
    return VisionExtractor()


@router.post("/analyze")
async def analyze_answer_sheet(
    request: AnalyzeRequest,
    extractor: VisionExtractor = Depends(get_extractor),
):
    """
    **Analyze scanned answer-sheet pages.**

    Pass `focusQuestionNums` to re-check only some questions; the response then
    holds exactly one answer per requested number.
    """
    if not request.images:
        raise HTTPException(status_code=400, detail="At least one image is required")

    log.info(f"[OMR] /omr/analyze pages={len(request.images)} expected={request.expected_questions}")
    result = await extractor.analyze(request)
    return result.model_dump(by_alias=True, mode="json", exclude_none=True)
