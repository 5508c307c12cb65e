"""
AI Status Router

Endpoints:
  GET /ai-status       — is a text-generation provider configured, and which model
  GET /ai-status/test  — live round-trip with a tiny prompt
  GET /health          — liveness
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from evaluation import llm_client
from evaluation.ai_generator import CompleteFn

router = APIRouter(tags=["status"])

log = logging.getLogger("evaluation.pipeline")

TEST_PROMPT = 'Responde solo con "OK" si puedes leer este mensaje.'
TEST_SYSTEM = "Eres un asistente de prueba. Responde de forma muy breve."


def get_completion() -> CompleteFn:
    return llm_client.complete


@router.get("/ai-status")
def ai_status():
    return {
        **llm_client.provider_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ai-status/test")
async def check_ai_connection(complete: CompleteFn = Depends(get_completion)):
    """
    **Send a tiny prompt to the configured provider.**

    400 when no provider is configured, 500 when the provider call fails.
    """
    provider = llm_client.resolve_provider()
    if provider is None:
        return JSONResponse(status_code=400, content={
            "success": False,
            "provider": None,
            "error": "No AI provider configured",
            "hint": "Set OPENROUTER_API_KEY or OPENAI_API_KEY in .env",
        })

    log.info(f"[AI] Testing {provider} connection...")
    try:
        response = await complete(TEST_PROMPT, system=TEST_SYSTEM, temperature=0, max_tokens=10)
    except Exception as e:
        log.error(f"[AI] Connection test failed: {e}")
        return JSONResponse(status_code=500, content={
            "success": False,
            "provider": provider,
            "error": str(e) or type(e).__name__,
            "hint": "Check that the API key is valid",
        })

    return {
        "success": True,
        "provider": provider,
        "model": llm_client.current_model(provider),
        "response": response.strip(),
    }


@router.get("/health")
def health_check():
    return {"status": "healthy", "service": "evaluation-engine"}
