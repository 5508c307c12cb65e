"""
Evaluation Engine API — Main Application
FastAPI application for quiz / evaluation generation and OMR answer-sheet analysis.
"""

from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from evaluation.bank import get_bank
from routers import ai_status, evaluations, omr


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load and validate the template banks once."""
    get_bank("es")
    get_bank("en")
    yield


app = FastAPI(
    title="Evaluation Engine API",
    description="Evaluation generation (AI + deterministic templates) and OMR answer-sheet analysis",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(evaluations.router)        # /evaluations/*
app.include_router(omr.router)                # /omr/*
app.include_router(ai_status.router)          # /ai-status, /health


@app.get("/")
def root():
    return {
        "name": "Evaluation Engine API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "generate": "/evaluations/generate",
            "classify": "/evaluations/classify",
            "omr": "/omr/analyze",
            "ai_status": "/ai-status",
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
