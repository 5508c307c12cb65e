"""Shared fixtures: template banks, fake AI capabilities, clean provider env."""

import json
from typing import Any, Dict, List

import pytest

from evaluation import llm_client
from evaluation.bank import get_bank


@pytest.fixture(autouse=True)
def no_ai_provider(monkeypatch):
    """Tests never see a real key unless they set one."""
    for var in ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "VISION_MODEL", "OPENROUTER_MODEL", "GPT_MODEL"):
        monkeypatch.delenv(var, raising=False)
    llm_client.reset_client()
    yield
    llm_client.reset_client()


@pytest.fixture
def es_bank():
    return get_bank("es")


@pytest.fixture
def en_bank():
    return get_bank("en")


def tf_item(text: str, answer: bool = True) -> Dict[str, Any]:
    return {"type": "TRUE_FALSE", "questionText": text, "correctAnswer": answer, "explanation": "ok"}


def mc_item(text: str, correct: int = 0) -> Dict[str, Any]:
    return {
        "type": "MULTIPLE_CHOICE",
        "questionText": text,
        "options": ["Uno", "Dos", "Tres", "Cuatro"],
        "correctAnswerIndex": correct,
        "explanation": "ok",
    }


def ms_item(text: str, correct: List[int] = None) -> Dict[str, Any]:
    return {
        "type": "MULTIPLE_SELECTION",
        "questionText": text,
        "options": ["Uno", "Dos", "Tres", "Cuatro"],
        "correctAnswerIndices": correct if correct is not None else [0, 2],
        "explanation": "ok",
    }


class FakeAI:
    """Async text-completion capability returning a canned response."""

    def __init__(self, response: str = "", error: Exception = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []
        self.kwargs: List[Dict[str, Any]] = []

    async def __call__(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        self.kwargs.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def make_ai():
    """Factory: make_ai(questions=[...]) → FakeAI returning {"questions": [...]} fenced as markdown."""
    def _make(questions: List[Dict[str, Any]] = None, raw: str = None, error: Exception = None) -> FakeAI:
        if raw is None:
            raw = "```json\n" + json.dumps({"evaluationTitle": "x", "questions": questions or []}) + "\n```"
        return FakeAI(raw, error)
    return _make


@pytest.fixture
def failing_ai():
    return FakeAI(error=RuntimeError("upstream unavailable"))


@pytest.fixture
def malformed_ai():
    return FakeAI("Claro, aquí tienes las preguntas: {questions: [oops")
