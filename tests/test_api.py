"""HTTP-level tests for the FastAPI app."""

import pytest
from conftest import FakeAI
from fastapi.testclient import TestClient

from omr.extractor import VisionExtractor
from omr.schemas import AnalyzeResponse
from quiz_api import app
from routers.ai_status import get_completion
from routers.evaluations import get_ai_capability
from routers.omr import get_extractor


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestGenerate:

    def test_local_generation(self, client):
        response = client.post("/evaluations/generate", json={
            "topic": "sistema respiratorio",
            "subject": "Ciencias Naturales",
            "course": "5to Básico",
            "counts": {"tf": 2, "mc": 2, "ms": 1, "des": 1},
        })
        assert response.status_code == 200
        body = response.json()
        assert body["evaluationTitle"] == "EVALUACIÓN - SISTEMA RESPIRATORIO"
        assert [q["type"] for q in body["questions"]] == [
            "TRUE_FALSE", "TRUE_FALSE", "MULTIPLE_CHOICE", "MULTIPLE_CHOICE",
            "MULTIPLE_SELECTION", "FREE_RESPONSE",
        ]
        assert "correctAnswerIndex" in body["questions"][2]
        assert body["generationMetadata"]["classification"] == {"level": 3, "domain": "SCIENCE"}

    def test_flat_question_count(self, client):
        response = client.post("/evaluations/generate", json={"topic": "La Colonia", "bookTitle": "Historia", "questionCount": 9})
        assert response.status_code == 200
        assert len(response.json()["questions"]) == 9

    def test_blank_topic_is_rejected(self, client):
        response = client.post("/evaluations/generate", json={"topic": "  ", "subject": "Historia"})
        assert response.status_code == 422
        assert response.json() == {"error": "topic must not be empty"}

    def test_uses_injected_ai(self, client, make_ai):
        ai = make_ai([{"type": "TRUE_FALSE", "questionText": "El corazón bombea sangre.", "correctAnswer": True}])
        app.dependency_overrides[get_ai_capability] = lambda: ai
        response = client.post("/evaluations/generate", json={"topic": "el corazón", "counts": {"tf": 1}})
        assert response.json()["questions"][0]["questionText"] == "El corazón bombea sangre."
        assert len(ai.prompts) == 1

    def test_use_ai_false_skips_ai(self, client):
        ai = FakeAI("{}")
        app.dependency_overrides[get_ai_capability] = lambda: ai
        response = client.post("/evaluations/generate", json={"topic": "el corazón", "counts": {"tf": 2}, "useAi": False})
        assert response.status_code == 200
        assert ai.prompts == []


class TestClassify:

    def test_classify(self, client):
        response = client.post("/evaluations/classify", json={
            "topic": "fracciones", "subject": "Matemáticas", "course": "5to Básico",
        })
        assert response.json() == {"level": 3, "domain": "MATH_PHYSICS"}


class TestStatus:

    def test_inactive_without_key(self, client):
        body = client.get("/ai-status").json()
        assert body["isActive"] is False
        assert "timestamp" in body

    def test_active_with_openrouter_key(self, client, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")
        body = client.get("/ai-status").json()
        assert body["isActive"] is True
        assert body["provider"] == "openrouter"
        assert body["model"] == "openai/gpt-4o-mini"

    def test_placeholder_key_is_ignored(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "your_openai_api_key_here")
        assert client.get("/ai-status").json()["isActive"] is False

    def test_connection_check_without_key(self, client):
        response = client.get("/ai-status/test")
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_connection_check_round_trip(self, client, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-test")
        ai = FakeAI("  OK \n")
        app.dependency_overrides[get_completion] = lambda: ai
        response = client.get("/ai-status/test")
        assert response.status_code == 200
        assert response.json() == {
            "success": True, "provider": "openrouter", "model": "openai/gpt-4o-mini", "response": "OK",
        }
        assert ai.kwargs[0]["max_tokens"] == 10

    def test_connection_check_failure(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        app.dependency_overrides[get_completion] = lambda: FakeAI(error=RuntimeError("invalid key"))
        response = client.get("/ai-status/test")
        assert response.status_code == 500
        assert response.json()["error"] == "invalid key"
        assert response.json()["provider"] == "openai"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "evaluation-engine"}


class TestOMR:

    def test_requires_images(self, client):
        response = client.post("/omr/analyze", json={"images": []})
        assert response.status_code == 400

    def test_fallback_without_key(self, client):
        response = client.post("/omr/analyze", json={
            "images": [{"pageNum": 1, "dataUrl": "data:image/png;base64,QUJD"}],
        })
        assert response.status_code == 200
        assert response.json() == {"success": False, "error": "API key not configured", "fallback": True}

    def test_uses_injected_extractor(self, client):
        class StubExtractor(VisionExtractor):
            async def analyze(self, request):
                return AnalyzeResponse(success=True, error=None)

        app.dependency_overrides[get_extractor] = lambda: StubExtractor(api_key="test-key")
        response = client.post("/omr/analyze", json={
            "images": [{"pageNum": 1, "dataUrl": "QUJD"}],
        })
        assert response.json() == {"success": True}
