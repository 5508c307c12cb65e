"""Tests for the evaluation assembler: counts, structure, AI failure handling."""

import asyncio
import itertools

import pytest
from conftest import FakeAI, mc_item, ms_item, tf_item

from evaluation.assembler import (
    assemble_evaluation,
    fallback_evaluation,
    format_title,
    generate_evaluation,
)
from evaluation.dedup import question_signature
from evaluation.errors import EvaluationError
from evaluation.schemas import (
    Evaluation,
    MultipleChoiceQuestion,
    MultipleSelectionQuestion,
    QuestionCounts,
)

SCENARIO_A = dict(topic="sistema respiratorio", subject="Ciencias Naturales", course="5to Básico", language="es")


def assert_well_formed(evaluation: Evaluation, counts: QuestionCounts):
    assert evaluation.total == counts.total
    assert evaluation.count_by_type() == counts.model_dump()
    assert len({question_signature(q) for q in evaluation.questions}) == evaluation.total
    assert len({q.id for q in evaluation.questions}) == evaluation.total
    for q in evaluation.questions:
        if isinstance(q, MultipleChoiceQuestion):
            assert len(q.options) == 4
            assert len({o.lower() for o in q.options}) == 4
            assert 0 <= q.correct_answer_index <= 3
        if isinstance(q, MultipleSelectionQuestion):
            assert len(q.options) == 4
            assert 2 <= len(q.correct_answer_indices) <= 3
            assert all(0 <= i <= 3 for i in q.correct_answer_indices)


class TestTitle:

    def test_spanish(self):
        assert format_title(" sistema respiratorio ", "es") == "EVALUACIÓN - SISTEMA RESPIRATORIO"

    def test_english(self):
        assert format_title("Fractions", "en") == "EVALUATION - FRACTIONS"


class TestAssembleEvaluation:

    @pytest.mark.parametrize("tf, mc, ms", list(itertools.product([0, 1, 4, 9], [0, 3, 8], [0, 2, 6]))[1:])
    def test_count_invariant(self, tf, mc, ms):
        counts = QuestionCounts(tf=tf, mc=mc, ms=ms)
        evaluation = assemble_evaluation("el medio ambiente", "Ciencias", "3ro Básico", "es", counts)
        assert_well_formed(evaluation, counts)

    @pytest.mark.parametrize("topic, subject, course", [
        ("fracciones", "Matemáticas", "1ro Básico"),
        ("ecuaciones", "Matemáticas", "2do Medio"),
        ("Revolución Francesa", "Historia", "8vo Básico"),
        ("Comprensión lectora", "Lenguaje", "4to Básico"),
        ("Fuerza y movimiento", "Física", "1ro Medio"),
    ])
    def test_structure_across_domains(self, topic, subject, course):
        counts = QuestionCounts(tf=6, mc=6, ms=4, des=2)
        evaluation = assemble_evaluation(topic, subject, course, "es", counts)
        assert_well_formed(evaluation, counts)
        assert [q.type for q in evaluation.questions] == (
            ["TRUE_FALSE"] * 6 + ["MULTIPLE_CHOICE"] * 6 + ["MULTIPLE_SELECTION"] * 4 + ["FREE_RESPONSE"] * 2
        )

    def test_id_format(self):
        evaluation = assemble_evaluation("la célula", "Biología", "", "es", QuestionCounts(tf=1, mc=1, ms=1, des=1))
        prefixes = [q.id.split("_")[0] for q in evaluation.questions]
        positions = [q.id.split("_")[-1] for q in evaluation.questions]
        assert prefixes == ["tf", "mc", "ms", "des"]
        assert positions == ["0", "1", "2", "3"]

    def test_default_counts(self):
        evaluation = assemble_evaluation("la célula", "Biología")
        assert evaluation.total == 15
        assert evaluation.count_by_type() == {"tf": 5, "mc": 5, "ms": 5, "des": 0}

    def test_blank_topic_raises(self):
        with pytest.raises(EvaluationError):
            assemble_evaluation("   ", "Historia")

    def test_zero_total_returns_fallback(self):
        evaluation = assemble_evaluation("la célula", "Biología", counts=QuestionCounts())
        assert evaluation.total == 1
        assert evaluation.generation_metadata["source"] == "fallback"

    def test_unexpected_error_returns_fallback(self, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("bank corrupted")

        monkeypatch.setattr("evaluation.assembler.splice", boom)
        evaluation = assemble_evaluation("la célula", "Biología", counts=QuestionCounts(tf=3))
        assert evaluation.total == 1
        assert evaluation.questions[0].correct_answer is True
        assert evaluation.generation_metadata["source"] == "fallback"

    def test_count_mismatch_is_logged_not_raised(self, monkeypatch, caplog):
        from evaluation import splicer

        def short_splice(*args, **kwargs):
            return splicer.splice(*args, **kwargs)[:-1]

        monkeypatch.setattr("evaluation.assembler.splice", short_splice)
        evaluation = assemble_evaluation("la célula", "Biología", counts=QuestionCounts(tf=3))
        assert evaluation.total == 2
        assert any("expected 3 questions" in w for w in evaluation.generation_metadata["warnings"])
        assert "expected 3 questions" in caplog.text


class TestFallbackEvaluation:

    def test_spanish_text(self):
        evaluation = fallback_evaluation("La célula", "Biología", "es")
        assert evaluation.evaluation_title == "EVALUACIÓN - LA CÉLULA"
        assert evaluation.questions[0].question_text == '¿El tema "La célula" está relacionado con "Biología"?'

    def test_english_text(self):
        evaluation = fallback_evaluation("Cells", "Biology", "en")
        assert evaluation.questions[0].question_text == 'Is the topic "Cells" related to "Biology"?'


class TestScenarios:

    @pytest.mark.asyncio
    async def test_scenario_a_no_ai(self):
        counts = QuestionCounts(tf=5, mc=5, ms=5)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=None)
        assert_well_formed(evaluation, counts)
        assert evaluation.evaluation_title == "EVALUACIÓN - SISTEMA RESPIRATORIO"
        assert evaluation.generation_metadata["classification"] == {"level": 3, "domain": "SCIENCE"}
        assert evaluation.generation_metadata["source"] == "local"

    @pytest.mark.asyncio
    async def test_scenario_b_math_is_numeric(self):
        counts = QuestionCounts(tf=3, mc=3, ms=0)
        evaluation = await generate_evaluation(
            "fracciones", "Matemáticas", "5to Básico", "es", counts, ai=None,
        )
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["classification"]["domain"] == "MATH_PHYSICS"
        for q in evaluation.questions:
            if q.type == "TRUE_FALSE":
                assert any(ch.isdigit() for ch in q.question_text), q.question_text
            else:
                assert all(any(ch.isdigit() for ch in o) for o in q.options), q.options

    @pytest.mark.asyncio
    async def test_scenario_c_malformed_ai(self, malformed_ai):
        counts = QuestionCounts(tf=5, mc=5, ms=5)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=malformed_ai)
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["source"] == "local"
        assert any("not valid JSON" in w for w in evaluation.generation_metadata["warnings"])

    @pytest.mark.asyncio
    async def test_ai_always_failing(self, failing_ai):
        counts = QuestionCounts(tf=4, mc=4, ms=4)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=failing_ai)
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["source"] == "local"

    @pytest.mark.asyncio
    async def test_ai_timeout_falls_through(self):
        async def slow(prompt, **kwargs):
            await asyncio.sleep(5)
            return "{}"

        counts = QuestionCounts(tf=2, mc=2, ms=2)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=slow, timeout=0.05)
        assert_well_formed(evaluation, counts)
        assert any("timed out" in w for w in evaluation.generation_metadata["warnings"])

    @pytest.mark.asyncio
    async def test_ai_cancelled_falls_through(self):
        async def cancelled(prompt, **kwargs):
            raise asyncio.CancelledError()

        counts = QuestionCounts(tf=2, mc=2, ms=2)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=cancelled)
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["source"] == "local"
        assert "AI call was cancelled" in evaluation.generation_metadata["warnings"]

    @pytest.mark.asyncio
    async def test_caller_cancellation_still_propagates(self):
        async def slow(prompt, **kwargs):
            await asyncio.sleep(5)
            return "{}"

        task = asyncio.ensure_future(
            generate_evaluation(**SCENARIO_A, counts=QuestionCounts(tf=2), ai=slow, timeout=10)
        )
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_malformed_ai_item_only_drops_that_item(self, make_ai):
        bad = ms_item("¿Cuáles?")
        bad["correctAnswerIndices"] = 2
        ai = make_ai([tf_item("Afirmación"), mc_item("¿Cuál?"), bad])
        counts = QuestionCounts(tf=1, mc=1, ms=1)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=ai)
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["source"] == "mixed"
        assert evaluation.generation_metadata["ai_counts"] == {"tf": 1, "mc": 1, "ms": 0, "des": 0}

    @pytest.mark.asyncio
    async def test_full_ai_response(self, make_ai):
        items = [tf_item(f"Afirmación {i}") for i in range(2)]
        items += [mc_item(f"Pregunta {i}") for i in range(2)]
        items += [ms_item(f"Selección {i}") for i in range(2)]
        ai = make_ai(items)
        counts = QuestionCounts(tf=2, mc=2, ms=2, des=1)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=ai)
        assert_well_formed(evaluation, counts)
        assert evaluation.questions[0].question_text == "Afirmación 0"
        assert evaluation.generation_metadata["source"] == "mixed"
        assert ai.kwargs[0] == {"temperature": 0.7, "max_tokens": 4000, "json_mode": True}

    @pytest.mark.asyncio
    async def test_wrong_ai_count_is_ignored(self, make_ai):
        ai = make_ai([tf_item(f"Afirmación {i}") for i in range(8)])
        counts = QuestionCounts(tf=5, mc=1, ms=1)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=ai)
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["source"] == "local"
        assert all(not q.question_text.startswith("Afirmación") for q in evaluation.questions)

    @pytest.mark.asyncio
    async def test_partial_valid_ai_items_are_spliced(self, make_ai):
        items = [tf_item("Afirmación válida"), tf_item(""), mc_item("Inválida", correct=9), ms_item("¿Cuáles?")]
        ai = make_ai(items)
        counts = QuestionCounts(tf=2, mc=1, ms=1)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=ai)
        assert_well_formed(evaluation, counts)
        assert evaluation.generation_metadata["ai_counts"] == {"tf": 1, "mc": 0, "ms": 1, "des": 0}
        assert evaluation.generation_metadata["source"] == "mixed"

    @pytest.mark.asyncio
    async def test_ai_not_called_for_free_response_only(self, make_ai):
        ai = make_ai([])
        counts = QuestionCounts(des=2)
        evaluation = await generate_evaluation(**SCENARIO_A, counts=counts, ai=ai)
        assert evaluation.total == 2
        assert ai.prompts == []

    @pytest.mark.asyncio
    async def test_blank_topic_raises(self):
        with pytest.raises(EvaluationError):
            await generate_evaluation("", "Historia", ai=FakeAI("{}"))
