"""Tests for mapping raw AI items and splicing them with local questions."""

from conftest import mc_item, ms_item, tf_item

from evaluation.dedup import question_signature
from evaluation.schemas import (
    Domain,
    FreeResponseQuestion,
    MultipleChoiceQuestion,
    MultipleSelectionQuestion,
    QuestionCounts,
    TrueFalseQuestion,
)
from evaluation.splicer import coerce_ai_question, splice

TOPIC = "sistema respiratorio"


def _splice(items, counts, metadata=None):
    return splice(items, counts, Domain.SCIENCE, 3, TOPIC, language="es", stamp=1, metadata=metadata)


class TestCoerce:

    def test_true_false_string_answer(self):
        q = coerce_ai_question({"type": "tf", "questionText": "Los pulmones filtran aire", "correctAnswer": "false"}, 0)
        assert isinstance(q, TrueFalseQuestion)
        assert q.correct_answer is False

    def test_multiple_choice_default_index(self):
        raw = mc_item("¿Cuál?")
        del raw["correctAnswerIndex"]
        q = coerce_ai_question(raw, 0)
        assert isinstance(q, MultipleChoiceQuestion)
        assert q.correct_answer_index == 0

    def test_multiple_selection_from_option_objects(self):
        raw = {
            "type": "MULTIPLE_SELECTION",
            "text": "¿Cuáles son órganos?",
            "options": [
                {"text": "Pulmones", "correct": True},
                {"text": "Piedra", "correct": False},
                {"text": "Tráquea", "correct": True},
                {"text": "Nube", "correct": False},
            ],
        }
        q = coerce_ai_question(raw, 0)
        assert isinstance(q, MultipleSelectionQuestion)
        assert q.options == ["Pulmones", "Piedra", "Tráquea", "Nube"]
        assert q.correct_answer_indices == [0, 2]

    def test_free_response(self):
        q = coerce_ai_question({"type": "FREE_RESPONSE", "prompt": "Explica", "sampleAnswer": "..."}, 0)
        assert isinstance(q, FreeResponseQuestion)
        assert q.question_text == "Explica"

    def test_unknown_type_dropped(self):
        assert coerce_ai_question({"type": "ESSAY_PLUS", "questionText": "x"}, 0) is None
        assert coerce_ai_question({"questionText": "x"}, 0) is None
        assert coerce_ai_question("not a dict", 0) is None

    def test_structurally_invalid_dropped(self):
        assert coerce_ai_question(mc_item("¿Cuál?", correct=7), 0) is None
        bad = mc_item("¿Cuál?")
        bad["options"] = ["A", "A", "B", "C"]
        assert coerce_ai_question(bad, 0) is None
        assert coerce_ai_question(ms_item("¿Cuáles?", correct=[1]), 0) is None
        assert coerce_ai_question(tf_item("   "), 0) is None

    def test_non_list_shapes_dropped(self):
        scalar_indices = ms_item("¿Cuáles?")
        scalar_indices["correctAnswerIndices"] = 2
        assert coerce_ai_question(scalar_indices, 0) is None
        text_options = mc_item("¿Cuál?")
        text_options["options"] = "A) Uno B) Dos"
        assert coerce_ai_question(text_options, 0) is None
        numeric_options = ms_item("¿Cuáles?")
        numeric_options["options"] = 4
        assert coerce_ai_question(numeric_options, 0) is None


class TestSplice:

    def test_malformed_item_only_drops_that_item(self):
        bad = ms_item("¿Cuáles?")
        bad["correctAnswerIndices"] = 2
        metadata = {}
        questions = _splice([tf_item("Afirmación"), mc_item("¿Cuál?"), bad], QuestionCounts(tf=1, mc=1, ms=1), metadata)
        assert len(questions) == 3
        assert [q.question_text for q in questions[:2]] == ["Afirmación", "¿Cuál?"]
        assert metadata["ai_counts"] == {"tf": 1, "mc": 1, "ms": 0, "des": 0}

    def test_empty_ai_is_fully_local(self):
        counts = QuestionCounts(tf=5, mc=5, ms=5)
        metadata = {}
        questions = _splice([], counts, metadata)
        assert len(questions) == 15
        assert metadata["ai_counts"] == {"tf": 0, "mc": 0, "ms": 0, "des": 0}
        assert metadata["local_counts"] == {"tf": 5, "mc": 5, "ms": 5, "des": 0}

    def test_truncates_overproduction_in_ai_order(self):
        items = [tf_item(f"Afirmación número {i}") for i in range(8)]
        questions = _splice(items, QuestionCounts(tf=5))
        assert [q.question_text for q in questions] == [f"Afirmación número {i}" for i in range(5)]

    def test_fills_shortfall_without_duplicates(self):
        items = [tf_item("Los pulmones son los órganos principales del sistema respiratorio.")]
        metadata = {}
        questions = _splice(items, QuestionCounts(tf=3), metadata)
        assert questions[0].question_text.startswith("Los pulmones")
        assert len({question_signature(q) for q in questions}) == 3
        assert metadata["ai_counts"]["tf"] == 1
        assert metadata["local_counts"]["tf"] == 2

    def test_duplicate_ai_items_are_replaced_locally(self):
        items = [tf_item("Igual"), tf_item("  IGUAL ")]
        questions = _splice(items, QuestionCounts(tf=2))
        assert questions[0].question_text == "Igual"
        assert question_signature(questions[1]) != question_signature(questions[0])

    def test_fixed_type_order(self):
        items = [ms_item("¿Cuáles?"), mc_item("¿Cuál?"), tf_item("Afirmación")]
        questions = _splice(items, QuestionCounts(tf=1, mc=1, ms=1, des=1))
        assert [q.type for q in questions] == [
            "TRUE_FALSE", "MULTIPLE_CHOICE", "MULTIPLE_SELECTION", "FREE_RESPONSE",
        ]
        assert [q.question_text for q in questions[:3]] == ["Afirmación", "¿Cuál?", "¿Cuáles?"]

    def test_exhaustion_warning_recorded(self):
        metadata = {"warnings": []}
        questions = splice([], QuestionCounts(tf=10), Domain.HISTORY, 3, "la Colonia",
                           language="es", stamp=1, metadata=metadata)
        assert len(questions) == 10
        assert len(metadata["warnings"]) == 2
