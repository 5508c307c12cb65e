"""Tests for the deduplication guard."""

from evaluation.dedup import question_signature, synthesize_unique
from evaluation.schemas import Domain, QuestionType
from evaluation.synthesizer import synthesize

TOPIC = "Revolución Francesa"


def _history_tf_pool_size(bank):
    return len(bank.templates_for(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC))


class TestSignature:

    def test_ignores_case_accents_and_spacing(self, es_bank):
        q = synthesize(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, 0, bank=es_bank, stamp=1)
        shouted = q.model_copy(update={"question_text": "  " + q.question_text.upper().replace(" ", "   ")})
        assert question_signature(q) == question_signature(shouted)

    def test_type_is_part_of_signature(self, es_bank):
        tf = synthesize(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, 0, bank=es_bank, stamp=1)
        assert question_signature(tf)[0] == "TRUE_FALSE"


class TestSynthesizeUnique:

    def test_distinct_until_pool_exhausted(self, es_bank):
        used = set()
        size = _history_tf_pool_size(es_bank)
        warnings = []
        questions = [
            synthesize_unique(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, i, used,
                              bank=es_bank, stamp=1, warnings=warnings)
            for i in range(size)
        ]
        assert len({question_signature(q) for q in questions}) == size
        assert len(used) == size
        assert warnings == []

    def test_skips_signatures_already_used(self, es_bank):
        taken = synthesize(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, 0, bank=es_bank, stamp=1)
        used = {question_signature(taken)}
        q = synthesize_unique(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, 0, used, bank=es_bank, stamp=1)
        assert question_signature(q) != question_signature(taken)
        assert question_signature(q) in used

    def test_pool_of_seven_still_reaches_free_templates(self, es_bank):
        """Stride 7 on a 7-template pool must not keep retrying the same template."""
        pool = es_bank.templates_for(QuestionType.MULTIPLE_CHOICE, Domain.SCIENCE, 3, "ecosistemas")
        assert len(pool) == 7
        used = set()
        first = synthesize(QuestionType.MULTIPLE_CHOICE, Domain.SCIENCE, 3, "ecosistemas", 0, bank=es_bank, stamp=1)
        used.add(question_signature(first))
        warnings = []
        q = synthesize_unique(QuestionType.MULTIPLE_CHOICE, Domain.SCIENCE, 3, "ecosistemas", 0, used,
                              bank=es_bank, stamp=1, warnings=warnings)
        assert warnings == []
        assert not q.question_text.endswith("(variante)")

    def test_exhaustion_appends_variant_suffix(self, es_bank):
        size = _history_tf_pool_size(es_bank)
        used = set()
        warnings = []
        questions = [
            synthesize_unique(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, i, used,
                              bank=es_bank, stamp=1, warnings=warnings)
            for i in range(size + 2)
        ]
        assert len({question_signature(q) for q in questions}) == size + 2
        assert questions[-1].question_text.endswith(" (variante)")
        assert questions[-2].question_text.endswith(" (variante)")
        assert len(warnings) == 2

    def test_numbered_variant_when_suffix_also_taken(self, es_bank):
        size = _history_tf_pool_size(es_bank)
        used = set()
        for i in range(size):
            q = synthesize(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, i, bank=es_bank, stamp=1)
            used.add(question_signature(q))
            used.add(question_signature(q.model_copy(update={"question_text": q.question_text + " (variante)"})))
        q = synthesize_unique(QuestionType.TRUE_FALSE, Domain.HISTORY, 3, TOPIC, 0, used, bank=es_bank, stamp=1)
        assert q.question_text.endswith(" (variante 2)")

    def test_free_response_prompt_follows_forced_text(self, es_bank):
        used = set()
        pool = es_bank.templates_for(QuestionType.FREE_RESPONSE, Domain.HISTORY, 3, TOPIC)
        questions = [
            synthesize_unique(QuestionType.FREE_RESPONSE, Domain.HISTORY, 3, TOPIC, i, used, bank=es_bank, stamp=1)
            for i in range(len(pool) + 1)
        ]
        assert questions[-1].prompt == questions[-1].question_text
        assert questions[-1].prompt.endswith(" (variante)")
