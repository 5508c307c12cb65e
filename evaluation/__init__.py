"""
Evaluation generation pipeline.

  Step 1  classifier.py    — level (1–5) and domain from topic / subject / course
  Step 2  bank.py          — static template tables (data/es.json, data/en.json)
  Step 3  synthesizer.py   — deterministic question from a template
  Step 4  dedup.py         — unique (type, text) signatures within one evaluation
  Step 5  ai_generator.py  — domain-aware prompt + JSON parsing of the AI answer
  Step 6  splicer.py       — AI + local questions to the exact per-type counts
  Step 7  assembler.py     — title, ids, count check, fallback evaluation
"""

from evaluation.assembler import assemble_evaluation, generate_evaluation
from evaluation.classifier import classify
from evaluation.normalizer import normalize

__all__ = ["assemble_evaluation", "generate_evaluation", "classify", "normalize"]
