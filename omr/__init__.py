"""
OMR answer-sheet extraction.

  schemas.py    — AnswerRecord / OMRAnalysis and the /omr/analyze request & response
  extractor.py  — prompt builder, vision client and response normalizer
"""

from omr.extractor import VisionExtractor, parse_analysis

__all__ = ["VisionExtractor", "parse_analysis"]
