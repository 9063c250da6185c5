"""
Sheet Grader - AI-assisted grading of scanned answer sheets.

This package grades answer-sheet images against a question paper and answer
key with a multimodal LLM, stores the per-question verdicts, and builds
totals and ranked marksheets from them.
"""

__version__ = "1.0.0"
__author__ = "Sheet Grader Team"
