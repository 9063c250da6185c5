"""
Grading Engine Module.

Prompts a multimodal model with the question paper, answer key and answer
sheet, parses its verdict, and aggregates stored results into marks.
"""

from sheet_grader.grading.engine import GradingEngine
from sheet_grader.grading.llm_client import (
    CompletionClient,
    ConfigurationError,
    LLMError,
    UpstreamRequestError,
    UpstreamTransientError,
)
from sheet_grader.grading.marks import DataIntegrityError, MarksCalculator
from sheet_grader.grading.parser import ParseError, ResponseParser
from sheet_grader.grading.prompt_builder import PromptBuilder
from sheet_grader.grading.retry import RetryPolicy, is_retryable, with_retry

__all__ = [
    "CompletionClient",
    "ConfigurationError",
    "DataIntegrityError",
    "GradingEngine",
    "LLMError",
    "MarksCalculator",
    "ParseError",
    "PromptBuilder",
    "ResponseParser",
    "RetryPolicy",
    "UpstreamRequestError",
    "UpstreamTransientError",
    "is_retryable",
    "with_retry",
]
