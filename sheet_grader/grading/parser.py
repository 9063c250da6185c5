"""
Response parser for model grading output.

The model is asked for bare JSON but may wrap it in prose or markdown
fencing. Extraction strategies are tried in a fixed order and the first one
that yields a JSON object wins; if none does, a ParseError carrying the raw
text is raised.
"""

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from sheet_grader.models import GradedSheet

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)


class ParseError(Exception):
    """Raised when model output cannot be turned into a grading record."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


def extract_fenced_json(text: str) -> str | None:
    """Interior of the first code block labelled ``json``."""
    match = _FENCED_JSON.search(text)
    return match.group(1) if match else None


def extract_brace_span(text: str) -> str | None:
    """Everything from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None
    return text[start : end + 1]


def extract_whole_text(text: str) -> str | None:
    return text


# Order matters: the first strategy producing a JSON object wins.
EXTRACTION_STRATEGIES: tuple[Callable[[str], str | None], ...] = (
    extract_fenced_json,
    extract_brace_span,
    extract_whole_text,
)


class ResponseParser:
    """
    Turns raw completion text into a grading record.

    ``parse`` only extracts JSON; ``parse_sheet`` additionally validates the
    graded-sheet schema so that nothing unusable reaches storage.
    """

    def __init__(
        self,
        strategies: tuple[Callable[[str], str | None], ...] = EXTRACTION_STRATEGIES,
    ):
        self._strategies = strategies

    def parse(self, response: str) -> dict[str, Any]:
        """
        Extract a JSON object from a model response.

        Args:
            response: Raw completion text.

        Returns:
            The decoded JSON object.

        Raises:
            ParseError: If no strategy yields a JSON object.
        """
        failures: list[str] = []

        for strategy in self._strategies:
            candidate = strategy(response)
            if candidate is None:
                failures.append(f"{strategy.__name__}: no match")
                continue

            try:
                data = json.loads(candidate)
            except json.JSONDecodeError as e:
                failures.append(f"{strategy.__name__}: {e}")
                continue

            if not isinstance(data, dict):
                failures.append(f"{strategy.__name__}: not a JSON object")
                continue

            return data

        logger.error("Failed to parse model response: %r", response)
        raise ParseError(
            "Failed to parse model response. The response format was unexpected ("
            + "; ".join(failures)
            + ")",
            raw_response=response,
        )

    def parse_sheet(self, response: str) -> tuple[dict[str, Any], GradedSheet]:
        """
        Extract and validate a graded answer sheet.

        Args:
            response: Raw completion text.

        Returns:
            Tuple of (raw JSON object, validated GradedSheet).

        Raises:
            ParseError: If extraction or schema validation fails.
        """
        data = self.parse(response)

        try:
            sheet = GradedSheet.model_validate(data)
        except ValidationError as e:
            logger.error("Model response failed schema validation: %s", e)
            raise ParseError(
                f"Model response does not describe a graded sheet: {e}",
                raw_response=response,
            ) from e

        return data, sheet
