"""
Mark aggregation over stored grading records.

Totals are exact Decimal sums of the stored ``score`` pairs; nothing is
rounded. A record without a usable ``answers`` list is a data-integrity
error, never a silent zero.
"""

import logging
from collections.abc import Iterator
from decimal import Decimal, InvalidOperation
from typing import Any

from sheet_grader.models import GradingRecord, MarksheetRow, TotalMarks
from sheet_grader.storage import GradingStore, NotFoundError

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown"


class DataIntegrityError(Exception):
    """Raised when a stored grading record cannot be aggregated."""

    def __init__(self, message: str, result_id: str | None = None):
        self.result_id = result_id
        super().__init__(message)


def _to_decimal(value: Any, where: str, result_id: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise DataIntegrityError(f"Non-numeric value at {where}: {value!r}", result_id)
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise DataIntegrityError(f"Non-numeric value at {where}: {value!r}", result_id) from e


def iter_scores(record: GradingRecord) -> Iterator[tuple[Decimal, Decimal]]:
    """
    Yield (awarded, maximum) for every answer of a record, in stored order.

    Raises:
        DataIntegrityError: If ``answers`` is missing or an entry has no valid score pair.
    """
    answers = record.data.get("answers")
    if not isinstance(answers, list):
        raise DataIntegrityError(
            f"Grading result {record.id} has no answers list", record.id
        )

    for i, answer in enumerate(answers):
        score = answer.get("score") if isinstance(answer, dict) else None
        if not isinstance(score, (list, tuple)) or len(score) < 2:
            raise DataIntegrityError(
                f"Grading result {record.id} answers[{i}] has no [awarded, max] score",
                record.id,
            )
        yield (
            _to_decimal(score[0], f"answers[{i}].score[0]", record.id),
            _to_decimal(score[1], f"answers[{i}].score[1]", record.id),
        )


class MarksCalculator:
    """Computes totals and marksheets from a grading store."""

    def __init__(self, store: GradingStore):
        self._store = store

    async def total_marks(self, result_id: str) -> TotalMarks:
        """
        Sum awarded and maximum points of one grading record.

        Args:
            result_id: Id of the grading record.

        Returns:
            TotalMarks with the task title (or "Unknown" if the task is gone).

        Raises:
            NotFoundError: If the record does not exist.
            DataIntegrityError: If the record's answers are malformed.
        """
        record = await self._store.get_result(result_id)

        total_score = Decimal(0)
        max_score = Decimal(0)
        for awarded, maximum in iter_scores(record):
            total_score += awarded
            max_score += maximum

        try:
            title = (await self._store.get_task(record.task_definition_id)).title
        except NotFoundError:
            logger.warning(
                "Grading result %s refers to missing task definition %s",
                record.id,
                record.task_definition_id,
            )
            title = UNKNOWN_TITLE

        return TotalMarks(title=title, total_score=total_score, max_score=max_score)

    async def marksheet(self, task_definition_id: str) -> list[MarksheetRow]:
        """
        Rank every student graded under a task definition by awarded marks.

        Ties keep storage order.

        Args:
            task_definition_id: Id of the task definition.

        Returns:
            Rows sorted by total marks, highest first.

        Raises:
            DataIntegrityError: If any record's answers are malformed.
        """
        records = await self._store.list_results(task_definition_id)

        rows = [
            MarksheetRow(
                student_name=_optional_str(record.data.get("student_name")),
                roll_no=_optional_str(record.data.get("roll_no")),
                total_marks=sum((awarded for awarded, _ in iter_scores(record)), Decimal(0)),
            )
            for record in records
        ]

        # sorted() is stable, reverse=True included.
        return sorted(rows, key=lambda row: row.total_marks, reverse=True)


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)
