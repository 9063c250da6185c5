"""
Base classes for grading storage.

Defines the abstract interface that all storage backends must implement.
Lookups by id raise NotFoundError rather than returning None so that callers
can let the error propagate.
"""

from abc import ABC, abstractmethod
from typing import Any

from sheet_grader.models import GradingRecord, TaskDefinition, TaskSummary


class NotFoundError(Exception):
    """Raised when a task definition or grading record does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class GradingStore(ABC):
    """
    Abstract base class for grading storage backends.

    Grading records reference their task definition by id and are always
    listed in insertion order. Deleting a task definition deletes its records.
    """

    # ------------------------------------------------------------------
    # Task definitions
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_task(self, task: TaskDefinition) -> TaskDefinition:
        """Persist a new task definition and return it."""
        ...

    @abstractmethod
    async def get_task(self, task_id: str) -> TaskDefinition:
        """
        Fetch a task definition.

        Raises:
            NotFoundError: If no task definition has this id.
        """
        ...

    @abstractmethod
    async def list_tasks(self, owner_id: str | None = None) -> list[TaskSummary]:
        """
        List task definitions in insertion order with their record counts.

        Args:
            owner_id: Restrict to one owner when given.
        """
        ...

    @abstractmethod
    async def delete_task(self, task_id: str) -> int:
        """
        Delete a task definition and all of its grading records.

        Returns:
            The number of grading records deleted with it.

        Raises:
            NotFoundError: If no task definition has this id.
        """
        ...

    # ------------------------------------------------------------------
    # Grading records
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_result(self, record: GradingRecord) -> GradingRecord:
        """Persist a new grading record and return it."""
        ...

    @abstractmethod
    async def get_result(self, result_id: str) -> GradingRecord:
        """
        Fetch a grading record.

        Raises:
            NotFoundError: If no grading record has this id.
        """
        ...

    @abstractmethod
    async def list_results(self, task_id: str) -> list[GradingRecord]:
        """List the grading records of one task definition in insertion order."""
        ...

    @abstractmethod
    async def update_result_data(self, result_id: str, data: dict[str, Any]) -> GradingRecord:
        """
        Replace the graded data of an existing record, keeping its id and answer sheet.

        Raises:
            NotFoundError: If no grading record has this id.
        """
        ...

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
        return None
