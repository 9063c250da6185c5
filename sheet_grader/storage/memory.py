"""
In-process grading storage.

Keeps everything in insertion-ordered dicts. Records are copied on the way in
and out so callers cannot mutate stored state.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any

from sheet_grader.models import GradingRecord, TaskDefinition, TaskSummary
from sheet_grader.storage.base import GradingStore, NotFoundError


class InMemoryGradingStore(GradingStore):
    """Grading storage backed by Python dicts."""

    def __init__(self) -> None:
        self._tasks: dict[str, TaskDefinition] = {}
        self._results: dict[str, GradingRecord] = {}
        self._lock = asyncio.Lock()

    async def add_task(self, task: TaskDefinition) -> TaskDefinition:
        async with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)
        return task

    async def get_task(self, task_id: str) -> TaskDefinition:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task definition", task_id)
        return task.model_copy(deep=True)

    async def list_tasks(self, owner_id: str | None = None) -> list[TaskSummary]:
        counts: dict[str, int] = {}
        for record in self._results.values():
            counts[record.task_definition_id] = counts.get(record.task_definition_id, 0) + 1

        return [
            TaskSummary(task=task.model_copy(deep=True), result_count=counts.get(task.id, 0))
            for task in self._tasks.values()
            if owner_id is None or task.owner_id == owner_id
        ]

    async def delete_task(self, task_id: str) -> int:
        async with self._lock:
            if task_id not in self._tasks:
                raise NotFoundError("Task definition", task_id)
            del self._tasks[task_id]
            doomed = [r.id for r in self._results.values() if r.task_definition_id == task_id]
            for result_id in doomed:
                del self._results[result_id]
        return len(doomed)

    async def add_result(self, record: GradingRecord) -> GradingRecord:
        async with self._lock:
            self._results[record.id] = record.model_copy(deep=True)
        return record

    async def get_result(self, result_id: str) -> GradingRecord:
        record = self._results.get(result_id)
        if record is None:
            raise NotFoundError("Grading result", result_id)
        return record.model_copy(deep=True)

    async def list_results(self, task_id: str) -> list[GradingRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._results.values()
            if r.task_definition_id == task_id
        ]

    async def update_result_data(self, result_id: str, data: dict[str, Any]) -> GradingRecord:
        async with self._lock:
            record = self._results.get(result_id)
            if record is None:
                raise NotFoundError("Grading result", result_id)
            updated = record.model_copy(
                update={"data": copy.deepcopy(data), "updated_at": datetime.now(timezone.utc)}
            )
            self._results[result_id] = updated
        return updated.model_copy(deep=True)
