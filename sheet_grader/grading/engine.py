"""
Grading engine - the core orchestrator.

Builds the three-image prompt, calls the completion client through the retry
policy, validates the response and persists it. A grading record is only
written after the response parsed successfully.
"""

import logging
from typing import Any

from sheet_grader.config import Settings, get_settings
from sheet_grader.grading.llm_client import CompletionClient
from sheet_grader.grading.marks import MarksCalculator
from sheet_grader.grading.parser import ResponseParser
from sheet_grader.grading.prompt_builder import PromptBuilder
from sheet_grader.grading.retry import RetryPolicy
from sheet_grader.models import (
    GradingRecord,
    MarksheetRow,
    TaskDefinition,
    TaskSummary,
    TotalMarks,
    validate_uri,
)
from sheet_grader.storage import GradingStore

logger = logging.getLogger(__name__)


class GradingEngine:
    """
    Grades answer sheets against stored task definitions.

    All collaborators are injected; the completion client in particular is
    meant to be created once per process and shared.
    """

    def __init__(
        self,
        store: GradingStore,
        client: CompletionClient | None = None,
        settings: Settings | None = None,
        retry_policy: RetryPolicy | None = None,
        parser: ResponseParser | None = None,
    ):
        """
        Initialize the grading engine.

        Args:
            store: Storage for task definitions and grading records.
            client: Completion client. Built from settings if not provided.
            settings: Configuration settings. Uses global settings if not provided.
            retry_policy: Backoff policy. Built from settings if not provided.
            parser: Response parser.
        """
        self._settings = settings or get_settings()
        self._store = store
        self._client = client or CompletionClient(self._settings)
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=self._settings.retry_max_retries,
            base_delay_ms=self._settings.retry_base_delay_ms,
        )
        self._parser = parser or ResponseParser()
        self._marks = MarksCalculator(store)

    # ------------------------------------------------------------------
    # Task definitions
    # ------------------------------------------------------------------

    async def create_task_definition(
        self,
        title: str,
        question_paper_ref: str,
        answer_key_ref: str,
        owner_id: str | None = None,
        school_id: str | None = None,
        grade_id: str | None = None,
        class_id: str | None = None,
        subject_id: str | None = None,
    ) -> TaskDefinition:
        """
        Store a new task definition.

        Raises:
            pydantic.ValidationError: If the title is blank or a reference is not a URI.
        """
        task = TaskDefinition(
            title=title,
            question_paper_ref=question_paper_ref,
            answer_key_ref=answer_key_ref,
            owner_id=owner_id,
            school_id=school_id,
            grade_id=grade_id,
            class_id=class_id,
            subject_id=subject_id,
        )
        await self._store.add_task(task)
        logger.info("Created task definition %s (%s)", task.id, task.title)
        return task

    async def get_task_definition(self, task_definition_id: str) -> TaskDefinition:
        return await self._store.get_task(task_definition_id)

    async def list_task_definitions(self, owner_id: str | None = None) -> list[TaskSummary]:
        """List task definitions, newest first, with their result counts."""
        return list(reversed(await self._store.list_tasks(owner_id)))

    async def delete_task_definition(self, task_definition_id: str) -> int:
        """Delete a task definition and its grading records; returns the record count removed."""
        removed = await self._store.delete_task(task_definition_id)
        logger.info(
            "Deleted task definition %s with %d grading results", task_definition_id, removed
        )
        return removed

    async def list_results(self, task_definition_id: str) -> list[GradingRecord]:
        """
        List the grading records of a task definition, newest first.

        Raises:
            NotFoundError: If the task definition does not exist.
        """
        await self._store.get_task(task_definition_id)
        return list(reversed(await self._store.list_results(task_definition_id)))

    # ------------------------------------------------------------------
    # Grading
    # ------------------------------------------------------------------

    async def grade(self, task_definition_id: str, answer_sheet_ref: str) -> dict[str, Any]:
        """
        Grade one answer sheet and store the result.

        Args:
            task_definition_id: Id of the task definition to grade against.
            answer_sheet_ref: URI of the scanned answer sheet.

        Returns:
            The graded data as returned by the model.

        Raises:
            NotFoundError: If the task definition does not exist.
            LLMError: If the completion call fails.
            ParseError: If the response cannot be parsed or validated.
        """
        validate_uri(answer_sheet_ref)
        task = await self._store.get_task(task_definition_id)

        logger.info("Grading answer sheet %s against task %s", answer_sheet_ref, task.id)
        data = await self._run(task, answer_sheet_ref, extra_remarks=None)

        record = await self._store.add_result(
            GradingRecord(
                task_definition_id=task.id,
                data=data,
                answer_sheet_ref=answer_sheet_ref,
            )
        )
        logger.info("Stored grading result %s for task %s", record.id, task.id)
        return data

    async def revaluate(self, result_id: str, remarks: str = "") -> dict[str, Any]:
        """
        Re-grade a stored answer sheet with extra remarks and overwrite its data.

        Args:
            result_id: Id of the grading record to revaluate.
            remarks: Examiner's remarks appended to the grading instructions.

        Returns:
            The new graded data.

        Raises:
            NotFoundError: If the record or its task definition does not exist.
            LLMError: If the completion call fails.
            ParseError: If the response cannot be parsed or validated.
        """
        record = await self._store.get_result(result_id)
        task = await self._store.get_task(record.task_definition_id)

        logger.info("Revaluating grading result %s", record.id)
        data = await self._run(task, record.answer_sheet_ref, extra_remarks=remarks)

        # Last write wins if the same record is revaluated concurrently.
        await self._store.update_result_data(record.id, data)
        logger.info("Updated grading result %s", record.id)
        return data

    async def _run(
        self, task: TaskDefinition, answer_sheet_ref: str, extra_remarks: str | None
    ) -> dict[str, Any]:
        messages = PromptBuilder.build_messages(
            question_paper_ref=task.question_paper_ref,
            answer_key_ref=task.answer_key_ref,
            answer_sheet_ref=answer_sheet_ref,
            extra_remarks=extra_remarks,
        )

        raw_response = await self._retry_policy.call(
            lambda: self._client.complete(messages, self._settings.max_output_tokens)
        )

        data, sheet = self._parser.parse_sheet(raw_response)
        logger.info(
            "Graded %s (%s): %s/%s",
            sheet.student_name or "unnamed student",
            sheet.roll_no or "no roll number",
            sheet.total_awarded,
            sheet.total_max,
        )
        return data

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def total_marks(self, result_id: str) -> TotalMarks:
        return await self._marks.total_marks(result_id)

    async def marksheet(self, task_definition_id: str) -> list[MarksheetRow]:
        return await self._marks.marksheet(task_definition_id)

    async def health_check(self) -> bool:
        """
        Check if the grading engine is operational.

        Returns:
            True if the completion API is reachable.
        """
        return await self._client.health_check()
