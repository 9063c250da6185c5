"""
Unit tests for the grading engine.

Tests prompt builder and grading engine with a mocked completion client.
"""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from sheet_grader.grading import (
    GradingEngine,
    ParseError,
    PromptBuilder,
    RetryPolicy,
    UpstreamRequestError,
    UpstreamTransientError,
)
from sheet_grader.models import ImageBlock, TaskDefinition, TextBlock
from sheet_grader.storage import InMemoryGradingStore, NotFoundError


class TestPromptBuilder:
    """Tests for PromptBuilder."""

    def test_system_prompt_describes_output(self) -> None:
        prompt = PromptBuilder.get_system_prompt()

        assert "student_name" in prompt
        assert "roll_no" in prompt
        assert '"score"' in prompt
        assert "EXTRA REMARKS" not in prompt

    def test_build_messages_order(self) -> None:
        messages = PromptBuilder.build_messages("https://q", "https://k", "https://s")

        assert [m.role for m in messages] == ["system", "user", "user", "user"]
        assert messages[0].content == PromptBuilder.SYSTEM_PROMPT
        assert messages[1].content == (TextBlock(text="Question Paper:"), ImageBlock(url="https://q"))
        assert messages[2].content == (TextBlock(text="Answer Keys:"), ImageBlock(url="https://k"))
        assert messages[3].content == (TextBlock(text="Answer Sheet:"), ImageBlock(url="https://s"))

    def test_remarks_suffix(self) -> None:
        prompt = PromptBuilder.get_system_prompt("Q3 accepts either unit")

        assert prompt.startswith(PromptBuilder.SYSTEM_PROMPT)
        assert prompt.endswith(
            "\n\nEXTRA REMARKS (VERY IMPORTANT!!): Q3 accepts either unit"
            "\nGive remarks as 'Revaluated' for all questions extra remarks applied to."
        )

    def test_empty_remarks_skip_revaluated_instruction(self) -> None:
        prompt = PromptBuilder.get_system_prompt("")

        assert prompt == PromptBuilder.SYSTEM_PROMPT + "\n\nEXTRA REMARKS (VERY IMPORTANT!!): "
        assert "Revaluated" not in prompt


class TestGradingEngine:
    """Tests for GradingEngine."""

    @pytest.mark.asyncio
    async def test_grade_persists_result(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        sample_graded_data: dict[str, Any],
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)

        data = await engine.grade(sample_task.id, answer_sheet_ref)

        assert data == sample_graded_data
        records = await store.list_results(sample_task.id)
        assert len(records) == 1
        assert records[0].answer_sheet_ref == answer_sheet_ref
        assert records[0].data == sample_graded_data
        mock_completion_client.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_grade_sends_three_images_with_budget(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)

        await engine.grade(sample_task.id, answer_sheet_ref)

        messages, budget = mock_completion_client.complete.call_args.args
        assert budget == 2000
        assert messages[0].content == PromptBuilder.SYSTEM_PROMPT
        assert [m.content[1].url for m in messages[1:]] == [
            sample_task.question_paper_ref,
            sample_task.answer_key_ref,
            answer_sheet_ref,
        ]

    @pytest.mark.asyncio
    async def test_grade_unknown_task(
        self,
        engine: GradingEngine,
        answer_sheet_ref: str,
        mock_completion_client: MagicMock,
    ) -> None:
        with pytest.raises(NotFoundError):
            await engine.grade("missing", answer_sheet_ref)

        mock_completion_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_grade_rejects_non_uri_sheet(
        self, engine: GradingEngine, store: InMemoryGradingStore, sample_task: TaskDefinition
    ) -> None:
        await store.add_task(sample_task)

        with pytest.raises(ValidationError):
            await engine.grade(sample_task.id, "not a uri")

    @pytest.mark.asyncio
    async def test_parse_failure_persists_nothing(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)
        mock_completion_client.complete.return_value = "I could not read the answer sheet."

        with pytest.raises(ParseError):
            await engine.grade(sample_task.id, answer_sheet_ref)

        assert await store.list_results(sample_task.id) == []

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        sample_llm_response: str,
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)
        mock_completion_client.complete.side_effect = [
            UpstreamTransientError("rate limited", status_code=429),
            sample_llm_response,
        ]

        await engine.grade(sample_task.id, answer_sheet_ref)

        assert mock_completion_client.complete.await_count == 2
        assert len(await store.list_results(sample_task.id)) == 1

    @pytest.mark.asyncio
    async def test_request_error_propagates_without_retry(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)
        mock_completion_client.complete.side_effect = UpstreamRequestError(
            "invalid image url", status_code=400
        )

        with pytest.raises(UpstreamRequestError):
            await engine.grade(sample_task.id, answer_sheet_ref)

        assert mock_completion_client.complete.await_count == 1
        assert await store.list_results(sample_task.id) == []

    @pytest.mark.asyncio
    async def test_engine_uses_retry_settings(
        self,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        mock_completion_client: MagicMock,
        test_settings,
    ) -> None:
        settings = test_settings.model_copy(
            update={"retry_max_retries": 1, "retry_base_delay_ms": 500}
        )
        engine = GradingEngine(store, client=mock_completion_client, settings=settings)
        await store.add_task(sample_task)
        mock_completion_client.complete.side_effect = UpstreamTransientError("503")

        with patch("sheet_grader.grading.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(UpstreamTransientError):
                await engine.grade(sample_task.id, answer_sheet_ref)

        assert mock_completion_client.complete.await_count == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_revaluate_overwrites_in_place(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        sample_graded_data: dict[str, Any],
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)
        await engine.grade(sample_task.id, answer_sheet_ref)
        original = (await store.list_results(sample_task.id))[0]

        revaluated = json.loads(json.dumps(sample_graded_data))
        revaluated["answers"][0] = {"question_no": "1", "score": [10, 10], "remarks": "Revaluated"}
        mock_completion_client.complete.return_value = json.dumps(revaluated)

        data = await engine.revaluate(original.id, "Q1: newtons written as N is acceptable")

        assert data == revaluated
        stored = await store.get_result(original.id)
        assert stored.id == original.id
        assert stored.answer_sheet_ref == answer_sheet_ref
        assert stored.data == revaluated
        assert stored.created_at == original.created_at
        assert len(await store.list_results(sample_task.id)) == 1

    @pytest.mark.asyncio
    async def test_revaluate_prompt_carries_remarks(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)
        await engine.grade(sample_task.id, answer_sheet_ref)
        result_id = (await store.list_results(sample_task.id))[0].id

        await engine.revaluate(result_id, "Ignore spelling in Q2")

        messages, budget = mock_completion_client.complete.call_args.args
        assert budget == 2000
        assert messages[0].content == PromptBuilder.get_system_prompt("Ignore spelling in Q2")
        assert messages[3].content[1].url == answer_sheet_ref

    @pytest.mark.asyncio
    async def test_revaluate_missing_result(self, engine: GradingEngine) -> None:
        with pytest.raises(NotFoundError, match="Grading result"):
            await engine.revaluate("missing", "remarks")

    @pytest.mark.asyncio
    async def test_revaluate_missing_task(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        make_record,
        sample_graded_data: dict[str, Any],
        mock_completion_client: MagicMock,
    ) -> None:
        record = make_record("deleted-task", sample_graded_data)
        await store.add_result(record)

        with pytest.raises(NotFoundError, match="Task definition"):
            await engine.revaluate(record.id, "remarks")

        mock_completion_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_revaluation_keeps_old_data(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
        sample_graded_data: dict[str, Any],
        mock_completion_client: MagicMock,
    ) -> None:
        await store.add_task(sample_task)
        await engine.grade(sample_task.id, answer_sheet_ref)
        result_id = (await store.list_results(sample_task.id))[0].id
        mock_completion_client.complete.return_value = "Sorry, I can't help with that."

        with pytest.raises(ParseError):
            await engine.revaluate(result_id, "remarks")

        assert (await store.get_result(result_id)).data == sample_graded_data

    @pytest.mark.asyncio
    async def test_task_definitions(
        self, engine: GradingEngine, answer_sheet_ref: str
    ) -> None:
        first = await engine.create_task_definition(
            "Chemistry", "https://q/1.png", "https://k/1.png", owner_id="t1"
        )
        second = await engine.create_task_definition(
            "Biology", "https://q/2.png", "https://k/2.png", owner_id="t2"
        )
        await engine.grade(first.id, answer_sheet_ref)

        summaries = await engine.list_task_definitions()
        assert [s.task.id for s in summaries] == [second.id, first.id]
        assert [s.result_count for s in summaries] == [0, 1]

        owned = await engine.list_task_definitions(owner_id="t1")
        assert [s.task.title for s in owned] == ["Chemistry"]

        assert (await engine.get_task_definition(first.id)).title == "Chemistry"

    @pytest.mark.asyncio
    async def test_create_task_validates_refs(self, engine: GradingEngine) -> None:
        with pytest.raises(ValidationError):
            await engine.create_task_definition("Maths", "question.png", "https://k/1.png")

    @pytest.mark.asyncio
    async def test_list_results_newest_first(
        self, engine: GradingEngine, store: InMemoryGradingStore, sample_task: TaskDefinition
    ) -> None:
        await store.add_task(sample_task)
        await engine.grade(sample_task.id, "https://sheets/a.png")
        await engine.grade(sample_task.id, "https://sheets/b.png")

        records = await engine.list_results(sample_task.id)

        assert [r.answer_sheet_ref for r in records] == ["https://sheets/b.png", "https://sheets/a.png"]

        with pytest.raises(NotFoundError):
            await engine.list_results("missing")

    @pytest.mark.asyncio
    async def test_delete_task_cascades(
        self,
        engine: GradingEngine,
        store: InMemoryGradingStore,
        sample_task: TaskDefinition,
        answer_sheet_ref: str,
    ) -> None:
        await store.add_task(sample_task)
        await engine.grade(sample_task.id, answer_sheet_ref)
        result_id = (await store.list_results(sample_task.id))[0].id

        assert await engine.delete_task_definition(sample_task.id) == 1

        with pytest.raises(NotFoundError):
            await store.get_result(result_id)

    @pytest.mark.asyncio
    async def test_health_check(self, engine: GradingEngine) -> None:
        assert await engine.health_check()


def test_default_retry_policy_from_settings(test_settings, mock_completion_client) -> None:
    engine = GradingEngine(InMemoryGradingStore(), client=mock_completion_client, settings=test_settings)

    assert engine._retry_policy == RetryPolicy(max_retries=3, base_delay_ms=0)
