"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from sheet_grader.config import Settings
from sheet_grader.grading import GradingEngine, RetryPolicy
from sheet_grader.models import GradingRecord, TaskDefinition
from sheet_grader.storage import InMemoryGradingStore

QUESTION_PAPER = "https://files.example.edu/physics/question-paper.png"
ANSWER_KEY = "https://files.example.edu/physics/answer-key.png"
ANSWER_SHEET = "https://files.example.edu/physics/sheets/roll-17.png"


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with mocked values."""
    return Settings(
        openai_api_key="test-api-key-for-testing",
        openai_base_url="https://test.api.local",
        openai_model="test-model",
        max_output_tokens=2000,
        retry_max_retries=3,
        retry_base_delay_ms=0,
        database_url="memory://",
        _env_file=None,
    )


# ==============================================================================
# Sample Data Fixtures
# ==============================================================================


@pytest.fixture
def sample_task() -> TaskDefinition:
    """A task definition for a physics unit test."""
    return TaskDefinition(
        title="Physics Unit Test 2",
        question_paper_ref=QUESTION_PAPER,
        answer_key_ref=ANSWER_KEY,
        owner_id="teacher-1",
    )


@pytest.fixture
def answer_sheet_ref() -> str:
    return ANSWER_SHEET


@pytest.fixture
def sample_graded_data() -> dict[str, Any]:
    """Graded sheet as the model returns it."""
    return {
        "student_name": "Asha Verma",
        "roll_no": "17",
        "answers": [
            {"question_no": "1", "score": [8, 10], "remarks": "Missed the unit of force."},
            {"question_no": "2", "score": [5, 5], "remarks": "Correct."},
            {"question_no": "3", "score": [2.5, 5], "remarks": "Diagram incomplete."},
        ],
    }


@pytest.fixture
def sample_llm_response(sample_graded_data: dict[str, Any]) -> str:
    """Sample model response wrapped in prose and a json fence."""
    return "Here is the evaluation:\n```json\n" + json.dumps(sample_graded_data) + "\n```"


def _make_record(task_id: str, data: dict[str, Any], sheet: str = ANSWER_SHEET) -> GradingRecord:
    return GradingRecord(task_definition_id=task_id, data=data, answer_sheet_ref=sheet)


def _sheet_data(name: str, roll_no: str, *scores: tuple[float, float]) -> dict[str, Any]:
    return {
        "student_name": name,
        "roll_no": roll_no,
        "answers": [
            {"question_no": str(i), "score": list(score), "remarks": ""}
            for i, score in enumerate(scores, start=1)
        ],
    }


@pytest.fixture
def make_record():
    """Factory for grading records."""
    return _make_record


@pytest.fixture
def sheet_data():
    """Factory for graded data with one answer per (awarded, max) pair."""
    return _sheet_data


# ==============================================================================
# Engine Fixtures
# ==============================================================================


@pytest.fixture
def store() -> InMemoryGradingStore:
    """Empty in-memory grading store."""
    return InMemoryGradingStore()


@pytest.fixture
def mock_completion_client(sample_llm_response: str) -> MagicMock:
    """Mock the completion client to avoid actual API calls."""
    client = MagicMock()
    client.complete = AsyncMock(return_value=sample_llm_response)
    client.health_check = AsyncMock(return_value=True)
    return client


@pytest.fixture
def engine(
    store: InMemoryGradingStore,
    mock_completion_client: MagicMock,
    test_settings: Settings,
) -> GradingEngine:
    """Grading engine wired to the in-memory store and mocked client."""
    return GradingEngine(
        store,
        client=mock_completion_client,
        settings=test_settings,
        retry_policy=RetryPolicy(max_retries=3, base_delay_ms=0),
    )
