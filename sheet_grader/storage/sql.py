"""
SQLAlchemy-backed grading storage.

Works with any SQLAlchemy URL; SQLite is the default. Session work is
blocking, so every public method runs it in a worker thread to keep the
event loop free for other grading calls.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from sheet_grader.models import GradingRecord, TaskDefinition, TaskSummary
from sheet_grader.storage.base import GradingStore, NotFoundError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class TaskDefinitionRow(Base):
    __tablename__ = "task_definitions"

    # Surrogate key keeps insertion order independent of the public id.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(500))
    question_paper_ref: Mapped[str] = mapped_column(Text)
    answer_key_ref: Mapped[str] = mapped_column(Text)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    school_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    grade_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    class_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subject_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GradingResultRow(Base):
    __tablename__ = "grading_results"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    task_definition_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("task_definitions.id", ondelete="CASCADE"), index=True
    )
    data: Mapped[dict[str, Any]] = mapped_column(JSON)
    answer_sheet_ref: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; everything is written in UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _task_from_row(row: TaskDefinitionRow) -> TaskDefinition:
    return TaskDefinition(
        id=row.id,
        title=row.title,
        question_paper_ref=row.question_paper_ref,
        answer_key_ref=row.answer_key_ref,
        owner_id=row.owner_id,
        school_id=row.school_id,
        grade_id=row.grade_id,
        class_id=row.class_id,
        subject_id=row.subject_id,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _record_from_row(row: GradingResultRow) -> GradingRecord:
    return GradingRecord(
        id=row.id,
        task_definition_id=row.task_definition_id,
        data=row.data,
        answer_sheet_ref=row.answer_sheet_ref,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def create_sql_engine(database_url: str) -> Engine:
    """
    Create an engine for ``database_url``.

    In-memory SQLite gets a single shared connection so that worker threads
    see the same database.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.get_backend_name() == "sqlite":
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


class SQLGradingStore(GradingStore):
    """Grading storage in a relational database via the SQLAlchemy ORM."""

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        """
        Initialize the store and create missing tables.

        Args:
            database_url: SQLAlchemy URL. Ignored when ``engine`` is given.
            engine: Pre-built engine.
        """
        if engine is None:
            if database_url is None:
                raise ValueError("Either database_url or engine is required")
            engine = create_sql_engine(database_url)
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        Base.metadata.create_all(engine)
        logger.debug("SQL grading store ready on %s", engine.url.render_as_string(hide_password=True))

    # ------------------------------------------------------------------
    # Task definitions
    # ------------------------------------------------------------------

    async def add_task(self, task: TaskDefinition) -> TaskDefinition:
        return await asyncio.to_thread(self._add_task, task)

    def _add_task(self, task: TaskDefinition) -> TaskDefinition:
        with self._sessions.begin() as session:
            session.add(TaskDefinitionRow(**task.model_dump()))
        return task

    async def get_task(self, task_id: str) -> TaskDefinition:
        return await asyncio.to_thread(self._get_task, task_id)

    def _get_task(self, task_id: str) -> TaskDefinition:
        with self._sessions() as session:
            return _task_from_row(self._task_row(session, task_id))

    async def list_tasks(self, owner_id: str | None = None) -> list[TaskSummary]:
        return await asyncio.to_thread(self._list_tasks, owner_id)

    def _list_tasks(self, owner_id: str | None) -> list[TaskSummary]:
        counts = (
            select(GradingResultRow.task_definition_id, func.count().label("n"))
            .group_by(GradingResultRow.task_definition_id)
            .subquery()
        )
        stmt = (
            select(TaskDefinitionRow, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.task_definition_id == TaskDefinitionRow.id)
            .order_by(TaskDefinitionRow.seq)
        )
        if owner_id is not None:
            stmt = stmt.where(TaskDefinitionRow.owner_id == owner_id)

        with self._sessions() as session:
            return [
                TaskSummary(task=_task_from_row(row), result_count=count)
                for row, count in session.execute(stmt).all()
            ]

    async def delete_task(self, task_id: str) -> int:
        return await asyncio.to_thread(self._delete_task, task_id)

    def _delete_task(self, task_id: str) -> int:
        with self._sessions.begin() as session:
            row = self._task_row(session, task_id)
            # Explicit delete: SQLite only honours ON DELETE with foreign keys enabled.
            deleted = session.execute(
                delete(GradingResultRow).where(GradingResultRow.task_definition_id == task_id)
            ).rowcount
            session.delete(row)
        return deleted or 0

    # ------------------------------------------------------------------
    # Grading records
    # ------------------------------------------------------------------

    async def add_result(self, record: GradingRecord) -> GradingRecord:
        return await asyncio.to_thread(self._add_result, record)

    def _add_result(self, record: GradingRecord) -> GradingRecord:
        with self._sessions.begin() as session:
            session.add(GradingResultRow(**record.model_dump()))
        return record

    async def get_result(self, result_id: str) -> GradingRecord:
        return await asyncio.to_thread(self._get_result, result_id)

    def _get_result(self, result_id: str) -> GradingRecord:
        with self._sessions() as session:
            return _record_from_row(self._result_row(session, result_id))

    async def list_results(self, task_id: str) -> list[GradingRecord]:
        return await asyncio.to_thread(self._list_results, task_id)

    def _list_results(self, task_id: str) -> list[GradingRecord]:
        stmt = (
            select(GradingResultRow)
            .where(GradingResultRow.task_definition_id == task_id)
            .order_by(GradingResultRow.seq)
        )
        with self._sessions() as session:
            return [_record_from_row(row) for row in session.scalars(stmt)]

    async def update_result_data(self, result_id: str, data: dict[str, Any]) -> GradingRecord:
        return await asyncio.to_thread(self._update_result_data, result_id, data)

    def _update_result_data(self, result_id: str, data: dict[str, Any]) -> GradingRecord:
        with self._sessions.begin() as session:
            row = self._result_row(session, result_id)
            row.data = data
            row.updated_at = datetime.now(timezone.utc)
            session.flush()
            return _record_from_row(row)

    async def close(self) -> None:
        await asyncio.to_thread(self._engine.dispose)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _task_row(session: Session, task_id: str) -> TaskDefinitionRow:
        row = session.scalar(select(TaskDefinitionRow).where(TaskDefinitionRow.id == task_id))
        if row is None:
            raise NotFoundError("Task definition", task_id)
        return row

    @staticmethod
    def _result_row(session: Session, result_id: str) -> GradingResultRow:
        row = session.scalar(select(GradingResultRow).where(GradingResultRow.id == result_id))
        if row is None:
            raise NotFoundError("Grading result", result_id)
        return row
