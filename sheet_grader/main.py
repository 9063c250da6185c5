"""
Sheet Grader CLI Application.

Provides a command-line interface for storing task definitions, grading
answer sheets and reading back marks.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Optional, TypeVar

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from sheet_grader.config import get_settings
from sheet_grader.grading import (
    ConfigurationError,
    DataIntegrityError,
    GradingEngine,
    LLMError,
    ParseError,
)
from sheet_grader.logging_config import configure_logging
from sheet_grader.storage import NotFoundError, create_store

T = TypeVar("T")

# Create Typer app
app = typer.Typer(
    name="sheet-grader",
    help="Grade scanned answer sheets with a multimodal LLM",
    add_completion=False,
)

console = Console()

_ERROR_LABELS: tuple[tuple[type[Exception], str], ...] = (
    (ConfigurationError, "Configuration Error"),
    (NotFoundError, "Not Found"),
    (LLMError, "LLM Error"),
    (ParseError, "Parse Error"),
    (DataIntegrityError, "Data Integrity Error"),
    (ValidationError, "Invalid Input"),
)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log at DEBUG level"),
    ] = False,
) -> None:
    """Configure logging before any command runs."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


def _execute(action: Callable[[GradingEngine], Awaitable[T]]) -> T:
    """Run ``action`` against a fresh engine, mapping domain errors to exit code 1."""

    async def runner() -> T:
        settings = get_settings()
        store = create_store(settings)
        try:
            return await action(GradingEngine(store, settings=settings))
        finally:
            await store.close()

    try:
        return asyncio.run(runner())
    except tuple(cls for cls, _ in _ERROR_LABELS) as e:
        label = next(text for cls, text in _ERROR_LABELS if isinstance(e, cls))
        console.print(f"[red]{label}:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _print_data(data: dict[str, Any]) -> None:
    console.print_json(json.dumps(data))


@app.command("create-task")
def create_task(
    title: Annotated[str, typer.Argument(help="Exam title")],
    question_paper: Annotated[str, typer.Argument(help="URI of the question paper image")],
    answer_key: Annotated[str, typer.Argument(help="URI of the answer key image")],
    owner: Annotated[
        Optional[str],
        typer.Option("--owner", help="Id of the owning teacher"),
    ] = None,
) -> None:
    """Store a question paper and answer key to grade answer sheets against."""
    task = _execute(
        lambda engine: engine.create_task_definition(
            title=title,
            question_paper_ref=question_paper,
            answer_key_ref=answer_key,
            owner_id=owner,
        )
    )
    console.print(f"[green]Task created:[/green] {task.id}")


@app.command()
def tasks(
    owner: Annotated[
        Optional[str],
        typer.Option("--owner", help="Only show this teacher's tasks"),
    ] = None,
) -> None:
    """List task definitions, newest first."""
    summaries = _execute(lambda engine: engine.list_task_definitions(owner_id=owner))

    table = Table(title="Task Definitions")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Graded", justify="right")
    table.add_column("Created")

    for summary in summaries:
        table.add_row(
            summary.task.id,
            summary.task.title,
            str(summary.result_count),
            summary.task.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def grade(
    task_id: Annotated[str, typer.Argument(help="Task definition id")],
    answer_sheet: Annotated[str, typer.Argument(help="URI of the answer sheet image")],
) -> None:
    """Grade an answer sheet and store the result."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Grading... (this may take a moment)", total=None)
        data = _execute(lambda engine: engine.grade(task_id, answer_sheet))

    _print_data(data)


@app.command()
def revaluate(
    result_id: Annotated[str, typer.Argument(help="Grading result id")],
    remarks: Annotated[
        str,
        typer.Option("--remarks", "-r", help="Extra remarks for the grader"),
    ] = "",
) -> None:
    """Re-grade a stored answer sheet with extra remarks, replacing its result."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Revaluating...", total=None)
        data = _execute(lambda engine: engine.revaluate(result_id, remarks))

    _print_data(data)


@app.command()
def results(
    task_id: Annotated[str, typer.Argument(help="Task definition id")],
) -> None:
    """List the grading results of a task definition, newest first."""
    records = _execute(lambda engine: engine.list_results(task_id))

    table = Table(title="Grading Results")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Student")
    table.add_column("Roll No")
    table.add_column("Answer Sheet")

    for record in records:
        table.add_row(
            record.id,
            str(record.data.get("student_name", "")),
            str(record.data.get("roll_no", "")),
            record.answer_sheet_ref,
        )

    console.print(table)


@app.command("total-marks")
def total_marks(
    result_id: Annotated[str, typer.Argument(help="Grading result id")],
) -> None:
    """Show the total score of one grading result."""
    totals = _execute(lambda engine: engine.total_marks(result_id))

    score_color = "green" if totals.percentage >= 70 else "yellow" if totals.percentage >= 50 else "red"
    console.print(
        Panel(
            f"[{score_color}][bold]{totals.total_score} / {totals.max_score}[/bold] "
            f"({totals.percentage:.1f}%)[/{score_color}]",
            title=totals.title,
        )
    )


@app.command()
def marksheet(
    task_id: Annotated[str, typer.Argument(help="Task definition id")],
) -> None:
    """Show every graded student of a task, highest marks first."""
    rows = _execute(lambda engine: engine.marksheet(task_id))

    table = Table(title="Marksheet")
    table.add_column("#", justify="right")
    table.add_column("Student", style="cyan")
    table.add_column("Roll No")
    table.add_column("Marks", justify="right")

    for rank, row in enumerate(rows, start=1):
        table.add_row(str(rank), row.student_name or "", row.roll_no or "", str(row.total_marks))

    console.print(table)


@app.command("delete-task")
def delete_task(
    task_id: Annotated[str, typer.Argument(help="Task definition id")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation"),
    ] = False,
) -> None:
    """Delete a task definition together with all of its grading results."""
    if not yes:
        typer.confirm(f"Delete task {task_id} and all its grading results?", abort=True)

    removed = _execute(lambda engine: engine.delete_task_definition(task_id))
    console.print(f"[green]Deleted task {task_id}[/green] ({removed} grading results removed)")


@app.command()
def health() -> None:
    """
    Check if the grading system is operational.

    Verifies API connectivity and configuration.
    """
    settings = get_settings()
    console.print("[bold]Sheet Grader Health Check[/bold]\n")

    console.print("[dim]Checking configuration...[/dim]")
    console.print(f"  API Base URL: {settings.openai_base_url or 'default'}")
    console.print(f"  Model: {settings.openai_model}")
    console.print(f"  API Key: {'set' if settings.openai_api_key else '[red]missing[/red]'}")
    console.print(f"  Database: {settings.database_url}")

    console.print("\n[dim]Checking API connectivity...[/dim]")
    if _execute(lambda engine: engine.health_check()):
        console.print("[green]✓ API is reachable[/green]")
    else:
        console.print("[red]✗ API is not reachable[/red]")
        raise typer.Exit(1)

    console.print("\n[green]All systems operational[/green]")


if __name__ == "__main__":
    app()
