"""CLI commands for the quiz engine.

Commands:
- init-db: Create the database schema
- load-course: Load quiz items, enrollments and certificate settings
- start / autosave / retake / submit: Attempt lifecycle
- status / review: Inspect a quiz or a past attempt
- certify: Re-run the certificate evaluator for a learner
- serve: Run the Web API
"""

import json
from pathlib import Path
from typing import Any, NoReturn

import typer
import yaml
from rich.console import Console
from rich.table import Table

from quizcert.core.attempt_lifecycle import (
    Caller,
    autosave_attempt,
    get_attempt_review,
    get_quiz_status,
    retake_attempt,
    start_attempt,
    submit_attempt,
)
from quizcert.core.certification import evaluate_course_certificate
from quizcert.core.errors import QuizEngineError
from quizcert.db.authoring_repository import (
    set_certificate_settings,
    set_certificate_template,
    set_enrollment,
    upsert_course_item,
)
from quizcert.db.database import current_db_path, get_db, init_db

app = typer.Typer(
    name="quizcert",
    help="Quiz attempts, grading and automated course certificates.",
    no_args_is_help=True,
)

console = Console()

UserOption = typer.Option(..., "--user", "-u", help="Learner user ID")
OrgOption = typer.Option(..., "--org", "-o", help="Learner organization ID")
AnswersOption = typer.Option(
    None, "--answers", "-a", help="Answers as a JSON object or a path to a JSON file"
)


@app.callback()
def main(
    db: Path | None = typer.Option(
        None, "--db", envvar="QUIZCERT_DB_PATH", help="SQLite database file"
    ),
) -> None:
    """Open (and create if needed) the database before running a command."""
    init_db(db)


def _load_answers(value: str | None) -> dict[str, Any] | None:
    """Parse --answers as inline JSON or as a JSON file path."""
    if value is None:
        return None

    raw = value
    if not value.lstrip().startswith("{"):
        path = Path(value).expanduser()
        if not path.is_file():
            console.print(f"[red]✗ Answers file not found: {path}[/red]")
            raise typer.Exit(code=1)
        raw = path.read_text(encoding="utf-8")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        console.print(f"[red]✗ Invalid answers JSON: {e}[/red]")
        raise typer.Exit(code=1)

    if isinstance(data, dict) and isinstance(data.get("answers_json"), dict):
        data = data["answers_json"]
    if not isinstance(data, dict):
        console.print("[red]✗ Answers must be a JSON object keyed by question ID[/red]")
        raise typer.Exit(code=1)
    return data


def _fail(error: QuizEngineError) -> NoReturn:
    console.print(f"[red]✗ {error.code}: {error.message}[/red]")
    raise typer.Exit(code=1)


def _print_attempt(attempt) -> None:
    console.print(f"  [dim]attempt:[/dim]  {attempt.attempt_id}")
    console.print(f"  [dim]number:[/dim]   {attempt.attempt_number}")
    console.print(f"  [dim]status:[/dim]   {attempt.status}")
    console.print(f"  [dim]started:[/dim]  {attempt.started_at}")


@app.command(name="init-db")
def init_database() -> None:
    """Create the database schema (idempotent)."""
    console.print("[green]✓ Database ready[/green]")


@app.command(name="load-course")
def load_course(
    course_file: Path = typer.Argument(..., help="YAML or JSON course fixture"),
) -> None:
    """Load quiz items, enrollments and certificate settings for one course.

    File structure:

    \b
    organization_id: org-1
    course_id: course-1
    quizzes:
      - item_id: quiz-a
        is_required: true
        payload: {questions: [...], settings: {...}}
    enrollments:
      - user_id: learner-1
        status: active
    certificate:
      enabled: true
      course_passing_grade_percent: 70
      name_placement: {x: 120, y: 340}
      template_id: tpl-1
    """
    if not course_file.exists():
        console.print(f"[red]✗ File not found: {course_file}[/red]")
        raise typer.Exit(code=1)

    try:
        data = yaml.safe_load(course_file.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        console.print(f"[red]✗ Could not parse {course_file}: {e}[/red]")
        raise typer.Exit(code=1)

    organization_id = data.get("organization_id")
    course_id = data.get("course_id")
    if not organization_id or not course_id:
        console.print("[red]✗ organization_id and course_id are required[/red]")
        raise typer.Exit(code=1)

    quizzes = data.get("quizzes") or []
    enrollments = data.get("enrollments") or []
    certificate = data.get("certificate") or {}

    with get_db() as conn:
        for quiz in quizzes:
            upsert_course_item(
                conn,
                item_id=quiz["item_id"],
                organization_id=organization_id,
                course_id=course_id,
                payload=quiz.get("payload") or {},
                title=quiz.get("title", ""),
                is_required=bool(quiz.get("is_required", False)),
                item_type=quiz.get("item_type", "quiz"),
            )
        for enrollment in enrollments:
            set_enrollment(conn, enrollment["user_id"], course_id, enrollment.get("status", "active"))
        if certificate:
            set_certificate_settings(
                conn,
                course_id=course_id,
                enabled=bool(certificate.get("enabled", False)),
                course_passing_grade_percent=certificate.get("course_passing_grade_percent"),
                name_placement=certificate.get("name_placement"),
            )
            if certificate.get("template_id"):
                set_certificate_template(conn, course_id, certificate["template_id"])

    console.print(f"[green]✓ Course {course_id} loaded[/green]")
    console.print(f"  [dim]quizzes:[/dim]     {len(quizzes)}")
    console.print(f"  [dim]enrollments:[/dim] {len(enrollments)}")
    console.print(f"  [dim]certificate:[/dim] {'configured' if certificate else 'none'}")


@app.command()
def start(
    course_id: str = typer.Argument(..., help="Course ID"),
    item_id: str = typer.Argument(..., help="Quiz item ID"),
    user: str = UserOption,
    org: str = OrgOption,
    answers: str | None = AnswersOption,
) -> None:
    """Start a quiz attempt (or resume the one in progress)."""
    try:
        result = start_attempt(Caller(user, org), course_id, item_id, _load_answers(answers))
    except QuizEngineError as e:
        _fail(e)

    label = "started" if result.created else "resumed"
    console.print(f"[green]✓ Attempt {label}[/green]")
    _print_attempt(result.attempt)


@app.command()
def autosave(
    course_id: str = typer.Argument(..., help="Course ID"),
    item_id: str = typer.Argument(..., help="Quiz item ID"),
    user: str = UserOption,
    org: str = OrgOption,
    answers: str = typer.Option(
        ..., "--answers", "-a", help="Answers as a JSON object or a path to a JSON file"
    ),
) -> None:
    """Replace the answers of the attempt in progress."""
    try:
        attempt_id = autosave_attempt(Caller(user, org), course_id, item_id, _load_answers(answers))
    except QuizEngineError as e:
        _fail(e)

    console.print(f"[green]✓ Answers saved[/green] [dim]({attempt_id})[/dim]")


@app.command()
def retake(
    course_id: str = typer.Argument(..., help="Course ID"),
    item_id: str = typer.Argument(..., help="Quiz item ID"),
    user: str = UserOption,
    org: str = OrgOption,
) -> None:
    """Abandon the attempt in progress and start a new one."""
    try:
        result = retake_attempt(Caller(user, org), course_id, item_id)
    except QuizEngineError as e:
        _fail(e)

    console.print("[green]✓ New attempt started[/green]")
    _print_attempt(result.attempt)


@app.command()
def submit(
    course_id: str = typer.Argument(..., help="Course ID"),
    item_id: str = typer.Argument(..., help="Quiz item ID"),
    user: str = UserOption,
    org: str = OrgOption,
    answers: str | None = AnswersOption,
) -> None:
    """Submit the attempt in progress for grading."""
    try:
        outcome = submit_attempt(Caller(user, org), course_id, item_id, _load_answers(answers))
    except QuizEngineError as e:
        _fail(e)

    grade = outcome.grade
    verdict = "Passed" if outcome.passed else "Not passed"
    color = "green" if outcome.passed else "yellow"
    console.print(f"[{color}]✓ Score: {grade.score_percent}% - {verdict}[/{color}]")
    console.print(f"  [dim]points:[/dim]  {grade.earned_points}/{grade.total_points}")
    console.print(f"  [dim]passing:[/dim] {outcome.passing_grade_percent}%")
    console.print(f"  [dim]best:[/dim]    {outcome.state.best_score_percent}%")

    table = Table(show_header=True, header_style="bold")
    table.add_column("Question")
    table.add_column("Result")
    table.add_column("Points", justify="right")
    for q in grade.per_question:
        mark = "[green]correct[/green]" if q.correct else ("[red]missing[/red]" if q.missing else "[red]wrong[/red]")
        table.add_row(q.question_id, mark, f"{q.earned_points}/{q.points}")
    console.print(table)

    evaluation = outcome.certificate
    if evaluation is not None and evaluation.outcome in ("issued", "refreshed"):
        console.print(
            f"\n[cyan]Certificate {evaluation.outcome}[/cyan] "
            f"(course score {evaluation.course_percent}%)"
        )


@app.command()
def status(
    course_id: str = typer.Argument(..., help="Course ID"),
    item_id: str = typer.Argument(..., help="Quiz item ID"),
    user: str = UserOption,
    org: str = OrgOption,
) -> None:
    """Show quota usage, the active attempt and the best score."""
    try:
        quiz_status = get_quiz_status(Caller(user, org), course_id, item_id)
    except QuizEngineError as e:
        _fail(e)

    allowed = quiz_status.attempts_allowed or "unlimited"
    console.print(f"[bold]Quiz {item_id}[/bold]")
    console.print(f"  [dim]attempts:[/dim] {quiz_status.submitted_attempts_count}/{allowed}")
    console.print(f"  [dim]passing:[/dim]  {quiz_status.passing_grade_percent}%")
    if quiz_status.attempt is not None:
        _print_attempt(quiz_status.attempt)
        if quiz_status.deadline_at:
            console.print(f"  [dim]deadline:[/dim] {quiz_status.deadline_at}")
    if quiz_status.state is not None:
        state = quiz_status.state
        best = state.best_score_percent if state.best_score_percent is not None else "-"
        console.print(f"  [dim]best:[/dim]     {best}")
        console.print(f"  [dim]passed:[/dim]   {state.passed_at or 'no'}")


@app.command()
def review(
    attempt_id: str = typer.Argument(..., help="Attempt ID"),
    user: str = UserOption,
    org: str = OrgOption,
) -> None:
    """Show the graded result of a past attempt."""
    try:
        attempt_review = get_attempt_review(Caller(user, org), attempt_id)
    except QuizEngineError as e:
        _fail(e)

    console.print_json(json.dumps(attempt_review.to_dict()))


@app.command()
def certify(
    course_id: str = typer.Argument(..., help="Course ID"),
    user: str = UserOption,
    org: str = OrgOption,
) -> None:
    """Re-run the certificate evaluator for a learner and course."""
    evaluation = evaluate_course_certificate(org, user, course_id)

    if evaluation.outcome in ("issued", "refreshed"):
        certificate = evaluation.certificate
        console.print(f"[green]✓ Certificate {evaluation.outcome}[/green]")
        console.print(f"  [dim]certificate:[/dim] {certificate.certificate_id}")
        console.print(f"  [dim]issued_at:[/dim]   {certificate.issued_at}")
        console.print(f"  [dim]score:[/dim]       {certificate.course_score_percent}%")
    else:
        console.print(f"[yellow]No certificate: {evaluation.outcome}[/yellow]")
        if evaluation.course_percent is not None:
            console.print(f"  [dim]course score:[/dim] {evaluation.course_percent}% (needs {evaluation.threshold}%)")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Port"),
) -> None:
    """Run the Web API with uvicorn against the selected database."""
    import uvicorn

    from quizcert.web.api import create_app

    uvicorn.run(create_app(db_path=current_db_path()), host=host, port=port)


if __name__ == "__main__":
    app()
