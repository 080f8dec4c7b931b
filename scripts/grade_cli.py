# ABOUTME: Provides the CLI for recording assessments and reading grade predictions.
# ABOUTME: Wraps the gradebook store, the prediction engine, the trend view, and feedback.

from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd
import typer
from rich.console import Console
from rich.table import Table

from src.common.config import TrackerConfig, configure_logging, load_config
from src.common.llm_prediction import compare_predictions, predict_with_oracle
from src.common.schemas import MAX_TOTAL, SUBJECT_COUNT
from src.common.store import GradebookStore
from src.common.teachers import list_teacher_profiles, resolve_prediction
from src.common.trend import calculate_trend_data, overall_predicted_total

console = Console()
app = typer.Typer(help="Track IB assessments and predict final grades.")


class CliState:
    def __init__(self, config: TrackerConfig, store: GradebookStore):
        self.config = config
        self.store = store


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Tracker config YAML (defaults to configs/tracker.yaml)."),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Directory holding the gradebook Parquet tables."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
) -> None:
    try:
        cfg = load_config(config)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    configure_logging(log_level or cfg.log_level)
    ctx.obj = CliState(cfg, GradebookStore(data_dir or cfg.data_dir))


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


def _subject_or_exit(store: GradebookStore, name: str):
    subject = store.find_subject(name)
    if subject is None:
        console.print(f"[red]No subject named '{name}'.[/red]")
        raise typer.Exit(code=1)
    return subject


@app.command("add-subject")
def add_subject(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Subject name, e.g. 'Physics'."),
    track: str = typer.Option(..., "--type", help="HL or SL."),
    teacher: Optional[str] = typer.Option(None, "--teacher", help="Teacher profile id, e.g. 'Greenwood'."),
) -> None:
    store = _state(ctx).store
    try:
        subject = store.create_subject(name, track, teacher=teacher)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Added {subject.name} ({subject.type})[/green]")


@app.command("subjects")
def subjects(ctx: typer.Context) -> None:
    store = _state(ctx).store
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Subject")
    table.add_column("Type")
    table.add_column("Teacher")
    table.add_column("Categories")
    table.add_column("Assessments")
    for snap in store.snapshots():
        categories = ", ".join(f"{c.name} ({c.raw_weight:.0%})" for c in snap.categories) or "-"
        table.add_row(
            snap.subject.name,
            snap.subject.type,
            snap.subject.teacher or "-",
            categories,
            str(len(snap.assessments)),
        )
    console.print(table)


@app.command("add-category")
def add_category(
    ctx: typer.Context,
    subject_name: str = typer.Option(..., "--subject", help="Subject the category belongs to."),
    name: str = typer.Option(..., "--name", help="Category label, e.g. 'Exams'."),
    weight: float = typer.Option(..., "--weight", help="Direct fraction of the final grade, in (0, 1]."),
) -> None:
    store = _state(ctx).store
    subject = _subject_or_exit(store, subject_name)
    try:
        category = store.add_category(subject.id, name, weight)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Added category {category.name} ({category.raw_weight:.0%}) to {subject.name}[/green]")


@app.command("add-assessment")
def add_assessment(
    ctx: typer.Context,
    subject_name: str = typer.Option(..., "--subject", help="Subject the assessment belongs to."),
    name: str = typer.Option(..., "--name", help="Assessment name."),
    when: Optional[str] = typer.Option(None, "--date", help="ISO date of the assessment (defaults to today)."),
    ib_grade: Optional[int] = typer.Option(None, "--ib-grade", help="IB grade 1-7."),
    raw_percent: Optional[float] = typer.Option(None, "--raw-percent", help="Percentage 0-100."),
    raw_grade: Optional[str] = typer.Option(None, "--raw-grade", help="Raw score such as 31/32."),
    notes: Optional[str] = typer.Option(None, "--notes", help="Free-text context for the LLM."),
    category_name: Optional[str] = typer.Option(None, "--category", help="Category name; omit for uncategorized."),
) -> None:
    store = _state(ctx).store
    subject = _subject_or_exit(store, subject_name)

    category_id = None
    if category_name:
        matches = [c for c in store.list_categories(subject.id) if c.name.lower() == category_name.lower()]
        if not matches:
            console.print(f"[red]No category '{category_name}' in {subject.name}.[/red]")
            raise typer.Exit(code=1)
        category_id = matches[0].id

    try:
        assessment = store.add_assessment(
            subject.id,
            name,
            when or date.today().isoformat(),
            ib_grade=ib_grade,
            raw_percent=raw_percent,
            raw_grade=raw_grade,
            notes=notes,
            category_id=category_id,
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Recorded {assessment.name} for {subject.name} ({assessment.id})[/green]")


@app.command("delete-assessment")
def delete_assessment(
    ctx: typer.Context,
    assessment_id: str = typer.Argument(..., help="Assessment id as printed by add-assessment."),
) -> None:
    try:
        _state(ctx).store.delete_assessment(assessment_id)
    except KeyError as exc:
        console.print(f"[red]{exc.args[0]}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Deleted.[/green]")


@app.command("predict")
def predict(
    ctx: typer.Context,
    ai: bool = typer.Option(False, "--ai", help="Also ask the configured LLM and reconcile."),
) -> None:
    """Predict every subject's grade and the total out of 42."""
    state = _state(ctx)
    snapshots = state.store.snapshots()
    if not snapshots:
        console.print("[yellow]No subjects yet. Add one with add-subject.[/yellow]")
        return

    config = state.config
    if ai and not config.llm.enabled:
        config = replace(config, llm=replace(config.llm, enabled=True))

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Subject")
    table.add_column("Type")
    table.add_column("Grade")
    table.add_column("Percent")
    table.add_column("Method")
    if ai:
        table.add_column("Source")
    table.add_column("Details")

    grades = []
    for snap in snapshots:
        if ai:
            reconciled = predict_with_oracle(snap, config, store=state.store)
            local = reconciled.local if reconciled else None
        else:
            reconciled = None
            local = resolve_prediction(snap.subject, snap.assessments, snap.categories)

        if local is None and reconciled is None:
            grades.append(None)
            row = [snap.subject.name, snap.subject.type, "-", "-", "no data"]
            if ai:
                row.append("-")
            table.add_row(*row, "No usable assessments yet.")
            continue

        grade = reconciled.grade if reconciled else local.grade
        grades.append(grade)
        row = [
            snap.subject.name,
            snap.subject.type,
            str(grade),
            f"{local.percentage:.1f}%" if local else "-",
            local.method if local else "-",
        ]
        if ai:
            row.append(reconciled.source)
        table.add_row(*row, reconciled.explanation if reconciled else local.details)

    console.print(table)
    total = sum(g for g in grades if g is not None)
    console.print(f"[bold]Predicted total:[/] {total}/{MAX_TOTAL} ({len(snapshots)}/{SUBJECT_COUNT} subjects)")


@app.command("compare")
def compare(ctx: typer.Context) -> None:
    """Show cached LLM grades next to the deterministic engine."""
    rows = compare_predictions(_state(ctx).store.snapshots())
    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Subject", "Local", "AI", "Diff", "Stale"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            row["subject"],
            "-" if row["local_grade"] is None else str(row["local_grade"]),
            "-" if row["ai_grade"] is None else str(row["ai_grade"]),
            "-" if row["difference"] is None else f"{row['difference']:+d}",
            "yes" if row["stale"] else "no",
        )
    console.print(table)


@app.command("trend")
def trend(ctx: typer.Context) -> None:
    """Show how each prediction moved as assessments came in."""
    snapshots = _state(ctx).store.snapshots()
    trend_df = calculate_trend_data(snapshots)
    if trend_df.empty:
        console.print("[yellow]No assessments recorded yet.[/yellow]")
        return
    if len(trend_df) < 2:
        console.print("[yellow]Need at least 2 dates to show a trend.[/yellow]")

    table = Table(show_header=True, header_style="bold magenta")
    for column in trend_df.columns:
        table.add_column(str(column))
    for _, row in trend_df.iterrows():
        cells = [row["date"].date().isoformat()]
        for column in trend_df.columns[1:]:
            value = row[column]
            cells.append("-" if pd.isna(value) else str(int(value)))
        table.add_row(*cells)
    console.print(table)

    latest = overall_predicted_total(
        resolve_prediction(s.subject, s.assessments, s.categories) for s in snapshots
    )
    console.print(f"[bold]Current total:[/] {latest}/{MAX_TOTAL}")


@app.command("teachers")
def teachers() -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Categories")
    table.add_column("Note")
    for profile in list_teacher_profiles():
        categories = ", ".join(f"{c.name} ({c.weight:.0%})" for c in profile.categories)
        table.add_row(profile.id, profile.display_name, categories, profile.note)
    console.print(table)


@app.command("feedback-add")
def feedback_add(
    ctx: typer.Context,
    content: str = typer.Argument(..., help="Feedback or feature request text."),
    kind: str = typer.Option("feedback", "--type", help="feedback or feature."),
    email: Optional[str] = typer.Option(None, "--email", help="Contact email (optional)."),
) -> None:
    try:
        _state(ctx).store.add_feedback(content, type=kind, user_email=email)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Thanks for the feedback![/green]")


@app.command("feedback-list")
def feedback_list(ctx: typer.Context) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Feedback")
    for item in _state(ctx).store.list_feedback():
        table.add_row(item.created_at.strftime("%Y-%m-%d %H:%M"), item.type, item.content)
    console.print(table)


if __name__ == "__main__":
    app()
