"""
CLI Interface
=============
Command-line interface for the MCQ extractor.

Usage:
    mcq-extractor extract <pdf_path> [options]
    mcq-extractor text <text_path> [options]
    mcq-extractor info <pdf_path>
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .engine import ExtractionEngine, ExtractorConfig, save_result
from .models import ExtractionResult, ExtractionStatus, ManualAnswer, OPTION_LABELS
from .pdf_source import InMemoryPageSource, PageSource, PdfPageSource, SourceError
from .worker import ExtractionJob

console = Console()

STATUS_STYLES = {
    ExtractionStatus.COMPLETED: "green",
    ExtractionStatus.NO_QUESTIONS: "yellow",
    ExtractionStatus.CANCELLED: "yellow",
    ExtractionStatus.FAILED: "red",
}


@click.group()
@click.version_option(version=__version__, prog_name="mcq-extractor")
def cli():
    """MCQ Extractor: multiple-choice questions and answers from PDF text."""
    pass


def _common_options(func):
    """Options shared by the extraction commands."""
    options = [
        click.option(
            "--output", "-o",
            default="output",
            help="Output directory for the JSON result",
        ),
        click.option(
            "--answers",
            "answers_path",
            default=None,
            type=click.Path(exists=True, dir_okay=False),
            help="JSON file of manual answers ({question_id: answer})",
        ),
        click.option(
            "--no-sets",
            is_flag=True,
            default=False,
            help="Treat the document as one set even if set headers appear",
        ),
        click.option(
            "--review-format",
            is_flag=True,
            default=False,
            help="Write the compact review-UI JSON shape",
        ),
        click.option(
            "--log-level",
            default="INFO",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
            help="Logging level",
        ),
        click.option(
            "--log-file",
            default=None,
            help="Path to log file",
        ),
        click.option(
            "--json-output",
            is_flag=True,
            default=False,
            help="Output only JSON result to stdout (for programmatic use)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command()
@click.argument("pdf_path", type=click.Path(dir_okay=False))
@_common_options
@click.option(
    "--no-visual",
    is_flag=True,
    default=False,
    help="Skip page rendering and highlight detection",
)
@click.option(
    "--chunk-size",
    default=5,
    type=click.IntRange(min=1),
    help="Pages fetched per chunk",
)
@click.option(
    "--raster-scale",
    default=1.0,
    type=click.FloatRange(min=0.1, max=4.0),
    help="Render scale for highlight detection",
)
def extract(
    pdf_path: str,
    output: str,
    answers_path: Optional[str],
    no_sets: bool,
    review_format: bool,
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
    no_visual: bool,
    chunk_size: int,
    raster_scale: float,
):
    """Extract questions and answers from a PDF file."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = ExtractorConfig(
        detect_practice_sets=not no_sets,
        chunk_size=chunk_size,
        enable_visual=not no_visual,
        raster_scale=raster_scale,
        log_level=log_level,
        log_file=log_file,
    )

    try:
        manual_answers = load_manual_answers(answers_path) if answers_path else []
        engine = ExtractionEngine(config)
        with PdfPageSource(
            pdf_path,
            render_rasters=config.enable_visual,
            raster_scale=config.raster_scale,
        ) as source:
            result = _run(engine, source, manual_answers, pdf_path, json_output)
    except (FileNotFoundError, SourceError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _finish(result, pdf_path, output, review_format, json_output)


@cli.command()
@click.argument("text_path", type=click.Path(dir_okay=False))
@_common_options
def text(
    text_path: str,
    output: str,
    answers_path: Optional[str],
    no_sets: bool,
    review_format: bool,
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Extract questions from a plain-text file (pages split on form feeds)."""

    if json_output:
        log_level = "ERROR"

    config = ExtractorConfig(
        detect_practice_sets=not no_sets,
        enable_visual=False,
        log_level=log_level,
        log_file=log_file,
    )

    try:
        with open(text_path, "r", encoding="utf-8") as f:
            pages = f.read().split("\f")
        manual_answers = load_manual_answers(answers_path) if answers_path else []
        engine = ExtractionEngine(config)
        result = _run(
            engine, InMemoryPageSource(pages), manual_answers, text_path, json_output
        )
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _finish(result, text_path, output, review_format, json_output)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
def info(pdf_path: str):
    """Display PDF file information."""

    try:
        source = PdfPageSource(pdf_path, render_rasters=False)
    except SourceError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    with source:
        console.print()
        table = Table(title="PDF Information", border_style="cyan")
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("File", os.path.basename(pdf_path))
        table.add_row("Pages", str(source.page_count()))
        table.add_row(
            "File Size",
            f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
        )

        metadata = source.metadata()
        for key in ["title", "author", "subject", "creator", "producer"]:
            val = metadata.get(key, "")
            if val:
                table.add_row(key.title(), val)

        has_text = source.page_count() > 0 and bool(source.page_text(0).text.strip())
        table.add_row(
            "Text Layer",
            "[green]present[/]" if has_text else "[yellow]none on page 1 (scanned?)[/]",
        )

        console.print(table)
        console.print()


# ─── Helpers ──────────────────────────────────────────────────────────────────


def load_manual_answers(path: str) -> list[ManualAnswer]:
    """
    Read manual answers from JSON.

    Accepts either an object mapping question ids to answers
    (`{"general_q_1": "b"}`) or a list of
    `{"questionId": ..., "answer": ...}` records.

    Raises:
        ValueError: If the file is not one of those shapes.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        return [ManualAnswer(question_id=k, answer=v) for k, v in data.items()]

    if isinstance(data, list):
        answers = []
        for record in data:
            if not isinstance(record, dict):
                raise ValueError(f"Manual answer record is not an object: {record!r}")
            question_id = record.get("questionId", record.get("question_id"))
            if question_id is None or "answer" not in record:
                raise ValueError(f"Manual answer record needs questionId and answer: {record!r}")
            answers.append(ManualAnswer(question_id=question_id, answer=record["answer"]))
        return answers

    raise ValueError(f"Unsupported manual answers format in {path}")


def _run(
    engine: ExtractionEngine,
    source: PageSource,
    manual_answers: list[ManualAnswer],
    label: str,
    json_output: bool,
) -> ExtractionResult:
    """Run an extraction job; Ctrl+C cancels it cleanly."""
    if json_output:
        job = ExtractionJob(engine, source, manual_answers=manual_answers)
        return _wait(job)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]MCQ Extractor v{__version__}[/]\n"
            f"[dim]Extracting: {os.path.basename(label)}[/]",
            border_style="cyan",
        )
    )
    console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Reading pages...", total=None)

        def on_progress(done: int, total: int):
            progress.update(task, completed=done, total=total)

        job = ExtractionJob(
            engine, source, progress_callback=on_progress, manual_answers=manual_answers
        )
        result = _wait(job)
        progress.update(task, description="Done")

    return result


def _wait(job: ExtractionJob) -> ExtractionResult:
    job.start()
    try:
        while job.wait(timeout=0.2) is None:
            pass
    except KeyboardInterrupt:
        console.print("[yellow]Cancelling...[/]")
        job.request_stop()
        job.wait()
    return job.result


def _finish(
    result: ExtractionResult,
    input_path: str,
    output: str,
    review_format: bool,
    json_output: bool,
):
    if json_output:
        data = result.to_review_dict() if review_format else result.model_dump(mode="json")
        print(json.dumps(data, indent=2, ensure_ascii=False, default=str))
    else:
        try:
            _display_results(result)
        except UnicodeEncodeError:
            # Windows console may not support special chars
            print(f"{result.status.value}: {len(result.questions)} questions")

    if result.status in (ExtractionStatus.COMPLETED, ExtractionStatus.NO_QUESTIONS):
        output_file = Path(output) / f"{Path(input_path).stem}_questions.json"
        try:
            save_result(result, output_file, review_format=review_format)
        except OSError as e:
            console.print(f"[red]Error:[/] could not write {output_file}: {e}")
            sys.exit(1)
        if not json_output:
            console.print(f"[dim]Saved: {output_file}[/]")
            console.print()

    if result.status == ExtractionStatus.FAILED:
        sys.exit(1)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(result: ExtractionResult):
    """Display extraction results as formatted tables."""
    console.print()
    style = STATUS_STYLES[result.status]
    console.print(f"[bold {style}]{result.status.value.upper()}[/] {result.message}")
    if result.error:
        console.print(f"[red]{result.error}[/]")
    console.print()

    if result.status in (ExtractionStatus.CANCELLED, ExtractionStatus.FAILED):
        return

    _display_summary_table(result)

    if result.practice_sets:
        sets_table = Table(title="Practice Sets", border_style="cyan")
        sets_table.add_column("Set", justify="right", style="bold")
        sets_table.add_column("Title")
        sets_table.add_column("Questions", justify="right")
        for practice_set in result.practice_sets:
            sets_table.add_row(
                str(practice_set.set_number),
                practice_set.title,
                str(practice_set.question_count),
            )
        console.print(sets_table)
        console.print()

    if result.questions:
        _display_questions_table(result)


def _display_summary_table(result: ExtractionResult):
    table = Table(title="Extraction Summary", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[yellow]⚠[/]"

    stats = result.stats
    correlation = result.correlation
    detected = correlation.answers_detected if correlation else 0
    rate = correlation.detection_rate if correlation else 0.0

    table.add_row("Pages", str(stats.page_count), "")
    table.add_row(
        "Questions",
        str(len(result.questions)),
        "[green]✓[/]" if result.questions else "[red]✗[/]",
    )
    table.add_row(
        "Answers Detected",
        f"{detected} ({rate}%)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )
    table.add_row("Need Review", str(len(result.needs_review)), status_icon(len(result.needs_review)))
    table.add_row("Duplicates Removed", str(stats.duplicates_removed), "")
    rejected = sum(stats.validation_rejections.values())
    table.add_row("Rejected Candidates", str(rejected), "")
    table.add_row(
        "Strategy Errors", str(len(stats.strategy_errors)), status_icon(len(stats.strategy_errors))
    )
    console.print(table)
    console.print()

    if stats.strategy_counts:
        strategy_table = Table(title="Candidates per Strategy", border_style="cyan")
        strategy_table.add_column("Strategy", style="bold")
        strategy_table.add_column("Candidates", justify="right")
        for name, count in stats.strategy_counts.items():
            strategy_table.add_row(name, str(count))
        console.print(strategy_table)
        console.print()

    if stats.validation_rejections:
        rejection_table = Table(title="Rejection Breakdown", border_style="yellow")
        rejection_table.add_column("Reason", style="bold")
        rejection_table.add_column("Count", justify="right")
        for reason, count in stats.validation_rejections.items():
            rejection_table.add_row(reason, str(count))
        console.print(rejection_table)
        console.print()


def _display_questions_table(result: ExtractionResult):
    table = Table(title="Questions", border_style="cyan")
    table.add_column("ID", style="bold")
    table.add_column("Question")
    table.add_column("Answer", justify="center")
    table.add_column("Method")
    table.add_column("Confidence", justify="right")

    for question in result.questions:
        stem = question.text if len(question.text) <= 60 else question.text[:57] + "..."
        if question.correct_answer is None:
            answer, method, confidence = "[yellow]?[/]", "-", "-"
        else:
            answer = OPTION_LABELS[question.correct_answer].upper()
            method = question.detection_method.value
            confidence = f"{question.detection_confidence:.2f}"
        table.add_row(question.id, stem, answer, method, confidence)

    console.print(table)
    console.print()


# ─── Entry point (for python -m mcq_extractor.cli) ────────────────────────────


if __name__ == "__main__":
    cli()
