"""Rich console output for the evaluator CLI."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from prompt_evaluator.schemas.entities import Evaluation, EvaluationResult, EvaluationStatus

console = Console()

STATUS_COLORS = {
    EvaluationStatus.PENDING: "dim",
    EvaluationStatus.IN_PROGRESS: "yellow",
    EvaluationStatus.COMPLETED: "green",
    EvaluationStatus.FAILED: "red",
}


def _fmt_score(score: int | None, threshold: int) -> str:
    if score is None:
        return "[dim]-[/dim]"
    color = "green" if score >= threshold else "yellow" if score >= threshold // 2 else "red"
    return f"[{color}]{score}[/{color}]"


def _clip(text: str | None, limit: int = 60) -> str:
    text = (text or "").replace("\n", " ")
    return text[:limit] + ("..." if len(text) > limit else "")


def print_header(
    evaluation: Evaluation,
    prompt_name: str,
    dataset_name: str,
    model: str,
    fallbacks: list[str],
) -> None:
    """Print the run banner with model and fallback status."""
    fallback_text = " → ".join(fallbacks) if fallbacks else "None"
    console.print()
    console.print(
        Panel(
            f"[bold]Meta-Prompt Evaluator[/bold]\n\n"
            f"  Evaluation: [cyan]#{evaluation.id}[/cyan]\n"
            f"  Prompt: [cyan]{prompt_name}[/cyan]\n"
            f"  Dataset: [cyan]{dataset_name}[/cyan]\n"
            f"  User prompt: [cyan]{_clip(evaluation.user_prompt) or '(empty)'}[/cyan]\n"
            f"  Model: [cyan]{model}[/cyan]\n"
            f"  Fallback: [cyan]{fallback_text}[/cyan]",
            border_style="bright_blue",
            padding=(1, 2),
        )
    )
    console.print()


def print_evaluations(evaluations: list[Evaluation], threshold: int) -> None:
    if not evaluations:
        console.print("[yellow]No evaluations found.[/yellow]")
        return

    table = Table(title="Evaluations")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Prompt", justify="right")
    table.add_column("Dataset", justify="right")
    table.add_column("Status")
    table.add_column("Score", justify="center")
    table.add_column("Created")

    for ev in evaluations:
        color = STATUS_COLORS.get(ev.status, "white")
        table.add_row(
            str(ev.id),
            str(ev.prompt_id),
            str(ev.dataset_id),
            f"[{color}]{ev.status.value}[/{color}]",
            _fmt_score(ev.score, threshold),
            ev.created_at.strftime("%Y-%m-%d %H:%M") if ev.created_at else "",
        )
    console.print(table)


def print_results_report(
    evaluation: Evaluation,
    results: list[EvaluationResult],
    threshold: int,
) -> None:
    """Print per-item results followed by the aggregate metrics of a run."""
    if evaluation.status == EvaluationStatus.FAILED:
        error = (evaluation.metrics or {}).get("error", "unknown error")
        console.print(f"[bold red]Evaluation failed: {error}[/bold red]")
        return

    if results:
        table = Table(title="Evaluation Results", show_lines=True)
        table.add_column("Item", style="cyan", justify="right")
        table.add_column("Generated response", max_width=60)
        table.add_column("Score", justify="center")
        table.add_column("Valid", justify="center")
        table.add_column("Feedback", max_width=50)

        for r in results:
            table.add_row(
                str(r.dataset_item_id),
                _clip(r.generated_response),
                _fmt_score(r.score, threshold),
                "[green]yes[/green]" if r.is_valid else "[red]no[/red]",
                _clip(r.feedback, 80),
            )
        console.print(table)
    else:
        console.print("[yellow]Dataset has no items.[/yellow]")

    metrics = evaluation.metrics or {}
    console.print("\n[bold]Aggregate Metrics:[/bold]")
    console.print(f"  Items evaluated: {metrics.get('item_count', len(results))}")
    console.print(f"  Score: {_fmt_score(evaluation.score, threshold)}")
    console.print(f"  Accuracy: {metrics.get('accuracy', 0)}%")
    console.print(
        f"  Valid: [green]{metrics.get('valid_count', 0)}[/green] | "
        f"Failed: [red]{metrics.get('failed_count', 0)}[/red]\n"
    )


def print_info(message: str) -> None:
    """Print an informational message."""
    console.print(f"  [dim]{message}[/dim]")


def print_langsmith_status(enabled: bool) -> None:
    """Print LangSmith tracing status."""
    if enabled:
        console.print("  [green]LangSmith tracing: enabled[/green]")
    else:
        console.print("  [dim]LangSmith tracing: disabled[/dim]")
