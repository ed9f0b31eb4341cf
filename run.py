"""CLI entry point for the meta-prompt evaluator.

Usage:
    python run.py list                                   # List evaluations
    python run.py list --prompt-id 3                     # Only evaluations of prompt 3
    python run.py evaluate --evaluation-id 7             # Run evaluation 7 inline
    python run.py evaluate --evaluation-id 7 --user-prompt "Be concise"
    python run.py serve --port 8000                      # Start the HTTP API
"""

from __future__ import annotations

import argparse
import asyncio

from prompt_evaluator.clients.generation import GenerationClient
from prompt_evaluator.clients.grading import GradingClient
from prompt_evaluator.config import get_evaluator_settings, get_settings
from prompt_evaluator.errors import EvaluatorError
from prompt_evaluator.logging_config import setup_logging
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.persistence.db import get_connection
from prompt_evaluator.pipeline.runner import EvaluationPipeline
from prompt_evaluator.storage.bucket import PdfBucket
from prompt_evaluator.utils.console import (
    console,
    print_evaluations,
    print_header,
    print_info,
    print_langsmith_status,
    print_results_report,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Meta-prompt evaluator: run prompts against datasets and grade the answers",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    list_parser = sub.add_parser("list", help="List evaluations.")
    list_parser.add_argument(
        "--prompt-id",
        type=int,
        default=None,
        help="Only show evaluations of this prompt.",
    )

    eval_parser = sub.add_parser("evaluate", help="Run one evaluation and print its results.")
    eval_parser.add_argument("--evaluation-id", type=int, required=True)
    eval_parser.add_argument(
        "--user-prompt",
        default=None,
        help="Replace the stored user prompt before running.",
    )

    serve_parser = sub.add_parser("serve", help="Start the HTTP API with uvicorn.")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true", default=False)

    return parser.parse_args(argv)


def _fallback_names() -> list[str]:
    evaluator_settings = get_evaluator_settings()
    settings = get_settings()
    names = []
    if evaluator_settings.providers.groq.enabled and settings.groq_api_key:
        names.append("Groq")
    if evaluator_settings.providers.ollama.enabled:
        names.append("Ollama")
    return names


def list_evaluations(prompt_id: int | None) -> None:
    settings = get_settings()
    conn = get_connection(settings.database_url)
    try:
        evaluations = repo.list_evaluations(conn, prompt_id=prompt_id)
    finally:
        conn.close()
    print_evaluations(evaluations, get_evaluator_settings().pipeline.valid_threshold)


async def evaluate(evaluation_id: int, user_prompt: str | None) -> int:
    """Run an evaluation inline. Returns a process exit code."""
    settings = get_settings()
    evaluator_settings = get_evaluator_settings()
    threshold = evaluator_settings.pipeline.valid_threshold

    conn = get_connection(settings.database_url)
    try:
        evaluation = repo.begin_evaluation_run(conn, evaluation_id, user_prompt=user_prompt)
        prompt = repo.get_prompt(conn, evaluation.prompt_id)
        dataset = repo.get_dataset(conn, evaluation.dataset_id)

        print_header(
            evaluation,
            prompt_name=prompt.name,
            dataset_name=f"{dataset.name} ({dataset.item_count} items)",
            model=evaluator_settings.get_model("generation"),
            fallbacks=_fallback_names(),
        )
        print_langsmith_status(settings.langchain_tracing_v2)
        print_info("Running evaluation...")

        bucket = PdfBucket(settings.bucket_dir)
        pipeline = EvaluationPipeline(
            GenerationClient(bucket),
            GradingClient(),
            db_url=settings.database_url,
        )
        finished = await pipeline.run(evaluation_id)
        results = repo.list_evaluation_results(conn, evaluation_id)
    finally:
        conn.close()

    print_results_report(finished, results, threshold)
    return 0 if finished.status == "completed" else 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "prompt_evaluator.api.app:app", host=args.host, port=args.port, reload=args.reload
        )
        return 0

    try:
        if args.command == "list":
            list_evaluations(args.prompt_id)
            return 0
        return asyncio.run(evaluate(args.evaluation_id, args.user_prompt))
    except EvaluatorError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
