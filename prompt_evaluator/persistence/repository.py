"""Repository functions for the evaluator store.

Each function takes an open connection and performs a single operation.
Connections are opened/closed by callers (API dependencies, the pipeline,
run.py). Writes run inside ``transaction()`` so multi-statement changes such as
an item insert plus its dataset counter bump commit together.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog

from prompt_evaluator.errors import ConflictError, NotFoundError, ValidationFailure
from prompt_evaluator.persistence.db import execute, transaction
from prompt_evaluator.schemas.entities import (
    EDITABLE_STATUSES,
    PAYLOAD_FIELDS,
    DashboardStats,
    Dataset,
    DatasetItem,
    Evaluation,
    EvaluationResult,
    EvaluationStatus,
    InputType,
    Prompt,
)

logger = structlog.get_logger(__name__)

INTERRUPTED_ERROR = "Evaluation interrupted by a server restart"


def _now() -> str:
    """Return current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def _first(cursor) -> dict[str, Any] | None:
    # fetchall() drains RETURNING cursors before the transaction commits
    rows = cursor.fetchall()
    return dict(rows[0]) if rows else None


def _set_clause(fields: dict[str, Any]) -> tuple[str, list[Any]]:
    columns = ", ".join(f"{name} = ?" for name in fields)
    return columns, list(fields.values())


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


def create_prompt(conn, name: str, meta_prompt: str, user_id: str | None = None) -> Prompt:
    with transaction(conn):
        row = _first(execute(
            conn,
            """INSERT INTO prompts (name, meta_prompt, user_id, created_at)
               VALUES (?, ?, ?, ?) RETURNING *""",
            (name, meta_prompt, user_id, _now()),
        ))
    logger.info("prompt_created", prompt_id=row["id"], name=name)
    return Prompt.model_validate(row)


def get_prompt(conn, prompt_id: int) -> Prompt:
    row = _first(execute(conn, "SELECT * FROM prompts WHERE id = ?", (prompt_id,)))
    if row is None:
        raise NotFoundError("Prompt", prompt_id)
    return Prompt.model_validate(row)


def list_prompts(conn, user_id: str | None = None, limit: int | None = None) -> list[Prompt]:
    """List prompts newest first, optionally only those owned by ``user_id``."""
    sql = "SELECT * FROM prompts"
    params: list[Any] = []
    if user_id is not None:
        sql += " WHERE user_id = ?"
        params.append(user_id)
    sql += " ORDER BY created_at DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    rows = execute(conn, sql, params).fetchall()
    return [Prompt.model_validate(dict(r)) for r in rows]


def update_prompt(conn, prompt_id: int, **fields: Any) -> Prompt:
    """Update name and/or meta_prompt. Fields left as None are kept."""
    changes = {k: v for k, v in fields.items() if k in ("name", "meta_prompt") and v is not None}
    if not changes:
        return get_prompt(conn, prompt_id)

    columns, params = _set_clause(changes)
    with transaction(conn):
        row = _first(execute(
            conn,
            f"UPDATE prompts SET {columns} WHERE id = ? RETURNING *",
            (*params, prompt_id),
        ))
    if row is None:
        raise NotFoundError("Prompt", prompt_id)
    return Prompt.model_validate(row)


def has_evaluations_for_prompt(conn, prompt_id: int) -> bool:
    row = _first(execute(
        conn, "SELECT 1 AS found FROM evaluations WHERE prompt_id = ? LIMIT 1", (prompt_id,)
    ))
    return row is not None


def delete_prompt(conn, prompt_id: int) -> None:
    """Delete a prompt. Rejected while any evaluation references it."""
    get_prompt(conn, prompt_id)
    if has_evaluations_for_prompt(conn, prompt_id):
        raise ConflictError(
            f"Prompt {prompt_id} is used by existing evaluations; delete them first"
        )
    with transaction(conn):
        execute(conn, "DELETE FROM prompts WHERE id = ?", (prompt_id,))
    logger.info("prompt_deleted", prompt_id=prompt_id)


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------


def create_dataset(
    conn,
    name: str,
    description: str | None = None,
    user_id: str | None = None,
) -> Dataset:
    with transaction(conn):
        row = _first(execute(
            conn,
            """INSERT INTO datasets (name, description, user_id, item_count, created_at)
               VALUES (?, ?, ?, 0, ?) RETURNING *""",
            (name, description, user_id, _now()),
        ))
    logger.info("dataset_created", dataset_id=row["id"], name=name)
    return Dataset.model_validate(row)


def get_dataset(conn, dataset_id: int) -> Dataset:
    row = _first(execute(conn, "SELECT * FROM datasets WHERE id = ?", (dataset_id,)))
    if row is None:
        raise NotFoundError("Dataset", dataset_id)
    return Dataset.model_validate(row)


def list_datasets(conn, user_id: str | None = None) -> list[Dataset]:
    sql = "SELECT * FROM datasets"
    params: list[Any] = []
    if user_id is not None:
        sql += " WHERE user_id = ?"
        params.append(user_id)
    sql += " ORDER BY created_at DESC, id DESC"
    rows = execute(conn, sql, params).fetchall()
    return [Dataset.model_validate(dict(r)) for r in rows]


def update_dataset(conn, dataset_id: int, **fields: Any) -> Dataset:
    changes = {
        k: v for k, v in fields.items() if k in ("name", "description") and v is not None
    }
    if not changes:
        return get_dataset(conn, dataset_id)

    columns, params = _set_clause(changes)
    with transaction(conn):
        row = _first(execute(
            conn,
            f"UPDATE datasets SET {columns} WHERE id = ? RETURNING *",
            (*params, dataset_id),
        ))
    if row is None:
        raise NotFoundError("Dataset", dataset_id)
    return Dataset.model_validate(row)


def has_evaluations_for_dataset(conn, dataset_id: int) -> bool:
    row = _first(execute(
        conn, "SELECT 1 AS found FROM evaluations WHERE dataset_id = ? LIMIT 1", (dataset_id,)
    ))
    return row is not None


def delete_dataset(conn, dataset_id: int) -> None:
    """Delete a dataset and, by cascade, its items.

    Rejected while any evaluation references the dataset.
    """
    get_dataset(conn, dataset_id)
    if has_evaluations_for_dataset(conn, dataset_id):
        raise ConflictError(
            f"Dataset {dataset_id} is used by existing evaluations; delete them first"
        )
    with transaction(conn):
        execute(conn, "DELETE FROM datasets WHERE id = ?", (dataset_id,))
    logger.info("dataset_deleted", dataset_id=dataset_id)


# ---------------------------------------------------------------------------
# Dataset items
# ---------------------------------------------------------------------------


def _normalized_payload(
    input_type: InputType, payloads: dict[str, Any]
) -> dict[str, str | None]:
    """Keep the payload matching ``input_type`` and blank out the others."""
    authoritative = PAYLOAD_FIELDS[input_type]
    if not payloads.get(authoritative):
        raise ValidationFailure(f"{authoritative} is required for {input_type.value} items")
    return {
        column: (payloads.get(column) if column == authoritative else None)
        for column in PAYLOAD_FIELDS.values()
    }


def create_dataset_item(
    conn,
    dataset_id: int,
    valid_response: str,
    input_type: InputType | str = InputType.TEXT,
    input_text: str | None = None,
    input_image: str | None = None,
    input_pdf: str | None = None,
    file_id: str | None = None,
) -> DatasetItem:
    """Insert an item and bump the dataset's item_count in one transaction."""
    input_type = InputType(input_type)
    payload = _normalized_payload(
        input_type,
        {"input_text": input_text, "input_image": input_image, "input_pdf": input_pdf},
    )
    get_dataset(conn, dataset_id)

    with transaction(conn):
        row = _first(execute(
            conn,
            """INSERT INTO dataset_items (dataset_id, input_type, input_text, input_image,
               input_pdf, valid_response, file_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?) RETURNING *""",
            (
                dataset_id, input_type.value, payload["input_text"], payload["input_image"],
                payload["input_pdf"], valid_response, file_id, _now(),
            ),
        ))
        execute(
            conn,
            "UPDATE datasets SET item_count = item_count + 1 WHERE id = ?",
            (dataset_id,),
        )
    logger.debug("dataset_item_created", item_id=row["id"], dataset_id=dataset_id)
    return DatasetItem.model_validate(row)


def get_dataset_item(conn, item_id: int) -> DatasetItem:
    row = _first(execute(conn, "SELECT * FROM dataset_items WHERE id = ?", (item_id,)))
    if row is None:
        raise NotFoundError("Dataset item", item_id)
    return DatasetItem.model_validate(row)


def list_dataset_items(conn, dataset_id: int) -> list[DatasetItem]:
    """Items of a dataset in stored order."""
    rows = execute(
        conn,
        "SELECT * FROM dataset_items WHERE dataset_id = ? ORDER BY id",
        (dataset_id,),
    ).fetchall()
    return [DatasetItem.model_validate(dict(r)) for r in rows]


def update_dataset_item(conn, item_id: int, **fields: Any) -> DatasetItem:
    """Update an item in place; the counter is untouched."""
    current = get_dataset_item(conn, item_id)
    merged = current.model_dump()
    merged.update({k: v for k, v in fields.items() if v is not None and k in merged})

    input_type = InputType(merged["input_type"])
    payload = _normalized_payload(input_type, merged)
    with transaction(conn):
        row = _first(execute(
            conn,
            """UPDATE dataset_items
               SET input_type = ?, input_text = ?, input_image = ?, input_pdf = ?,
                   valid_response = ?, file_id = ?
               WHERE id = ? RETURNING *""",
            (
                input_type.value, payload["input_text"], payload["input_image"],
                payload["input_pdf"], merged["valid_response"], merged["file_id"], item_id,
            ),
        ))
    return DatasetItem.model_validate(row)


def delete_dataset_item(conn, item_id: int) -> None:
    """Delete an item (and its results) and decrement the dataset counter.

    Rejected while an evaluation of the item's dataset is in progress, since
    the running pipeline still has to store a result for it.
    """
    with transaction(conn):
        row = _first(execute(
            conn,
            """DELETE FROM dataset_items
               WHERE id = ? AND NOT EXISTS (
                   SELECT 1 FROM evaluations
                   WHERE evaluations.dataset_id = dataset_items.dataset_id
                     AND evaluations.status = ?
               ) RETURNING dataset_id""",
            (item_id, EvaluationStatus.IN_PROGRESS.value),
        ))
        if row is None:
            get_dataset_item(conn, item_id)
            raise ConflictError(
                f"Dataset item {item_id} belongs to a dataset with an evaluation in progress"
            )
        execute(
            conn,
            "UPDATE datasets SET item_count = item_count - 1 WHERE id = ?",
            (row["dataset_id"],),
        )
    logger.debug("dataset_item_deleted", item_id=item_id, dataset_id=row["dataset_id"])


# ---------------------------------------------------------------------------
# Evaluations
# ---------------------------------------------------------------------------


def create_evaluation(
    conn,
    prompt_id: int,
    dataset_id: int,
    user_prompt: str | None = None,
) -> Evaluation:
    get_prompt(conn, prompt_id)
    get_dataset(conn, dataset_id)
    with transaction(conn):
        row = _first(execute(
            conn,
            """INSERT INTO evaluations (prompt_id, dataset_id, user_prompt, status, created_at)
               VALUES (?, ?, ?, ?, ?) RETURNING *""",
            (prompt_id, dataset_id, user_prompt, EvaluationStatus.PENDING.value, _now()),
        ))
    logger.info("evaluation_created", evaluation_id=row["id"], prompt_id=prompt_id,
                dataset_id=dataset_id)
    return Evaluation.model_validate(row)


def get_evaluation(conn, evaluation_id: int) -> Evaluation:
    row = _first(execute(conn, "SELECT * FROM evaluations WHERE id = ?", (evaluation_id,)))
    if row is None:
        raise NotFoundError("Evaluation", evaluation_id)
    return Evaluation.model_validate(row)


def list_evaluations(conn, prompt_id: int | None = None) -> list[Evaluation]:
    sql = "SELECT * FROM evaluations"
    params: list[Any] = []
    if prompt_id is not None:
        sql += " WHERE prompt_id = ?"
        params.append(prompt_id)
    sql += " ORDER BY created_at DESC, id DESC"
    rows = execute(conn, sql, params).fetchall()
    return [Evaluation.model_validate(dict(r)) for r in rows]


def update_evaluation(conn, evaluation_id: int, **fields: Any) -> Evaluation:
    """Edit prompt/dataset/fragment of a pending or failed evaluation."""
    changes = {
        k: v for k, v in fields.items()
        if k in ("prompt_id", "dataset_id", "user_prompt") and v is not None
    }
    current = get_evaluation(conn, evaluation_id)
    if "prompt_id" in changes:
        get_prompt(conn, changes["prompt_id"])
    if "dataset_id" in changes:
        get_dataset(conn, changes["dataset_id"])
    if not changes:
        return current

    columns, params = _set_clause(changes)
    placeholders = ", ".join("?" for _ in EDITABLE_STATUSES)
    with transaction(conn):
        row = _first(execute(
            conn,
            f"""UPDATE evaluations SET {columns}
                WHERE id = ? AND status IN ({placeholders}) RETURNING *""",
            (*params, evaluation_id, *(s.value for s in EDITABLE_STATUSES)),
        ))
    if row is None:
        raise ConflictError(
            f"Evaluation {evaluation_id} can only be edited while pending or failed"
        )
    return Evaluation.model_validate(row)


def delete_evaluation(conn, evaluation_id: int) -> None:
    """Delete an evaluation and its results. Rejected while it is running."""
    evaluation = get_evaluation(conn, evaluation_id)
    if evaluation.status == EvaluationStatus.IN_PROGRESS:
        raise ConflictError(f"Evaluation {evaluation_id} is running")
    with transaction(conn):
        execute(conn, "DELETE FROM evaluations WHERE id = ?", (evaluation_id,))
    logger.info("evaluation_deleted", evaluation_id=evaluation_id)


def begin_evaluation_run(conn, evaluation_id: int, user_prompt: str | None = None) -> Evaluation:
    """Atomically move an evaluation to in_progress and drop its old results.

    The conditional UPDATE is the only guard against two concurrent runs of
    the same evaluation: a second caller matches no row and gets a conflict.
    """
    with transaction(conn):
        row = _first(execute(
            conn,
            """UPDATE evaluations
               SET status = ?, user_prompt = COALESCE(?, user_prompt),
                   score = NULL, metrics = NULL, completed_at = NULL
               WHERE id = ? AND status <> ? RETURNING *""",
            (
                EvaluationStatus.IN_PROGRESS.value, user_prompt, evaluation_id,
                EvaluationStatus.IN_PROGRESS.value,
            ),
        ))
        if row is None:
            get_evaluation(conn, evaluation_id)
            raise ConflictError(f"Evaluation {evaluation_id} is already in progress")
        execute(conn, "DELETE FROM evaluation_results WHERE evaluation_id = ?", (evaluation_id,))
    logger.info("evaluation_run_started", evaluation_id=evaluation_id)
    return Evaluation.model_validate(row)


def set_final_prompt(conn, evaluation_id: int, final_prompt: str) -> None:
    with transaction(conn):
        execute(
            conn,
            "UPDATE evaluations SET final_prompt = ? WHERE id = ?",
            (final_prompt, evaluation_id),
        )


def complete_evaluation(conn, evaluation_id: int, score: int, metrics: dict[str, Any]) -> None:
    with transaction(conn):
        execute(
            conn,
            """UPDATE evaluations SET status = ?, score = ?, metrics = ?, completed_at = ?
               WHERE id = ?""",
            (
                EvaluationStatus.COMPLETED.value, score, json.dumps(metrics), _now(),
                evaluation_id,
            ),
        )
    logger.info("evaluation_completed", evaluation_id=evaluation_id, score=score)


def fail_evaluation(conn, evaluation_id: int, error: str) -> None:
    with transaction(conn):
        execute(
            conn,
            """UPDATE evaluations SET status = ?, score = NULL, metrics = ?, completed_at = ?
               WHERE id = ?""",
            (
                EvaluationStatus.FAILED.value, json.dumps({"error": error}), _now(),
                evaluation_id,
            ),
        )
    logger.warning("evaluation_failed", evaluation_id=evaluation_id, error=error)


def fail_interrupted_evaluations(conn) -> int:
    """Mark runs left in_progress by a previous process as failed."""
    with transaction(conn):
        cursor = execute(
            conn,
            "UPDATE evaluations SET status = ?, metrics = ?, completed_at = ? WHERE status = ?",
            (
                EvaluationStatus.FAILED.value, json.dumps({"error": INTERRUPTED_ERROR}),
                _now(), EvaluationStatus.IN_PROGRESS.value,
            ),
        )
        count = cursor.rowcount
    if count:
        logger.warning("interrupted_evaluations_failed", count=count)
    return count


# ---------------------------------------------------------------------------
# Evaluation results
# ---------------------------------------------------------------------------


def save_evaluation_result(
    conn,
    evaluation_id: int,
    dataset_item_id: int,
    generated_response: str,
    is_valid: bool,
    score: int,
    feedback: str,
) -> EvaluationResult:
    with transaction(conn):
        row = _first(execute(
            conn,
            """INSERT INTO evaluation_results (evaluation_id, dataset_item_id,
               generated_response, is_valid, score, feedback, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?) RETURNING *""",
            (evaluation_id, dataset_item_id, generated_response, is_valid, score,
             feedback, _now()),
        ))
    return EvaluationResult.model_validate(row)


def list_evaluation_results(conn, evaluation_id: int) -> list[EvaluationResult]:
    """Results of the latest run, in dataset-item order."""
    rows = execute(
        conn,
        """SELECT * FROM evaluation_results WHERE evaluation_id = ?
           ORDER BY dataset_item_id, id""",
        (evaluation_id,),
    ).fetchall()
    return [EvaluationResult.model_validate(dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def get_dashboard_stats(conn) -> DashboardStats:
    row = _first(execute(
        conn,
        """SELECT
             (SELECT COUNT(*) FROM prompts) AS total_prompts,
             (SELECT COUNT(*) FROM evaluations) AS total_evaluations,
             (SELECT AVG(score) FROM evaluations WHERE score IS NOT NULL) AS average_score,
             (SELECT COUNT(*) FROM dataset_items) AS data_elements""",
    ))
    average = row["average_score"]
    return DashboardStats(
        total_prompts=row["total_prompts"],
        total_evaluations=row["total_evaluations"],
        average_score=round(float(average), 1) if average is not None else 0.0,
        data_elements=row["data_elements"],
    )


def list_recent_prompts(conn, limit: int = 5) -> list[Prompt]:
    return list_prompts(conn, limit=limit)
