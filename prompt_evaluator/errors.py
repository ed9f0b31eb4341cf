"""Domain exceptions, translated to HTTP responses by the API layer."""

from __future__ import annotations


class EvaluatorError(Exception):
    """Base class for errors raised by the evaluator."""


class NotFoundError(EvaluatorError):
    """The referenced entity does not exist (404)."""

    def __init__(self, entity: str, entity_id: int | str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConflictError(EvaluatorError):
    """The entity exists but is in a state that forbids the operation (400)."""


class ValidationFailure(EvaluatorError):
    """Request data passed schema validation but is semantically invalid (400)."""


class PipelineError(EvaluatorError):
    """A run-level failure. The evaluation is marked failed with this message."""


class DocumentError(EvaluatorError):
    """A stored document is missing or its text cannot be extracted."""


class AirtableImportError(EvaluatorError):
    """The Airtable import could not be performed (400)."""
