"""
app/errors.py

Exception taxonomy shared by the ingestion, mapping and materialization layers.

Validation and not-found failures are reported synchronously to the caller and
are never retried. Transient infrastructure failures are raised only from the
materialization path, where the background queue retries them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


class PipelineError(Exception):
    """Base exception for dataset pipeline failures."""


class InputValidationError(PipelineError, ValueError):
    """Raised when caller-supplied input is malformed or violates an invariant."""


class QuotaExceededError(InputValidationError):
    """Raised when an owner or dataset has reached its configured limit."""


class NotFoundError(PipelineError, LookupError):
    """Raised when a referenced dataset or batch does not exist for the caller."""


class IngestionCancelledError(PipelineError):
    """Raised when an upload stream is cancelled between row chunks."""


class TransientInfrastructureError(PipelineError, RuntimeError):
    """Raised when storage or cache is unavailable during materialization."""


@dataclass(frozen=True)
class MappingErrorDetail:
    """
    Structured mapping error detail.
    """

    code: str
    message: str
    source_column: str | None = None
    system_field: str | None = None
    context: dict[str, Any] | None = None


class MappingValidationError(InputValidationError):
    """
    Raised when a mapping submission cannot be applied safely.
    """

    def __init__(self, *, message: str, errors: Sequence[MappingErrorDetail]) -> None:
        super().__init__(message)
        self.message = message
        self.errors = tuple(errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "errors": [
                {
                    "code": error.code,
                    "message": error.message,
                    "source_column": error.source_column,
                    "system_field": error.system_field,
                    "context": error.context,
                }
                for error in self.errors
            ],
        }
