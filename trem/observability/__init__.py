"""Observability helpers."""

from trem.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_stage,
    record_collaborator_failure,
    record_commit,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_stage",
    "record_collaborator_failure",
    "record_commit",
]
