"""Translate orchestrator errors into HTTP responses."""
from __future__ import annotations

from typing import Any, Dict, Type

from fastapi import HTTPException, status

from taskmesh.core.errors import (
    DependencyError,
    DuplicateIdError,
    ExecutionError,
    InvalidStateError,
    NoAgentAvailableError,
    NotFoundError,
    OrchestratorError,
    ValidationError,
)

_STATUS_CODES: Dict[Type[OrchestratorError], int] = {
    ValidationError: 422,
    DuplicateIdError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_409_CONFLICT,
    DependencyError: status.HTTP_409_CONFLICT,
    NoAgentAvailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExecutionError: status.HTTP_502_BAD_GATEWAY,
}


def http_error(exc: OrchestratorError) -> HTTPException:
    status_code = next(
        (code for kind, code in _STATUS_CODES.items() if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail: Dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, DependencyError):
        detail["unmet_dependencies"] = exc.unmet
    return HTTPException(status_code=status_code, detail=detail)
