"""Translation of flowpath errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from flowpath.flow_core.errors import (
    FlowNotFoundError,
    FlowpathError,
    FlowValidationError,
    GraphEditError,
    GraphViolation,
    InvalidTransitionError,
    NoLiveFlowError,
    PersistenceError,
    QuotaExceededError,
    RoutingError,
    SessionCompletedError,
    SessionNotFoundError,
)

_STATUS_BY_ERROR: list[tuple[type[FlowpathError], int]] = [
    (FlowNotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (NoLiveFlowError, status.HTTP_404_NOT_FOUND),
    (QuotaExceededError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (SessionCompletedError, status.HTTP_409_CONFLICT),
    (GraphEditError, status.HTTP_409_CONFLICT),
    (FlowValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (GraphViolation, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RoutingError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _detail(exc: FlowpathError) -> str | dict[str, object]:
    if isinstance(exc, QuotaExceededError):
        return {"message": str(exc), **exc.to_dict()}
    if isinstance(exc, FlowValidationError):
        return {"message": str(exc), "violations": [v.to_dict() for v in exc.violations]}
    return str(exc)


def to_http_exception(exc: FlowpathError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=_detail(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
