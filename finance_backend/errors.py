from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DATA_INTEGRITY = "data_integrity"
    UPSTREAM = "upstream"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.DATA_INTEGRITY: 500,
    ErrorKind.UPSTREAM: 502,
}


class FinanceError(Exception):
    """Single error type for the core, tagged with an ``ErrorKind``.

    Boundary code dispatches on ``kind``; ``resource``, ``field``, ``reason``
    and ``context`` carry enough structure to build a response without
    re-deriving why the operation failed.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        resource: str | None = None,
        field: str | None = None,
        reason: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.resource = resource
        self.field = field
        self.reason = reason
        self.context = dict(context or {})

    @classmethod
    def validation(
        cls, message: str, *, resource: str | None = None, field: str | None = None
    ) -> "FinanceError":
        return cls(ErrorKind.VALIDATION, message, resource=resource, field=field)

    @classmethod
    def not_found(cls, resource: str) -> "FinanceError":
        # Missing and foreign-owned rows read the same on purpose.
        return cls(
            ErrorKind.NOT_FOUND,
            f"{resource} not found or access denied.",
            resource=resource,
        )

    @classmethod
    def conflict(
        cls, message: str, *, resource: str | None = None, reason: str | None = None
    ) -> "FinanceError":
        return cls(ErrorKind.CONFLICT, message, resource=resource, reason=reason)

    @classmethod
    def data_integrity(
        cls, message: str, *, reason: str, context: Mapping[str, Any] | None = None
    ) -> "FinanceError":
        return cls(ErrorKind.DATA_INTEGRITY, message, reason=reason, context=context)

    @classmethod
    def upstream(
        cls, message: str, *, resource: str | None = None, context: Mapping[str, Any] | None = None
    ) -> "FinanceError":
        return cls(ErrorKind.UPSTREAM, message, resource=resource, context=context)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.kind.value, "message": self.message}
        if self.resource:
            payload["resource"] = self.resource
        if self.field:
            payload["field"] = self.field
        if self.reason:
            payload["reason"] = self.reason
        if self.context:
            payload["context"] = {key: str(value) for key, value in self.context.items()}
        return payload


def http_status_for(error: FinanceError) -> int:
    return HTTP_STATUS_BY_KIND.get(error.kind, 500)
