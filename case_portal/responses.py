"""
Response / Status Policy
========================

Maps internal outcomes to what a caller can observe.

| Outcome                                            | Status |
|----------------------------------------------------|--------|
| not authenticated                                  | 401    |
| case missing, or present but unreadable           | 404    |
| readable case, missing privilege (e.g. ownership)  | 403    |
| workflow conflict                                  | 409    |
| store / unexpected failure                         | 500    |

The 404 body is a module constant so "does not exist" and "exists but not
yours" are byte-identical on the wire. 403 is only produced after the caller
has proven it can read the case.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .errors import (
    AuthenticationRequired, CaseNotFound, CasePortalError, InvalidRequest,
    PermissionDenied, StoreError, WorkflowConflict,
)

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Case not found"
UNAUTHENTICATED_MESSAGE = "Unauthorized"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class Outcome:
    """Base outcome; subclasses fix the status code."""

    status_code = 500

    def body(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=jsonable_encoder(self.body()))


def _error_body(message: str, details: Any = None) -> Dict[str, Any]:
    body = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return body


@dataclass
class Authorized(Outcome):
    payload: Any = None
    message: Optional[str] = None
    status_code: int = 200

    def body(self):
        body = {"success": True}
        if self.payload is not None:
            body["data"] = self.payload
        if self.message:
            body["message"] = self.message
        return body


class NotFound(Outcome):
    status_code = 404

    def body(self):
        return _error_body(NOT_FOUND_MESSAGE)


@dataclass
class Forbidden(Outcome):
    status_code = 403

    reason: str = "Forbidden"

    def body(self):
        return _error_body(self.reason)


class Unauthenticated(Outcome):
    status_code = 401

    def body(self):
        return _error_body(UNAUTHENTICATED_MESSAGE)


@dataclass
class Conflict(Outcome):
    status_code = 409

    reason: str = "Conflict"
    code: str = "conflict"

    def body(self):
        body = _error_body(self.reason)
        body["code"] = self.code
        return body


@dataclass
class BadRequest(Outcome):
    status_code = 400

    reason: str = "Invalid request data"
    details: Any = None

    def body(self):
        return _error_body(self.reason, self.details)


class InternalError(Outcome):
    status_code = 500

    def body(self):
        return _error_body(INTERNAL_ERROR_MESSAGE)


def _conflict_code(exc: WorkflowConflict) -> str:
    # AlreadyHasAccess -> already_has_access
    name = exc.__class__.__name__
    return "".join("_" + ch.lower() if ch.isupper() else ch for ch in name).lstrip("_")


def outcome_for_error(exc: CasePortalError) -> Outcome:
    """Render a domain error under the status policy."""
    if isinstance(exc, AuthenticationRequired):
        return Unauthenticated()
    if isinstance(exc, CaseNotFound):
        return NotFound()
    if isinstance(exc, PermissionDenied):
        return Forbidden(reason=exc.reason)
    if isinstance(exc, InvalidRequest):
        return BadRequest(reason=exc.reason)
    if isinstance(exc, WorkflowConflict):
        return Conflict(reason=exc.reason, code=_conflict_code(exc))
    if isinstance(exc, StoreError):
        return InternalError()
    logger.error(f"Unmapped domain error {exc.__class__.__name__}; reporting as internal error")
    return InternalError()
