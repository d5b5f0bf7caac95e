"""
Domain error types.

Kept in a separate module so the store, the workflow, the API layer and the
tests all raise and catch the same classes.
"""

from typing import Optional


class CasePortalError(Exception):
    """Base class for every error the access subsystem raises on purpose."""


# Authentication / authorization ------------------------------------------------

class AuthenticationRequired(CasePortalError):
    """No identity, or one that could not be verified."""


class CaseNotFound(CasePortalError):
    """
    The case does not exist, or exists but the caller may not read it.

    Callers cannot tell the two situations apart.
    """

    def __init__(self, case_id: Optional[str] = None):
        super().__init__("Case not found")
        self.case_id = case_id


class PermissionDenied(CasePortalError):
    """The caller already knows the case exists but lacks a privilege."""

    def __init__(self, reason: str = "Forbidden"):
        super().__init__(reason)
        self.reason = reason


class InvalidRequest(CasePortalError):
    """The caller passed a value the operation does not accept."""

    def __init__(self, reason: str = "Invalid request data"):
        super().__init__(reason)
        self.reason = reason


# Workflow conflicts ------------------------------------------------------------

class WorkflowConflict(CasePortalError):
    """A recoverable access-request state conflict."""

    default_reason = "Conflict"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class AlreadyHasAccess(WorkflowConflict):
    default_reason = "You already have access to this case"


class DuplicateRequest(WorkflowConflict):
    default_reason = "An access request for this case is already pending"


class NoPendingRequest(WorkflowConflict):
    default_reason = "No pending access request found"


# Store -------------------------------------------------------------------------

class StoreError(CasePortalError):
    """The case store could not service a request (timeout, connection, ...)."""


class PreconditionFailed(CasePortalError):
    """A compare-and-set found the row in a different state than expected."""


class GrantConflict(CasePortalError):
    """Inserting a grant would break the one-active-grant-per-pair rule."""
