"""
Case Portal API
===============

FastAPI endpoints for cases and lawyer access requests.

Endpoints:
- GET    /health                              - Health check
- GET    /api/auth/me                         - Current identity
- GET    /api/cases                           - Cases I can read, newest first, paginated
- GET    /api/cases/browse                    - Case discovery with access flags, paginated
- POST   /api/cases                           - Create a case (clients)
- GET    /api/cases/{case_id}                 - Read a case
- PATCH  /api/cases/{case_id}                 - Update a case (owner/admin)
- DELETE /api/cases/{case_id}                 - Delete a case (owner/admin)
- POST   /api/cases/{case_id}/request-access  - Lawyer requests access
- DELETE /api/cases/{case_id}/request-access  - Lawyer withdraws a pending request
- GET    /api/cases/{case_id}/access-requests - Owner lists requests
- PUT    /api/cases/{case_id}/access-requests - Owner approves/rejects
- GET    /api/my-access-requests              - Lawyer lists own requests

Every route resolves the caller, asks the authorization engine or the
workflow, and renders the outcome through ``responses``. Routes never make
access decisions themselves.

Run with:
    uvicorn case_portal.api:app --host 0.0.0.0 --port 8000
"""

import logging
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .access_requests import AccessRequestWorkflow
from .auth import Identity, get_identity, get_store
from .authz import CaseAccessService, is_case_owner
from .config import get_settings
from .db.models import CaseCategory, CaseStatus, GrantStatus
from .db.session import get_engine, init_db
from .errors import CaseNotFound, CasePortalError, StoreError
from .middleware.security import SecurityHeadersMiddleware
from .notifications import OwnerNotifier
from .responses import Authorized, BadRequest, InternalError, outcome_for_error
from .schemas import CreateCaseRequest, DecideAccessRequest, GrantStatusFilter, HealthResponse, UpdateCaseRequest
from .store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, CasePage, CaseQuery, CaseStore

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Case Portal",
    description="Case access authorization and lawyer access requests",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_settings = get_settings()
logger.info(f"CORS allow origins: {_settings.cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)


@app.on_event("startup")
async def startup():
    """Create tables and report insecure settings"""
    init_db()
    for warning in get_settings().validate_security_config():
        logger.warning(f"Security config: {warning}")
    logger.info(f"Case Portal {__version__} started")


# =============================================================================
# Dependencies
# =============================================================================

def get_notifier() -> Optional[OwnerNotifier]:
    """Owner notifier; overridable in tests"""
    return OwnerNotifier()


def get_access_service(store: CaseStore = Depends(get_store)) -> CaseAccessService:
    return CaseAccessService(store)


def get_workflow(
    store: CaseStore = Depends(get_store),
    notifier: Optional[OwnerNotifier] = Depends(get_notifier),
) -> AccessRequestWorkflow:
    return AccessRequestWorkflow(store, notifier)


def get_case_query(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Cases per page"),
    search: Optional[str] = Query(None, max_length=200, description="Match in title or description"),
    status: Optional[CaseStatus] = Query(None),
    category: Optional[CaseCategory] = Query(None),
) -> CaseQuery:
    """Listing filters shared by /api/cases and /api/cases/browse"""
    return CaseQuery(search=search, status=status, category=category, page=page, limit=limit)


# =============================================================================
# Serialization
# =============================================================================

def _case_to_dict(case, identity: Optional[Identity] = None) -> dict:
    data = {
        "id": case.id,
        "title": case.title,
        "description": case.description,
        "category": case.category.value if case.category else None,
        "status": case.status.value if case.status else None,
        "priority": case.priority,
        "owner_id": case.owner_id,
        "created_at": case.created_at.isoformat() if case.created_at else None,
        "updated_at": case.updated_at.isoformat() if case.updated_at else None,
    }
    if identity is not None:
        data["is_owner"] = is_case_owner(identity, case)
    return data


def _user_summary(user) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
    }


def _grant_to_dict(grant, include_lawyer: bool = False, include_case: bool = False) -> dict:
    data = {
        "id": grant.id,
        "case_id": grant.case_id,
        "lawyer_id": grant.lawyer_id,
        "status": grant.status.value,
        "requested_at": grant.requested_at.isoformat() if grant.requested_at else None,
        "decided_at": grant.decided_at.isoformat() if grant.decided_at else None,
        "decided_by": grant.decided_by,
    }
    if include_lawyer:
        data["lawyer"] = _user_summary(grant.lawyer)
        data["decider"] = _user_summary(grant.decider)
    if include_case and grant.case is not None:
        data["case"] = {
            "id": grant.case.id,
            "title": grant.case.title,
            "category": grant.case.category.value,
            "status": grant.case.status.value,
        }
    return data


def _page_response(page: CasePage, cases: list):
    payload = {
        "cases": cases,
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "total_pages": page.total_pages,
        },
    }
    message = None
    if page.out_of_range:
        message = f"Page {page.page} is out of range. Total pages available: {page.total_pages}"
    return Authorized(payload=payload, message=message).to_response()


# =============================================================================
# Health / Auth
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health():
    """Health check endpoint"""
    database = "ok"
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database query failed: {e.__class__.__name__}")
        database = "unavailable"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        database=database,
    )


@app.get("/api/auth/me", tags=["Auth"])
def auth_me(
    identity: Identity = Depends(get_identity),
    store: CaseStore = Depends(get_store),
):
    """Get current authenticated user info from token"""
    user = store.get_user(identity.id)
    return Authorized(payload={
        "id": identity.id,
        "email": identity.email,
        "role": identity.role.value if hasattr(identity.role, "value") else identity.role,
        "first_name": user.first_name if user else None,
        "last_name": user.last_name if user else None,
    }).to_response()


# =============================================================================
# Cases
# =============================================================================

@app.get("/api/cases", tags=["Cases"], summary="List my accessible cases")
def list_my_cases(
    query: CaseQuery = Depends(get_case_query),
    identity: Identity = Depends(get_identity),
    access: CaseAccessService = Depends(get_access_service),
):
    """Cases the caller may read: owned (client), approved (lawyer), all (admin)"""
    page = access.my_cases_page(identity, query)
    return _page_response(page, [_case_to_dict(c, identity) for c in page.cases])


@app.get("/api/cases/browse", tags=["Cases"], summary="Browse cases")
def browse_cases(
    query: CaseQuery = Depends(get_case_query),
    identity: Identity = Depends(get_identity),
    workflow: AccessRequestWorkflow = Depends(get_workflow),
):
    """
    Case discovery.

    Lawyers see every case, each tagged with has_access / has_pending_request
    so they can request access. Other roles see the same set as /api/cases.
    """
    page = workflow.access.browse_cases_page(identity, query)
    summary = workflow.access_summary(identity, page.cases)

    cases = []
    for case in page.cases:
        data = _case_to_dict(case, identity)
        flags = summary[case.id]
        data["has_access"] = flags.has_access
        data["has_pending_request"] = flags.has_pending_request
        data["requested_at"] = flags.requested_at.isoformat() if flags.requested_at else None
        cases.append(data)
    return _page_response(page, cases)


@app.post("/api/cases", tags=["Cases"], summary="Create a new case")
def create_case(
    request: CreateCaseRequest,
    identity: Identity = Depends(get_identity),
    access: CaseAccessService = Depends(get_access_service),
):
    """Create a case owned by the calling client"""
    case = access.create_case(
        identity,
        title=request.title,
        description=request.description,
        category=request.category,
        priority=request.priority,
    )
    return Authorized(
        payload=_case_to_dict(case, identity),
        message="Case created successfully",
        status_code=201,
    ).to_response()


@app.get("/api/cases/{case_id}", tags=["Cases"], summary="Get case details")
def get_case(
    case_id: str,
    identity: Identity = Depends(get_identity),
    access: CaseAccessService = Depends(get_access_service),
):
    """Case details; 404 whether the case is missing or just not readable"""
    case = access.require_read(identity, case_id)
    return Authorized(payload=_case_to_dict(case, identity)).to_response()


@app.patch("/api/cases/{case_id}", tags=["Cases"], summary="Update a case")
def update_case(
    case_id: str,
    request: UpdateCaseRequest,
    identity: Identity = Depends(get_identity),
    access: CaseAccessService = Depends(get_access_service),
    store: CaseStore = Depends(get_store),
):
    """Owner (or admin) update. Readers without ownership get 403."""
    case = access.require_owner(identity, case_id, reason="Only case owners can update cases")

    changes = request.model_dump(exclude_none=True)
    if changes:
        case = store.update_case(case.id, changes)
        if case is None:
            # Deleted between the ownership check and the write
            raise CaseNotFound(case_id)
        logger.info(f"User {identity.id} updated case {case_id}: {sorted(changes)}")

    return Authorized(payload=_case_to_dict(case, identity), message="Case updated successfully").to_response()


@app.delete("/api/cases/{case_id}", tags=["Cases"], summary="Delete a case")
def delete_case(
    case_id: str,
    identity: Identity = Depends(get_identity),
    access: CaseAccessService = Depends(get_access_service),
    store: CaseStore = Depends(get_store),
):
    """Owner (or admin) delete"""
    case = access.require_owner(identity, case_id, reason="Only case owners can delete cases")
    if not store.delete_case(case.id):
        raise CaseNotFound(case_id)
    logger.info(f"User {identity.id} deleted case {case_id}")
    return Authorized(message="Case deleted successfully").to_response()


# =============================================================================
# Access Requests
# =============================================================================

@app.post("/api/cases/{case_id}/request-access", tags=["Access Requests"], summary="Request case access")
def request_access(
    case_id: str,
    identity: Identity = Depends(get_identity),
    workflow: AccessRequestWorkflow = Depends(get_workflow),
):
    """Lawyer asks the case owner for access"""
    grant = workflow.request_access(identity, case_id)
    return Authorized(
        payload=_grant_to_dict(grant),
        message="Access request sent successfully",
        status_code=201,
    ).to_response()


@app.delete("/api/cases/{case_id}/request-access", tags=["Access Requests"], summary="Withdraw access request")
def withdraw_access(
    case_id: str,
    identity: Identity = Depends(get_identity),
    workflow: AccessRequestWorkflow = Depends(get_workflow),
):
    """Lawyer withdraws a pending request"""
    grant = workflow.withdraw_access(identity, case_id)
    return Authorized(
        payload=_grant_to_dict(grant),
        message="Access request withdrawn successfully",
    ).to_response()


@app.get("/api/cases/{case_id}/access-requests", tags=["Access Requests"], summary="List access requests for a case")
def list_case_requests(
    case_id: str,
    status: GrantStatusFilter = Query(GrantStatusFilter.PENDING, description="Grant status, or 'all' for the full history"),
    identity: Identity = Depends(get_identity),
    workflow: AccessRequestWorkflow = Depends(get_workflow),
):
    """Owner view of the lawyers asking for access"""
    wanted = None if status == GrantStatusFilter.ALL else GrantStatus(status.value)
    grants = workflow.list_case_requests(identity, case_id, status=wanted)
    return Authorized(payload=[_grant_to_dict(g, include_lawyer=True) for g in grants]).to_response()


@app.put("/api/cases/{case_id}/access-requests", tags=["Access Requests"], summary="Approve or reject an access request")
def decide_access(
    case_id: str,
    request: DecideAccessRequest,
    identity: Identity = Depends(get_identity),
    workflow: AccessRequestWorkflow = Depends(get_workflow),
):
    """Owner approves or rejects a lawyer's pending request"""
    grant = workflow.decide_access(identity, case_id, request.lawyer_id, request.action)
    return Authorized(
        payload=_grant_to_dict(grant),
        message=f"Access request {grant.status.value} successfully",
    ).to_response()


@app.get("/api/my-access-requests", tags=["Access Requests"], summary="List my access requests")
def list_my_access_requests(
    status: Optional[GrantStatus] = Query(None),
    identity: Identity = Depends(get_identity),
    workflow: AccessRequestWorkflow = Depends(get_workflow),
):
    """Lawyer view of their own requests, newest first"""
    grants = workflow.list_lawyer_requests(identity, status=status)
    return Authorized(payload=[_grant_to_dict(g, include_case=True) for g in grants]).to_response()


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(CasePortalError)
async def case_portal_error_handler(request: Request, exc: CasePortalError):
    """Render domain errors through the status policy"""
    if isinstance(exc, StoreError):
        logger.error(f"Store failure on {request.method} {request.url.path}")
    return outcome_for_error(exc).to_response()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors without echoing inputs"""
    sanitized_errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return BadRequest(reason="Invalid request data", details=sanitized_errors).to_response()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler - always return valid JSON"""
    logger.error("Unhandled exception on %s: %s", request.url.path, exc.__class__.__name__)
    return InternalError().to_response()
