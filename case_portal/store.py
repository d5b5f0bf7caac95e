"""
Case Store
==========

SQLAlchemy-backed persistence for cases and access grants.

The store owns storage, not rules: it answers lookups and performs the two
atomic writes the access workflow depends on:

- ``create_grant``     insert guarded by the partial unique index on active grants
- ``transition_grant`` compare-and-set on the grant status

Infrastructure failures are wrapped in ``StoreError`` so callers never see
driver exceptions or query text.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .db.models import Case, CaseAccessGrant, CaseCategory, CaseStatus, GrantStatus, User
from .errors import GrantConflict, InvalidRequest, PreconditionFailed, StoreError

logger = logging.getLogger(__name__)

# Fields a case owner may change through the API
UPDATABLE_CASE_FIELDS = ("title", "description", "category", "status", "priority")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class CaseQuery:
    """Filters and page window for case listings"""
    search: Optional[str] = None
    status: Optional[CaseStatus] = None
    category: Optional[CaseCategory] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class CasePage:
    """One page of a filtered case listing"""
    cases: List[Case]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    @property
    def out_of_range(self) -> bool:
        return self.total > 0 and self.page > self.total_pages


def _wrap_store_errors(method):
    """Roll back and re-raise driver errors as StoreError."""

    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Case store %s failed: %s", method.__name__, e.__class__.__name__)
            raise StoreError("Case store unavailable") from e

    return wrapper


class CaseStore:
    """Case and grant persistence for one request-scoped session"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_wrap_store_errors
    def get_user(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == user_id).first()

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    @_wrap_store_errors
    def get_case(self, case_id: str) -> Optional[Case]:
        """Return the case or None. Blank ids are simply not found."""
        if not case_id or not str(case_id).strip():
            return None
        return self.db.query(Case).filter(Case.id == case_id).first()

    @_wrap_store_errors
    def get_cases(self, case_ids) -> List[Case]:
        """Fetch cases by id, newest first. Missing ids are skipped."""
        case_ids = list(case_ids)
        if not case_ids:
            return []
        return (
            self.db.query(Case)
            .filter(Case.id.in_(case_ids))
            .order_by(Case.created_at.desc(), Case.id)
            .all()
        )

    @_wrap_store_errors
    def list_case_ids_by_owner(self, owner_id: str) -> List[str]:
        return [row[0] for row in self.db.query(Case.id).filter(Case.owner_id == owner_id).all()]

    @_wrap_store_errors
    def list_all_case_ids(self) -> List[str]:
        return [row[0] for row in self.db.query(Case.id).all()]

    @_wrap_store_errors
    def list_case_refs(self, case_ids=None, owner_id: Optional[str] = None) -> list:
        """
        Light (id, owner_id) rows for authorization decisions.

        ``case_ids=None`` means every case; an empty collection means none.
        """
        query = self.db.query(Case.id, Case.owner_id)
        if case_ids is not None:
            case_ids = list(case_ids)
            if not case_ids:
                return []
            query = query.filter(Case.id.in_(case_ids))
        if owner_id is not None:
            query = query.filter(Case.owner_id == owner_id)
        return query.all()

    @_wrap_store_errors
    def page_cases(self, case_ids, query: CaseQuery) -> CasePage:
        """
        Filter and paginate within ``case_ids``, newest first.

        ``case_ids`` is the already-authorized set; nothing outside it is
        counted or returned.
        """
        case_ids = list(case_ids)
        if not case_ids:
            return CasePage(cases=[], page=query.page, limit=query.limit, total=0)

        q = self.db.query(Case).filter(Case.id.in_(case_ids))
        term = (query.search or "").strip().lower()
        if term:
            q = q.filter(or_(
                func.lower(Case.title).contains(term, autoescape=True),
                func.lower(Case.description).contains(term, autoescape=True),
            ))
        if query.status is not None:
            q = q.filter(Case.status == query.status)
        if query.category is not None:
            q = q.filter(Case.category == query.category)

        total = q.count()
        cases = (
            q.order_by(Case.created_at.desc(), Case.id)
            .offset(query.offset)
            .limit(query.limit)
            .all()
        )
        return CasePage(cases=cases, page=query.page, limit=query.limit, total=total)

    @_wrap_store_errors
    def create_case(self, owner_id: str, **fields) -> Case:
        case = Case(owner_id=owner_id, **fields)
        self.db.add(case)
        self.db.commit()
        self.db.refresh(case)
        return case

    @_wrap_store_errors
    def update_case(self, case_id: str, changes: Dict[str, Any]) -> Optional[Case]:
        """Apply ``changes``; None if the case is gone."""
        case = self.db.query(Case).filter(Case.id == case_id).first()
        if case is None:
            return None
        for field, value in changes.items():
            if field not in UPDATABLE_CASE_FIELDS:
                raise InvalidRequest(f"Field {field!r} cannot be updated")
            setattr(case, field, value)
        self.db.commit()
        self.db.refresh(case)
        return case

    @_wrap_store_errors
    def delete_case(self, case_id: str) -> bool:
        case = self.db.query(Case).filter(Case.id == case_id).first()
        if case is None:
            return False
        self.db.delete(case)
        self.db.commit()
        return True

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    @_wrap_store_errors
    def get_grant(self, case_id: str, lawyer_id: str) -> Optional[CaseAccessGrant]:
        """
        Return the current grant for the pair.

        The active (PENDING/APPROVED) grant wins; otherwise the most recent
        terminal one.
        """
        grants = (
            self.db.query(CaseAccessGrant)
            .filter(
                CaseAccessGrant.case_id == case_id,
                CaseAccessGrant.lawyer_id == lawyer_id,
            )
            .order_by(CaseAccessGrant.requested_at.desc())
            .all()
        )
        for grant in grants:
            if grant.status.is_active:
                return grant
        return grants[0] if grants else None

    @_wrap_store_errors
    def get_grant_by_id(self, grant_id: str) -> Optional[CaseAccessGrant]:
        return self.db.query(CaseAccessGrant).filter(CaseAccessGrant.id == grant_id).first()

    @_wrap_store_errors
    def list_grants(
        self,
        case_id: Optional[str] = None,
        lawyer_id: Optional[str] = None,
        status: Optional[GrantStatus] = None,
    ) -> List[CaseAccessGrant]:
        query = self.db.query(CaseAccessGrant)
        if case_id is not None:
            query = query.filter(CaseAccessGrant.case_id == case_id)
        if lawyer_id is not None:
            query = query.filter(CaseAccessGrant.lawyer_id == lawyer_id)
        if status is not None:
            query = query.filter(CaseAccessGrant.status == status)
        return query.order_by(CaseAccessGrant.requested_at.desc()).all()

    @_wrap_store_errors
    def create_grant(self, case_id: str, lawyer_id: str) -> CaseAccessGrant:
        """
        Insert a PENDING grant.

        Raises:
            GrantConflict: an active grant already exists for the pair
        """
        grant = CaseAccessGrant(
            case_id=case_id,
            lawyer_id=lawyer_id,
            status=GrantStatus.PENDING,
            requested_at=datetime.utcnow(),
        )
        self.db.add(grant)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise GrantConflict(f"Active grant exists for case {case_id}") from e
        self.db.refresh(grant)
        return grant

    @_wrap_store_errors
    def transition_grant(
        self,
        grant_id: str,
        expected_status: GrantStatus,
        new_status: GrantStatus,
        decided_by: Optional[str] = None,
    ) -> CaseAccessGrant:
        """
        Compare-and-set the grant status.

        A single conditional UPDATE: the row changes only if it is still in
        ``expected_status``. Exactly one of several racing callers wins.

        Raises:
            PreconditionFailed: the grant is missing or no longer in ``expected_status``
        """
        values = {
            CaseAccessGrant.status: new_status,
            CaseAccessGrant.decided_at: datetime.utcnow(),
            CaseAccessGrant.decided_by: decided_by,
        }
        updated = (
            self.db.query(CaseAccessGrant)
            .filter(
                CaseAccessGrant.id == grant_id,
                CaseAccessGrant.status == expected_status,
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()

        if updated != 1:
            raise PreconditionFailed(
                f"Grant {grant_id} is not {expected_status.value}"
            )

        grant = self.db.query(CaseAccessGrant).filter(CaseAccessGrant.id == grant_id).first()
        self.db.refresh(grant)
        return grant
