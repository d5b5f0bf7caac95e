"""
Case Authorization Engine
=========================

Single source of truth for "who may see and change which case".

Roles:
- client: reads and owns the cases it created
- lawyer: reads a case only through an APPROVED access grant; never owns
- admin:  reads every case and acts as owner of every case

Each role is a policy object; callers go through ``policy_for(identity)``
rather than comparing role strings. Unknown roles get ``DenyAllPolicy``.

The module-level functions are pure: they take already-loaded cases and
grants and never touch the store. ``CaseAccessService`` is the request-scoped
wrapper that loads data from the store and applies the not-found masking
rules on top of the pure decisions.
"""

import logging
from typing import Iterable, List, Optional, Set

from .auth import Identity
from .db.models import Case, GrantStatus, UserRole
from .errors import CaseNotFound, PermissionDenied
from .store import CasePage, CaseQuery

logger = logging.getLogger(__name__)


def _case_id(case) -> Optional[str]:
    case_id = getattr(case, "id", None) if case is not None else None
    if not isinstance(case_id, str) or not case_id.strip():
        return None
    return case_id


def _approved_case_ids(lawyer_id: str, grants: Iterable) -> Set[str]:
    return {
        g.case_id for g in grants
        if g.lawyer_id == lawyer_id and g.status == GrantStatus.APPROVED
    }


# =============================================================================
# ROLE POLICIES
# =============================================================================

class RolePolicy:
    """Default-deny policy; subclasses open up what their role may do."""

    role: Optional[UserRole] = None
    may_request_access = False
    may_create_case = False

    def can_read(self, identity: Identity, case: Case, grants: Iterable) -> bool:
        return False

    def can_own(self, identity: Identity, case: Case) -> bool:
        return False

    def visible_case_ids(self, identity: Identity, cases: Iterable[Case], grants: Iterable) -> Set[str]:
        return set()

    def browsable_case_ids(self, identity: Identity, cases: Iterable[Case], grants: Iterable) -> Set[str]:
        return self.visible_case_ids(identity, cases, grants)


class DenyAllPolicy(RolePolicy):
    """Unrecognized roles"""


class AdminPolicy(RolePolicy):
    role = UserRole.ADMIN

    def can_read(self, identity, case, grants):
        return True

    def can_own(self, identity, case):
        return True

    def visible_case_ids(self, identity, cases, grants):
        return {c.id for c in cases if _case_id(c)}


class ClientPolicy(RolePolicy):
    role = UserRole.CLIENT
    may_create_case = True

    def can_read(self, identity, case, grants):
        return self.can_own(identity, case)

    def can_own(self, identity, case):
        return bool(identity.id) and case.owner_id == identity.id

    def visible_case_ids(self, identity, cases, grants):
        return {c.id for c in cases if _case_id(c) and self.can_own(identity, c)}


class LawyerPolicy(RolePolicy):
    role = UserRole.LAWYER
    may_request_access = True

    def can_read(self, identity, case, grants):
        return case.id in _approved_case_ids(identity.id, grants)

    def visible_case_ids(self, identity, cases, grants):
        known = {c.id for c in cases if _case_id(c)}
        return known & _approved_case_ids(identity.id, grants)

    def browsable_case_ids(self, identity, cases, grants):
        # Discovery: lawyers see every case so they can ask for access.
        return {c.id for c in cases if _case_id(c)}


_POLICIES = {
    UserRole.ADMIN: AdminPolicy(),
    UserRole.CLIENT: ClientPolicy(),
    UserRole.LAWYER: LawyerPolicy(),
}
_DENY_ALL = DenyAllPolicy()


def policy_for(identity: Optional[Identity]) -> RolePolicy:
    """Policy object for the identity's role; deny-all when unknown."""
    if identity is None:
        return _DENY_ALL
    try:
        role = UserRole(identity.role)
    except ValueError:
        logger.warning(f"Unknown role {identity.role!r} for user {identity.id}; denying")
        return _DENY_ALL
    return _POLICIES.get(role, _DENY_ALL)


# =============================================================================
# PURE DECISIONS
# =============================================================================

def can_access_case(identity: Identity, case: Optional[Case], grants: Iterable = ()) -> bool:
    """
    True if ``identity`` may read ``case``.

    A missing case or a blank case id is simply False, so "not found" and
    "not authorized" look the same to callers.
    """
    if _case_id(case) is None:
        return False
    return policy_for(identity).can_read(identity, case, list(grants))


def is_case_owner(identity: Identity, case: Optional[Case]) -> bool:
    """True if ``identity`` holds owner privileges (update, delete, decide) on ``case``."""
    if _case_id(case) is None:
        return False
    return policy_for(identity).can_own(identity, case)


def accessible_case_ids(identity: Identity, cases: Iterable[Case], grants: Iterable = ()) -> Set[str]:
    """Ids of the cases ``identity`` may read ("my cases")."""
    return policy_for(identity).visible_case_ids(identity, list(cases), list(grants))


def browsable_case_ids(identity: Identity, cases: Iterable[Case], grants: Iterable = ()) -> Set[str]:
    """Ids shown in case discovery. Wider than accessible_case_ids for lawyers only."""
    return policy_for(identity).browsable_case_ids(identity, list(cases), list(grants))


def newest_first(cases: Iterable[Case]) -> List[Case]:
    """Stable listing order: creation time descending, id as tie-break."""
    ordered = sorted(cases, key=lambda c: c.id)
    return sorted(ordered, key=lambda c: c.created_at, reverse=True)


# =============================================================================
# REQUEST-SCOPED SERVICE
# =============================================================================

class CaseAccessService:
    """Loads cases and grants from the store and enforces the masking rules."""

    def __init__(self, store):
        self.store = store

    def _grants_for(self, identity: Identity, case_id: str):
        if policy_for(identity).role != UserRole.LAWYER:
            return []
        return self.store.list_grants(case_id=case_id, lawyer_id=identity.id, status=GrantStatus.APPROVED)

    def can_read(self, identity: Identity, case: Optional[Case]) -> bool:
        if case is None:
            return False
        return can_access_case(identity, case, self._grants_for(identity, case.id))

    def require_read(self, identity: Identity, case_id: str) -> Case:
        """
        Return the case if ``identity`` may read it.

        Raises:
            CaseNotFound: missing case *or* no read access (indistinguishable)
        """
        case = self.store.get_case(case_id)
        if not self.can_read(identity, case):
            logger.warning(
                f"Access denied or case not found: user {identity.id} ({identity.role}) case {case_id}"
            )
            raise CaseNotFound(case_id)
        return case

    def require_owner(self, identity: Identity, case_id: str, reason: str = "Only case owners can perform this action") -> Case:
        """
        Return the case if ``identity`` has owner privileges on it.

        Raises:
            CaseNotFound: caller cannot even read the case
            PermissionDenied: caller can read the case but does not own it
        """
        case = self.store.get_case(case_id)
        if is_case_owner(identity, case):
            return case

        if not self.can_read(identity, case):
            logger.warning(
                f"User {identity.id} ({identity.role}) attempted owner action on non-existent or inaccessible case {case_id}"
            )
            raise CaseNotFound(case_id)

        logger.warning(f"User {identity.id} ({identity.role}) attempted owner action on case {case_id} without ownership")
        raise PermissionDenied(reason)

    def create_case(self, identity: Identity, **fields) -> Case:
        """Create a case owned by the caller. Only clients own cases."""
        if not policy_for(identity).may_create_case:
            logger.warning(f"User {identity.id} ({identity.role}) attempted to create a case")
            raise PermissionDenied("Only clients can create cases")
        case = self.store.create_case(identity.id, **fields)
        logger.info(f"User {identity.id} created case {case.id}")
        return case

    def readable_case_ids(self, identity: Identity) -> Set[str]:
        """Ids of every case ``identity`` may read, decided by the engine."""
        role = policy_for(identity).role
        if role == UserRole.CLIENT:
            return accessible_case_ids(identity, self.store.list_case_refs(owner_id=identity.id))
        if role == UserRole.LAWYER:
            grants = self.store.list_grants(lawyer_id=identity.id, status=GrantStatus.APPROVED)
            refs = self.store.list_case_refs(case_ids={g.case_id for g in grants})
            return accessible_case_ids(identity, refs, grants)
        if role == UserRole.ADMIN:
            return accessible_case_ids(identity, self.store.list_case_refs())
        return set()

    def discoverable_case_ids(self, identity: Identity) -> Set[str]:
        """Discovery set: every case for lawyers, readable cases for everyone else."""
        if policy_for(identity).role != UserRole.LAWYER:
            return self.readable_case_ids(identity)
        return browsable_case_ids(identity, self.store.list_case_refs())

    def my_cases(self, identity: Identity) -> List[Case]:
        """Readable cases, newest first."""
        return newest_first(self.store.get_cases(self.readable_case_ids(identity)))

    def browse_cases(self, identity: Identity) -> List[Case]:
        """Discovery listing, newest first."""
        return newest_first(self.store.get_cases(self.discoverable_case_ids(identity)))

    def my_cases_page(self, identity: Identity, query: CaseQuery) -> CasePage:
        return self.store.page_cases(self.readable_case_ids(identity), query)

    def browse_cases_page(self, identity: Identity, query: CaseQuery) -> CasePage:
        return self.store.page_cases(self.discoverable_case_ids(identity), query)
