"""
Access Request Workflow
=======================

Lifecycle of a lawyer's request for access to a case:

    PENDING --approve (owner/admin)--> APPROVED
    PENDING --reject  (owner/admin)--> REJECTED
    PENDING --withdraw (lawyer)-----> WITHDRAWN

All three right-hand states are terminal for that grant row. A new request
after a rejection or withdrawal creates a new row.

Every transition out of PENDING goes through ``CaseStore.transition_grant``
(compare-and-set); a caller that loses a race gets ``NoPendingRequest``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .auth import Identity
from .authz import CaseAccessService, can_access_case, policy_for
from .db.models import Case, CaseAccessGrant, GrantStatus
from .errors import (
    AlreadyHasAccess, CaseNotFound, DuplicateRequest, GrantConflict,
    InvalidRequest, NoPendingRequest, PermissionDenied, PreconditionFailed,
)

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """Owner's answer to a pending request"""
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> GrantStatus:
        return GrantStatus.APPROVED if self is Decision.APPROVE else GrantStatus.REJECTED


@dataclass
class AccessSummary:
    """Per-case access flags shown in the browse listing"""
    has_access: bool
    has_pending_request: bool
    requested_at: Optional[datetime] = None


class AccessRequestWorkflow:
    """Request, withdraw and decide operations over one request-scoped store"""

    def __init__(self, store, notifier=None):
        self.store = store
        self.notifier = notifier
        self.access = CaseAccessService(store)

    # ------------------------------------------------------------------
    # Lawyer side
    # ------------------------------------------------------------------

    def _require_lawyer(self, identity: Identity, reason: str) -> None:
        if not policy_for(identity).may_request_access:
            logger.warning(f"User {identity.id} ({identity.role}) is not a lawyer: {reason}")
            raise PermissionDenied(reason)

    def _raise_if_active(self, case_id: str, lawyer_id: str) -> None:
        grant = self.store.get_grant(case_id, lawyer_id)
        if grant is None:
            return
        if grant.status == GrantStatus.APPROVED:
            raise AlreadyHasAccess()
        if grant.status == GrantStatus.PENDING:
            raise DuplicateRequest()

    def request_access(self, identity: Identity, case_id: str) -> CaseAccessGrant:
        """
        Create a PENDING grant for (case, lawyer).

        Raises:
            PermissionDenied: caller is not a lawyer
            CaseNotFound: case does not exist
            AlreadyHasAccess: an APPROVED grant exists
            DuplicateRequest: a PENDING grant exists (also when a concurrent request won)
        """
        self._require_lawyer(identity, "Only lawyers can request case access")

        case = self.store.get_case(case_id)
        if case is None:
            raise CaseNotFound(case_id)

        self._raise_if_active(case.id, identity.id)

        try:
            grant = self.store.create_grant(case.id, identity.id)
        except GrantConflict:
            # Lost the insert race; report whichever active grant is there now.
            self._raise_if_active(case.id, identity.id)
            raise DuplicateRequest()

        logger.info(f"Lawyer {identity.id} requested access to case {case.id} (grant {grant.id})")
        self._notify_owner(case, identity)
        return grant

    def _notify_owner(self, case: Case, identity: Identity) -> None:
        if self.notifier is None:
            return
        owner = self.store.get_user(case.owner_id)
        lawyer = self.store.get_user(identity.id)
        if not self.notifier.access_requested(owner, lawyer, case):
            logger.info(f"Owner of case {case.id} was not notified about grant request by {identity.id}")

    def withdraw_access(self, identity: Identity, case_id: str) -> CaseAccessGrant:
        """
        Withdraw the caller's PENDING request.

        Raises:
            PermissionDenied: caller is not a lawyer
            CaseNotFound: case does not exist
            NoPendingRequest: nothing pending, or it was decided concurrently
        """
        self._require_lawyer(identity, "Only lawyers can withdraw case access requests")

        case = self.store.get_case(case_id)
        if case is None:
            raise CaseNotFound(case_id)

        grant = self.store.get_grant(case.id, identity.id)
        if grant is None or grant.status != GrantStatus.PENDING:
            raise NoPendingRequest()

        try:
            grant = self.store.transition_grant(grant.id, GrantStatus.PENDING, GrantStatus.WITHDRAWN)
        except PreconditionFailed:
            logger.info(f"Withdraw of grant {grant.id} lost a race; request no longer pending")
            raise NoPendingRequest()

        logger.info(f"Lawyer {identity.id} withdrew access request for case {case.id}")
        return grant

    def list_lawyer_requests(self, identity: Identity, status: Optional[GrantStatus] = None) -> List[CaseAccessGrant]:
        """The caller's own grants, newest first."""
        self._require_lawyer(identity, "Only lawyers can view their access requests")
        return self.store.list_grants(lawyer_id=identity.id, status=status)

    # ------------------------------------------------------------------
    # Owner side
    # ------------------------------------------------------------------

    def decide_access(
        self,
        identity: Identity,
        case_id: str,
        lawyer_id: str,
        decision: Union[Decision, str],
    ) -> CaseAccessGrant:
        """
        Approve or reject a lawyer's PENDING request.

        Raises:
            CaseNotFound: decider cannot read the case (or it does not exist)
            PermissionDenied: decider can read the case but does not own it
            InvalidRequest: decision is not approve or reject
            NoPendingRequest: no PENDING grant, or another decision got there first
        """
        try:
            decision = Decision(decision)
        except ValueError:
            raise InvalidRequest("Action must be approve or reject")

        case = self.access.require_owner(
            identity, case_id, reason="Only case owners can decide access requests"
        )

        grant = self.store.get_grant(case.id, lawyer_id)
        if grant is None or grant.status != GrantStatus.PENDING:
            raise NoPendingRequest()

        try:
            grant = self.store.transition_grant(
                grant.id,
                GrantStatus.PENDING,
                decision.target_status,
                decided_by=identity.id,
            )
        except PreconditionFailed:
            logger.info(f"Decision on grant {grant.id} lost a race; request no longer pending")
            raise NoPendingRequest()

        logger.info(
            f"User {identity.id} {decision.target_status.value} access for lawyer {lawyer_id} on case {case.id}"
        )
        return grant

    def list_case_requests(
        self,
        identity: Identity,
        case_id: str,
        status: Optional[GrantStatus] = GrantStatus.PENDING,
    ) -> List[CaseAccessGrant]:
        """Grants on a case, for its owner or an admin. ``status=None`` returns every status."""
        case = self.access.require_owner(
            identity, case_id, reason="Only case owners can view access requests"
        )
        return self.store.list_grants(case_id=case.id, status=status)

    # ------------------------------------------------------------------
    # Browse decoration
    # ------------------------------------------------------------------

    def access_summary(self, identity: Identity, cases: Iterable[Case]) -> Dict[str, AccessSummary]:
        """has_access / has_pending_request / requested_at for each case."""
        cases = list(cases)
        grants = []
        if policy_for(identity).may_request_access:
            grants = self.store.list_grants(lawyer_id=identity.id)

        approved = [g for g in grants if g.status == GrantStatus.APPROVED]
        pending = {g.case_id: g for g in grants if g.status == GrantStatus.PENDING}

        summary = {}
        for case in cases:
            request = pending.get(case.id)
            summary[case.id] = AccessSummary(
                has_access=can_access_case(identity, case, approved),
                has_pending_request=request is not None,
                requested_at=request.requested_at if request else None,
            )
        return summary
