"""
Tests for API Contract
======================

Status codes and bodies of the HTTP layer: authentication, the 404 masking
rule, owner-only 403s, workflow 409s and generic 500s.
"""

import os
from pathlib import Path

import pytest

# Add parent to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi.testclient import TestClient

from case_portal.api import app, get_notifier
from case_portal.auth import create_access_token


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    from case_portal.db.session import reset_engine, init_db

    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "api.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


def _seed_portal_data():
    from case_portal.db.session import get_db_session
    from case_portal.db.models import User, Case, UserRole

    with get_db_session() as db:
        owner = User(email="owner@portal.local", first_name="Noa", last_name="Owner", role=UserRole.CLIENT)
        other = User(email="other@portal.local", first_name="Omer", last_name="Other", role=UserRole.CLIENT)
        lawyer = User(email="lawyer@portal.local", first_name="Lea", last_name="Levi", role=UserRole.LAWYER)
        outsider = User(email="outsider@portal.local", first_name="Ron", last_name="Katz", role=UserRole.LAWYER)
        admin = User(email="admin@portal.local", first_name="Ada", last_name="Admin", role=UserRole.ADMIN)
        retired = User(
            email="retired@portal.local", first_name="Tal", last_name="Gone",
            role=UserRole.LAWYER, is_active=False,
        )
        db.add_all([owner, other, lawyer, outsider, admin, retired])
        db.flush()

        case = Case(title="Contract breach", description="Supplier missed delivery", owner_id=owner.id)
        other_case = Case(title="Trademark claim", owner_id=other.id)
        db.add_all([case, other_case])
        db.flush()

        return {
            "owner_id": owner.id,
            "lawyer_id": lawyer.id,
            "outsider_id": outsider.id,
            "case_id": case.id,
            "other_case_id": other_case.id,
            "tokens": {
                "owner": create_access_token(owner.id),
                "other": create_access_token(other.id),
                "lawyer": create_access_token(lawyer.id),
                "outsider": create_access_token(outsider.id),
                "admin": create_access_token(admin.id),
                "retired": create_access_token(retired.id),
            },
        }


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def access_requested(self, owner, lawyer, case):
        self.calls.append((owner.email, case.id))
        return True


@pytest.fixture
def notifier():
    recorder = RecordingNotifier()
    app.dependency_overrides[get_notifier] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_notifier, None)


@pytest.fixture
def seed(sqlalchemy_db, notifier):
    return _seed_portal_data()


@pytest.fixture
def client():
    """Create test client"""
    return TestClient(app)


def _auth(seed, who):
    return {"Authorization": f"Bearer {seed['tokens'][who]}"}


def _approve(client, seed, lawyer="lawyer"):
    lawyer_id = seed["lawyer_id"] if lawyer == "lawyer" else seed["outsider_id"]
    resp = client.post(f"/api/cases/{seed['case_id']}/request-access", headers=_auth(seed, lawyer))
    assert resp.status_code == 201
    resp = client.put(
        f"/api/cases/{seed['case_id']}/access-requests",
        json={"lawyer_id": lawyer_id, "action": "approve"},
        headers=_auth(seed, "owner"),
    )
    assert resp.status_code == 200


# =============================================================================
# Health / Authentication
# =============================================================================

class TestAuthentication:

    def test_health(self, client, sqlalchemy_db):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"

    def test_missing_token_is_401(self, client, seed):
        resp = client.get("/api/cases")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Unauthorized"}

    def test_garbage_token_is_401(self, client, seed):
        resp = client.get("/api/cases", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_token_for_unknown_user_is_401(self, client, seed):
        token = create_access_token("no-such-user")
        resp = client.get("/api/cases", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_inactive_user_is_401(self, client, seed):
        resp = client.get("/api/cases", headers=_auth(seed, "retired"))
        assert resp.status_code == 401

    def test_unauthenticated_beats_not_found(self, client, seed):
        resp = client.get("/api/cases/no-such-case")
        assert resp.status_code == 401

    def test_cookie_token(self, client, seed):
        client.cookies.set("token", seed["tokens"]["owner"])
        resp = client.get("/api/auth/me")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == seed["owner_id"]
        assert data["role"] == "client"


# =============================================================================
# Case Reads (404 masking)
# =============================================================================

class TestCaseReads:

    def test_owner_reads_case(self, client, seed):
        resp = client.get(f"/api/cases/{seed['case_id']}", headers=_auth(seed, "owner"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["title"] == "Contract breach"
        assert body["data"]["is_owner"] is True
        assert resp.headers["Cache-Control"] == "no-store"

    def test_hidden_and_missing_cases_are_indistinguishable(self, client, seed):
        hidden = client.get(f"/api/cases/{seed['case_id']}", headers=_auth(seed, "outsider"))
        missing = client.get("/api/cases/does-not-exist", headers=_auth(seed, "outsider"))

        assert hidden.status_code == missing.status_code == 404
        assert hidden.content == missing.content
        assert hidden.json() == {"success": False, "error": "Case not found"}

    def test_other_client_gets_404_on_owner_actions(self, client, seed):
        hidden = client.patch(
            f"/api/cases/{seed['case_id']}", json={"title": "Mine now"}, headers=_auth(seed, "other")
        )
        missing = client.patch("/api/cases/does-not-exist", json={"title": "Mine now"}, headers=_auth(seed, "other"))

        assert hidden.status_code == missing.status_code == 404
        assert hidden.content == missing.content

    def test_admin_reads_any_case(self, client, seed):
        resp = client.get(f"/api/cases/{seed['other_case_id']}", headers=_auth(seed, "admin"))
        assert resp.status_code == 200
        assert resp.json()["data"]["is_owner"] is True

    def test_my_cases_lists_only_readable(self, client, seed):
        owner = client.get("/api/cases", headers=_auth(seed, "owner")).json()["data"]["cases"]
        assert [c["id"] for c in owner] == [seed["case_id"]]

        lawyer = client.get("/api/cases", headers=_auth(seed, "lawyer")).json()["data"]["cases"]
        assert lawyer == []

        admin = client.get("/api/cases", headers=_auth(seed, "admin")).json()["data"]["cases"]
        assert {c["id"] for c in admin} == {seed["case_id"], seed["other_case_id"]}

    def test_browse_shows_lawyer_every_case_with_flags(self, client, seed):
        client.post(f"/api/cases/{seed['case_id']}/request-access", headers=_auth(seed, "lawyer"))

        resp = client.get("/api/cases/browse", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 200
        by_id = {c["id"]: c for c in resp.json()["data"]["cases"]}
        assert set(by_id) == {seed["case_id"], seed["other_case_id"]}
        assert by_id[seed["case_id"]]["has_pending_request"] is True
        assert by_id[seed["case_id"]]["requested_at"] is not None
        assert by_id[seed["case_id"]]["has_access"] is False
        assert by_id[seed["other_case_id"]]["has_pending_request"] is False

    def test_browse_for_client_is_own_cases(self, client, seed):
        resp = client.get("/api/cases/browse", headers=_auth(seed, "owner"))
        data = resp.json()["data"]["cases"]
        assert [c["id"] for c in data] == [seed["case_id"]]
        assert data[0]["has_access"] is True


# =============================================================================
# Listing Filters / Pagination
# =============================================================================

class TestCaseListingQuery:

    @pytest.fixture
    def owner_cases(self, client, seed):
        created = [
            {"title": "Unpaid overtime", "category": "labor_law"},
            {"title": "Lease termination", "description": "Landlord kept the deposit", "category": "real_estate"},
            {"title": "Visa appeal", "category": "immigration_law"},
        ]
        for body in created:
            resp = client.post("/api/cases", json=body, headers=_auth(seed, "owner"))
            assert resp.status_code == 201
        return seed

    def test_default_pagination_block(self, client, owner_cases):
        resp = client.get("/api/cases", headers=_auth(owner_cases, "owner"))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert len(data["cases"]) == 4
        assert data["pagination"] == {"page": 1, "limit": 10, "total": 4, "total_pages": 1}
        assert "message" not in resp.json()

    def test_pages_split_the_readable_set(self, client, owner_cases):
        first = client.get("/api/cases?page=1&limit=3", headers=_auth(owner_cases, "owner")).json()["data"]
        second = client.get("/api/cases?page=2&limit=3", headers=_auth(owner_cases, "owner")).json()["data"]

        assert first["pagination"]["total"] == 4
        assert first["pagination"]["total_pages"] == 2
        assert len(first["cases"]) == 3
        assert len(second["cases"]) == 1
        ids = {c["id"] for c in first["cases"]} | {c["id"] for c in second["cases"]}
        assert len(ids) == 4

    def test_out_of_range_page(self, client, owner_cases):
        resp = client.get("/api/cases?page=5&limit=3", headers=_auth(owner_cases, "owner"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["cases"] == []
        assert body["data"]["pagination"]["total_pages"] == 2
        assert body["message"] == "Page 5 is out of range. Total pages available: 2"

    def test_search_matches_title_or_description(self, client, owner_cases):
        headers = _auth(owner_cases, "owner")

        by_description = client.get("/api/cases?search=DEPOSIT", headers=headers).json()["data"]
        assert [c["title"] for c in by_description["cases"]] == ["Lease termination"]

        by_title = client.get("/api/cases?search=visa", headers=headers).json()["data"]
        assert [c["title"] for c in by_title["cases"]] == ["Visa appeal"]

        wildcard = client.get("/api/cases?search=%25", headers=headers).json()["data"]
        assert wildcard["cases"] == []

    def test_status_and_category_filters(self, client, owner_cases):
        headers = _auth(owner_cases, "owner")
        resp = client.patch(f"/api/cases/{owner_cases['case_id']}", json={"status": "closed"}, headers=headers)
        assert resp.status_code == 200

        closed = client.get("/api/cases?status=closed", headers=headers).json()["data"]
        assert [c["id"] for c in closed["cases"]] == [owner_cases["case_id"]]

        labor = client.get("/api/cases?category=labor_law", headers=headers).json()["data"]
        assert [c["title"] for c in labor["cases"]] == ["Unpaid overtime"]

        both = client.get("/api/cases?status=closed&category=labor_law", headers=headers).json()["data"]
        assert both["pagination"]["total"] == 0

    def test_filters_never_widen_access(self, client, owner_cases):
        resp = client.get("/api/cases?search=Trademark", headers=_auth(owner_cases, "owner"))
        assert resp.json()["data"]["cases"] == []
        assert resp.json()["data"]["pagination"]["total"] == 0

    def test_browse_paginates_lawyer_discovery(self, client, owner_cases):
        headers = _auth(owner_cases, "lawyer")
        resp = client.get("/api/cases/browse?limit=2&category=labor_law", headers=headers)
        data = resp.json()["data"]
        assert data["pagination"]["total"] == 1
        assert data["cases"][0]["has_access"] is False

        everything = client.get("/api/cases/browse?limit=2", headers=headers).json()["data"]
        assert everything["pagination"] == {"page": 1, "limit": 2, "total": 5, "total_pages": 3}

    @pytest.mark.parametrize("query", ["page=0", "limit=0", "limit=101", "status=pending", "category=space_law"])
    def test_bad_listing_parameters_are_400(self, client, seed, query):
        resp = client.get(f"/api/cases?{query}", headers=_auth(seed, "owner"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request data"


# =============================================================================
# Case Writes
# =============================================================================

class TestCaseWrites:

    def test_client_creates_case(self, client, seed):
        resp = client.post(
            "/api/cases",
            json={"title": "Unpaid wages", "category": "labor_law", "priority": 4},
            headers=_auth(seed, "other"),
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["category"] == "labor_law"
        assert data["priority"] == 4
        assert data["status"] == "open"
        assert data["is_owner"] is True

    def test_lawyer_cannot_create_case(self, client, seed):
        resp = client.post("/api/cases", json={"title": "Nope"}, headers=_auth(seed, "lawyer"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Only clients can create cases"

    def test_invalid_body_is_400_without_echo(self, client, seed):
        resp = client.post(
            "/api/cases", json={"title": "Secret title", "priority": 9}, headers=_auth(seed, "owner")
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Invalid request data"
        assert "Secret title" not in resp.text

    def test_owner_updates_case(self, client, seed):
        resp = client.patch(
            f"/api/cases/{seed['case_id']}",
            json={"title": "Contract breach (amended)", "status": "closed"},
            headers=_auth(seed, "owner"),
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["title"] == "Contract breach (amended)"
        assert data["status"] == "closed"

    def test_approved_lawyer_cannot_update_or_delete(self, client, seed):
        _approve(client, seed)

        resp = client.patch(f"/api/cases/{seed['case_id']}", json={"title": "x"}, headers=_auth(seed, "lawyer"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Only case owners can update cases"

        resp = client.delete(f"/api/cases/{seed['case_id']}", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 403

    def test_owner_deletes_case(self, client, seed):
        resp = client.delete(f"/api/cases/{seed['case_id']}", headers=_auth(seed, "owner"))
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Case deleted successfully"}

        resp = client.get(f"/api/cases/{seed['case_id']}", headers=_auth(seed, "owner"))
        assert resp.status_code == 404

    def test_case_vanishing_before_update_is_404(self, client, seed, monkeypatch):
        from case_portal.store import CaseStore

        monkeypatch.setattr(CaseStore, "update_case", lambda self, case_id, changes: None)
        resp = client.patch(f"/api/cases/{seed['case_id']}", json={"title": "x"}, headers=_auth(seed, "owner"))
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Case not found"}


# =============================================================================
# Access Requests
# =============================================================================

class TestAccessRequests:

    def test_full_request_approve_flow(self, client, seed, notifier):
        case_url = f"/api/cases/{seed['case_id']}"

        resp = client.post(f"{case_url}/request-access", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 201
        assert resp.json()["data"]["status"] == "pending"
        assert notifier.calls == [("owner@portal.local", seed["case_id"])]

        resp = client.post(f"{case_url}/request-access", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 409
        assert resp.json()["code"] == "duplicate_request"

        resp = client.get(f"{case_url}/access-requests", headers=_auth(seed, "owner"))
        assert resp.status_code == 200
        requests = resp.json()["data"]
        assert len(requests) == 1
        assert requests[0]["lawyer"]["email"] == "lawyer@portal.local"

        resp = client.put(
            f"{case_url}/access-requests",
            json={"lawyer_id": seed["lawyer_id"], "action": "approve"},
            headers=_auth(seed, "owner"),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "approved"
        assert resp.json()["data"]["decided_by"] == seed["owner_id"]

        resp = client.get(case_url, headers=_auth(seed, "lawyer"))
        assert resp.status_code == 200
        assert resp.json()["data"]["is_owner"] is False

        resp = client.post(f"{case_url}/request-access", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 409
        assert resp.json()["code"] == "already_has_access"

        resp = client.put(
            f"{case_url}/access-requests",
            json={"lawyer_id": seed["lawyer_id"], "action": "reject"},
            headers=_auth(seed, "owner"),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "no_pending_request"

    def test_client_cannot_request_access(self, client, seed):
        resp = client.post(f"/api/cases/{seed['other_case_id']}/request-access", headers=_auth(seed, "owner"))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Only lawyers can request case access"

    def test_request_on_missing_case_is_404(self, client, seed):
        resp = client.post("/api/cases/does-not-exist/request-access", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 404

    def test_withdraw(self, client, seed):
        url = f"/api/cases/{seed['case_id']}/request-access"
        client.post(url, headers=_auth(seed, "lawyer"))

        resp = client.delete(url, headers=_auth(seed, "lawyer"))
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "withdrawn"

        resp = client.delete(url, headers=_auth(seed, "lawyer"))
        assert resp.status_code == 409
        assert resp.json()["error"] == "No pending access request found"

        resp = client.post(url, headers=_auth(seed, "lawyer"))
        assert resp.status_code == 201

    def test_invalid_decision_is_400(self, client, seed):
        resp = client.put(
            f"/api/cases/{seed['case_id']}/access-requests",
            json={"lawyer_id": seed["lawyer_id"], "action": "maybe"},
            headers=_auth(seed, "owner"),
        )
        assert resp.status_code == 400

    def test_approved_lawyer_cannot_decide(self, client, seed):
        _approve(client, seed)
        client.post(f"/api/cases/{seed['case_id']}/request-access", headers=_auth(seed, "outsider"))

        resp = client.put(
            f"/api/cases/{seed['case_id']}/access-requests",
            json={"lawyer_id": seed["outsider_id"], "action": "approve"},
            headers=_auth(seed, "lawyer"),
        )
        assert resp.status_code == 403

    def test_admin_decides_any_case(self, client, seed):
        url = f"/api/cases/{seed['other_case_id']}"
        client.post(f"{url}/request-access", headers=_auth(seed, "lawyer"))

        resp = client.put(
            f"{url}/access-requests",
            json={"lawyer_id": seed["lawyer_id"], "action": "reject"},
            headers=_auth(seed, "admin"),
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "rejected"

    def test_my_access_requests(self, client, seed):
        client.post(f"/api/cases/{seed['case_id']}/request-access", headers=_auth(seed, "lawyer"))
        client.post(f"/api/cases/{seed['other_case_id']}/request-access", headers=_auth(seed, "lawyer"))

        resp = client.get("/api/my-access-requests", headers=_auth(seed, "lawyer"))
        assert resp.status_code == 200
        titles = {r["case"]["title"] for r in resp.json()["data"]}
        assert titles == {"Contract breach", "Trademark claim"}

        resp = client.get("/api/my-access-requests?status=approved", headers=_auth(seed, "lawyer"))
        assert resp.json()["data"] == []

        resp = client.get("/api/my-access-requests", headers=_auth(seed, "owner"))
        assert resp.status_code == 403

    def test_owner_lists_request_history(self, client, seed):
        case_url = f"/api/cases/{seed['case_id']}"
        client.post(f"{case_url}/request-access", headers=_auth(seed, "lawyer"))
        client.put(
            f"{case_url}/access-requests",
            json={"lawyer_id": seed["lawyer_id"], "action": "reject"},
            headers=_auth(seed, "owner"),
        )
        client.post(f"{case_url}/request-access", headers=_auth(seed, "outsider"))

        pending = client.get(f"{case_url}/access-requests", headers=_auth(seed, "owner")).json()["data"]
        assert [r["lawyer_id"] for r in pending] == [seed["outsider_id"]]
        assert pending[0]["decider"] is None

        history = client.get(f"{case_url}/access-requests?status=all", headers=_auth(seed, "owner")).json()["data"]
        by_lawyer = {r["lawyer_id"]: r for r in history}
        assert set(by_lawyer) == {seed["lawyer_id"], seed["outsider_id"]}
        assert by_lawyer[seed["lawyer_id"]]["status"] == "rejected"
        assert by_lawyer[seed["lawyer_id"]]["decider"]["email"] == "owner@portal.local"

        rejected = client.get(f"{case_url}/access-requests?status=rejected", headers=_auth(seed, "owner")).json()["data"]
        assert [r["lawyer_id"] for r in rejected] == [seed["lawyer_id"]]

        resp = client.get(f"{case_url}/access-requests?status=everything", headers=_auth(seed, "owner"))
        assert resp.status_code == 400


# =============================================================================
# Failures
# =============================================================================

class TestFailures:

    def test_store_failure_is_generic_500(self, client, seed, monkeypatch):
        from case_portal.errors import StoreError
        from case_portal.store import CaseStore

        def broken(self, case_id):
            raise StoreError("connection reset while running SELECT * FROM cases")

        monkeypatch.setattr(CaseStore, "get_case", broken)
        resp = client.get(f"/api/cases/{seed['case_id']}", headers=_auth(seed, "owner"))

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Internal server error"}
        assert "SELECT" not in resp.text
