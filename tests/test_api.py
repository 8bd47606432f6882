"""
HTTP surface: status codes, error bodies and role checks.
"""
import pytest
from httpx import ASGITransport, AsyncClient

from app.core.auth import verify_token
from app.main import app
from app.models.database import get_db
from builders import NOW, make_draft, make_reservation


def _claims(user_id: str, role: str) -> dict:
    return {"sub": user_id, "email": f"{user_id}@example.org", "roles": [role]}


@pytest.fixture
async def client(session_factory):
    async def _db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _act_as(user_id: str, role: str) -> None:
    async def _verify():
        return _claims(user_id, role)
    app.dependency_overrides[verify_token] = _verify


async def _returned_item(client, end_date=NOW.replace(day=16)) -> tuple[str, str]:
    """Creates a template, a reservation and its return; returns (template_id, return_id)."""
    resp = await client.post("/v1/assessments/templates", json=make_draft().model_dump(mode="json"))
    assert resp.status_code == 201
    template_id = resp.json()["id"]

    reservation = make_reservation(end_date=end_date)
    resp = await client.post("/v1/reservations", json=reservation.model_dump(mode="json"))
    assert resp.status_code == 201

    resp = await client.post("/v1/returns", json={
        "reservation_id": reservation.reservation_id,
        "return_date": NOW.isoformat(),
        "condition_on_return": "EXCELLENT",
    })
    assert resp.status_code == 201
    return template_id, resp.json()["id"]


def _submission(template_id: str, return_id: str, values=(5, 4)) -> dict:
    return {
        "return_id": return_id,
        "template_id": template_id,
        "responses": [
            {"criteria_id": cid, "value": v} for cid, v in zip(("screen", "body"), values)
        ],
    }


class TestHealth:

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestAssessmentRoutes:

    async def test_submit_then_conflict(self, client):
        template_id, return_id = await _returned_item(client)

        resp = await client.post("/v1/assessments", json=_submission(template_id, return_id))
        assert resp.status_code == 201
        body = resp.json()
        assert body["final_condition"] == "GOOD"
        assert body["final_penalty"] == 5
        assert body["assessed_by"] == "dev-user"

        again = await client.post("/v1/assessments", json=_submission(template_id, return_id))
        assert again.status_code == 409
        assert again.json()["error"] == "CONFLICT"

    async def test_incomplete_responses(self, client):
        template_id, return_id = await _returned_item(client)
        payload = _submission(template_id, return_id)
        payload["responses"] = payload["responses"][:1]

        resp = await client.post("/v1/assessments", json=payload)
        assert resp.status_code == 422
        assert resp.json()["error"] == "VALIDATION_ERROR"

    async def test_unknown_template(self, client):
        resp = await client.get("/v1/assessments/templates/T-404")
        assert resp.status_code == 404
        assert resp.json() == {"error": "NOT_FOUND", "detail": "Assessment template T-404 not found"}

    async def test_history_with_analytics(self, client):
        template_id, return_id = await _returned_item(client)
        await client.post("/v1/assessments", json=_submission(template_id, return_id))

        resp = await client.get("/v1/assessments", params={"analytics": "true", "group_by": "week"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["pagination"]["total"] == 1
        assert body["analytics"]["summary"]["total_assessments"] == 1
        assert body["analytics"]["granularity"] == "week"

    async def test_staff_filter_matches_submitting_caller(self, client):
        template_id, return_id = await _returned_item(client)

        _act_as("staff-7", "STAFF")
        resp = await client.post("/v1/assessments", json=_submission(template_id, return_id))
        assert resp.status_code == 201
        assert resp.json()["assessed_by"] == "staff-7"

        found = await client.get("/v1/assessments", params={"staff_id": "staff-7"})
        assert found.json()["pagination"]["total"] == 1
        assert found.json()["records"][0]["assessed_by"] == "staff-7"

        by_email = await client.get("/v1/assessments", params={"staff_id": "staff-7@example.org"})
        assert by_email.json()["pagination"]["total"] == 0

    async def test_template_created_by_caller_id(self, client):
        _act_as("staff-7", "STAFF")
        resp = await client.post("/v1/assessments/templates", json=make_draft().model_dump(mode="json"))
        assert resp.status_code == 201
        assert resp.json()["created_by"] == "staff-7"


class TestRoleChecks:

    async def test_staff_cannot_see_analytics(self, client):
        _act_as("staff-1", "STAFF")
        resp = await client.get("/v1/assessments", params={"analytics": "true"})
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

        plain = await client.get("/v1/assessments")
        assert plain.status_code == 200

    async def test_borrower_cannot_submit(self, client):
        _act_as("borrower-1", "BORROWER")
        resp = await client.post("/v1/assessments", json=_submission("T-1", "R-1"))
        assert resp.status_code == 403

    async def test_borrower_reputation_own_only(self, client):
        _act_as("borrower-1", "BORROWER")
        own = await client.get("/v1/users/borrower-1/reputation")
        assert own.status_code == 200
        assert own.json()["statistics"]["current_trust_score"] == 100.0

        other = await client.get("/v1/users/borrower-2/reputation")
        assert other.status_code == 403

    async def test_manager_adjusts_reputation(self, client):
        _act_as("mgr-1", "MANAGER")
        resp = await client.post("/v1/users/borrower-1/reputation", json={"change": -12.5, "reason": "Lost charger"})
        assert resp.status_code == 201
        assert resp.json()["new_score"] == 87.5

        _act_as("staff-1", "STAFF")
        denied = await client.post("/v1/users/borrower-1/reputation", json={"change": 5, "reason": "bonus"})
        assert denied.status_code == 403


class TestReturnReviewRoutes:

    async def test_staff_rejects_pending_return(self, client):
        _, return_id = await _returned_item(client, end_date=NOW.replace(day=10))

        _act_as("staff-3", "STAFF")
        resp = await client.patch(f"/v1/returns/{return_id}", json={
            "status": "REJECTED",
            "rejection_reason": "Serial number does not match",
            "staff_notes": "Kept at the desk",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "REJECTED"
        assert body["rejection_reason"] == "Serial number does not match"
        assert body["notes"] == "Staff Notes: Kept at the desk"
        assert body["reviewed_by"] == "staff-3"

        again = await client.patch(f"/v1/returns/{return_id}", json={"status": "APPROVED"})
        assert again.status_code == 409
        assert again.json()["detail"] == "Return already processed with status: REJECTED"

    async def test_rejection_needs_reason(self, client):
        _, return_id = await _returned_item(client, end_date=NOW.replace(day=10))
        resp = await client.patch(f"/v1/returns/{return_id}", json={"status": "REJECTED"})
        assert resp.status_code == 422

    async def test_borrower_cannot_review(self, client):
        _act_as("borrower-1", "BORROWER")
        resp = await client.patch("/v1/returns/R-1", json={"status": "APPROVED"})
        assert resp.status_code == 403
