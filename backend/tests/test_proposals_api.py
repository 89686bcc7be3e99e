from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.auth.cognito import VerifiedUser
from app.main import create_app
import app.middleware.auth as auth_mw

AUTH = {"Authorization": "Bearer test-token"}


def _user(company_id: str | None = "company-1") -> VerifiedUser:
    return VerifiedUser(sub="user-1", username="jdoe", email="jdoe@example.com", company_id=company_id, claims={})


@pytest.fixture
def client(monkeypatch, fake_table):
    monkeypatch.setattr(auth_mw, "verify_bearer_token", lambda _tok: _user())
    return TestClient(create_app())


def _create(client: TestClient, **kw) -> dict:
    body = {"proposal_title": "City Hall Renovation", "client_name": "City of Springfield", **kw}
    r = client.post("/api/proposals", json=body, headers=AUTH)
    assert r.status_code == 201, r.text
    return r.json()


def _move(client: TestClient, pid: str, *statuses: str) -> dict:
    out: dict = {}
    for s in statuses:
        r = client.patch(f"/api/proposals/{pid}/status", json={"status": s}, headers=AUTH)
        assert r.status_code == 200, r.text
        out = r.json()
    return out


def test_create_and_get(client):
    p = _create(client, estimated_amount="1500.50", tags=["municipal"])
    assert p["status"] == "DRAFT"
    assert p["version"] == 1
    assert p["estimated_amount"] == "1500.50"

    r = client.get(f"/api/proposals/{p['id']}", headers=AUTH)
    assert r.status_code == 200
    assert r.json()["title"] == "City Hall Renovation"


def test_transition_endpoint_and_history(client):
    p = _create(client)
    out = _move(client, p["id"], "PENDING")
    assert out == {
        "id": p["id"],
        "title": "City Hall Renovation",
        "status": "PENDING",
        "version": 2,
        "updated_at": out["updated_at"],
    }

    r = client.get(f"/api/proposals/{p['id']}/status-history", headers=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["current_status"] == "PENDING"
    assert [h["to_status"] for h in body["history"]] == ["PENDING", "DRAFT"]


def test_invalid_transition_is_problem_json(client):
    p = _create(client)
    r = client.patch(f"/api/proposals/{p['id']}/status", json={"status": "WON"}, headers=AUTH)
    assert r.status_code == 400
    assert r.headers["content-type"].startswith("application/problem+json")
    body = r.json()
    assert body["extensions"]["kind"] == "invalid_status_transition"
    assert body["extensions"]["from_status"] == "DRAFT"
    assert body["extensions"]["to_status"] == "WON"
    assert body["requestId"]


def test_unknown_status_is_validation_kind(client):
    p = _create(client)
    r = client.patch(f"/api/proposals/{p['id']}/status", json={"status": "ARCHIVED"}, headers=AUTH)
    assert r.status_code == 400
    assert r.json()["extensions"]["kind"] == "validation"


def test_stale_version_on_transition_is_409(client):
    p = _create(client)
    _move(client, p["id"], "PENDING")
    r = client.patch(
        f"/api/proposals/{p['id']}/status",
        json={"status": "SUBMITTED", "version": 1},
        headers=AUTH,
    )
    assert r.status_code == 409
    ext = r.json()["extensions"]
    assert ext["kind"] == "version_conflict"
    assert ext["current_version"] == 2


def test_convert_flow(client):
    p = _create(client, estimated_amount="90000")
    _move(client, p["id"], "PENDING", "SUBMITTED", "WON")

    body = {"project_name": "Project X", "description": "Annex renovation", "start_date": "2025-01-01"}
    r = client.post(f"/api/proposals/{p['id']}/convert-to-project", json=body, headers=AUTH)
    assert r.status_code == 201, r.text
    out = r.json()
    assert out["success"] is True
    assert out["project"]["source_proposal_id"] == p["id"]
    assert out["project"]["amount"] == "90000"
    assert out["proposal"]["converted_to_project_id"] == out["project"]["id"]
    assert "warning" not in out

    again = client.post(f"/api/proposals/{p['id']}/convert-to-project", json=body, headers=AUTH)
    assert again.status_code == 409
    ext = again.json()["extensions"]
    assert ext["kind"] == "already_converted"
    assert ext["existing_project"]["id"] == out["project"]["id"]

    forced = client.post(
        f"/api/proposals/{p['id']}/convert-to-project",
        json={**body, "force": True},
        headers=AUTH,
    )
    assert forced.status_code == 201
    assert forced.json()["warning"]["type"] == "DUPLICATE_CONVERSION"

    status = client.get(f"/api/proposals/{p['id']}/conversion-status", headers=AUTH).json()
    assert status["is_converted"] is True
    assert status["project"]["id"] == forced.json()["project"]["id"]
    assert len(status["projects"]) == 2

    projects = client.get("/api/projects", headers=AUTH).json()
    assert len(projects["data"]) == 2

    one = client.get(f"/api/projects/{out['project']['id']}", headers=AUTH)
    assert one.status_code == 200
    assert one.json()["project_name"] == "Project X"


def test_convert_draft_is_invalid_status(client):
    p = _create(client)
    r = client.post(
        f"/api/proposals/{p['id']}/convert-to-project",
        json={"project_name": "Project X", "description": "d"},
        headers=AUTH,
    )
    assert r.status_code == 400
    assert r.json()["extensions"]["kind"] == "invalid_status"


def test_convert_reversed_dates_is_validation(client):
    p = _create(client)
    r = client.post(
        f"/api/proposals/{p['id']}/convert-to-project",
        json={
            "project_name": "Project X",
            "description": "d",
            "start_date": "2025-12-31",
            "end_date": "2025-01-01",
        },
        headers=AUTH,
    )
    assert r.status_code == 400
    ext = r.json()["extensions"]
    assert ext["kind"] == "validation"
    assert ext["field"] == "end_date"


def test_malformed_body_is_422(client):
    p = _create(client)
    r = client.patch(f"/api/proposals/{p['id']}/status", json={}, headers=AUTH)
    assert r.status_code == 422
    assert r.json()["title"] == "Validation Failed"


def test_content_update_and_delete(client):
    p = _create(client)
    r = client.put(f"/api/proposals/{p['id']}/content", json={"content": {"intro": "hi"}, "version": 1}, headers=AUTH)
    assert r.status_code == 200
    assert r.json()["version"] == 2
    assert r.json()["content"] == {"intro": "hi"}

    stale = client.delete(f"/api/proposals/{p['id']}", params={"version": 1}, headers=AUTH)
    assert stale.status_code == 409

    ok = client.delete(f"/api/proposals/{p['id']}", params={"version": 2}, headers=AUTH)
    assert ok.status_code == 200
    assert client.get(f"/api/proposals/{p['id']}", headers=AUTH).status_code == 404


def test_other_company_sees_404_and_403(client, monkeypatch):
    p = _create(client)
    _move(client, p["id"], "PENDING", "SUBMITTED", "WON")

    monkeypatch.setattr(auth_mw, "verify_bearer_token", lambda _tok: _user("company-9"))
    assert client.get(f"/api/proposals/{p['id']}", headers=AUTH).status_code == 404
    assert client.get(f"/api/proposals/{p['id']}/status-history", headers=AUTH).status_code == 404
    r = client.post(
        f"/api/proposals/{p['id']}/convert-to-project",
        json={"project_name": "Project X", "description": "d"},
        headers=AUTH,
    )
    assert r.status_code == 403
    assert r.json()["extensions"]["kind"] == "forbidden"


def test_user_without_company_is_forbidden(client, monkeypatch):
    monkeypatch.setattr(auth_mw, "verify_bearer_token", lambda _tok: _user(None))
    r = client.get("/api/proposals", headers=AUTH)
    assert r.status_code == 403


def test_float_content_round_trips(client):
    p = _create(client, content={"score": 1.5, "weights": [0.25, 0.75]})
    assert p["content"] == {"score": 1.5, "weights": [0.25, 0.75]}

    r = client.put(
        f"/api/proposals/{p['id']}/content",
        json={"content": {"score": 2.25}, "version": 1},
        headers=AUTH,
    )
    assert r.status_code == 200, r.text
    assert r.json()["content"] == {"score": 2.25}
    assert client.get(f"/api/proposals/{p['id']}", headers=AUTH).json()["content"] == {"score": 2.25}


def test_long_unknown_status_is_validation_kind(client):
    p = _create(client)
    r = client.patch(f"/api/proposals/{p['id']}/status", json={"status": "X" * 40}, headers=AUTH)
    assert r.status_code == 400
    ext = r.json()["extensions"]
    assert ext["kind"] == "validation"
    assert ext["field"] == "status"


def test_overlong_status_note_is_validation_kind(client):
    p = _create(client)
    r = client.patch(
        f"/api/proposals/{p['id']}/status",
        json={"status": "PENDING", "note": "n" * 2001},
        headers=AUTH,
    )
    assert r.status_code == 400
    ext = r.json()["extensions"]
    assert ext["kind"] == "validation"
    assert ext["field"] == "note"


def test_convert_malformed_date_is_validation(client):
    p = _create(client)
    _move(client, p["id"], "PENDING", "SUBMITTED", "WON")
    r = client.post(
        f"/api/proposals/{p['id']}/convert-to-project",
        json={"project_name": "Project X", "description": "d", "start_date": "2025-1-1"},
        headers=AUTH,
    )
    assert r.status_code == 400
    ext = r.json()["extensions"]
    assert ext["kind"] == "validation"
    assert ext["field"] == "start_date"
