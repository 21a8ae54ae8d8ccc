"""
HTTP layer tests with FastAPI's TestClient and the in-memory store.
"""
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

import config
from main import app, get_store

from .conftest import make_csv

HEADER = "email,fullName,school,interestedInCertification"


def _signup(client, **overrides):
    body = {
        "fullName": "Alice Santos",
        "school": "State University",
        "email": "Alice@Example.com ",
        "password": "Password123!",
        "interestedInCertification": True,
        "coursesInterested": ["AWS  Gen. AI", " "],
    }
    body.update(overrides)
    return client.post("/api/auth/signup", json=body)


def test_root_and_health_without_database(client):
    assert client.get("/").json() == {"message": "Trainee Portal API Running"}
    health = client.get("/api/health").json()
    assert health["ok"] is False
    assert health["database"] == "not configured"


def test_signup_creates_trainee_without_exposing_hash(client, store):
    r = _signup(client)
    assert r.status_code == 201
    data = r.json()
    assert data["email"] == "alice@example.com"
    assert data["role"] == "trainee"
    assert data["coursesInterested"] == ["AWS Gen. AI"]
    assert "passwordHash" not in data and "password" not in data
    assert store.find_by_email("alice@example.com")["password_hash"] != "Password123!"


def test_signup_rejects_duplicates(client):
    assert _signup(client).status_code == 201

    r = _signup(client, fullName="Someone Else")
    assert r.status_code == 400
    assert r.json() == {"msg": "This email is already registered."}

    r = _signup(client, email="other@example.com")
    assert r.status_code == 400
    assert r.json()["msg"] == "This full name is already registered."


def test_signup_validation_messages(client):
    assert _signup(client, fullName="R2D2").json()["msg"] == "Full name may only contain letters and spaces."
    assert _signup(client, password="password").json()["msg"].startswith("Password must include")
    assert _signup(client, email="nope").json()["msg"] == "A valid email address is required."
    r = _signup(client, coursesInterested=[f"C{i}" for i in range(11)])
    assert r.status_code == 400


def test_course_names_with_list_separators_rejected(client):
    r = _signup(client, coursesOther=["Cloud, Intro"])
    assert r.status_code == 400
    assert r.json()["msg"] == "coursesOther entries may not contain ',', ';' or '|'."

    user_id = _signup(client).json()["id"]
    r = client.put(f"/api/admin/users/{user_id}", json={"coursesInterested": ["A|B"]})
    assert r.status_code == 400
    assert client.get(f"/api/admin/users/{user_id}").json()["coursesInterested"] == ["AWS Gen. AI"]


def test_job_role_kept_apart_from_account_role(client):
    data = _signup(client, jobRole="Other", jobRoleOther="  Data   Steward ").json()
    assert data["role"] == "trainee"
    assert (data["jobRole"], data["jobRoleOther"]) == ("Other", "Data Steward")

    r = _signup(client, email="b@x.com", fullName="Bob Reyes", jobRole="System Developer", jobRoleOther="ignored")
    assert r.json()["jobRoleOther"] is None

    assert _signup(client, email="c@x.com", fullName="Cara", jobRole="Pilot").json()["msg"] == "Invalid role value."
    r = client.put(f"/api/admin/users/{data['id']}", json={"jobRoleOther": "x" * 51})
    assert r.status_code == 400


def test_signin(client):
    _signup(client)
    r = client.post("/api/auth/signin", json={"email": " ALICE@example.com", "password": "Password123!"})
    assert r.status_code == 200
    assert r.json()["fullName"] == "Alice Santos"

    r = client.post("/api/auth/signin", json={"email": "alice@example.com", "password": "wrong"})
    assert r.status_code == 400
    assert r.json() == {"msg": "Invalid credentials"}


def test_import_csv_endpoint(client, store):
    data = make_csv(HEADER, "a@x.com,Alice,S,yes", "m@x.com,Maybe,S,maybe")
    r = client.post("/api/admin/users/import-csv", files={"file": ("trainees.csv", data, "text/csv")})

    assert r.status_code == 200
    body = r.json()
    assert body["processedRows"] == 2
    assert body["uniqueEmails"] == 2
    assert body["upsertedCount"] == 1
    assert body["errorCount"] == 1
    assert body["errors"] == [{"rowNumber": 3, "email": "m@x.com", "error": body["errors"][0]["error"]}]


def test_import_csv_request_failures(client, store):
    r = client.post("/api/admin/users/import-csv")
    assert r.status_code == 400
    assert r.json()["msg"] == "No file uploaded"

    r = client.post("/api/admin/users/import-csv", files={"file": ("t.csv", make_csv("email", "a@x.com"), "text/csv")})
    assert r.status_code == 400
    assert "fullName" in r.json()["msg"]

    r = client.post("/api/admin/users/import-csv", files={"file": ("t.csv", make_csv(HEADER, "bad,,,"), "text/csv")})
    assert r.status_code == 400
    assert r.json()["msg"] == "No valid rows to import"
    assert r.json()["errorCount"] == 1
    assert store.bulk_calls == []


def test_import_csv_too_large(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_IMPORT_BYTES", 16)
    data = make_csv(HEADER, "a@x.com,Alice,S,yes")
    r = client.post("/api/admin/users/import-csv", files={"file": ("t.csv", data, "text/csv")})
    assert r.status_code == 413


def test_admin_user_crud(client, store):
    created = _signup(client).json()
    user_id = created["id"]

    assert client.get(f"/api/admin/users/{user_id}").json()["email"] == "alice@example.com"
    assert [u["id"] for u in client.get("/api/admin/users").json()] == [user_id]

    r = client.put(f"/api/admin/users/{user_id}", json={"school": "Tech Institute", "coursesOther": ["Kubernetes"]})
    assert r.status_code == 200
    assert r.json()["school"] == "Tech Institute"
    assert r.json()["coursesOther"] == ["Kubernetes"]
    assert r.json()["coursesInterested"] == ["AWS Gen. AI"]

    enrolled = client.get("/api/admin/courses/enrolled", params={"course": "AWS Gen. AI"}).json()
    assert [u["id"] for u in enrolled] == [user_id]

    assert client.delete(f"/api/admin/users/{user_id}").json() == {"msg": "User deleted"}
    assert client.get(f"/api/admin/users/{user_id}").status_code == 404
    assert client.delete("/api/admin/users/not-an-id").status_code == 404


def test_admin_update_validates_fields(client):
    user_id = _signup(client).json()["id"]
    r = client.put(f"/api/admin/users/{user_id}", json={"fullName": ""})
    assert r.status_code == 400
    assert r.json()["msg"] == "Full name is required."


def test_export_csv(client):
    _signup(client)
    r = client.get("/api/admin/users/export-csv")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    lines = r.text.splitlines()
    assert lines[0].startswith("fullName,school,interestedInCertification,email")
    assert "alice@example.com" in lines[1]


def test_stats_endpoint():
    store = MagicMock()
    store.aggregate.side_effect = [[{"_id": "AWS", "count": 2}], [], [{"_id": "2", "count": 2}]]
    store.count.side_effect = [2, 1, 1]
    app.dependency_overrides[get_store] = lambda: store
    try:
        body = TestClient(app).get("/api/admin/stats").json()
    finally:
        app.dependency_overrides.clear()

    assert body["totalUsers"] == 2
    assert body["cert"] == {"yes": 1, "no": 1}
    assert body["courses"] == [{"course": "AWS", "count": 2}]
    assert len(body["registrationsOverTime"]) == 6
    assert {"bucket": "2", "count": 2} in body["coursesPerTrainee"]


def test_admin_key_guard(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_KEY", "s3cret")
    assert client.get("/api/admin/users").status_code == 401
    assert client.get("/api/admin/users", headers={"X-Admin-Key": "wrong"}).status_code == 403
    assert client.get("/api/admin/users", headers={"X-Admin-Key": "s3cret"}).status_code == 200


def test_admin_routes_closed_without_key_outside_development(client, store, monkeypatch):
    user_id = _signup(client).json()["id"]
    monkeypatch.setattr(config, "ADMIN_API_KEY", None)
    monkeypatch.setattr(config, "ENVIRONMENT", "production")

    r = client.delete(f"/api/admin/users/{user_id}")
    assert r.status_code == 503
    assert r.json() == {"msg": "Admin access is not configured"}
    assert client.get("/api/admin/users/export-csv").status_code == 503
    assert store.find_by_email("alice@example.com") is not None


def test_missing_database_is_a_server_error():
    r = TestClient(app).get("/api/admin/users")
    assert r.status_code == 500
    assert r.json() == {"msg": "Database not configured"}
