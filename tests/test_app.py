from __future__ import annotations

import sqlite3

import app as app_module
from medviz import config, db
from medviz.imagegen import ImageGenerationError

FEMUR_REPORT = "Patient has a severe fracture in the left femur with moderate swelling."


def _signup_and_login(client, username="alice", password="secret123"):
    resp = client.post("/signup", data={"username": username, "password": password, "name": "Alice"})
    assert resp.status_code == 302
    resp = client.post("/login", data={"username": username, "password": password})
    assert resp.status_code == 302
    return resp


def test_health(client):
    assert client.get("/health").get_json() == {"ok": True}


def test_pages_require_login(client):
    resp = client.get("/diagnosis")
    assert resp.status_code == 302
    assert "/login" in resp.headers["Location"]

    assert client.get("/").status_code == 200


def test_api_requires_login(client):
    resp = client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT})
    assert resp.status_code == 401
    assert client.get("/api/diagnoses").status_code == 401
    assert client.get("/api/auth/me").get_json() is None


def test_signup_login_and_me(client):
    _signup_and_login(client)

    me = client.get("/api/auth/me").get_json()
    assert me["username"] == "alice"
    assert me["name"] == "Alice"
    assert me["loginMethod"] == "password"
    assert "password_hash" not in me

    assert client.post("/api/auth/logout").get_json() == {"success": True}
    assert client.get("/api/auth/me").get_json() is None


def test_login_rejects_wrong_password(client):
    client.post("/signup", data={"username": "alice", "password": "secret123"})
    resp = client.post("/login", data={"username": "alice", "password": "nope"})
    assert resp.status_code == 200
    assert b"Invalid username or password." in resp.data


def test_signup_rejects_duplicate_username(client):
    client.post("/signup", data={"username": "alice", "password": "secret123"})
    resp = client.post("/signup", data={"username": "alice", "password": "secret123"})
    assert resp.status_code == 200
    assert b"Username already exists" in resp.data


def test_api_signup_validation(client):
    assert client.post("/api/auth/signup", json={"username": "bob", "password": "secret123"}).status_code == 201
    assert client.post("/api/auth/signup", json={"username": "bob", "password": "secret123"}).status_code == 409
    assert client.post("/api/auth/signup", json={"username": "x", "password": "secret123"}).status_code == 400
    assert client.post("/api/auth/login", json={"username": "bob", "password": "bad"}).status_code == 401
    assert client.post("/api/auth/login", json={"username": "bob", "password": "secret123"}).get_json()["username"] == "bob"


def test_create_diagnosis_via_api(client):
    _signup_and_login(client)

    resp = client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT})
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["imageUrl"] is None
    assert body["findings"] == [
        {"bodyPart": "Left", "condition": "Fracture", "severity": "severe", "description": "fracture in the left"},
        {
            "bodyPart": "Left",
            "condition": "Swelling",
            "severity": "moderate",
            "description": "left femur with moderate swelling",
        },
    ]

    detail = client.get(f"/api/diagnoses/{body['diagnosisId']}").get_json()
    assert detail["reportText"] == FEMUR_REPORT
    assert [f["condition"] for f in detail["findings"]] == ["Fracture", "Swelling"]
    assert all("id" in f for f in detail["findings"])

    listing = client.get("/api/diagnoses").get_json()
    assert [d["id"] for d in listing] == [body["diagnosisId"]]


def test_create_diagnosis_validates_input(client, monkeypatch):
    _signup_and_login(client)

    assert client.post("/api/diagnoses", json={"reportText": 42}).status_code == 400
    assert client.post("/api/diagnoses", json=["not", "an", "object"]).status_code == 400

    monkeypatch.setattr(config, "MAX_REPORT_CHARS", 10)
    assert client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT}).status_code == 413


def test_empty_report_is_stored_with_sentinel(client):
    _signup_and_login(client)

    body = client.post("/api/diagnoses", json={"reportText": ""}).get_json()
    assert body["findings"] == [
        {
            "bodyPart": "General",
            "condition": "Assessment",
            "severity": "mild",
            "description": "Report received for analysis",
        }
    ]


def test_image_failure_does_not_abort_request(client, monkeypatch):
    _signup_and_login(client)

    def failing(prompt):
        raise ImageGenerationError("service down")

    monkeypatch.setattr(app_module, "generate_image", failing)

    resp = client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT})
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["imageUrl"] is None
    assert db.get_diagnosis_by_id(body["diagnosisId"])["generatedImageUrl"] is None


def test_generated_image_is_attached(client, monkeypatch):
    _signup_and_login(client)
    prompts = []

    def fake(prompt):
        prompts.append(prompt)
        return "https://img.example/femur.png"

    monkeypatch.setattr(app_module, "generate_image", fake)

    body = client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT}).get_json()
    assert body["imageUrl"] == "https://img.example/femur.png"
    assert db.get_diagnosis_by_id(body["diagnosisId"])["generatedImageUrl"] == "https://img.example/femur.png"
    assert "fracture" in prompts[0]

    # nothing to illustrate for the placeholder finding
    client.post("/api/diagnoses", json={"reportText": "hello"})
    assert len(prompts) == 1


def test_persistence_failure_is_fatal(client, monkeypatch):
    _signup_and_login(client)

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "create_diagnosis", broken)

    resp = client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT})
    assert resp.status_code == 500
    assert resp.get_json()["error"] == "Failed to analyze report: database is locked"


def test_diagnoses_are_private(client):
    _signup_and_login(client, "alice")
    diagnosis_id = client.post("/api/diagnoses", json={"reportText": FEMUR_REPORT}).get_json()["diagnosisId"]
    client.get("/logout")

    _signup_and_login(client, "mallory")
    assert client.get(f"/api/diagnoses/{diagnosis_id}").status_code == 404
    assert client.get(f"/diagnosis/{diagnosis_id}").status_code == 404
    assert client.get("/api/diagnoses").get_json() == []


def test_html_analyze_flow(client):
    _signup_and_login(client)

    resp = client.post("/diagnosis", data={"report_text": "Right shoulder shows signs of inflammation."})
    assert resp.status_code == 302
    location = resp.headers["Location"]
    assert "/diagnosis/" in location

    page = client.get(location)
    assert page.status_code == 200
    assert b"Shoulder" in page.data
    assert b"Inflammation" in page.data
    assert b"<svg" in page.data

    workspace = client.get("/diagnosis")
    assert b"Recent Diagnoses" in workspace.data
    assert b"Right shoulder shows signs" in workspace.data


def test_html_analyze_rejects_blank_report(client):
    _signup_and_login(client)

    resp = client.post("/diagnosis", data={"report_text": "   "}, follow_redirects=True)
    assert b"Please enter a medical report." in resp.data
    assert db.get_diagnoses_by_user_id(db.get_user_by_username("alice")["id"]) == []


def test_cors_does_not_echo_foreign_origin(client):
    _signup_and_login(client)

    resp = client.get("/api/diagnoses", headers={"Origin": "https://evil.example"})
    assert resp.status_code == 200
    assert resp.headers.get("Access-Control-Allow-Origin") != "https://evil.example"
    assert resp.headers.get("Access-Control-Allow-Credentials") is None


def test_cors_allows_configured_origin(client):
    assert config.CORS_ORIGINS == ["http://localhost:5173"]
    resp = client.get("/api/auth/me", headers={"Origin": "http://localhost:5173"})
    assert resp.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"
    assert resp.headers.get("Access-Control-Allow-Credentials") == "true"


def test_auth_api_rejects_non_object_bodies(client):
    assert client.post("/api/auth/login", json=["a", "b"]).status_code == 400
    assert client.post("/api/auth/signup", json=["a", "b"]).status_code == 400
    assert client.post("/api/auth/login", json="alice").status_code == 400
    assert client.post("/api/auth/signup", data="not json", content_type="application/json").status_code == 400


def test_concurrent_signup_for_same_name_is_a_conflict(client, monkeypatch):
    assert client.post("/api/auth/signup", json={"username": "bob", "password": "secret123"}).status_code == 201

    # the existence check misses a row another request just inserted
    monkeypatch.setattr(db, "get_user_by_username", lambda username: None)

    resp = client.post("/api/auth/signup", json={"username": "bob", "password": "secret123"})
    assert resp.status_code == 409
    assert "already exists" in resp.get_json()["error"]

    page = client.post("/signup", data={"username": "bob", "password": "secret123"})
    assert page.status_code == 200
    assert b"Username already exists" in page.data
