from __future__ import annotations

from fastapi.testclient import TestClient

from fakes import make_settings
from userhub.main import create_app


def _client():
    return TestClient(create_app(settings=make_settings()))


def test_request_id_is_generated_and_returned():
    r = _client().get("/")
    assert r.status_code == 200
    assert r.headers.get("X-Request-Id")


def test_oversized_inbound_request_id_is_replaced():
    r = _client().get("/", headers={"X-Request-Id": "x" * 500})
    assert r.status_code == 200
    assert r.headers["X-Request-Id"] != "x" * 500


def test_validation_errors_are_problem_json():
    # Missing required body fields => pydantic validation error
    r = _client().post("/api/auth/login", json={})
    assert r.status_code == 422
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["title"] == "Validation Failed"
    assert body["status"] == 422
    assert {e["path"] for e in body["errors"]} == {"username", "password"}
    assert body.get("requestId")


def test_404_is_problem_json():
    r = _client().get("/this-route-does-not-exist")
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 404
    assert body.get("requestId")


def test_auth_denied_is_problem_json():
    r = _client().get("/api/auth/me", headers={"Authorization": "Basic abc"})
    assert r.status_code == 401
    assert r.headers.get("WWW-Authenticate") == "Bearer"
    body = r.json()
    assert body["status"] == 401
    assert body["detail"] == "auth.tokenMissing"
    assert body.get("requestId")
