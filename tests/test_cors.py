from __future__ import annotations

from fastapi.testclient import TestClient

from movie_tracker.api.app import create_app


def test_cors_is_opt_in(monkeypatch):
    monkeypatch.setenv("MOVIE_TRACKER_DB", ":memory:")
    monkeypatch.delenv("MOVIE_TRACKER_CORS_ORIGINS", raising=False)
    app = create_app()
    client = TestClient(app)

    resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert resp.status_code == 200
    # No CORS headers when not configured.
    assert "access-control-allow-origin" not in resp.headers


def test_cors_allows_configured_origin(monkeypatch):
    monkeypatch.setenv("MOVIE_TRACKER_DB", ":memory:")
    monkeypatch.setenv(
        "MOVIE_TRACKER_CORS_ORIGINS",
        "http://localhost:5173,https://tracker.example.com",
    )
    app = create_app()
    client = TestClient(app)

    resp = client.get("/api/library", headers={"Origin": "http://localhost:5173"})
    assert resp.status_code == 200
    assert resp.headers.get("access-control-allow-origin") == "http://localhost:5173"


def test_cors_wildcard(monkeypatch):
    monkeypatch.setenv("MOVIE_TRACKER_DB", ":memory:")
    monkeypatch.setenv("MOVIE_TRACKER_CORS_ORIGINS", "*")
    client = TestClient(create_app())

    resp = client.get("/health", headers={"Origin": "https://anywhere.example"})
    assert resp.headers.get("access-control-allow-origin") == "*"
