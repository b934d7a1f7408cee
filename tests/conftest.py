"""Shared test fixtures for the board server, stores and client cache."""

import sys
from pathlib import Path

import pytest

# Ensure the repo root (board_server.py, pkg/) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "board.db")


@pytest.fixture
def api(db_path, monkeypatch):
    """Flask test client wired to a fresh database."""
    monkeypatch.setenv("BOARD_DB", db_path)
    monkeypatch.setenv("BOARD_SECRET", "test-secret")
    import board_server
    board_server.app.config["TESTING"] = True
    with board_server.app.test_client() as client:
        yield client


@pytest.fixture
def register(api):
    """Register a user and return the Authorization headers for them."""
    def _register(username="alice", email=None, password="hunter22"):
        email = email or f"{username}@example.com"
        r = api.post("/api/auth/register", json={
            "username": username, "email": email, "password": password,
        })
        assert r.status_code == 201, r.get_json()
        return {"Authorization": f"Bearer {r.get_json()['token']}"}
    return _register
