from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
import realtime


@pytest.fixture
def db(monkeypatch):
    mock = mongomock.MongoClient()["skillsync_test"]
    database.ensure_indexes(mock)
    monkeypatch.setattr(database, "db", mock)
    return mock


@pytest.fixture(autouse=True)
def emitted(monkeypatch):
    """Socket.IO emits captured as (event, data, room) tuples."""
    calls = []

    async def fake_emit(event, data=None, room=None, **kwargs):
        calls.append((event, data, room))

    monkeypatch.setattr(realtime.sio, "emit", fake_emit)
    return calls


@pytest.fixture
def client(db):
    return TestClient(main.app)


@pytest.fixture
def register(client):
    def _register(name, password="secret123"):
        email = f"{name.split()[0].lower()}@skillsync.dev"
        res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert res.status_code == 201, res.text
        body = res.json()
        return {
            "id": body["user"]["id"],
            "email": email,
            "token": body["token"],
            "headers": {"Authorization": f"Bearer {body['token']}"},
        }
    return _register


@pytest.fixture
def make_problem(client):
    def _make_problem(user, **overrides):
        payload = {
            "title": "Flooded village roads",
            "description": "Roads wash out every monsoon and cut off the clinic.",
            "category": "Infrastructure",
            "skills_needed": ["Civil engineering", "GIS"],
            **overrides,
        }
        res = client.post("/api/problems", json=payload, headers=user["headers"])
        assert res.status_code == 201, res.text
        return res.json()
    return _make_problem


@pytest.fixture
def make_challenge(client):
    def _make_challenge(user, starts_in=timedelta(days=-1), lasts=timedelta(days=7), **overrides):
        start = datetime.now(timezone.utc) + starts_in
        payload = {
            "title": "Accessible forms sprint",
            "description": "Rebuild the signup form so it passes an automated accessibility audit.",
            "instructions": "Fork the starter repo and open a pull request.",
            "category": "Frontend Development",
            "difficulty": "Intermediate",
            "start_date": start.isoformat(),
            "end_date": (start + lasts).isoformat(),
            "points": 200,
            **overrides,
        }
        res = client.post("/api/challenges", json=payload, headers=user["headers"])
        assert res.status_code == 201, res.text
        return res.json()
    return _make_challenge


@pytest.fixture
def reputation_of(client):
    def _reputation_of(user):
        return client.get(f"/api/users/profile/{user['id']}").json()["reputation"]
    return _reputation_of
