from fastapi.testclient import TestClient

import database
import main
import reputation


def test_root_and_health(client):
    assert client.get("/").json() == {"name": "SkillSync API", "status": "ok"}

    health = client.get("/api/health").json()
    assert health["status"] == "OK"
    assert health["timestamp"]


def test_database_diagnostics(client, register, monkeypatch):
    monkeypatch.setattr(main, "APP_ENV", "development")
    register("Ada Lovelace")
    body = client.get("/test").json()
    assert body["database_name"] == "skillsync_test"
    assert body["database"] == "connected"
    assert "user" in body["collections"]


def test_database_diagnostics_hidden_in_production(client, monkeypatch):
    monkeypatch.setattr(main, "APP_ENV", "production")
    res = client.get("/test")
    assert res.status_code == 404
    assert res.json() == {"message": "Not Found"}


def test_unknown_route_uses_message_shape(client):
    res = client.get("/api/nowhere")
    assert res.status_code == 404
    assert res.json() == {"message": "Not Found"}


def test_query_validation_is_400(client):
    res = client.get("/api/problems", params={"page": 0})
    assert res.status_code == 400
    error = res.json()["errors"][0]
    assert error["field"] == "query.page"
    assert error["type"] == "greater_than_equal"


def test_missing_database_is_500(monkeypatch):
    monkeypatch.setattr(database, "db", None)
    res = TestClient(main.app).get("/api/problems")
    assert res.status_code == 500
    assert res.json() == {"message": "Database not configured"}


def test_unhandled_errors(client, monkeypatch):
    def broken(db, limit=50):
        raise RuntimeError("aggregation exploded")

    monkeypatch.setattr(reputation, "leaderboard", broken)
    client = TestClient(main.app, raise_server_exceptions=False)

    monkeypatch.setattr(main, "APP_ENV", "development")
    res = client.get("/api/users/leaderboard")
    assert res.status_code == 500
    assert res.json() == {"message": "Server error", "error": "aggregation exploded"}

    monkeypatch.setattr(main, "APP_ENV", "production")
    assert client.get("/api/users/leaderboard").json() == {"message": "Server error"}
