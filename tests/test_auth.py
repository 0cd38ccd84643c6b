from datetime import timedelta

import security
from database import utcnow
from routers.auth import RESET_SENT


def test_register_returns_token_and_public_user(client, db):
    res = client.post(
        "/api/auth/register",
        json={"name": "Grace Hopper", "email": "Grace@SkillSync.dev", "password": "cobol1959"},
    )
    assert res.status_code == 201
    body = res.json()
    assert body["token"]
    assert body["user"]["email"] == "grace@skillsync.dev"
    assert "password_hash" not in body["user"]
    assert "password_salt" not in body["user"]
    assert body["user"]["reputation"]["score"] == 0

    stored = db["user"].find_one({"email": "grace@skillsync.dev"})
    assert stored["password_hash"] != "cobol1959"


def test_register_twice_is_rejected(client, register):
    register("Grace Hopper")
    res = client.post(
        "/api/auth/register",
        json={"name": "Grace Again", "email": "grace@skillsync.dev", "password": "another1"},
    )
    assert res.status_code == 400
    assert res.json() == {"message": "User already exists"}


def test_register_validation_errors(client, db):
    res = client.post("/api/auth/register", json={"name": "G", "email": "nope", "password": "123"})
    assert res.status_code == 400
    fields = {e["field"] for e in res.json()["errors"]}
    assert fields == {"name", "email", "password"}


def test_login_and_me(client, register):
    grace = register("Grace Hopper", password="cobol1959")

    bad = client.post("/api/auth/login", json={"email": grace["email"], "password": "wrong"})
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid credentials"

    res = client.post("/api/auth/login", json={"email": grace["email"], "password": "cobol1959"})
    assert res.status_code == 200
    token = res.json()["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == grace["id"]


def test_me_requires_token(client, db):
    res = client.get("/api/auth/me")
    assert res.status_code == 401
    assert res.json()["message"] == "No token, authorization denied"

    res = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json()["message"] == "Token is not valid"


def test_logout_revokes_token(client, register):
    grace = register("Grace Hopper")
    assert client.post("/api/auth/logout", headers=grace["headers"]).status_code == 200
    assert client.get("/api/auth/me", headers=grace["headers"]).status_code == 401


def test_expired_session_is_rejected(client, db, register):
    grace = register("Grace Hopper")
    db["session"].update_many({}, {"$set": {"expires_at": utcnow() - timedelta(minutes=1)}})

    res = client.get("/api/auth/me", headers=grace["headers"])
    assert res.status_code == 401
    assert db["session"].count_documents({}) == 0


def test_password_reset_flow(client, register, monkeypatch):
    monkeypatch.setattr(security, "APP_ENV", "development")
    grace = register("Grace Hopper", password="cobol1959")

    res = client.post("/api/auth/forgot-password", json={"email": grace["email"]})
    assert res.status_code == 200
    reset_token = res.json()["reset_token"]

    res = client.post("/api/auth/reset-password", json={"token": reset_token, "password": "flowmatic"})
    assert res.status_code == 200

    # old sessions are gone and the token is single use
    assert client.get("/api/auth/me", headers=grace["headers"]).status_code == 401
    again = client.post("/api/auth/reset-password", json={"token": reset_token, "password": "another1"})
    assert again.status_code == 400

    login = client.post("/api/auth/login", json={"email": grace["email"], "password": "flowmatic"})
    assert login.status_code == 200


def test_forgot_password_unknown_email(client, db, monkeypatch):
    monkeypatch.setattr(security, "APP_ENV", "development")
    res = client.post("/api/auth/forgot-password", json={"email": "nobody@skillsync.dev"})
    assert res.status_code == 404


def test_forgot_password_in_production_keeps_token_private(client, db, register, monkeypatch):
    monkeypatch.setattr(security, "APP_ENV", "production")
    grace = register("Grace Hopper")

    res = client.post("/api/auth/forgot-password", json={"email": grace["email"]})
    assert res.status_code == 200
    assert res.json() == {"message": RESET_SENT}
    assert db["user"].find_one({"email": grace["email"]})["reset_token_hash"]

    # unknown addresses get the same answer
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@skillsync.dev"})
    assert unknown.status_code == 200
    assert unknown.json() == {"message": RESET_SENT}


def test_password_hash_is_salted():
    first, salt_a = security.hash_password("hunter22")
    second, salt_b = security.hash_password("hunter22")
    assert salt_a != salt_b
    assert first != second
    assert security.verify_password("hunter22", {"password_hash": first, "password_salt": salt_a})
    assert not security.verify_password("hunter23", {"password_hash": first, "password_salt": salt_a})
