from __future__ import annotations

from sqlalchemy import select

from mapin.core.security import create_access_token, hash_password, subject_from_token, verify_password
from mapin.models import AuthSession


def _register(client, username: str, password: str = "password123"):
    return client.post(
        "/v1/auth/register",
        json={"username": username, "display_name": username.title(), "password": password},
    )


def test_password_hashing_round_trip():
    plain_password = "password123"
    hashed_password = hash_password(plain_password)

    assert hashed_password != plain_password
    assert verify_password(plain_password, hashed_password)
    assert not verify_password("wrong-password", hashed_password)


def test_access_token_subject_round_trip():
    token = create_access_token(subject="user-1")
    assert subject_from_token(token) == "user-1"


def test_register_then_login_returns_access_token(client):
    register_response = _register(client, "alice")
    assert register_response.status_code == 201
    registered = register_response.json()["data"]
    assert registered["user"]["display_name"] == "Alice"
    assert registered["tokens"]["token_type"] == "bearer"

    login_response = client.post("/v1/auth/login", json={"username": "alice", "password": "password123"})
    assert login_response.status_code == 200
    token = login_response.json()["data"]["tokens"]["access_token"]

    me_response = client.get("/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me_response.status_code == 200
    assert me_response.json()["data"]["id"] == registered["user"]["id"]


def test_register_rejects_taken_username(client):
    assert _register(client, "alice").status_code == 201

    duplicate = _register(client, "alice")
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "username_taken"


def test_login_rejects_wrong_password(client):
    _register(client, "alice")

    response = client.post("/v1/auth/login", json={"username": "alice", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "invalid_credentials"


def test_protected_route_rejects_garbage_token(client):
    response = client.get("/v1/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "invalid_token"


def test_refresh_token_rotation_and_logout(client):
    tokens = _register(client, "alice").json()["data"]["tokens"]

    rotated = client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    second_refresh = rotated.json()["data"]["tokens"]["refresh_token"]
    assert second_refresh != tokens["refresh_token"]

    logout = client.post("/v1/auth/logout", json={"refresh_token": second_refresh})
    assert logout.status_code == 200

    after_logout = client.post("/v1/auth/refresh", json={"refresh_token": second_refresh})
    assert after_logout.status_code == 401
    assert after_logout.json()["error"]["code"] == "invalid_refresh_token"


def test_reused_refresh_token_revokes_every_session(client, session_factory):
    tokens = _register(client, "alice").json()["data"]["tokens"]
    rotated = client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    current_refresh = rotated.json()["data"]["tokens"]["refresh_token"]

    replayed = client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replayed.status_code == 401

    after_replay = client.post("/v1/auth/refresh", json={"refresh_token": current_refresh})
    assert after_replay.status_code == 401

    with session_factory() as db:
        sessions = db.scalars(select(AuthSession)).all()
        assert len(sessions) == 2
        assert all(row.revoked_at is not None for row in sessions)
        assert all(row.token_hash != current_refresh for row in sessions)
