"""HTTP routes over an in-memory session service."""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fakes import ADDRESS, OTHER_ADDRESS, USER
from studybot.routers import api


@pytest.fixture
def client(service):
    app = FastAPI()
    app.include_router(api.router)
    app.state.sessions = service
    with TestClient(app) as c:
        yield c


def link(client, user_id=USER, address=ADDRESS):
    return client.put(f"/api/users/{user_id}/address", json={"address": address})


def test_health():
    from studybot.main import app

    r = TestClient(app).get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_session_options(client):
    r = client.get("/api/session-options")
    assert r.status_code == 200
    assert r.json() == [
        {"duration_minutes": 2, "display_minutes": 25},
        {"duration_minutes": 50, "display_minutes": 50},
    ]


def test_link_and_read_user(client):
    r = link(client)
    assert r.status_code == 200
    body = r.json()
    assert body["address"] == ADDRESS
    assert body["session"]["status"] == "idle"
    assert body["completed_session_count"] == 0

    r = client.get(f"/api/users/{USER}")
    assert r.status_code == 200
    assert r.json()["user_id"] == USER


def test_unknown_user_404(client):
    assert client.get("/api/users/nobody").status_code == 404


def test_invalid_address_422(client):
    r = link(client, address="not-an-address")
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "invalid_address"


def test_relinking_different_address_conflicts(client):
    link(client)
    r = link(client, address=OTHER_ADDRESS)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "address_conflict"


def test_start_without_wallet_404(client):
    r = client.post(f"/api/users/{USER}/session", json={"duration_minutes": 50})
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "wallet_not_linked"


def test_start_session(client, notifier):
    link(client)
    r = client.post(f"/api/users/{USER}/session", json={"duration_minutes": 2})

    assert r.status_code == 201
    session = r.json()["session"]
    assert session["status"] == "in_progress"
    assert session["generation"] == 1
    assert session["display_minutes"] == 25
    assert session["deadline"] is not None
    assert "25 minutes" in notifier.texts(USER)[0]


def test_start_twice_conflicts(client):
    link(client)
    client.post(f"/api/users/{USER}/session", json={"duration_minutes": 50})
    r = client.post(f"/api/users/{USER}/session", json={"duration_minutes": 50})

    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "session_already_active"


@pytest.mark.parametrize("duration", [7, 0])
def test_invalid_duration_422(client, duration):
    link(client)
    r = client.post(f"/api/users/{USER}/session", json={"duration_minutes": duration})
    assert r.status_code == 422


def test_cancel_session(client):
    link(client)
    client.post(f"/api/users/{USER}/session", json={"duration_minutes": 50})

    r = client.delete(f"/api/users/{USER}/session")
    assert r.status_code == 200
    body = r.json()
    assert body["session"]["status"] == "idle"
    assert [h["outcome"] for h in body["history"]] == ["cancelled"]


def test_cancel_without_session_409(client):
    link(client)
    r = client.delete(f"/api/users/{USER}/session")
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "no_active_session"


def test_reset(client):
    link(client)
    assert client.post(f"/api/users/{USER}/session/reset").json() == {"reset": False}

    client.post(f"/api/users/{USER}/session", json={"duration_minutes": 50})
    assert client.post(f"/api/users/{USER}/session/reset").json() == {"reset": True}
    r = client.post(f"/api/users/{USER}/session", json={"duration_minutes": 50})
    assert r.status_code == 201
