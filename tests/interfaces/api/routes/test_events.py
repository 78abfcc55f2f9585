"""Integration tests for the event stream and replay endpoints."""

from __future__ import annotations

import json

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from app.config import reset_settings_cache
from app.infrastructure.database import SessionLocal
from app.infrastructure.repositories import NotificationRepository
from app.infrastructure.security import create_user_token


@pytest.fixture
def make_client(monkeypatch):
    """Return a factory for clients running an app built with ``overrides``."""

    clients = []

    def _make_client(**overrides: str) -> TestClient:
        for name, value in overrides.items():
            monkeypatch.setenv(name.upper(), value)
        reset_settings_cache()

        from main import create_app

        client = TestClient(create_app())
        client.__enter__()
        clients.append(client)
        return client

    yield _make_client
    for client in clients:
        client.__exit__(None, None, None)
    reset_settings_cache()


def _auth(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user.id)}"}


def _append(user_id: str, count: int) -> list[int]:
    with SessionLocal() as session:
        repository = NotificationRepository(session)
        return [
            repository.append(user_id, "chat.item.updated", {"n": n}).id
            for n in range(count)
        ]


def _parse(frame: str) -> dict:
    fields = dict(line.split(": ", 1) for line in frame.strip().split("\n"))
    return {"id": int(fields["id"]), "event": fields["event"], "data": json.loads(fields["data"])}


def _frames(body: str) -> list[str]:
    return [f"{chunk}\n\n" for chunk in body.split("\n\n") if chunk]


def _event_ids(body: str) -> list[int]:
    return [
        _parse(frame)["id"]
        for frame in _frames(body)
        if frame.startswith("id:")
    ]


@pytest.mark.parametrize("path", ["/events/stream", "/events/replay"])
def test_requests_without_token_are_rejected(make_client, path):
    client = make_client()

    response = client.get(path)

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_invalid_token_is_rejected(make_client):
    client = make_client()

    response = client.get(
        "/events/replay", headers={"Authorization": "Bearer not-a-token"}
    )

    assert response.status_code == 401


def test_token_for_unknown_user_is_rejected(make_client):
    client = make_client()

    response = client.get(
        "/events/replay",
        headers={"Authorization": f"Bearer {create_user_token('ghost')}"},
    )

    assert response.status_code == 401


def test_inactive_user_is_forbidden(make_client, make_user):
    client = make_client()
    user = make_user(is_active=False)

    response = client.get("/events/stream", headers=_auth(user))

    assert response.status_code == 403
    assert response.json()["detail"] == "User account is not active"


@pytest.mark.parametrize(
    ("headers", "params"),
    [
        ({"Last-Event-ID": "abc"}, {}),
        ({"Last-Event-ID": "-1"}, {}),
        ({"Last-Event-ID": "1.5"}, {}),
        ({}, {"lastEventId": "12x"}),
        ({"Last-Event-ID": "9" * 25}, {}),
        ({}, {"lastEventId": str(2**63)}),
    ],
)
def test_stream_rejects_malformed_cursor(make_client, make_user, headers, params):
    client = make_client()
    user = make_user()

    response = client.get(
        "/events/stream", headers={**_auth(user), **headers}, params=params
    )

    assert response.status_code == 400


def test_replay_returns_events_after_cursor_in_ascending_order(make_client, make_user):
    client = make_client()
    user = make_user()
    other = make_user()
    ids = _append(user.id, 4)
    _append(other.id, 2)

    response = client.get(
        "/events/replay", headers=_auth(user), params={"afterId": str(ids[1])}
    )

    assert response.status_code == 200
    notifications = response.json()["notifications"]
    assert [item["id"] for item in notifications] == ids[2:]
    assert notifications[0]["userId"] == user.id
    assert notifications[0]["eventType"] == "chat.item.updated"
    assert notifications[0]["payload"] == {"n": 2}
    assert notifications[0]["readAt"] is None
    assert notifications[0]["createdAt"]


def test_replay_defaults_to_the_beginning(make_client, make_user):
    client = make_client()
    user = make_user()
    ids = _append(user.id, 3)

    response = client.get("/events/replay", headers=_auth(user))

    assert [item["id"] for item in response.json()["notifications"]] == ids


@pytest.mark.parametrize(
    ("limit", "expected"),
    [("0", 1), ("2", 2), ("50", 3)],
)
def test_replay_limit_is_clamped(make_client, make_user, limit, expected):
    client = make_client(notification_max_limit="3")
    user = make_user()
    _append(user.id, 5)

    response = client.get("/events/replay", headers=_auth(user), params={"limit": limit})

    assert response.status_code == 200
    assert len(response.json()["notifications"]) == expected


@pytest.mark.parametrize(
    "params",
    [
        {"afterId": "abc"},
        {"afterId": "9" * 25},
        {"limit": "ten"},
        {"limit": "-5"},
        {"limit": "9" * 25},
    ],
)
def test_replay_rejects_malformed_parameters(make_client, make_user, params):
    client = make_client()
    user = make_user()

    response = client.get("/events/replay", headers=_auth(user), params=params)

    assert response.status_code == 400


def test_stream_replays_backlog_and_resumes_from_last_event_id(make_client, make_user):
    client = make_client(stream_replay_max_events="2", stream_replay_page_size="2")
    user = make_user()
    ids = _append(user.id, 7)

    first = client.get("/events/stream", headers=_auth(user))

    assert first.status_code == 200
    assert first.headers["content-type"].startswith("text/event-stream")
    assert first.headers["cache-control"] == "no-cache, no-transform"
    frames = _frames(first.text)
    assert frames[0] == ": connected\n\n"
    assert frames[-1] == ": replay-truncated\n\n"
    assert _event_ids(first.text) == ids[:2]

    resumed = client.get(
        "/events/stream",
        headers={**_auth(user), "Last-Event-ID": str(ids[1])},
    )
    assert _event_ids(resumed.text) == ids[2:4]

    token = create_user_token(user.id)
    by_query = client.get(
        "/events/stream", params={"token": token, "lastEventId": str(ids[3])}
    )
    assert by_query.status_code == 200
    assert _event_ids(by_query.text) == ids[4:6]

    event = _parse(_frames(by_query.text)[1])
    assert event["event"] == "chat.item.updated"
    assert event["data"]["notificationId"] == ids[4]
    assert event["data"]["payload"] == {"n": 4}


def test_last_event_id_header_takes_precedence_over_query(make_client, make_user):
    client = make_client(stream_replay_max_events="1", stream_replay_page_size="1")
    user = make_user()
    ids = _append(user.id, 5)

    response = client.get(
        "/events/stream",
        headers={**_auth(user), "Last-Event-ID": str(ids[2])},
        params={"lastEventId": str(ids[0])},
    )

    assert _event_ids(response.text) == [ids[3]]


def test_replay_accepts_the_largest_cursor(make_client, make_user):
    client = make_client()
    user = make_user()
    _append(user.id, 2)

    response = client.get(
        "/events/replay", headers=_auth(user), params={"afterId": str(2**63 - 1)}
    )

    assert response.status_code == 200
    assert response.json()["notifications"] == []
