import pytest
from fastapi.testclient import TestClient

from taskline import crud
from taskline.config import get_settings
from taskline.dispatcher import wait_for_assignment_queue_idle
from taskline.main import create_app


@pytest.fixture
def client(settings_tmp):
    app = create_app(start_scheduler=False)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def users(client, db):
    alice = crud.create_user(db, username="alice", display_name="Alice")
    bob = crud.create_user(db, username="bob", display_name="Bob")
    return {"alice": {"X-User-Id": str(alice.id)}, "bob": {"X-User-Id": str(bob.id)}}


def _task(title, start="2024-06-01", end="2024-06-11", **extra):
    return {"title": title, "start_date": start, "end_date": end, **extra}


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_requires_caller_identity(client, users):
    assert client.get("/api/workspaces").status_code == 401
    assert client.get("/api/workspaces", headers={"X-User-Id": "999"}).status_code == 401
    assert client.get("/api/workspaces", headers={"X-User-Id": "abc"}).status_code == 401


def test_personal_workspace_is_private(client, users):
    ws = client.post("/api/workspaces", json={"kind": "personal"}, headers=users["alice"]).json()
    shared = client.post("/api/workspaces", json={"kind": "project", "title": "Launch"}, headers=users["alice"]).json()

    assert client.get(f"/api/workspaces/{ws['id']}/tasks", headers=users["bob"]).status_code == 403
    assert client.get(f"/api/workspaces/{shared['id']}/tasks", headers=users["bob"]).status_code == 200
    assert client.get("/api/workspaces/999/tasks", headers=users["alice"]).status_code == 404


def test_task_editing_flow(client, users):
    h = users["alice"]
    wid = client.post("/api/workspaces", json={"kind": "project", "title": "Launch"}, headers=h).json()["id"]
    base = f"/api/workspaces/{wid}"

    for title in ("Design", "Build", "Ship"):
        r = client.post(f"{base}/tasks", json=_task(title, assignee="Alice", status="in_progress"), headers=h)
        assert r.status_code == 200, r.text
    assert r.json()["number"] == 3
    assert r.json()["due_date"] == "2024-06-10"

    bad = client.post(f"{base}/tasks", json=_task("Backwards", start="2024-06-12"), headers=h)
    assert bad.status_code == 400

    # Progress as a percentage completes the task.
    r = client.patch(f"{base}/tasks/1", json={"progress": 100}, headers=h)
    assert r.status_code == 200
    assert (r.json()["status"], r.json()["progress"]) == ("done", 1.0)
    assert client.patch(f"{base}/tasks/42", json={"title": "x"}, headers=h).status_code == 404

    # Checkbox round trip restores the exact status.
    client.patch(f"{base}/tasks/2", json={"status": "in_review"}, headers=h)
    assert client.post(f"{base}/tasks/2/completion", json={"done": True}, headers=h).json()["status"] == "done"
    assert client.post(f"{base}/tasks/2/completion", json={"done": False}, headers=h).json()["status"] == "in_review"

    # Links
    link = client.post(f"{base}/links", json={"source": 1, "target": 3, "type": "0"}, headers=h)
    assert link.status_code == 200
    assert link.json()["source"] == "1"
    assert client.post(f"{base}/links", json={"source": 1, "target": 99}, headers=h).status_code == 400
    client.post(f"{base}/links", json={"source": 2, "target": 3}, headers=h)

    # Reorder: move #3 to the top.
    r = client.post(f"{base}/reorder", json={"number": 3, "from_index": 2, "to_index": 0}, headers=h)
    assert r.status_code == 200
    assert [t["number"] for t in r.json()["tasks"]] == [3, 1, 2]
    assert client.post(f"{base}/reorder", json={"number": 3, "from_index": 0, "to_index": 7}, headers=h).status_code == 400

    listing = client.get(f"{base}/tasks", headers=h).json()
    assert [t["order"] for t in listing["tasks"]] == [0, 1, 2]
    assert {(row["source"], row["target"]) for row in listing["links"]} == {("1", "3"), ("2", "3")}

    # Deleting #3 drops both links pointing at it.
    r = client.delete(f"{base}/tasks/3", headers=h)
    assert r.json() == {"ok": True, "links_removed": 2}
    listing = client.get(f"{base}/tasks", headers=h).json()
    assert listing["links"] == []
    assert [t["number"] for t in listing["tasks"]] == [1, 2]

    lid = client.post(f"{base}/links", json={"source": 2, "target": 1}, headers=h).json()["id"]
    assert client.delete(f"{base}/links/{lid}", headers=h).json()["removed"] is True
    assert client.delete(f"{base}/links/{lid}", headers=h).json()["removed"] is False


def test_device_registration_and_prompt(client, users):
    h = users["alice"]
    info = {"user_agent": "Firefox/127", "platform": "Linux x86_64", "language": "en-GB"}

    r = client.get("/api/devices/prompt", params=info, headers=h)
    assert r.json() == {"acknowledged": False}

    r = client.post("/api/devices", json={**info, "token": "tok-1"}, headers=h)
    assert r.status_code == 200
    assert r.json()["permission_checked"] is True
    client.post("/api/devices", json={**info, "token": "tok-2"}, headers=h)

    devices = client.get("/api/devices", headers=h).json()
    assert len(devices) == 1
    assert client.get("/api/devices/prompt", params=info, headers=h).json() == {"acknowledged": True}

    assert client.request("DELETE", "/api/devices", json=info, headers=h).json()["removed"] is True
    assert client.request("DELETE", "/api/devices", json=info, headers=h).json()["removed"] is False

    declined = {**info, "user_agent": "Other"}
    assert client.post("/api/devices/prompt", json=declined, headers=h).json() == {"acknowledged": True}
    assert client.get("/api/devices", headers=h).json() == []


@pytest.fixture
def local_client(settings_tmp):
    get_settings().notifications.provider = "local"
    app = create_app(start_scheduler=False)
    with TestClient(app) as c:
        yield c


def test_notification_feed_over_api(local_client, db):
    client = local_client
    alice = crud.create_user(db, username="alice", display_name="Alice")
    bob = crud.create_user(db, username="bob", display_name="Bob")
    h = {"X-User-Id": str(alice.id)}
    info = {"user_agent": "Firefox/127", "platform": "Linux x86_64", "language": "en-GB"}
    client.post("/api/devices", json={**info, "token": "alice-browser"}, headers=h)
    fh = {**h, "X-Device-Token": "alice-browser"}

    assert client.get("/api/notifications/events", headers=h).status_code == 400
    assert client.get("/api/notifications/events", headers={**h, "X-Device-Token": "other"}).status_code == 404
    bob_h = {"X-User-Id": str(bob.id), "X-Device-Token": "alice-browser"}
    assert client.get("/api/notifications/events", headers=bob_h).status_code == 404

    assert client.get("/api/notifications/events", headers=fh).json() == []

    wid = client.post("/api/workspaces", json={"kind": "project", "title": "Launch"}, headers=h).json()["id"]
    client.post(f"/api/workspaces/{wid}/tasks", json=_task("Write notes", assignee="Alice"), headers=h)
    assert wait_for_assignment_queue_idle(timeout=5.0)

    (event,) = client.get("/api/notifications/events", headers=fh).json()
    assert event["title"] == "New task assigned"
    assert "Write notes" in event["body"] and event["read"] is False
    assert client.get("/api/notifications/unread-count", headers=fh).json() == {"unread": 1}

    assert client.post(f"/api/notifications/events/{event['id']}/read", headers=fh).json()["changed"] is True
    assert client.post("/api/notifications/events/nope/read", headers=fh).status_code == 404
    assert client.get("/api/notifications/unread-count", headers=fh).json() == {"unread": 0}

    client.post(f"/api/workspaces/{wid}/tasks", json=_task("Review notes", assignee="Alice"), headers=h)
    assert wait_for_assignment_queue_idle(timeout=5.0)
    assert len(client.get("/api/notifications/events", params={"unread_only": True}, headers=fh).json()) == 1
    assert client.post("/api/notifications/read-all", headers=fh).json()["marked"] == 1

    # Once the client closes its feed, pushes find nobody listening but the device stays.
    assert client.delete("/api/notifications", headers=fh).json()["closed"] is True
    client.post(f"/api/workspaces/{wid}/tasks", json=_task("Publish notes", assignee="Alice"), headers=h)
    assert wait_for_assignment_queue_idle(timeout=5.0)
    assert len(client.get("/api/devices", headers=h).json()) == 1
