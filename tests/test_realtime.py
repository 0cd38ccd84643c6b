import anyio
import pytest

import realtime


@pytest.fixture
def rooms(monkeypatch):
    joined = []

    async def fake_enter_room(sid, room, namespace=None):
        joined.append((sid, room))

    monkeypatch.setattr(realtime.sio, "enter_room", fake_enter_room)
    return joined


@pytest.fixture(autouse=True)
def no_presence(monkeypatch):
    monkeypatch.setattr(realtime, "online_users", {})


def test_room_names():
    assert realtime.project_room("p1") == "project-p1"
    assert realtime.collaboration_room("abc_u1_author") == "collaboration-abc"
    assert realtime.collaboration_room("abc_u2_collaborator") == "collaboration-abc"
    assert realtime.collaboration_room("abc") == "collaboration-abc"


def test_join_collaboration_uses_problem_room(rooms):
    anyio.run(realtime.join_collaboration, "sid-1", "abc_u1_author")
    anyio.run(realtime.join_collaboration, "sid-2", "abc_u2_collaborator")
    assert rooms == [("sid-1", "collaboration-abc"), ("sid-2", "collaboration-abc")]


def test_relays(emitted):
    anyio.run(realtime.send_message, "sid-1", {"project_id": "p1", "content": "hi"})
    anyio.run(realtime.send_collaboration_message, "sid-1", {"collaboration_id": "abc_u1", "content": "hey"})

    assert emitted == [
        ("new-message", {"project_id": "p1", "content": "hi"}, "project-p1"),
        ("new-collaboration-message", {"collaboration_id": "abc_u1", "content": "hey"}, "collaboration-abc"),
    ]


def test_relays_drop_unroutable_payloads(emitted):
    anyio.run(realtime.send_message, "sid-1", "just text")
    anyio.run(realtime.project_update, "sid-1", ["p1"])
    anyio.run(realtime.task_update, "sid-1", {"task": "t1"})
    anyio.run(realtime.send_collaboration_message, "sid-1", {"collaboration_id": "", "content": "hey"})
    assert emitted == []


def test_presence(emitted):
    anyio.run(realtime.user_online, "sid-1", "u1")
    anyio.run(realtime.user_online, "sid-2", "u2")
    anyio.run(realtime.disconnect, "sid-1")

    assert emitted[-1] == ("online-users", ["u2"], None)


def test_broadcast_outside_worker_thread_does_not_raise(emitted):
    # no event loop portal here: the emit is dropped with a warning
    realtime.broadcast("project-updated", {"project_id": "p1"}, "project-p1")
    assert emitted == []
