import pytest


@pytest.fixture
def make_project(client):
    def _make_project(user, **overrides):
        payload = {
            "title": "Open data for bus routes",
            "description": "Publish GTFS feeds for the city buses and a small trip planner.",
            "category": "Open Source",
            "skills_needed": ["Python", "GTFS"],
            **overrides,
        }
        res = client.post("/api/projects", json=payload, headers=user["headers"])
        assert res.status_code == 201, res.text
        return res.json()
    return _make_project


def join(client, project, user):
    return client.post(f"/api/projects/{project['id']}/join", json={"message": "Count me in"}, headers=user["headers"])


def test_create_project_makes_owner_member(client, register, make_project, reputation_of):
    ada = register("Ada Lovelace")
    project = make_project(ada)

    assert project["owner"]["id"] == ada["id"]
    assert [(m["user"]["id"], m["role"]) for m in project["members"]] == [(ada["id"], "Owner")]
    assert project["members"][0]["id"]
    assert reputation_of(ada)["score"] == 10


def test_list_only_public(client, register, make_project):
    ada = register("Ada Lovelace")
    public = make_project(ada)
    make_project(ada, title="Secret skunkworks", visibility="Private")

    listed = client.get("/api/projects").json()
    assert [p["id"] for p in listed["projects"]] == [public["id"]]


def test_join_and_accept(client, register, make_project, reputation_of):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    project = make_project(ada)

    res = join(client, project, bob)
    assert res.status_code == 200
    request = res.json()["join_requests"][0]
    assert request["status"] == "Pending"

    assert join(client, project, bob).json()["message"] == "You already have a pending join request"

    received = client.get("/api/projects/join-requests/received", headers=ada["headers"]).json()["requests"]
    assert received[0]["user"]["id"] == bob["id"]
    sent = client.get("/api/projects/join-requests/sent", headers=bob["headers"]).json()["requests"]
    assert sent[0]["project"]["id"] == project["id"]

    url = f"/api/projects/{project['id']}/join-requests/{request['id']}"
    assert client.put(url, json={"action": "accept"}, headers=bob["headers"]).status_code == 403

    res = client.put(url, json={"action": "accept"}, headers=ada["headers"])
    assert res.status_code == 200
    assert bob["id"] in [m["user"]["id"] for m in res.json()["members"]]
    assert reputation_of(bob)["project_contributions"] == 1

    again = client.put(url, json={"action": "accept"}, headers=ada["headers"])
    assert again.status_code == 400
    assert reputation_of(bob)["project_contributions"] == 1

    assert join(client, project, bob).json()["message"] == "You are already a member of this project"


def test_join_respects_member_limit(client, register, make_project):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    project = make_project(ada, max_members=1)

    res = join(client, project, bob)
    assert res.status_code == 400
    assert res.json()["message"] == "Project has reached maximum member limit"


def test_tasks_are_member_only_and_broadcast(client, emitted, register, make_project):
    ada = register("Ada Lovelace")
    eve = register("Eve Outsider")
    project = make_project(ada)
    url = f"/api/projects/{project['id']}/tasks"

    assert client.post(url, json={"title": "Scrape timetables"}, headers=eve["headers"]).status_code == 403

    res = client.post(url, json={"title": "Scrape timetables", "assigned_to": ada["id"]}, headers=ada["headers"])
    task = res.json()["tasks"][0]
    assert task["status"] == "Todo"
    assert task["assigned_to"]["id"] == ada["id"]

    res = client.put(f"{url}/{task['id']}", json={"status": "Done"}, headers=ada["headers"])
    assert res.json()["tasks"][0]["status"] == "Done"

    event, data, room = emitted[-1]
    assert (event, room) == ("task-updated", f"project-{project['id']}")
    assert data["task"]["status"] == "Done"


def test_task_rejects_malformed_assignee(client, register, make_project):
    ada = register("Ada Lovelace")
    project = make_project(ada)
    res = client.post(
        f"/api/projects/{project['id']}/tasks",
        json={"title": "Scrape timetables", "assigned_to": "nobody"},
        headers=ada["headers"],
    )
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "assigned_to"


def test_milestone_completion_is_stamped(client, register, make_project):
    ada = register("Ada Lovelace")
    project = make_project(ada)
    url = f"/api/projects/{project['id']}/milestones"

    milestone = client.post(url, json={"title": "First feed live"}, headers=ada["headers"]).json()["milestones"][0]
    assert milestone["completed_at"] is None

    done = client.put(f"{url}/{milestone['id']}", json={"status": "Completed"}, headers=ada["headers"]).json()
    assert done["milestones"][0]["completed_at"]

    reopened = client.put(f"{url}/{milestone['id']}", json={"status": "Pending"}, headers=ada["headers"]).json()
    assert reopened["milestones"][0]["completed_at"] is None


def test_messages_and_update_broadcast(client, emitted, register, make_project):
    ada = register("Ada Lovelace")
    eve = register("Eve Outsider")
    project = make_project(ada)
    url = f"/api/projects/{project['id']}/messages"

    res = client.post(url, json={"content": "Kickoff on Monday"}, headers=ada["headers"])
    assert res.status_code == 200
    assert emitted[-1][0] == "new-message"
    assert emitted[-1][2] == f"project-{project['id']}"

    assert client.get(url, headers=eve["headers"]).status_code == 403
    messages = client.get(url, headers=ada["headers"]).json()["messages"]
    assert messages[0]["author"]["id"] == ada["id"]

    client.put(f"/api/projects/{project['id']}", json={"status": "Active"}, headers=ada["headers"])
    event, data, room = emitted[-1]
    assert event == "project-updated"
    assert data["project"]["status"] == "Active"


def test_like_toggles(client, register, make_project):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    project = make_project(ada)
    url = f"/api/projects/{project['id']}/like"

    liked = client.post(url, headers=bob["headers"]).json()
    assert [u["id"] for u in liked["likes"]] == [bob["id"]]
    assert client.post(url, headers=bob["headers"]).json()["likes"] == []


def test_delete_is_owner_only(client, register, make_project):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    project = make_project(ada)

    assert client.delete(f"/api/projects/{project['id']}", headers=bob["headers"]).status_code == 403
    assert client.delete(f"/api/projects/{project['id']}", headers=ada["headers"]).status_code == 200
    assert client.get(f"/api/projects/{project['id']}").status_code == 404


def test_updates_ignore_nulls_but_clear_assignee(client, db, register, make_project):
    ada = register("Ada Lovelace")
    project = make_project(ada)

    res = client.put(f"/api/projects/{project['id']}", json={"title": None, "category": None}, headers=ada["headers"])
    assert res.status_code == 200
    stored = db["project"].find_one()
    assert stored["title"] == "Open data for bus routes"
    assert stored["category"] == "Open Source"

    url = f"/api/projects/{project['id']}/tasks"
    task = client.post(url, json={"title": "Scrape timetables", "assigned_to": ada["id"]}, headers=ada["headers"])
    task = task.json()["tasks"][0]

    res = client.put(f"{url}/{task['id']}", json={"title": None, "assigned_to": None}, headers=ada["headers"])
    assert res.status_code == 200
    stored_task = db["project"].find_one()["tasks"][0]
    assert stored_task["title"] == "Scrape timetables"
    assert stored_task["assigned_to"] is None
