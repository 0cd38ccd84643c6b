from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from routers import collaboration_requests
from routers.collaboration_requests import ALREADY_SENT, add_collaborator


def send(client, user, problem, **extra):
    return client.post(
        "/api/collaboration-requests",
        json={"problem_id": problem["id"], **extra},
        headers=user["headers"],
    )


def test_request_is_created_pending(client, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)

    res = send(client, bob, problem, message="Happy to map the flood plain", proposed_role="GIS lead")
    assert res.status_code == 201
    request = res.json()["collaboration_request"]
    assert request["status"] == "pending"
    assert request["proposed_role"] == "GIS lead"
    assert request["requester"]["id"] == bob["id"]
    assert request["problem"]["id"] == problem["id"]


def test_duplicate_request_is_rejected_before_insert(client, db, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)

    first = send(client, bob, problem)
    second = send(client, bob, problem)
    assert second.status_code == 400
    body = second.json()
    assert body["message"] == ALREADY_SENT
    assert body["existing_request"]["id"] == first.json()["collaboration_request"]["id"]
    assert db["collaboration_request"].count_documents({}) == 1


def test_duplicate_index_maps_to_same_error(client, register, make_problem, monkeypatch):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)

    # a concurrent insert won the race after the pre-check passed
    def racing_insert(collection_name, data):
        raise DuplicateKeyError("E11000 duplicate key error")

    monkeypatch.setattr(collaboration_requests, "create_document", racing_insert)

    res = send(client, bob, problem)
    assert res.status_code == 400
    assert res.json() == {"message": ALREADY_SENT}


def test_request_guards(client, db, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)

    own = send(client, ada, problem)
    assert own.status_code == 400
    assert own.json()["message"] == "You cannot send a collaboration request to yourself"

    missing = client.post(
        "/api/collaboration-requests",
        json={"problem_id": "64b7f0c2a1b2c3d4e5f60718"},
        headers=bob["headers"],
    )
    assert missing.status_code == 404

    add_collaborator(db, problem["id"], bob["id"], "Collaborator")
    already = send(client, bob, problem)
    assert already.status_code == 400
    assert already.json()["message"] == "You are already a collaborator on this problem"


def test_accept_adds_exactly_one_collaborator(client, db, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)
    request_id = send(client, bob, problem).json()["collaboration_request"]["id"]

    url = f"/api/collaboration-requests/{request_id}/respond"
    res = client.put(url, json={"status": "accepted"}, headers=ada["headers"])
    assert res.status_code == 200
    assert res.json()["collaboration_request"]["status"] == "accepted"

    again = client.put(url, json={"status": "accepted"}, headers=ada["headers"])
    assert again.status_code == 400

    # a replayed second write cannot duplicate the entry either
    assert add_collaborator(db, problem["id"], bob["id"], "Collaborator") is False

    collaborators = db["problem"].find_one()["collaborators"]
    assert [c["user"] for c in collaborators] == [bob["id"]]
    assert collaborators[0]["is_acknowledged"] is False
    assert isinstance(collaborators[0]["_id"], ObjectId)


def test_respond_guards(client, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)
    request_id = send(client, bob, problem).json()["collaboration_request"]["id"]
    url = f"/api/collaboration-requests/{request_id}/respond"

    bad = client.put(url, json={"status": "maybe"}, headers=ada["headers"])
    assert bad.status_code == 400
    assert client.put(url, json={"status": "accepted"}, headers=bob["headers"]).status_code == 403

    res = client.put(url, json={"status": "rejected", "response_message": "Team is full"}, headers=ada["headers"])
    assert res.json()["collaboration_request"]["response_message"] == "Team is full"


def test_received_sent_and_stats(client, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    cat = register("Cat Lee")
    problem = make_problem(ada)

    bob_request = send(client, bob, problem).json()["collaboration_request"]["id"]
    send(client, cat, problem)
    client.put(f"/api/collaboration-requests/{bob_request}/respond", json={"status": "accepted"}, headers=ada["headers"])

    received = client.get("/api/collaboration-requests/received", headers=ada["headers"]).json()["requests"]
    assert [r["requester"]["id"] for r in received] == [cat["id"]]

    everything = client.get(
        "/api/collaboration-requests/received", params={"status": "all"}, headers=ada["headers"]
    ).json()["requests"]
    assert len(everything) == 2

    sent = client.get("/api/collaboration-requests/sent", headers=bob["headers"]).json()["requests"]
    assert sent[0]["status"] == "accepted"
    assert sent[0]["problem_author"]["id"] == ada["id"]

    stats = client.get("/api/collaboration-requests/stats", headers=ada["headers"]).json()
    assert stats["received"] == {"pending": 1, "accepted": 1, "rejected": 0}
    assert stats["sent"] == {"pending": 0, "accepted": 0, "rejected": 0}


def test_cancel_request(client, register, make_problem):
    ada = register("Ada Lovelace")
    bob = register("Bob Kahn")
    problem = make_problem(ada)
    request_id = send(client, bob, problem).json()["collaboration_request"]["id"]

    assert client.delete(f"/api/collaboration-requests/{request_id}", headers=ada["headers"]).status_code == 403
    assert client.delete(f"/api/collaboration-requests/{request_id}", headers=bob["headers"]).status_code == 200
    assert send(client, bob, problem).status_code == 201


def test_end_to_end_scenario(client, register, make_problem, reputation_of):
    author = register("Ada Lovelace")
    supporter = register("Bob Kahn")
    helper = register("Cat Lee")

    problem = make_problem(author)
    assert reputation_of(author)["score"] == 5

    res = client.post(f"/api/problems/{problem['id']}/support", headers=supporter["headers"])
    assert len(res.json()["supporters"]) == 1

    res = send(client, helper, problem)
    assert res.status_code == 201
    request = res.json()["collaboration_request"]
    assert request["status"] == "pending"

    res = client.put(
        f"/api/collaboration-requests/{request['id']}/respond",
        json={"status": "accepted"},
        headers=author["headers"],
    )
    assert res.status_code == 200

    detail = client.get(f"/api/problems/{problem['id']}").json()
    assert [(c["user"]["id"], c["role"]) for c in detail["collaborators"]] == [(helper["id"], "Collaborator")]
