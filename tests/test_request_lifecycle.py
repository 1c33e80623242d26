from datetime import datetime
from types import SimpleNamespace

import pytest

from helphub.extensions import db
from helphub.models.application import RequestApplication
from helphub.models.chat import Chat
from helphub.models.help_request import HelpRequest
from helphub.models.user import User
from helphub.services import request_service
from helphub.utils.exceptions import ConflictError


def test_create_request_computes_priority(client, auth_headers, needy, request_payload):
    resp = client.post(
        "/api/v1/requests",
        json=request_payload(urgency="High", category="Medical"),
        headers=auth_headers(needy),
    )
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["success"] is True
    req = body["request"]
    assert req["status"] == "Pending"
    assert req["priority"] == 75
    assert req["is_urgent"] is True
    assert req["volunteer"] is None
    assert req["chat_id"] is None
    assert req["location"]["coordinates"] == [-73.98, 40.75]

    db.session.refresh(needy)
    assert needy.requests_created == 1


def test_create_request_accepts_plain_address(client, auth_headers, needy, request_payload):
    resp = client.post(
        "/api/v1/requests",
        json=request_payload(location="  42 Elm Road  "),
        headers=auth_headers(needy),
    )
    assert resp.status_code == 201
    location = resp.get_json()["request"]["location"]
    assert location["address"] == "42 Elm Road"
    assert location["coordinates"] == [0.0, 0.0]


def test_create_request_validation(client, auth_headers, needy, request_payload):
    resp = client.post(
        "/api/v1/requests",
        json=request_payload(title="Hi", category="Pets"),
        headers=auth_headers(needy),
    )
    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "title" in error["details"]
    assert "category" in error["details"]


def test_volunteer_cannot_create_request(client, auth_headers, volunteer, request_payload):
    resp = client.post("/api/v1/requests", json=request_payload(), headers=auth_headers(volunteer))
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_listing_is_scoped_by_role(client, auth_headers, make_user, create_request, volunteer, fanout):
    alice = make_user("needy")
    bob = make_user("needy")
    mine = create_request(alice, title="Need a ride to clinic")
    create_request(bob, title="Need school supplies")
    taken = create_request(bob, title="Need help moving boxes")
    client.post(f"/api/v1/requests/{taken['id']}/accept", headers=auth_headers(volunteer))

    resp = client.get("/api/v1/requests", headers=auth_headers(alice))
    ids = [r["id"] for r in resp.get_json()["requests"]]
    assert ids == [mine["id"]]

    resp = client.get("/api/v1/requests", headers=auth_headers(volunteer))
    body = resp.get_json()
    assert all(r["status"] == "Pending" for r in body["requests"])
    assert body["pagination"]["total"] == 2

    resp = client.get("/api/v1/requests?search=school", headers=auth_headers(volunteer))
    assert [r["title"] for r in resp.get_json()["requests"]] == ["Need school supplies"]


def _at(lng, lat, address="Somewhere"):
    return {"address": address, "coordinates": [lng, lat]}


def test_listing_filters_by_distance(client, auth_headers, needy, volunteer, create_request):
    nearby = create_request(needy, title="Nearby corner", location=_at(-73.99, 40.77))
    here = create_request(needy, title="Right here", location=_at(-73.98, 40.75))
    create_request(needy, title="Across the river", location=_at(-73.95, 40.65))
    create_request(needy, title="Other city", location=_at(-71.06, 42.36))

    resp = client.get("/api/v1/requests?lat=40.75&lng=-73.98&distance=5", headers=auth_headers(volunteer))
    assert resp.status_code == 200
    body = resp.get_json()
    assert [r["id"] for r in body["requests"]] == [here["id"], nearby["id"]]
    assert body["pagination"]["total"] == 2

    resp = client.get("/api/v1/requests?lat=40.75&lng=-73.98&distance=20", headers=auth_headers(volunteer))
    titles = [r["title"] for r in resp.get_json()["requests"]]
    assert titles == ["Right here", "Nearby corner", "Across the river"]

    # an explicit sort still applies inside the radius
    resp = client.get(
        "/api/v1/requests?lat=40.75&lng=-73.98&distance=5&sort=created_at",
        headers=auth_headers(volunteer),
    )
    assert [r["title"] for r in resp.get_json()["requests"]] == ["Nearby corner", "Right here"]


def test_distance_filter_validation(client, auth_headers, volunteer):
    resp = client.get("/api/v1/requests?lat=40.75&lng=-73.98", headers=auth_headers(volunteer))
    assert resp.status_code == 400
    error = resp.get_json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "distance" in error["details"]

    resp = client.get("/api/v1/requests?lat=north&lng=-73.98&distance=5", headers=auth_headers(volunteer))
    assert resp.status_code == 400
    assert "lat" in resp.get_json()["error"]["details"]

    resp = client.get("/api/v1/requests?lat=40.75&lng=-73.98&distance=0", headers=auth_headers(volunteer))
    assert resp.status_code == 400


def test_needy_cannot_read_someone_elses_request(client, auth_headers, make_user, create_request):
    owner = make_user("needy")
    other = make_user("needy")
    req = create_request(owner)

    resp = client.get(f"/api/v1/requests/{req['id']}", headers=auth_headers(other))
    assert resp.status_code == 403

    resp = client.get("/api/v1/requests/REQ-missing", headers=auth_headers(other))
    assert resp.status_code == 404


def test_get_request_counts_views(client, auth_headers, needy, volunteer, create_request):
    req = create_request(needy)
    client.get(f"/api/v1/requests/{req['id']}", headers=auth_headers(volunteer))
    resp = client.get(f"/api/v1/requests/{req['id']}", headers=auth_headers(needy))
    assert resp.status_code == 200
    assert resp.get_json()["request"]["views"] == 2


def test_accept_assigns_volunteer_and_opens_chat(client, auth_headers, needy, volunteer, create_request, fanout):
    req = create_request(needy)

    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))
    assert resp.status_code == 200
    body = resp.get_json()
    accepted = body["request"]
    assert accepted["status"] == "Accepted"
    assert accepted["volunteer"]["id"] == volunteer.id
    assert accepted["accepted_at"] is not None
    assert body["chat_id"] == accepted["chat_id"]

    chat = db.session.get(Chat, accepted["chat_id"])
    assert chat.help_request_id == req["id"]
    assert chat.participant_ids == {needy.id, volunteer.id}

    events = fanout.events_for(needy.id, "request_status_changed")
    assert events[-1]["status"] == "Accepted"
    assert events[-1]["volunteerId"] == volunteer.id
    assert events[-1]["chatId"] == chat.id


def test_second_accept_is_rejected(client, auth_headers, make_user, needy, create_request, fanout):
    first = make_user("volunteer")
    second = make_user("volunteer")
    req = create_request(needy)

    assert client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(first)).status_code == 200
    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(second))
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "NOT_AVAILABLE"

    stored = db.session.get(HelpRequest, req["id"])
    db.session.refresh(stored)
    assert stored.volunteer_id == first.id
    assert Chat.query.filter_by(help_request_id=req["id"]).count() == 1


def test_accept_compare_and_set_rejects_stale_reader(monkeypatch, app, make_user, needy, create_request, fanout):
    first = make_user("volunteer")
    second = make_user("volunteer")
    req = create_request(needy)

    request_service.accept_request(first, req["id"])

    # the second volunteer read the request before the first accept committed
    stale = SimpleNamespace(
        id=req["id"],
        status="Pending",
        needy_user_id=needy.id,
        volunteer_id=None,
        urgency="Medium",
        category="Food",
        created_at=datetime.utcnow(),
    )
    monkeypatch.setattr(request_service, "get_request_or_404", lambda request_id: stale)

    with pytest.raises(ConflictError) as exc:
        request_service.accept_request(second, req["id"])
    assert exc.value.code == "NOT_AVAILABLE"

    db.session.expire_all()
    stored = db.session.get(HelpRequest, req["id"])
    assert stored.status == "Accepted"
    assert stored.volunteer_id == first.id
    assert Chat.query.filter_by(help_request_id=req["id"]).count() == 1


def test_owner_cannot_accept_own_request_after_role_change(client, auth_headers, make_user, admin, create_request):
    owner = make_user("needy")
    req = create_request(owner)

    resp = client.put(
        f"/api/v1/admin/users/{owner.id}/status",
        json={"role": "volunteer"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200

    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(owner))
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    db.session.expire_all()
    stored = db.session.get(HelpRequest, req["id"])
    assert stored.status == "Pending"
    assert stored.volunteer_id is None
    assert Chat.query.filter_by(help_request_id=req["id"]).count() == 0


def test_needy_cannot_accept(client, auth_headers, needy, create_request):
    req = create_request(needy)
    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(needy))
    assert resp.status_code == 403


def test_blocked_volunteer_is_forbidden(client, auth_headers, make_user, needy, create_request):
    blocked = make_user("volunteer", is_blocked=True)
    req = create_request(needy)
    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(blocked))
    assert resp.status_code == 403
    assert "blocked" in resp.get_json()["error"]["message"].lower()


def test_status_progression_and_rewards(client, auth_headers, needy, volunteer, create_request, fanout):
    req = create_request(needy, urgency="High", category="Medical")
    client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))

    resp = client.put(
        f"/api/v1/requests/{req['id']}/status",
        json={"status": "On the Way", "estimatedCompletionTime": "2030-01-01T10:00:00Z"},
        headers=auth_headers(volunteer),
    )
    assert resp.status_code == 200
    body = resp.get_json()["request"]
    assert body["status"] == "On the Way"
    assert body["estimated_completion_time"] == "2030-01-01T10:00:00Z"

    resp = client.put(
        f"/api/v1/requests/{req['id']}/status",
        json={"status": "Completed"},
        headers=auth_headers(volunteer),
    )
    assert resp.status_code == 200
    done = resp.get_json()["request"]
    assert done["status"] == "Completed"
    assert done["completed_at"] is not None

    db.session.refresh(volunteer)
    assert volunteer.points == 50
    assert volunteer.requests_completed == 1
    assert volunteer.badge_names == ["Bronze"]

    statuses = [e["status"] for e in fanout.events_for(needy.id, "request_status_changed")]
    assert statuses == ["Accepted", "On the Way", "Completed"]


def test_completion_grants_every_crossed_badge_once(client, auth_headers, make_user, needy, create_request, fanout):
    veteran = make_user("volunteer", points=90)
    for _ in range(2):
        req = create_request(needy, urgency="High")
        client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(veteran))
        resp = client.put(
            f"/api/v1/requests/{req['id']}/status",
            json={"status": "Completed"},
            headers=auth_headers(veteran),
        )
        assert resp.status_code == 200

    db.session.refresh(veteran)
    assert veteran.points == 190
    assert veteran.requests_completed == 2
    assert sorted(veteran.badge_names) == ["Bronze", "Silver"]


def test_invalid_transitions(client, auth_headers, make_user, needy, volunteer, create_request, fanout):
    req = create_request(needy)

    # nobody is assigned yet
    resp = client.put(f"/api/v1/requests/{req['id']}/status", json={"status": "Completed"}, headers=auth_headers(volunteer))
    assert resp.status_code == 403

    client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))

    resp = client.put(f"/api/v1/requests/{req['id']}/status", json={"status": "Pending"}, headers=auth_headers(volunteer))
    assert resp.status_code == 400

    resp = client.put(f"/api/v1/requests/{req['id']}/status", json={"status": "Done"}, headers=auth_headers(volunteer))
    assert resp.status_code == 400

    outsider = make_user("volunteer")
    resp = client.put(f"/api/v1/requests/{req['id']}/status", json={"status": "On the Way"}, headers=auth_headers(outsider))
    assert resp.status_code == 403

    client.put(f"/api/v1/requests/{req['id']}/status", json={"status": "Completed"}, headers=auth_headers(volunteer))
    resp = client.put(f"/api/v1/requests/{req['id']}/status", json={"status": "On the Way"}, headers=auth_headers(volunteer))
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "INVALID_TRANSITION"

    resp = client.post(f"/api/v1/requests/{req['id']}/cancel", json={}, headers=auth_headers(needy))
    assert resp.status_code == 409


def test_cancel_pending_request(client, auth_headers, needy, volunteer, create_request, fanout):
    req = create_request(needy)
    resp = client.post(
        f"/api/v1/requests/{req['id']}/cancel",
        json={"reason": "Found help elsewhere"},
        headers=auth_headers(needy),
    )
    assert resp.status_code == 200
    body = resp.get_json()["request"]
    assert body["status"] == "Cancelled"
    assert body["cancellation_reason"] == "Found help elsewhere"

    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))
    assert resp.status_code == 409


def test_update_only_while_pending_and_by_owner(client, auth_headers, make_user, needy, volunteer, create_request, fanout):
    req = create_request(needy)
    other = make_user("needy")

    resp = client.put(f"/api/v1/requests/{req['id']}", json={"title": "Someone else's edit"}, headers=auth_headers(other))
    assert resp.status_code == 403

    resp = client.put(
        f"/api/v1/requests/{req['id']}",
        json={"title": "Need groceries and medicine", "urgency": "High"},
        headers=auth_headers(needy),
    )
    assert resp.status_code == 200
    body = resp.get_json()["request"]
    assert body["title"] == "Need groceries and medicine"
    assert body["tags"] == ["groceries"]
    assert body["priority"] == 30 + 25 + 10

    client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))
    resp = client.put(f"/api/v1/requests/{req['id']}", json={"title": "Too late to edit"}, headers=auth_headers(needy))
    assert resp.status_code == 409


def test_delete_pending_request(client, auth_headers, needy, volunteer, create_request):
    req = create_request(needy)
    client.post(f"/api/v1/requests/{req['id']}/apply", json={}, headers=auth_headers(volunteer))

    resp = client.delete(f"/api/v1/requests/{req['id']}", headers=auth_headers(needy))
    assert resp.status_code == 200
    assert RequestApplication.query.filter_by(help_request_id=req["id"]).count() == 0

    resp = client.get(f"/api/v1/requests/{req['id']}", headers=auth_headers(needy))
    assert resp.status_code == 404


def test_applications(client, auth_headers, make_user, needy, create_request, fanout):
    req = create_request(needy)
    first = make_user("volunteer")
    second = make_user("volunteer")

    resp = client.post(f"/api/v1/requests/{req['id']}/apply", json={"message": "I live nearby"}, headers=auth_headers(first))
    assert resp.status_code == 201
    assert resp.get_json()["application"]["status"] == "Pending"

    resp = client.post(f"/api/v1/requests/{req['id']}/apply", json={}, headers=auth_headers(first))
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "ALREADY_APPLIED"

    client.post(f"/api/v1/requests/{req['id']}/apply", json={}, headers=auth_headers(second))
    client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(first))

    statuses = {
        a.volunteer_id: a.status
        for a in RequestApplication.query.filter_by(help_request_id=req["id"]).all()
    }
    assert statuses == {first.id: "Accepted", second.id: "Rejected"}

    resp = client.get(f"/api/v1/requests/{req['id']}", headers=auth_headers(needy))
    assert len(resp.get_json()["request"]["applications"]) == 2

    third = make_user("volunteer")
    resp = client.post(f"/api/v1/requests/{req['id']}/apply", json={}, headers=auth_headers(third))
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "NOT_AVAILABLE"


def test_attach_images(client, auth_headers, needy, create_request):
    req = create_request(needy)
    images = [{"url": "https://img.example.com/a.jpg", "public_id": "a"}]
    resp = client.post(f"/api/v1/requests/{req['id']}/images", json={"images": images}, headers=auth_headers(needy))
    assert resp.status_code == 200
    assert resp.get_json()["request"]["images"] == [{"url": "https://img.example.com/a.jpg", "public_id": "a"}]

    too_many = [{"url": f"https://img.example.com/{i}.jpg"} for i in range(6)]
    resp = client.post(f"/api/v1/requests/{req['id']}/images", json={"images": too_many}, headers=auth_headers(needy))
    assert resp.status_code == 400


def test_volunteer_dashboard(client, auth_headers, needy, volunteer, create_request, fanout):
    active = create_request(needy)
    done = create_request(needy, urgency="Low")
    for req in (active, done):
        client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))
    client.put(f"/api/v1/requests/{done['id']}/status", json={"status": "Completed"}, headers=auth_headers(volunteer))

    resp = client.get("/api/v1/requests/volunteer-stats", headers=auth_headers(volunteer))
    assert resp.status_code == 200
    stats = resp.get_json()["stats"]
    assert stats["total_accepted"] == 2
    assert stats["active"] == 1
    assert stats["completed"] == 1
    assert stats["points"] == 20

    resp = client.get("/api/v1/requests/volunteer-requests", headers=auth_headers(volunteer))
    assert [r["id"] for r in resp.get_json()["requests"]] == [active["id"]]

    resp = client.get("/api/v1/requests/volunteer-requests?status=Completed", headers=auth_headers(volunteer))
    assert [r["id"] for r in resp.get_json()["requests"]] == [done["id"]]

    resp = client.get("/api/v1/requests/volunteer-stats", headers=auth_headers(needy))
    assert resp.status_code == 403


def test_users_profile_reflects_stats(client, auth_headers, needy, volunteer):
    resp = client.get(f"/api/v1/users/{volunteer.id}", headers=auth_headers(needy))
    assert resp.status_code == 200
    profile = resp.get_json()["user"]
    assert profile["stats"]["points"] == 0
    assert "email" not in profile

    assert db.session.get(User, volunteer.id) is not None
