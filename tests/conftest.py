import pytest
from flask_jwt_extended import create_access_token

from helphub.extensions import db
from helphub.main import create_app
from helphub.models.user import User
from helphub.services.realtime import EXTENSION_KEY, RealtimeFanout
from helphub.utils.auth_utils import hash_password


class RecordingFanout(RealtimeFanout):
    """Captures every publish instead of emitting it."""

    def __init__(self):
        super().__init__(socketio=None)
        self.events = []

    def publish(self, user_id, event, payload):
        self.events.append((user_id, event, payload))
        return True

    def events_for(self, user_id, event=None):
        return [
            payload for uid, name, payload in self.events
            if uid == user_id and (event is None or name == event)
        ]


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fanout(app):
    recorder = RecordingFanout()
    app.extensions[EXTENSION_KEY] = recorder
    return recorder


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="needy", name=None, **kwargs):
        counter["n"] += 1
        user = User(
            email=f"{role}{counter['n']}@example.com",
            password_hash=hash_password("secret123"),
            name=name or f"{role.title()} {counter['n']}",
            role=role,
            **kwargs,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        token = create_access_token(identity=user.id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def needy(make_user):
    return make_user("needy", phone="5551234567")


@pytest.fixture
def volunteer(make_user):
    return make_user("volunteer")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


def _request_payload(**overrides):
    payload = {
        "title": "Need groceries delivered",
        "description": "I cannot leave home this week and need basic groceries.",
        "category": "Food",
        "urgency": "Medium",
        "location": {
            "address": "12 Main Street",
            "coordinates": [-73.98, 40.75],
            "city": "Springfield",
        },
        "tags": ["groceries"],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def request_payload():
    return _request_payload


@pytest.fixture
def create_request(client, auth_headers):
    def _create(owner, **overrides):
        resp = client.post("/api/v1/requests", json=_request_payload(**overrides), headers=auth_headers(owner))
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["request"]

    return _create


@pytest.fixture
def accepted_request(client, auth_headers, create_request, needy, volunteer, fanout):
    req = create_request(needy)
    resp = client.post(f"/api/v1/requests/{req['id']}/accept", headers=auth_headers(volunteer))
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["request"]
