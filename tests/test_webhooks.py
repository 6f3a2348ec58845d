import pytest

from storefront.models import User
from storefront.services.webhooks import Msg91Event, mask_phone, normalize_phone
from tests.conftest import make_user

API_KEY = {"x-api-key": "msg91-test-key"}


@pytest.mark.parametrize("phone,identifier,expected", [
    ("+919999999999", None, "+919999999999"),
    (None, "919999999999", "+919999999999"),
    (None, "91-99999 99999", "+919999999999"),
    ("919999999999", None, "+919999999999"),
    (None, "12345", None),
    (None, None, None),
])
def test_normalize_phone(phone, identifier, expected):
    assert normalize_phone(phone, identifier) == expected


def test_mask_phone():
    assert mask_phone("+919999999999") == "+9199***"


def test_event_defaults():
    event = Msg91Event.from_payload({"type": "otp_verified", "identifier": "919812345678"})
    assert event.status == "success"
    assert event.phone == "+919812345678"

    sent = Msg91Event.from_payload({})
    assert (sent.type, sent.status, sent.phone) == ("otp_sent", "pending", None)


def test_otp_verified_marks_phone(client, db):
    user = make_user(db, "phone@example.com", phone="+919812345678")
    user_id = user.id

    response = client.post(
        "/api/webhooks/msg91",
        json={"type": "otp_verified", "identifier": "919812345678", "status": "success"},
        headers=API_KEY,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["received"] is True
    assert data["event_type"] == "otp_verified"
    verified = db.query(User).filter(User.id == user_id).one()
    db.refresh(verified)
    assert verified.is_phone_verified is True
    assert verified.phone_verified_at is not None


def test_failed_status_does_not_verify(client, db):
    user = make_user(db, "phone@example.com", phone="+919812345678")

    client.post(
        "/api/webhooks/msg91",
        json={"type": "otp_verified", "phone": "+919812345678", "status": "failed"},
        headers=API_KEY,
    )

    db.refresh(user)
    assert user.is_phone_verified is False


def test_other_events_are_acknowledged(client):
    for event_type in ("otp_sent", "otp_failed", "something_new"):
        response = client.post(
            "/api/webhooks/msg91", json={"type": event_type, "phone": "+919812345678"}, headers=API_KEY
        )
        assert response.status_code == 200
        assert response.json()["data"]["event_type"] == event_type


@pytest.mark.parametrize("headers", [{}, {"x-api-key": "wrong"}])
def test_msg91_requires_api_key(client, headers):
    response = client.post("/api/webhooks/msg91", json={"type": "otp_sent"}, headers=headers)
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid or missing x-api-key header"


def test_msg91_rejects_bad_payloads(client):
    not_json = client.post(
        "/api/webhooks/msg91", content=b"{oops", headers={**API_KEY, "Content-Type": "application/json"}
    )
    assert not_json.status_code == 422
    assert not_json.json()["error"]["message"] == "Invalid JSON payload"

    a_list = client.post("/api/webhooks/msg91", json=["otp_sent"], headers=API_KEY)
    assert a_list.status_code == 422
    assert a_list.json()["error"]["message"] == "Invalid webhook payload format"


def test_msg91_status_endpoint(client):
    data = client.get("/api/webhooks/msg91").json()["data"]
    assert data["status"] == "active"
    assert data["auth_header"] == "x-api-key"


def test_numeric_phone_is_accepted(client, db):
    user = make_user(db, "phone@example.com", phone="+919812345678")

    response = client.post(
        "/api/webhooks/msg91",
        json={"type": "otp_verified", "status": "success", "phone": 919812345678},
        headers=API_KEY,
    )

    assert response.status_code == 200
    db.refresh(user)
    assert user.is_phone_verified is True


def test_structured_phone_is_rejected(client):
    response = client.post(
        "/api/webhooks/msg91", json={"type": "otp_verified", "identifier": {"number": "91"}}, headers=API_KEY
    )
    assert response.status_code == 422
    assert response.json()["error"]["fields"] == {"identifier": "Must be a string or number"}
