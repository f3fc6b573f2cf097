import base64
import threading

import pytest

from visitdesk.services.qr_service import parse_qr_payload


def test_checkin_creates_active_visitor(client, checkin, admin_headers):
    body = checkin()

    assert body["success"] is True
    assert body["qrCode"].startswith("data:image/png;base64,")
    assert body["visitor"]["status"] == "checked_in"
    assert body["visitor"]["visitorId"].startswith("VIS-")

    response = client.get(f"/api/visitors/{body['id']}", headers=admin_headers)
    assert response.status_code == 200
    visitor = response.json()
    assert visitor["status"] == "checked_in"
    assert visitor["checkout_time"] is None
    assert visitor["created_by"] == "public_kiosk"
    assert "photo_base64" not in visitor


def test_qr_payload_round_trips_identity(client, checkin, admin_headers):
    body = checkin(visitor_name="Élise Martin", mobile="9876543210", host_employee="Ravi")

    visitor = client.get(f"/api/visitors/{body['id']}", headers=admin_headers).json()
    payload = parse_qr_payload(visitor["qr_code_data"])

    assert list(payload) == ["id", "name", "mobile", "host", "purpose", "checkin", "status"]
    assert payload["id"] == body["visitor"]["visitorId"] == visitor["pass_id"]
    assert payload["name"] == "Élise Martin"
    assert payload["checkin"] == visitor["checkin_time"] == body["visitor"]["checkinTime"]
    assert payload["status"] == "checked_in"


@pytest.mark.parametrize("mobile", ["987654321", "98765432101", "98765abcde", "+919876543"])
def test_checkin_rejects_bad_mobile(client, mobile):
    response = client.post(
        "/api/visitors",
        json={"visitor_name": "Jane", "host_email": "host@x.com", "purpose": "Meeting", "mobile": mobile},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_MOBILE"


def test_checkin_accepts_exact_mobile_length(checkin):
    body = checkin(mobile="9876543210")
    assert body["success"] is True


@pytest.mark.parametrize(
    "payload, code",
    [
        ({"visitor_name": "Jane", "purpose": "Meeting"}, "MISSING_FIELDS"),
        ({"visitor_name": "  ", "host_email": "host@x.com", "purpose": "Meeting"}, "MISSING_FIELDS"),
        ({"visitor_name": "Jane", "host_email": "not-an-email", "purpose": "Meeting"}, "INVALID_EMAIL"),
        ({"visitor_name": "J" * 101, "host_email": "host@x.com", "purpose": "Meeting"}, "FIELD_TOO_LONG"),
        (
            {"visitor_name": "Jane", "host_email": "host@x.com", "purpose": "Meeting", "photo_base64": "data:image/png;base64,@@"},
            "INVALID_PHOTO",
        ),
    ],
)
def test_checkin_validation_errors(client, payload, code):
    response = client.post("/api/visitors", json=payload)
    assert response.status_code == 400
    assert response.json()["code"] == code


def test_checkout_then_second_checkout_conflicts(client, checkin, reception_headers, admin_headers):
    visitor_id = checkin()["id"]

    first = client.put(f"/api/visitors/{visitor_id}/checkout", headers=reception_headers)
    assert first.status_code == 200
    assert first.json()["success"] is True
    checkout_time = first.json()["checkoutTime"]

    record = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()
    assert record["status"] == "checked_out"
    assert record["checkout_time"] == checkout_time

    second = client.put(f"/api/visitors/{visitor_id}/checkout", headers=reception_headers)
    assert second.status_code == 409
    assert second.json()["code"] == "ALREADY_CHECKED_OUT"

    again = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()
    assert again["checkout_time"] == checkout_time


def test_concurrent_checkouts_have_one_winner(client, checkin, admin_headers):
    visitor_id = checkin()["id"]
    barrier = threading.Barrier(8)
    responses = []
    lock = threading.Lock()

    def check_out():
        barrier.wait()
        response = client.put(f"/api/visitors/{visitor_id}/checkout", headers=admin_headers)
        with lock:
            responses.append(response)

    threads = [threading.Thread(target=check_out) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)

    codes = sorted(response.status_code for response in responses)
    assert codes == [200] + [409] * 7
    winner = next(response for response in responses if response.status_code == 200)
    assert all(
        response.json()["code"] == "ALREADY_CHECKED_OUT" for response in responses if response.status_code == 409
    )

    record = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()
    assert record["status"] == "checked_out"
    assert record["checkout_time"] == winner.json()["checkoutTime"]


def test_checkout_unknown_visitor(client, admin_headers):
    response = client.put("/api/visitors/9999/checkout", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "VISITOR_NOT_FOUND"


@pytest.mark.parametrize("raw_id", ["abc", "0", "-3"])
def test_checkout_rejects_malformed_id(client, admin_headers, raw_id):
    response = client.put(f"/api/visitors/{raw_id}/checkout", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_ID"


def test_checkout_requires_token(client, checkin):
    visitor_id = checkin()["id"]
    response = client.put(f"/api/visitors/{visitor_id}/checkout")
    assert response.status_code == 401
    assert response.json()["code"] == "NO_TOKEN"


def test_get_visitor_not_found(client, admin_headers):
    response = client.get("/api/visitors/424242", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "VISITOR_NOT_FOUND"


def test_photo_is_stored_and_served(client, checkin, admin_headers):
    image = b"\x89PNG\r\n\x1a\nnot-really-a-png"
    photo = "data:image/png;base64," + base64.b64encode(image).decode()
    visitor_id = checkin(photo_base64=photo)["id"]

    response = client.get(f"/api/visitors/{visitor_id}/photo", headers=admin_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content == image

    detail = client.get(f"/api/visitors/{visitor_id}", params={"includePhoto": "true"}, headers=admin_headers)
    assert detail.json()["photo_base64"] == photo


def test_photo_missing(client, checkin, admin_headers):
    visitor_id = checkin()["id"]
    response = client.get(f"/api/visitors/{visitor_id}/photo", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "PHOTO_NOT_FOUND"


def test_update_changes_descriptive_fields_only(client, checkin, reception_headers, admin_headers):
    created = checkin(mobile="9876543210")
    visitor_id = created["id"]
    before = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()

    response = client.put(
        f"/api/visitors/{visitor_id}",
        json={"purpose": "Interview", "host_employee": "Ravi Kumar", "status": "checked_out"},
        headers=reception_headers,
    )
    assert response.status_code == 200
    updated = response.json()["visitor"]
    assert updated["purpose"] == "Interview"
    assert updated["host_employee"] == "Ravi Kumar"
    assert updated["status"] == "checked_in"

    after = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()
    assert after["qr_code_data"] == before["qr_code_data"]
    assert after["checkin_time"] == before["checkin_time"]

    logs = client.get("/api/admin/audit-logs", headers=admin_headers).json()["data"]
    update_events = [row for row in logs if row["action"] == "UPDATE_VISITOR"]
    assert update_events[0]["oldData"]["purpose"] == "Meeting"
    assert update_events[0]["newData"]["purpose"] == "Interview"


def test_update_validates_like_checkin(client, checkin, admin_headers):
    visitor_id = checkin()["id"]
    response = client.put(f"/api/visitors/{visitor_id}", json={"mobile": "12345"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_MOBILE"

    response = client.put(f"/api/visitors/{visitor_id}", json={"purpose": "   "}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_FIELDS"


def test_checkin_with_operator_token_records_creator(client, checkin, reception_headers, admin_headers):
    visitor_id = checkin(headers=reception_headers)["id"]
    visitor = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()
    assert visitor["created_by"] == "frontdesk"


def test_kiosk_ignores_unusable_token(client, checkin, admin_headers):
    visitor_id = checkin(headers={"Authorization": "Bearer garbage"})["id"]
    visitor = client.get(f"/api/visitors/{visitor_id}", headers=admin_headers).json()
    assert visitor["created_by"] == "public_kiosk"


def test_authenticated_checkin_mode(make_client, login):
    client = make_client(PUBLIC_CHECKIN=False)
    payload = {"visitor_name": "Jane Doe", "host_email": "host@x.com", "purpose": "Meeting"}

    anonymous = client.post("/api/visitors", json=payload)
    assert anonymous.status_code == 401
    assert anonymous.json()["code"] == "NO_TOKEN"

    headers = login(client, "admin", "admin-pass-123")
    response = client.post("/api/visitors", json=payload, headers=headers)
    assert response.status_code == 200
    visitor = client.get(f"/api/visitors/{response.json()['id']}", headers=headers).json()
    assert visitor["created_by"] == "admin"
