"""
Route tests for /api/v1/bookings.

Services run for real against the test database; only the gateway and the
clock are fakes.
"""

from __future__ import annotations

from courtside.api.dependencies import get_payment_gateway
from courtside.core.constants import REASON_NO_PAYMENT_METHOD
from courtside.main import app
from tests.factories.booking_builders import auth_headers

BASE = "/api/v1/bookings"
UNKNOWN_ID = "01J" + "0" * 22 + "Z"
GUEST = {"name": "Lan Nguyen", "phone": "0901234567"}


def _body(hold_request, **kwargs):
    return hold_request(**kwargs).model_dump(mode="json")


def _quick_hold(client, hold_request, headers, **kwargs):
    response = client.post(f"{BASE}/hold", json=_body(hold_request, **kwargs), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["booking"]


class TestCreateHold:
    def test_member_quick_hold(self, client, hold_request, customer_headers, court):
        response = client.post(f"{BASE}/hold", json=_body(hold_request), headers=customer_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["payment"] is None
        assert data["payment_error"] is None
        booking = data["booking"]
        assert booking["status"] == "pending"
        assert booking["user_id"] == "customer-1"
        assert booking["court_ids"] == [court.id]
        assert booking["total_price"] == 200000
        assert booking["hold_until"] == "2025-01-09T09:05:00+00:00"

    def test_guest_quick_hold(self, client, hold_request):
        booking = _quick_hold(client, hold_request, {}, customer_info=GUEST)
        assert booking["user_id"] is None
        assert booking["customer_info"]["phone"] == "0901234567"

    def test_guest_without_contact_details(self, client, hold_request):
        response = client.post(f"{BASE}/hold", json=_body(hold_request))

        assert response.status_code == 400
        assert response.json()["instance"] == f"{BASE}/hold"

    def test_conflict_envelope(self, client, hold_request, customer_headers):
        first = _quick_hold(client, hold_request, customer_headers)

        response = client.post(
            f"{BASE}/hold", json=_body(hold_request), headers=auth_headers("customer-2")
        )

        assert response.status_code == 409
        problem = response.json()
        assert problem["code"] == "SLOT_CONFLICT"
        assert problem["title"] == "Conflict"
        assert problem["errors"]["conflicts"][0]["booking_id"] == first["id"]
        assert problem["errors"]["conflicts"][0]["holder_id"] == "customer-1"

    def test_malformed_slot_is_a_validation_error(self, client, hold_request, customer_headers):
        body = _body(hold_request)
        body["time_slots"] = [{"start": "19:00", "end": "18:00"}]

        response = client.post(f"{BASE}/hold", json=body, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_field_is_rejected(self, client, hold_request, customer_headers):
        body = _body(hold_request)
        body["status"] = "confirmed"
        assert client.post(f"{BASE}/hold", json=body, headers=customer_headers).status_code == 400

    def test_invalid_token_is_rejected_even_for_guests(self, client, hold_request):
        response = client.post(
            f"{BASE}/hold",
            json=_body(hold_request, customer_info=GUEST),
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"


class TestPaymentBooking:
    def test_opens_checkout(self, client, hold_request, customer_headers, gateway):
        response = client.post(BASE, json=_body(hold_request), headers=customer_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["booking"]["status"] == "reserved"
        assert data["booking"]["hold_until"] == "2025-01-09T09:15:00+00:00"
        assert data["payment"]["checkout_url"].startswith("https://pay.payos.vn/web/fake-")
        assert data["booking"]["gateway_order_ref"] == str(data["payment"]["order_code"])
        assert data["payment"]["order_code"] in gateway.links

    def test_gateway_failure_keeps_reservation(self, client, hold_request, customer_headers, gateway):
        gateway.fail_with("create")

        response = client.post(BASE, json=_body(hold_request), headers=customer_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["booking"]["status"] == "reserved"
        assert data["payment"]["status"] == "failed"
        assert data["payment_error"]

    def test_cash_is_not_a_payment_flow_method(self, client, hold_request, customer_headers):
        response = client.post(
            BASE, json=_body(hold_request, payment_method="cash"), headers=customer_headers
        )
        assert response.status_code == 400

    def test_unconfigured_gateway(self, client, hold_request, customer_headers):
        app.dependency_overrides[get_payment_gateway] = lambda: None

        response = client.post(BASE, json=_body(hold_request), headers=customer_headers)

        assert response.status_code == 502
        assert response.json()["code"] == "GATEWAY_ERROR"


class TestAvailabilityAndCleanup:
    def test_check_availability(self, client, hold_request, customer_headers, court):
        body = {
            "court_ids": [court.id],
            "booking_date": "2025-01-10",
            "time_slots": [{"start": "18:00", "end": "19:00"}],
        }
        assert client.post(f"{BASE}/check-availability", json=body).json()["is_available"] is True

        booking = _quick_hold(client, hold_request, customer_headers)

        data = client.post(f"{BASE}/check-availability", json=body).json()
        assert data["is_available"] is False
        assert data["slots"][0]["conflicts"] == [booking["id"]]

        body["exclude_booking_id"] = booking["id"]
        assert client.post(f"{BASE}/check-availability", json=body).json()["is_available"] is True

    def test_cleanup_requires_admin(self, client, customer_headers):
        assert client.post(f"{BASE}/cleanup").status_code == 401
        response = client.post(f"{BASE}/cleanup", headers=customer_headers)
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_cleanup_sweeps_lapsed_holds(self, client, hold_request, customer_headers, admin_headers, clock):
        booking = _quick_hold(client, hold_request, customer_headers)
        clock.advance(minutes=6)

        response = client.post(f"{BASE}/cleanup", headers=admin_headers)

        assert response.status_code == 200
        report = response.json()
        assert report["scanned"] == 1
        assert report["cancelled"] == 1
        swept = client.get(f"{BASE}/{booking['id']}", headers=customer_headers).json()
        assert swept["status"] == "cancelled"
        assert swept["cancellation_reason"] == REASON_NO_PAYMENT_METHOD

    def test_cleanup_grace_period(self, client, hold_request, customer_headers, admin_headers, clock):
        _quick_hold(client, hold_request, customer_headers)
        clock.advance(minutes=6)

        response = client.post(f"{BASE}/cleanup", json={"max_age_minutes": 10}, headers=admin_headers)
        assert response.json()["scanned"] == 0


class TestGetBooking:
    def test_holder_owner_and_stranger(self, client, hold_request, customer_headers, owner_headers):
        booking = _quick_hold(client, hold_request, customer_headers)
        url = f"{BASE}/{booking['id']}"

        assert client.get(url, headers=customer_headers).status_code == 200
        assert client.get(url, headers=owner_headers).status_code == 200
        assert client.get(url, headers=auth_headers("customer-2")).status_code == 403
        assert client.get(url).status_code == 403

    def test_guest_booking_by_id(self, client, hold_request):
        booking = _quick_hold(client, hold_request, {}, customer_info=GUEST)
        assert client.get(f"{BASE}/{booking['id']}").json()["id"] == booking["id"]

    def test_unknown_and_malformed_ids(self, client, customer_headers, venue):
        assert client.get(f"{BASE}/{UNKNOWN_ID}", headers=customer_headers).status_code == 404
        assert client.get(f"{BASE}/not-a-ulid", headers=customer_headers).status_code == 400


class TestHoldActions:
    def test_start_payment_on_quick_hold(self, client, hold_request, customer_headers):
        booking = _quick_hold(client, hold_request, customer_headers)

        response = client.post(f"{BASE}/{booking['id']}/payment", headers=customer_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["booking"]["status"] == "reserved"
        assert data["payment"]["status"] == "pending"

    def test_release_then_release_again(self, client, hold_request, customer_headers):
        booking = _quick_hold(client, hold_request, customer_headers)
        url = f"{BASE}/{booking['id']}/release"

        released = client.post(url, headers=customer_headers)
        assert released.status_code == 200
        assert released.json()["status"] == "cancelled"

        again = client.post(url, headers=customer_headers)
        assert again.status_code == 422
        problem = again.json()
        assert problem["code"] == "INVALID_STATE_TRANSITION"
        assert problem["errors"]["current_status"] == "cancelled"

    def test_release_needs_authentication(self, client, hold_request):
        booking = _quick_hold(client, hold_request, {}, customer_info=GUEST)
        assert client.post(f"{BASE}/{booking['id']}/release").status_code == 401

    def test_released_slot_can_be_held_again(self, client, hold_request, customer_headers):
        booking = _quick_hold(client, hold_request, customer_headers)
        client.post(f"{BASE}/{booking['id']}/release", headers=customer_headers)

        response = client.post(
            f"{BASE}/hold", json=_body(hold_request), headers=auth_headers("customer-2")
        )
        assert response.status_code == 201

    def test_cancel_requires_a_reason(self, client, hold_request, customer_headers):
        booking = _quick_hold(client, hold_request, customer_headers)
        url = f"{BASE}/{booking['id']}/cancel"

        assert client.post(url, headers=customer_headers).status_code == 400
        assert client.post(url, json={}, headers=customer_headers).status_code == 400

        response = client.post(url, json={"reason": "rain"}, headers=customer_headers)
        assert response.status_code == 200
        assert response.json()["cancellation_reason"] == "rain"
        assert response.json()["cancelled_by"] == "customer-1"


class TestOwnerActions:
    def test_approve_checkin_checkout(self, client, hold_request, customer_headers, owner_headers, clock):
        booking = _quick_hold(client, hold_request, customer_headers)
        base = f"{BASE}/{booking['id']}"

        assert client.post(f"{base}/approve", headers=customer_headers).status_code == 403

        approved = client.post(f"{base}/approve", headers=owner_headers)
        assert approved.status_code == 200
        assert approved.json()["status"] == "confirmed"
        assert approved.json()["hold_until"] is None

        assert client.post(f"{base}/checkin", headers=owner_headers).json()["status"] == "in_progress"
        clock.advance(hours=1)
        completed = client.post(f"{base}/checkout", headers=owner_headers).json()
        assert completed["status"] == "completed"
        assert completed["completed_at"] == "2025-01-09T10:00:00+00:00"

        late_cancel = client.post(f"{base}/cancel", json={"reason": "oops"}, headers=owner_headers)
        assert late_cancel.status_code == 422

    def test_reject_needs_reason(self, client, hold_request, customer_headers, owner_headers):
        booking = _quick_hold(client, hold_request, customer_headers)
        url = f"{BASE}/{booking['id']}/reject"

        assert client.post(url, json={"reason": "  "}, headers=owner_headers).status_code == 400
        response = client.post(url, json={"reason": "maintenance"}, headers=owner_headers)
        assert response.json()["status"] == "cancelled"

    def test_no_show(self, client, hold_request, customer_headers, owner_headers):
        booking = _quick_hold(client, hold_request, customer_headers)
        base = f"{BASE}/{booking['id']}"
        client.post(f"{base}/approve", headers=owner_headers)

        response = client.post(f"{base}/no-show", headers=owner_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "no_show"
