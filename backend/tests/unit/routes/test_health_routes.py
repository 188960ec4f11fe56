from __future__ import annotations

from courtside.core.constants import API_VERSION


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "courtside-api"
    assert data["version"] == API_VERSION
    assert data["timestamp"].endswith("Z")


def test_metrics_exposes_booking_counters(client, hold_request, customer_headers):
    client.post("/api/v1/bookings/hold", json=hold_request().model_dump(mode="json"), headers=customer_headers)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert 'courtside_holds_total{flow="quick",outcome="created"}' in body
    assert "courtside_booking_transitions_total" in body
