from __future__ import annotations

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from courtside.core.constants import (
    REASON_GATEWAY_CANCELLED,
    REASON_GATEWAY_EXPIRED,
    REASON_GATEWAY_UNREACHABLE,
    REASON_NO_PAYMENT_METHOD,
    REASON_PAID_AFTER_SLOT_TAKEN,
    REASON_PAYMENT_NOT_COMPLETED,
)
from courtside.integrations.payos_client import STATUS_CANCELLED, STATUS_EXPIRED, STATUS_PAID
from courtside.models import Booking, BookingStatus, PaymentSession, PaymentSessionStatus
from courtside.repositories.payment_repository import PaymentRepository
from courtside.services.hold_service import FLOW_PAYMENT, FLOW_QUICK
from tests.factories.booking_builders import NOW, insert_booking


def _reload(db, booking_id: str) -> Booking:
    db.expire_all()
    return db.get(Booking, booking_id)


@pytest.fixture
def quick_hold(hold_service, hold_request, customer):
    return hold_service.create_hold(hold_request(), customer, FLOW_QUICK).booking


@pytest.fixture
def payment_hold(hold_service, hold_request, customer):
    return hold_service.create_hold(hold_request(), customer, FLOW_PAYMENT)


class TestSweep:
    def test_hold_without_payment_is_cancelled(self, db, sweeper, quick_hold, clock):
        clock.advance(minutes=6)

        report = sweeper.sweep()

        assert (report.scanned, report.cancelled, report.failed) == (1, 1, 0)
        booking = _reload(db, quick_hold.id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancellation_reason == REASON_NO_PAYMENT_METHOD
        assert booking.payment_status == "expired"
        assert booking.cancelled_by is None
        assert booking.hold_until is None

    def test_live_hold_is_left_alone(self, db, sweeper, quick_hold, clock):
        clock.advance(minutes=2)

        report = sweeper.sweep()

        assert report.scanned == 0
        assert _reload(db, quick_hold.id).status == BookingStatus.PENDING.value

    def test_explicit_sweep_time(self, db, sweeper, quick_hold):
        report = sweeper.sweep(now=NOW + timedelta(minutes=10))
        assert report.cancelled == 1
        assert report.processed_at == NOW + timedelta(minutes=10)

    def test_grace_period(self, db, sweeper, quick_hold, clock):
        clock.advance(minutes=6)

        assert sweeper.sweep(max_age_minutes=5).scanned == 0
        assert sweeper.sweep(max_age_minutes=1).cancelled == 1

    def test_paid_at_gateway_is_rescued(self, db, sweeper, payment_hold, gateway, clock):
        order_code = payment_hold.session.order_code
        gateway.set_status(order_code, STATUS_PAID, transaction_ref="FT-LATE")
        clock.advance(minutes=16)

        report = sweeper.sweep()

        assert report.confirmed == 1
        booking = _reload(db, payment_hold.booking.id)
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.payment_status == "paid"
        ledger = PaymentRepository(db).list_transactions(booking.id)
        assert [(row.payment_ref, row.source) for row in ledger] == [("FT-LATE", "sweeper")]

    def test_paid_too_late_for_a_taken_slot_is_cancelled(
        self, db, sweeper, payment_hold, gateway, hold_service, hold_request, lifecycle, other_customer, owner, clock
    ):
        order_code = payment_hold.session.order_code
        clock.advance(minutes=16)
        taker = hold_service.create_hold(hold_request(), other_customer, FLOW_QUICK).booking
        lifecycle.approve(taker.id, owner)
        gateway.set_status(order_code, STATUS_PAID, transaction_ref="FT-TOO-LATE")

        report = sweeper.sweep()

        assert (report.confirmed, report.cancelled) == (0, 1)
        late = _reload(db, payment_hold.booking.id)
        assert late.status == BookingStatus.CANCELLED.value
        assert late.cancellation_reason == REASON_PAID_AFTER_SLOT_TAKEN
        assert late.payment_status == "paid"
        assert _reload(db, taker.id).status == BookingStatus.CONFIRMED.value
        ledger = PaymentRepository(db).list_transactions(late.id)
        assert [(row.payment_ref, row.source) for row in ledger] == [("FT-TOO-LATE", "sweeper")]

    def test_expired_at_gateway(self, db, sweeper, payment_hold, gateway, clock):
        gateway.set_status(payment_hold.session.order_code, STATUS_EXPIRED)
        clock.advance(minutes=16)

        report = sweeper.sweep()

        assert report.expired == 1
        booking = _reload(db, payment_hold.booking.id)
        assert booking.status == BookingStatus.EXPIRED.value
        assert booking.status_reason == REASON_GATEWAY_EXPIRED
        assert booking.payment_status == "expired"
        assert db.get(PaymentSession, payment_hold.session.id).status == PaymentSessionStatus.EXPIRED.value

    def test_cancelled_at_gateway(self, db, sweeper, payment_hold, gateway, clock):
        gateway.set_status(payment_hold.session.order_code, STATUS_CANCELLED)
        clock.advance(minutes=16)

        report = sweeper.sweep()

        assert report.cancelled == 1
        booking = _reload(db, payment_hold.booking.id)
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancellation_reason == REASON_GATEWAY_CANCELLED

    def test_unpaid_link_is_closed_then_cancelled(self, db, sweeper, payment_hold, gateway, clock):
        order_code = payment_hold.session.order_code
        clock.advance(minutes=16)

        report = sweeper.sweep()

        assert report.cancelled == 1
        assert gateway.cancelled[order_code] == REASON_PAYMENT_NOT_COMPLETED
        booking = _reload(db, payment_hold.booking.id)
        assert booking.cancellation_reason == REASON_PAYMENT_NOT_COMPLETED
        assert booking.payment_status == "expired"
        assert db.get(PaymentSession, payment_hold.session.id).status == PaymentSessionStatus.EXPIRED.value

    def test_unreachable_gateway_cancels_and_flags(self, db, sweeper, payment_hold, gateway, clock, caplog):
        gateway.fail_with("get")
        clock.advance(minutes=16)
        caplog.set_level(logging.ERROR)

        report = sweeper.sweep()

        assert report.cancelled == 1
        assert _reload(db, payment_hold.booking.id).cancellation_reason == REASON_GATEWAY_UNREACHABLE
        flagged = [r for r in caplog.records if getattr(r, "event", None) == "manual_reconciliation_required"]
        assert [r.booking_id for r in flagged] == [payment_hold.booking.id]

    def test_one_failure_does_not_stop_the_batch(
        self, db, sweeper, hold_service, hold_request, customer, other_customer, clock
    ):
        first = hold_service.create_hold(hold_request(), customer, FLOW_QUICK).booking
        clock.advance(minutes=1)
        second = hold_service.create_hold(
            hold_request(slots=[{"start": "20:00", "end": "21:00"}]), other_customer, FLOW_QUICK
        ).booking
        clock.advance(minutes=10)

        with patch.object(sweeper, "_sweep_booking", side_effect=[RuntimeError("boom"), "cancelled"]):
            report = sweeper.sweep()

        assert report.scanned == 2
        assert report.failed == 1
        assert report.cancelled == 1
        assert report.failures == [{"booking_id": first.id, "error": "boom"}]
        assert second.id != first.id

    def test_batch_continues_for_real_after_failure(
        self, db, sweeper, hold_service, hold_request, customer, other_customer, clock
    ):
        hold_service.create_hold(hold_request(), customer, FLOW_QUICK)
        clock.advance(minutes=1)
        second = hold_service.create_hold(
            hold_request(slots=[{"start": "20:00", "end": "21:00"}]), other_customer, FLOW_QUICK
        ).booking
        clock.advance(minutes=10)
        real_sweep = sweeper._sweep_booking
        calls = []

        def flaky(booking, cutoff):
            calls.append(booking.id)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return real_sweep(booking, cutoff)

        with patch.object(sweeper, "_sweep_booking", side_effect=flaky):
            report = sweeper.sweep()

        assert (report.failed, report.cancelled) == (1, 1)
        assert _reload(db, second.id).status == BookingStatus.CANCELLED.value

    def test_stale_sessions_of_finished_bookings_expire(
        self, db, sweeper, payment_hold, lifecycle, owner, clock
    ):
        lifecycle.reject(payment_hold.booking.id, owner, "court closed for repairs")
        clock.advance(minutes=16)

        report = sweeper.sweep()

        assert report.scanned == 0
        assert report.sessions_expired == 1
        db.expire_all()
        assert db.get(PaymentSession, payment_hold.session.id).status == PaymentSessionStatus.EXPIRED.value

    def test_report_dict(self, sweeper, quick_hold, clock):
        clock.advance(minutes=6)
        data = sweeper.sweep().to_dict()
        assert data["cancelled"] == 1
        assert data["processed_at"] == (NOW + timedelta(minutes=6)).isoformat()


def test_terminate_skips_a_booking_that_is_no_longer_a_hold(db, sweeper, venue, court, clock):
    booking = insert_booking(db, venue, [court], status=BookingStatus.CONFIRMED.value)

    assert sweeper._terminate(booking, "cancel", REASON_NO_PAYMENT_METHOD, clock()) == "skipped"
    assert _reload(db, booking.id).status == BookingStatus.CONFIRMED.value


def test_terminate_skips_a_hold_extended_after_the_scan(db, sweeper, venue, court, clock):
    booking = insert_booking(
        db, venue, [court], status=BookingStatus.RESERVED.value, hold_until=NOW + timedelta(minutes=15)
    )

    assert sweeper._terminate(booking, "expire", REASON_GATEWAY_EXPIRED, clock()) == "skipped"
    assert _reload(db, booking.id).status == BookingStatus.RESERVED.value
