"""
A court and date never carry two blocking bookings over the same minutes.

One long sequence drives holds, lapses, owner approvals, late gateway
payments, sweeper rescues and cancellations through the services, and
re-checks every blocking booking after each step.
"""

from __future__ import annotations

from collections import defaultdict
from itertools import combinations

import pytest

from courtside.core.constants import REASON_PAID_AFTER_SLOT_TAKEN
from courtside.core.exceptions import InvalidStateTransitionException, SlotConflictException
from courtside.core.time_slots import slots_overlap_any
from courtside.integrations.payos_client import STATUS_PAID
from courtside.models import Booking, BookingStatus
from courtside.services.hold_service import FLOW_PAYMENT, FLOW_QUICK


def _slot(start: str, end: str):
    return [{"start": start, "end": end}]


def assert_no_double_booking(db, now) -> None:
    db.expire_all()
    blocking = defaultdict(list)
    for booking in db.query(Booking).all():
        if booking.is_active_at(now):
            for court_id in booking.court_ids:
                blocking[(court_id, booking.booking_date)].append(booking)

    for (court_id, booking_date), bookings in blocking.items():
        for a, b in combinations(bookings, 2):
            assert not slots_overlap_any(a.time_slots, b.time_slots), (
                f"{a.id} and {b.id} both hold court {court_id} on {booking_date}"
            )


def test_blocking_bookings_never_overlap(
    db,
    hold_service,
    hold_request,
    lifecycle,
    reconciler,
    sweeper,
    gateway,
    clock,
    court,
    second_court,
    customer,
    other_customer,
    owner,
):
    def check() -> None:
        assert_no_double_booking(db, clock())

    # Payment hold lapses unpaid; another customer takes an overlapping range on both courts
    late = hold_service.create_hold(hold_request(), customer, FLOW_PAYMENT)
    check()
    clock.advance(minutes=16)
    taker = hold_service.create_hold(
        hold_request(courts=[court, second_court], slots=_slot("18:30", "19:30")), other_customer, FLOW_QUICK
    ).booking
    check()
    lifecycle.approve(taker.id, owner)
    check()

    # The lapsed hold is paid after all; the slot is gone so it is cancelled for refund
    result = reconciler.handle_webhook(gateway.build_webhook_body(late.session.order_code))
    assert result.outcome == "cancelled"
    assert result.message == REASON_PAID_AFTER_SLOT_TAKEN
    check()

    # A lapsed payment hold on a free range is rescued by the sweeper
    rescued = hold_service.create_hold(
        hold_request(courts=[second_court], slots=_slot("20:00", "21:00")), customer, FLOW_PAYMENT
    )
    clock.advance(minutes=16)
    gateway.set_status(rescued.session.order_code, STATUS_PAID)
    assert sweeper.sweep().confirmed == 1
    check()
    with pytest.raises(SlotConflictException):
        hold_service.create_hold(
            hold_request(courts=[second_court], slots=_slot("20:30", "21:30")), other_customer, FLOW_QUICK
        )
    check()

    # A lapsed quick hold is overtaken and can no longer be approved
    stale = hold_service.create_hold(hold_request(slots=_slot("21:00", "22:00")), other_customer, FLOW_QUICK)
    clock.advance(minutes=6)
    fresh = hold_service.create_hold(hold_request(slots=_slot("21:00", "22:00")), customer, FLOW_QUICK)
    check()
    with pytest.raises(InvalidStateTransitionException):
        lifecycle.approve(stale.booking.id, owner)
    lifecycle.approve(fresh.booking.id, owner)
    check()

    # Cancelling the confirmed taker frees its range for a new hold
    lifecycle.cancel(taker.id, owner, "court resurfacing")
    again = hold_service.create_hold(hold_request(), other_customer, FLOW_PAYMENT)
    check()
    reconciler.handle_webhook(gateway.build_webhook_body(again.session.order_code))
    check()

    db.expire_all()
    confirmed = {
        booking.id
        for booking in db.query(Booking).filter(Booking.status == BookingStatus.CONFIRMED.value)
    }
    assert confirmed == {rescued.booking.id, fresh.booking.id, again.booking.id}
