#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_waitlist
    ~~~~~~~~~~~~~~~~~~~

    Reservations: who may queue, in what order they are served, and how
    pickup offers lapse.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import pytest
from datetime import timedelta
from circulate.core import waitlist
from circulate.core.exceptions import (
    BookNotFoundError,
    PolicyDenied,
    ReservationNotFoundError,
    UserNotFoundError,
)
from circulate.core.models import ReservationStatus
from circulate.core.utils import as_utc
from tests.conftest import NOW


def test_reserve_unavailable_book(api, make_user, make_book):
    book = make_book(available=0)
    reservation = api.create_reservation(make_user().id, book.id)
    assert reservation.status == ReservationStatus.PENDING
    assert as_utc(reservation.reservation_date) == NOW


def test_red_book_cannot_be_reserved(api, make_user, make_book):
    with pytest.raises(PolicyDenied) as exc:
        api.create_reservation(make_user().id, make_book(tag="red").id)
    assert exc.value.reason == "library_use_only"


def test_unknown_user_and_book(api, make_user, make_book):
    with pytest.raises(UserNotFoundError):
        api.create_reservation(77, make_book().id)
    with pytest.raises(BookNotFoundError):
        api.create_reservation(make_user().id, 77)


def test_inactive_user_cannot_reserve(api, make_user, make_book):
    with pytest.raises(PolicyDenied) as exc:
        api.create_reservation(make_user(active=False).id, make_book().id)
    assert exc.value.reason == "user_inactive"


def test_at_most_three_reservations(api, make_user, make_book):
    user = make_user()
    for i in range(3):
        api.create_reservation(user.id, make_book(f"Book {i}", available=0).id)
    with pytest.raises(PolicyDenied) as exc:
        api.create_reservation(user.id, make_book("Book 4", available=0).id)
    assert exc.value.reason == "reservation_limit"


def test_cannot_reserve_title_already_on_loan(api, make_user, make_book, make_loan):
    user = make_user()
    make_loan(user, make_book("Mayombe", author="Pepetela"), due_date=NOW + timedelta(days=1))
    other_copy = make_book("Mayombe", author="Pepetela (ed. 2)")
    with pytest.raises(PolicyDenied) as exc:
        api.create_reservation(user.id, other_copy.id)
    assert exc.value.reason == "same_title_loaned"


def test_duplicate_reservation_message_depends_on_status(api, make_user, make_book, make_reservation):
    pending_user, notified_user = make_user(), make_user()
    book = make_book(available=0)
    make_reservation(pending_user, book, NOW)
    make_reservation(notified_user, book, NOW, status=ReservationStatus.NOTIFIED,
                     expires_at=NOW + timedelta(days=1))

    with pytest.raises(PolicyDenied) as pending:
        api.create_reservation(pending_user.id, book.id)
    with pytest.raises(PolicyDenied) as notified:
        api.create_reservation(notified_user.id, book.id)
    assert pending.value.reason == notified.value.reason == "already_reserved"
    assert pending.value.message != notified.value.message
    assert "waitlist" in pending.value.message
    assert "pick up" in notified.value.message


def test_teacher_served_before_earlier_student(api, db_session, make_user, make_book, make_loan):
    book = make_book()
    loan = make_loan(make_user(), book, due_date=NOW + timedelta(days=3))
    student, teacher = make_user("Student"), make_user("Teacher", role="teacher")

    student_res = api.create_reservation(student.id, book.id)
    api.clock.advance(hours=1)
    teacher_res = api.create_reservation(teacher.id, book.id)

    receipt = api.return_loan(loan.id)
    assert receipt.notified.id == teacher_res.id
    db_session.refresh(student_res)
    assert student_res.status == ReservationStatus.PENDING


def test_ordering_notified_then_teacher_then_arrival(db_session, make_user, make_book, make_reservation):
    book = make_book(available=0)
    late_student = make_reservation(make_user(), book, NOW - timedelta(hours=1))
    early_student = make_reservation(make_user(), book, NOW - timedelta(hours=5))
    teacher = make_reservation(make_user(role="teacher"), book, NOW)
    offered = make_reservation(make_user(), book, NOW, status=ReservationStatus.NOTIFIED,
                               expires_at=NOW + timedelta(days=2))

    order = [r.id for r in waitlist.ordered_waitlist(db_session, book.id)]
    assert order == [offered.id, teacher.id, early_student.id, late_student.id]


def test_return_notifies_exactly_one(api, db_session, make_user, make_book, make_loan, make_reservation):
    book = make_book(copies=1)
    loan = make_loan(make_user(), book, due_date=NOW + timedelta(days=1))
    queued = [make_reservation(make_user(), book, NOW - timedelta(hours=h)) for h in (3, 2, 1)]

    api.return_loan(loan.id)
    statuses = []
    for reservation in queued:
        db_session.refresh(reservation)
        statuses.append(reservation.status)
    assert statuses == [ReservationStatus.NOTIFIED, ReservationStatus.PENDING, ReservationStatus.PENDING]


def test_cancel_pending_reservation(api, db_session, make_user, make_book, make_reservation):
    user, book = make_user(), make_book(available=0)
    reservation = make_reservation(user, book, NOW)
    cancelled = api.cancel_reservation(user.id, book.id)
    assert cancelled.id == reservation.id
    assert cancelled.status == ReservationStatus.CANCELLED
    with pytest.raises(ReservationNotFoundError):
        api.cancel_reservation(user.id, book.id)


def test_cancelling_an_offer_passes_it_on(api, db_session, make_user, make_book, make_reservation, notifier):
    book = make_book()
    offered_user = make_user()
    make_reservation(offered_user, book, NOW - timedelta(days=1), status=ReservationStatus.NOTIFIED,
                     expires_at=NOW + timedelta(days=1))
    next_in_line = make_reservation(make_user(), book, NOW - timedelta(hours=2))

    api.cancel_reservation(offered_user.id, book.id)
    db_session.refresh(next_in_line)
    assert next_in_line.status == ReservationStatus.NOTIFIED
    notifier.send_reservation_ready.assert_called_once()


def test_lapsed_offers_expire_and_move_on(db_session, make_user, make_book, make_reservation):
    book = make_book()
    stale = make_reservation(make_user(), book, NOW - timedelta(days=3),
                             status=ReservationStatus.NOTIFIED,
                             expires_at=NOW - timedelta(minutes=1))
    fresh_book = make_book("Fresh")
    live = make_reservation(make_user(), fresh_book, NOW - timedelta(days=1),
                            status=ReservationStatus.NOTIFIED,
                            expires_at=NOW + timedelta(hours=5))
    waiting = make_reservation(make_user(), book, NOW - timedelta(days=2))

    passed_on = waitlist.expire_reservations(db_session, NOW)
    assert [r.id for r in passed_on] == [waiting.id]
    for reservation in (stale, live, waiting):
        db_session.refresh(reservation)
    assert stale.status == ReservationStatus.EXPIRED
    assert live.status == ReservationStatus.NOTIFIED
    assert waiting.status == ReservationStatus.NOTIFIED
    assert as_utc(waiting.expiration_date) == NOW + timedelta(hours=48)


def test_renewal_not_blocked_by_own_reservation(api, make_user, make_book, make_reservation):
    user, book = make_user(), make_book(copies=2)
    loan = api.create_loan(user.id, book.id)
    make_reservation(user, book, NOW)
    assert api.renew_loan(loan.id)
