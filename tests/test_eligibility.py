#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_eligibility
    ~~~~~~~~~~~~~~~~~~~~~~

    Every refusal reason, and the order the checks run in.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

from datetime import timedelta
from circulate.core.eligibility import Reason, evaluate, evaluate_ids
from circulate.core.models import Fine, FineStatus, ReservationStatus
from tests.conftest import NOW


def test_allowed(db_session, make_user, make_book):
    result = evaluate(db_session, make_user(), make_book(), NOW)
    assert result.allowed
    assert result.reason is None
    assert result.to_dict() == {"allowed": True, "reason": None, "message": None}


def test_missing_or_inactive_user(db_session, make_user, make_book):
    book = make_book()
    assert evaluate(db_session, None, book, NOW).reason == Reason.USER_INACTIVE
    blocked = make_user(active=False)
    assert evaluate(db_session, blocked, book, NOW).reason == Reason.USER_INACTIVE


def test_missing_book(db_session, make_user):
    assert evaluate_ids(db_session, make_user().id, 404, NOW).reason == Reason.BOOK_NOT_FOUND


def test_no_copies_on_shelf(db_session, make_user, make_book):
    book = make_book(copies=2, available=0)
    assert evaluate(db_session, make_user(), book, NOW).reason == Reason.NO_COPIES_AVAILABLE


def test_red_tag(db_session, make_user, make_book):
    book = make_book(tag="red")
    result = evaluate(db_session, make_user(), book, NOW)
    assert result.reason == Reason.LIBRARY_USE_ONLY
    assert "library use only" in result.message


def test_already_borrowed_same_book(db_session, make_user, make_book, make_loan):
    user, book = make_user(), make_book(copies=3)
    make_loan(user, book, due_date=NOW + timedelta(days=2))
    assert evaluate(db_session, user, book, NOW).reason == Reason.ALREADY_BORROWED


def test_own_pending_request_blocks_direct_loan(db_session, make_user, make_book, make_loan_request):
    user, book = make_user(), make_book(copies=2)
    request = make_loan_request(user, book)
    assert evaluate(db_session, user, book, NOW).reason == Reason.PENDING_REQUEST_EXISTS
    # approving that very request is not blocked by it
    assert evaluate(db_session, user, book, NOW, exclude_request_id=request.id).allowed


def test_copies_claimed_by_requests_of_others(db_session, make_user, make_book, make_loan_request):
    book = make_book(copies=1)
    make_loan_request(make_user("Amara"), book)
    result = evaluate(db_session, make_user(), book, NOW)
    assert result.reason == Reason.RESERVED_FOR_OTHERS
    assert "Amara" in result.message


def test_copies_claimed_by_pickup_offers(db_session, make_user, make_book, make_reservation):
    book = make_book(copies=2)
    offered = make_user("Bento")
    make_reservation(offered, book, NOW - timedelta(days=1), status=ReservationStatus.NOTIFIED,
                     expires_at=NOW + timedelta(days=1))
    other = make_user("Carla")
    make_reservation(make_user("Dora"), book, NOW - timedelta(days=1),
                     status=ReservationStatus.NOTIFIED, expires_at=NOW + timedelta(days=1))

    result = evaluate(db_session, other, book, NOW)
    assert result.reason == Reason.RESERVED_FOR_OTHERS
    assert "Bento" in result.message and "Dora" in result.message
    # the patron holding the offer is not blocked by their own claim
    assert evaluate(db_session, offered, book, NOW).allowed


def test_pending_reservations_do_not_claim_copies(db_session, make_user, make_book, make_reservation):
    book = make_book(copies=1)
    make_reservation(make_user(), book, NOW - timedelta(days=1))
    assert evaluate(db_session, make_user(), book, NOW).allowed


def test_fine_threshold_cites_amount_and_limit(db_session, make_user, make_book, make_loan):
    user = make_user()
    old = make_loan(user, make_book("Old"), due_date=NOW - timedelta(days=1))
    db_session.add(Fine(loan_id=old.id, user_id=user.id, amount=1600, days_overdue=4,
                        status=FineStatus.PENDING))
    db_session.commit()

    # 1600 stored + 500 running
    result = evaluate(db_session, user, make_book("New"), NOW)
    assert result.reason == Reason.FINE_THRESHOLD
    assert "2100" in result.message
    assert "2000" in result.message


def test_fine_checked_before_availability_of_the_limit(db_session, make_user, make_book, make_loan):
    student = make_user()
    make_loan(student, make_book("A"), due_date=NOW - timedelta(days=3))
    make_loan(student, make_book("B"), due_date=NOW - timedelta(days=2))
    # 1500 + 1000 running; also at the loan limit
    assert evaluate(db_session, student, make_book("C"), NOW).reason == Reason.FINE_THRESHOLD


def test_fine_below_threshold_allowed(db_session, make_user, make_book, make_loan):
    user = make_user()
    make_loan(user, make_book("Old"), due_date=NOW - timedelta(days=3))
    assert evaluate(db_session, user, make_book("New"), NOW).allowed


def test_loan_limits_by_role(db_session, make_user, make_book, make_loan):
    student, teacher = make_user(), make_user(role="teacher")
    for i in range(2):
        make_loan(student, make_book(f"S{i}"), due_date=NOW + timedelta(days=3))
    for i in range(4):
        make_loan(teacher, make_book(f"T{i}"), due_date=NOW + timedelta(days=3))

    result = evaluate(db_session, student, make_book("Next"), NOW)
    assert result.reason == Reason.LOAN_LIMIT
    assert "2" in result.message
    assert evaluate(db_session, teacher, make_book("Next for teacher"), NOW).reason == Reason.LOAN_LIMIT


def test_teacher_below_limit_allowed(db_session, make_user, make_book, make_loan):
    teacher = make_user(role="teacher")
    for i in range(3):
        make_loan(teacher, make_book(f"T{i}"), due_date=NOW + timedelta(days=3))
    assert evaluate(db_session, teacher, make_book("Fourth"), NOW).allowed


def test_same_title_other_edition(db_session, make_user, make_book, make_loan):
    user = make_user()
    make_loan(user, make_book("Memorial do Convento", author="Saramago"), due_date=NOW + timedelta(days=1))
    other_edition = make_book("MEMORIAL DO  CONVENTO", author="J. Saramago")
    assert evaluate(db_session, user, other_edition, NOW).reason == Reason.SAME_TITLE


def test_same_title_ignores_accents(db_session, make_user, make_book, make_loan):
    user = make_user()
    make_loan(user, make_book("Ensaio sobre a Cegueira", author="A"), due_date=NOW + timedelta(days=1))
    accented = make_book("Ensaio sobre a Cégueira", author="B")
    assert evaluate(db_session, user, accented, NOW).reason == Reason.SAME_TITLE


def test_teacher_pending_request_for_same_title(db_session, make_user, make_book, make_loan_request):
    teacher = make_user(role="teacher")
    make_loan_request(teacher, make_book("Mensagem", author="Pessoa"))
    other_copy = make_book("Mensagem", author="F. Pessoa")
    assert evaluate(db_session, teacher, other_copy, NOW).reason == Reason.SAME_TITLE


def test_first_failing_check_wins(db_session, make_user, make_book):
    # inactive user, red tag and no copies all at once: user check runs first
    book = make_book(tag="red", copies=1, available=0)
    assert evaluate(db_session, make_user(active=False), book, NOW).reason == Reason.USER_INACTIVE
    # no copies is reported before the red tag
    assert evaluate(db_session, make_user(), book, NOW).reason == Reason.NO_COPIES_AVAILABLE
