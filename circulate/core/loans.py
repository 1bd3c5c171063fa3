"""
    Loan state machine: active -> returned.

    Every unit of work here checks and writes against the same snapshot. The
    eligibility decision, the copy counter and the loan row are handled under
    the patron's lock, then the book's lock, in one transaction. The copy
    counter itself only moves through a conditional UPDATE; if it moved
    underneath us the whole unit is rolled back and run again.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import NamedTuple, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from circulate.configs import BLOCK_THRESHOLD, CONFLICT_RETRIES, MAX_RENEWALS
from circulate.core import catalog, users, waitlist
from circulate.core.duedates import calculate_due_date
from circulate.core.eligibility import evaluate
from circulate.core.fines import materialize_return_fine, outstanding_total
from circulate.core.models import Book, Loan, LoanStatus, Reservation, User
from circulate.core.notifier import notify_safely
from circulate.core.exceptions import ConflictError, LoanNotFoundError, PolicyDenied
from circulate.core.utils import require_id

logger = logging.getLogger(__name__)


class ReturnReceipt(NamedTuple):
    loan: Loan
    fine_amount: int
    days_overdue: int
    notified: Optional[Reservation]


def retry_on_conflict(func):
    """Re-runs a whole evaluate-and-write unit when a counter moved under it."""
    @wraps(func)
    def wrapper(session, *args, **kwargs):
        for attempt in range(1, CONFLICT_RETRIES + 1):
            try:
                return func(session, *args, **kwargs)
            except ConflictError as e:
                session.rollback()
                if attempt == CONFLICT_RETRIES:
                    logger.error(f"{func.__name__} gave up after {attempt} conflicts: {e}")
                    raise
                logger.warning(f"{func.__name__} conflict on attempt {attempt}, retrying: {e}")
    return wrapper


def open_loan(session: Session, user: User, book: Book, now: datetime, exclude_request_id=None) -> Loan:
    """Creates a loan inside the caller's transaction; does not commit."""
    evaluate(session, user, book, now, exclude_request_id=exclude_request_id).raise_for_denial()
    due_date = calculate_due_date(user.role, book.tag, now)
    if not catalog.reserve_one_copy(session, book.id):
        raise ConflictError(f"Last copy of book {book.id} was taken concurrently.")
    loan = Loan(
        user_id=user.id,
        book_id=book.id,
        loan_date=now,
        due_date=due_date,
        status=LoanStatus.ACTIVE,
        renewal_count=0,
    )
    session.add(loan)
    waitlist.fulfil_reservation(session, user.id, book.id)
    session.flush()
    logger.info(f"Loan {loan.id}: book {book.id} to user {user.id}, due {due_date}")
    return loan


@retry_on_conflict
def create_loan(session: Session, user_id, book_id, now: datetime, notifier=None) -> Loan:
    user_id = require_id(user_id, "user id")
    book_id = require_id(book_id, "book id")
    with catalog.patron_lock(user_id, book_id):
        try:
            user = users.lock_user(session, user_id)
            book = session.get(Book, book_id)
            if book is not None:
                session.refresh(book)
            loan = open_loan(session, user, book, now)
            session.commit()
        except Exception:
            session.rollback()
            raise
    notify_safely(notifier and notifier.send_loan_confirmation, user, book, loan.due_date)
    return loan


def get_loan(session: Session, loan_id) -> Loan:
    loan_id = require_id(loan_id, "loan id")
    loan = session.get(Loan, loan_id)
    if not loan:
        raise LoanNotFoundError(f"Loan {loan_id} not found.")
    return loan


def return_loan(session: Session, loan_id, now: datetime, notifier=None) -> ReturnReceipt:
    loan = get_loan(session, loan_id)
    with catalog.book_lock(loan.book_id):
        try:
            session.refresh(loan)
            if loan.status != LoanStatus.ACTIVE:
                raise PolicyDenied("not_active", "This loan has already been returned.")
            overdue = materialize_return_fine(session, loan, now)
            loan.status = LoanStatus.RETURNED
            loan.return_date = now
            if not catalog.release_one_copy(session, loan.book_id):
                raise ConflictError(
                    f"Book {loan.book_id} already has every copy on the shelf; "
                    f"loan {loan.id} cannot be returned into it."
                )
            session.flush()
            notified = waitlist.notify_next(session, loan.book_id, now)
            session.commit()
        except Exception:
            session.rollback()
            raise
    logger.info(f"Loan {loan.id} returned; fine {overdue.amount}")
    if notified:
        notify_safely(
            notifier and notifier.send_reservation_ready,
            notified.user, notified.book, notified.expiration_date
        )
    return ReturnReceipt(loan, overdue.amount, overdue.days, notified)


def extend_loan(session: Session, loan: Loan, now: datetime) -> datetime:
    """Renews a loan inside the caller's transaction; does not commit."""
    if loan.status != LoanStatus.ACTIVE:
        raise PolicyDenied("not_active", "Only active loans can be renewed.")
    if loan.renewal_count >= MAX_RENEWALS:
        raise PolicyDenied("renewal_limit", f"Limit of {MAX_RENEWALS} renewals reached.")
    if waitlist.has_competing_reservation(session, loan.book_id, loan.user_id):
        raise PolicyDenied(
            "reserved_by_others",
            "This loan cannot be renewed; other patrons are waiting for this book."
        )
    owed = outstanding_total(session, loan.user_id, now)
    if owed >= BLOCK_THRESHOLD:
        raise PolicyDenied(
            "fine_threshold",
            f"User has outstanding fines of {owed}, at or above the {BLOCK_THRESHOLD} "
            f"limit. Pay to unlock renewals."
        )

    new_due_date = calculate_due_date(loan.user.role, loan.book.tag, now, base_date=loan.due_date)
    stmt = (
        update(Loan)
        .where(
            Loan.id == loan.id,
            Loan.status == LoanStatus.ACTIVE,
            Loan.renewal_count == loan.renewal_count,
        )
        .values(renewal_count=Loan.renewal_count + 1, due_date=new_due_date)
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount != 1:
        raise ConflictError(f"Loan {loan.id} was renewed or returned concurrently.")
    session.expire(loan, ['renewal_count', 'due_date', 'status'])
    logger.info(f"Loan {loan.id} renewed until {new_due_date}")
    return new_due_date


@retry_on_conflict
def renew_loan(session: Session, loan_id, now: datetime) -> datetime:
    loan = get_loan(session, loan_id)
    with catalog.book_lock(loan.book_id):
        try:
            session.refresh(loan)
            new_due_date = extend_loan(session, loan, now)
            session.commit()
        except Exception:
            session.rollback()
            raise
    return new_due_date
