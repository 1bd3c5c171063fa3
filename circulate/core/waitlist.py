"""
    Reservation waitlist.

    Reservations for a book are served in priority order: a patron who has
    already been offered a copy (notified) stays at the head until the offer
    is taken up or lapses, teachers go ahead of everyone else, and ties are
    broken by arrival. A return offers the freed copy to the head pending
    reservation for a limited pickup window; it never creates the loan.
"""

import logging
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from sqlalchemy.orm import Session

from circulate.configs import MAX_RESERVATIONS, RESERVATION_PICKUP_HOURS
from circulate.core.models import (
    Book,
    Loan,
    LoanRequest,
    Reservation,
    ReservationStatus,
    User,
)
from circulate.core.exceptions import (
    BookNotFoundError,
    PolicyDenied,
    ReservationNotFoundError,
    UserNotFoundError,
)
from circulate.core.utils import as_utc, normalize_title

logger = logging.getLogger(__name__)


class Claim(NamedTuple):
    """Somebody already holding a call on one of a book's free copies."""
    user_id: int
    user_name: str
    source: str  # "loan_request" or "reservation"


def priority_key(reservation: Reservation):
    notified_first = 0 if reservation.status == ReservationStatus.NOTIFIED else 1
    teacher_first = 0 if reservation.user and reservation.user.is_teacher else 1
    return (notified_first, teacher_first, as_utc(reservation.reservation_date), reservation.id)


def ordered_waitlist(session: Session, book_id) -> List[Reservation]:
    return sorted(Reservation.waiting_for_book(session, book_id), key=priority_key)


def copy_claims(session: Session, book_id, exclude_user_id=None, exclude_request_id=None) -> List[Claim]:
    """Pending loan requests and outstanding pickup offers against a book.

    Both queues claim copies that are physically on the shelf, so eligibility
    treats them as one: a copy promised to someone else is not available.
    When approving `exclude_request_id`, only requests filed before it count.
    """
    claims = []
    for request in LoanRequest.pending(session, book_id=book_id):
        if request.id == exclude_request_id:
            break
        claims.append(Claim(request.user_id, _name(request.user), "loan_request"))
    for reservation in ordered_waitlist(session, book_id):
        if reservation.status != ReservationStatus.NOTIFIED:
            continue
        if reservation.user_id == exclude_user_id:
            continue
        claims.append(Claim(reservation.user_id, _name(reservation.user), "reservation"))
    return claims


def has_competing_reservation(session: Session, book_id, user_id) -> bool:
    return any(r.user_id != user_id for r in Reservation.waiting_for_book(session, book_id))


def create_reservation(session: Session, user_id, book_id, now: datetime) -> Reservation:
    user = session.get(User, user_id) if user_id is not None else None
    if not user:
        raise UserNotFoundError(f"User {user_id} not found.")
    if not user.active:
        raise PolicyDenied("user_inactive", "This user account is inactive.")

    book = session.get(Book, book_id) if book_id is not None else None
    if not book:
        raise BookNotFoundError(f"Book {book_id} not found.")

    waiting = Reservation.waiting_for_user(session, user.id)
    if len(waiting) >= MAX_RESERVATIONS:
        raise PolicyDenied(
            "reservation_limit",
            f"Limit of {MAX_RESERVATIONS} simultaneous reservations reached."
        )
    if not book.is_circulating:
        raise PolicyDenied(
            "library_use_only",
            "This book cannot be reserved; it is for library use only."
        )

    title = normalize_title(book.title)
    for loan in Loan.active_for(session, user.id):
        if normalize_title(loan.book.title) == title:
            raise PolicyDenied(
                "same_title_loaned",
                f"You already have a copy of '{book.title}' on loan."
            )
    for held in waiting:
        if normalize_title(held.book.title) == title:
            if held.status == ReservationStatus.NOTIFIED:
                message = "A copy of this book is already waiting for you to pick up."
            else:
                message = "You are already on the waitlist for this book."
            raise PolicyDenied("already_reserved", message)

    reservation = Reservation(
        user_id=user.id,
        book_id=book.id,
        status=ReservationStatus.PENDING,
        reservation_date=now,
    )
    session.add(reservation)
    session.commit()
    logger.info(f"Reservation {reservation.id} created for user {user.id} on book {book.id}")
    return reservation


def fulfil_reservation(session: Session, user_id, book_id) -> Optional[Reservation]:
    """Marks the user's waiting reservation for this book as turned into a loan."""
    for reservation in Reservation.waiting_for_book(session, book_id):
        if reservation.user_id == user_id:
            reservation.status = ReservationStatus.FULFILLED
            logger.info(f"Reservation {reservation.id} fulfilled by a loan")
            return reservation
    return None


def notify_next(session: Session, book_id, now: datetime) -> Optional[Reservation]:
    """Offers a freed copy to the head pending reservation. Does not commit."""
    for reservation in ordered_waitlist(session, book_id):
        if reservation.status != ReservationStatus.PENDING:
            continue
        reservation.status = ReservationStatus.NOTIFIED
        reservation.notification_date = now
        reservation.expiration_date = now + timedelta(hours=RESERVATION_PICKUP_HOURS)
        logger.info(
            f"Reservation {reservation.id} (user {reservation.user_id}) notified; "
            f"pickup by {reservation.expiration_date}"
        )
        return reservation
    return None


def cancel_reservation(session: Session, user_id, book_id, now: datetime):
    """Withdraws a user's waiting reservation.

    Returns the cancelled reservation and, when the user had been offered a
    copy, the reservation the copy was passed on to.
    """
    cancelled = None
    for reservation in Reservation.waiting_for_book(session, book_id):
        if reservation.user_id == user_id:
            cancelled = reservation
            break
    if cancelled is None:
        raise ReservationNotFoundError("No active reservation found for this book.")

    was_notified = cancelled.status == ReservationStatus.NOTIFIED
    cancelled.status = ReservationStatus.CANCELLED
    session.flush()
    passed_on = notify_next(session, book_id, now) if was_notified else None
    session.commit()
    logger.info(f"Reservation {cancelled.id} cancelled by user {user_id}")
    return cancelled, passed_on


def expire_reservations(session: Session, now: datetime) -> List[Reservation]:
    """Lapses pickup offers past their window and offers the copy onwards.

    Returns the reservations newly notified as a result.
    """
    stale = session.query(Reservation).filter(
        Reservation.status == ReservationStatus.NOTIFIED
    ).all()
    stale = [r for r in stale if r.expiration_date and as_utc(r.expiration_date) <= now]
    passed_on = []
    for reservation in stale:
        reservation.status = ReservationStatus.EXPIRED
        logger.info(f"Reservation {reservation.id} expired without pickup")
    session.flush()
    for book_id in sorted({r.book_id for r in stale}):
        if nxt := notify_next(session, book_id, now):
            passed_on.append(nxt)
    session.commit()
    return passed_on


def _name(user) -> str:
    return user.name if user else "Unknown"
